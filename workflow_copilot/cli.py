"""Interactive terminal client for the workflow copilot.

Usage:
    workflow-copilot chat WORKFLOW_ID
    workflow-copilot refs WORKFLOW_ID NODE_ID
    workflow-copilot slots prompt.txt

Chat commands:
    /apply MSG_ID    apply the node actions attached to a message
    /fix MSG_ID      accept a pending fix suggestion
    /reject MSG_ID   reject a pending fix suggestion
    /confirm         confirm the pending requirement summary
    /diagnose        send the failed node's config for deep diagnosis
    /test {json}     run a test with the given input
    /save            save the graph
    /quit            leave
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser
from pathlib import Path

from dotenv import load_dotenv

from workflow_copilot.assistant.orchestrator import ConversationOrchestrator
from workflow_copilot.assistant.state import AIMessage, AssistantState
from workflow_copilot.bindings import extract_slots_from_prompt
from workflow_copilot.client import AssistantClient, AssistantSettings, WorkflowServiceClient
from workflow_copilot.client.workflow_service import workflow_config_of
from workflow_copilot.graph.store import WorkflowStore
from workflow_copilot.notify import RecordingNotifier
from workflow_copilot.references import compute_available_references

logger = logging.getLogger("workflow_copilot.cli")


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_message(message: AIMessage) -> None:
    print(f"\n[{message.role}] ({message.id})")
    print(message.content)
    if message.node_actions:
        print(f"  → {len(message.node_actions)} node action(s); /apply {message.id}")
    if message.pending_fix:
        print(f"  → fix pending; /fix {message.id} or /reject {message.id}")
    if message.requirement_confirmation:
        print(json.dumps(message.requirement_confirmation, ensure_ascii=False, indent=2))
        print("  → /confirm to generate the workflow")
    for question in message.interactive_questions or []:
        print(f"  ? {question.get('question', '')}")
        for option in question.get("options") or []:
            print(f"      - {option.get('label', option.get('id', ''))}")


def _flush_notifications(notifier: RecordingNotifier) -> None:
    for level, text in notifier.drain():
        print(f"  ({level}) {text}")


async def _load_store(service: WorkflowServiceClient, workflow_id: str) -> WorkflowStore | None:
    record = await service.get_by_id(workflow_id)
    if isinstance(record, dict) and "error" in record:
        print(f"Could not load workflow {workflow_id}: {record.get('detail') or record['error']}")
        return None
    return WorkflowStore.from_config(workflow_config_of(record))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run_chat(workflow_id: str) -> None:
    settings = AssistantSettings()
    notifier = RecordingNotifier()
    service = WorkflowServiceClient(settings)
    client = AssistantClient(settings)
    try:
        store = await _load_store(service, workflow_id)
        if store is None:
            return
        state = AssistantState()
        state.create_conversation(workflow_id)
        orchestrator = ConversationOrchestrator(
            client, store, state, workflow_id, notifier, settings, workflow_service=service,
        )
        models = await orchestrator.load_providers()
        print(f"\nWorkflow: {workflow_id} ({len(store.nodes)} nodes)")
        print(f"Model   : {state.selected_model or '(server default)'} ({len(models)} available)")
        print("-" * 60)
        _flush_notifications(notifier)

        shown = len(state.messages)
        while True:
            line = await asyncio.to_thread(_prompt, "\n> ")
            if not line:
                continue
            if not await _handle_line(orchestrator, line):
                break

            for message in state.messages[shown:]:
                if message.role != "user":
                    _print_message(message)
            shown = len(state.messages)
            _flush_notifications(notifier)

            if orchestrator.poller.running:
                print("  (test running; results are shown when it completes)")
            # Analysis of a finished run may start another run
            while orchestrator.poller.running:
                await orchestrator.poller.task
                for message in state.messages[shown:]:
                    _print_message(message)
                shown = len(state.messages)
                _flush_notifications(notifier)

        if store.is_dirty:
            print("\nUnsaved changes; use /save next time to keep them.")
        await orchestrator.close()
    finally:
        await client.close()
        await service.close()


async def _handle_line(orchestrator: ConversationOrchestrator, line: str) -> bool:
    """Run one chat line. Returns False when the user asked to quit."""
    if not line.startswith("/"):
        await orchestrator.send_message(line)
        return True

    command, _, arg = line.partition(" ")
    arg = arg.strip()
    if command == "/quit":
        return False
    if command == "/apply":
        orchestrator.apply_message_actions(arg)
    elif command == "/fix":
        if orchestrator.confirm_fix(arg) is None:
            print("No pending fix on that message.")
    elif command == "/reject":
        if not orchestrator.reject_fix(arg):
            print("No pending fix on that message.")
    elif command == "/confirm":
        if await orchestrator.confirm_requirement() is None:
            print("Nothing to confirm.")
    elif command == "/diagnose":
        if await orchestrator.confirm_node_diagnosis() is None:
            print("No node is waiting for diagnosis.")
    elif command == "/test":
        try:
            test_input = json.loads(arg) if arg else {}
        except json.JSONDecodeError as e:
            print(f"Invalid JSON test input: {e}")
            return True
        await orchestrator.start_test(test_input if isinstance(test_input, dict) else {})
    elif command == "/save":
        result = await orchestrator.save()
        if isinstance(result, dict) and "error" not in result:
            print("Saved.")
    else:
        print(f"Unknown command: {command}")
    return True


async def _run_refs(workflow_id: str, node_id: str) -> None:
    settings = AssistantSettings()
    async with WorkflowServiceClient(settings) as service:
        store = await _load_store(service, workflow_id)
    if store is None:
        return
    if store.get_node(node_id) is None:
        print(f"Node not found: {node_id}")
        return
    options = compute_available_references(store.graph, node_id)
    if not options:
        print("No upstream references.")
        return
    for option in options:
        print(f"{option.node_name} ({option.node_type})")
        for ref in option.fields:
            print(f"  {ref.reference:<40} {ref.name}")


def _run_slots(path: str) -> None:
    text = Path(path).read_text(encoding="utf-8")
    for slot in extract_slots_from_prompt(text):
        print(slot)


def _prompt(label: str) -> str:
    """Read a line from stdin, stripping whitespace. Exits on EOF."""
    try:
        return input(label).strip()
    except EOFError:
        print("\n(EOF received — exiting)")
        sys.exit(0)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def main() -> None:
    load_dotenv()
    level = AssistantSettings().log_level
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s: %(message)s",
    )

    parser = ArgumentParser(
        prog="workflow-copilot",
        description="Workflow copilot — interactive terminal client",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    chat_p = sub.add_parser("chat", help="Chat with the assistant about a workflow")
    chat_p.add_argument("workflow_id", help="ID of the workflow to edit")

    refs_p = sub.add_parser("refs", help="List references available inside a node")
    refs_p.add_argument("workflow_id")
    refs_p.add_argument("node_id")

    slots_p = sub.add_parser("slots", help="List the input slots of a prompt file")
    slots_p.add_argument("file", help="Path to a prompt text file")

    args = parser.parse_args()

    if args.command == "chat":
        try:
            asyncio.run(_run_chat(args.workflow_id))
        except KeyboardInterrupt:
            print("\n\nInterrupted.")
    elif args.command == "refs":
        asyncio.run(_run_refs(args.workflow_id, args.node_id))
    elif args.command == "slots":
        _run_slots(args.file)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
