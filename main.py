#!/usr/bin/env python3
"""
Agent Studio - project-scoped coding agent

Runs the agent loop against one project directory from the terminal.
"""
import argparse
import json
import logging
import os
import sys
import uuid
from pathlib import Path

from dotenv import load_dotenv

from agent_studio import create_agent
from agent_studio.error_handling.errors import AgentStudioError
from agent_studio.logging_v2.run_logger import RunLogger
from agent_studio.provider_routing import MODEL_CATALOG, provider_router
from agent_studio.provider_runtime import ProviderRuntimeError
from agent_studio.settings import get_setting, load_settings
from agent_studio.storage import JSONConversationStore, ProjectContext


def _project_id(project_dir: str) -> str:
    return Path(project_dir).resolve().name or "project"


def _print_event(event) -> None:
    if event.type == "content":
        sys.stdout.write(event.content or "")
        sys.stdout.flush()
    elif event.type == "tool_call":
        print(f"\n→ {event.tool_call.name}({json.dumps(event.tool_call.arguments)})")
    elif event.type == "tool_result":
        result = event.tool_result.result
        marker = "✗" if event.tool_result.is_error else "←"
        print(f"{marker} {result[:500]}{'...' if len(result) > 500 else ''}")
    elif event.type == "error":
        print(f"\nError: {event.error}", file=sys.stderr)
    elif event.type == "done":
        print()


def main():
    parser = argparse.ArgumentParser(description="Agent Studio coding agent")
    parser.add_argument('--config', help='Path to a YAML settings file')
    parser.add_argument('--project-dir', default='.', help='Project working directory (default: current directory)')
    parser.add_argument('--project-name', help='Display name used in the system prompt')
    parser.add_argument('--provider', default='openai', help='Provider: openai, anthropic, google or mock')
    parser.add_argument('--model', help='Model id (default: first model offered by the provider)')
    parser.add_argument('--chat-id', help='Conversation id to resume (default: new conversation)')
    parser.add_argument('-t', '--task', help='Run a single message and exit')
    parser.add_argument('-i', '--interactive', action='store_true', help='Start interactive session')
    parser.add_argument('-m', '--max-iterations', type=int, help='Maximum provider round-trips per message')
    parser.add_argument('--log-level', default='WARNING', help='Python logging level (default: WARNING)')

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Load .env (gitignored) if present to set API keys
    load_dotenv()

    if args.config and not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found", file=sys.stderr)
        sys.exit(1)

    overrides = {}
    if args.max_iterations:
        overrides = {"agent": {"max_iterations": args.max_iterations}}
    try:
        settings = load_settings(args.config, overrides=overrides)
        config = provider_router.get_provider_config(args.provider)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    catalog = MODEL_CATALOG.get(args.provider) or [{"id": "mock"}]
    model = args.model or catalog[0]["id"]
    api_key = os.environ.get(config.api_key_env, "") if config.api_key_env else ""
    if args.provider != "mock" and not api_key:
        print(f"Error: {config.api_key_env} is not set", file=sys.stderr)
        sys.exit(1)

    project_dir = str(Path(args.project_dir).resolve())
    store = JSONConversationStore(get_setting(settings, "storage.root", "data"))
    context = ProjectContext(
        project_id=_project_id(project_dir),
        working_directory=project_dir,
        display_name=args.project_name or Path(project_dir).name,
        provider=args.provider,
        model=model,
        credential=api_key,
    )
    existing = store.find_project(context.project_id)
    if existing is not None:
        context.environment_overlay = existing.environment_overlay
    store.save_project(context)

    chat_id = args.chat_id or uuid.uuid4().hex[:12]
    run_logger = RunLogger(settings) if get_setting(settings, "logging.enabled", False) else None
    try:
        agent = create_agent(context, store, chat_id, settings=settings, run_logger=run_logger)
    except (AgentStudioError, ProviderRuntimeError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    print(f"Project: {context.display_name} ({project_dir})")
    print(f"Provider: {args.provider} / {agent.provider.model}  Chat: {chat_id}")

    if args.task:
        ok = True
        for event in agent.run(args.task):
            _print_event(event)
            ok = event.type != "error"
        sys.exit(0 if ok else 1)
    elif args.interactive:
        print("Type 'exit' or 'quit' to leave.")
        while True:
            try:
                message = input("\n> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                break
            if message.lower() in ("exit", "quit"):
                break
            if not message:
                continue
            for event in agent.run(message):
                _print_event(event)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
