"""CLI entry point for forge-agent."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from forge_agent.app import ForgeAgentApp
from forge_agent.chat.models import Message
from forge_agent.config import load_config
from forge_agent.core.types import Role
from forge_agent.documents.context import build_scene_context
from forge_agent.log import setup_logging

HELP_TEXT = """Commands:
  /approve          run the previewed tool calls of the last reply
  /reject           reject the previewed tool calls of the last reply
  /undo             undo the applied tool calls of the last reply
  /approval on|off  hold tool calls for approval (next message onwards)
  /scene            show the scene summary sent to the model
  /tokens           show session token usage
  /clear            clear the conversation
  /save             save the conversation (needs --project)
  /quit             exit
Press Ctrl-C while a reply is streaming to stop it."""


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="forge-agent",
        description="Agentic scene-editing chat with tool approval and batch undo",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Start an interactive chat session")
    chat_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    chat_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )
    chat_parser.add_argument(
        "-p", "--project", default=None, help="Project id to load and save the conversation under"
    )
    chat_parser.add_argument(
        "--approval", action="store_true", help="Start with approval mode on"
    )

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    check_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    check_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )

    # model-info command
    model_parser = subparsers.add_parser("model-info", help="Show completion model settings")
    model_parser.add_argument(
        "-c", "--config", default="config.yaml", help="Path to config file"
    )
    model_parser.add_argument(
        "-e", "--env", default=".env", help="Path to .env file"
    )

    args = parser.parse_args()

    if args.command is None:
        # Default to chat
        args.command = "chat"
        args.config = "config.yaml"
        args.env = ".env"
        args.project = None
        args.approval = False

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "model-info":
        _model_info(args.config, args.env)
    elif args.command == "chat":
        _run(args.config, args.env, args.project, args.approval)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        print(f"Configuration valid: {config_path}")
        print(f"  Data directory: {config.data_dir}")
        print(f"  Backend: {config.chat.backend}")
        if config.chat.backend == "relay":
            print(f"  Relay URL: {config.relay.url}")
        elif config.anthropic is None:
            print("  Warning: 'anthropic' backend selected but no 'anthropic' section")
        print(f"  Storage: {config.storage.db_path}")
        print(f"  Undo history limit: {config.scene.history_limit}")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _model_info(config_path: str, env_path: str) -> None:
    """Show completion model information."""
    try:
        config = load_config(config_path, env_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    chat = config.chat
    print("Completion Model Configuration")
    print("=" * 50)
    print(f"    Backend   : {chat.backend}")
    print(f"    Model     : {chat.model}")
    print(f"    Tokens    : {chat.max_tokens}")
    print(f"    Thinking  : {'on' if chat.thinking_enabled else 'off'} (budget {chat.thinking_budget})")
    print(f"    Approval  : {'on' if chat.approval_mode else 'off'}")
    print(f"    Max rounds: {chat.max_loop_iterations}")
    print()


def _last_assistant(app: ForgeAgentApp) -> Message | None:
    for message in reversed(app.session.messages):
        if message.role == Role.ASSISTANT:
            return message
    return None


def _print_reply(message: Message) -> None:
    if message.thinking:
        print(f"  (thinking) {message.thinking.strip()[:500]}")
    if message.content:
        print(f"assistant> {message.content.strip()}")
    for call in message.tool_calls or []:
        detail = call.error if call.error else ""
        print(f"  [{call.status}] {call.name} {dict(call.input)} {detail}".rstrip())


async def _send(app: ForgeAgentApp, text: str) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, app.session.stop_streaming)
        installed = True
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        installed = False

    try:
        reply = await app.session.send_message(text)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)

    if reply is not None:
        _print_reply(reply)
    if app.session.error:
        print(f"error> {app.session.error}", file=sys.stderr)


async def _handle_command(app: ForgeAgentApp, line: str, project: str | None) -> bool:
    """Run a slash command. Returns False when the session should end."""
    session = app.session
    command, _, arg = line.partition(" ")
    last = _last_assistant(app)

    match command.lower():
        case "/quit" | "/exit":
            return False
        case "/help":
            print(HELP_TEXT)
        case "/approve" | "/reject" | "/undo" if last is None:
            print("Nothing to act on yet.")
        case "/approve":
            calls = await session.approve_tool_calls(last.id)
            print(f"Approved {len(calls)} tool call(s).")
            _print_reply(last)
        case "/reject":
            calls = session.reject_tool_calls(last.id)
            print(f"Rejected {len(calls)} tool call(s).")
        case "/undo":
            calls = session.batch_undo_message(last.id)
            print(f"Undid {len(calls)} tool call(s).")
            print("Note: undo shares the scene history with manual edits, so it is best effort.")
        case "/approval":
            enabled = arg.strip().lower() in ("on", "true", "1", "yes")
            session.set_approval_mode(enabled)
            print(f"Approval mode {'on' if enabled else 'off'}.")
        case "/scene":
            print(build_scene_context(app.scene.snapshot()))
        case "/tokens":
            usage = session.session_tokens
            print(f"Session tokens: input={usage.input_tokens} output={usage.output_tokens}")
        case "/clear":
            session.clear_chat()
            print("Conversation cleared.")
        case "/save":
            if not project:
                print("Start with --project to save conversations.")
            else:
                kept = await session.save_conversation(project)
                print(f"Saved {kept} message(s) to project '{project}'.")
        case _:
            print(f"Unknown command: {command}. Type /help.")
    return True


def _run(config_path: str, env_path: str, project: str | None, approval: bool) -> None:
    """Load config and start an interactive session."""
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml first")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        app = ForgeAgentApp(config)
        await app.start()
        if approval:
            app.session.set_approval_mode(True)
        if project and await app.session.load_conversation(project):
            print(f"Loaded conversation for project '{project}'.")
        print("Type a message, or /help for commands.")

        try:
            while True:
                try:
                    line = await asyncio.to_thread(input, "you> ")
                except EOFError:
                    break
                line = line.strip()
                if not line:
                    continue
                if line.startswith("/"):
                    if not await _handle_command(app, line, project):
                        break
                    continue
                await _send(app, line)
        finally:
            if project:
                await app.session.save_conversation(project)
            await app.stop()

    try:
        asyncio.run(_async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
