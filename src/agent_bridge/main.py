"""
Agent Bridge - terminal front end for the agent session orchestrator.

Subcommands:
    chat            Interactive chat with the agent (default)
    ensure-browser  Provision the automation browser for web tools
    credentials     List, set or delete provider API keys
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys

from collections.abc import Sequence

from agent_bridge.core.agent_manager import AgentManager
from agent_bridge.core.constants import Settings, get_settings
from agent_bridge.core.exceptions import AgentBridgeError
from agent_bridge.integrations.credentials import KeyringSecretStore, Provider, SecretStore
from agent_bridge.models.status_models import StatusUpdate
from agent_bridge.utils.logger import logger

EXIT_COMMANDS = ("exit", "quit", "/exit", "/quit")


def print_status(update: StatusUpdate) -> None:
    """Render a status update as a dim line on stderr."""
    print(f"\033[2m  · {update.message}\033[0m", file=sys.stderr, flush=True)


def print_status_json(update: StatusUpdate) -> None:
    print(json.dumps(update.to_dict()), file=sys.stderr, flush=True)


def print_error(error: AgentBridgeError, as_json: bool, prefix: str = "") -> None:
    """Report a failure on stderr, as an ``{"type": "error", ...}`` line in JSON mode."""
    if as_json:
        print(json.dumps({"type": "error", **error.to_response().to_dict()}), file=sys.stderr, flush=True)
    else:
        print(f"{prefix}{error.message}", file=sys.stderr)


async def _read_line(prompt: str) -> str | None:
    try:
        return await asyncio.get_event_loop().run_in_executor(None, input, prompt)
    except EOFError:
        return None


async def run_chat(settings: Settings, provider_id: str, model_id: str, json_status: bool) -> int:
    """Interactive loop: one line in, one answer out, until EOF or exit."""
    notifier = print_status_json if json_status else print_status
    manager = AgentManager(notifier=notifier, settings=settings, secret_store=KeyringSecretStore())

    try:
        await manager.start()
    except AgentBridgeError as e:
        print_error(e, json_status, prefix="Failed to start agent: ")
        return 1

    print(f"Connected ({provider_id}/{model_id}). Type 'exit' to quit.", file=sys.stderr)
    try:
        while True:
            line = await _read_line("> ")
            if line is None or line.strip().lower() in EXIT_COMMANDS:
                break
            if not line.strip():
                continue
            if json_status:
                try:
                    answer = await manager.send(line, provider_id, model_id)
                except AgentBridgeError as e:
                    print_error(e, as_json=True)
                    continue
            else:
                answer = await manager.send_safe(line, provider_id, model_id)
            print(answer, flush=True)
    except KeyboardInterrupt:
        logger.info("Chat interrupted by user")
    finally:
        await manager.shutdown()
    return 0


async def run_ensure_browser(settings: Settings) -> int:
    manager = AgentManager(settings=settings)
    try:
        result = await manager.ensure_browser()
    except AgentBridgeError as e:
        print(e.message, file=sys.stderr)
        return 1
    if result.output:
        print(result.output)
    return 0 if result.success else 1


def run_credentials(args: argparse.Namespace, store: SecretStore) -> int:
    try:
        if args.action == "list":
            for provider_id, has_key in store.list():
                print(f"{provider_id}: {'set' if has_key else 'not set'}")
        elif args.action == "set":
            secret = args.key or getpass.getpass(f"{args.provider} API key: ")
            if not secret:
                print("No key given", file=sys.stderr)
                return 1
            store.save(args.provider, secret)
            print(f"Saved key for {args.provider}")
        elif args.action == "delete":
            store.delete(args.provider)
            print(f"Deleted key for {args.provider}")
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    except AgentBridgeError as e:
        print(e.message, file=sys.stderr)
        return 1
    return 0


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agent-bridge", description="Chat with a local coding agent")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--topology", choices=("server", "run"), help="Override the agent process topology")
    subparsers = parser.add_subparsers(dest="command")

    chat = subparsers.add_parser("chat", help="Interactive chat (default)")
    chat.add_argument("--provider", default=settings.default_provider, help="Provider id")
    chat.add_argument("--model", default=settings.default_model, help="Model id")
    chat.add_argument("--json-status", action="store_true", help="Emit status updates as JSON lines")

    subparsers.add_parser("ensure-browser", help="Provision the automation browser")

    creds = subparsers.add_parser("credentials", help="Manage provider API keys")
    creds_actions = creds.add_subparsers(dest="action", required=True)
    creds_actions.add_parser("list", help="Show which providers have a key")
    set_cmd = creds_actions.add_parser("set", help="Store a key")
    set_cmd.add_argument("provider", choices=[p.value for p in Provider])
    set_cmd.add_argument("--key", help="API key (prompted when omitted)")
    delete_cmd = creds_actions.add_parser("delete", help="Remove a key")
    delete_cmd.add_argument("provider", choices=[p.value for p in Provider])

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    settings = get_settings()
    args = build_parser(settings).parse_args(argv)

    overrides: dict[str, object] = {}
    if args.debug:
        overrides["debug"] = True
    if args.topology:
        overrides["topology"] = args.topology
    if overrides:
        settings = settings.model_copy(update=overrides)

    logger.configure(debug=settings.debug, log_dir=settings.log_dir)

    if args.command == "credentials":
        return run_credentials(args, KeyringSecretStore())
    if args.command == "ensure-browser":
        return asyncio.run(run_ensure_browser(settings))

    provider_id = getattr(args, "provider", settings.default_provider)
    model_id = getattr(args, "model", settings.default_model)
    json_status = getattr(args, "json_status", False)
    return asyncio.run(run_chat(settings, provider_id, model_id, json_status))


if __name__ == "__main__":
    sys.exit(main())
