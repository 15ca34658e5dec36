#!/usr/bin/env python3
"""
ux4iot CLI - Main entry point.

Usage:
    ux4iot watch --device <id> --telemetry temperature   # Stream device data
    ux4iot invoke --device <id> --method reboot          # Invoke a direct method
    ux4iot patch --device <id> --patch '{"fan": true}'   # Patch desired properties

Development mode only: the relay is reached with an admin connection string
from --connection-string, --config or UX4IOT_ADMIN_CONNECTION_STRING.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from ..config import Ux4iotConfig, load_config
from ..coordinator import Ux4iotCoordinator
from ..core.errors import ConfigError, Ux4iotError
from ..core.types import Outcome, SubscriptionRequest, SubscriptionType

logger = logging.getLogger(__name__)

CLI_SUBSCRIBER_ID = "ux4iot-cli"


def load_cli_config(args: argparse.Namespace) -> Ux4iotConfig:
    """Build a development-mode config from CLI flags, YAML file or environment."""
    if args.connection_string:
        config = Ux4iotConfig(admin_connection_string=args.connection_string)
    else:
        config = load_config(args.config) if args.config else None
        if config is None:
            config = Ux4iotConfig.from_env()

    if not config.dev_mode:
        raise ConfigError("The CLI needs an admin connection string (development mode)")
    return config.validate()


def build_requests(args: argparse.Namespace) -> list[SubscriptionRequest]:
    """Subscription requests for the `watch` command."""
    requests = [
        SubscriptionRequest(type=SubscriptionType.TELEMETRY, device_id=args.device, telemetry_key=key)
        for key in args.telemetry or []
    ]
    if args.connection_state:
        requests.append(SubscriptionRequest(type=SubscriptionType.CONNECTION_STATE, device_id=args.device))
    if args.device_twin:
        requests.append(SubscriptionRequest(type=SubscriptionType.DEVICE_TWIN, device_id=args.device))
    if args.d2c:
        requests.append(SubscriptionRequest(type=SubscriptionType.D2C_MESSAGES, device_id=args.device))
    return requests


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, default=str), flush=True)


def _print_status(reason: str, description: str) -> None:
    print(f"[{reason}] {description}", file=sys.stderr, flush=True)


async def _watch(config: Ux4iotConfig, requests: list[SubscriptionRequest], duration: Optional[float]) -> int:
    def on_data(device_id: str, data: Any, timestamp: str) -> None:
        _print_json({"deviceId": device_id, "data": data, "timestamp": timestamp})

    async def on_session_id(session_id: str) -> None:
        for request in requests:
            outcome = await coordinator.subscribe(
                CLI_SUBSCRIBER_ID,
                request,
                on_data,
                on_subscription_error=lambda reason: _print_status("subscription_error", str(reason)),
                on_grant_error=lambda reason: _print_status("grant_error", str(reason)),
            )
            logger.debug(f"Subscribe {request.type.value}: {outcome.status.value}")

    coordinator = Ux4iotCoordinator(config, on_session_id=on_session_id, on_connection_update=_print_status)
    async with coordinator:
        if duration is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(duration)
        await coordinator.unsubscribe_all()
    return 0


async def _run_action(config: Ux4iotConfig, action: str, args: argparse.Namespace) -> int:
    connected = asyncio.Event()
    coordinator = Ux4iotCoordinator(
        config,
        on_session_id=lambda session_id: connected.set(),
        on_connection_update=_print_status,
    )
    async with coordinator:
        try:
            await asyncio.wait_for(connected.wait(), timeout=args.timeout)
        except asyncio.TimeoutError:
            print(f"Error: no session within {args.timeout}s", file=sys.stderr)
            return 1

        if action == "invoke":
            params = {"methodName": args.method, "payload": json.loads(args.payload) if args.payload else None}
            outcome = await coordinator.invoke_direct_method(args.device, params)
        else:
            outcome = await coordinator.patch_desired_properties(args.device, json.loads(args.patch))

    return _report(outcome)


def _report(outcome: Outcome) -> int:
    if not outcome.ok:
        print(f"Error: {outcome.status.value}: {outcome.reason}", file=sys.stderr)
        return 1
    value = outcome.value
    _print_json(value.to_wire() if hasattr(value, "to_wire") else value)
    return 0


def cmd_watch(args: argparse.Namespace) -> int:
    """Stream device data as JSON lines."""
    requests = build_requests(args)
    if not requests:
        print("Error: nothing to watch. Use --telemetry, --connection-state, --device-twin or --d2c.")
        return 1

    try:
        config = load_cli_config(args)
        return asyncio.run(_watch(config, requests, args.duration))
    except KeyboardInterrupt:
        return 0
    except Ux4iotError as e:
        print(f"Error: {e}")
        return 1


def cmd_invoke(args: argparse.Namespace) -> int:
    """Invoke a direct method on a device."""
    try:
        config = load_cli_config(args)
        return asyncio.run(_run_action(config, "invoke", args))
    except (Ux4iotError, ValueError) as e:
        print(f"Error: {e}")
        return 1


def cmd_patch(args: argparse.Namespace) -> int:
    """Patch desired properties of a device twin."""
    try:
        config = load_cli_config(args)
        return asyncio.run(_run_action(config, "patch", args))
    except (Ux4iotError, ValueError) as e:
        print(f"Error: {e}")
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ux4iot",
        description="ux4iot - stream and control IoT devices through a ux4iot relay"
    )
    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")
    parser.add_argument("--config", "-c", help="Path to ux4iot.yaml")
    parser.add_argument("--connection-string", help="Admin connection string (HostName=...;Key=...)")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # watch
    watch_parser = subparsers.add_parser("watch", help="Stream device data")
    watch_parser.add_argument("--device", "-d", required=True, help="Device id")
    watch_parser.add_argument("--telemetry", "-t", nargs="+", help="Telemetry keys")
    watch_parser.add_argument("--connection-state", action="store_true", help="Stream connection state")
    watch_parser.add_argument("--device-twin", action="store_true", help="Stream device twin updates")
    watch_parser.add_argument("--d2c", action="store_true", help="Stream raw device-to-cloud messages")
    watch_parser.add_argument("--duration", type=float, help="Stop after this many seconds")

    # invoke
    invoke_parser = subparsers.add_parser("invoke", help="Invoke a direct method")
    invoke_parser.add_argument("--device", "-d", required=True, help="Device id")
    invoke_parser.add_argument("--method", "-m", required=True, help="Direct method name")
    invoke_parser.add_argument("--payload", "-p", help="JSON payload")
    invoke_parser.add_argument("--timeout", type=float, default=15.0, help="Seconds to wait for a session")

    # patch
    patch_parser = subparsers.add_parser("patch", help="Patch desired properties")
    patch_parser.add_argument("--device", "-d", required=True, help="Device id")
    patch_parser.add_argument("--patch", required=True, help="JSON desired property patch")
    patch_parser.add_argument("--timeout", type=float, default=15.0, help="Seconds to wait for a session")

    return parser


def app(args: Optional[List[str]] = None) -> int:
    """Main CLI application."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=getattr(logging, str(parsed.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "watch": cmd_watch,
        "invoke": cmd_invoke,
        "patch": cmd_patch,
    }

    handler = commands.get(parsed.command)
    if handler:
        return handler(parsed)

    parser.print_help()
    return 1


def main() -> None:
    """Entry point for CLI."""
    sys.exit(app())


if __name__ == "__main__":
    main()
