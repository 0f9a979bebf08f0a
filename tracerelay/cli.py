"""
TraceRelay Command Line Interface

Provides command-line access to TraceRelay services.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import httpx

from tracerelay.core.config import TraceRelayConfig, validate_config
from tracerelay.observability.instrumentation.http_client import OutboundCallDecorator, TracedHTTPClient
from tracerelay.observability.tracing.engine import TracingEngine
from tracerelay.observability.types import TraceContext


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="tracerelay",
        description="TraceRelay - traced chat relay CLI",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start a TraceRelay service")
    server_parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    server_parser.add_argument("--port", type=int, default=8000, help="Port")
    server_parser.add_argument("--role", choices=["backend", "edge"], help="Service role")
    server_parser.add_argument("--reload", action="store_true", help="Auto-reload")

    # Send command
    send_parser = subparsers.add_parser("send", help="Send a chat message")
    send_parser.add_argument("user", help="Sender name")
    send_parser.add_argument("message", help="Message text")
    send_parser.add_argument("--url", default="http://localhost:8000", help="Server URL")
    send_parser.add_argument("--traceparent", help="Continue this trace instead of starting one")

    # Health command
    health_parser = subparsers.add_parser("health", help="Get service health")
    health_parser.add_argument("--url", default="http://localhost:8000", help="Server URL")

    # Config command
    config_parser = subparsers.add_parser("check-config", help="Validate configuration")
    config_parser.add_argument("--file", type=Path, help="JSON config file")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "server":
        from tracerelay.main import run_server
        run_server(
            host=args.host,
            port=args.port,
            reload=args.reload,
            role=args.role,
        )
        return 0

    elif args.command == "send":
        return asyncio.run(cmd_send(args.url, args.user, args.message, args.traceparent))

    elif args.command == "health":
        return asyncio.run(cmd_health(args.url))

    elif args.command == "check-config":
        return cmd_check_config(args.file)

    return 0


async def cmd_send(
    base_url: str,
    user: str,
    message: str,
    traceparent: Optional[str] = None,
) -> int:
    """Send a chat message and print the trace it travelled on."""
    context = TraceContext.parse(traceparent) if traceparent else None
    if traceparent and context is None:
        print(f"Ignoring malformed traceparent: {traceparent}", file=sys.stderr)
    if context is None:
        context = TraceContext.new_root()

    decorator = OutboundCallDecorator(TracingEngine(service_name="tracerelay.cli"))
    async with TracedHTTPClient(decorator, base_url=base_url, timeout=10.0) as client:
        response = await client.post(
            "/api/chat/send",
            json={"user": user, "message": message},
            context=context,
        )

    print(f"trace_id: {context.trace_id}")
    if response.status_code == 200:
        print(json.dumps(response.json(), indent=2))
        return 0

    print(f"Error: {response.status_code}")
    print(response.text)
    return 1


async def cmd_health(base_url: str) -> int:
    """Get service health."""
    async with httpx.AsyncClient() as client:
        response = await client.get(f"{base_url}/health", timeout=10.0)

        if response.status_code == 200:
            print(json.dumps(response.json(), indent=2))
            return 0

        print(f"Error: {response.status_code}")
        return 1


def cmd_check_config(config_file: Optional[Path]) -> int:
    """Validate configuration from the environment or a file."""
    config = TraceRelayConfig.from_file(config_file) if config_file else TraceRelayConfig()
    validation = validate_config(config)

    if validation.ok:
        print(f"Configuration OK ({config.role}, {config.environment})")
        return 0

    for error in validation.errors:
        print(f"- {error}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
