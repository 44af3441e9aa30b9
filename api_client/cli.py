"""CLI entry point for api-client.

Sends one request and prints the shaped response as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from api_client.client import create_client
from api_client.config_loader import load_client_file
from api_client.errors import ApiClientError, ConfigError, TransportError
from api_client.models import HTTP_METHODS, ClientOptions


def positive_float(value: str) -> float:
    """Parse and validate a positive float value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def parse_key_value(value: str) -> tuple[str, str]:
    """Parse KEY=VALUE format.

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if "=" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Expected KEY=VALUE (e.g., 'page=2')"
        )
    key, _, item = value.partition("=")
    if not key:
        raise argparse.ArgumentTypeError(f"Invalid format '{value}'. Key cannot be empty.")
    return (key, item)


def parse_header(value: str) -> tuple[str, str]:
    """Parse NAME:VALUE format.

    Raises:
        argparse.ArgumentTypeError: If format is invalid.
    """
    if ":" not in value:
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Expected NAME:VALUE (e.g., 'x-trace:abc')"
        )
    name, _, item = value.partition(":")
    name = name.strip()
    if not name:
        raise argparse.ArgumentTypeError(f"Invalid format '{value}'. Header name cannot be empty.")
    return (name, item.strip())


def parse_json(value: str) -> Any:
    """Parse a JSON document given on the command line."""
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON: {e}")


@dataclass
class RequestArgs:
    """Parsed arguments for one request."""

    method: str
    path: str
    base_url: str | None = None
    config: Path | None = None
    query: list[tuple[str, str]] = field(default_factory=list)
    headers: list[tuple[str, str]] = field(default_factory=list)
    json_body: Any = None
    form: list[tuple[str, str]] = field(default_factory=list)
    text: str | None = None
    token: str | None = None
    basic: str | None = None
    user: str | None = None
    password: str | None = None
    timeout: float | None = None
    insecure: bool = False
    ca: Path | None = None
    verbose: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="api-client",
        description="Send one HTTP request to a JSON API and print the response.",
    )
    parser.add_argument(
        "method",
        type=str.upper,
        choices=HTTP_METHODS,
        help="HTTP method",
    )
    parser.add_argument(
        "path",
        help="Request path, relative to the base URL (must start with '/')",
    )
    parser.add_argument(
        "--base-url",
        dest="base_url",
        help="Base URL (overrides base_url from --config)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML file with client options (supports ${ENV_VAR} substitution)",
    )
    parser.add_argument(
        "--query",
        type=parse_key_value,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Query parameter (can be repeated)",
    )
    parser.add_argument(
        "--header",
        type=parse_header,
        action="append",
        default=[],
        dest="headers",
        metavar="NAME:VALUE",
        help="Request header (can be repeated)",
    )

    body = parser.add_mutually_exclusive_group()
    body.add_argument(
        "--json",
        type=parse_json,
        dest="json_body",
        metavar="DOCUMENT",
        help="JSON request body",
    )
    body.add_argument(
        "--form",
        type=parse_key_value,
        action="append",
        metavar="KEY=VALUE",
        help="Form field (can be repeated)",
    )
    body.add_argument(
        "--text",
        help="Plain text request body",
    )

    auth = parser.add_mutually_exclusive_group()
    auth.add_argument("--token", help="Bearer token")
    auth.add_argument("--basic", help="Pre-encoded basic credentials")
    auth.add_argument("--user", help="Username (requires --password)")
    parser.add_argument("--password", help="Password for --user")

    parser.add_argument(
        "--timeout",
        type=positive_float,
        metavar="MS",
        help="Request timeout in milliseconds",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Do not verify TLS certificates",
    )
    parser.add_argument(
        "--ca",
        type=Path,
        help="CA bundle (PEM) used to verify TLS certificates",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log request details to stderr",
    )
    return parser


def parse_args(args: list[str] | None = None) -> RequestArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.user and not namespace.password:
        parser.error("--user requires --password")
    if namespace.base_url is None and namespace.config is None:
        parser.error("one of --base-url or --config is required")

    return RequestArgs(
        method=namespace.method,
        path=namespace.path,
        base_url=namespace.base_url,
        config=namespace.config,
        query=namespace.query or [],
        headers=namespace.headers or [],
        json_body=namespace.json_body,
        form=namespace.form or [],
        text=namespace.text,
        token=namespace.token,
        basic=namespace.basic,
        user=namespace.user,
        password=namespace.password,
        timeout=namespace.timeout,
        insecure=namespace.insecure,
        ca=namespace.ca,
        verbose=namespace.verbose,
    )


def build_client_options(args: RequestArgs, base: ClientOptions | None = None) -> ClientOptions:
    """Overlay command-line client settings on options loaded from --config."""
    update: dict[str, Any] = {}
    if args.timeout is not None:
        update["timeout"] = args.timeout
    if args.insecure:
        update["reject_unauthorized"] = False
    if args.ca is not None:
        update["ca"] = str(args.ca)
    return (base or ClientOptions()).model_copy(update=update)


def build_request_options(args: RequestArgs) -> dict[str, Any]:
    """Collect per-call options from the parsed arguments."""
    options: dict[str, Any] = {}
    if args.query:
        query: dict[str, Any] = {}
        for key, value in args.query:
            # Repeated keys become a list
            if key in query:
                existing = query[key]
                query[key] = existing + [value] if isinstance(existing, list) else [existing, value]
            else:
                query[key] = value
        options["query"] = query
    if args.headers:
        options["headers"] = dict(args.headers)
    if args.json_body is not None:
        options["json"] = args.json_body
    elif args.form:
        options["form"] = dict(args.form)
    elif args.text is not None:
        options["text"] = args.text
    if args.token:
        options["token"] = args.token
    elif args.basic:
        options["basic"] = args.basic
    elif args.user:
        options["user"] = args.user
        options["password"] = args.password
    return options


async def run_request(args: RequestArgs) -> int:
    """Run one request. Returns the process exit code."""
    base_url = args.base_url
    file_options: ClientOptions | None = None
    if args.config is not None:
        try:
            file_base_url, file_options = load_client_file(args.config)
        except ConfigError as e:
            print(f"Error loading config: {e}", file=sys.stderr)
            return 1
        base_url = base_url or file_base_url
        if base_url is None:
            print("Error: no base URL given and none in config file", file=sys.stderr)
            return 1

    try:
        client = create_client(base_url, build_client_options(args, file_options))
    except ApiClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    async with client:
        try:
            response = await client.request(args.method, args.path, build_request_options(args))
        except TransportError as e:
            print(f"Request failed: {e}", file=sys.stderr)
            return 1
        except ApiClientError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    print(response.model_dump_json(indent=2, exclude_none=True))
    return 0


def main() -> int:
    """Main entry point."""
    try:
        args = parse_args()
        if args.verbose:
            logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
        return asyncio.run(run_request(args))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
