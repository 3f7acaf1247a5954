from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import uuid
from typing import Any

from getmyid.config import ClientConfig, load_config, parse_timeout
from getmyid.errors import GetMyIdError
from getmyid.ipc.async_client import AsyncClient
from getmyid.ipc.unix_client import Client
from getmyid.logging import LOG_FORMATS, TRACE_LEVEL, parse_log_level, setup_logging, trace_context
from getmyid.types import Identity, RunnerRequest


log = logging.getLogger(__name__)

FIELDS = (
    "identity",
    "idm_url",
    "config_url",
    "token",
    "runner.identity",
    "runner.hostname",
    "runner.process",
    "runner.pid",
    "runner.uid",
    "runner.gid",
    "runner.instance_id",
    "runner.timestamp",
    "runner.extra",
)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="getmyid", description="Resolve this process's identity from the whoami daemon.")
    _add_logging_args(parser)
    parser.add_argument("--config-dir", default=None, help="Override config dir (default: ~/.config/getmyid)")

    sub = parser.add_subparsers(dest="cmd", required=True)

    get_p = sub.add_parser("get", help="Ask the daemon who we are")
    _add_logging_args(get_p)
    get_p.add_argument("--sock", default=None, help="Unix socket path (default: $GETMYID_SOCKET or /var/run/whoami.sock)")
    get_p.add_argument(
        "--timeout",
        default=argparse.SUPPRESS,
        help="Round-trip timeout in seconds; 0 disables (default: $GETMYID_TIMEOUT or 5)",
    )
    get_p.add_argument("--instance-id", type=int, default=None, help="Instance id sent as runner context")
    ts_group = get_p.add_mutually_exclusive_group()
    ts_group.add_argument("--timestamp", type=int, default=None, help="Unix timestamp sent as runner context")
    ts_group.add_argument("--now", action="store_true", help="Send the current time as runner timestamp")
    get_p.add_argument(
        "--extra",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra runner context; VALUE is parsed as JSON when possible (repeatable)",
    )
    get_p.add_argument("--async", dest="use_async", action="store_true", help="Use the asyncio client")
    get_p.add_argument("--field", choices=FIELDS, default=None, help="Print a single field instead of JSON")

    sim_p = sub.add_parser("simulate", help="Run a local whoami daemon emulator")
    _add_logging_args(sim_p)
    from getmyid.emulator.whoami_sim import build_parser as build_sim_parser

    build_sim_parser(sim_p)

    args = parser.parse_args(argv)

    if args.config_dir:
        # Passed through the environment so the config layer stays CLI-agnostic.
        os.environ["GETMYID_CONFIG_DIR"] = str(args.config_dir)

    if getattr(args, "trace", False):
        level = TRACE_LEVEL
    elif getattr(args, "verbose", False):
        level = logging.DEBUG
    else:
        level = parse_log_level(getattr(args, "log_level", None))

    setup_logging(
        level=level,
        log_format=str(getattr(args, "log_format", "pretty") or "pretty"),
        log_file=getattr(args, "log_file", None),
        no_color=bool(getattr(args, "no_color", False)),
    )

    trace_id = uuid.uuid4().hex[:12]
    with trace_context(trace_id):
        log.debug("CLI start", extra={"cmd": args.cmd})
        _dispatch(parser, args)


def _dispatch(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.cmd == "simulate":
        from getmyid.emulator.whoami_sim import run as run_simulator

        run_simulator(args)
        raise SystemExit(0)

    if args.cmd == "get":
        try:
            config = _client_config(args)
            runner = _runner_request(args)
        except ValueError as exc:
            parser.error(str(exc))

        try:
            identity = _resolve(config, runner, use_async=bool(args.use_async))
        except GetMyIdError as exc:
            log.error("Identity lookup failed", extra={"kind": exc.kind, "sock": config.socket_path})
            _print_json(exc.to_dict())
            raise SystemExit(1)

        if args.field:
            _print_field(identity, args.field)
        else:
            _print_json(identity.to_dict())
        raise SystemExit(0)

    raise SystemExit("error: unknown command")


def _client_config(args: argparse.Namespace) -> ClientConfig:
    kwargs: dict[str, Any] = {"socket_path": args.sock}
    if hasattr(args, "timeout"):
        kwargs["timeout"] = parse_timeout(args.timeout)
    return load_config(**kwargs)


def _runner_request(args: argparse.Namespace) -> RunnerRequest | None:
    request = RunnerRequest()
    if args.instance_id is not None:
        request.with_instance_id(args.instance_id)
    if args.timestamp is not None:
        request.with_timestamp(args.timestamp)
    elif args.now:
        request.with_current_timestamp()
    for item in args.extra:
        key, sep, raw = item.partition("=")
        if not sep or not key:
            raise ValueError(f"--extra expects KEY=VALUE, got {item!r}")
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            value = raw
        request.with_extra(key, value)
    return None if request.is_empty() else request


def _resolve(config: ClientConfig, runner: RunnerRequest | None, *, use_async: bool) -> Identity:
    if use_async:
        return asyncio.run(AsyncClient(config).get_identity_with_runner(runner))
    return Client(config).get_identity_with_runner(runner)


def _print_field(identity: Identity, name: str) -> None:
    value: Any = identity.to_dict()
    for part in name.split("."):
        value = value.get(part) if isinstance(value, dict) else None
    if value is None:
        value = ""
    elif isinstance(value, dict):
        value = json.dumps(value, sort_keys=True, separators=(",", ":"))
    sys.stdout.write(f"{value}\n")


def _print_json(payload: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, sort_keys=True, indent=2) + "\n")


def _add_logging_args(parser: argparse.ArgumentParser) -> None:
    # SUPPRESS defaults so flags before the subcommand survive the subparser.
    parser.add_argument(
        "--log-level",
        choices=["error", "warning", "info", "debug", "trace"],
        default=argparse.SUPPRESS,
        help="Logging level (default: info)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Alias for --log-level=debug",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Alias for --log-level=trace",
    )
    parser.add_argument("--log-file", default=argparse.SUPPRESS, help="Optional log file path")
    parser.add_argument(
        "--log-format",
        choices=list(LOG_FORMATS),
        default=argparse.SUPPRESS,
        help="Log output format (default: pretty)",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Disable ANSI colors in pretty logs",
    )


if __name__ == "__main__":
    main()
