"""Command-line front end: list apps and grant/revoke camera or microphone."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Iterable, List, Optional

from tcc_manager.cli.common import add_common_cli_arguments, setup_logging_from_args
from tcc_manager.core.config_manager import EngineSettings, get_config_manager
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.models import AppRecord, ServiceKind
from tcc_manager.store.access import check_store_access_async
from tcc_manager.sync.orchestrator import ToggleOutcome, ToggleResult

from .engine import Engine, EngineLocations, build_engine

logger = get_module_logger("CLI")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNKNOWN_APP = 2


def _service(text: str) -> ServiceKind:
    try:
        return ServiceKind.parse(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    config_manager = get_config_manager()
    config = config_manager.read_config()
    default_log_level = config_manager.get_str(config, "log_level", default="warning")

    parser = argparse.ArgumentParser(
        prog="tcc-manager",
        description="Inspect and change camera/microphone permissions of installed apps",
    )
    add_common_cli_arguments(parser, default_log_level=default_log_level)

    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="List apps and their permissions")
    list_cmd.add_argument("--refresh", action="store_true", help="Ignore the cache and rediscover")
    list_cmd.add_argument("--search", default="", help="Only apps whose name, path or identifier contains this")
    list_cmd.add_argument("--json", action="store_true", help="Print JSON instead of a table")

    for name, verb in (("grant", "Grant"), ("revoke", "Revoke")):
        cmd = commands.add_parser(name, help=f"{verb} a permission")
        cmd.add_argument("app", help="Bundle path (/Applications/Foo.app) or app name")
        cmd.add_argument("service", type=_service, help="camera or microphone")

    commands.add_parser("refresh", help="Rediscover all apps and requery the store")
    commands.add_parser("check-access", help="Check that the authorization store is readable")
    commands.add_parser("cache-path", help="Print the cache file location")
    commands.add_parser("clear-cache", help="Delete the cache file")

    return parser.parse_args(argv)


def format_table(records: Iterable[AppRecord]) -> str:
    rows = [("CAM", "MIC", "NAME", "IDENTIFIER")]
    for record in records:
        rows.append((
            "yes" if record.permissions.camera else "-",
            "yes" if record.permissions.microphone else "-",
            record.name,
            record.identifier or "?",
        ))
    widths = [max(len(row[i]) for row in rows) for i in range(3)]
    return "\n".join(
        f"{row[0]:<{widths[0]}}  {row[1]:<{widths[1]}}  {row[2]:<{widths[2]}}  {row[3]}"
        for row in rows
    )


def describe_toggle(result: ToggleResult) -> str:
    if result.outcome is ToggleOutcome.SETTLED:
        state = "granted" if result.granted else "revoked"
        return f"{result.service.label} {state} for {result.path}"
    if result.outcome is ToggleOutcome.RECONCILED:
        state = "granted" if result.granted else "not granted"
        return f"{result.service.label} change not confirmed; store now reports {state} for {result.path}"
    return result.error or f"{result.service.label} change {result.outcome.value}"


async def _cmd_list(engine: Engine, args: argparse.Namespace) -> int:
    orchestrator = engine.orchestrator
    await orchestrator.start(force_refresh=args.refresh)
    records = orchestrator.filter_apps(args.search)
    if args.json:
        print(json.dumps([record.to_dict() for record in records], indent=2, sort_keys=True))
    else:
        print(format_table(records))
        print(f"\n{len(records)} application{'s' if len(records) != 1 else ''}")
    return EXIT_OK


async def _cmd_toggle(engine: Engine, args: argparse.Namespace, grant: bool) -> int:
    orchestrator = engine.orchestrator
    await orchestrator.start()

    record = orchestrator.find(args.app)
    if record is None and Path(args.app).suffix == ".app" and Path(args.app).is_dir():
        # Installed since the cache was written
        await orchestrator.refresh_all()
        record = orchestrator.find(args.app)
    if record is None:
        print(f"Unknown application: {args.app}", file=sys.stderr)
        return EXIT_UNKNOWN_APP

    result = await orchestrator.toggle(record.path, args.service, grant)
    await orchestrator.wait_for_background()
    stream = sys.stdout if result.confirmed else sys.stderr
    print(describe_toggle(result), file=stream)
    if orchestrator.last_error and orchestrator.last_error != result.error:
        print(f"warning: {orchestrator.last_error}", file=sys.stderr)
    return EXIT_OK if result.confirmed else EXIT_FAILED


async def _cmd_refresh(engine: Engine, args: argparse.Namespace) -> int:
    records = await engine.orchestrator.start(force_refresh=True)
    print(f"Refreshed {len(records)} applications")
    # the refreshed list is only useful once it is on disk
    return EXIT_FAILED if engine.orchestrator.last_error else EXIT_OK


async def _cmd_check_access(engine: Engine, args: argparse.Namespace) -> int:
    report = await check_store_access_async(engine.pool, engine.store.user_db)
    print(report.describe(), file=sys.stdout if report.ok else sys.stderr)
    return EXIT_OK if report.ok else EXIT_FAILED


async def _cmd_cache_path(engine: Engine, args: argparse.Namespace) -> int:
    print(engine.cache.path)
    return EXIT_OK


async def _cmd_clear_cache(engine: Engine, args: argparse.Namespace) -> int:
    return EXIT_OK if await engine.cache.clear() else EXIT_FAILED


async def run_command(engine: Engine, args: argparse.Namespace) -> int:
    handlers = {
        "list": _cmd_list,
        "refresh": _cmd_refresh,
        "check-access": _cmd_check_access,
        "cache-path": _cmd_cache_path,
        "clear-cache": _cmd_clear_cache,
    }
    try:
        if args.command in ("grant", "revoke"):
            return await _cmd_toggle(engine, args, args.command == "grant")
        code = await handlers[args.command](engine, args)
        if args.command in ("list", "refresh"):
            for problem in (engine.orchestrator.store_warning, engine.orchestrator.last_error):
                if problem:
                    print(f"warning: {problem}", file=sys.stderr)
        return code
    finally:
        await engine.orchestrator.close()


async def main(argv: Optional[List[str]] = None, *, locations: Optional[EngineLocations] = None) -> int:
    args = parse_args(argv)
    setup_logging_from_args(args)

    config = await get_config_manager().read_config_async(args.config)
    settings = EngineSettings.from_config(config)
    engine = build_engine(settings, locations)

    logger.debug("Running command %s", args.command)
    return await run_command(engine, args)


__all__ = ["main", "parse_args", "run_command", "format_table", "describe_toggle"]
