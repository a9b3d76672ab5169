from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import InvalidEndpoint, InvalidSchema
from .logging_setup import configure_logging
from .orchestrator import BootstrapSettings, Status, run_bootstrap
from .prober import probe
from .runtime_config import load_runtime_config
from .schema import load_descriptor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PROVISIONING_FAILED = 1
EXIT_PROBE_FAILED = 3
EXIT_INVALID_SCHEMA = 4
EXIT_INVALID_ENDPOINT = 5

_STATUS_EXIT = {
    Status.SUCCESS: EXIT_OK,
    Status.PROVISIONING_FAILED: EXIT_PROVISIONING_FAILED,
    Status.PROBE_FAILED: EXIT_PROBE_FAILED,
}


def _ms(value: Optional[int]) -> Optional[float]:
    return None if value is None else value / 1000.0


def _bounded(cast, minimum, label):
    def _parse(value: str):
        try:
            n = cast(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid {label} value: {value!r}")
        if n < minimum:
            raise argparse.ArgumentTypeError(f"must be >= {minimum}, got {value}")
        return n
    return _parse


_positive_int = _bounded(int, 1, "int")
_non_negative_int = _bounded(int, 0, "int")
_non_negative_float = _bounded(float, 0, "float")


def _emit(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


def _install_cancel_handlers(cancel: threading.Event) -> None:
    def _handler(signum, _frame):
        logger.warning("cancellation requested", extra={"signal": signum})
        cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            signal.signal(sig, _handler)
        except ValueError:
            # not on the main thread (embedded use); caller owns cancellation
            pass


def _settings(args: argparse.Namespace, **extra: Any) -> BootstrapSettings:
    cfg = load_runtime_config(Path(args.config) if args.config else None)
    return BootstrapSettings.from_config(
        cfg,
        endpoint=args.endpoint,
        region=args.region,
        max_attempts=args.max_attempts,
        interval=_ms(args.interval),
        timeout=_ms(args.timeout),
        **extra,
    )


def _load_schema(source: str):
    try:
        return load_descriptor(source)
    except InvalidSchema as exc:
        for problem in exc.problems:
            print(f"invalid schema: {problem}", file=sys.stderr)
        return None


def cmd_bootstrap(args: argparse.Namespace) -> int:
    descriptor = _load_schema(args.schema)
    if descriptor is None:
        return EXIT_INVALID_SCHEMA
    settings = _settings(
        args,
        workers=args.workers,
        wait_active=False if args.no_wait_active else None,
        active_timeout=args.active_timeout,
        dry_run=True if args.dry_run else None,
    )
    cancel = threading.Event()
    _install_cancel_handlers(cancel)
    try:
        report = run_bootstrap(descriptor, settings, cancel=cancel)
    except InvalidEndpoint as exc:
        print(f"invalid endpoint: {exc}", file=sys.stderr)
        return EXIT_INVALID_ENDPOINT
    for line in report.to_lines():
        _emit(line)
    if report.error:
        print(report.error, file=sys.stderr)
    return _STATUS_EXIT[report.status]


def cmd_probe(args: argparse.Namespace) -> int:
    settings = _settings(args)
    cancel = threading.Event()
    _install_cancel_handlers(cancel)
    try:
        result = probe(
            settings.endpoint,
            settings.max_attempts,
            settings.interval,
            settings.timeout,
            cancel=cancel,
            region=settings.region,
        )
    except InvalidEndpoint as exc:
        print(f"invalid endpoint: {exc}", file=sys.stderr)
        return EXIT_INVALID_ENDPOINT
    _emit(json.dumps(result.to_dict(), ensure_ascii=False))
    return EXIT_OK if result.ready else EXIT_PROBE_FAILED


def cmd_validate(args: argparse.Namespace) -> int:
    descriptor = _load_schema(args.schema)
    if descriptor is None:
        return EXIT_INVALID_SCHEMA
    for spec in descriptor:
        out: Dict[str, Any] = {
            "table": spec.name,
            "key": spec.primary_key.render(),
            "sort_key": spec.sort_key.render() if spec.sort_key else None,
            "read_capacity": spec.read_capacity,
            "write_capacity": spec.write_capacity,
        }
        _emit(json.dumps(out, ensure_ascii=False))
    return EXIT_OK


def _add_endpoint_args(parser: argparse.ArgumentParser) -> None:
    """Arguments shared by every subcommand that talks to the store."""
    parser.add_argument("--endpoint", default=None, help="Store endpoint URL (default: DYNAMO_LOCAL_URL or AWS)")
    parser.add_argument("--region", default=None)
    parser.add_argument("--max-attempts", type=_positive_int, default=None, help="Readiness probe attempts")
    parser.add_argument("--interval", type=_non_negative_int, default=None, help="Initial probe interval in ms (doubles, capped at 8x)")
    parser.add_argument("--timeout", type=_positive_int, default=None, help="Per-call timeout in ms")
    parser.add_argument("--config", default=None, help="TOML config (default: BOOTSTRAP_CONFIG or config/bootstrap.toml)")
    parser.add_argument("--debug", action="store_true")


def _add_bootstrap_args(parser: argparse.ArgumentParser) -> None:
    _add_endpoint_args(parser)
    parser.add_argument("--schema", required=True, help="Schema file (.json/.toml) or inline JSON")
    parser.add_argument("--workers", type=_positive_int, default=None, help="Parallel CreateTable calls")
    parser.add_argument("--no-wait-active", action="store_true", help="Do not wait for tables to become ACTIVE")
    parser.add_argument("--active-timeout", type=_non_negative_float, default=None, help="Seconds to wait for ACTIVE")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ddb-bootstrap", description="Wait for a DynamoDB endpoint and provision tables")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_boot = sub.add_parser("bootstrap", help="Probe, diff and create missing tables")
    _add_bootstrap_args(p_boot)
    p_boot.add_argument("--dry-run", action="store_true", help="Report the plan without creating tables")
    p_boot.set_defaults(func=cmd_bootstrap)

    p_plan = sub.add_parser("plan", help="Probe and diff only (bootstrap --dry-run)")
    _add_bootstrap_args(p_plan)
    p_plan.set_defaults(func=cmd_bootstrap, dry_run=True)

    p_probe = sub.add_parser("probe", help="Wait until the endpoint answers")
    _add_endpoint_args(p_probe)
    p_probe.set_defaults(func=cmd_probe)

    p_val = sub.add_parser("validate", help="Parse a schema document without touching the store")
    p_val.add_argument("--schema", required=True)
    p_val.add_argument("--debug", action="store_true")
    p_val.set_defaults(func=cmd_validate)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging("DEBUG" if getattr(args, "debug", False) else None)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
