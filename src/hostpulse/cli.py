"""CLI interface for hostpulse."""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import time
from pathlib import Path

from . import __version__
from .config import HostPulseConfig, load_config
from .errors import HostPulseError
from .models import METRIC_KINDS


def _open_store(cfg: HostPulseConfig):
    from .storage import TelemetryStore

    return TelemetryStore(cfg.storage.db_path)


def _cmd_run(args: argparse.Namespace) -> None:
    """Run the sampling pipeline until interrupted."""
    cfg = load_config(args.config)

    from .service import TelemetryService

    exporters = []
    if cfg.mode == "online":
        from .exporter.otel import OtelExporter
        exporters.append(OtelExporter(cfg.otel, host_id=cfg.host_id))

    service = TelemetryService(cfg, exporters=exporters)

    stop = False

    def _handle_signal(_sig: int, _frame: object) -> None:
        nonlocal stop
        stop = True

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    settings = service.get_settings()
    service.start()
    print(f"hostpulse running (mode={cfg.mode}, interval={settings.sample_interval_ms}ms)")
    print("Press Ctrl+C to stop.\n")
    deadline = time.monotonic() + args.duration if args.duration else None
    try:
        while not stop:
            if deadline is not None and time.monotonic() >= deadline:
                break
            time.sleep(0.2)
    finally:
        service.shutdown()
    print(f"\nSampling stopped after {service.sampler.tick_count} ticks.")


def _cmd_query(args: argparse.Namespace) -> None:
    """Print stored rows of one kind as JSON lines."""
    cfg = load_config(args.config)
    with _open_store(cfg) as store:
        rows = store.query(args.kind, start_ms=args.start, end_ms=args.end, limit=args.limit)
    for row in rows:
        print(json.dumps(row))


def _cmd_export(args: argparse.Namespace) -> None:
    """Export stored rows as JSON or CSV."""
    cfg = load_config(args.config)
    with _open_store(cfg) as store:
        blob = store.export(args.format, start_ms=args.start, end_ms=args.end)
    if args.output:
        Path(args.output).parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as fh:
            fh.write(blob)
        print(f"Exported {args.format} to {args.output}")
    else:
        sys.stdout.write(blob)


def _cmd_prune(args: argparse.Namespace) -> None:
    """Delete rows older than the retention window."""
    cfg = load_config(args.config)
    days = args.days if args.days is not None else cfg.storage.retention_days
    with _open_store(cfg) as store:
        deleted = store.prune(days)
    total = sum(deleted.values())
    print(f"Pruned {total} rows older than {days:g} days")
    for kind, count in deleted.items():
        print(f"  {kind:<10} {count}")


def _cmd_settings(args: argparse.Namespace) -> None:
    cfg = load_config(args.config)
    print(json.dumps(cfg.sampler.settings.to_dict(), indent=2))


def _cmd_version(_args: argparse.Namespace) -> None:
    print(f"hostpulse {__version__}")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the hostpulse CLI."""
    parser = argparse.ArgumentParser(
        prog="hostpulse",
        description="Sample host resource metrics, keep live history and persist them",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to hostpulse.yaml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    # run
    run_p = sub.add_parser("run", help="Start sampling")
    run_p.add_argument("--duration", type=float, default=None,
                       help="Stop after this many seconds")
    run_p.set_defaults(func=_cmd_run)

    # query
    query_p = sub.add_parser("query", help="Print stored rows of one kind")
    query_p.add_argument("kind", choices=METRIC_KINDS)
    query_p.add_argument("--start", type=int, default=None, help="Start timestamp (ms)")
    query_p.add_argument("--end", type=int, default=None, help="End timestamp (ms)")
    query_p.add_argument("--limit", type=int, default=None, help="Maximum samples")
    query_p.set_defaults(func=_cmd_query)

    # export
    export_p = sub.add_parser("export", help="Export stored rows")
    export_p.add_argument("--format", "-f", choices=["json", "csv"], default="json")
    export_p.add_argument("--start", type=int, default=None, help="Start timestamp (ms)")
    export_p.add_argument("--end", type=int, default=None, help="End timestamp (ms)")
    export_p.add_argument("--output", "-o", default=None, help="Output file path")
    export_p.set_defaults(func=_cmd_export)

    # prune
    prune_p = sub.add_parser("prune", help="Delete rows older than the retention window")
    prune_p.add_argument("--days", type=float, default=None, help="Retention in days")
    prune_p.set_defaults(func=_cmd_prune)

    # settings
    settings_p = sub.add_parser("settings", help="Print effective sampler settings")
    settings_p.set_defaults(func=_cmd_settings)

    # version
    ver_p = sub.add_parser("version", help="Print version")
    ver_p.set_defaults(func=_cmd_version)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except HostPulseError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
