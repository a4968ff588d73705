"""Command-line entry point: ``ecs-exporter serve`` and ``ecs-exporter collect-once``."""

from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from typing import Sequence

import structlog
import uvicorn

from ecs_exporter import __version__
from ecs_exporter.api.main import create_app
from ecs_exporter.config import Settings, load_settings
from ecs_exporter.core.errors import ExitCode, StartupError, main_with_error_handling
from ecs_exporter.exporter import Exporter
from ecs_exporter.exposition.catalog import render_snapshot
from ecs_exporter.logging import configure_logging

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ecs-exporter",
        description="Expose ECS service and task state as Prometheus metrics.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default=None, help="Override ECS_EXPORTER_LOG_LEVEL")
    parser.add_argument(
        "--console-logs",
        action="store_true",
        help="Human-readable logs instead of JSON",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Poll ECS and serve /metrics and /health")
    serve_parser.add_argument("--host", default=None, help="Listen address")
    serve_parser.add_argument("--port", type=int, default=None, help="Listen port")
    serve_parser.add_argument("--interval", type=float, default=None, help="Poll interval in seconds")

    once_parser = subparsers.add_parser(
        "collect-once", help="Build one snapshot and print it in exposition format"
    )
    once_parser.add_argument(
        "--cluster",
        action="append",
        dest="clusters",
        default=None,
        help="Cluster to collect (repeatable); all clusters if omitted",
    )
    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, object] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.console_logs:
        overrides["log_json"] = False
    if getattr(args, "host", None):
        overrides["listen_host"] = args.host
    if getattr(args, "port", None):
        overrides["listen_port"] = args.port
    if getattr(args, "interval", None):
        overrides["poll_interval"] = args.interval
    return load_settings(**overrides)


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the scrape port up front so a taken port fails fast with a clear error."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise StartupError(
            f"Cannot bind {host}:{port}",
            details={"host": host, "port": port, "reason": str(exc)},
        ) from exc
    sock.set_inheritable(True)
    return sock


def serve(settings: Settings) -> int:
    sock = bind_socket(settings.listen_host, settings.listen_port)
    app = create_app(settings)
    config = uvicorn.Config(app, log_config=None, access_log=False)
    server = uvicorn.Server(config)
    logger.info(
        "exporter_starting",
        host=settings.listen_host,
        port=settings.listen_port,
        poll_interval=settings.poll_interval,
        region=settings.aws_region,
    )
    asyncio.run(server.serve(sockets=[sock]))
    return 0


def collect_once(settings: Settings, clusters: Sequence[str] | None) -> int:
    snapshot = asyncio.run(Exporter(settings).collect_once(clusters))
    sys.stdout.write(render_snapshot(snapshot))
    if snapshot.failed_clusters():
        return ExitCode.PARTIAL_FAILURE
    return ExitCode.SUCCESS


@main_with_error_handling()
def run(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    settings = _settings_from_args(args)
    configure_logging(settings.log_level, json_output=settings.log_json)

    if args.command == "serve":
        return serve(settings)
    return collect_once(settings, args.clusters)


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
