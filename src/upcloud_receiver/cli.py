"""
Command line interface for the UpCloud metrics receiver.

Commands:
    upcloud-receiver run [--config PATH] [--exporter log|otel]
    upcloud-receiver scrape-once [--config PATH] [--output text|json]
    upcloud-receiver validate-config [--config PATH]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Sequence

import structlog
from rich.console import Console
from rich.table import Table

from upcloud_receiver import __version__
from upcloud_receiver.config.loader import get_config_path, load_config
from upcloud_receiver.config.settings import ReceiverConfig
from upcloud_receiver.consumers import (
    CollectingConsumer,
    LoggingConsumer,
    MetricsConsumer,
    OpenTelemetryConsumer,
    create_meter_provider,
)
from upcloud_receiver.core.errors import (
    ExitCode,
    ReceiverError,
    format_error_message,
    main_with_error_handling,
)
from upcloud_receiver.factory import create_receiver
from upcloud_receiver.logging import configure_logging
from upcloud_receiver.metrics.models import MetricBatch

logger = structlog.get_logger()

console = Console()

DEFAULT_SHUTDOWN_TIMEOUT = 30.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="upcloud-receiver",
        description="Scrape UpCloud managed service metrics",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--log-format",
        default="json",
        choices=["json", "console"],
        help="Log output format (default: json)",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run the receiver until interrupted")
    run_parser.add_argument("--config", "-c", help="Path to config file")
    run_parser.add_argument(
        "--exporter",
        choices=["log", "otel"],
        default="log",
        help="Where to send metrics (default: log)",
    )
    run_parser.add_argument(
        "--otlp-endpoint",
        help="OTLP/HTTP metrics endpoint for --exporter otel (default: console)",
    )
    run_parser.add_argument(
        "--shutdown-timeout",
        type=float,
        default=DEFAULT_SHUTDOWN_TIMEOUT,
        help=f"Seconds to wait for a clean shutdown (default: {DEFAULT_SHUTDOWN_TIMEOUT:g})",
    )

    once_parser = subparsers.add_parser("scrape-once", help="Run a single scrape cycle")
    once_parser.add_argument("--config", "-c", help="Path to config file")
    once_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )

    validate_parser = subparsers.add_parser("validate-config", help="Validate a config file")
    validate_parser.add_argument("--config", "-c", help="Path to config file")

    return parser


def print_batch_table(batch: MetricBatch) -> None:
    """Print every data point of a batch as a table."""
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Resource")
    table.add_column("Metric")
    table.add_column("Series")
    table.add_column("Value", justify="right")
    table.add_column("Unit")
    table.add_column("Timestamp")

    for resource in batch.resource_metrics:
        for metric in resource.metrics:
            for point in metric.points:
                table.add_row(
                    resource.resource_uuid,
                    metric.name,
                    point.series,
                    f"{point.value:g}",
                    metric.unit,
                    point.timestamp.isoformat(),
                )

    console.print(table)
    console.print(
        f"{len(batch)} resource(s), {batch.data_point_count} data point(s)",
        style="dim",
    )


async def _run_receiver(
    config: ReceiverConfig,
    consumer: MetricsConsumer,
    shutdown_timeout: float,
) -> None:
    receiver = create_receiver(config, consumer)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop.set)

    receiver.start()
    try:
        await stop.wait()
        logger.info("shutdown_requested")
    finally:
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
        await receiver.shutdown(timeout=shutdown_timeout)


def run_command(
    config_path: str | None,
    exporter: str = "log",
    otlp_endpoint: str | None = None,
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
) -> int:
    config = load_config(config_path)

    consumer: MetricsConsumer
    if exporter == "otel":
        provider = create_meter_provider(
            otlp_endpoint, export_interval_seconds=config.collection_interval
        )
        consumer = OpenTelemetryConsumer(provider)
    else:
        provider = None
        consumer = LoggingConsumer()

    try:
        asyncio.run(_run_receiver(config, consumer, shutdown_timeout))
    finally:
        if provider is not None:
            provider.shutdown()
    return ExitCode.SUCCESS


async def _scrape_once(config: ReceiverConfig) -> tuple[MetricBatch, list[Exception]]:
    consumer = CollectingConsumer()
    receiver = create_receiver(config, consumer)
    try:
        result = await receiver.scrape_once()
    finally:
        await receiver.shutdown()
    return result.batch, result.errors


def scrape_once_command(config_path: str | None, output_format: str = "text") -> int:
    """
    Run one scrape cycle and print the result.

    Exit codes:
        0 - Every target scraped
        11 - At least one target or discovery request failed
    """
    config = load_config(config_path)
    batch, errors = asyncio.run(_scrape_once(config))

    if output_format == "json":
        payload = batch.to_dict()
        payload["errors"] = [str(err) for err in errors]
        print(json.dumps(payload, indent=2))
    else:
        print_batch_table(batch)
        for err in errors:
            message = format_error_message(err) if isinstance(err, ReceiverError) else str(err)
            console.print(f"[red]error:[/red] {message}", highlight=False)

    return ExitCode.API_ERROR if errors else ExitCode.SUCCESS


def validate_config_command(config_path: str | None) -> int:
    path = get_config_path(config_path)
    config = load_config(path)

    enabled = []
    if config.managed_databases.enabled:
        enabled.append("managed_databases")
    if config.managed_load_balancers.enabled:
        enabled.append("managed_load_balancers")

    console.print(f"[green]✓[/green] {path or 'defaults'} is valid")
    console.print(f"  endpoint: {config.api.endpoint}")
    console.print(f"  collection_interval: {config.collection_interval:g}s")
    console.print(f"  enabled: {', '.join(enabled)}")
    return ExitCode.SUCCESS


@main_with_error_handling()
def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level, json_output=args.log_format == "json")

    if args.command == "run":
        return run_command(
            args.config,
            exporter=args.exporter,
            otlp_endpoint=args.otlp_endpoint,
            shutdown_timeout=args.shutdown_timeout,
        )
    if args.command == "scrape-once":
        return scrape_once_command(args.config, output_format=args.output)
    if args.command == "validate-config":
        return validate_config_command(args.config)

    parser.print_help()
    return 1


if __name__ == "__main__":  # pragma: no cover - exercised via module entrypoint
    raise SystemExit(main())
