#!/usr/bin/env python3
# cli.py: command line entry point for hopperload

import argparse
import asyncio
import logging
import os
import sys
import webbrowser

from rich.console import Console
from rich.table import Table

from hopperload.client import RoutingClient
from hopperload.core import LoadOrchestrator
from hopperload.errors import ConfigurationError
from hopperload.logging_config import setup_logging
from hopperload.models import DEFAULT_OUTPUT_FILE, DEFAULT_SERVER_URL, RunConfig
from hopperload.rendering import render_latency_histogram, render_summary, render_timeline
from hopperload.report import default_output_path, write_html_report
from hopperload.utils import CancellationToken, GracefulKiller, parse_coordinate


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Hopperload: staggered concurrent load tests for GraphHopper-style routing services",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    # Target service
    parser.add_argument(
        "-u",
        "--url",
        default=os.getenv("HOPPERLOAD_URL", DEFAULT_SERVER_URL),
        help="Routing server URL (env: HOPPERLOAD_URL)",
    )
    parser.add_argument(
        "-c",
        "--center",
        default="51.5074,-0.1278",
        help="Center point latitude,longitude. Examples: London(51.5074,-0.1278), "
        "Berlin(52.5200,13.4050), NYC(40.7128,-74.0060)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Per-request timeout in seconds",
    )

    # Load shape
    parser.add_argument("-d", "--duration", type=float, default=10, help="Test duration in minutes")
    parser.add_argument(
        "-i",
        "--thread-interval",
        type=float,
        default=1,
        help="Interval between worker starts in minutes",
    )
    parser.add_argument(
        "-r",
        "--request-delay",
        type=int,
        default=1000,
        help="Delay between a worker's requests in milliseconds",
    )
    parser.add_argument("-t", "--target-radius", type=float, default=5.0, help="Target radius in km")
    parser.add_argument(
        "-s", "--source-radius-min", type=float, default=40.0, help="Source radius minimum in km"
    )
    parser.add_argument(
        "-S", "--source-radius-max", type=float, default=50.0, help="Source radius maximum in km"
    )
    parser.add_argument(
        "--no-instructions",
        action="store_true",
        help="Disable route instructions in requests",
    )
    parser.add_argument(
        "--validate-coordinates",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Check that the center point has routable data before starting",
    )

    # Output
    parser.add_argument("-o", "--output", default=DEFAULT_OUTPUT_FILE, help="Output HTML file path")
    parser.add_argument("-n", "--test-name", default=None, help="Test name to display in the report")
    parser.add_argument(
        "--open-report",
        action="store_true",
        help="Open the HTML report in the default browser when done",
    )
    parser.add_argument("--no-progress", action="store_true", help="Disable the progress bar")

    # Logging & Debugging
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug-level logging")
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Optional file to write logs to (e.g., hopperload.log)",
    )

    return parser.parse_args(argv)


def build_config(args) -> RunConfig:
    return RunConfig.create(
        server_url=args.url,
        center=parse_coordinate(args.center),
        duration_minutes=args.duration,
        start_interval_minutes=args.thread_interval,
        request_delay_ms=args.request_delay,
        target_radius_km=args.target_radius,
        source_radius_min_km=args.source_radius_min,
        source_radius_max_km=args.source_radius_max,
        output_file=default_output_path(args.output),
        include_instructions=not args.no_instructions,
        test_name=args.test_name,
        request_timeout_s=args.timeout,
        validate_coordinates=args.validate_coordinates,
    )


def print_configuration(config: RunConfig, console: Console) -> None:
    table = Table(title="Routing Load Test", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    if config.test_name:
        table.add_row("Test Name", config.test_name)
    table.add_row("Server URL", config.server_url)
    table.add_row("Center Point", str(config.center))
    table.add_row("Test Duration", f"{config.duration_minutes:g} minutes")
    table.add_row("Worker Start Interval", f"{config.start_interval_minutes:g} minute(s)")
    table.add_row("Request Delay", f"{config.request_delay_ms}ms")
    table.add_row("Target Radius", f"{config.target_radius_km:g}km")
    table.add_row(
        "Source Radius", f"{config.source_radius_min_km:g}-{config.source_radius_max_km:g}km"
    )
    table.add_row("Include Instructions", str(config.include_instructions))
    table.add_row("Output File", config.output_file)
    console.print(table)
    console.print(
        "Note: use center coordinates in well-connected urban areas with routing data coverage; "
        "remote areas and water bodies make most requests fail.\n"
    )


async def run(args) -> int:
    log_level = "DEBUG" if args.verbose else "INFO"
    setup_logging(level=log_level, log_file=args.log_file)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        logging.error(f"Invalid configuration: {e}")
        return 1

    console = Console()
    print_configuration(config, console)

    token = CancellationToken()
    killer = GracefulKiller(token)

    async with RoutingClient.open(config) as client:
        if not await client.check_health(token):
            logging.warning("Connectivity test failed, but continuing anyway...")

        if config.validate_coordinates and not await client.validate_center(token):
            logging.error(
                "Center point validation failed. The specified coordinates may not have "
                "accessible routing data."
            )
            logging.info(
                "Try coordinates in a well-connected urban area, or disable validation "
                "with --no-validate-coordinates"
            )
            return 1

        logging.info("Starting load test... Press Ctrl+C to stop the test early.")
        orchestrator = LoadOrchestrator(
            config,
            client,
            use_progress_bar=not args.no_progress and console.is_terminal,
        )
        killer.install()
        try:
            stats = await orchestrator.run(token)
        finally:
            killer.uninstall()

    print("\n" + "=" * 60)
    print(render_summary(stats))
    print()
    print(render_latency_histogram(stats.latencies_ms))
    print()
    print(render_timeline(stats.outcomes, stats.started_at))
    print("=" * 60)

    try:
        report_path = write_html_report(stats, config)
    except OSError as e:
        logging.error(f"Failed to write report to {config.output_file}: {e}")
        return 1

    full_path = report_path.resolve()
    logging.info(f"Results saved to: {full_path}")

    if args.open_report:
        logging.info("Opening report in default browser...")
        if not webbrowser.open(full_path.as_uri()):
            logging.warning(f"Failed to open report; open it manually at: {full_path}")

    return 0


def main(argv=None):
    sys.exit(asyncio.run(run(parse_args(argv))))


if __name__ == "__main__":
    main()
