"""
Quick sanity test: a short staggered load run against the local routing simulator.
Start the simulator first: hopperload-simulator --port 8989
Run: uv run examples/run_against_simulator.py
"""
import asyncio
import os

from hopperload import Coordinate, LoadOrchestrator, RoutingClient, RunConfig
from hopperload.rendering import render_latency_histogram, render_summary, render_timeline


async def main():
    config = RunConfig(
        server_url=os.getenv("HOPPERLOAD_URL", "http://localhost:8989"),
        center=Coordinate(52.5200, 13.4050),
        duration_minutes=0.5,
        start_interval_minutes=0.1,
        request_delay_ms=200,
        request_timeout_s=float(os.getenv("HTTP_REQUEST_TIMEOUT_S", "10")),
        test_name="simulator smoke run",
    )
    async with RoutingClient.open(config) as client:
        stats = await LoadOrchestrator(config, client, use_progress_bar=True).run()

    print(render_summary(stats))
    print(render_latency_histogram(stats.latencies_ms, bins=24))
    print(render_timeline(stats.outcomes, stats.started_at, width=100))


if __name__ == "__main__":
    asyncio.run(main())
