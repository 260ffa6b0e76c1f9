import asyncio
import json
import random

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from conftest import StubClient

from hopperload.circuit import WorkerState
from hopperload.client import RoutingClient
from hopperload.core import LoadOrchestrator, RunState, Worker
from hopperload.models import Coordinate, ObservationSet, RunConfig
from hopperload.utils import CancellationToken, now


def config_for(duration_s: float, interval_s: float, delay_ms: int = 10, **options) -> RunConfig:
    return RunConfig(
        duration_minutes=duration_s / 60.0,
        start_interval_minutes=interval_s / 60.0,
        request_delay_ms=delay_ms,
        **options,
    )


def make_worker(client, config=None, run_for_s: float = 10.0, token=None) -> Worker:
    return Worker(
        worker_id=1,
        target=Coordinate(51.5074, -0.1278),
        config=config or config_for(60, 60),
        client=client,
        observations=ObservationSet(),
        end_time=now() + run_for_s,
        token=token or CancellationToken(),
        rng=random.Random(1),
    )


# ────────────────────────────────
# Worker
# ────────────────────────────────


@pytest.mark.asyncio
async def test_worker_circuit_breaks_on_persistent_failure():
    client = StubClient(success=False)
    worker = make_worker(client)

    await asyncio.wait_for(worker.run(), timeout=5)

    assert worker.recorded == 5
    assert len(worker.observations) == 5
    assert worker.cycles == 5
    # Every cycle spent its full probe budget
    assert len(client.calls) == 15
    # No delay after the circuit opened
    assert worker.delays == 4
    assert worker.circuit.state is WorkerState.TERMINATED
    assert all(not o.success for o in worker.observations.outcomes())


@pytest.mark.asyncio
async def test_successful_probe_is_the_observation():
    client = StubClient(results=[False, False, True], success=False)
    worker = make_worker(client)

    await asyncio.wait_for(worker.run(), timeout=5)

    outcomes = worker.observations.outcomes()
    assert outcomes[0].success
    # The third probe's request is what got recorded, not a repeat call
    assert outcomes[0].request is client.calls[2][0]


@pytest.mark.asyncio
async def test_failed_cycle_records_only_its_last_probe():
    client = StubClient(results=[False, False, False, True], success=False)
    worker = make_worker(client)

    await asyncio.wait_for(worker.run(), timeout=5)

    first, second = worker.observations.outcomes()[:2]
    assert not first.success
    assert first.request is client.calls[2][0]
    recorded = {id(o.request) for o in worker.observations.outcomes()}
    assert id(client.calls[0][0]) not in recorded
    assert id(client.calls[1][0]) not in recorded
    assert second.success
    assert second.request is client.calls[3][0]


@pytest.mark.asyncio
async def test_probes_sample_fresh_sources_in_band():
    client = StubClient(success=False)
    worker = make_worker(client)

    await asyncio.wait_for(worker.run(), timeout=5)

    sources = {req.source for req, _ in client.calls}
    assert len(sources) == len(client.calls)
    assert all(req.target == worker.target for req, _ in client.calls)


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    # 4 failed cycles, 1 success, then 5 failed cycles
    client = StubClient(results=[False] * 12 + [True] + [False] * 15, success=False)
    worker = make_worker(client)

    await asyncio.wait_for(worker.run(), timeout=5)

    assert worker.recorded == 10
    assert [o.success for o in worker.observations.outcomes()].count(True) == 1


@pytest.mark.asyncio
async def test_unexpected_errors_count_toward_circuit():
    client = StubClient(error=RuntimeError("stub exploded"))
    worker = make_worker(client)

    await asyncio.wait_for(worker.run(), timeout=5)

    assert worker.cycles == 5
    assert worker.recorded == 0
    assert worker.delays == 4
    assert worker.circuit.is_terminated


@pytest.mark.asyncio
async def test_payload_requested_until_first_success():
    client = StubClient(results=[False, True], success=True)
    worker = make_worker(client, run_for_s=0.2)

    await asyncio.wait_for(worker.run(), timeout=5)

    keep_flags = [keep for _, keep in client.calls]
    assert keep_flags[:2] == [True, True]
    assert not any(keep_flags[2:])
    kept = [o for o in worker.observations.outcomes() if o.raw_payload is not None]
    assert len(kept) == 1


@pytest.mark.asyncio
async def test_worker_stops_at_end_time():
    client = StubClient(success=True)
    worker = make_worker(client, config=config_for(60, 60, delay_ms=20), run_for_s=0.3)

    started = now()
    await asyncio.wait_for(worker.run(), timeout=5)

    assert now() - started < 1.0
    assert worker.recorded >= 5
    assert worker.circuit.is_terminated


@pytest.mark.asyncio
async def test_worker_stops_on_cancellation():
    token = CancellationToken()
    client = StubClient(success=True, delay_s=0.01)
    worker = make_worker(client, config=config_for(60, 60, delay_ms=5000), token=token)

    asyncio.get_running_loop().call_later(0.1, token.cancel)
    started = now()
    await asyncio.wait_for(worker.run(), timeout=5)

    assert now() - started < 1.0
    assert worker.recorded == 1


# ────────────────────────────────
# Scheduler
# ────────────────────────────────


@pytest.mark.asyncio
async def test_workers_start_on_staggered_schedule():
    interval = 0.2
    orchestrator = LoadOrchestrator(
        config_for(5 * interval, interval, delay_ms=50), StubClient(), rng=random.Random(2)
    )

    stats = await asyncio.wait_for(orchestrator.run(), timeout=10)

    assert len(orchestrator.workers) == 5
    assert stats.workers_started == 5
    for n, offset in enumerate(orchestrator.worker_start_offsets):
        assert offset == pytest.approx(n * interval, abs=0.1)
    assert [w.worker_id for w in orchestrator.workers] == [1, 2, 3, 4, 5]
    assert orchestrator.state is RunState.COMPLETED


@pytest.mark.asyncio
async def test_targets_sampled_around_center():
    config = config_for(0.4, 0.1, target_radius_km=5.0)
    orchestrator = LoadOrchestrator(config, StubClient(), rng=random.Random(3))

    await asyncio.wait_for(orchestrator.run(), timeout=10)

    targets = [w.target for w in orchestrator.workers]
    assert len(set(targets)) == len(targets)
    for t in targets:
        assert abs(t.latitude - config.center.latitude) < 0.1
        assert abs(t.longitude - config.center.longitude) < 0.1


@pytest.mark.asyncio
async def test_orchestrator_runs_once():
    orchestrator = LoadOrchestrator(config_for(0.1, 0.1), StubClient())
    await orchestrator.run()
    with pytest.raises(RuntimeError):
        await orchestrator.run()


@pytest.mark.asyncio
async def test_cancellation_unwinds_run_and_keeps_outcomes():
    token = CancellationToken()
    orchestrator = LoadOrchestrator(config_for(60, 60, delay_ms=20), StubClient(delay_s=0.01))

    asyncio.get_running_loop().call_later(0.3, token.cancel)
    started = now()
    stats = await asyncio.wait_for(orchestrator.run(token), timeout=5)

    assert now() - started < 2.0
    assert stats.total > 0
    assert stats.total == len(orchestrator.observations)
    assert orchestrator.observations.closed
    assert orchestrator.state is RunState.COMPLETED


# ────────────────────────────────
# End to end
# ────────────────────────────────


@pytest.mark.asyncio
async def test_end_to_end_all_successful():
    config = config_for(0.5, 0.5, delay_ms=100, center=Coordinate(51.5074, -0.1278))
    client = StubClient(success=True, latency_ms=50.0, delay_s=0.05)
    orchestrator = LoadOrchestrator(config, client)

    stats = await asyncio.wait_for(orchestrator.run(), timeout=10)

    assert stats.workers_started == 1
    assert stats.total > 0
    assert stats.success_rate == 100.0
    assert stats.min_ms == pytest.approx(50.0)
    assert stats.max_ms == pytest.approx(50.0)
    assert stats.mean_ms == pytest.approx(50.0)
    assert stats.std_ms == pytest.approx(0.0)
    assert list(stats.first_success_per_worker) == [1]
    assert stats.first_success_per_worker[1].raw_payload is not None


@pytest.mark.asyncio
async def test_end_to_end_all_failing():
    config = config_for(1.0, 0.25, delay_ms=10)
    client = StubClient(success=False)
    orchestrator = LoadOrchestrator(config, client)

    stats = await asyncio.wait_for(orchestrator.run(), timeout=10)

    assert stats.success_rate == 0.0
    assert stats.success == 0
    assert stats.total == 5 * len(orchestrator.workers)
    for worker in orchestrator.workers:
        assert worker.recorded == 5
        assert worker.circuit.is_terminated
        assert client.calls_for(worker.worker_id) == 15


@pytest.mark.asyncio
async def test_end_to_end_against_http_server():
    async def route(request):
        assert len(request.query.getall("point")) == 2
        return web.Response(text=json.dumps({"paths": [{"distance": 1.0}]}))

    app = web.Application()
    app.router.add_get("/route", route)
    server = TestServer(app)
    await server.start_server()
    try:
        config = config_for(0.3, 0.1, delay_ms=20, server_url=f"http://{server.host}:{server.port}")
        async with RoutingClient.open(config) as client:
            stats = await asyncio.wait_for(LoadOrchestrator(config, client).run(), timeout=10)
    finally:
        await server.close()

    assert stats.workers_started == 3
    assert stats.total > 0
    assert stats.success_rate == 100.0
    assert stats.status_counts == {200: stats.total}


@pytest.mark.asyncio
async def test_run_with_progress_bar():
    orchestrator = LoadOrchestrator(config_for(0.2, 0.1), StubClient(), use_progress_bar=True)

    stats = await asyncio.wait_for(orchestrator.run(), timeout=5)

    assert stats.workers_started == 2
    assert orchestrator.state is RunState.COMPLETED
