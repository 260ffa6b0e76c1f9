import asyncio
import logging
import random
from enum import Enum
from typing import Optional, Protocol

from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from .circuit import FAILURE_THRESHOLD, MAX_PROBE_ATTEMPTS, WorkerCircuit
from .coordinates import sample_in_annulus, sample_within_radius
from .metrics import compute_stats
from .models import Coordinate, ObservationSet, RouteOutcome, RouteRequest, RunConfig, Statistics
from .utils import CancellationToken, now, utcnow

logger = logging.getLogger(__name__)


class RouteFetcher(Protocol):
    async def fetch_route(
        self,
        request: RouteRequest,
        token: Optional[CancellationToken] = None,
        keep_payload: bool = False,
    ) -> RouteOutcome: ...


class RunState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    DRAINING = "draining"
    COMPLETED = "completed"


class Worker:
    """Issues route requests toward one fixed target until the run ends.

    Each cycle probes up to ``max_probe_attempts`` random sources; the first
    successful probe is the cycle's measured observation. When every probe
    fails, the last failed probe is recorded instead and the cycle counts
    toward the circuit breaker.
    """

    def __init__(
        self,
        worker_id: int,
        target: Coordinate,
        config: RunConfig,
        client: RouteFetcher,
        observations: ObservationSet,
        end_time: float,
        token: CancellationToken,
        rng: Optional[random.Random] = None,
        failure_threshold: int = FAILURE_THRESHOLD,
        max_probe_attempts: int = MAX_PROBE_ATTEMPTS,
    ) -> None:
        self.worker_id = worker_id
        self.target = target
        self.config = config
        self.client = client
        self.observations = observations
        self.end_time = end_time
        self.token = token
        self.rng = rng
        self.circuit = WorkerCircuit(failure_threshold, max_probe_attempts, name=f"W{worker_id}")

        self.cycles = 0
        self.requests = 0
        self.recorded = 0
        self.delays = 0
        self._has_payload = False

    def _finished(self) -> bool:
        return self.token.cancelled or now() >= self.end_time

    async def _probe_cycle(self) -> Optional[RouteOutcome]:
        self.circuit.begin_cycle()
        outcome = None
        while self.circuit.can_probe() and not self._finished():
            attempt = self.circuit.record_probe()
            source = sample_in_annulus(
                self.target,
                self.config.source_radius_min_km,
                self.config.source_radius_max_km,
                self.rng,
            )
            request = RouteRequest(
                source=source, target=self.target, issued_at=utcnow(), worker_id=self.worker_id
            )
            outcome = await self.client.fetch_route(
                request, self.token, keep_payload=not self._has_payload
            )
            self.requests += 1
            if outcome.success:
                return outcome
            logger.debug(
                f"[W{self.worker_id}] Probe {attempt}/{self.circuit.max_probe_attempts} "
                f"from {source} rejected: {outcome.error_detail}"
            )
        return outcome

    async def run(self) -> None:
        logger.info(f"[W{self.worker_id}] Started with target {self.target}")
        while not self._finished():
            self.cycles += 1
            try:
                outcome = await self._probe_cycle()
            except Exception:
                logger.exception(f"[W{self.worker_id}] Unexpected error during cycle {self.cycles}")
                self.circuit.record_failure()
            else:
                if outcome is None:
                    # Run ended before the first probe went out
                    break
                self.observations.append(outcome)
                self.recorded += 1
                if outcome.success:
                    self._has_payload = self._has_payload or outcome.raw_payload is not None
                    self.circuit.record_success()
                else:
                    self.circuit.record_failure()

                if self.recorded % 10 == 0:
                    logger.debug(
                        f"[W{self.worker_id}] Completed {self.recorded} requests. "
                        f"Last response time: {outcome.latency_ms:.0f}ms"
                    )

            if self.circuit.is_open:
                logger.warning(
                    f"[W{self.worker_id}] Stopping after {self.circuit.failures} consecutive failures"
                )
                break
            if self._finished():
                break
            await self.token.sleep(min(self.config.request_delay_s, self.end_time - now()))
            self.delays += 1

        self.circuit.terminate()
        logger.info(f"[W{self.worker_id}] Completed with {self.recorded} requests")


class LoadOrchestrator:
    def __init__(
        self,
        config: RunConfig,
        client: RouteFetcher,
        rng: Optional[random.Random] = None,
        use_progress_bar: bool = False,
    ) -> None:
        self.config = config
        self.client = client
        self.rng = rng
        self.use_progress_bar = use_progress_bar

        self.state = RunState.NOT_STARTED
        self.observations = ObservationSet()
        self.workers: list[Worker] = []
        # Seconds after run start at which each worker was spawned
        self.worker_start_offsets: list[float] = []

    async def _track_progress(self, progress: Progress, task_id, t0: float) -> None:
        while True:
            progress.update(
                task_id,
                completed=min(now() - t0, self.config.duration_s),
                description=(
                    f"[cyan]{len(self.workers)} workers | {len(self.observations)} requests"
                ),
            )
            await asyncio.sleep(0.5)

    def _spawn_worker(self, end_time: float, token: CancellationToken) -> asyncio.Task:
        worker_id = len(self.workers) + 1
        target = sample_within_radius(self.config.center, self.config.target_radius_km, self.rng)
        worker = Worker(
            worker_id,
            target,
            self.config,
            self.client,
            self.observations,
            end_time,
            token,
            rng=self.rng,
        )
        self.workers.append(worker)
        logger.info(f"Starting worker {worker_id} with target {target}")
        return asyncio.create_task(worker.run(), name=f"hopperload-worker-{worker_id}")

    async def run(self, token: Optional[CancellationToken] = None) -> Statistics:
        if self.state is not RunState.NOT_STARTED:
            raise RuntimeError("A LoadOrchestrator can only run once")
        token = token or CancellationToken()
        config = self.config

        self.state = RunState.RUNNING
        started_at = utcnow()
        t0 = now()
        end_time = t0 + config.duration_s
        logger.info(f"Starting load test at {started_at:%Y-%m-%d %H:%M:%S} UTC")
        logger.info(f"Test will run for {config.duration_minutes:g} minutes")
        logger.info(f"Routing service URL: {config.server_url}")
        logger.info(f"Center point: {config.center}")

        progress = None
        progress_task = None
        if self.use_progress_bar:
            progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TimeElapsedColumn(),
            )
            progress.start()
            task_id = progress.add_task("[cyan]Starting...", total=config.duration_s)
            progress_task = asyncio.create_task(self._track_progress(progress, task_id, t0))

        tasks: list[asyncio.Task] = []
        try:
            while now() < end_time and not token.cancelled:
                self.worker_start_offsets.append(now() - t0)
                tasks.append(self._spawn_worker(end_time, token))

                next_start = t0 + len(tasks) * config.start_interval_s
                if next_start >= end_time:
                    await token.sleep(end_time - now())
                    break
                await token.sleep(next_start - now())

            self.state = RunState.DRAINING
            logger.info(f"All {len(tasks)} workers started. Waiting for completion...")
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for worker, result in zip(self.workers, results):
                if isinstance(result, BaseException):
                    logger.error(f"[W{worker.worker_id}] Worker crashed: {result!r}")
        finally:
            for t in tasks:
                if not t.done():
                    t.cancel()
            if progress_task is not None:
                progress_task.cancel()
                await asyncio.gather(progress_task, return_exceptions=True)
            if progress is not None:
                progress.stop()
            self.observations.close()

        finished_at = utcnow()
        self.state = RunState.COMPLETED
        if token.cancelled:
            logger.info("Load test cancelled; reporting outcomes recorded so far")
        logger.info(f"Load test completed at {finished_at:%Y-%m-%d %H:%M:%S} UTC")

        stats = compute_stats(
            self.observations.outcomes(),
            started_at,
            finished_at,
            workers_started=len(self.workers),
        )
        logger.info(
            f"Run completed: {stats.total} requests, {stats.success} succeeded, "
            f"{stats.failed} failed | Success rate: {stats.success_rate:.2f}% | "
            f"Mean: {stats.mean_ms:.2f}ms | Min: {stats.min_ms:.2f}ms | "
            f"Max: {stats.max_ms:.2f}ms | Std: {stats.std_ms:.2f}ms"
        )
        return stats
