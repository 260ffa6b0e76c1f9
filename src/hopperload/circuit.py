import logging
from enum import Enum

logger = logging.getLogger(__name__)

MAX_PROBE_ATTEMPTS = 3
FAILURE_THRESHOLD = 5


class WorkerState(Enum):
    IDLE = "idle"
    PROBING = "probing"
    ACTIVE = "active"
    CIRCUIT_OPEN = "circuit_open"
    TERMINATED = "terminated"


class WorkerCircuit:
    """Per-worker probe budget and consecutive-failure circuit breaker.

    IDLE -> PROBING on the first cycle, PROBING -> ACTIVE once a cycle is
    settled, ACTIVE -> PROBING for every following cycle. Reaching the
    failure threshold moves to CIRCUIT_OPEN; any state ends in TERMINATED.
    """

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        max_probe_attempts: int = MAX_PROBE_ATTEMPTS,
        name: str = "",
    ):
        assert failure_threshold >= 1 and max_probe_attempts >= 1
        self.failure_threshold = failure_threshold
        self.max_probe_attempts = max_probe_attempts
        self.name = name
        self.state = WorkerState.IDLE
        self.failures = 0
        self.probes = 0
        logger.debug(
            f"Initialized circuit {name}: threshold={failure_threshold}, probes={max_probe_attempts}"
        )

    @property
    def is_open(self) -> bool:
        return self.state is WorkerState.CIRCUIT_OPEN

    @property
    def is_terminated(self) -> bool:
        return self.state is WorkerState.TERMINATED

    def begin_cycle(self) -> None:
        if self.state not in (WorkerState.IDLE, WorkerState.ACTIVE):
            raise RuntimeError(f"Cannot start a cycle from state {self.state.value}")
        self.state = WorkerState.PROBING
        self.probes = 0

    def can_probe(self) -> bool:
        return self.state is WorkerState.PROBING and self.probes < self.max_probe_attempts

    def record_probe(self) -> int:
        if self.state is not WorkerState.PROBING:
            raise RuntimeError(f"Cannot probe from state {self.state.value}")
        self.probes += 1
        return self.probes

    def record_success(self) -> None:
        self._require_live()
        if self.failures > 0:
            logger.debug(f"Circuit {self.name}: recorded success, resetting failures")
        self.failures = 0
        self.state = WorkerState.ACTIVE

    def record_failure(self) -> None:
        self._require_live()
        self.failures += 1
        if self.failures >= self.failure_threshold:
            logger.debug(f"Circuit {self.name} OPEN after {self.failures} consecutive failures")
            self.state = WorkerState.CIRCUIT_OPEN
        else:
            self.state = WorkerState.ACTIVE

    def terminate(self) -> None:
        self.state = WorkerState.TERMINATED

    def _require_live(self) -> None:
        if self.state in (WorkerState.CIRCUIT_OPEN, WorkerState.TERMINATED):
            raise RuntimeError(f"Circuit {self.name} is {self.state.value}")
