import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .errors import ConfigurationError


DEFAULT_SERVER_URL = "http://localhost:8989"
DEFAULT_OUTPUT_FILE = "load-test-results.html"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        # Out-of-range values are clamped, never rejected
        object.__setattr__(self, "latitude", max(-90.0, min(90.0, float(self.latitude))))
        object.__setattr__(self, "longitude", max(-180.0, min(180.0, float(self.longitude))))

    def __str__(self) -> str:
        return f"{self.latitude:.6f},{self.longitude:.6f}"


DEFAULT_CENTER = Coordinate(51.5074, -0.1278)  # London


class RunConfig(BaseModel):
    """Immutable configuration snapshot for one load test run."""

    model_config = ConfigDict(frozen=True)

    server_url: str = DEFAULT_SERVER_URL
    center: Coordinate = DEFAULT_CENTER
    duration_minutes: float = 10.0
    start_interval_minutes: float = 1.0
    request_delay_ms: int = 1000
    target_radius_km: float = 5.0
    source_radius_min_km: float = 40.0
    source_radius_max_km: float = 50.0
    output_file: str = DEFAULT_OUTPUT_FILE
    include_instructions: bool = True
    test_name: Optional[str] = None
    request_timeout_s: float = 30.0
    validate_coordinates: bool = True

    @field_validator("server_url")
    @classmethod
    def _normalize_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("Server URL must not be empty")
        return value

    @field_validator("duration_minutes")
    @classmethod
    def _check_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Duration must be greater than 0")
        return value

    @field_validator("start_interval_minutes")
    @classmethod
    def _check_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Thread interval must be greater than 0")
        return value

    @field_validator("request_delay_ms")
    @classmethod
    def _check_delay(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Request delay must not be negative")
        return value

    @field_validator("target_radius_km", "source_radius_min_km", "source_radius_max_km")
    @classmethod
    def _check_radius(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Radius must not be negative")
        return value

    @field_validator("request_timeout_s")
    @classmethod
    def _check_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Request timeout must be greater than 0")
        return value

    @field_validator("test_name")
    @classmethod
    def _blank_name_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _check_radius_band(self) -> "RunConfig":
        if self.source_radius_min_km >= self.source_radius_max_km:
            raise ValueError("Source radius minimum must be less than maximum")
        return self

    @property
    def duration_s(self) -> float:
        return self.duration_minutes * 60.0

    @property
    def start_interval_s(self) -> float:
        return self.start_interval_minutes * 60.0

    @property
    def request_delay_s(self) -> float:
        return self.request_delay_ms / 1000.0

    @classmethod
    def create(cls, **options) -> "RunConfig":
        """Build a config, translating validation failures into ConfigurationError."""
        try:
            return cls(**options)
        except ValidationError as e:
            messages = []
            for err in e.errors():
                msg = err["msg"]
                if msg.startswith("Value error, "):
                    msg = msg[len("Value error, "):]
                loc = ".".join(str(p) for p in err["loc"])
                messages.append(f"{loc}: {msg}" if loc else msg)
            raise ConfigurationError("; ".join(messages)) from e


@dataclass(frozen=True)
class RouteRequest:
    source: Coordinate
    target: Coordinate
    issued_at: datetime
    worker_id: int

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return self.issued_at, self.worker_id


@dataclass(frozen=True)
class RouteOutcome:
    request: RouteRequest
    latency_ms: float
    success: bool
    completed_at: datetime
    error_detail: Optional[str] = None
    raw_payload: Optional[str] = None
    status: Optional[int] = None

    @property
    def worker_id(self) -> int:
        return self.request.worker_id


class ObservationSet:
    """Append-only outcome sink shared by every worker of a run."""

    def __init__(self) -> None:
        self._items: list[RouteOutcome] = []
        self._lock = threading.Lock()
        self._closed = False

    def append(self, outcome: RouteOutcome) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("ObservationSet is closed")
            self._items.append(outcome)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def outcomes(self) -> tuple[RouteOutcome, ...]:
        with self._lock:
            return tuple(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass(frozen=True)
class Statistics:
    total: int
    success: int
    failed: int
    success_rate: float
    mean_ms: float
    min_ms: float
    max_ms: float
    std_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float
    p99_ms: float
    started_at: datetime
    finished_at: datetime
    outcomes: tuple[RouteOutcome, ...] = ()
    first_success_per_worker: Mapping[int, RouteOutcome] = field(
        default_factory=lambda: MappingProxyType({})
    )
    status_counts: Mapping[int, int] = field(default_factory=lambda: MappingProxyType({}))
    workers_started: int = 0

    @property
    def elapsed_s(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    @property
    def throughput_per_minute(self) -> float:
        if self.elapsed_s == 0:
            return 0.0
        return self.total / self.elapsed_s * 60.0

    @property
    def latencies_ms(self) -> list[float]:
        return [o.latency_ms for o in self.outcomes if o.success]
