import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from hopperload.models import Coordinate, RouteOutcome, RouteRequest
from hopperload.utils import utcnow

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_outcome(
    latency_ms: float = 50.0,
    success: bool = True,
    worker_id: int = 1,
    offset_s: float = 0.0,
    status: int | None = None,
    error_detail: str | None = None,
    raw_payload: str | None = None,
) -> RouteOutcome:
    issued = T0 + timedelta(seconds=offset_s)
    request = RouteRequest(
        source=Coordinate(51.0, -0.5),
        target=Coordinate(51.5, -0.1),
        issued_at=issued,
        worker_id=worker_id,
    )
    if status is None:
        status = 200 if success else 500
    return RouteOutcome(
        request=request,
        latency_ms=latency_ms,
        success=success,
        completed_at=issued + timedelta(milliseconds=latency_ms),
        error_detail=error_detail if error_detail is not None else (None if success else "HTTP 500: boom"),
        raw_payload=raw_payload,
        status=status,
    )


class StubClient:
    """Stands in for RoutingClient; ``results`` scripts successive call outcomes."""

    def __init__(self, success=True, latency_ms=50.0, delay_s=0.0, results=None, error=None):
        self.success = success
        self.latency_ms = latency_ms
        self.delay_s = delay_s
        self.results = list(results) if results is not None else None
        self.error = error
        self.calls: list[tuple[RouteRequest, bool]] = []

    async def fetch_route(self, request, token=None, keep_payload=False):
        self.calls.append((request, keep_payload))
        if self.error is not None:
            raise self.error
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        ok = self.results.pop(0) if self.results else self.success
        return RouteOutcome(
            request=request,
            latency_ms=self.latency_ms,
            success=ok,
            completed_at=utcnow(),
            error_detail=None if ok else "HTTP 500: stub failure",
            raw_payload='{"paths": []}' if ok and keep_payload else None,
            status=200 if ok else 500,
        )

    def calls_for(self, worker_id: int) -> int:
        return sum(1 for req, _ in self.calls if req.worker_id == worker_id)


@pytest.fixture
def london() -> Coordinate:
    return Coordinate(51.5074, -0.1278)
