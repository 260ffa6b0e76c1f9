import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import aiohttp

from .coordinates import validation_targets
from .errors import OperationCancelled
from .models import RouteOutcome, RouteRequest, RunConfig
from .utils import CancellationToken, now, utcnow

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"User-Agent": "hopperload/1.0", "Accept": "application/json"}
MAX_ERROR_BODY_CHARS = 1000


def route_params(request: RouteRequest, include_instructions: bool) -> list[tuple[str, str]]:
    return [
        ("point", str(request.source)),
        ("point", str(request.target)),
        ("profile", "car"),
        ("instructions", "true" if include_instructions else "false"),
        ("calc_points", "true"),
        ("points_encoded", "false"),
    ]


class RoutingClient:
    """Issues single route requests and classifies their outcome. Never retries."""

    def __init__(self, session: aiohttp.ClientSession, config: RunConfig) -> None:
        self.session = session
        self.config = config
        self.base_url = config.server_url.rstrip("/")

    @classmethod
    @asynccontextmanager
    async def open(cls, config: RunConfig):
        connector = aiohttp.TCPConnector(limit=0)
        timeout = aiohttp.ClientTimeout(total=config.request_timeout_s)
        async with aiohttp.ClientSession(
            connector=connector, timeout=timeout, headers=DEFAULT_HEADERS
        ) as session:
            yield cls(session, config)

    # ────────────────────────────────
    # HTTP Fetch Logic
    # ────────────────────────────────

    async def _get(self, url: str, params=None) -> tuple[int, str]:
        async with self.session.get(url, params=params) as resp:
            body = await resp.text(errors="replace")
            return resp.status, body

    async def fetch_route(
        self,
        request: RouteRequest,
        token: Optional[CancellationToken] = None,
        keep_payload: bool = False,
    ) -> RouteOutcome:
        token = token or CancellationToken()
        url = f"{self.base_url}/route"
        params = route_params(request, self.config.include_instructions)
        logger.debug(
            f"[W{request.worker_id}] GET {url} source={request.source} target={request.target}"
        )

        start = now()
        try:
            status, body = await token.guard(self._get(url, params))
        except OperationCancelled:
            return self._failed(request, start, "Request cancelled")
        except asyncio.TimeoutError:
            return self._failed(
                request, start, f"Request timed out after {self.config.request_timeout_s:.1f}s"
            )
        except aiohttp.ClientError as e:
            logger.warning(f"[W{request.worker_id}] Connection error for {url}: {e}")
            return self._failed(request, start, str(e) or type(e).__name__)
        latency_ms = (now() - start) * 1000.0

        if not 200 <= status < 300:
            detail = f"HTTP {status}: {body[:MAX_ERROR_BODY_CHARS]}"
            logger.warning(f"[W{request.worker_id}] Request failed: {detail}")
            return RouteOutcome(
                request=request,
                latency_ms=latency_ms,
                success=False,
                completed_at=utcnow(),
                error_detail=detail,
                status=status,
            )

        try:
            json.loads(body)
        except json.JSONDecodeError as e:
            logger.warning(f"[W{request.worker_id}] Invalid JSON response: {e}")
            return RouteOutcome(
                request=request,
                latency_ms=latency_ms,
                success=False,
                completed_at=utcnow(),
                error_detail=f"Invalid JSON response: {e}",
                status=status,
            )

        return RouteOutcome(
            request=request,
            latency_ms=latency_ms,
            success=True,
            completed_at=utcnow(),
            raw_payload=body if keep_payload else None,
            status=status,
        )

    def _failed(self, request: RouteRequest, start: float, detail: str) -> RouteOutcome:
        return RouteOutcome(
            request=request,
            latency_ms=(now() - start) * 1000.0,
            success=False,
            completed_at=utcnow(),
            error_detail=detail,
        )

    # ────────────────────────────────
    # Pre-flight Checks
    # ────────────────────────────────

    async def check_health(self, token: Optional[CancellationToken] = None) -> bool:
        token = token or CancellationToken()
        url = f"{self.base_url}/health"
        logger.info(f"Testing routing service connectivity at {url}...")
        try:
            status, _ = await token.guard(self._get(url))
        except (aiohttp.ClientError, asyncio.TimeoutError, OperationCancelled) as e:
            logger.warning(f"Failed to test routing service connectivity: {str(e) or type(e).__name__}")
            return False
        if 200 <= status < 300:
            logger.info("Connectivity test passed.")
            return True
        logger.warning(f"Health check failed (HTTP {status})")
        return False

    async def validate_center(self, token: Optional[CancellationToken] = None) -> bool:
        """Route from the center to two nearby points; True if either succeeds."""
        logger.info("Validating center point coordinates...")
        center = self.config.center
        for attempt, target in enumerate(validation_targets(center), start=1):
            request = RouteRequest(source=center, target=target, issued_at=utcnow(), worker_id=0)
            outcome = await self.fetch_route(request, token)
            if outcome.success:
                logger.info(f"Center point validation passed (attempt {attempt}).")
                return True
            logger.warning(f"Center point validation attempt {attempt} failed: {outcome.error_detail}")
        return False
