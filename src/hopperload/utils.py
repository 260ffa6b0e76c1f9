import asyncio
import contextlib
import logging
import signal
import time
from datetime import datetime, timezone

from .errors import ConfigurationError, OperationCancelled
from .models import Coordinate

logger = logging.getLogger(__name__)

# ────────────────────────────────
# Time Helpers
# ────────────────────────────────


def now() -> float:
    return time.perf_counter()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ────────────────────────────────
# Coordinate Parsing
# ────────────────────────────────


def parse_coordinate(text: str) -> Coordinate:
    """Parse ``"lat,lng"`` into a Coordinate, rejecting out-of-range values."""
    parts = [p.strip() for p in (text or "").split(",")]
    try:
        if len(parts) != 2:
            raise ValueError(text)
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        raise ConfigurationError(
            "Invalid center point format. Use latitude,longitude (e.g., 51.5074,-0.1278)"
        ) from None
    if not -90.0 <= lat <= 90.0:
        raise ConfigurationError(f"Latitude {lat} is outside [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise ConfigurationError(f"Longitude {lng} is outside [-180, 180]")
    return Coordinate(lat, lng)


# ────────────────────────────────
# Cancellation
# ────────────────────────────────


class CancellationToken:
    """Cooperative, run-wide cancellation signal.

    Every coroutine that may suspend during a run receives the token and
    checks it at its loop boundaries; ``sleep`` and ``guard`` return or raise
    as soon as the token fires instead of waiting out their delay.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.debug("Cancellation requested")
        self._event.set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``. Returns True if woken by cancellation."""
        if self.cancelled:
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def guard(self, coro):
        """Await ``coro``, abandoning it with OperationCancelled if the token fires."""
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if task.cancelled():
            raise OperationCancelled("Request cancelled")
        return task.result()


# ────────────────────────────────
# Signal Handling
# ────────────────────────────────


class GracefulKiller:
    """Turns SIGINT/SIGTERM into a cancellation of the running load test."""

    def __init__(self, token: CancellationToken):
        self.token = token
        self.kill_now = False

    def install(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.exit_gracefully, sig, None)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler
                signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(
                        self.exit_gracefully, signum, frame
                    ),
                )

    def uninstall(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                default = signal.default_int_handler if sig == signal.SIGINT else signal.SIG_DFL
                signal.signal(sig, default)

    def exit_gracefully(self, signum, frame):
        if not self.kill_now:
            print("\n[!] Received shutdown signal. Stopping load test...")
        self.kill_now = True
        self.token.cancel()
