import math
import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from types import MappingProxyType

from .models import RouteOutcome, Statistics

logger = logging.getLogger(__name__)


def _percentile(sorted_values: list[float], p: float) -> float:
    n = len(sorted_values)
    return sorted_values[max(0, min(n - 1, int(p * (n - 1))))]


def compute_stats(
    outcomes: Iterable[RouteOutcome],
    started_at: datetime,
    finished_at: datetime,
    workers_started: int = 0,
) -> Statistics:
    ordered = tuple(sorted(outcomes, key=lambda o: o.request.sort_key))
    total = len(ordered)
    successes = [o for o in ordered if o.success]
    success_count = len(successes)

    status_counts: dict[int, int] = defaultdict(int)
    first_success: dict[int, RouteOutcome] = {}
    for o in ordered:
        if o.status is not None:
            status_counts[o.status] += 1
        if o.success and o.worker_id not in first_success:
            first_success[o.worker_id] = o

    logger.debug(f"Computing stats: total={total}, success={success_count}")

    stats_dict = {
        "total": total,
        "success": success_count,
        "failed": total - success_count,
        "success_rate": success_count / total * 100.0 if total else 0.0,
        "mean_ms": 0.0,
        "min_ms": 0.0,
        "max_ms": 0.0,
        "std_ms": 0.0,
        "p50_ms": 0.0,
        "p90_ms": 0.0,
        "p95_ms": 0.0,
        "p99_ms": 0.0,
        "started_at": started_at,
        "finished_at": finished_at,
        "outcomes": ordered,
        "first_success_per_worker": MappingProxyType(first_success),
        "status_counts": MappingProxyType(dict(status_counts)),
        "workers_started": workers_started,
    }

    if not total:
        logger.info("No requests recorded. Returning empty stats.")
        return Statistics(**stats_dict)

    if not successes:
        logger.warning("No successful latencies recorded.")
        return Statistics(**stats_dict)

    latencies = [o.latency_ms for o in successes]
    n = len(latencies)
    mean = sum(latencies) / n
    # Population standard deviation, no N-1 correction
    variance = sum((x - mean) ** 2 for x in latencies) / n
    sl = sorted(latencies)

    stats_dict.update(
        mean_ms=mean,
        min_ms=sl[0],
        max_ms=sl[-1],
        std_ms=math.sqrt(variance),
        p50_ms=_percentile(sl, 0.50),
        p90_ms=_percentile(sl, 0.90),
        p95_ms=_percentile(sl, 0.95),
        p99_ms=_percentile(sl, 0.99),
    )

    logger.info(
        f"Stats computed: success={success_count}, failed={total - success_count}, "
        f"mean={mean:.2f}ms, p95={stats_dict['p95_ms']:.2f}ms, "
        f"success_rate={stats_dict['success_rate']:.1f}%"
    )

    return Statistics(**stats_dict)
