from datetime import datetime
from typing import Sequence

from .models import RouteOutcome, Statistics


def _bin_index(value: float, lo: float, hi: float, bins: int) -> int:
    return min(bins - 1, int((value - lo) / (hi - lo) * bins))


def render_latency_histogram(latencies: Sequence[float], bins: int = 20, width: int = 40) -> str:
    """Text histogram of latencies in ms; the bin holding the median is marked ``<p50``."""
    if not latencies:
        return "No latency data."
    lo, hi = min(latencies), max(latencies)
    if hi <= lo:
        return f"Histogram: single value {lo:.1f}ms"

    counts = [0] * bins
    for x in latencies:
        counts[_bin_index(x, lo, hi, bins)] += 1
    median = sorted(latencies)[(len(latencies) - 1) // 2]
    median_bin = _bin_index(median, lo, hi, bins)

    step = (hi - lo) / bins
    peak = max(counts)
    lines = [f"Latency Histogram ({len(latencies)} samples, {step:.1f}ms per bin)"]
    for i, count in enumerate(counts):
        bar = "#" * max(1, round(count / peak * width)) if count else ""
        marker = "  <p50" if i == median_bin else ""
        lines.append(f"{lo + i * step:8.1f} - {lo + (i + 1) * step:8.1f} ms | {bar} ({count}){marker}")
    return "\n".join(lines)


def render_timeline(
    outcomes: Sequence[RouteOutcome],
    started_at: datetime,
    width: int = 80,
) -> str:
    """One row per worker; ``=`` marks successful requests, ``x`` failed ones."""
    if not outcomes:
        return "No timeline data."

    segments: dict[int, list[tuple[float, float, bool]]] = {}
    max_t = 0.0
    for o in outcomes:
        start_rel = (o.request.issued_at - started_at).total_seconds()
        end_rel = max(start_rel, start_rel + o.latency_ms / 1000.0)
        segments.setdefault(o.worker_id, []).append((start_rel, end_rel, o.success))
        max_t = max(max_t, end_rel)
    if max_t <= 0:
        max_t = 1.0

    lines = ["Request Timeline (relative seconds)"]
    for worker_id in sorted(segments):
        buf = [" "] * width
        for start_rel, end_rel, ok in segments[worker_id]:
            a = int(start_rel / max_t * (width - 1))
            b = int(end_rel / max_t * (width - 1))
            a, b = max(0, a), max(a, b)
            for k in range(a, min(b, width - 1) + 1):
                if buf[k] != "x":
                    buf[k] = "=" if ok else "x"
        lines.append(f"W{worker_id:02d} |{''.join(buf)}|")
    lines.append(f"0s{' ' * (width - 6)}~ {max_t:.2f}s")
    return "\n".join(lines)


def render_summary(stats: Statistics) -> str:
    rows = [
        ("Workers Started", f"{stats.workers_started}"),
        ("Total Requests", f"{stats.total}"),
        ("Successful Requests", f"{stats.success}"),
        ("Failed Requests", f"{stats.failed}"),
        ("Success Rate", f"{stats.success_rate:.2f}%"),
        ("Average Response Time", f"{stats.mean_ms:.2f} ms"),
        ("Min Response Time", f"{stats.min_ms:.2f} ms"),
        ("Max Response Time", f"{stats.max_ms:.2f} ms"),
        ("Standard Deviation", f"{stats.std_ms:.2f} ms"),
        ("p95 Response Time", f"{stats.p95_ms:.2f} ms"),
        ("Throughput", f"{stats.throughput_per_minute:.1f} req/min"),
    ]
    label_width = max(len(label) for label, _ in rows)
    lines = ["Test Statistics"]
    lines.extend(f"{label:<{label_width}} : {value}" for label, value in rows)
    return "\n".join(lines)
