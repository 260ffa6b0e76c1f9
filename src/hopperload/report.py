"""HTML report for a finished load test."""

import html
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .models import DEFAULT_OUTPUT_FILE, RunConfig, Statistics

logger = logging.getLogger(__name__)

MAX_PAYLOAD_PREVIEW_CHARS = 4000

_STYLE = """
:root {
    --bg-primary: #1a1a1a; --bg-secondary: #2d2d2d; --bg-card: #3a3a3a;
    --text-primary: #ffffff; --text-secondary: #b0b0b0; --accent-primary: #4a9eff;
    --accent-success: #28a745; --accent-error: #dc3545; --border-color: #555555;
}
body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; margin: 0; padding: 20px;
       background-color: var(--bg-primary); color: var(--text-primary); line-height: 1.6; }
.container { max-width: 1400px; margin: 0 auto; }
.header { text-align: center; margin-bottom: 40px; }
.header h1 { color: var(--accent-primary); margin-bottom: 10px; font-size: 2.5em; }
.header .test-name { color: var(--accent-primary); font-size: 1.4em; margin-bottom: 15px; font-weight: 600; }
.header .test-info { color: var(--text-secondary); font-size: 1.1em; }
.summary { display: grid; grid-template-columns: repeat(auto-fit, minmax(280px, 1fr)); gap: 20px; margin-bottom: 40px; }
.stat-card { background: var(--bg-card); padding: 25px; border-radius: 12px; text-align: center;
             border: 1px solid var(--border-color); }
.stat-value { font-size: 2.2em; font-weight: bold; color: var(--accent-primary); margin-bottom: 8px; }
.stat-label { color: var(--text-secondary); font-size: 1.1em; }
.charts-container { display: grid; grid-template-columns: 1fr 1fr; gap: 30px; margin-bottom: 40px; }
.chart-section, .details-section { background: var(--bg-card); padding: 25px; border-radius: 12px;
                                   border: 1px solid var(--border-color); margin-bottom: 30px; }
.chart-section h2, .details-section h2 { color: var(--accent-primary); margin-top: 0; font-size: 1.4em; }
.chart-container { width: 100%; height: 400px; }
@media (max-width: 1024px) { .charts-container { grid-template-columns: 1fr; } }
table { width: 100%; border-collapse: collapse; }
th, td { border: 1px solid var(--border-color); padding: 12px; text-align: left; }
th { background-color: var(--bg-secondary); font-weight: 600; }
.success { color: var(--accent-success); font-weight: 600; }
.error { color: var(--accent-error); font-weight: 600; }
.details { max-height: 500px; overflow-y: auto; }
pre { white-space: pre-wrap; word-break: break-all; max-height: 300px; overflow-y: auto; }
"""

_CHART_SCRIPT = """
Chart.defaults.color = '#b0b0b0';
Chart.defaults.borderColor = '#555555';
const data = %(data)s;
new Chart(document.getElementById('requestsOverTimeChart'), {
    type: 'line',
    data: { labels: data.labels, datasets: [{ label: 'Cumulative Requests', data: data.cumulative,
            borderColor: '#4a9eff', fill: true, tension: 0.1 }] },
    options: { responsive: true, maintainAspectRatio: false }
});
new Chart(document.getElementById('responseTimeChart'), {
    type: 'line',
    data: { labels: data.labels, datasets: [{ label: 'Response Time (ms)', data: data.latencies,
            borderColor: '#28a745', pointBackgroundColor: data.colors, fill: false, tension: 0.1 }] },
    options: { responsive: true, maintainAspectRatio: false }
});
"""


def default_output_path(output_file: str, now: Optional[datetime] = None) -> str:
    """Stamp the default report name so repeated runs don't overwrite each other."""
    if output_file != DEFAULT_OUTPUT_FILE:
        return output_file
    now = now or datetime.now()
    stem, suffix = DEFAULT_OUTPUT_FILE.rsplit(".", 1)
    return f"{stem}_{now:%Y-%m-%d_%H-%M-%S}.{suffix}"


def _card(value: str, label: str) -> str:
    return (
        '<div class="stat-card">'
        f'<div class="stat-value">{value}</div>'
        f'<div class="stat-label">{label}</div>'
        "</div>"
    )


def _chart_data(stats: Statistics) -> dict:
    labels, cumulative, latencies, colors = [], [], [], []
    for i, o in enumerate(stats.outcomes, start=1):
        labels.append(f"{o.request.issued_at:%H:%M:%S}")
        cumulative.append(i)
        latencies.append(round(o.latency_ms, 1))
        colors.append("#28a745" if o.success else "#dc3545")
    return {"labels": labels, "cumulative": cumulative, "latencies": latencies, "colors": colors}


def render_html(stats: Statistics, config: RunConfig) -> str:
    esc = html.escape
    parts = [
        "<!DOCTYPE html>",
        '<html lang="en">',
        "<head>",
        '<meta charset="UTF-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1.0">',
        "<title>Routing Load Test Results</title>",
        '<script src="https://cdn.jsdelivr.net/npm/chart.js"></script>',
        f"<style>{_STYLE}</style>",
        "</head>",
        "<body>",
        '<div class="container">',
        '<div class="header">',
        "<h1>Routing Load Test Results</h1>",
    ]
    if config.test_name:
        parts.append(f'<div class="test-name">{esc(config.test_name)}</div>')
    parts.append(
        '<div class="test-info">'
        f"Test Duration: {stats.started_at:%Y-%m-%d %H:%M:%S} - {stats.finished_at:%Y-%m-%d %H:%M:%S} UTC<br>"
        f"Total Test Time: {stats.elapsed_s / 60:.2f} minutes<br>"
        f"Server: {esc(config.server_url)} | Center: {config.center} | "
        f"Workers: {stats.workers_started}"
        "</div>"
    )
    parts.append("</div>")

    parts.append('<div class="summary">')
    parts.append(_card(str(stats.total), "Total Requests"))
    parts.append(_card(str(stats.success), "Successful Requests"))
    parts.append(_card(f"{stats.success_rate:.1f}%", "Success Rate"))
    parts.append(_card(f"{stats.mean_ms:.0f}ms", "Avg Response Time"))
    parts.append("</div>")

    parts.append('<div class="charts-container">')
    for chart_id, title in (
        ("requestsOverTimeChart", "Requests Over Time"),
        ("responseTimeChart", "Response Time Over Time"),
    ):
        parts.append(
            f'<div class="chart-section"><h2>{title}</h2>'
            f'<div class="chart-container"><canvas id="{chart_id}"></canvas></div></div>'
        )
    parts.append("</div>")

    metrics = [
        ("Total Requests", str(stats.total), ""),
        ("Successful Requests", str(stats.success), "success"),
        ("Failed Requests", str(stats.failed), "error"),
        ("Success Rate", f"{stats.success_rate:.2f}%", ""),
        ("Average Response Time", f"{stats.mean_ms:.2f} ms", ""),
        ("Min Response Time", f"{stats.min_ms:.2f} ms", ""),
        ("Max Response Time", f"{stats.max_ms:.2f} ms", ""),
        ("Standard Deviation", f"{stats.std_ms:.2f} ms", ""),
        ("p50 / p90 / p95 / p99", f"{stats.p50_ms:.0f} / {stats.p90_ms:.0f} / {stats.p95_ms:.0f} / {stats.p99_ms:.0f} ms", ""),
    ]
    parts.append('<div class="details-section"><h2>Detailed Statistics</h2><table>')
    parts.append("<tr><th>Metric</th><th>Value</th></tr>")
    for label, value, css in metrics:
        cls = f' class="{css}"' if css else ""
        parts.append(f"<tr><td>{label}</td><td{cls}>{value}</td></tr>")
    parts.append("</table></div>")

    parts.append('<div class="details-section"><h2>All Requests</h2><div class="details"><table>')
    parts.append(
        "<tr><th>Worker</th><th>Request Time</th><th>Response Time (ms)</th>"
        "<th>Status</th><th>Error</th></tr>"
    )
    for o in stats.outcomes:
        css, label = ("success", "Success") if o.success else ("error", "Failed")
        parts.append(
            f"<tr><td>{o.worker_id}</td>"
            f"<td>{o.request.issued_at:%H:%M:%S}.{o.request.issued_at.microsecond // 1000:03d}</td>"
            f"<td>{o.latency_ms:.0f}</td>"
            f'<td class="{css}">{label}</td>'
            f"<td>{esc(o.error_detail or '')}</td></tr>"
        )
    parts.append("</table></div></div>")

    if stats.first_success_per_worker:
        parts.append('<div class="details-section"><h2>Sample Responses</h2>')
        for worker_id in sorted(stats.first_success_per_worker):
            o = stats.first_success_per_worker[worker_id]
            payload = (o.raw_payload or "")[:MAX_PAYLOAD_PREVIEW_CHARS]
            parts.append(
                f"<h3>Worker {worker_id}: {o.request.source} &rarr; {o.request.target}</h3>"
                f"<pre>{esc(payload)}</pre>"
            )
        parts.append("</div>")

    # "</" would end the inline script early
    chart_json = json.dumps(_chart_data(stats)).replace("</", "<\\/")
    parts.append(f"<script>{_CHART_SCRIPT % {'data': chart_json}}</script>")
    parts.extend(["</div>", "</body>", "</html>"])
    return "\n".join(parts)


def write_html_report(stats: Statistics, config: RunConfig, path: Optional[str] = None) -> Path:
    target = Path(path or config.output_file)
    logger.info(f"Generating HTML report to {target}")
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        f.write(render_html(stats, config))
    logger.info("HTML report generated successfully")
    return target
