"""HTML rendering of an analytics snapshot for ``/analytics/dashboard``."""

from html import escape
from typing import Dict, Iterable, Tuple

from lta_datamall_mcp.analytics.models import AnalyticsSnapshot
from lta_datamall_mcp.constants import SERVER_DISPLAY_NAME

_TOP_N = 10


def _format_uptime(seconds: float) -> str:
    total = int(max(seconds, 0))
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {secs}s"


def _top(counts: Dict[str, int], n: int = _TOP_N) -> Iterable[Tuple[str, int]]:
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:n]


def _table(title: str, counts: Dict[str, int]) -> str:
    rows = "".join(
        f"<tr><td>{escape(key)}</td><td>{count}</td></tr>" for key, count in _top(counts)
    )
    if not rows:
        rows = '<tr><td colspan="2"><em>none yet</em></td></tr>'
    return f"<section><h2>{escape(title)}</h2><table>{rows}</table></section>"


def render_dashboard(snapshot: AnalyticsSnapshot, uptime_seconds: float) -> str:
    """Return a self-contained HTML page summarising *snapshot*."""
    recent = "".join(
        "<tr>"
        f"<td>{escape(r.timestamp)}</td><td>{escape(r.tool)}</td>"
        f"<td>{escape(r.client_ip)}</td><td>{escape(r.user_agent)}</td>"
        "</tr>"
        for r in reversed(snapshot.recent_tool_calls)
    )
    if not recent:
        recent = '<tr><td colspan="4"><em>none yet</em></td></tr>'
    hourly = dict(sorted(snapshot.hourly_requests.items())[-24:])

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{escape(SERVER_DISPLAY_NAME)} - Analytics</title>
<style>
body {{ font-family: system-ui, sans-serif; margin: 2rem; color: #222; }}
.cards {{ display: flex; gap: 1rem; flex-wrap: wrap; }}
.card {{ border: 1px solid #ddd; border-radius: 8px; padding: 1rem 1.5rem; }}
.card b {{ display: block; font-size: 1.6rem; }}
table {{ border-collapse: collapse; }}
td {{ border-bottom: 1px solid #eee; padding: 0.25rem 0.75rem; }}
</style>
</head>
<body>
<h1>{escape(SERVER_DISPLAY_NAME)} - Analytics</h1>
<div class="cards">
<div class="card">Total requests<b>{snapshot.total_requests}</b></div>
<div class="card">Tool calls<b>{snapshot.total_tool_calls}</b></div>
<div class="card">Unique clients<b>{len(snapshot.clients_by_ip)}</b></div>
<div class="card">Uptime<b>{_format_uptime(uptime_seconds)}</b></div>
</div>
{_table("Tool calls", snapshot.tool_calls)}
{_table("Requests by endpoint", snapshot.requests_by_endpoint)}
{_table("Requests by method", snapshot.requests_by_method)}
{_table("Clients by user agent", snapshot.clients_by_user_agent)}
{_table("Requests per hour (last 24, UTC)", hourly)}
<section><h2>Recent tool calls</h2><table>{recent}</table></section>
<p><small>Server started {escape(snapshot.server_start_time)}</small></p>
</body>
</html>
"""
