"""HTML dashboard rendered on every view cycle.

The page is server-rendered from the merged records of one view cycle, so the
status shown is never older than the request that produced it.
"""

from html import escape

from .models import CycleReport, EndpointRecord

CSS_STYLES = """
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            font-family: -apple-system, 'Segoe UI', Roboto, sans-serif;
            background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
            min-height: 100vh;
            padding: 20px;
        }
        .container {
            max-width: 1200px;
            margin: 0 auto;
            background: #fff;
            border-radius: 12px;
            box-shadow: 0 10px 40px rgba(0, 0, 0, 0.2);
            overflow: hidden;
        }
        .header { background: #4c51bf; color: #fff; padding: 24px 30px; }
        .header h1 { font-size: 1.8em; margin-bottom: 6px; }
        .stats { display: flex; gap: 16px; padding: 20px 30px; background: #f7fafc; }
        .stat { flex: 1; background: #fff; border-radius: 8px; padding: 14px; text-align: center; }
        .stat-value { font-size: 1.8em; font-weight: 700; color: #4c51bf; }
        .stat-label { color: #718096; font-size: 0.85em; }
        .actions { padding: 0 30px 10px; background: #f7fafc; }
        .btn { border: none; border-radius: 6px; padding: 8px 16px; cursor: pointer; color: #fff; }
        .btn-refresh { background: #4c51bf; }
        .btn-clear { background: #e53e3e; }
        .warning { background: #fffaf0; color: #c05621; padding: 12px 30px; border-bottom: 1px solid #fbd38d; }
        .content { padding: 20px 30px; }
        table { width: 100%; border-collapse: collapse; }
        th { text-align: left; padding: 10px; background: #edf2f7; color: #4a5568; }
        td { padding: 10px; border-bottom: 1px solid #edf2f7; }
        .badge { padding: 4px 10px; border-radius: 12px; font-size: 0.85em; font-weight: 600; }
        .online { background: #c6f6d5; color: #22543d; }
        .offline { background: #fed7d7; color: #742a2a; }
        .ssh-command {
            background: #2d3748; color: #68d391; padding: 4px 8px;
            border-radius: 4px; cursor: pointer; font-size: 0.9em;
        }
        .empty-state { text-align: center; padding: 60px 20px; color: #718096; }
        .empty-state h2 { margin-bottom: 10px; color: #4a5568; }
        .footer { text-align: center; padding: 16px; color: #a0aec0; font-size: 0.85em; }
        #notification {
            display: none; position: fixed; bottom: 20px; right: 20px;
            background: #2d3748; color: #fff; padding: 12px 18px; border-radius: 6px;
        }
"""

JS_SCRIPT = """
        function copyToClipboard(text) {
            navigator.clipboard.writeText(text).then(() => {
                showNotification('Copied to clipboard: ' + text);
            });
        }
        function showNotification(message) {
            const notif = document.getElementById('notification');
            notif.textContent = message;
            notif.style.display = 'block';
            setTimeout(() => { notif.style.display = 'none'; }, 3000);
        }
        function clearAllEndpoints() {
            if (confirm('Are you sure you want to remove all registered endpoints?')) {
                fetch('/api/clear', { method: 'POST' }).then(() => location.reload());
            }
        }
"""

EMPTY_STATE = """
            <div class="empty-state">
                <h2>No endpoints registered yet</h2>
                <p>Hosts appear here once they POST to /api/register.</p>
            </div>"""

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    {refresh_meta}
    <title>Rollcall Dashboard</title>
    <style>{css}</style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>Rollcall Dashboard</h1>
            <p>Registered endpoints and their current reachability</p>
        </div>
        {warning}
        <div class="stats">
            <div class="stat"><div class="stat-value">{total}</div><div class="stat-label">Total</div></div>
            <div class="stat"><div class="stat-value">{online}</div><div class="stat-label">Online</div></div>
            <div class="stat"><div class="stat-value">{offline}</div><div class="stat-label">Offline</div></div>
        </div>
        <div class="actions">
            <button class="btn btn-refresh" onclick="location.reload()">Refresh</button>
            <button class="btn btn-clear" onclick="clearAllEndpoints()">Clear All</button>
        </div>
        <div class="content">{content}
        </div>
        <div class="footer">
            <p>Dashboard running on {server_url}</p>
            {refresh_note}
        </div>
    </div>
    <div id="notification"></div>
    <script>{js}</script>
</body>
</html>
"""


def _format_last_seen(record: EndpointRecord) -> str:
    if record.last_seen_at is None:
        return "Never"
    return record.last_seen_at.strftime("%Y-%m-%d %H:%M:%S UTC")


def _render_row(index: int, record: EndpointRecord) -> str:
    badge = (
        '<span class="badge online">Online</span>'
        if record.is_online
        else '<span class="badge offline">Offline</span>'
    )
    command = escape(record.ssh_command)
    return f"""
                <tr>
                    <td>{index}</td>
                    <td><strong>{escape(record.name)}</strong></td>
                    <td>{escape(record.address)}</td>
                    <td>{record.port}</td>
                    <td>{escape(record.login_user)}</td>
                    <td>{badge}</td>
                    <td>{_format_last_seen(record)}</td>
                    <td><code class="ssh-command" data-cmd="{command}"
                        onclick="copyToClipboard(this.dataset.cmd)">{command}</code></td>
                </tr>"""


def _render_table(records: list[EndpointRecord]) -> str:
    rows = "".join(_render_row(i, r) for i, r in enumerate(records, start=1))
    return f"""
            <table>
                <thead>
                    <tr>
                        <th>#</th><th>Name</th><th>IP Address</th><th>Port</th>
                        <th>Username</th><th>Status</th><th>Last Seen</th><th>SSH Command</th>
                    </tr>
                </thead>
                <tbody>{rows}
                </tbody>
            </table>"""


def render_dashboard(report: CycleReport, server_url: str, refresh_seconds: int = 30) -> str:
    """Render the dashboard page for one view cycle.

    Args:
        report: Merged records and persistence outcome of the view cycle.
        server_url: Address shown in the footer.
        refresh_seconds: Auto-refresh interval, 0 to disable.

    Returns:
        Complete HTML document.
    """
    if refresh_seconds > 0:
        refresh_meta = f'<meta http-equiv="refresh" content="{refresh_seconds}">'
        refresh_note = f'<p>Auto-refresh every {refresh_seconds} seconds</p>'
    else:
        refresh_meta = ""
        refresh_note = ""

    warning = ""
    if not report.persisted:
        warning = (
            '<div class="warning">Status could not be saved: '
            f"{escape(report.error or 'unknown error')}</div>"
        )

    content = _render_table(report.records) if report.records else EMPTY_STATE

    return PAGE_TEMPLATE.format(
        refresh_meta=refresh_meta,
        css=CSS_STYLES,
        warning=warning,
        total=len(report.records),
        online=report.online_count,
        offline=report.offline_count,
        content=content,
        server_url=escape(server_url),
        refresh_note=refresh_note,
        js=JS_SCRIPT,
    )
