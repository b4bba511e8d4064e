"""Homepage listing the configured prefixes and the robots.txt body."""

import html

from ai_proxy.routing import RouteTable
from ai_proxy.vars import VERSION

ROBOTS_TXT = "User-agent: *\nDisallow: /"

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>AI API Proxy</title>
    <style>
        body {{
            font-family: 'Segoe UI', -apple-system, BlinkMacSystemFont, Roboto, sans-serif;
            background-color: #f4f6f9;
            color: #333333;
            line-height: 1.6;
            margin: 0;
            padding: 40px 20px;
        }}
        .container {{
            max-width: 900px;
            margin: 0 auto;
            background: #ffffff;
            border-radius: 12px;
            box-shadow: 0 4px 6px -1px rgba(0, 0, 0, 0.1);
            padding: 40px;
        }}
        h1 {{ margin-top: 0; border-bottom: 2px solid #eaeaea; padding-bottom: 20px; }}
        .status {{
            background-color: #d4edda;
            color: #155724;
            padding: 12px 20px;
            border-radius: 8px;
            display: inline-block;
            margin-bottom: 24px;
        }}
        table {{ width: 100%; border-collapse: collapse; }}
        th, td {{ text-align: left; padding: 16px; border-bottom: 1px solid #eaeaea; }}
        th {{ background-color: #f7fafc; text-transform: uppercase; font-size: 0.85rem; }}
        code {{ background-color: #f8f9fa; color: #e83e8c; padding: 4px 8px; border-radius: 4px; }}
        .target-url {{ color: #666666; font-family: monospace; }}
        .footer {{ margin-top: 40px; text-align: center; font-size: 0.9em; color: #a0aec0; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>AI API Proxy Service</h1>
        <div class="status">Service is active and running</div>
        <p>This service routes requests to various AI provider APIs through a unified interface.</p>
        <h2>Available Endpoints</h2>
        <table>
            <thead>
                <tr><th width="30%">Path Prefix</th><th>Target Service URL</th></tr>
            </thead>
            <tbody>
{rows}
            </tbody>
        </table>
        <div class="footer">AI API Proxy v{version}</div>
    </div>
</body>
</html>
"""

_ROW = (
    "                <tr><td><code>{prefix}</code></td>"
    '<td><span class="target-url">{origin}</span></td></tr>'
)


def render_home(table: RouteTable) -> str:
    rows = "\n".join(
        _ROW.format(
            prefix=html.escape(prefix), origin=html.escape(origin)
        )
        for prefix, origin in table.items()
    )
    return _PAGE.format(rows=rows, version=html.escape(VERSION))
