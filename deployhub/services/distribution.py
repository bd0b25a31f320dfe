"""Requester classification and the browser-facing page for public deploy keys.

The user-agent check is a UX deterrent, not access control: any client can
send any user-agent, and the blob itself stays publicly readable in the
object store.
"""

from __future__ import annotations

from html import escape

BROWSER_UA_TOKENS = (
    "mozilla",
    "chrome",
    "safari",
    "firefox",
    "edge",
    "opera",
    "msie",
    "trident",
)


def is_browser_user_agent(user_agent: str | None) -> bool:
    ua = str(user_agent or "").lower()
    if not ua:
        return False
    return any(token in ua for token in BROWSER_UA_TOKENS)


def build_loader_url(*, scheme: str, host: str, prefix: str, deploy_key: str) -> str:
    clean_prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
    return f"{scheme}://{host}{clean_prefix}/{deploy_key}"


def loader_snippet(url: str) -> str:
    return f'loadstring(game:HttpGet("{url}"))()'


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<meta name="robots" content="noindex">
<title>{app_name} - Protected Script</title>
<style>
body {{ min-height: 100vh; margin: 0; background: #0a0c10; color: #e2e4e9; font-family: -apple-system, sans-serif; display: flex; align-items: center; justify-content: center; }}
.container {{ max-width: 560px; width: 90%; text-align: center; }}
h1 {{ font-size: 20px; color: #fff; margin-bottom: 6px; }}
.subtitle {{ font-size: 13px; color: #6b7280; margin-bottom: 24px; }}
.label {{ font-size: 11px; color: #4b5563; text-transform: uppercase; text-align: left; margin-bottom: 8px; }}
pre {{ background: rgba(0,0,0,0.4); border: 1px solid rgba(16,185,129,0.12); border-radius: 10px; padding: 16px; text-align: left; white-space: pre-wrap; word-break: break-all; }}
button {{ margin-top: 12px; background: rgba(16,185,129,0.1); border: 1px solid rgba(16,185,129,0.2); border-radius: 6px; padding: 6px 12px; color: #10b981; cursor: pointer; }}
</style>
</head>
<body>
<div class="container">
<h1>Protected Script</h1>
<p class="subtitle">This script can only be executed through a script executor.</p>
<p class="label">Loadstring</p>
<pre><code id="snippet">{snippet}</code></pre>
<button type="button" onclick="navigator.clipboard.writeText(document.getElementById('snippet').textContent)">Copy</button>
</div>
</body>
</html>
"""


def render_protected_page(url: str, *, app_name: str) -> str:
    return _PAGE_TEMPLATE.format(app_name=escape(app_name), snippet=escape(loader_snippet(url)))
