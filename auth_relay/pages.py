from __future__ import annotations

import json
from html import escape
from typing import Any, Optional
from urllib.parse import urlencode


def _js(value: Any) -> str:
    # safe inside an inline <script>
    return json.dumps(value).replace("</", "<\\/")


def login_page(*, attempt_id: str, redirect: Optional[str], origin: str, error: Optional[str] = None) -> str:
    err_html = f'<p style="color:crimson;">{escape(error)}</p>' if error else ""
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width,initial-scale=1" />
  <title>Riot Login</title>
</head>
<body style="font-family: system-ui; margin:0; padding:16px;">
  <h2>Riot Login (Dev Only)</h2>
  <p style="color:crimson;">Enter credentials only if you accept all risks. Do not use this for accounts with valuables.</p>
  {err_html}
  <form method="post" action="/auth/submit">
    <label>Username (email or Riot ID):<br/><input name="username" autocomplete="username" required /></label><br/><br/>
    <label>Password:<br/><input name="password" type="password" autocomplete="current-password" required /></label><br/><br/>
    <input type="hidden" name="attempt_id" value="{escape(attempt_id)}" />
    <input type="hidden" name="redirect" value="{escape(redirect or '')}" />
    <input type="hidden" name="origin" value="{escape(origin)}" />
    <button type="submit">Login</button>
  </form>
</body>
</html>
"""


def complete_page(*, code: str, target_origin: str) -> str:
    """Hands the one-time code to the opener window and closes the popup."""
    message_js = _js({"type": "auth-code", "code": code})
    target_origin_js = _js(target_origin)
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Auth Complete</title>
</head>
<body style="font-family: system-ui; margin:0; padding:16px;">
  <p id="status">Completing sign-in…</p>
  <script>
  (function() {{
    const status = document.getElementById("status");
    try {{
      if (window.opener) {{
        window.opener.postMessage({message_js}, {target_origin_js});
        status.textContent = "Auth complete. You can close this window.";
        setTimeout(function() {{ window.close(); }}, 1500);
      }} else {{
        status.textContent = "The window that started the login is gone. Please start again.";
      }}
    }} catch (e) {{
      status.textContent = "Could not deliver the sign-in result.";
    }}
  }})();
  </script>
</body>
</html>
"""


def failure_page(*, message: str, redirect: Optional[str] = None, origin: Optional[str] = None) -> str:
    params = {k: v for k, v in (("redirect", redirect), ("origin", origin)) if v}
    back = "/auth/login" + (f"?{urlencode(params)}" if params else "")
    return f"""<!doctype html>
<html lang="en">
<head><meta charset="utf-8" /><title>Authentication failed</title></head>
<body style="font-family: system-ui; margin:0; padding:16px;">
  <p>{escape(message)}</p>
  <p><a href="{escape(back)}">Back</a></p>
</body>
</html>
"""


__all__ = ["complete_page", "failure_page", "login_page"]
