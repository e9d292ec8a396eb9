"""HTML for the portal pages."""

from __future__ import annotations

from html import escape

from captivegate.admission.validators import PASSWORD_FIELD, USERNAME_FIELD

_STYLE = """
body { font-family: sans-serif; background: #f3f4f6; margin: 0;
       min-height: 100vh; display: flex; align-items: center; justify-content: center; }
.box { background: #fff; border-radius: 8px; padding: 2rem; width: 320px; max-width: 90%;
       box-shadow: 0 4px 16px rgba(0, 0, 0, 0.15); }
h1 { font-size: 1.4rem; margin-top: 0; }
input[type=text], input[type=password] { width: 100%; padding: 0.5rem; margin: 0.3rem 0 0.8rem;
       box-sizing: border-box; }
button { width: 100%; padding: 0.6rem; border: 0; border-radius: 4px; background: #2563eb;
       color: #fff; font-size: 1rem; }
.error { background: #fee2e2; color: #991b1b; padding: 0.6rem; border-radius: 4px;
       margin-bottom: 1rem; }
"""


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en"><head><meta charset="utf-8">'
        '<meta name="viewport" content="width=device-width, initial-scale=1">'
        f"<title>{escape(title)}</title><style>{_STYLE}</style></head>"
        f'<body><div class="box">{body}</div></body></html>\n'
    )


def login_page(network: str, error: str = "") -> str:
    error_html = f'<div class="error">{escape(error)}</div>' if error else ""
    return _page(
        f"{network} sign in",
        f"<h1>Sign in to {escape(network)}</h1>"
        f"{error_html}"
        '<form method="post" action="/login">'
        f'<label>Username<input type="text" name="{USERNAME_FIELD}" required></label>'
        f'<label>Password<input type="password" name="{PASSWORD_FIELD}" required></label>'
        '<button type="submit">Connect</button>'
        "</form>",
    )


def success_page(network: str, ttl: float) -> str:
    return _page(
        "Connected",
        f"<h1>You are connected to {escape(network)}</h1>"
        f"<p>Internet access is granted for {format_duration(ttl)}.</p>",
    )


def unavailable_page(network: str) -> str:
    return _page(
        "Temporarily unavailable",
        f"<h1>{escape(network)}</h1>"
        "<p>Sign-in is temporarily unavailable. Please try again in a moment.</p>",
    )


def format_duration(seconds: float) -> str:
    """Human-readable duration, e.g. ``5 minutes`` or ``1 hour 30 minutes``."""
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    parts = []
    for value, unit in ((hours, "hour"), (minutes, "minute"), (secs, "second")):
        if value:
            parts.append(f"{value} {unit}{'' if value == 1 else 's'}")
    return " ".join(parts) or "0 seconds"
