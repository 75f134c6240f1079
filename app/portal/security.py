import html
import re
import secrets

from flask import Request, session

# Characters FILTER_SANITIZE_EMAIL-style cleaning keeps.
_EMAIL_DISALLOWED = re.compile(r"[^A-Za-z0-9!#$%&'*+\-=?^_`{|}~@.\[\]]")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form or header."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(token, expected))


def escape_text(value: str | None) -> str:
    """HTML-escape a free-text field before it is stored."""
    return html.escape((value or "").strip(), quote=True)


def sanitize_email(value: str | None) -> str:
    """Strip characters that cannot appear in an address; emails are stored lower-cased."""
    return _EMAIL_DISALLOWED.sub("", (value or "").strip()).lower()
