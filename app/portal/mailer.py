from __future__ import annotations

import logging
import smtplib
from collections.abc import Mapping
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


def _smtp_config(config: Mapping[str, Any]) -> dict:
    return {
        "enabled": bool(config.get("MAIL_ENABLED")),
        "host": str(config.get("SMTP_HOST") or "localhost"),
        "port": int(config.get("SMTP_PORT") or 587),
        "username": config.get("SMTP_USERNAME") or None,
        "password": config.get("SMTP_PASSWORD") or None,
        "use_tls": bool(config.get("SMTP_USE_TLS")),
        "use_ssl": bool(config.get("SMTP_USE_SSL")),
        "from_email": config.get("SMTP_FROM_EMAIL") or "noreply@example.com",
        "from_name": config.get("SMTP_FROM_NAME") or "User Portal",
    }


def _create_smtp_client(host: str, port: int, use_ssl: bool, timeout: float = 10.0):
    if use_ssl:
        return smtplib.SMTP_SSL(host, port, timeout=timeout)
    return smtplib.SMTP(host, port, timeout=timeout)


def _build_email_message(
    *,
    subject: str,
    from_name: str,
    from_email: str,
    to_email: str,
    body_html: str,
    body_text: str | None,
) -> MIMEMultipart:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, from_email))
    msg["To"] = to_email
    if body_text:
        msg.attach(MIMEText(body_text, "plain", "utf-8"))
    msg.attach(MIMEText(body_html, "html", "utf-8"))
    return msg


def send_email(
    config: Mapping[str, Any],
    to_email: str,
    subject: str,
    body_html: str,
    body_text: str | None = None,
) -> tuple[bool, dict | None]:
    """
    Send an email via SMTP.

    Never raises: delivery problems are logged and reported in the return value.
    With MAIL_ENABLED off the message is only logged.

    Returns:
        (sent, debug) where debug carries refused recipients or the error text.
    """
    smtp = _smtp_config(config)
    if not smtp["enabled"]:
        logger.info("MAIL_ENABLED is off; not sending '%s' to %s", subject, to_email)
        logger.debug("Suppressed email body:\n%s", body_text or body_html)
        return True, {"suppressed": True}

    msg = _build_email_message(
        subject=subject,
        from_name=smtp["from_name"],
        from_email=smtp["from_email"],
        to_email=to_email,
        body_html=body_html,
        body_text=body_text,
    )

    try:
        server = _create_smtp_client(smtp["host"], smtp["port"], smtp["use_ssl"])
        try:
            if smtp["use_tls"] and not smtp["use_ssl"]:
                server.starttls()
            if smtp["username"] and smtp["password"]:
                server.login(smtp["username"], smtp["password"])
            send_result = server.sendmail(smtp["from_email"], to_email, msg.as_string())
        finally:
            server.quit()
        debug = None
        if send_result:
            debug = {"refused": send_result}
            logger.warning("SMTP sendmail refused recipients: %s", send_result)
        return True, debug
    except smtplib.SMTPAuthenticationError as exc:
        logger.error("SMTP authentication failed for %s: %s", to_email, exc)
        return False, {"error": "SMTP authentication failed"}
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Failed to send email to %s: %s", to_email, exc)
        return False, {"error": str(exc)}


def activation_link(config: Mapping[str, Any], token: str) -> str:
    """
    Link that consumes an activation token.

    This app only issues tokens; the page at `APP_URL` + `ACTIVATION_PATH` is served
    by whichever service owns account setup (password choice, token check).
    """
    base = str(config.get("APP_URL") or "http://localhost:8000").rstrip("/")
    path = "/" + str(config.get("ACTIVATION_PATH") or "/activate").lstrip("/")
    return f"{base}{path}?{urlencode({'token': token})}"


def send_activation_email(config: Mapping[str, Any], to_email: str, token: str) -> tuple[bool, dict | None]:
    link = activation_link(config, token)
    subject = "Activate your account"
    body_text = (
        "An account has been created for you.\n\n"
        f"Activate it and choose a password here:\n{link}\n\n"
        "If you were not expecting this email you can ignore it."
    )
    body_html = (
        "<p>An account has been created for you.</p>"
        f'<p><a href="{link}">Activate your account</a> and choose a password.</p>'
        "<p>If you were not expecting this email you can ignore it.</p>"
    )
    return send_email(config, to_email, subject, body_html, body_text)
