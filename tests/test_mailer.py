import email
import smtplib

from app.portal import mailer
from app.portal.mailer import activation_link, send_activation_email, send_email


class _FakeSMTP:
    instances: list["_FakeSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.started_tls = False
        self.logged_in = None
        self.sent = []
        self.quit_called = False
        _FakeSMTP.instances.append(self)

    def starttls(self):
        self.started_tls = True

    def login(self, username, password):
        self.logged_in = (username, password)

    def sendmail(self, from_addr, to_addr, message):
        self.sent.append((from_addr, to_addr, message))
        return {}

    def quit(self):
        self.quit_called = True


def _config(**overrides):
    cfg = {
        "MAIL_ENABLED": True,
        "SMTP_HOST": "smtp.example.com",
        "SMTP_PORT": 2525,
        "SMTP_USERNAME": "mailer",
        "SMTP_PASSWORD": "secret",
        "SMTP_USE_TLS": True,
        "SMTP_USE_SSL": False,
        "SMTP_FROM_EMAIL": "portal@example.com",
        "SMTP_FROM_NAME": "Portal",
        "APP_URL": "https://portal.example.com/",
    }
    cfg.update(overrides)
    return cfg


def test_disabled_mail_is_only_logged(monkeypatch):
    monkeypatch.setattr(mailer.smtplib, "SMTP", _FakeSMTP)
    _FakeSMTP.instances.clear()
    ok, debug = send_email(_config(MAIL_ENABLED=False), "a@example.com", "Hi", "<p>Hi</p>")
    assert ok is True
    assert debug == {"suppressed": True}
    assert _FakeSMTP.instances == []


def test_send_email_over_smtp(monkeypatch):
    monkeypatch.setattr(mailer.smtplib, "SMTP", _FakeSMTP)
    _FakeSMTP.instances.clear()
    ok, debug = send_email(_config(), "a@example.com", "Hi", "<p>Hi</p>", "Hi")
    assert ok is True
    assert debug is None
    server = _FakeSMTP.instances[0]
    assert (server.host, server.port) == ("smtp.example.com", 2525)
    assert server.started_tls is True
    assert server.logged_in == ("mailer", "secret")
    assert server.sent[0][:2] == ("portal@example.com", "a@example.com")
    assert server.quit_called is True


def test_send_email_reports_connection_errors(monkeypatch):
    def _refuse(*args, **kwargs):
        raise ConnectionRefusedError("no server")

    monkeypatch.setattr(mailer.smtplib, "SMTP", _refuse)
    ok, debug = send_email(_config(), "a@example.com", "Hi", "<p>Hi</p>")
    assert ok is False
    assert "no server" in debug["error"]


def test_send_email_reports_auth_errors(monkeypatch):
    class _BadLogin(_FakeSMTP):
        def login(self, username, password):
            raise smtplib.SMTPAuthenticationError(535, b"bad credentials")

    monkeypatch.setattr(mailer.smtplib, "SMTP", _BadLogin)
    ok, debug = send_email(_config(), "a@example.com", "Hi", "<p>Hi</p>")
    assert ok is False
    assert debug == {"error": "SMTP authentication failed"}


def test_activation_link():
    assert activation_link(_config(), "abc/123") == "https://portal.example.com/activate?token=abc%2F123"


def test_activation_email_contains_link(monkeypatch):
    monkeypatch.setattr(mailer.smtplib, "SMTP", _FakeSMTP)
    _FakeSMTP.instances.clear()
    ok, _ = send_activation_email(_config(), "new@example.com", "tok123")
    assert ok is True
    msg = email.message_from_string(_FakeSMTP.instances[0].sent[0][2])
    assert msg["Subject"] == "Activate your account"
    bodies = [part.get_payload(decode=True).decode() for part in msg.walk() if part.get_content_maintype() == "text"]
    assert len(bodies) == 2
    assert all("https://portal.example.com/activate?token=tok123" in body for body in bodies)


def test_activation_link_uses_configured_path():
    cfg = _config(ACTIVATION_PATH="account/setup")
    assert activation_link(cfg, "tok") == "https://portal.example.com/account/setup?token=tok"
