import smtplib

from conftest import T0
from models import OverdueNotice
from services import notifier as notifier_module
from services.notifier import EmailNotifier, LoggingNotifier, build_notifier, render_notice

NOTICE = OverdueNotice(username="alice", book_title="Dune", due_date=T0)


def test_render_notice_mentions_book_and_due_date():
    body = render_notice(NOTICE)
    assert "Dear alice" in body
    assert "Dune" in body
    assert "Due Date: 2026-03-01" in body


def test_build_notifier_falls_back_to_logging(monkeypatch):
    monkeypatch.setattr(notifier_module.config, "SMTP_HOST", None)
    assert isinstance(build_notifier(), LoggingNotifier)

    monkeypatch.setattr(notifier_module.config, "SMTP_HOST", "smtp.example.com")
    assert isinstance(build_notifier(), EmailNotifier)


def test_email_message_headers():
    msg = EmailNotifier("smtp.example.com", user="library@example.com").build_message("alice@example.com", NOTICE)
    assert msg["To"] == "alice@example.com"
    assert msg["From"] == "library@example.com"
    assert "Overdue" in msg["Subject"]


async def test_email_failure_reports_false(monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "try later")

    monkeypatch.setattr(notifier_module.smtplib, "SMTP", refuse)

    assert await EmailNotifier("smtp.example.com").notify_overdue("alice@example.com", NOTICE) is False


async def test_email_success(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            self.host = host

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def starttls(self):
            pass

        def login(self, user, password):
            pass

        def send_message(self, msg):
            sent.append(msg["To"])

    monkeypatch.setattr(notifier_module.smtplib, "SMTP", FakeSMTP)

    notifier = EmailNotifier("smtp.example.com", user="u", password="p")
    assert await notifier.notify_overdue("alice@example.com", NOTICE) is True
    assert sent == ["alice@example.com"]
