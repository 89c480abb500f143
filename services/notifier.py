"""Overdue notices.

Notifiers are best effort: ``notify_overdue`` reports success as a bool and
never raises, so a mail outage cannot affect the sweep that triggered it.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage

import config
from models import OverdueNotice

logger = logging.getLogger(__name__)

SUBJECT = "Overdue Book Notice - Book Management System"


def render_notice(notice: OverdueNotice) -> str:
    return (
        f"Dear {notice.username},\n\n"
        "This is a reminder that the following book is overdue:\n\n"
        f"    {notice.book_title}\n"
        f"    Due Date: {notice.due_date:%Y-%m-%d}\n\n"
        "Please return the book as soon as possible to avoid additional fines.\n"
        f"Fine Rate: ${config.FINE_PER_DAY} per day\n\n"
        "Thank you for your cooperation!\n\n"
        "--\n"
        "This is an automated message from the Book Management System. "
        "Please do not reply to this email.\n"
    )


class LoggingNotifier:
    """Used when no SMTP server is configured."""

    async def notify_overdue(self, email: str, notice: OverdueNotice) -> bool:
        logger.info(
            "Overdue notice for %s <%s>: '%s' was due %s",
            notice.username, email, notice.book_title, notice.due_date.isoformat(),
        )
        return True


class EmailNotifier:
    def __init__(self, host: str, port: int = 587, user: str = None, password: str = None, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def build_message(self, email: str, notice: OverdueNotice) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = SUBJECT
        msg["From"] = self.user or "no-reply@library.local"
        msg["To"] = email
        msg.set_content(render_notice(notice))
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)

    async def notify_overdue(self, email: str, notice: OverdueNotice) -> bool:
        msg = self.build_message(email, notice)
        try:
            # smtplib blocks; keep it off the event loop
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error sending overdue email to %s: %s", email, e)
            return False
        logger.info("Overdue email sent to %s", email)
        return True


def build_notifier():
    if config.SMTP_HOST:
        return EmailNotifier(config.SMTP_HOST, config.SMTP_PORT, config.EMAIL_USER, config.EMAIL_PASSWORD)
    return LoggingNotifier()
