"""
Outbound email transport.

``SMTPMailer`` delivers through aiosmtplib (STARTTLS on 587, implicit TLS
on 465). ``NullMailer`` is used when SMTP is disabled and only logs.
"""

import re
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Optional

import aiosmtplib

from storefront_orders.core.logging_config import get_logger
from storefront_orders.domain.errors import NotificationError

logger = get_logger(__name__)

_TAG_RE = re.compile(r"<[^>]*>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def html_to_text(html: str) -> str:
    text = _TAG_RE.sub("", html)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


class SMTPMailer:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = "noreply@localhost",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def build_message(self, to: str, subject: str, html: str, text: Optional[str] = None) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message["Date"] = formatdate(localtime=True)
        message["Message-ID"] = make_msgid()
        message.set_content(text or html_to_text(html))
        message.add_alternative(html, subtype="html")
        return message

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        try:
            # Header values with CR or LF are refused while building
            message = self.build_message(to, subject, html, text)
        except ValueError as e:
            raise NotificationError(f"Cannot build email to {to!r}: {e}")
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.port == 465,
                start_tls=self.port != 465,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email to {to}: {e}")
        logger.info(
            f"Email sent: {subject}",
            extra={"extra_fields": {"to": to, "message_id": message["Message-ID"]}},
        )


class NullMailer:
    """Mailer used when SMTP delivery is switched off"""

    async def send(self, to: str, subject: str, html: str, text: Optional[str] = None) -> None:
        logger.info(
            f"SMTP disabled, email not sent: {subject}",
            extra={"extra_fields": {"to": to}},
        )
