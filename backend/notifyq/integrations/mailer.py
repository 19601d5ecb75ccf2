from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Sequence

from ..core.transport import DeliveryResult

log = logging.getLogger(__name__)

# X-Priority values understood by most mail clients
_X_PRIORITY = {"high": "1 (Highest)", "normal": "3 (Normal)", "low": "5 (Lowest)"}


class EmailTransport:
    """SMTP delivery to the configured admin addresses."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
        from_address: str = "noreply@localhost",
        from_name: str = "Rental Management System",
        timeout: float = 10.0,
        smtp_class: type[smtplib.SMTP] = smtplib.SMTP,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout
        self._smtp_class = smtp_class

    def build_message(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        priority: str = "normal",
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.from_name, self.from_address))
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg["X-Priority"] = _X_PRIORITY.get(priority, _X_PRIORITY["normal"])
        if priority == "high":
            msg["Importance"] = "High"
        msg.set_content(body)
        return msg

    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        priority: str = "normal",
    ) -> DeliveryResult:
        if not recipients:
            return DeliveryResult(success=False, error="No admin emails configured")

        msg = self.build_message(recipients, subject, body, priority)
        try:
            with self._smtp_class(self.host, self.port, timeout=self.timeout) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            log.warning("email delivery failed: %s", exc, extra={"event": "email_failed"})
            return DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)

        return DeliveryResult(success=True, message_id=msg["Message-ID"])
