from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


class NotificationTransport(Protocol):
    """Anything that can attempt to deliver one message to a set of recipients.

    Implementations must bound every network call with a timeout and report
    failures through the returned result rather than raising.
    """

    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        priority: str = "normal",
    ) -> DeliveryResult: ...


class LogTransport:
    """Writes the message to the log instead of delivering it. Used in dev."""

    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        priority: str = "normal",
    ) -> DeliveryResult:
        log.info(
            "notification (log transport) to=%s priority=%s subject=%s",
            ",".join(recipients),
            priority,
            subject,
            extra={"event": "log_transport_send"},
        )
        return DeliveryResult(success=True)
