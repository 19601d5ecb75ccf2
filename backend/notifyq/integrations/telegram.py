from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

import httpx

from ..core.transport import DeliveryResult

log = logging.getLogger(__name__)

TELEGRAM_MAX_MESSAGE = 4096


def format_message(subject: str, body: str, priority: str = "normal") -> str:
    prefix = "🚨 " if priority == "high" else "🔔 "
    text = f"{prefix}{subject}\n\n{body}"
    return text[:TELEGRAM_MAX_MESSAGE]


class TelegramTransport:
    """Delivers alerts through the Telegram Bot API ``sendMessage`` method.

    Recipients are chat ids. The attempt succeeds only if every chat accepted
    the message; otherwise the combined error is reported and the job is
    retried for all chats.
    """

    def __init__(
        self,
        token: str,
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        if not token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN not set in .env")
        self._base_url = f"{api_base.rstrip('/')}/bot{token}"
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def send(
        self,
        recipients: Sequence[str],
        subject: str,
        body: str,
        priority: str = "normal",
    ) -> DeliveryResult:
        if not recipients:
            return DeliveryResult(success=False, error="No Telegram chats registered")

        text = format_message(subject, body, priority)
        errors: List[str] = []
        message_ids: List[str] = []

        for chat_id in recipients:
            payload: Dict[str, Any] = {
                "chat_id": chat_id,
                "text": text,
                "disable_notification": priority == "low",
            }
            try:
                resp = self._client.post(f"{self._base_url}/sendMessage", json=payload)
                data = resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                errors.append(f"chat {chat_id}: {exc}")
                continue

            if resp.status_code >= 400 or not data.get("ok"):
                errors.append(f"chat {chat_id}: {data.get('description') or resp.status_code}")
                continue
            message_ids.append(str(data.get("result", {}).get("message_id", "")))

        if errors:
            log.warning("telegram delivery failed: %s", "; ".join(errors), extra={"event": "telegram_failed"})
            return DeliveryResult(success=False, error="; ".join(errors))

        return DeliveryResult(success=True, message_id=",".join(message_ids))
