from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .types import AlertPayload, DeliveryResult

logger = logging.getLogger(__name__)

GONE_MARKERS = (
    "chat not found",
    "bot was blocked",
    "bot was kicked",
    "user is deactivated",
    "group chat was upgraded",
)
# Permission errors leave the subscriber in place.
RECOVERABLE_MARKERS = ("not enough rights",)
MEDIA_MARKERS = (
    "wrong file identifier",
    "failed to get http url content",
    "wrong type of the web page content",
    "wrong remote file",
    "wrong file_id",
)


def classify_failure(status_code: int, description: str, media_attached: bool) -> DeliveryResult:
    text = description.lower()
    if any(marker in text for marker in RECOVERABLE_MARKERS):
        return DeliveryResult.FAILED
    if status_code == 403 or any(marker in text for marker in GONE_MARKERS):
        return DeliveryResult.GONE
    if media_attached and status_code == 400 and any(marker in text for marker in MEDIA_MARKERS):
        return DeliveryResult.MEDIA_REJECTED
    return DeliveryResult.FAILED


def build_request(chat_id: str, payload: AlertPayload) -> tuple[str, dict[str, Any]]:
    media = payload.media if payload.media is not None and payload.media.sendable else None
    if media is not None:
        method = "sendAnimation"
        body: dict[str, Any] = {
            "chat_id": chat_id,
            "animation": media.reference,
            "caption": payload.text,
        }
    else:
        method = "sendMessage"
        body = {
            "chat_id": chat_id,
            "text": payload.text,
            "disable_web_page_preview": True,
        }
    body["parse_mode"] = "HTML"
    if payload.buttons:
        body["reply_markup"] = {
            "inline_keyboard": [[{"text": b.text, "url": b.url} for b in payload.buttons]]
        }
    return method, body


class TelegramNotifier:
    def __init__(
        self,
        bot_token: str,
        timeout: float = 15.0,
        retries: int = 4,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.retries = retries
        self._base_url = f"https://api.telegram.org/bot{bot_token}"
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def deliver(self, subscriber_id: str, payload: AlertPayload) -> DeliveryResult:
        method, body = build_request(subscriber_id, payload)
        return await self._post(method, body, media_attached=method == "sendAnimation")

    async def _post(self, method: str, body: dict[str, Any], media_attached: bool) -> DeliveryResult:
        delay = 1.0
        url = f"{self._base_url}/{method}"

        for attempt in range(self.retries):
            last_attempt = attempt == self.retries - 1
            try:
                response = await self._client.post(url, json=body)
            except httpx.TransportError as exc:
                if last_attempt:
                    logger.warning("Telegram %s failed after %d attempts: %s", method, self.retries, exc)
                    return DeliveryResult.FAILED
                logger.warning("Telegram send attempt %d failed: %s", attempt + 1, exc)
                await asyncio.sleep(delay)
                delay *= 2
                continue

            data = _json_or_empty(response)

            if response.status_code == 429:
                retry_after = 2.0
                try:
                    retry_after = float(data.get("parameters", {}).get("retry_after", retry_after))
                except (TypeError, ValueError, AttributeError):
                    pass
                if last_attempt:
                    logger.warning("Telegram %s still rate limited after %d attempts", method, self.retries)
                    return DeliveryResult.FAILED
                logger.warning("Telegram rate limited. Sleeping %.1fs", retry_after)
                await asyncio.sleep(retry_after)
                continue

            if response.status_code >= 500:
                if last_attempt:
                    return DeliveryResult.FAILED
                logger.warning("Telegram %s returned %d, retrying", method, response.status_code)
                await asyncio.sleep(delay)
                delay *= 2
                continue

            if response.is_success and data.get("ok", False):
                return DeliveryResult.DELIVERED

            description = str(data.get("description", ""))
            result = classify_failure(response.status_code, description, media_attached)
            logger.warning(
                "Telegram %s rejected (%d): %s -> %s",
                method,
                response.status_code,
                description,
                result.value,
            )
            return result

        return DeliveryResult.FAILED


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
