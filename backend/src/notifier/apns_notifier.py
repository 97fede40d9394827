from __future__ import annotations

import asyncio

import structlog
from aioapns import APNs, NotificationRequest

from backend.src.config import Settings
from backend.src.contracts.models import PushMessage, SendResult

logger = structlog.get_logger(__name__)

_BASE_DELAY = 1.0


def build_apns_notification(message: PushMessage, bundle_id: str) -> NotificationRequest:
    """Build an APNs NotificationRequest with rich notification support."""
    return NotificationRequest(
        device_token=message.token,
        message={
            "aps": {
                "alert": {
                    "title": message.title,
                    "body": message.body,
                },
                "sound": "default",
                "mutable-content": 1,
                "thread-id": message.thread_id,
            },
            "image_url": message.image_url,
            **message.data,
        },
        apns_topic=bundle_id,
    )


class ApnsPushProvider:
    """IPushProvider that sends a batch of messages through APNs.

    Messages are sent concurrently; the returned results are positionally
    aligned with the input list.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: APNs | None = None

    def _get_client(self) -> APNs:
        if self._client is None:
            self._client = APNs(
                key=self._settings.apns_auth_key_path,
                key_id=self._settings.apns_auth_key_id,
                team_id=self._settings.apns_team_id,
                topic=self._settings.apns_bundle_id,
                use_sandbox=self._settings.apns_use_sandbox,
            )
        return self._client

    async def send_batch(self, messages: list[PushMessage]) -> list[SendResult]:
        results = await asyncio.gather(
            *(self._send_one(index, message) for index, message in enumerate(messages))
        )
        logger.info(
            "apns_batch_sent",
            total=len(results),
            succeeded=sum(1 for r in results if r.success),
        )
        return list(results)

    async def _send_one(self, index: int, message: PushMessage) -> SendResult:
        log = logger.bind(message_index=index, channel="apns")
        notification = build_apns_notification(message, self._settings.apns_bundle_id)
        max_retries = self._settings.push_max_retries

        last_error = "unknown"
        for attempt in range(max_retries):
            try:
                client = self._get_client()
                result = await client.send_notification(notification)
                if result.is_successful:
                    log.info("apns_sent", attempt=attempt + 1)
                    return SendResult(success=True)
                log.warning(
                    "apns_rejected",
                    attempt=attempt + 1,
                    reason=result.description,
                )
                last_error = f"APNs rejected: {result.description}"
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc)
                log.warning(
                    "apns_send_failed",
                    attempt=attempt + 1,
                    error=last_error,
                )

            if attempt < max_retries - 1:
                delay = _BASE_DELAY * (2**attempt)
                log.warning("apns_retrying", retry_in=delay)
                await asyncio.sleep(delay)

        log.error("apns_send_exhausted", error=last_error)
        return SendResult(success=False, error=last_error)
