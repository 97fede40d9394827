from __future__ import annotations

import uuid
from collections import defaultdict

import structlog

from backend.src.config import Settings
from backend.src.contracts.errors import NotificationSendFailure, PersistenceFailure
from backend.src.contracts.interfaces import ICatalogStore, IPushProvider, ISnapshotCache
from backend.src.contracts.models import (
    DedupState,
    MatchOutcome,
    PriceObservation,
    PushMessage,
    SendResult,
    TrackingSubscription,
)
from backend.src.matcher.matcher import TargetPriceMatcher
from backend.src.notifier.messages import build_push_message

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Match changed, in-stock products against subscriptions and send alerts.

    A subscription is flipped to NOTIFIED only when the push provider
    reports its message as accepted. Failed messages leave the subscription
    ARMED, but only changed products are matched, so the retry happens on
    the next cycle in which that product's price or stock state changes
    again. While the price stays put, the user is not alerted.

    Push tokens are all looked up before anything is sent, so a
    ``CacheUnavailable`` from a token lookup propagates with no message
    sent and no subscription marked NOTIFIED.
    """

    def __init__(
        self,
        catalog: ICatalogStore,
        cache: ISnapshotCache,
        push_provider: IPushProvider,
        settings: Settings,
        matcher: TargetPriceMatcher | None = None,
    ) -> None:
        self._catalog = catalog
        self._cache = cache
        self._push = push_provider
        self._settings = settings
        self._matcher = matcher or TargetPriceMatcher()

    async def dispatch(self, candidates: list[PriceObservation]) -> int:
        """Send alerts for ``candidates`` and return how many were accepted."""
        product_ids = [c.product_id for c in candidates]
        subscriptions = await self._catalog.find_subscriptions_by_product_ids(product_ids)

        by_product: dict[uuid.UUID, list[TrackingSubscription]] = defaultdict(list)
        for subscription in subscriptions:
            by_product[subscription.product_id].append(subscription)

        messages: list[PushMessage] = []
        pending: list[TrackingSubscription] = []

        for candidate in candidates:
            for subscription in by_product.get(candidate.product_id, []):
                outcome = self._matcher.evaluate(subscription, candidate)
                if outcome == MatchOutcome.REARM:
                    await self._rearm(subscription)
                elif outcome == MatchOutcome.NOTIFY:
                    message = await self._build_message(subscription, candidate)
                    if message is not None:
                        messages.append(message)
                        pending.append(subscription)

        if not messages:
            logger.info("no_notifications_due", candidates=len(candidates))
            return 0

        results = await self._send(messages)

        delivered: list[TrackingSubscription] = []
        for subscription, result in zip(pending, results):
            if result.success:
                subscription.dedup_state = DedupState.NOTIFIED
                delivered.append(subscription)
            else:
                logger.warning(
                    "notification_not_delivered",
                    subscription_id=str(subscription.id),
                    user_id=str(subscription.user_id),
                    error=result.error,
                )

        try:
            await self._catalog.save_subscriptions(delivered)
        except PersistenceFailure as exc:
            # Sent but not recorded: these users can get a repeat alert next cycle.
            logger.error(
                "notified_state_not_persisted",
                count=len(delivered),
                error=str(exc),
            )

        logger.info(
            "notifications_sent",
            attempted=len(messages),
            delivered=len(delivered),
            failed=len(messages) - len(delivered),
        )
        return len(delivered)

    async def _rearm(self, subscription: TrackingSubscription) -> None:
        subscription.dedup_state = DedupState.ARMED
        try:
            await self._catalog.save_subscriptions([subscription])
        except PersistenceFailure as exc:
            logger.warning(
                "rearm_not_persisted",
                subscription_id=str(subscription.id),
                error=str(exc),
            )

    async def _build_message(
        self, subscription: TrackingSubscription, candidate: PriceObservation
    ) -> PushMessage | None:
        token = await self._cache.get_push_token(subscription.user_id)
        if token is None:
            logger.debug("push_token_missing", user_id=str(subscription.user_id))
            return None
        return build_push_message(
            candidate,
            token,
            thread_id=self._settings.notification_thread_id,
            currency_label=self._settings.currency_label,
        )

    async def _send(self, messages: list[PushMessage]) -> list[SendResult]:
        """Send the batch; a batch-level failure counts as failure for every message."""
        try:
            results = await self._push.send_batch(messages)
            if len(results) != len(messages):
                raise NotificationSendFailure(
                    f"Provider returned {len(results)} results for {len(messages)} messages"
                )
        except Exception as exc:  # noqa: BLE001
            logger.error("notification_batch_failed", count=len(messages), error=str(exc))
            return [SendResult(success=False, error=str(exc)) for _ in messages]
        return results
