from __future__ import annotations

import structlog

from backend.src.contracts.models import (
    DedupState,
    MatchOutcome,
    PriceObservation,
    TrackingSubscription,
)

logger = structlog.get_logger(__name__)


class TargetPriceMatcher:
    """Decide what a price change means for one tracking subscription.

    Transitions, checked in priority order:
    - NOTIFIED and price back above target -> REARM (ready for the next excursion)
    - ARMED, price at or below target, alerts enabled -> NOTIFY
    - anything else -> NONE

    The matcher never mutates the subscription. The dispatcher applies
    REARM right away and NOTIFIED only after the push provider accepted
    the message.
    """

    def evaluate(
        self, subscription: TrackingSubscription, observation: PriceObservation
    ) -> MatchOutcome:
        price = observation.product_price
        target = subscription.target_price

        if subscription.dedup_state == DedupState.NOTIFIED and target < price:
            logger.debug(
                "subscription_rearmed",
                subscription_id=str(subscription.id),
                target_price=target,
                price=price,
            )
            return MatchOutcome.REARM

        if (
            target >= price
            and subscription.dedup_state == DedupState.ARMED
            and subscription.alert_enabled
        ):
            logger.debug(
                "subscription_matched",
                subscription_id=str(subscription.id),
                target_price=target,
                price=price,
            )
            return MatchOutcome.NOTIFY

        return MatchOutcome.NONE
