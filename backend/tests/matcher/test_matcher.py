from __future__ import annotations

import uuid

import pytest

from backend.src.contracts.models import (
    DedupState,
    MatchOutcome,
    PriceObservation,
    TrackingSubscription,
)
from backend.src.matcher.matcher import TargetPriceMatcher

PRODUCT_ID = uuid.UUID("12345678-1234-5678-1234-567812345678")


def _make_observation(price: float) -> PriceObservation:
    return PriceObservation(
        product_id=PRODUCT_ID,
        product_price=price,
        is_sold_out=False,
        product_name="Galaxy Buds Pro",
        image_url="https://cdn.example.com/buds.jpg",
        shop="11st",
        product_code="4861234",
    )


def _make_subscription(
    target_price: float = 100.0,
    dedup_state: DedupState = DedupState.ARMED,
    alert_enabled: bool = True,
) -> TrackingSubscription:
    return TrackingSubscription(
        id=uuid.uuid4(),
        user_id=uuid.uuid4(),
        product_id=PRODUCT_ID,
        target_price=target_price,
        dedup_state=dedup_state,
        alert_enabled=alert_enabled,
    )


class TestNotify:
    def test_armed_below_target_notifies(self) -> None:
        matcher = TargetPriceMatcher()

        outcome = matcher.evaluate(_make_subscription(), _make_observation(90.0))

        assert outcome == MatchOutcome.NOTIFY

    def test_price_equal_to_target_notifies(self) -> None:
        matcher = TargetPriceMatcher()

        outcome = matcher.evaluate(_make_subscription(), _make_observation(100.0))

        assert outcome == MatchOutcome.NOTIFY

    def test_alerts_disabled_does_not_notify(self) -> None:
        matcher = TargetPriceMatcher()
        subscription = _make_subscription(alert_enabled=False)

        assert matcher.evaluate(subscription, _make_observation(90.0)) == MatchOutcome.NONE

    def test_already_notified_does_not_notify_again(self) -> None:
        matcher = TargetPriceMatcher()
        subscription = _make_subscription(dedup_state=DedupState.NOTIFIED)

        assert matcher.evaluate(subscription, _make_observation(85.0)) == MatchOutcome.NONE


class TestRearm:
    def test_notified_above_target_rearms(self) -> None:
        matcher = TargetPriceMatcher()
        subscription = _make_subscription(dedup_state=DedupState.NOTIFIED)

        assert matcher.evaluate(subscription, _make_observation(130.0)) == MatchOutcome.REARM

    def test_rearm_ignores_alert_enabled(self) -> None:
        matcher = TargetPriceMatcher()
        subscription = _make_subscription(dedup_state=DedupState.NOTIFIED, alert_enabled=False)

        assert matcher.evaluate(subscription, _make_observation(130.0)) == MatchOutcome.REARM

    def test_armed_above_target_is_noop(self) -> None:
        matcher = TargetPriceMatcher()

        assert matcher.evaluate(_make_subscription(), _make_observation(120.0)) == MatchOutcome.NONE


class TestMatcherIsPure:
    @pytest.mark.parametrize("price", [50.0, 100.0, 150.0])
    @pytest.mark.parametrize("state", [DedupState.ARMED, DedupState.NOTIFIED])
    def test_evaluate_never_mutates_subscription(self, price: float, state: DedupState) -> None:
        matcher = TargetPriceMatcher()
        subscription = _make_subscription(dedup_state=state)

        matcher.evaluate(subscription, _make_observation(price))

        assert subscription.dedup_state == state


class TestExcursionSequence:
    def test_one_alert_per_excursion(self) -> None:
        """Apply outcomes the way the dispatcher does, assuming every send succeeds."""
        matcher = TargetPriceMatcher()
        subscription = _make_subscription(target_price=100.0)
        notified_at: list[float] = []

        for price in [120.0, 90.0, 85.0, 130.0, 80.0]:
            outcome = matcher.evaluate(subscription, _make_observation(price))
            if outcome == MatchOutcome.NOTIFY:
                notified_at.append(price)
                subscription.dedup_state = DedupState.NOTIFIED
            elif outcome == MatchOutcome.REARM:
                subscription.dedup_state = DedupState.ARMED

        assert notified_at == [90.0, 80.0]
