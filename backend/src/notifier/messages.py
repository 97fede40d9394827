from __future__ import annotations

from backend.src.contracts.models import PriceObservation, PushMessage

ALERT_TITLE = "Price dropped below your target!"


def build_push_message(
    observation: PriceObservation,
    token: str,
    thread_id: str,
    currency_label: str,
) -> PushMessage:
    """Build a provider-agnostic price alert for one device token.

    ``data`` carries what the client needs to open the product screen.
    """
    return PushMessage(
        token=token,
        title=ALERT_TITLE,
        body=(
            f"{observation.product_name} is now "
            f"{observation.product_price:,.0f} {currency_label}."
        ),
        data={
            "shop": observation.shop,
            "product_code": observation.product_code,
        },
        image_url=observation.image_url,
        thread_id=thread_id,
    )
