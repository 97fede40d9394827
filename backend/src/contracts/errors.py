from __future__ import annotations


class PriceAlertError(Exception):
    """Base class for errors raised by the price check pipeline."""


class FetchFailure(PriceAlertError):
    def __init__(self, shop: str, product_code: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {shop}/{product_code}: {reason}")
        self.shop = shop
        self.product_code = product_code
        self.reason = reason


class CacheUnavailable(PriceAlertError):
    """The snapshot cache could not be reached; the cycle cannot diff safely."""


class PersistenceFailure(PriceAlertError):
    """A catalog or price history read/write failed."""


class NotificationSendFailure(PriceAlertError):
    """The push provider failed the whole batch rather than single messages."""
