from backend.src.notifier.apns_notifier import ApnsPushProvider
from backend.src.notifier.dispatcher import NotificationDispatcher
from backend.src.notifier.messages import build_push_message

__all__ = [
    "ApnsPushProvider",
    "NotificationDispatcher",
    "build_push_message",
]
