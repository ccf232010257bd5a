from .dispatcher import NotificationDispatcher
from .schemas import DeliveryOutcome, DispatchMessage, DispatchResult, NotificationRecord

__all__ = [
    "NotificationDispatcher",
    "NotificationRecord",
    "DispatchMessage",
    "DeliveryOutcome",
    "DispatchResult",
]
