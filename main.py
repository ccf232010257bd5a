# Cloud Functions source entry point
from notification_dispatcher.functions import send_user_notification_push

__all__ = ["send_user_notification_push"]
