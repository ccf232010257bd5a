import asyncio
import logging
import threading
from typing import Optional

import functions_framework

from .config import settings
from .dispatcher import NotificationDispatcher
from .errors import InvalidEventError
from .events import parse_created_event
from .firebase_client import FcmPushSender, FirebaseApp, FirestoreTokenStore
from .logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)

_dispatcher: Optional[NotificationDispatcher] = None
_dispatcher_lock = threading.Lock()


def get_dispatcher() -> NotificationDispatcher:
    """Build the dispatcher and its Firebase collaborators once per process."""
    global _dispatcher
    if _dispatcher is None:
        # Concurrent requests share one process
        with _dispatcher_lock:
            if _dispatcher is None:
                firebase = FirebaseApp(settings)
                store = FirestoreTokenStore(firebase.firestore_db, settings)
                _dispatcher = NotificationDispatcher(
                    token_reader=store,
                    token_writer=store,
                    push_sender=FcmPushSender(firebase.app, settings.fcm_batch_size)
                )
    return _dispatcher


@functions_framework.cloud_event
def send_user_notification_push(cloud_event) -> None:
    """Sends FCM when a per-user notification document is created."""
    try:
        record, user_id = parse_created_event(
            cloud_event.data, settings, cloud_event.get("datacontenttype")
        )
    except InvalidEventError as e:
        # A malformed payload will never parse, so do not ask for a retry
        logger.error(f"Ignoring event {cloud_event['id']}: {str(e)}")
        return None

    asyncio.run(get_dispatcher().dispatch(record, user_id))
    return None
