import asyncio
import json
import logging
from typing import List, Optional, Sequence

import firebase_admin
import google.cloud.firestore
from firebase_admin import credentials, exceptions, firestore, messaging

from .config import Settings, settings as default_settings
from .errors import FirebaseSetupError
from .schemas import DeliveryOutcome, DispatchMessage

logger = logging.getLogger(__name__)


class FirebaseApp:
    """Process-wide handle on the default Firebase app."""
    _instance = None

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super(FirebaseApp, cls).__new__(cls)
            cls._instance.initialized = False
        return cls._instance

    def __init__(self, config: Optional[Settings] = None):
        if self.initialized:
            return
        self.config = config or default_settings
        self.app = None
        self.firestore_db = None
        self.connect()
        self.initialized = True

    def connect(self) -> None:
        try:
            # Try to get the existing default app
            self.app = firebase_admin.get_app()
            logger.info("Retrieved existing Firebase app")
        except ValueError:
            self.app = self._initialize_app()
        self.firestore_db = firestore.client(self.app)

    def _initialize_app(self) -> firebase_admin.App:
        options = {}
        if self.config.firebase_project_id:
            options["projectId"] = self.config.firebase_project_id

        # Application Default Credentials when no secret is configured
        cred = self._load_credential()
        try:
            app = firebase_admin.initialize_app(credential=cred, options=options or None)
            logger.info(f"Initialized Firebase app: {app.name}")
            return app
        except ValueError:
            # Another caller initialized the default app first
            logger.info("Firebase app already initialized")
            return firebase_admin.get_app()

    def _load_credential(self) -> Optional[credentials.Base]:
        cert_json = self.config.firebase_secret
        if not cert_json:
            return None
        try:
            cert_dict = json.loads(cert_json)
            if isinstance(cert_dict, str):
                cert_dict = json.loads(cert_dict)
            return credentials.Certificate(cert_dict)
        except (TypeError, ValueError) as e:
            raise FirebaseSetupError(f"Invalid FIREBASE_SECRET: {e}") from e

    @classmethod
    def reset(cls) -> None:
        """Forget the cached instance. Used by tests."""
        cls._instance = None


class FirestoreTokenStore:
    """Reads and prunes the FCM token list on a user document."""

    def __init__(self, firestore_db: google.cloud.firestore.Client, config: Optional[Settings] = None):
        self.firestore_db = firestore_db
        self.config = config or default_settings

    def _user_ref(self, user_id: str):
        return self.firestore_db.collection(self.config.users_collection).document(user_id)

    async def get_tokens(self, user_id: str) -> List[str]:
        """
        Get a user's FCM tokens from Firestore.

        Args:
            user_id: The user's ID

        Returns:
            The raw token list, empty when the user or field is missing
        """
        user = await asyncio.to_thread(self._user_ref(user_id).get)
        if not user.exists:
            logger.info(f"User {user_id} not found")
            return []

        tokens = (user.to_dict() or {}).get(self.config.tokens_field) or []
        if not isinstance(tokens, list):
            logger.warning(f"Field {self.config.tokens_field} of user {user_id} is not a list")
            return []
        return tokens

    async def remove_tokens(self, user_id: str, tokens: Sequence[str]) -> None:
        """Remove every occurrence of the given tokens from the user's list."""
        await asyncio.to_thread(
            self._user_ref(user_id).update,
            {self.config.tokens_field: firestore.ArrayRemove(list(tokens))}
        )


def normalize_error_code(error: Optional[Exception]) -> Optional[str]:
    """
    Map an Admin SDK send exception to a messaging/* provider code.

    Args:
        error: Exception attached to a failed SendResponse

    Returns:
        Provider error code, or None when there is no exception
    """
    if error is None:
        return None
    if isinstance(error, messaging.UnregisteredError):
        return "messaging/registration-token-not-registered"
    if isinstance(error, messaging.SenderIdMismatchError):
        return "messaging/mismatched-credential"
    if isinstance(error, exceptions.InvalidArgumentError):
        return "messaging/invalid-argument"
    code = getattr(error, "code", None)
    if code:
        return "messaging/" + str(code).lower().replace("_", "-")
    return "messaging/unknown-error"


class FcmPushSender:
    """Sends multicast messages through Firebase Cloud Messaging."""

    def __init__(self, app: Optional[firebase_admin.App] = None, batch_size: Optional[int] = None):
        self.app = app
        self.batch_size = batch_size or default_settings.fcm_batch_size

    def _build_message(self, message: DispatchMessage, tokens: List[str]) -> messaging.MulticastMessage:
        return messaging.MulticastMessage(
            notification=messaging.Notification(
                title=message.title,
                body=message.body
            ),
            data=dict(message.data),
            tokens=tokens
        )

    async def send_multicast(self, message: DispatchMessage) -> List[DeliveryOutcome]:
        """
        Send a message to every token, batching to FCM's multicast limit.

        Args:
            message: Message with the target tokens

        Returns:
            One DeliveryOutcome per token, in token order
        """
        outcomes: List[DeliveryOutcome] = []
        for i in range(0, len(message.tokens), self.batch_size):
            batch = message.tokens[i:i + self.batch_size]
            batch_response = await asyncio.to_thread(
                messaging.send_each_for_multicast,
                self._build_message(message, batch),
                app=self.app
            )
            logger.debug(
                f"FCM batch of {len(batch)}: {batch_response.success_count} succeeded, "
                f"{batch_response.failure_count} failed"
            )
            for token, resp in zip(batch, batch_response.responses):
                outcomes.append(DeliveryOutcome(
                    token=token,
                    success=resp.success,
                    error_code=None if resp.success else normalize_error_code(resp.exception)
                ))
        return outcomes

