import logging
from typing import List, Optional, Protocol, Sequence

from .schemas import DeliveryOutcome, DispatchMessage, DispatchResult, NotificationRecord

logger = logging.getLogger(__name__)

# Substrings of FCM error codes that mean a token will never work again
INVALID_TOKEN_CODES = [
    "registration-token-not-registered",
    "invalid-argument",
    "mismatch",
]


class TokenReader(Protocol):
    async def get_tokens(self, user_id: str) -> List[str]:
        ...


class TokenWriter(Protocol):
    async def remove_tokens(self, user_id: str, tokens: Sequence[str]) -> None:
        ...


class PushSender(Protocol):
    async def send_multicast(self, message: DispatchMessage) -> List[DeliveryOutcome]:
        ...


def is_permanent_failure(error_code: Optional[str]) -> bool:
    """Return True if the error code marks the token as permanently unusable."""
    if not error_code:
        return False
    return any(code in error_code for code in INVALID_TOKEN_CODES)


def clean_tokens(tokens) -> List[str]:
    """Drop missing and empty entries from a raw token list."""
    if not tokens:
        return []
    return [token for token in tokens if isinstance(token, str) and token]


class NotificationDispatcher:
    """Sends a push for a new notification record and prunes dead tokens."""

    def __init__(self, token_reader: TokenReader, token_writer: TokenWriter, push_sender: PushSender):
        """
        Initialize the dispatcher.

        Args:
            token_reader: Loads a user's push tokens
            token_writer: Removes tokens from a user record
            push_sender: Delivers a multicast message
        """
        self.token_reader = token_reader
        self.token_writer = token_writer
        self.push_sender = push_sender

    async def dispatch(self, record: NotificationRecord, user_id: str) -> DispatchResult:
        """
        Deliver one notification record to every device of its user.

        Store and provider failures propagate to the caller; per-token
        delivery failures never fail the invocation.

        Args:
            record: The newly created notification record
            user_id: Owner of the notification

        Returns:
            DispatchResult describing what was sent and removed
        """
        result = DispatchResult(userId=user_id, notificationId=record.notificationId)

        tokens = clean_tokens(await self.token_reader.get_tokens(user_id))
        if not tokens:
            logger.info(f"No FCM tokens for user {user_id}, skipping notification {record.notificationId}")
            result.skipped = True
            return result

        message = DispatchMessage.for_record(record, tokens)
        outcomes = await self.push_sender.send_multicast(message)

        result.tokenCount = len(tokens)
        invalid_tokens = []
        for outcome in outcomes:
            if outcome.success:
                result.successCount += 1
                continue

            result.failureCount += 1
            if not is_permanent_failure(outcome.error_code):
                logger.warning(f"Transient FCM failure for user {user_id}: {outcome.error_code}")
            elif outcome.token in tokens:
                invalid_tokens.append(outcome.token)

        logger.info(
            f"Sent notification {record.notificationId} to user {user_id}: "
            f"{result.successCount} succeeded, {result.failureCount} failed"
        )

        if invalid_tokens:
            await self.token_writer.remove_tokens(user_id, invalid_tokens)
            result.removedTokens = invalid_tokens
            logger.info(f"Removed {len(invalid_tokens)} invalid tokens for user {user_id}")

        return result
