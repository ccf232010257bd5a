from typing import Dict, List, Optional

import pytest

from notification_dispatcher.schemas import DeliveryOutcome, DispatchMessage


class FakeTokenStore:
    """In-memory user records keyed by user ID."""

    def __init__(self, users: Optional[Dict[str, List]] = None):
        self.users = users or {}
        self.reads = []
        self.removals = []

    async def get_tokens(self, user_id):
        self.reads.append(user_id)
        return list(self.users.get(user_id) or [])

    async def remove_tokens(self, user_id, tokens):
        self.removals.append((user_id, list(tokens)))
        doomed = set(tokens)
        self.users[user_id] = [t for t in self.users.get(user_id, []) if t not in doomed]


class FakePushSender:
    """Records messages and answers with preset per-token error codes."""

    def __init__(self, failures: Optional[Dict[str, str]] = None):
        self.failures = failures or {}
        self.messages: List[DispatchMessage] = []

    async def send_multicast(self, message):
        self.messages.append(message)
        return [
            DeliveryOutcome(token=t, success=t not in self.failures, error_code=self.failures.get(t))
            for t in message.tokens
        ]


@pytest.fixture
def store():
    return FakeTokenStore()


@pytest.fixture
def sender():
    return FakePushSender()
