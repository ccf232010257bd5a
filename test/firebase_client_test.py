from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from firebase_admin import exceptions, firestore, messaging

from notification_dispatcher.config import Settings
from notification_dispatcher.errors import FirebaseSetupError
from notification_dispatcher.firebase_client import (
    FcmPushSender,
    FirebaseApp,
    FirestoreTokenStore,
    normalize_error_code,
)
from notification_dispatcher.schemas import DispatchMessage


@pytest.fixture(autouse=True)
def reset_firebase_app():
    FirebaseApp.reset()
    yield
    FirebaseApp.reset()


def firestore_with_user(data, exists=True):
    db = MagicMock()
    doc = MagicMock(exists=exists)
    doc.to_dict.return_value = data
    db.collection.return_value.document.return_value.get.return_value = doc
    return db


# === Error codes ===

def test_normalize_error_code_maps_permanent_errors():
    assert normalize_error_code(messaging.UnregisteredError("gone")) == "messaging/registration-token-not-registered"
    assert normalize_error_code(messaging.SenderIdMismatchError("other sender")) == "messaging/mismatched-credential"
    assert normalize_error_code(exceptions.InvalidArgumentError("bad token")) == "messaging/invalid-argument"


def test_normalize_error_code_keeps_transient_errors_distinct():
    assert normalize_error_code(exceptions.UnavailableError("try later")) == "messaging/unavailable"
    assert normalize_error_code(messaging.QuotaExceededError("slow down")) == "messaging/resource-exhausted"
    assert normalize_error_code(RuntimeError("boom")) == "messaging/unknown-error"
    assert normalize_error_code(None) is None


# === Firestore ===

@pytest.mark.asyncio
async def test_get_tokens_reads_user_document():
    db = firestore_with_user({"fcmTokens": ["t1", "t2"], "name": "Ann"})
    store = FirestoreTokenStore(db, Settings())

    assert await store.get_tokens("u1") == ["t1", "t2"]
    db.collection.assert_called_with("users")
    db.collection.return_value.document.assert_called_with("u1")


@pytest.mark.asyncio
@pytest.mark.parametrize("data,exists", [
    ({}, True),
    ({"fcmTokens": None}, True),
    ({"fcmTokens": "t1"}, True),
    (None, False),
])
async def test_get_tokens_missing_data(data, exists):
    store = FirestoreTokenStore(firestore_with_user(data, exists), Settings())

    assert await store.get_tokens("u1") == []


@pytest.mark.asyncio
async def test_remove_tokens_uses_array_remove():
    db = firestore_with_user({})
    store = FirestoreTokenStore(db, Settings())

    await store.remove_tokens("u1", ("t2", "t3"))

    update = db.collection.return_value.document.return_value.update
    update.assert_called_once()
    transform = update.call_args.args[0]["fcmTokens"]
    assert isinstance(transform, firestore.ArrayRemove)
    assert list(transform.values) == ["t2", "t3"]


# === FCM ===

def batch_response(results):
    return SimpleNamespace(
        responses=[SimpleNamespace(success=exc is None, exception=exc) for exc in results],
        success_count=sum(1 for exc in results if exc is None),
        failure_count=sum(1 for exc in results if exc is not None),
    )


@pytest.mark.asyncio
async def test_send_multicast_builds_fcm_message():
    message = DispatchMessage(
        tokens=["tA", "tB"],
        title="Hello",
        body="World",
        data={"type": "chat", "groupId": "g1", "notificationId": "n1"},
    )
    response = batch_response([None, messaging.UnregisteredError("gone")])

    with patch.object(messaging, "send_each_for_multicast", return_value=response) as send:
        outcomes = await FcmPushSender(batch_size=500).send_multicast(message)

    sent = send.call_args.args[0]
    assert sent.tokens == ["tA", "tB"]
    assert sent.notification.title == "Hello"
    assert sent.notification.body == "World"
    assert sent.data == {"type": "chat", "groupId": "g1", "notificationId": "n1"}
    assert [(o.token, o.success, o.error_code) for o in outcomes] == [
        ("tA", True, None),
        ("tB", False, "messaging/registration-token-not-registered"),
    ]


@pytest.mark.asyncio
async def test_send_multicast_splits_large_token_lists():
    tokens = [f"t{i}" for i in range(5)]
    message = DispatchMessage(tokens=tokens, title="T", body="", data={})

    def fake_send(multicast, app=None):
        return batch_response([None] * len(multicast.tokens))

    with patch.object(messaging, "send_each_for_multicast", side_effect=fake_send) as send:
        outcomes = await FcmPushSender(batch_size=2).send_multicast(message)

    assert [call.args[0].tokens for call in send.call_args_list] == [["t0", "t1"], ["t2", "t3"], ["t4"]]
    assert [o.token for o in outcomes] == tokens


# === App setup ===

def test_firebase_app_reuses_existing_app():
    existing = MagicMock(name="app")
    with patch("firebase_admin.get_app", return_value=existing), \
            patch("firebase_admin.initialize_app") as init, \
            patch("notification_dispatcher.firebase_client.firestore.client") as client:
        firebase = FirebaseApp(Settings())

    assert firebase.app is existing
    init.assert_not_called()
    client.assert_called_once_with(existing)
    assert FirebaseApp() is firebase


def test_firebase_app_ignores_already_initialized():
    existing = MagicMock(name="app")
    with patch("firebase_admin.get_app", side_effect=[ValueError("no app"), existing]), \
            patch("firebase_admin.initialize_app", side_effect=ValueError("already exists")), \
            patch("notification_dispatcher.firebase_client.firestore.client"):
        firebase = FirebaseApp(Settings(firebase_secret=None))

    assert firebase.app is existing


def test_firebase_app_rejects_bad_secret():
    with patch("firebase_admin.get_app", side_effect=ValueError("no app")):
        with pytest.raises(FirebaseSetupError):
            FirebaseApp(Settings(firebase_secret="not json"))
