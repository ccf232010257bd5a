import json
import re
from typing import Any, Dict, Optional, Tuple

from google.events.cloud import firestore as firestoredata
from google.protobuf.message import DecodeError

from .config import Settings, settings as default_settings
from .errors import InvalidEventError
from .schemas import NotificationRecord

# Oneof members of a Firestore Value that decode to a scalar
PROTO_SCALAR_KINDS = {
    "string_value": "stringValue",
    "integer_value": "integerValue",
    "double_value": "doubleValue",
    "boolean_value": "booleanValue",
    "timestamp_value": "timestampValue",
}


def decode_value(value: Any) -> Any:
    """Decode one Firestore typed value from its JSON form. Non-scalars decode to None."""
    if not isinstance(value, dict):
        raise InvalidEventError(f"Firestore value is not an object: {value!r}")
    if "stringValue" in value:
        return value["stringValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "timestampValue" in value:
        return value["timestampValue"]
    return None


def decode_fields(fields: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if fields is None:
        return {}
    if not isinstance(fields, dict):
        raise InvalidEventError("Document fields are not an object")
    return {name: decode_value(value) for name, value in fields.items()}


def decode_proto_value(value: firestoredata.Value) -> Any:
    for kind, json_name in PROTO_SCALAR_KINDS.items():
        if kind in value:
            raw = getattr(value, kind)
            if kind == "timestamp_value":
                raw = raw.rfc3339()
            return decode_value({json_name: raw})
    return None


def document_from_protobuf(data: bytes) -> Dict[str, Any]:
    """
    Decode an application/protobuf Firestore event into the JSON document shape.

    Args:
        data: Serialized google.events.cloud.firestore.v1.DocumentEventData

    Returns:
        {"name": ..., "fields": {...}} with fields already decoded
    """
    try:
        event = firestoredata.DocumentEventData.deserialize(data)
    except DecodeError as e:
        raise InvalidEventError(f"Event data is not a Firestore protobuf: {e}") from e
    return {
        "name": event.value.name,
        "fields": {name: decode_proto_value(value) for name, value in event.value.fields.items()},
    }


def is_json_content(content_type: Optional[str]) -> bool:
    return bool(content_type) and "json" in content_type.lower()


def document_pattern(config: Settings) -> re.Pattern:
    return re.compile(
        r"(?:^|/documents/){users}/(?P<user_id>[^/]+)/{notifications}/(?P<notification_id>[^/]+)$".format(
            users=re.escape(config.users_collection),
            notifications=re.escape(config.notifications_collection),
        )
    )


def parse_document_path(name: str, config: Optional[Settings] = None) -> Tuple[str, str]:
    """
    Extract (user_id, notification_id) from a Firestore document resource name.

    Args:
        name: e.g. projects/p/databases/(default)/documents/users/u1/notifications/n1

    Raises:
        InvalidEventError: if the path is not a per-user notification document
    """
    config = config or default_settings
    match = document_pattern(config).search(name or "")
    if not match:
        raise InvalidEventError(f"Not a notification document: {name!r}")
    return match.group("user_id"), match.group("notification_id")


def parse_created_event(data: Any,
                        config: Optional[Settings] = None,
                        content_type: Optional[str] = None) -> Tuple[NotificationRecord, str]:
    """
    Turn a Firestore document-created event payload into a record and its owner.

    Bytes are read as DocumentEventData protobuf, the platform default, unless
    the content type says JSON.

    Args:
        data: CloudEvent data with the created document under "value"
        config: Settings providing the collection names
        content_type: The event's datacontenttype attribute

    Returns:
        (NotificationRecord, user_id)

    Raises:
        InvalidEventError: if the payload carries no document or an unexpected path
    """
    if isinstance(data, bytes) and not is_json_content(content_type):
        document = document_from_protobuf(data)
        fields = document["fields"]
    else:
        if isinstance(data, (bytes, str)):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise InvalidEventError(f"Event data is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidEventError("Event data is not a JSON object")
        document = data.get("value")
        if not isinstance(document, dict):
            raise InvalidEventError("Event carries no created document")
        fields = decode_fields(document.get("fields"))

    if not document.get("name"):
        raise InvalidEventError("Event carries no created document")

    user_id, notification_id = parse_document_path(document["name"], config)
    record = NotificationRecord.from_document(notification_id, fields)
    return record, user_id
