import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator

DEFAULT_TITLE = "Notification"
DEFAULT_BODY = ""
DEFAULT_TYPE = "general"
DEFAULT_GROUP_ID = ""

FIELD_DEFAULTS = {
    "title": DEFAULT_TITLE,
    "body": DEFAULT_BODY,
    "type": DEFAULT_TYPE,
    "groupId": DEFAULT_GROUP_ID,
}


def _to_text(value: Any) -> str:
    """Render a scalar the way the mobile clients expect: true/false, 12 not 12.0."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
    return str(value)


def _text_or_default(value: Any, default: str) -> str:
    # Falsy values (missing, None, "", 0, False) fall back to the default
    if not value:
        return default
    return _to_text(value)


class NotificationRecord(BaseModel):
    """A notification document created under users/{userId}/notifications"""
    notificationId: str
    title: str = DEFAULT_TITLE
    body: str = DEFAULT_BODY
    type: str = DEFAULT_TYPE
    groupId: str = DEFAULT_GROUP_ID

    @field_validator("title", "body", "type", "groupId", mode="before")
    @classmethod
    def apply_default(cls, value: Any, info: ValidationInfo) -> str:
        return _text_or_default(value, FIELD_DEFAULTS[info.field_name])

    @classmethod
    def from_document(cls, notification_id: str, fields: Optional[Dict[str, Any]]) -> "NotificationRecord":
        """
        Build a record from raw document fields.

        Args:
            notification_id: Store-assigned document ID
            fields: Document fields, may be None for an empty document

        Returns:
            NotificationRecord with defaults applied
        """
        fields = fields or {}
        return cls(
            notificationId=notification_id,
            title=fields.get("title"),
            body=fields.get("body"),
            type=fields.get("type"),
            groupId=fields.get("groupId"),
        )


class DispatchMessage(BaseModel):
    """Multicast push message built for one notification record"""
    tokens: List[str]
    title: str
    body: str
    data: Dict[str, str]

    @classmethod
    def for_record(cls, record: NotificationRecord, tokens: List[str]) -> "DispatchMessage":
        return cls(
            tokens=list(tokens),
            title=record.title,
            body=record.body,
            data={
                "type": record.type,
                "groupId": record.groupId,
                "notificationId": record.notificationId,
            },
        )


class DeliveryOutcome(BaseModel):
    """Per-token result of a multicast send"""
    token: str
    success: bool
    error_code: Optional[str] = None


class DispatchResult(BaseModel):
    """Summary of one dispatcher invocation"""
    userId: str
    notificationId: str
    skipped: bool = False
    tokenCount: int = 0
    successCount: int = 0
    failureCount: int = 0
    removedTokens: List[str] = Field(default_factory=list)
