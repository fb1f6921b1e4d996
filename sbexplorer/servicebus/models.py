"""
Explorer Models

Pydantic models for entity targets, message identities, normalized
messages and REST lock receipts.

Author: SBExplorer Contributors
Date: 2026-01-14
"""

import base64
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class QueueTarget(BaseModel):
    """A queue, addressed by name."""
    model_config = ConfigDict(extra='forbid', frozen=True)

    kind: Literal["queue"] = "queue"
    name: str = Field(min_length=1)

    @property
    def entity_path(self) -> str:
        """Logical path of the entity the messages live on."""
        return self.name

    @property
    def send_entity(self) -> str:
        """Entity that resubmitted messages are sent to."""
        return self.name

    def __str__(self) -> str:
        return f"queue '{self.name}'"


class SubscriptionTarget(BaseModel):
    """A subscription on a topic."""
    model_config = ConfigDict(extra='forbid', frozen=True)

    kind: Literal["subscription"] = "subscription"
    topic: str = Field(min_length=1)
    subscription: str = Field(min_length=1)

    @property
    def entity_path(self) -> str:
        return f"{self.topic}/Subscriptions/{self.subscription}"

    @property
    def send_entity(self) -> str:
        # Subscriptions cannot be sent to; messages go back through the topic
        return self.topic

    def __str__(self) -> str:
        return f"subscription '{self.subscription}' on topic '{self.topic}'"


EntityTarget = Union[QueueTarget, SubscriptionTarget]


class MessageIdentity(BaseModel):
    """
    Key used to find a message in a backlog.

    The sequence number is the primary key. The message id is the fallback
    when no sequence number is given, and the tie-breaker when the two access
    paths report different sequence numbers for the same message.
    """
    model_config = ConfigDict(extra='forbid', frozen=True)

    sequence_number: Optional[str] = None
    message_id: Optional[str] = None

    @field_validator('sequence_number', mode='before')
    @classmethod
    def validate_sequence_number(cls, v: Any) -> Optional[str]:
        """Accept ints and decimal strings, store as a decimal string."""
        if v is None:
            return None
        text = str(v).strip()
        if not text.isdigit():
            raise ValueError(f"Sequence number must be a decimal integer, got '{v}'")
        return str(int(text))

    @property
    def is_empty(self) -> bool:
        return self.sequence_number is None and self.message_id is None

    def matches(self, sequence_number: Any, message_id: Optional[str]) -> bool:
        """Match on sequence number if known, otherwise on message id."""
        if self.sequence_number is not None:
            return sequence_number is not None and str(sequence_number) == self.sequence_number
        return self.message_id is not None and message_id == self.message_id

    def matches_either(self, sequence_number: Any, message_id: Optional[str]) -> bool:
        """Match on message id or sequence number."""
        if self.message_id is not None and message_id == self.message_id:
            return True
        return (
            self.sequence_number is not None
            and sequence_number is not None
            and str(sequence_number) == self.sequence_number
        )

    def __str__(self) -> str:
        parts = []
        if self.sequence_number is not None:
            parts.append(f"sequence_number={self.sequence_number}")
        if self.message_id is not None:
            parts.append(f"message_id={self.message_id}")
        return ", ".join(parts) or "<empty identity>"


class BodyType(str, Enum):
    """AMQP body sections."""
    DATA = "data"
    VALUE = "value"
    SEQUENCE = "sequence"


class NormalizedMessage(BaseModel):
    """
    A received or peeked message with every broker-native value converted.

    Timestamps are ISO-8601 strings and sequence numbers decimal strings.
    The body is kept as bytes for data bodies and as a plain value otherwise.
    """
    model_config = ConfigDict(extra='forbid')

    body: Any = None
    body_type: BodyType = BodyType.DATA
    content_type: Optional[str] = None
    correlation_id: Optional[str] = None
    subject: Optional[str] = None
    session_id: Optional[str] = None
    message_id: Optional[str] = None
    enqueued_time: Optional[str] = None
    sequence_number: Optional[str] = None
    delivery_count: Optional[int] = None
    dead_letter_reason: Optional[str] = None
    dead_letter_error_description: Optional[str] = None
    application_properties: Dict[str, Any] = Field(default_factory=dict)

    def body_text(self) -> Optional[str]:
        """Body as text; undecodable bytes come back base64-encoded."""
        if self.body is None:
            return None
        if isinstance(self.body, bytes):
            try:
                return self.body.decode("utf-8")
            except UnicodeDecodeError:
                return base64.b64encode(self.body).decode("ascii")
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        data = self.model_dump(mode="python")
        data["body_type"] = self.body_type.value
        if isinstance(self.body, bytes):
            data["body"] = self.body_text()
        return _json_safe(data)


class RestLockReceipt(BaseModel):
    """
    Result of a REST peek-lock.

    ``location`` is the only valid target for the matching delete or unlock
    and can be used once.
    """
    model_config = ConfigDict(extra='forbid')

    location: str
    broker_properties: Dict[str, Any] = Field(default_factory=dict)
    user_properties: Dict[str, Any] = Field(default_factory=dict)
    raw_body: bytes = b""

    @property
    def sequence_number(self) -> Optional[str]:
        value = self.broker_properties.get("SequenceNumber")
        return None if value is None else str(value)

    @property
    def message_id(self) -> Optional[str]:
        return self.broker_properties.get("MessageId")

    @property
    def lock_token(self) -> Optional[str]:
        return self.broker_properties.get("LockToken")


class QueueInfo(BaseModel):
    """Queue name with runtime counters."""
    name: str
    active_message_count: int = 0
    dead_letter_message_count: int = 0


class TopicInfo(BaseModel):
    """Topic name with counters summed over its subscriptions."""
    name: str
    subscription_count: int = 0
    active_message_count: int = 0
    dead_letter_message_count: int = 0


class SubscriptionInfo(BaseModel):
    """Subscription name with runtime counters."""
    name: str
    topic_name: str
    active_message_count: int = 0
    dead_letter_message_count: int = 0


class NamespaceInfo(BaseModel):
    """A registered namespace and how it authenticates."""
    namespace: str
    auth_mode: Literal["shared_access", "federated"] = "federated"


class ResubmitPath(str, Enum):
    """How the dead-letter copy was found."""
    LOCK = "lock"
    PEEK = "peek"


class ResubmitResult(BaseModel):
    """Outcome of a successful resubmit."""
    resent_message_id: Optional[str] = None
    sequence_number: Optional[str] = None
    path: ResubmitPath = ResubmitPath.LOCK
    removed_via: Optional[str] = None


def _json_safe(value: Any) -> Any:
    """Replace bytes nested inside a plain value so it can be JSON-encoded."""
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(value).decode("ascii")
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_json_safe(item) for item in value]
    return value
