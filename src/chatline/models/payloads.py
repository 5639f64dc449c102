"""
Wire payloads for every chat event.

Field names are snake_case in Python and camelCase on the wire. User ids
are strings; numeric ids sent by older clients are coerced.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from chatline.models.records import Message

UserId = Annotated[str, Field(min_length=1)]
MessageKind = Literal["text", "file"]


def isoformat_z(value: datetime) -> str:
    """Render a timestamp the way browsers print ``Date.toISOString()``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# ---------------------------------------------------------------------------
# client -> server
# ---------------------------------------------------------------------------


class PrivateMessageIn(WireModel):
    """C2S private_message"""
    receiver_id: UserId
    message: str = Field(min_length=1)
    message_type: MessageKind = "text"
    file_url: Optional[str] = None

    @model_validator(mode="after")
    def check_file_reference(self) -> "PrivateMessageIn":
        if self.message_type == "file" and not self.file_url:
            raise ValueError("file messages require fileUrl")
        if self.message_type == "text":
            self.file_url = None
        return self


class TypingIn(WireModel):
    """C2S typing_start / typing_stop"""
    receiver_id: UserId


class CallUserIn(WireModel):
    receiver_id: UserId
    offer: Any


class AnswerCallIn(WireModel):
    caller_id: UserId
    answer: Any


class RejectCallIn(WireModel):
    caller_id: UserId


class EndCallIn(WireModel):
    other_user_id: UserId


class IceCandidateIn(WireModel):
    receiver_id: UserId
    candidate: Any


# ---------------------------------------------------------------------------
# server -> client
# ---------------------------------------------------------------------------


class OnlineUser(WireModel):
    """One entry of the online_users list."""
    id: str
    username: str
    status: str = "online"


class PresenceOut(WireModel):
    """S2C user_online / user_offline"""
    user_id: str
    username: str


class SessionReplacedOut(WireModel):
    message: str = "Signed in from another connection"


class MessageOut(WireModel):
    """S2C new_message / message_sent"""
    id: int
    sender_id: str
    sender_username: str
    receiver_id: str
    message: str
    message_type: MessageKind
    file_url: Optional[str] = None
    timestamp: str

    @classmethod
    def from_record(cls, record: Message, sender_username: str) -> "MessageOut":
        return cls(
            id=record.id,
            sender_id=record.sender_id,
            sender_username=sender_username,
            receiver_id=record.receiver_id,
            message=record.body,
            message_type=record.kind,
            file_url=record.file_ref,
            timestamp=isoformat_z(record.created_at),
        )


class MessageFailedOut(WireModel):
    receiver_id: str
    message: str = "Failed to send message"


class TypingOut(WireModel):
    """S2C user_typing / user_stop_typing"""
    user_id: str
    username: str


class IncomingCallOut(WireModel):
    caller_id: str
    caller_username: str
    offer: Any


class CallAnsweredOut(WireModel):
    answer: Any
    receiver_id: str


class CallRejectedOut(WireModel):
    receiver_id: str


class CallEndedOut(WireModel):
    user_id: str


class CallFailedOut(WireModel):
    message: str


class IceCandidateOut(WireModel):
    sender_id: str
    candidate: Any
