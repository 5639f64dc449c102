"""
Internal records shared between the registry, the router and the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: str
    username: str


@dataclass(frozen=True, slots=True)
class Session:
    user_id: str
    username: str
    handle: str
    connected_at: datetime


@dataclass(slots=True)
class Message:
    id: int
    sender_id: str
    receiver_id: str
    body: str
    kind: str
    file_ref: Optional[str]
    created_at: datetime
    sender_username: Optional[str] = None
    is_read: bool = False


@dataclass(slots=True)
class CallLog:
    id: int
    caller_id: str
    receiver_id: str
    call_type: str
    status: str
    duration: int
    started_at: datetime
    ended_at: Optional[datetime]
