"""
chatline error types.

Every error carries a machine-readable ``code`` alongside the message so
handlers can log and report failures without string matching.
"""

from typing import Any, Optional


class ChatlineError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class AuthorizationError(ChatlineError):
    """Missing or invalid credential at connect time."""

    def __init__(self, message: str, code: str = "authorization_failed"):
        super().__init__(code, message)


class UnreachablePeer(ChatlineError):
    def __init__(self, user_id: str):
        super().__init__("unreachable_peer", "User is offline", {"user_id": user_id})
        self.user_id = user_id


class PersistenceError(ChatlineError):
    def __init__(self, message: str, operation: str):
        super().__init__("persistence_failed", message, {"operation": operation})
        self.operation = operation


class ProtocolMisuse(ChatlineError):
    """An event that is malformed or not allowed for the sending user."""

    def __init__(self, message: str, event: Optional[str] = None):
        super().__init__("protocol_misuse", message, {"event": event} if event else None)
        self.event = event
