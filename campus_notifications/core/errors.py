"""
Error types and user-facing messages for notification calls.

Store calls raise NotificationError subclasses; the shared state layer
catches them and keeps the message for display.
"""
from __future__ import annotations

from typing import Any, Optional

# ---------------------------------------------------------------------------
# Constants: user-facing messages
# ---------------------------------------------------------------------------

MSG_NETWORK_ERROR = "Network error: unable to reach the notification server"
MSG_INVALID_RESPONSE = "Invalid response from the notification server"

# HTTP status codes treated as retriable at the API boundary
RETRIABLE_STATUS_CODES = {408, 409, 425, 429}


class NotificationError(Exception):
    """Base error for notification operations. `message` is safe to show to users."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def retriable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code in RETRIABLE_STATUS_CODES or self.status_code >= 500


class NotificationAPIError(NotificationError):
    """Server answered with an error status."""


class NotificationNetworkError(NotificationError):
    """Request never got an answer (connection refused, DNS, timeout)."""

    def __init__(self, message: str = MSG_NETWORK_ERROR) -> None:
        super().__init__(message)


def message_from_body(body: Any) -> Optional[str]:
    """Return the server's `message` field when the body carries one."""
    if isinstance(body, dict):
        message = body.get("message")
        if isinstance(message, str) and message.strip():
            return message
    return None
