"""
Error taxonomy for BoardRelay.

Every error carries a ``context`` dict with the identifiers needed to act on
it (guild id, channel id, board id). Batch operations catch these per item;
mutation endpoints let them propagate.

Hierarchy:
    BoardRelayError
    ├── NotConfigured        # no tier resolved a board/list pair
    ├── StoreUnavailable     # durable store unreachable
    ├── ValidationError      # malformed identifier, rejected before I/O
    ├── WebhookConflict      # duplicate board_id on registration insert
    └── ExternalApiError     # collaborator (Trello/Discord) failure
        ├── AuthenticationError
        ├── RateLimitError
        ├── NotFoundError
        └── RequestRejected
"""

from __future__ import annotations

from typing import Any


class BoardRelayError(Exception):
    """Base exception for all BoardRelay errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "type": type(self).__name__, "context": self.context}


class NotConfigured(BoardRelayError):
    """No channel mapping, guild default or environment default applies."""

    def __init__(self, guild_id: str, channel_id: str | None = None):
        super().__init__(
            f"No board/list configured for guild {guild_id}"
            + (f" channel {channel_id}" if channel_id else ""),
            guild_id=guild_id,
            channel_id=channel_id,
        )
        self.guild_id = guild_id
        self.channel_id = channel_id


class StoreUnavailable(BoardRelayError):
    """The durable configuration store could not be reached."""

    def __init__(self, operation: str, cause: Exception | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Config store unavailable during {operation}{detail}", operation=operation)
        self.operation = operation


class ValidationError(BoardRelayError):
    """An identifier failed format validation."""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(f"Invalid {field}: {reason}", field=field, value=value)
        self.field = field
        self.value = value


class WebhookConflict(BoardRelayError):
    """A webhook registration row already exists for this board."""

    def __init__(self, board_id: str):
        super().__init__(f"Webhook already registered for board {board_id}", board_id=board_id)
        self.board_id = board_id


# =============================================================================
# External collaborator errors
# =============================================================================


class ExternalApiError(BoardRelayError):
    """Base exception for Trello/Discord collaborator failures."""

    def __init__(
        self,
        message: str,
        integration: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        retryable: bool = False,
        **context: Any,
    ):
        super().__init__(message, integration=integration, status_code=status_code, **context)
        self.integration = integration
        self.status_code = status_code
        self.response_body = response_body
        self.retryable = retryable

    def __str__(self) -> str:
        parts = [f"[{self.integration}] {self.args[0]}"]
        if self.status_code:
            parts.append(f"(status={self.status_code})")
        return " ".join(parts)


class AuthenticationError(ExternalApiError):
    """Raised when authentication or authorization fails (401/403)."""

    def __init__(self, message: str, integration: str, **kwargs: Any):
        super().__init__(message, integration, retryable=False, **kwargs)


class RateLimitError(ExternalApiError):
    """Raised when rate limit is exceeded (429)."""

    def __init__(
        self,
        message: str,
        integration: str,
        *,
        retry_after: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, integration, retryable=True, **kwargs)
        self.retry_after = retry_after


class NotFoundError(ExternalApiError):
    """Raised when a resource is not found (404)."""

    def __init__(self, message: str, integration: str, **kwargs: Any):
        super().__init__(message, integration, retryable=False, **kwargs)


class RequestRejected(ExternalApiError):
    """Raised when the collaborator rejects the request (400/422)."""

    def __init__(self, message: str, integration: str, **kwargs: Any):
        super().__init__(message, integration, retryable=False, **kwargs)
