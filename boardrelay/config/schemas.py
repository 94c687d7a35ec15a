"""
Configuration Schemas for BoardRelay.

Pydantic models for the records kept in the config store and for the
application settings.

Security:
    Tokens and secrets use SecretStr to prevent accidental logging.
    Access the value with `.get_secret_value()`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import IntEnum
from uuid import uuid4

from pydantic import BaseModel, Field, SecretStr


def _utc_now() -> datetime:
    """Get current UTC time with timezone awareness."""
    return datetime.now(UTC)


def _event_id() -> str:
    return uuid4().hex


# =============================================================================
# Routing configuration
# =============================================================================


class ChannelMapping(BaseModel):
    """
    Explicit (guild, channel) -> (board, list) binding.

    Stored in the 'channel_mappings' table, unique per (guild_id, channel_id).
    """

    guild_id: str = Field(..., description="Discord guild id")
    channel_id: str = Field(..., description="Discord channel id")
    board_id: str = Field(..., description="Trello board id")
    list_id: str = Field(..., description="Trello list id")
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class DefaultConfig(BaseModel):
    """
    Guild-wide fallback binding for channels without a mapping.

    Stored in the 'default_configs' table, at most one per guild.
    """

    guild_id: str = Field(..., description="Discord guild id")
    board_id: str = Field(..., description="Trello board id")
    list_id: str = Field(..., description="Trello list id")
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class WebhookRegistration(BaseModel):
    """
    Local record of intent for a board's Trello webhook.

    Stored in the 'webhook_registrations' table, exactly one row per board.
    Trello remains the source of truth for whether the webhook exists.
    """

    board_id: str
    webhook_id: str
    callback_url: str
    description: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


@dataclass(frozen=True, slots=True)
class EnvironmentDefault:
    """Process-level fallback binding sourced from settings, never from the store."""

    board_id: str
    list_id: str


# =============================================================================
# Audit and analytics records
# =============================================================================


class Severity(IntEnum):
    """Audit severity. CRITICAL events are persisted synchronously."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def from_string(cls, value: str | None, default: Severity | None = None) -> Severity:
        fallback = default or cls.LOW
        if value is None:
            return fallback
        try:
            return cls[value.upper()]
        except KeyError:
            return fallback


class AuditEvent(BaseModel):
    """
    Audit log entry.

    Buffered in memory by AuditLogger and stored in the 'audit_log' table.
    The event_id makes repeated writes of the same event idempotent.
    """

    event_id: str = Field(default_factory=_event_id)
    timestamp: datetime = Field(default_factory=_utc_now)
    guild_id: str
    user_id: str
    user_tag: str | None = None
    action: str
    category: str = "general"
    target_type: str | None = None
    target_id: str | None = None
    details: str | None = None
    severity: Severity = Severity.LOW
    success: bool = True


class MetricRecord(BaseModel):
    """
    Command execution analytics.

    Buffered by MetricsBuffer and stored in the 'usage_analytics' table.
    """

    event_id: str = Field(default_factory=_event_id)
    timestamp: datetime = Field(default_factory=_utc_now)
    guild_id: str
    channel_id: str
    user_id: str
    command: str
    command_args: str | None = None
    execution_time_ms: float = 0.0
    success: bool = True
    error_message: str | None = None
    board_id: str | None = None


# =============================================================================
# Application settings
# =============================================================================


class AppSettings(BaseModel):
    """
    Application settings model.

    Used for type-safe settings access.

    Security:
        API keys and tokens use SecretStr to prevent accidental logging.
        Access secret values with: settings.trello_api_key.get_secret_value()
    """

    # Service identity
    service_name: str = "boardrelay"
    debug: bool = False

    # Storage
    database_path: str = "./data/boardrelay.db"
    config_cache_ttl: int = Field(300, ge=1)

    # Discord
    discord_bot_token: SecretStr = Field(default=SecretStr(""), description="Discord bot token")

    # Trello
    trello_api_key: SecretStr = Field(default=SecretStr(""), description="Trello API key")
    trello_api_token: SecretStr = Field(default=SecretStr(""), description="Trello API token")
    trello_board_id: str | None = Field(None, description="Environment-level fallback board")
    trello_list_id: str | None = Field(None, description="Environment-level fallback list")

    # Inbound webhooks
    webhook_secret: SecretStr | None = None
    webhook_url: str | None = Field(None, description="Public base URL of this service")
    webhook_port: int = 3000
    auto_register_webhooks: bool = True

    # Admin API
    admin_token: SecretStr | None = None

    @property
    def environment_default(self) -> EnvironmentDefault | None:
        """Fallback binding, only when both board and list are configured."""
        if self.trello_board_id and self.trello_list_id:
            return EnvironmentDefault(board_id=self.trello_board_id, list_id=self.trello_list_id)
        return None

    @property
    def webhook_callback_url(self) -> str | None:
        if not self.webhook_url:
            return None
        return f"{self.webhook_url.rstrip('/')}/webhook/trello"
