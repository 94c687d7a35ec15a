"""
Config Store Protocol.

The durable store owns channel mappings, guild defaults, webhook
registrations and the audit/analytics logs. Everything else (the cache in
particular) is a projection of it.

Implementations:
- SQLiteConfigStore (production)
- InMemoryConfigStore (testing, local development)

Contract:
- Failures to reach the backend raise StoreUnavailable.
- insert_webhook_registration raises WebhookConflict when a row for the
  board already exists (unique constraint on board_id).
- write_audit_events / write_metric_records are idempotent per event_id and
  all-or-nothing per batch.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from boardrelay.config.schemas import (
    AuditEvent,
    ChannelMapping,
    DefaultConfig,
    MetricRecord,
    WebhookRegistration,
)


@runtime_checkable
class ConfigStore(Protocol):
    """Protocol for durable configuration storage."""

    async def init(self) -> None:
        """Open connections and create the schema if needed."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...

    # Channel mappings
    async def get_channel_mapping(self, guild_id: str, channel_id: str) -> ChannelMapping | None: ...

    async def upsert_channel_mapping(
        self, guild_id: str, channel_id: str, board_id: str, list_id: str
    ) -> ChannelMapping: ...

    async def delete_channel_mapping(self, guild_id: str, channel_id: str) -> bool: ...

    async def list_channel_mappings(self, guild_id: str) -> list[ChannelMapping]: ...

    async def find_channel_mappings_by_board(self, board_id: str) -> list[ChannelMapping]: ...

    # Guild defaults
    async def get_default_config(self, guild_id: str) -> DefaultConfig | None: ...

    async def upsert_default_config(self, guild_id: str, board_id: str, list_id: str) -> DefaultConfig: ...

    async def delete_default_config(self, guild_id: str) -> bool: ...

    async def find_default_configs_by_board(self, board_id: str) -> list[DefaultConfig]: ...

    async def delete_guild(self, guild_id: str) -> tuple[int, bool]:
        """Delete every mapping and the default of a guild. Returns (mappings, default_removed)."""
        ...

    async def list_configured_board_ids(self) -> list[str]:
        """Distinct board ids referenced by any mapping or default."""
        ...

    # Webhook registrations
    async def get_webhook_registration(self, board_id: str) -> WebhookRegistration | None: ...

    async def insert_webhook_registration(self, registration: WebhookRegistration) -> WebhookRegistration: ...

    async def delete_webhook_registration(self, board_id: str) -> bool: ...

    async def delete_webhook_registration_by_webhook_id(self, webhook_id: str) -> bool: ...

    async def list_webhook_registrations(self) -> list[WebhookRegistration]: ...

    # Audit and analytics
    async def write_audit_events(self, events: list[AuditEvent]) -> int: ...

    async def write_metric_records(self, records: list[MetricRecord]) -> int: ...

    async def list_audit_events(self, guild_id: str | None = None, limit: int = 50) -> list[AuditEvent]: ...

    async def list_metric_records(self, guild_id: str | None = None, limit: int = 100) -> list[MetricRecord]: ...
