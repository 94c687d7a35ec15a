"""
In-memory Config Store.

Dict-backed ConfigStore for tests and local development. Enforces the same
uniqueness rules as the SQLite schema and yields to the event loop on every
call, so interleavings between concurrent tasks behave like the real store.

Set ``available = False`` to simulate a backend outage.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import UTC, datetime

from boardrelay.config.schemas import (
    AuditEvent,
    ChannelMapping,
    DefaultConfig,
    MetricRecord,
    WebhookRegistration,
)
from boardrelay.errors import StoreUnavailable, WebhookConflict

logger = logging.getLogger(__name__)


class InMemoryConfigStore:
    """
    In-memory ConfigStore.

    Usage:
        store = InMemoryConfigStore()
        await store.upsert_default_config(guild_id, board_id, list_id)

    Attributes:
        available: When False every call raises StoreUnavailable
        calls: Per-operation call counter
    """

    def __init__(self) -> None:
        self._mappings: dict[tuple[str, str], ChannelMapping] = {}
        self._defaults: dict[str, DefaultConfig] = {}
        self._webhooks: dict[str, WebhookRegistration] = {}
        self._audit: dict[str, AuditEvent] = {}
        self._metrics: dict[str, MetricRecord] = {}
        self.available = True
        self.calls: Counter[str] = Counter()

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        await asyncio.sleep(0)
        if not self.available:
            raise StoreUnavailable(operation)

    async def init(self) -> None:
        logger.debug("[store] In-memory config store ready")

    async def close(self) -> None:
        pass

    @property
    def audit_events(self) -> list[AuditEvent]:
        return list(self._audit.values())

    @property
    def metric_records(self) -> list[MetricRecord]:
        return list(self._metrics.values())

    # ==================== Channel Mappings ====================

    async def get_channel_mapping(self, guild_id: str, channel_id: str) -> ChannelMapping | None:
        await self._enter("get_channel_mapping")
        return self._mappings.get((guild_id, channel_id))

    async def upsert_channel_mapping(
        self, guild_id: str, channel_id: str, board_id: str, list_id: str
    ) -> ChannelMapping:
        await self._enter("upsert_channel_mapping")
        existing = self._mappings.get((guild_id, channel_id))
        now = datetime.now(UTC)
        mapping = ChannelMapping(
            guild_id=guild_id,
            channel_id=channel_id,
            board_id=board_id,
            list_id=list_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._mappings[(guild_id, channel_id)] = mapping
        return mapping

    async def delete_channel_mapping(self, guild_id: str, channel_id: str) -> bool:
        await self._enter("delete_channel_mapping")
        return self._mappings.pop((guild_id, channel_id), None) is not None

    async def list_channel_mappings(self, guild_id: str) -> list[ChannelMapping]:
        await self._enter("list_channel_mappings")
        mappings = [m for (g, _), m in self._mappings.items() if g == guild_id]
        return sorted(mappings, key=lambda m: m.updated_at, reverse=True)

    async def find_channel_mappings_by_board(self, board_id: str) -> list[ChannelMapping]:
        await self._enter("find_channel_mappings_by_board")
        mappings = [m for m in self._mappings.values() if m.board_id == board_id]
        return sorted(mappings, key=lambda m: (m.guild_id, m.channel_id))

    # ==================== Guild Defaults ====================

    async def get_default_config(self, guild_id: str) -> DefaultConfig | None:
        await self._enter("get_default_config")
        return self._defaults.get(guild_id)

    async def upsert_default_config(self, guild_id: str, board_id: str, list_id: str) -> DefaultConfig:
        await self._enter("upsert_default_config")
        existing = self._defaults.get(guild_id)
        now = datetime.now(UTC)
        config = DefaultConfig(
            guild_id=guild_id,
            board_id=board_id,
            list_id=list_id,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._defaults[guild_id] = config
        return config

    async def delete_default_config(self, guild_id: str) -> bool:
        await self._enter("delete_default_config")
        return self._defaults.pop(guild_id, None) is not None

    async def find_default_configs_by_board(self, board_id: str) -> list[DefaultConfig]:
        await self._enter("find_default_configs_by_board")
        configs = [c for c in self._defaults.values() if c.board_id == board_id]
        return sorted(configs, key=lambda c: c.guild_id)

    async def delete_guild(self, guild_id: str) -> tuple[int, bool]:
        await self._enter("delete_guild")
        keys = [k for k in self._mappings if k[0] == guild_id]
        for key in keys:
            del self._mappings[key]
        default_removed = self._defaults.pop(guild_id, None) is not None
        return len(keys), default_removed

    async def list_configured_board_ids(self) -> list[str]:
        await self._enter("list_configured_board_ids")
        boards = {m.board_id for m in self._mappings.values()}
        boards.update(c.board_id for c in self._defaults.values())
        return sorted(boards)

    # ==================== Webhook Registrations ====================

    async def get_webhook_registration(self, board_id: str) -> WebhookRegistration | None:
        await self._enter("get_webhook_registration")
        return self._webhooks.get(board_id)

    async def insert_webhook_registration(self, registration: WebhookRegistration) -> WebhookRegistration:
        await self._enter("insert_webhook_registration")
        if registration.board_id in self._webhooks:
            raise WebhookConflict(registration.board_id)
        self._webhooks[registration.board_id] = registration
        return registration

    async def delete_webhook_registration(self, board_id: str) -> bool:
        await self._enter("delete_webhook_registration")
        return self._webhooks.pop(board_id, None) is not None

    async def delete_webhook_registration_by_webhook_id(self, webhook_id: str) -> bool:
        await self._enter("delete_webhook_registration_by_webhook_id")
        for board_id, registration in list(self._webhooks.items()):
            if registration.webhook_id == webhook_id:
                del self._webhooks[board_id]
                return True
        return False

    async def list_webhook_registrations(self) -> list[WebhookRegistration]:
        await self._enter("list_webhook_registrations")
        return sorted(self._webhooks.values(), key=lambda r: r.created_at, reverse=True)

    # ==================== Audit and Analytics ====================

    async def write_audit_events(self, events: list[AuditEvent]) -> int:
        await self._enter("write_audit_events")
        written = 0
        for event in events:
            if event.event_id not in self._audit:
                self._audit[event.event_id] = event
                written += 1
        return written

    async def write_metric_records(self, records: list[MetricRecord]) -> int:
        await self._enter("write_metric_records")
        written = 0
        for record in records:
            if record.event_id not in self._metrics:
                self._metrics[record.event_id] = record
                written += 1
        return written

    async def list_audit_events(self, guild_id: str | None = None, limit: int = 50) -> list[AuditEvent]:
        await self._enter("list_audit_events")
        events = [e for e in self._audit.values() if guild_id is None or e.guild_id == guild_id]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)[:limit]

    async def list_metric_records(self, guild_id: str | None = None, limit: int = 100) -> list[MetricRecord]:
        await self._enter("list_metric_records")
        records = [r for r in self._metrics.values() if guild_id is None or r.guild_id == guild_id]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)[:limit]
