"""
Tests for the ConfigStore implementations.

Behavioural tests run against both the SQLite store and the in-memory store
so the two stay interchangeable.
"""

import sqlite3

import pytest

from boardrelay.config.schemas import AuditEvent, MetricRecord, Severity, WebhookRegistration
from boardrelay.errors import StoreUnavailable, WebhookConflict
from boardrelay.store import ConfigStore, InMemoryConfigStore, SQLiteConfigStore

from fakes import BOARD, BOARD_B, CALLBACK_URL, CHANNEL, CHANNEL_B, GUILD, GUILD_B, LIST, LIST_B


def _registration(board_id: str, webhook_id: str) -> WebhookRegistration:
    return WebhookRegistration(board_id=board_id, webhook_id=webhook_id, callback_url=CALLBACK_URL)


# =============================================================================
# Protocol conformance
# =============================================================================


class TestProtocol:
    def test_both_stores_satisfy_protocol(self, tmp_path):
        assert isinstance(SQLiteConfigStore(tmp_path / "x.db"), ConfigStore)
        assert isinstance(InMemoryConfigStore(), ConfigStore)


# =============================================================================
# Channel mappings and defaults
# =============================================================================


class TestMappings:
    @pytest.mark.asyncio
    async def test_upsert_and_get(self, any_store):
        await any_store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)

        mapping = await any_store.get_channel_mapping(GUILD, CHANNEL)

        assert mapping.board_id == BOARD
        assert mapping.list_id == LIST
        assert await any_store.get_channel_mapping(GUILD, CHANNEL_B) is None

    @pytest.mark.asyncio
    async def test_upsert_preserves_created_at(self, any_store):
        first = await any_store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)
        second = await any_store.upsert_channel_mapping(GUILD, CHANNEL, BOARD_B, LIST_B)

        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at
        assert len(await any_store.list_channel_mappings(GUILD)) == 1

    @pytest.mark.asyncio
    async def test_delete_reports_presence(self, any_store):
        await any_store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)

        assert await any_store.delete_channel_mapping(GUILD, CHANNEL) is True
        assert await any_store.delete_channel_mapping(GUILD, CHANNEL) is False

    @pytest.mark.asyncio
    async def test_find_by_board(self, any_store):
        await any_store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)
        await any_store.upsert_channel_mapping(GUILD_B, CHANNEL_B, BOARD, LIST)
        await any_store.upsert_channel_mapping(GUILD, CHANNEL_B, BOARD_B, LIST)
        await any_store.upsert_default_config(GUILD_B, BOARD, LIST)

        mappings = await any_store.find_channel_mappings_by_board(BOARD)
        defaults = await any_store.find_default_configs_by_board(BOARD)

        assert {(m.guild_id, m.channel_id) for m in mappings} == {(GUILD, CHANNEL), (GUILD_B, CHANNEL_B)}
        assert [d.guild_id for d in defaults] == [GUILD_B]

    @pytest.mark.asyncio
    async def test_default_upsert(self, any_store):
        first = await any_store.upsert_default_config(GUILD, BOARD, LIST)
        second = await any_store.upsert_default_config(GUILD, BOARD_B, LIST_B)

        stored = await any_store.get_default_config(GUILD)
        assert stored.board_id == BOARD_B
        assert second.created_at == first.created_at

    @pytest.mark.asyncio
    async def test_delete_guild(self, any_store):
        await any_store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)
        await any_store.upsert_channel_mapping(GUILD, CHANNEL_B, BOARD, LIST)
        await any_store.upsert_channel_mapping(GUILD_B, CHANNEL, BOARD, LIST)
        await any_store.upsert_default_config(GUILD, BOARD, LIST)

        assert await any_store.delete_guild(GUILD) == (2, True)
        assert await any_store.delete_guild(GUILD) == (0, False)
        assert await any_store.get_channel_mapping(GUILD_B, CHANNEL) is not None

    @pytest.mark.asyncio
    async def test_list_configured_board_ids_is_distinct(self, any_store):
        await any_store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)
        await any_store.upsert_channel_mapping(GUILD, CHANNEL_B, BOARD, LIST)
        await any_store.upsert_default_config(GUILD_B, BOARD_B, LIST_B)
        await any_store.upsert_default_config(GUILD, BOARD, LIST)

        assert await any_store.list_configured_board_ids() == sorted([BOARD, BOARD_B])


# =============================================================================
# Webhook registrations
# =============================================================================


class TestWebhookRegistrations:
    @pytest.mark.asyncio
    async def test_insert_and_get(self, any_store):
        await any_store.insert_webhook_registration(_registration(BOARD, "wh1"))

        registration = await any_store.get_webhook_registration(BOARD)

        assert registration.webhook_id == "wh1"
        assert registration.callback_url == CALLBACK_URL

    @pytest.mark.asyncio
    async def test_duplicate_board_conflicts(self, any_store):
        await any_store.insert_webhook_registration(_registration(BOARD, "wh1"))

        with pytest.raises(WebhookConflict) as exc_info:
            await any_store.insert_webhook_registration(_registration(BOARD, "wh2"))

        assert exc_info.value.board_id == BOARD
        assert (await any_store.get_webhook_registration(BOARD)).webhook_id == "wh1"

    @pytest.mark.asyncio
    async def test_delete_by_board_and_by_webhook_id(self, any_store):
        await any_store.insert_webhook_registration(_registration(BOARD, "wh1"))
        await any_store.insert_webhook_registration(_registration(BOARD_B, "wh2"))

        assert await any_store.delete_webhook_registration(BOARD) is True
        assert await any_store.delete_webhook_registration_by_webhook_id("wh2") is True
        assert await any_store.delete_webhook_registration_by_webhook_id("wh2") is False
        assert await any_store.list_webhook_registrations() == []


# =============================================================================
# Audit and analytics
# =============================================================================


class TestEventLogs:
    @pytest.mark.asyncio
    async def test_audit_writes_are_idempotent_by_event_id(self, any_store):
        event = AuditEvent(guild_id=GUILD, user_id="1", action="set_mapping", severity=Severity.HIGH)

        assert await any_store.write_audit_events([event]) == 1
        assert await any_store.write_audit_events([event]) == 0

        events = await any_store.list_audit_events(GUILD)
        assert len(events) == 1
        assert events[0].severity is Severity.HIGH
        assert events[0].action == "set_mapping"

    @pytest.mark.asyncio
    async def test_audit_filter_and_limit(self, any_store):
        events = [AuditEvent(guild_id=GUILD, user_id="1", action=f"a{i}") for i in range(5)]
        events.append(AuditEvent(guild_id=GUILD_B, user_id="1", action="other"))
        await any_store.write_audit_events(events)

        assert len(await any_store.list_audit_events(GUILD, limit=3)) == 3
        assert [e.action for e in await any_store.list_audit_events(GUILD_B)] == ["other"]
        assert len(await any_store.list_audit_events()) == 6

    @pytest.mark.asyncio
    async def test_metric_records(self, any_store):
        record = MetricRecord(
            guild_id=GUILD,
            channel_id=CHANNEL,
            user_id="1",
            command="create_card",
            execution_time_ms=12.5,
            success=False,
            error_message="boom",
        )

        assert await any_store.write_metric_records([record, record]) == 1

        stored = await any_store.list_metric_records(GUILD)
        assert stored[0].execution_time_ms == 12.5
        assert stored[0].success is False

    @pytest.mark.asyncio
    async def test_empty_batches(self, any_store):
        assert await any_store.write_audit_events([]) == 0
        assert await any_store.write_metric_records([]) == 0


# =============================================================================
# SQLite specifics
# =============================================================================


class TestSQLiteStore:
    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "relay.db"
        store = SQLiteConfigStore(path)
        await store.init()
        await store.upsert_default_config(GUILD, BOARD, LIST)
        await store.close()

        reopened = SQLiteConfigStore(path)
        await reopened.init()
        try:
            assert (await reopened.get_default_config(GUILD)).board_id == BOARD
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_schema_version_recorded(self, tmp_path):
        path = tmp_path / "relay.db"
        store = SQLiteConfigStore(path)
        await store.init()
        await store.close()

        with sqlite3.connect(path) as conn:
            row = conn.execute("SELECT value FROM db_metadata WHERE key = 'schema_version'").fetchone()
        assert row[0] == "2.0.0"

    @pytest.mark.asyncio
    async def test_closed_store_is_unavailable(self, tmp_path):
        store = SQLiteConfigStore(tmp_path / "relay.db")
        await store.init()
        await store.close()

        with pytest.raises(StoreUnavailable):
            await store.get_channel_mapping(GUILD, CHANNEL)

    @pytest.mark.asyncio
    async def test_memory_database(self):
        store = SQLiteConfigStore(":memory:")
        await store.init()
        try:
            await store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)
            assert await store.list_configured_board_ids() == [BOARD]
        finally:
            await store.close()


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_unavailable_flag(self):
        store = InMemoryConfigStore()
        store.available = False

        with pytest.raises(StoreUnavailable) as exc_info:
            await store.list_configured_board_ids()

        assert exc_info.value.operation == "list_configured_board_ids"
        assert store.calls["list_configured_board_ids"] == 1
