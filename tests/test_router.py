"""
Tests for event fan-out.
"""

from unittest.mock import AsyncMock

import pytest

from boardrelay.config.schemas import ChannelMapping
from boardrelay.router import EventRouter

from fakes import (
    BOARD,
    BOARD_B,
    CHANNEL,
    CHANNEL_B,
    CHANNEL_C,
    GUILD,
    GUILD_B,
    GUILD_C,
    LIST,
)

NOTIFICATION = {"title": "🆕 New Card Created"}


@pytest.fixture
def router(store, messenger):
    return EventRouter(store, messenger)


class TestGetChannelsForBoard:
    @pytest.mark.asyncio
    async def test_collects_mappings_and_default_guilds(self, router, store):
        await store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)
        await store.upsert_channel_mapping(GUILD, CHANNEL_B, BOARD_B, LIST)
        await store.upsert_default_config(GUILD_B, BOARD, LIST)

        destinations = await router.get_channels_for_board(BOARD)

        assert destinations.direct_mappings == [(GUILD, CHANNEL)]
        assert destinations.default_guilds == [GUILD_B]


class TestRouteNotification:
    @pytest.mark.asyncio
    async def test_one_failing_channel_does_not_block_others(self, router, store, messenger):
        channels = [f"9{i}7654321098765432" for i in range(5)]
        for channel_id in channels:
            await store.upsert_channel_mapping(GUILD, channel_id, BOARD, LIST)
        messenger.failing.add(channels[2])

        result = await router.route_notification_to_channels(BOARD, NOTIFICATION)

        assert (result.delivered, result.failed, result.skipped) == (4, 1, 0)
        assert sorted(messenger.channels) == sorted(c for c in channels if c != channels[2])

    @pytest.mark.asyncio
    async def test_default_path_uses_fallback_channel(self, router, store, messenger):
        await store.upsert_default_config(GUILD_B, BOARD, LIST)
        messenger.fallbacks[GUILD_B] = CHANNEL_C

        result = await router.route_notification_to_channels(BOARD, NOTIFICATION)

        assert result.delivered == 1
        assert messenger.sent == [(CHANNEL_C, NOTIFICATION)]

    @pytest.mark.asyncio
    async def test_direct_mapping_suppresses_default_path(self, router, store, messenger):
        await store.upsert_channel_mapping(GUILD, CHANNEL, BOARD, LIST)
        await store.upsert_default_config(GUILD, BOARD, LIST)
        messenger.fallbacks[GUILD] = CHANNEL_B

        result = await router.route_notification_to_channels(BOARD, NOTIFICATION)

        assert result.delivered == 1
        assert messenger.channels == [CHANNEL]

    @pytest.mark.asyncio
    async def test_guild_without_fallback_is_skipped(self, router, store, messenger):
        await store.upsert_default_config(GUILD_B, BOARD, LIST)
        await store.upsert_default_config(GUILD_C, BOARD, LIST)
        messenger.fallbacks[GUILD_C] = CHANNEL_C

        result = await router.route_notification_to_channels(BOARD, NOTIFICATION)

        assert (result.delivered, result.failed, result.skipped) == (1, 0, 1)

    @pytest.mark.asyncio
    async def test_fallback_lookup_error_counts_as_failure(self, store):
        messenger = AsyncMock()
        messenger.resolve_fallback_channel.side_effect = RuntimeError("guild fetch failed")
        await store.upsert_default_config(GUILD_B, BOARD, LIST)

        result = await EventRouter(store, messenger).route_notification_to_channels(BOARD, NOTIFICATION)

        assert result.failed == 1
        messenger.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_destinations_delivered_once(self, messenger):
        mapping = ChannelMapping(guild_id=GUILD, channel_id=CHANNEL, board_id=BOARD, list_id=LIST)
        store = AsyncMock()
        store.find_channel_mappings_by_board.return_value = [mapping, mapping]
        store.find_default_configs_by_board.return_value = []

        result = await EventRouter(store, messenger).route_notification_to_channels(BOARD, NOTIFICATION)

        assert result.delivered == 1
        assert messenger.channels == [CHANNEL]

    @pytest.mark.asyncio
    async def test_board_without_destinations(self, router, messenger):
        result = await router.route_notification_to_channels(BOARD, NOTIFICATION)

        assert (result.delivered, result.failed, result.skipped) == (0, 0, 0)
        assert messenger.sent == []
