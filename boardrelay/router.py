"""
Event Router.

Fans an inbound board event out to every Discord channel listening to the
board:

- direct mappings: each (guild, channel) mapped to the board
- default path: each guild whose default is the board, delivered to the
  guild's fallback channel

A guild with at least one direct mapping to the board gets no default-path
delivery for it. Each send is isolated; one failing channel never stops
the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from boardrelay.store.base import ConfigStore

logger = logging.getLogger(__name__)


@runtime_checkable
class Messenger(Protocol):
    """Outbound chat delivery (Discord)."""

    async def send_message(self, channel_id: str, notification: dict[str, Any]) -> None: ...

    async def resolve_fallback_channel(self, guild_id: str) -> str | None: ...


@dataclass
class BoardDestinations:
    direct_mappings: list[tuple[str, str]] = field(default_factory=list)
    default_guilds: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RouteResult:
    delivered: int = 0
    failed: int = 0
    skipped: int = 0


class EventRouter:
    def __init__(self, store: ConfigStore, messenger: Messenger):
        self._store = store
        self._messenger = messenger

    async def get_channels_for_board(self, board_id: str) -> BoardDestinations:
        mappings = await self._store.find_channel_mappings_by_board(board_id)
        defaults = await self._store.find_default_configs_by_board(board_id)
        return BoardDestinations(
            direct_mappings=[(m.guild_id, m.channel_id) for m in mappings],
            default_guilds=[d.guild_id for d in defaults],
        )

    async def route_notification_to_channels(
        self, board_id: str, notification: dict[str, Any]
    ) -> RouteResult:
        """
        Deliver a notification to every destination of a board.

        Returns:
            Counts of delivered, failed and skipped destinations
        """
        destinations = await self.get_channels_for_board(board_id)

        delivered = failed = skipped = 0
        sent: set[tuple[str, str]] = set()
        direct_guilds = {guild_id for guild_id, _ in destinations.direct_mappings}

        for guild_id, channel_id in destinations.direct_mappings:
            if (guild_id, channel_id) in sent:
                continue
            sent.add((guild_id, channel_id))
            if await self._send(guild_id, channel_id, notification):
                delivered += 1
            else:
                failed += 1

        for guild_id in destinations.default_guilds:
            if guild_id in direct_guilds:
                continue
            try:
                channel_id = await self._messenger.resolve_fallback_channel(guild_id)
            except Exception as e:
                logger.error(f"[router] Fallback lookup failed for guild {guild_id}: {e}")
                failed += 1
                continue

            if channel_id is None:
                logger.info(f"[router] Guild {guild_id} has no fallback channel, skipping")
                skipped += 1
                continue
            if (guild_id, channel_id) in sent:
                continue
            sent.add((guild_id, channel_id))
            if await self._send(guild_id, channel_id, notification):
                delivered += 1
            else:
                failed += 1

        logger.info(
            f"[router] Board {board_id}: delivered={delivered} failed={failed} skipped={skipped}"
        )
        return RouteResult(delivered=delivered, failed=failed, skipped=skipped)

    async def _send(self, guild_id: str, channel_id: str, notification: dict[str, Any]) -> bool:
        try:
            await self._messenger.send_message(channel_id, notification)
            return True
        except Exception as e:
            logger.error(
                f"[router] Delivery failed for guild {guild_id} channel {channel_id}: {e}"
            )
            return False
