"""
Config Resolver.

Answers "which board and list does this channel use?" and applies admin
mutations to the store while keeping the cache in step.

Precedence:
    1. Channel mapping for (guild, channel)
    2. Guild default for guild
    3. Environment default from settings
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from boardrelay.cache import MISS, ConfigCache, channel_key, default_key, mask_key
from boardrelay.config.resolved import (
    EnvironmentDefaultConfig,
    ExplicitConfig,
    GuildDefaultConfig,
    ResolvedConfig,
)
from boardrelay.config.schemas import ChannelMapping, DefaultConfig, EnvironmentDefault
from boardrelay.errors import NotConfigured, StoreUnavailable
from boardrelay.store.base import ConfigStore
from boardrelay.validation import validate_board_id, validate_list_id, validate_snowflake

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemovalResult:
    removed: bool


@dataclass(frozen=True)
class GuildResetResult:
    mappings_removed: int
    default_removed: bool
    cache_entries_invalidated: int


@dataclass
class GuildSummary:
    guild_id: str
    default: DefaultConfig | None = None
    mappings: list[ChannelMapping] = field(default_factory=list)

    @property
    def is_configured(self) -> bool:
        return self.default is not None or bool(self.mappings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "guild_id": self.guild_id,
            "is_configured": self.is_configured,
            "default": self.default.model_dump(mode="json") if self.default else None,
            "mappings": [m.model_dump(mode="json") for m in self.mappings],
        }


def _release(reads: Counter[str], generations: dict[str, int], key: str) -> None:
    reads[key] -= 1
    if reads[key] <= 0:
        del reads[key]
        generations.pop(key, None)


class ConfigResolver:
    """
    Multi-tier configuration resolution over a store and a cache.

    Mutations write the store first and then overwrite (or delete) the
    matching cache entry, so a read that follows a mutation in the same
    process observes it without touching the store.
    """

    def __init__(
        self,
        store: ConfigStore,
        cache: ConfigCache,
        environment_default: EnvironmentDefault | None = None,
    ):
        self._store = store
        self._cache = cache
        self._environment_default = environment_default
        # Bumped on every mutation of a key (or of the whole guild) while a
        # read-through of it is awaiting the store; that read then leaves the
        # cache alone. Counters only exist while such a read is in flight.
        self._generations: dict[str, int] = {}
        self._guild_generations: dict[str, int] = {}
        self._reads: Counter[str] = Counter()
        self._guild_reads: Counter[str] = Counter()

    @property
    def environment_default(self) -> EnvironmentDefault | None:
        return self._environment_default

    # ==================== Resolution ====================

    async def resolve_config(self, guild_id: str, channel_id: str) -> ResolvedConfig:
        """
        Resolve the board/list for a channel.

        Returns:
            ExplicitConfig, GuildDefaultConfig or EnvironmentDefaultConfig

        Raises:
            NotConfigured: If no tier applies
            StoreUnavailable: If the store is down and no environment default exists
        """
        try:
            mapping = await self._read_through(
                guild_id,
                channel_key(guild_id, channel_id),
                lambda: self._store.get_channel_mapping(guild_id, channel_id),
            )
            if mapping is not None:
                return ExplicitConfig(
                    guild_id=guild_id,
                    channel_id=channel_id,
                    board_id=mapping.board_id,
                    list_id=mapping.list_id,
                )

            default = await self._read_through(
                guild_id,
                default_key(guild_id),
                lambda: self._store.get_default_config(guild_id),
            )
            if default is not None:
                return GuildDefaultConfig(
                    guild_id=guild_id,
                    board_id=default.board_id,
                    list_id=default.list_id,
                )
        except StoreUnavailable as e:
            if self._environment_default is None:
                raise
            logger.warning(
                f"[resolver] {e}; falling back to environment default for guild {mask_key(guild_id)}"
            )
            return EnvironmentDefaultConfig(
                board_id=self._environment_default.board_id,
                list_id=self._environment_default.list_id,
                degraded=True,
            )

        if self._environment_default is not None:
            return EnvironmentDefaultConfig(
                board_id=self._environment_default.board_id,
                list_id=self._environment_default.list_id,
            )

        raise NotConfigured(guild_id, channel_id)

    async def _read_through(self, guild_id: str, key: str, load: Callable[[], Awaitable[Any]]) -> Any:
        cached = self._cache.get(key)
        if cached is not MISS:
            return cached

        self._reads[key] += 1
        self._guild_reads[guild_id] += 1
        try:
            generation = self._generation(guild_id, key)
            value = await load()
            if self._generation(guild_id, key) == generation:
                self._cache.set(key, value)
            return value
        finally:
            _release(self._reads, self._generations, key)
            _release(self._guild_reads, self._guild_generations, guild_id)

    def _generation(self, guild_id: str, key: str) -> tuple[int, int]:
        return self._guild_generations.get(guild_id, 0), self._generations.get(key, 0)

    def _bump(self, key: str) -> None:
        if self._reads[key]:
            self._generations[key] = self._generations.get(key, 0) + 1

    def _bump_guild(self, guild_id: str) -> None:
        if self._guild_reads[guild_id]:
            self._guild_generations[guild_id] = self._guild_generations.get(guild_id, 0) + 1

    # ==================== Channel mappings ====================

    async def set_channel_mapping(
        self, guild_id: str, channel_id: str, board_id: str, list_id: str
    ) -> ChannelMapping:
        validate_snowflake(guild_id, "guild_id")
        validate_snowflake(channel_id, "channel_id")
        validate_board_id(board_id)
        validate_list_id(list_id)

        mapping = await self._store.upsert_channel_mapping(guild_id, channel_id, board_id, list_id)
        key = channel_key(guild_id, channel_id)
        self._bump(key)
        self._cache.set(key, mapping)
        logger.info(f"[resolver] mapped {mask_key(key)} -> board {board_id} list {list_id}")
        return mapping

    async def remove_channel_mapping(self, guild_id: str, channel_id: str) -> RemovalResult:
        removed = await self._store.delete_channel_mapping(guild_id, channel_id)
        key = channel_key(guild_id, channel_id)
        self._bump(key)
        self._cache.delete(key)
        return RemovalResult(removed=removed)

    # ==================== Guild defaults ====================

    async def set_default_config(self, guild_id: str, board_id: str, list_id: str) -> DefaultConfig:
        validate_snowflake(guild_id, "guild_id")
        validate_board_id(board_id)
        validate_list_id(list_id)

        config = await self._store.upsert_default_config(guild_id, board_id, list_id)
        key = default_key(guild_id)
        self._bump(key)
        self._cache.set(key, config)
        logger.info(f"[resolver] default for guild {mask_key(guild_id)} -> board {board_id}")
        return config

    async def remove_default_config(self, guild_id: str) -> RemovalResult:
        removed = await self._store.delete_default_config(guild_id)
        key = default_key(guild_id)
        self._bump(key)
        self._cache.delete(key)
        return RemovalResult(removed=removed)

    # ==================== Guild-wide ====================

    async def reset_guild(self, guild_id: str) -> GuildResetResult:
        """Delete every mapping and the default of a guild."""
        mappings_removed, default_removed = await self._store.delete_guild(guild_id)
        self._bump_guild(guild_id)
        invalidated = self._cache.invalidate_guild(guild_id)
        logger.info(
            f"[resolver] reset guild {mask_key(guild_id)}: "
            f"{mappings_removed} mappings, default_removed={default_removed}"
        )
        return GuildResetResult(
            mappings_removed=mappings_removed,
            default_removed=default_removed,
            cache_entries_invalidated=invalidated,
        )

    async def get_guild_summary(self, guild_id: str) -> GuildSummary:
        default = await self._store.get_default_config(guild_id)
        mappings = await self._store.list_channel_mappings(guild_id)
        return GuildSummary(guild_id=guild_id, default=default, mappings=mappings)
