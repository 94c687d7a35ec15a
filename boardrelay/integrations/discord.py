"""
Discord REST Client for BoardRelay.

Sends board notifications to channels over the Discord HTTP API (v10). No
gateway connection is needed: the relay only posts messages and looks up a
guild's system channel for default-path deliveries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from boardrelay.cache import DEFAULT_TTL, MISS, ConfigCache, fallback_key
from boardrelay.integrations.base import IntegrationClient, IntegrationConfig

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"


@dataclass(frozen=True, slots=True)
class DiscordConfig(IntegrationConfig):
    """Configuration for the Discord client."""

    bot_token: str = ""

    base_url: str = DISCORD_API_BASE

    def __post_init__(self):
        if not self.bot_token:
            raise ValueError("Discord bot token is required")


class DiscordClient(IntegrationClient):
    """
    Async Discord REST client implementing the Messenger protocol.

    Fallback channels (the guild's system channel) are cached per guild for
    ``fallback_ttl`` seconds, so a changed system channel is picked up once
    the entry expires. forget_guild() drops the entry immediately.
    """

    def __init__(
        self,
        config: DiscordConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        cache: ConfigCache | None = None,
        fallback_ttl: int = DEFAULT_TTL,
    ):
        super().__init__(config, transport)
        self._config: DiscordConfig = config
        self._cache = cache if cache is not None else ConfigCache(ttl=fallback_ttl)
        self._fallback_ttl = fallback_ttl

    @property
    def name(self) -> str:
        return "discord"

    def _get_auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self._config.bot_token}"}

    async def send_message(self, channel_id: str, notification: dict[str, Any]) -> None:
        """
        Post a notification to a channel.

        Args:
            channel_id: Target channel id
            notification: Either a full message payload ({"content", "embeds"})
                or a single embed dict
        """
        if "embeds" in notification or "content" in notification:
            payload = notification
        else:
            payload = {"embeds": [notification]}

        await self._request("POST", f"/channels/{channel_id}/messages", json=payload)

    async def resolve_fallback_channel(self, guild_id: str) -> str | None:
        """The guild's system channel, or None when it has none."""
        cached = self._cache.get(fallback_key(guild_id))
        if cached is not MISS:
            return cached

        response = await self._request("GET", f"/guilds/{guild_id}")
        channel_id = response.json().get("system_channel_id")
        self._cache.set(fallback_key(guild_id), channel_id, ttl=self._fallback_ttl)
        if channel_id is None:
            logger.info(f"[discord] Guild {guild_id} has no system channel")
        return channel_id

    def forget_guild(self, guild_id: str) -> None:
        self._cache.delete(fallback_key(guild_id))
