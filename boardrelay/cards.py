"""
Card operations scoped to a channel's resolved configuration.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from boardrelay.audit import MetricsBuffer
from boardrelay.config.resolved import Provenance, ResolvedConfig
from boardrelay.resolver import ConfigResolver

logger = logging.getLogger(__name__)


@runtime_checkable
class CardProvider(Protocol):
    async def create_card(self, list_id: str, name: str, description: str = "") -> Any: ...

    async def update_card(self, card_id: str, **fields: Any) -> Any: ...

    async def delete_card(self, card_id: str) -> None: ...


@dataclass(frozen=True)
class CardResult:
    card: Any
    board_id: str
    list_id: str
    provenance: Provenance


class CardService:
    """Creates cards on whichever list a channel resolves to."""

    def __init__(
        self,
        resolver: ConfigResolver,
        cards: CardProvider,
        metrics: MetricsBuffer | None = None,
    ):
        self._resolver = resolver
        self._cards = cards
        self._metrics = metrics

    async def create_card(
        self,
        guild_id: str,
        channel_id: str,
        name: str,
        description: str = "",
        user_id: str = "unknown",
    ) -> CardResult:
        """
        Create a card on the channel's list.

        Raises:
            NotConfigured: Before any Trello call, if the channel resolves to nothing
            ExternalApiError: If Trello rejects the card
        """
        started = time.perf_counter()
        config: ResolvedConfig | None = None
        try:
            config = await self._resolver.resolve_config(guild_id, channel_id)
            card = await self._cards.create_card(config.list_id, name, description)
        except Exception as e:
            self._record(guild_id, channel_id, user_id, started, config, error=e)
            raise

        self._record(guild_id, channel_id, user_id, started, config)
        logger.info(
            f"[cards] Created card on list {config.list_id} ({config.provenance.value}) "
            f"for guild {guild_id}"
        )
        return CardResult(
            card=card,
            board_id=config.board_id,
            list_id=config.list_id,
            provenance=config.provenance,
        )

    def _record(
        self,
        guild_id: str,
        channel_id: str,
        user_id: str,
        started: float,
        config: ResolvedConfig | None,
        error: Exception | None = None,
    ) -> None:
        if self._metrics is None:
            return
        self._metrics.record_command(
            guild_id,
            channel_id,
            user_id,
            "create_card",
            execution_time_ms=(time.perf_counter() - started) * 1000,
            success=error is None,
            error_message=str(error) if error else None,
            board_id=config.board_id if config else None,
        )
