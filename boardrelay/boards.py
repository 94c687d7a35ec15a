"""
Board and list access validation.

Before a board or list is bound to a channel, the relay checks that the
configured Trello credentials can see it. Results are cached under the
``board:`` and ``list:`` namespaces for an hour.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from boardrelay.cache import MISS, VALIDATION_TTL, ConfigCache, board_key, list_key
from boardrelay.errors import AuthenticationError, NotFoundError, RequestRejected
from boardrelay.validation import validate_board_id, validate_list_id

logger = logging.getLogger(__name__)


@runtime_checkable
class BoardLookup(Protocol):
    """Resolves Trello boards and lists by id."""

    async def get_board(self, board_id: str) -> Any: ...

    async def get_list(self, list_id: str) -> Any: ...


@dataclass(frozen=True)
class AccessCheck:
    valid: bool
    name: str | None = None
    error: str | None = None


class BoardAccessValidator:
    """Format check, then cache, then Trello."""

    def __init__(self, lookup: BoardLookup, cache: ConfigCache, ttl: int = VALIDATION_TTL):
        self._lookup = lookup
        self._cache = cache
        self._ttl = ttl

    async def validate_board(self, board_id: str) -> AccessCheck:
        validate_board_id(board_id)
        return await self._check(board_key(board_id), self._lookup.get_board, board_id)

    async def validate_list(self, list_id: str) -> AccessCheck:
        validate_list_id(list_id)
        return await self._check(list_key(list_id), self._lookup.get_list, list_id)

    async def _check(self, key: str, fetch, object_id: str) -> AccessCheck:
        cached = self._cache.get(key)
        if cached is not MISS:
            return cached

        # Transport errors and 5xx propagate uncached.
        try:
            found = await fetch(object_id)
            result = AccessCheck(valid=True, name=getattr(found, "name", None))
        except (NotFoundError, AuthenticationError, RequestRejected) as e:
            logger.info(f"[boards] {key} not accessible: {e}")
            result = AccessCheck(valid=False, error=str(e))

        self._cache.set(key, result, ttl=self._ttl)
        return result
