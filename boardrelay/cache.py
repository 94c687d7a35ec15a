"""
Configuration Cache for BoardRelay.

TTL cache in front of the config store. The store is the source of truth;
every entry here is a time-bounded copy of a store row (or of its absence).

Key namespaces:
    channel:{guild_id}:{channel_id}   channel mapping (or None)
    default:{guild_id}                guild default (or None)
    board:{board_id}                  board access check
    list:{list_id}                    list access check
    fallback:{guild_id}               guild system channel (or None)
    health:check                      reserved for health_check()
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Final

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
VALIDATION_TTL = 3600
MAX_KEYS = 1000
CHECK_PERIOD = 120

HEALTH_KEY = "health:check"

_SNOWFLAKE_RE = re.compile(r"\d{17,19}")


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS: Final = _Miss()


# ==================== Key helpers ====================


def channel_key(guild_id: str, channel_id: str) -> str:
    return f"channel:{guild_id}:{channel_id}"


def default_key(guild_id: str) -> str:
    return f"default:{guild_id}"


def board_key(board_id: str) -> str:
    return f"board:{board_id}"


def list_key(list_id: str) -> str:
    return f"list:{list_id}"


def fallback_key(guild_id: str) -> str:
    return f"fallback:{guild_id}"


def mask_key(key: str) -> str:
    """Mask Discord ids in a cache key before logging it."""
    return _SNOWFLAKE_RE.sub("***", key)


@dataclass
class CacheHealth:
    healthy: bool
    stats: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


class ConfigCache:
    """
    TTL cache with a key cap and lazy sweeping.

    Expired entries are dropped when read, and the whole cache is swept on
    the first access after ``check_period`` seconds. When ``max_keys`` is
    reached, expired entries are swept and then the entry closest to expiry
    is evicted.

    Usage:
        cache = ConfigCache(ttl=300)
        cache.set(channel_key(guild, channel), mapping)
        value = cache.get(channel_key(guild, channel))
        if value is MISS:
            ...
    """

    def __init__(
        self,
        ttl: int = DEFAULT_TTL,
        max_keys: int = MAX_KEYS,
        check_period: int = CHECK_PERIOD,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_keys = max_keys
        self.check_period = check_period
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._last_sweep = clock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "evictions": 0,
            "errors": 0,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self._peek(key) is not MISS

    # ==================== Core operations ====================

    def get(self, key: str) -> Any:
        """Return the cached value, or MISS when absent or expired."""
        value = self._peek(key)
        if value is MISS:
            self._stats["misses"] += 1
            logger.debug(f"[cache] miss {mask_key(key)}")
        else:
            self._stats["hits"] += 1
        return value

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a value. ``None`` is a valid value (negative entry)."""
        self._maybe_sweep()
        if key not in self._entries and len(self._entries) >= self.max_keys:
            self._make_room()
        self._entries[key] = (value, self._clock() + (ttl if ttl is not None else self.ttl))
        self._stats["sets"] += 1

    def delete(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            self._stats["deletes"] += 1
        return removed

    def invalidate_guild(self, guild_id: str) -> int:
        """
        Remove every entry belonging to a guild.

        Removes ``channel:{guild_id}:*`` and ``default:{guild_id}``, nothing
        else. Returns the number of entries removed.
        """
        channel_prefix = f"channel:{guild_id}:"
        exact_default = default_key(guild_id)
        doomed = [
            k for k in self._entries if k.startswith(channel_prefix) or k == exact_default
        ]
        for key in doomed:
            del self._entries[key]
        self._stats["deletes"] += len(doomed)
        if doomed:
            logger.info(f"[cache] invalidated {len(doomed)} entries for guild {mask_key(guild_id)}")
        return len(doomed)

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"[cache] cleared {count} entries")

    def keys(self) -> list[str]:
        self._sweep()
        return list(self._entries)

    # ==================== Introspection ====================

    def stats(self) -> dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        hit_rate = round(self._stats["hits"] / total * 100, 2) if total else 0.0
        return {
            **self._stats,
            "keys": len(self._entries),
            "hit_rate": hit_rate,
            "total_operations": total,
            "ttl": self.ttl,
            "max_keys": self.max_keys,
            "check_period": self.check_period,
        }

    def health_check(self) -> CacheHealth:
        """
        Round-trip a value through the reserved health key.

        Leaves statistics and real keys untouched.
        """
        probe = f"probe-{self._clock()}"
        try:
            self._entries[HEALTH_KEY] = (probe, self._clock() + 10)
            value = self._peek(HEALTH_KEY)
            self._entries.pop(HEALTH_KEY, None)
            healthy = value == probe
            return CacheHealth(healthy=healthy, stats=self.stats())
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"[cache] health check failed: {e}")
            self._entries.pop(HEALTH_KEY, None)
            return CacheHealth(healthy=False, stats=self.stats(), error=str(e))

    # ==================== Internals ====================

    def _peek(self, key: str) -> Any:
        self._maybe_sweep()
        entry = self._entries.get(key)
        if entry is None:
            return MISS
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return MISS
        return value

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self.check_period:
            self._sweep()

    def _sweep(self) -> int:
        now = self._clock()
        self._last_sweep = now
        expired = [k for k, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def _make_room(self) -> None:
        if self._sweep():
            return
        victim = min(self._entries, key=lambda k: self._entries[k][1])
        del self._entries[victim]
        self._stats["evictions"] += 1
        logger.debug(f"[cache] evicted {mask_key(victim)}")
