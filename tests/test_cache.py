"""
Tests for the BoardRelay config cache.
"""

import random

from boardrelay.cache import (
    HEALTH_KEY,
    MISS,
    ConfigCache,
    board_key,
    channel_key,
    default_key,
    list_key,
    mask_key,
)

from fakes import BOARD, CHANNEL, GUILD, LIST, FakeClock

# =============================================================================
# Basic operations
# =============================================================================


class TestConfigCacheBasics:
    def test_get_missing_returns_miss(self, cache):
        assert cache.get("channel:1:2") is MISS

    def test_set_then_get(self, cache):
        cache.set(channel_key(GUILD, CHANNEL), {"board": BOARD})
        assert cache.get(channel_key(GUILD, CHANNEL)) == {"board": BOARD}

    def test_none_is_a_cacheable_value(self, cache):
        cache.set(default_key(GUILD), None)
        assert cache.get(default_key(GUILD)) is None
        assert cache.get(default_key(GUILD)) is not MISS

    def test_miss_is_falsy(self):
        assert not MISS

    def test_delete(self, cache):
        cache.set("board:x", 1)
        assert cache.delete("board:x") is True
        assert cache.delete("board:x") is False
        assert cache.get("board:x") is MISS

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_key_helpers(self):
        assert channel_key("g", "c") == "channel:g:c"
        assert default_key("g") == "default:g"
        assert board_key(BOARD) == f"board:{BOARD}"
        assert list_key(LIST) == f"list:{LIST}"


# =============================================================================
# Expiry and capacity
# =============================================================================


class TestConfigCacheExpiry:
    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("k", "v")
        clock.advance(299)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is MISS

    def test_per_entry_ttl(self, cache, clock):
        cache.set("board:long", "v", ttl=3600)
        clock.advance(301)
        assert cache.get("board:long") == "v"

    def test_lazy_sweep_removes_expired_entries(self, clock):
        cache = ConfigCache(ttl=10, check_period=120, clock=clock)
        for i in range(5):
            cache.set(f"k{i}", i)
        clock.advance(121)
        cache.set("fresh", 1)
        assert cache.keys() == ["fresh"]

    def test_full_cache_evicts_entry_closest_to_expiry(self, clock):
        cache = ConfigCache(ttl=300, max_keys=3, clock=clock)
        cache.set("a", 1, ttl=50)
        cache.set("b", 2, ttl=500)
        cache.set("c", 3, ttl=400)
        cache.set("d", 4)

        assert cache.get("a") is MISS
        assert {k for k in cache.keys()} == {"b", "c", "d"}
        assert cache.stats()["evictions"] == 1

    def test_full_cache_prefers_sweeping_expired(self, clock):
        cache = ConfigCache(ttl=300, max_keys=2, clock=clock)
        cache.set("old", 1, ttl=5)
        cache.set("keep", 2)
        clock.advance(10)
        cache.set("new", 3)

        assert set(cache.keys()) == {"keep", "new"}
        assert cache.stats()["evictions"] == 0

    def test_overwriting_existing_key_does_not_evict(self, clock):
        cache = ConfigCache(max_keys=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        assert cache.get("b") == 2
        assert cache.get("a") == 3


# =============================================================================
# Guild invalidation
# =============================================================================


class TestInvalidateGuild:
    def test_removes_channel_and_default_entries(self, cache):
        cache.set(channel_key(GUILD, "1"), 1)
        cache.set(channel_key(GUILD, "2"), 2)
        cache.set(default_key(GUILD), 3)
        cache.set(board_key(BOARD), 4)

        removed = cache.invalidate_guild(GUILD)

        assert removed == 3
        assert cache.keys() == [board_key(BOARD)]

    def test_does_not_match_guild_id_prefix(self, cache):
        cache.set(default_key("12"), 1)
        cache.set(default_key("125"), 2)
        cache.set(channel_key("125", "9"), 3)

        assert cache.invalidate_guild("12") == 1
        assert set(cache.keys()) == {default_key("125"), channel_key("125", "9")}

    def test_random_key_sets(self):
        rng = random.Random(20240501)
        guilds = ["1", "12", "123", "2", "21"]
        for _ in range(200):
            cache = ConfigCache(max_keys=10_000, clock=FakeClock())
            keys = set()
            for _ in range(rng.randint(0, 30)):
                g = rng.choice(guilds)
                kind = rng.choice(["channel", "default", "board", "list"])
                if kind == "channel":
                    key = channel_key(g, str(rng.randint(1, 5)))
                elif kind == "default":
                    key = default_key(g)
                else:
                    key = f"{kind}:{g}"
                cache.set(key, 1)
                keys.add(key)

            target = rng.choice(guilds)
            expected_removed = {
                k for k in keys if k.startswith(f"channel:{target}:") or k == f"default:{target}"
            }

            assert cache.invalidate_guild(target) == len(expected_removed)
            assert set(cache.keys()) == keys - expected_removed


# =============================================================================
# Statistics and health
# =============================================================================


class TestCacheStatsAndHealth:
    def test_hit_rate_is_percentage(self, cache):
        cache.set("k", 1)
        cache.get("k")
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        stats = cache.stats()
        assert stats["hits"] == 3
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 75.0
        assert stats["total_operations"] == 4
        assert stats["ttl"] == 300
        assert stats["max_keys"] == 1000
        assert stats["check_period"] == 120

    def test_hit_rate_zero_without_reads(self, cache):
        assert cache.stats()["hit_rate"] == 0.0

    def test_health_check_leaves_stats_and_keys_untouched(self, cache):
        cache.set(channel_key(GUILD, CHANNEL), "real")
        cache.get(channel_key(GUILD, CHANNEL))
        before = cache.stats()

        health = cache.health_check()

        assert health.healthy is True
        assert cache.stats() == before
        assert cache.keys() == [channel_key(GUILD, CHANNEL)]
        assert HEALTH_KEY not in cache

    def test_mask_key_hides_snowflakes(self):
        assert mask_key(channel_key(GUILD, CHANNEL)) == "channel:***:***"
        assert mask_key(board_key(BOARD)) == f"board:{BOARD}"
