"""
Pytest configuration and fixtures for BoardRelay tests.
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add the repository root to path for imports
# This allows `from boardrelay.resolver import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from boardrelay.cache import ConfigCache  # noqa: E402
from boardrelay.config.schemas import EnvironmentDefault  # noqa: E402
from boardrelay.resolver import ConfigResolver  # noqa: E402
from boardrelay.store.memory import InMemoryConfigStore  # noqa: E402
from boardrelay.store.sqlite import SQLiteConfigStore  # noqa: E402

from fakes import BOARD_B, LIST_B, FakeClock, FakeMessenger, FakeTrello  # noqa: E402


@pytest.fixture
def clock():
    """Manually advanced clock for TTL tests."""
    return FakeClock()


@pytest.fixture
def store():
    """Fresh in-memory config store."""
    return InMemoryConfigStore()


@pytest_asyncio.fixture(params=["sqlite", "memory"])
async def any_store(request, tmp_path):
    """Initialised store, once per implementation."""
    if request.param == "sqlite":
        store = SQLiteConfigStore(tmp_path / "relay.db")
    else:
        store = InMemoryConfigStore()
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def cache(clock):
    """Config cache driven by the fake clock."""
    return ConfigCache(ttl=300, clock=clock)


@pytest.fixture
def environment_default():
    """Process-level fallback binding."""
    return EnvironmentDefault(board_id=BOARD_B, list_id=LIST_B)


@pytest.fixture
def resolver(store, cache):
    """Resolver without an environment default."""
    return ConfigResolver(store, cache)


@pytest.fixture
def trello():
    """In-memory Trello."""
    return FakeTrello()


@pytest.fixture
def messenger():
    """Recording Discord messenger."""
    return FakeMessenger()
