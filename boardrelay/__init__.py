"""
BoardRelay - routes Trello board events to Discord channels across many guilds.

Each Discord guild binds channels to Trello board/list pairs. BoardRelay
resolves those bindings through a cached, multi-tier configuration, keeps one
Trello webhook per watched board, fans inbound board events out to every
listening channel and keeps a buffered audit trail of who changed what.

Quick Start:
    >>> from boardrelay import ConfigCache, ConfigResolver, SQLiteConfigStore
    >>>
    >>> store = SQLiteConfigStore("./data/boardrelay.db")
    >>> await store.init()
    >>> resolver = ConfigResolver(store, ConfigCache())
    >>> config = await resolver.resolve_config(guild_id, channel_id)

Run the service:
    uvicorn boardrelay.app.main:app --port 3000
"""

__version__ = "0.1.0"

from boardrelay.cache import MISS, ConfigCache
from boardrelay.errors import (
    BoardRelayError,
    ExternalApiError,
    NotConfigured,
    StoreUnavailable,
    ValidationError,
    WebhookConflict,
)
from boardrelay.resolver import ConfigResolver
from boardrelay.store import ConfigStore, InMemoryConfigStore, SQLiteConfigStore

__all__ = [
    "MISS",
    "BoardRelayError",
    "ConfigCache",
    "ConfigResolver",
    "ConfigStore",
    "ExternalApiError",
    "InMemoryConfigStore",
    "NotConfigured",
    "SQLiteConfigStore",
    "StoreUnavailable",
    "ValidationError",
    "WebhookConflict",
    "__version__",
]
