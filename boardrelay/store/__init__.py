"""
BoardRelay Config Store

Durable storage for routing configuration, webhook registrations and the
audit/analytics logs.
"""

from .base import ConfigStore
from .memory import InMemoryConfigStore
from .sqlite import SQLiteConfigStore

__all__ = [
    "ConfigStore",
    "InMemoryConfigStore",
    "SQLiteConfigStore",
]
