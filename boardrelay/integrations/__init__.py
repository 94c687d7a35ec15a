"""
BoardRelay Integrations

HTTP clients for the external collaborators.

Available Integrations:
- Trello: webhooks, cards, board/list lookup
- Discord: channel messages, guild fallback channel
"""

from .base import IntegrationClient, IntegrationConfig
from .discord import DiscordClient, DiscordConfig
from .trello import (
    TrelloBoard,
    TrelloCard,
    TrelloClient,
    TrelloConfig,
    TrelloList,
)

__all__ = [
    "DiscordClient",
    "DiscordConfig",
    "IntegrationClient",
    "IntegrationConfig",
    "TrelloBoard",
    "TrelloCard",
    "TrelloClient",
    "TrelloConfig",
    "TrelloList",
]
