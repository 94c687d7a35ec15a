"""Inbound webhook handlers."""

from .trello import router as trello_router

__all__ = ["trello_router"]
