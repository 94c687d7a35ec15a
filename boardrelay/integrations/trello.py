"""
Trello API Client for BoardRelay.

Thin async client over Trello's REST API covering what the relay needs:
webhook lifecycle, card operations and board/list lookups.

Usage:
    async with TrelloClient(TrelloConfig(api_key="...", api_token="...")) as client:
        webhook_id = await client.create_webhook(callback_url, board_id, "BoardRelay")
        card = await client.create_card(list_id, "Fix bug", "Steps to reproduce...")

API Reference:
    https://developer.atlassian.com/cloud/trello/rest/
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from boardrelay.integrations.base import IntegrationClient, IntegrationConfig

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_DESCRIPTION = "Discord-Trello Bot Webhook"


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class TrelloConfig(IntegrationConfig):
    """Configuration for the Trello client."""

    api_key: str = ""
    api_token: str = ""

    base_url: str = "https://api.trello.com/1"

    def __post_init__(self):
        if not self.api_key:
            raise ValueError("Trello API key is required")
        if not self.api_token:
            raise ValueError("Trello API token is required")


# =============================================================================
# Schemas
# =============================================================================


class TrelloBoard(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    url: str | None = None
    closed: bool = False


class TrelloList(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    board_id: str | None = Field(None, alias="idBoard")
    closed: bool = False


class TrelloCard(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    desc: str = ""
    url: str | None = None
    list_id: str | None = Field(None, alias="idList")
    board_id: str | None = Field(None, alias="idBoard")


# =============================================================================
# Client
# =============================================================================


class TrelloClient(IntegrationClient):
    """
    Async client for the Trello API.

    Implements the WebhookProvider, BoardLookup and CardProvider protocols.
    Authentication uses key/token query parameters.
    """

    def __init__(self, config: TrelloConfig, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__(config, transport)
        self._config: TrelloConfig = config

    @property
    def name(self) -> str:
        return "trello"

    def _get_auth_headers(self) -> dict[str, str]:
        return {}

    def _get_auth_params(self) -> dict[str, str]:
        return {"key": self._config.api_key, "token": self._config.api_token}

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def create_webhook(
        self,
        callback_url: str,
        board_id: str,
        description: str = DEFAULT_WEBHOOK_DESCRIPTION,
    ) -> str:
        """
        Create a webhook watching a board.

        Trello probes callback_url with a HEAD request before accepting it.

        Returns:
            The new webhook id
        """
        response = await self._request(
            "POST",
            "/webhooks",
            params={
                "callbackURL": callback_url,
                "idModel": board_id,
                "description": description or DEFAULT_WEBHOOK_DESCRIPTION,
            },
        )
        webhook_id = response.json()["id"]
        logger.info(f"[trello] Created webhook {webhook_id} for board {board_id}")
        return webhook_id

    async def delete_webhook(self, webhook_id: str) -> None:
        """Delete a webhook. Raises NotFoundError if Trello doesn't know it."""
        await self._request("DELETE", f"/webhooks/{webhook_id}")
        logger.info(f"[trello] Deleted webhook {webhook_id}")

    async def list_webhooks(self) -> list[str]:
        """Ids of every webhook owned by the configured token."""
        response = await self._request("GET", f"/tokens/{self._config.api_token}/webhooks")
        return [w["id"] for w in response.json()]

    # =========================================================================
    # Boards and lists
    # =========================================================================

    async def get_board(self, board_id: str) -> TrelloBoard:
        response = await self._request("GET", f"/boards/{board_id}")
        return TrelloBoard.model_validate(response.json())

    async def get_list(self, list_id: str) -> TrelloList:
        response = await self._request("GET", f"/lists/{list_id}")
        return TrelloList.model_validate(response.json())

    async def get_board_lists(self, board_id: str) -> list[TrelloList]:
        response = await self._request("GET", f"/boards/{board_id}/lists", params={"filter": "open"})
        return [TrelloList.model_validate(item) for item in response.json()]

    # =========================================================================
    # Cards
    # =========================================================================

    async def create_card(
        self,
        list_id: str,
        name: str,
        description: str = "",
        *,
        due: str | None = None,
        label_ids: list[str] | None = None,
    ) -> TrelloCard:
        """
        Create a card on a list.

        Args:
            list_id: Target list id
            name: Card title
            description: Card description (markdown)
            due: Optional due date (ISO-8601)
            label_ids: Optional label ids

        Returns:
            The created card
        """
        params: dict[str, Any] = {"idList": list_id, "name": name, "desc": description}
        if due:
            params["due"] = due
        if label_ids:
            params["idLabels"] = ",".join(label_ids)

        response = await self._request("POST", "/cards", params=params)
        return TrelloCard.model_validate(response.json())

    async def update_card(self, card_id: str, **fields: Any) -> TrelloCard:
        response = await self._request("PUT", f"/cards/{card_id}", params=fields)
        return TrelloCard.model_validate(response.json())

    async def delete_card(self, card_id: str) -> None:
        await self._request("DELETE", f"/cards/{card_id}")

    async def health_check(self) -> bool:
        """Verify the credentials by fetching the token's member."""
        try:
            await self._request("GET", "/members/me")
            return True
        except Exception as e:
            logger.warning(f"[trello] Health check failed: {e}")
            return False
