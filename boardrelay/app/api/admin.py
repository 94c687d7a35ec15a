"""
Admin REST API for BoardRelay.

Guild configuration, webhook maintenance and service introspection. When
ADMIN_TOKEN is set every request must carry it in ``X-Admin-Token``.

The acting user is taken from ``X-Actor-Id`` / ``X-Actor-Tag`` and recorded
in the audit log for every mutation.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

from boardrelay.app.dependencies import Services, get_services
from boardrelay.boards import BoardAccessValidator
from boardrelay.cards import CardService
from boardrelay.config.resolved import config_to_dict
from boardrelay.errors import ValidationError
from boardrelay.webhooks import WebhookRegistry

logger = logging.getLogger(__name__)


async def require_admin_token(
    request: Request,
    x_admin_token: str | None = Header(None),
) -> None:
    expected = get_services(request).settings.admin_token
    if expected is None or not expected.get_secret_value():
        return
    if not hmac.compare_digest((x_admin_token or "").encode(), expected.get_secret_value().encode()):
        raise HTTPException(status_code=401, detail="Invalid admin token")


router = APIRouter(prefix="/api/v1", tags=["admin"], dependencies=[Depends(require_admin_token)])


class Actor(BaseModel):
    user_id: str = "api"
    user_tag: str | None = None


def get_actor(
    x_actor_id: str | None = Header(None),
    x_actor_tag: str | None = Header(None),
) -> Actor:
    return Actor(user_id=x_actor_id or "api", user_tag=x_actor_tag)


class BindingRequest(BaseModel):
    board_id: str = Field(..., description="Trello board id")
    list_id: str = Field(..., description="Trello list id")


class CardRequest(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""


def _registry(services: Services) -> WebhookRegistry:
    if services.registry is None:
        raise HTTPException(status_code=503, detail="Trello integration not configured")
    return services.registry


def _cards(services: Services) -> CardService:
    if services.cards is None:
        raise HTTPException(status_code=503, detail="Trello integration not configured")
    return services.cards


async def _check_access(validator: BoardAccessValidator | None, binding: BindingRequest) -> None:
    if validator is None:
        return
    board = await validator.validate_board(binding.board_id)
    if not board.valid:
        raise ValidationError("board_id", binding.board_id, board.error or "board is not accessible")
    lst = await validator.validate_list(binding.list_id)
    if not lst.valid:
        raise ValidationError("list_id", binding.list_id, lst.error or "list is not accessible")


async def _ensure_webhook(services: Services, board_id: str) -> dict[str, Any] | None:
    """Register the board's webhook after a binding; failures don't fail the binding."""
    callback_url = services.settings.webhook_callback_url
    if services.registry is None or not callback_url:
        return None
    try:
        result = await services.registry.register_board_webhook(board_id, callback_url)
        return asdict(result)
    except Exception as e:
        logger.error(f"[admin] Webhook registration for board {board_id} failed: {e}")
        return {"board_id": board_id, "error": str(e)}


# =============================================================================
# Guild configuration
# =============================================================================


@router.get("/guilds/{guild_id}/config")
async def get_guild_config(guild_id: str, services: Services = Depends(get_services)) -> dict[str, Any]:
    summary = await services.resolver.get_guild_summary(guild_id)
    return summary.to_dict()


@router.get("/guilds/{guild_id}/channels/{channel_id}/config")
async def resolve_channel_config(
    guild_id: str, channel_id: str, services: Services = Depends(get_services)
) -> dict[str, Any]:
    config = await services.resolver.resolve_config(guild_id, channel_id)
    return config_to_dict(config)


@router.put("/guilds/{guild_id}/channels/{channel_id}/mapping")
async def set_channel_mapping(
    guild_id: str,
    channel_id: str,
    binding: BindingRequest,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    await _check_access(services.validator, binding)
    previous = await services.store.get_channel_mapping(guild_id, channel_id)
    mapping = await services.resolver.set_channel_mapping(
        guild_id, channel_id, binding.board_id, binding.list_id
    )
    await services.audit.log_config_change(
        guild_id,
        actor.user_id,
        actor.user_tag,
        "channel_mapping_add",
        previous.model_dump(mode="json", include={"board_id", "list_id"}) if previous else None,
        binding.model_dump(),
        channel_id=channel_id,
    )
    return {
        "mapping": mapping.model_dump(mode="json"),
        "webhook": await _ensure_webhook(services, binding.board_id),
    }


@router.delete("/guilds/{guild_id}/channels/{channel_id}/mapping")
async def remove_channel_mapping(
    guild_id: str,
    channel_id: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = await services.resolver.remove_channel_mapping(guild_id, channel_id)
    if result.removed:
        await services.audit.log_config_change(
            guild_id, actor.user_id, actor.user_tag, "channel_mapping_remove", None, None, channel_id=channel_id
        )
    return {"removed": result.removed}


@router.put("/guilds/{guild_id}/default")
async def set_default_config(
    guild_id: str,
    binding: BindingRequest,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    await _check_access(services.validator, binding)
    previous = await services.store.get_default_config(guild_id)
    config = await services.resolver.set_default_config(guild_id, binding.board_id, binding.list_id)
    await services.audit.log_config_change(
        guild_id,
        actor.user_id,
        actor.user_tag,
        "default_config_set",
        previous.model_dump(mode="json", include={"board_id", "list_id"}) if previous else None,
        binding.model_dump(),
    )
    return {
        "default": config.model_dump(mode="json"),
        "webhook": await _ensure_webhook(services, binding.board_id),
    }


@router.delete("/guilds/{guild_id}/default")
async def remove_default_config(
    guild_id: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = await services.resolver.remove_default_config(guild_id)
    if result.removed:
        await services.audit.log_config_change(
            guild_id, actor.user_id, actor.user_tag, "default_config_remove", None, None
        )
    return {"removed": result.removed}


@router.post("/guilds/{guild_id}/reset")
async def reset_guild(
    guild_id: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = await services.resolver.reset_guild(guild_id)
    await services.audit.log_admin_action(
        guild_id, actor.user_id, actor.user_tag, "reset", "guild", guild_id, asdict(result)
    )
    return asdict(result)


@router.post("/guilds/{guild_id}/channels/{channel_id}/cards", status_code=201)
async def create_card(
    guild_id: str,
    channel_id: str,
    card_request: CardRequest,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = await _cards(services).create_card(
        guild_id, channel_id, card_request.name, card_request.description, user_id=actor.user_id
    )
    card = result.card.model_dump(mode="json", by_alias=False) if isinstance(result.card, BaseModel) else result.card
    return {
        "card": card,
        "board_id": result.board_id,
        "list_id": result.list_id,
        "provenance": result.provenance.value,
    }


# =============================================================================
# Webhooks
# =============================================================================


@router.get("/webhooks")
async def list_webhooks(services: Services = Depends(get_services)) -> dict[str, Any]:
    registrations = await _registry(services).list_registrations()
    return {"registrations": [r.model_dump(mode="json") for r in registrations]}


@router.get("/webhooks/health")
async def webhook_health(services: Services = Depends(get_services)) -> dict[str, Any]:
    return asdict(await _registry(services).health_check())


@router.post("/webhooks/auto-register")
async def auto_register_webhooks(
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    registry = _registry(services)
    callback_url = services.settings.webhook_callback_url
    if not callback_url:
        raise HTTPException(status_code=400, detail="WEBHOOK_URL is not configured")
    result = await registry.auto_register_for_configured_boards(callback_url)
    await services.audit.log_admin_action(
        "SYSTEM",
        actor.user_id,
        actor.user_tag,
        "webhook_register",
        "webhook",
        None,
        {"total": result.total, "successful": result.successful},
    )
    return asdict(result)


@router.post("/webhooks/cleanup")
async def cleanup_webhooks(services: Services = Depends(get_services)) -> dict[str, Any]:
    return asdict(await _registry(services).cleanup_orphaned_webhooks())


@router.delete("/webhooks/{board_id}")
async def unregister_webhook(
    board_id: str,
    services: Services = Depends(get_services),
    actor: Actor = Depends(get_actor),
) -> dict[str, Any]:
    result = await _registry(services).unregister_board_webhook(board_id)
    if result.removed:
        await services.audit.log_admin_action(
            "SYSTEM", actor.user_id, actor.user_tag, "webhook_unregister", "webhook", board_id
        )
    return {"removed": result.removed}


# =============================================================================
# Introspection
# =============================================================================


@router.get("/cache/health")
async def cache_health(services: Services = Depends(get_services)) -> dict[str, Any]:
    return asdict(services.cache.health_check())


@router.get("/metrics/summary")
async def metrics_summary(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {
        "commands": services.metrics.performance_summary(),
        "audit": {
            "pending": services.audit.writer.pending,
            "flush_count": services.audit.writer.flush_count,
            "state": services.audit.writer.state.value,
        },
        "cache": services.cache.stats(),
    }


@router.get("/audit")
async def recent_audit_events(
    guild_id: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    await services.audit.flush()
    events = await services.audit.recent(guild_id, limit)
    return {"events": [e.model_dump(mode="json") for e in events]}
