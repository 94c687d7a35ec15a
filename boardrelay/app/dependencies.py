"""
Dependency Injection for BoardRelay.

Services are built once per application in the FastAPI lifespan and kept on
``app.state.services``; request handlers receive them through get_services().
Tests build their own Services (in-memory store, fake collaborators) and
pass it to create_app().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from fastapi import HTTPException, Request

from boardrelay.audit import AuditLogger, MetricsBuffer
from boardrelay.boards import BoardAccessValidator, BoardLookup
from boardrelay.cache import ConfigCache
from boardrelay.cards import CardProvider, CardService
from boardrelay.config.schemas import AppSettings
from boardrelay.integrations.base import IntegrationClient
from boardrelay.integrations.discord import DiscordClient, DiscordConfig
from boardrelay.integrations.trello import TrelloClient, TrelloConfig
from boardrelay.resolver import ConfigResolver
from boardrelay.router import EventRouter, Messenger
from boardrelay.store.base import ConfigStore
from boardrelay.store.sqlite import SQLiteConfigStore
from boardrelay.webhooks import WebhookProvider, WebhookRegistry

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get application settings from environment.

    Uses lru_cache for singleton pattern.
    """
    return AppSettings(
        # Service
        debug=_env_flag("BOARDRELAY_DEBUG"),
        # Storage
        database_path=os.getenv("DATABASE_PATH", "./data/boardrelay.db"),
        config_cache_ttl=int(os.getenv("CONFIG_CACHE_TTL", "300")),
        # Discord
        discord_bot_token=os.getenv("DISCORD_BOT_TOKEN", ""),
        # Trello
        trello_api_key=os.getenv("TRELLO_API_KEY", ""),
        trello_api_token=os.getenv("TRELLO_API_TOKEN", ""),
        trello_board_id=os.getenv("TRELLO_BOARD_ID") or None,
        trello_list_id=os.getenv("TRELLO_LIST_ID") or None,
        # Inbound webhooks
        webhook_secret=os.getenv("WEBHOOK_SECRET") or None,
        webhook_url=os.getenv("WEBHOOK_URL") or None,
        webhook_port=int(os.getenv("WEBHOOK_PORT", "3000")),
        auto_register_webhooks=_env_flag("AUTO_REGISTER_WEBHOOKS", "true"),
        # Admin API
        admin_token=os.getenv("ADMIN_TOKEN") or None,
    )


# =============================================================================
# Service container
# =============================================================================


@dataclass
class Services:
    """Everything a request handler may need, built once per app."""

    settings: AppSettings
    store: ConfigStore
    cache: ConfigCache
    resolver: ConfigResolver
    audit: AuditLogger
    metrics: MetricsBuffer
    registry: WebhookRegistry | None = None
    router: EventRouter | None = None
    validator: BoardAccessValidator | None = None
    cards: CardService | None = None
    clients: tuple[IntegrationClient, ...] = ()


def build_services(
    settings: AppSettings,
    *,
    store: ConfigStore | None = None,
    trello: WebhookProvider | None = None,
    messenger: Messenger | None = None,
) -> Services:
    """
    Wire the service graph.

    Args:
        settings: Application settings
        store: Config store (defaults to SQLite at settings.database_path)
        trello: Object implementing WebhookProvider, BoardLookup and
            CardProvider (defaults to a TrelloClient when credentials are set)
        messenger: Discord delivery (defaults to a DiscordClient when a bot
            token is set)
    """
    clients: list[IntegrationClient] = []

    if store is None:
        store = SQLiteConfigStore(settings.database_path)

    if trello is None and settings.trello_api_key.get_secret_value():
        trello = TrelloClient(
            TrelloConfig(
                api_key=settings.trello_api_key.get_secret_value(),
                api_token=settings.trello_api_token.get_secret_value(),
            )
        )
        clients.append(trello)

    cache = ConfigCache(ttl=settings.config_cache_ttl)

    if messenger is None and settings.discord_bot_token.get_secret_value():
        messenger = DiscordClient(
            DiscordConfig(bot_token=settings.discord_bot_token.get_secret_value()),
            cache=cache,
        )
        clients.append(messenger)

    resolver = ConfigResolver(store, cache, settings.environment_default)
    audit = AuditLogger(store)
    metrics = MetricsBuffer(store)

    services = Services(
        settings=settings,
        store=store,
        cache=cache,
        resolver=resolver,
        audit=audit,
        metrics=metrics,
        clients=tuple(clients),
    )

    if trello is not None:
        services.registry = WebhookRegistry(store, trello, audit)
        if isinstance(trello, BoardLookup):
            services.validator = BoardAccessValidator(trello, cache)
        if isinstance(trello, CardProvider):
            services.cards = CardService(resolver, trello, metrics)
    else:
        logger.warning("[services] Trello credentials not set; webhook and card operations disabled")

    if messenger is not None:
        services.router = EventRouter(store, messenger)
    else:
        logger.warning("[services] Discord bot token not set; notifications will not be delivered")

    return services


async def initialize_services(services: Services) -> None:
    """
    Open the store, start the buffers and reconcile webhooks.

    Webhook reconciliation failures are logged; startup continues.
    """
    settings = services.settings

    await services.store.init()
    await services.audit.start()
    await services.metrics.start()

    if settings.webhook_secret is None or not settings.webhook_secret.get_secret_value():
        logger.warning("[services] WEBHOOK_SECRET not set; inbound webhook signatures will not be verified")

    callback_url = settings.webhook_callback_url
    if services.registry is not None and settings.auto_register_webhooks and callback_url:
        try:
            result = await services.registry.auto_register_for_configured_boards(callback_url)
            logger.info(f"[services] Webhooks registered: {result.successful}/{result.total}")
        except Exception as e:
            logger.error(f"[services] Webhook auto-registration failed: {e}")
        try:
            cleanup = await services.registry.cleanup_orphaned_webhooks()
            logger.info(f"[services] Orphaned webhook registrations removed: {cleanup.cleaned_up}")
        except Exception as e:
            logger.error(f"[services] Webhook cleanup failed: {e}")

    await services.audit.log_system_event(
        "startup",
        {
            "environment_default": settings.environment_default is not None,
            "webhooks": services.registry is not None,
            "notifications": services.router is not None,
        },
    )


async def shutdown_services(services: Services) -> None:
    """Flush buffers, then close clients and the store."""
    try:
        await services.audit.log_system_event("shutdown")
    except Exception as e:
        logger.error(f"[services] Could not record shutdown event: {e}")

    await services.metrics.close()
    await services.audit.close()

    for client in services.clients:
        await client.close()

    await services.store.close()


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's service container."""
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services
