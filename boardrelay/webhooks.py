"""
Webhook Registry.

Keeps exactly one Trello webhook per watched board. The local
``webhook_registrations`` table records intent; Trello is the source of truth
for whether a webhook exists, and cleanup_orphaned_webhooks() reconciles the
two.

Two concurrent registrations for the same board both call Trello, but only
one insert wins the unique constraint on board_id. The loser re-reads the
winner's row, reports it with ``existed=True`` and deletes its own redundant
webhook on Trello.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from boardrelay.audit import SYSTEM_ID, AuditLogger
from boardrelay.config.schemas import WebhookRegistration
from boardrelay.errors import ExternalApiError, NotFoundError, WebhookConflict
from boardrelay.resolver import RemovalResult
from boardrelay.store.base import ConfigStore

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Discord-Trello Bot Multi-Board Webhook"


@runtime_checkable
class WebhookProvider(Protocol):
    """External webhook lifecycle (Trello)."""

    async def create_webhook(self, callback_url: str, board_id: str, description: str) -> str: ...

    async def delete_webhook(self, webhook_id: str) -> None: ...

    async def list_webhooks(self) -> list[str]: ...


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class RegistrationResult:
    board_id: str
    webhook_id: str
    existed: bool


@dataclass(frozen=True)
class BoardRegistrationOutcome:
    board_id: str
    success: bool
    webhook_id: str | None = None
    existed: bool = False
    error: str | None = None


@dataclass
class AutoRegisterResult:
    total: int
    successful: int
    results: list[BoardRegistrationOutcome] = field(default_factory=list)


@dataclass(frozen=True)
class CleanupResult:
    cleaned_up: int


@dataclass(frozen=True)
class WebhookHealth:
    total_registrations: int
    active_registrations: int
    external_webhooks: int


# =============================================================================
# Registry
# =============================================================================


class WebhookRegistry:
    """One webhook per board, reconciled against the provider."""

    def __init__(
        self,
        store: ConfigStore,
        provider: WebhookProvider,
        audit: AuditLogger | None = None,
    ):
        self._store = store
        self._provider = provider
        self._audit = audit

    async def register_board_webhook(
        self,
        board_id: str,
        callback_url: str,
        description: str = DEFAULT_DESCRIPTION,
    ) -> RegistrationResult:
        """
        Ensure a webhook exists for a board.

        Args:
            board_id: Trello board id
            callback_url: Public URL Trello will POST events to
            description: Webhook description shown in Trello

        Returns:
            RegistrationResult with existed=True when a registration was
            already recorded (including one recorded by a concurrent call)

        Raises:
            ExternalApiError: If Trello refuses to create the webhook
            StoreUnavailable: If the store cannot be reached
        """
        existing = await self._store.get_webhook_registration(board_id)
        if existing is not None:
            logger.info(f"[webhooks] Already registered for board {board_id}: {existing.webhook_id}")
            return RegistrationResult(board_id=board_id, webhook_id=existing.webhook_id, existed=True)

        try:
            webhook_id = await self._provider.create_webhook(callback_url, board_id, description)
        except ExternalApiError as e:
            await self._audit_event("register", board_id, None, success=False, error=e)
            raise

        registration = WebhookRegistration(
            board_id=board_id,
            webhook_id=webhook_id,
            callback_url=callback_url,
            description=description,
        )
        try:
            await self._store.insert_webhook_registration(registration)
        except WebhookConflict:
            winner = await self._store.get_webhook_registration(board_id)
            if winner is None:
                raise
            logger.info(
                f"[webhooks] Lost registration race for board {board_id}; "
                f"keeping {winner.webhook_id}, discarding {webhook_id}"
            )
            await self._discard_webhook(webhook_id)
            return RegistrationResult(board_id=board_id, webhook_id=winner.webhook_id, existed=True)

        logger.info(f"[webhooks] Registered webhook {webhook_id} for board {board_id}")
        await self._audit_event("register", board_id, webhook_id)
        return RegistrationResult(board_id=board_id, webhook_id=webhook_id, existed=False)

    async def _discard_webhook(self, webhook_id: str) -> None:
        try:
            await self._provider.delete_webhook(webhook_id)
        except Exception as e:
            logger.warning(f"[webhooks] Could not delete redundant webhook {webhook_id}: {e}")

    async def unregister_board_webhook(self, board_id: str) -> RemovalResult:
        """
        Remove a board's webhook from Trello and from the store.

        Once the Trello call has been attempted the local row is removed
        whatever the outcome; a Trello error other than not-found is then
        re-raised.
        """
        registration = await self._store.get_webhook_registration(board_id)
        if registration is None:
            logger.info(f"[webhooks] No webhook registered for board {board_id}")
            return RemovalResult(removed=False)

        error: ExternalApiError | None = None
        try:
            await self._provider.delete_webhook(registration.webhook_id)
        except NotFoundError:
            logger.info(f"[webhooks] Webhook {registration.webhook_id} already gone on Trello")
        except ExternalApiError as e:
            error = e

        await self._store.delete_webhook_registration(board_id)
        await self._audit_event(
            "unregister", board_id, registration.webhook_id, success=error is None, error=error
        )

        if error is not None:
            logger.error(f"[webhooks] Trello delete failed for board {board_id}: {error}")
            raise error

        logger.info(f"[webhooks] Unregistered webhook {registration.webhook_id} for board {board_id}")
        return RemovalResult(removed=True)

    async def auto_register_for_configured_boards(self, callback_url: str) -> AutoRegisterResult:
        """Register a webhook for every board referenced by a mapping or default."""
        board_ids = await self._store.list_configured_board_ids()
        logger.info(f"[webhooks] Auto-registering webhooks for {len(board_ids)} boards")

        results: list[BoardRegistrationOutcome] = []
        for board_id in board_ids:
            try:
                result = await self.register_board_webhook(board_id, callback_url)
                results.append(
                    BoardRegistrationOutcome(
                        board_id=board_id,
                        success=True,
                        webhook_id=result.webhook_id,
                        existed=result.existed,
                    )
                )
            except Exception as e:
                logger.error(f"[webhooks] Auto-registration failed for board {board_id}: {e}")
                results.append(BoardRegistrationOutcome(board_id=board_id, success=False, error=str(e)))

        successful = sum(1 for r in results if r.success)
        logger.info(f"[webhooks] Auto-registration: {successful}/{len(board_ids)} successful")
        return AutoRegisterResult(total=len(board_ids), successful=successful, results=results)

    async def cleanup_orphaned_webhooks(self) -> CleanupResult:
        """
        Drop local registrations whose webhook no longer exists on Trello.

        Never deletes anything on Trello. If Trello cannot be listed, the
        error propagates and nothing is removed locally.
        """
        external_ids = set(await self._provider.list_webhooks())
        registrations = await self._store.list_webhook_registrations()

        cleaned = 0
        for registration in registrations:
            if registration.webhook_id in external_ids:
                continue
            if await self._store.delete_webhook_registration_by_webhook_id(registration.webhook_id):
                cleaned += 1
                logger.info(
                    f"[webhooks] Removed orphaned registration {registration.webhook_id} "
                    f"for board {registration.board_id}"
                )
                await self._audit_event("cleanup", registration.board_id, registration.webhook_id)

        return CleanupResult(cleaned_up=cleaned)

    async def list_registrations(self) -> list[WebhookRegistration]:
        return await self._store.list_webhook_registrations()

    async def health_check(self) -> WebhookHealth:
        registrations = await self._store.list_webhook_registrations()
        external_ids = set(await self._provider.list_webhooks())
        active = sum(1 for r in registrations if r.webhook_id in external_ids)
        return WebhookHealth(
            total_registrations=len(registrations),
            active_registrations=active,
            external_webhooks=len(external_ids),
        )

    async def _audit_event(
        self,
        action: str,
        board_id: str,
        webhook_id: str | None,
        success: bool = True,
        error: Any = None,
    ) -> None:
        if self._audit is None:
            return
        await self._audit.log_webhook_event(
            SYSTEM_ID, SYSTEM_ID, "System", action, board_id, webhook_id, success=success, error=error
        )
