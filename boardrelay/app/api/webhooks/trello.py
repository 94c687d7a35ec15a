"""
Trello Webhook Handler for BoardRelay.

Receives board events from Trello and fans them out to Discord.

Trello signs each delivery with ``X-Trello-Webhook``: the base64 HMAC-SHA1
of the raw body keyed with the webhook secret. When WEBHOOK_SECRET is set,
deliveries with a missing or wrong signature are rejected with 401.

Delivery runs as a background task after the 200 response, so partial
delivery failures never change the status Trello sees.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from boardrelay.app.dependencies import Services, get_services
from boardrelay.audit import SYSTEM_ID
from boardrelay.notifications import extract_board_id, malformed_field, render_trello_action

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])

SIGNATURE_HEADER = "X-Trello-Webhook"


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Constant-time check of a Trello webhook signature."""
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(body, secret), signature)


async def _route_event(services: Services, board_id: str, action: dict[str, Any]) -> None:
    """Background task: render and deliver one Trello action."""
    if services.router is None:
        logger.warning(f"[webhook] No messenger configured; dropping {action.get('type')} for board {board_id}")
        return
    try:
        embed = render_trello_action(action)
        result = await services.router.route_notification_to_channels(board_id, embed)
        if result.failed:
            logger.warning(
                f"[webhook] {action.get('type')} on board {board_id}: "
                f"{result.failed} deliveries failed, {result.delivered} delivered"
            )
    except Exception as e:
        logger.error(f"[webhook] Routing failed for board {board_id}: {e}", exc_info=True)


@router.head("/trello", summary="Trello callback URL probe")
async def probe_trello_webhook() -> Response:
    """Trello sends HEAD to the callback URL when a webhook is created."""
    return Response(status_code=200)


@router.post(
    "/trello",
    summary="Receive Trello board events",
    response_class=PlainTextResponse,
    responses={
        200: {"description": "Event accepted"},
        400: {"description": "Malformed payload"},
        401: {"description": "Invalid signature"},
    },
)
async def receive_trello_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
) -> Response:
    body = await request.body()

    secret = services.settings.webhook_secret
    if secret is not None and secret.get_secret_value():
        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), secret.get_secret_value()):
            logger.warning("[webhook] Signature verification failed")
            await services.audit.log_security_event(
                SYSTEM_ID,
                SYSTEM_ID,
                "System",
                "webhook_signature_invalid",
                {"client": request.client.host if request.client else None},
                severity="HIGH",
            )
            return PlainTextResponse("Unauthorized", status_code=401)

    try:
        payload = json.loads(body)
    except ValueError:
        logger.warning("[webhook] Body is not valid JSON")
        return PlainTextResponse("Bad Request", status_code=400)

    action = payload.get("action") if isinstance(payload, dict) else None
    if not isinstance(action, dict) or not isinstance(action.get("type"), str) or not action["type"]:
        logger.warning("[webhook] Payload has no action type")
        return PlainTextResponse("Bad Request", status_code=400)

    field = malformed_field(action)
    if field:
        logger.warning(f"[webhook] {action['type']} payload has a malformed {field}")
        return PlainTextResponse("Bad Request", status_code=400)

    board_id = extract_board_id(payload)
    if not board_id:
        logger.warning(f"[webhook] No board id in {action['type']} payload")
        return PlainTextResponse("Bad Request", status_code=400)

    actor = (action.get("memberCreator") or {}).get("fullName") or "unknown"
    logger.info(f"[webhook] {action['type']} by {actor} on board {board_id}")

    background_tasks.add_task(_route_event, services, board_id, action)
    return PlainTextResponse("OK")
