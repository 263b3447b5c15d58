"""
Platform Webhook Endpoints

Receives Meta (Instagram, Facebook, WhatsApp) webhooks and Pub/Sub push
notifications (Google Business Profile, YouTube). The receiver only
authenticates, resolves the owning connection and enqueues; normalization
happens in the ingestion worker. Receipt is always acknowledged with 200
so platforms do not redeliver what has already been queued.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from social_inbox.core.errors import AdapterError
from social_inbox.core.webhook_security import (
    META_PLATFORMS, WebhookSecurityError, WebhookSignatureValidator, get_webhook_validator
)
from social_inbox.db.database import get_db
from social_inbox.db.models import PlatformConnection
from social_inbox.integrations.base import decode_pubsub_message
from social_inbox.integrations.registry import ADAPTER_CLASSES
from social_inbox.services.connection_service import ConnectionService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

WebhookEnqueuer = Callable[[str, Dict[str, Any], str, Optional[str]], str]

# Pub/Sub notification field naming the owning account
PUBSUB_ACCOUNT_KEYS = {
    "google": "locationId",
    "youtube": "channelId",
}


def enqueue_webhook_event(platform: str, payload: Dict[str, Any], organization_id: str,
                          connection_id: Optional[str] = None) -> str:
    from social_inbox.tasks.ingestion_tasks import process_webhook_event

    result = process_webhook_event.apply_async(
        args=[platform, payload, organization_id, connection_id],
        queue='ingestion'
    )
    return result.id


def get_webhook_enqueuer() -> WebhookEnqueuer:
    return enqueue_webhook_event


def _meta_account_key(platform: str, entry: Dict[str, Any]) -> Optional[str]:
    if platform == "whatsapp":
        for change in entry.get("changes") or []:
            phone_number_id = ((change.get("value") or {}).get("metadata") or {}).get("phone_number_id")
            if phone_number_id:
                return str(phone_number_id)
    entry_id = entry.get("id")
    return str(entry_id) if entry_id is not None else None


def split_meta_payload(platform: str, payload: Dict[str, Any],
                       connections: ConnectionService) -> Tuple[List[Tuple[PlatformConnection, Dict[str, Any]]], int]:
    """
    Group Meta entries by owning connection.

    Returns:
        ([(connection, payload with that connection's entries)], unresolved entry count)
    """
    grouped: Dict[str, Tuple[PlatformConnection, List[Dict[str, Any]]]] = {}
    unresolved = 0
    for entry in payload.get("entry") or []:
        if not isinstance(entry, dict):
            unresolved += 1
            continue
        account_key = _meta_account_key(platform, entry)
        connection = connections.resolve_webhook_connection(platform, account_key) if account_key else None
        if connection is None:
            logger.warning(f"No active {platform} connection for webhook account {account_key}")
            unresolved += 1
            continue
        grouped.setdefault(connection.id, (connection, []))[1].append(entry)

    batches = [(connection, {**payload, "entry": entries}) for connection, entries in grouped.values()]
    return batches, unresolved


def _ack(status: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=200, content={"success": True, "status": status, **extra})


@router.get("/health")
async def webhook_health() -> Dict[str, Any]:
    """Report which platforms this receiver accepts."""
    return {
        "status": "healthy",
        "platforms": sorted(ADAPTER_CLASSES),
        "signed_platforms": sorted(META_PLATFORMS),
    }


@router.get("/{platform}")
async def verify_webhook_subscription(
    platform: str,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    validator: WebhookSignatureValidator = Depends(get_webhook_validator)
):
    """Echo hub.challenge when the verify token matches."""
    if platform not in ADAPTER_CLASSES:
        raise HTTPException(status_code=404, detail=f"Unsupported platform: {platform}")

    challenge = validator.verify_subscription(platform, hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        logger.warning(f"Rejected {platform} webhook subscription handshake")
        raise HTTPException(status_code=403, detail="Webhook verification failed")

    logger.info(f"Verified {platform} webhook subscription")
    return PlainTextResponse(content=challenge)


@router.post("/{platform}")
async def receive_webhook(
    platform: str,
    request: Request,
    db: Session = Depends(get_db),
    validator: WebhookSignatureValidator = Depends(get_webhook_validator),
    enqueue: WebhookEnqueuer = Depends(get_webhook_enqueuer)
) -> JSONResponse:
    """
    Authenticate a webhook delivery and enqueue it for ingestion.

    Returns 403 only for signature failures; everything else is
    acknowledged with 200 and logged.
    """
    if platform not in ADAPTER_CLASSES:
        raise HTTPException(status_code=404, detail=f"Unsupported platform: {platform}")

    body = await request.body()
    try:
        validator.verify_webhook_signature(platform, body, request.headers.get("X-Hub-Signature-256"))
    except WebhookSecurityError as e:
        logger.warning(f"Rejected {platform} webhook: {e}")
        raise HTTPException(status_code=403, detail="Invalid webhook signature")

    try:
        payload = json.loads(body or b"{}")
    except ValueError as e:
        logger.error(f"Ignoring {platform} webhook with invalid JSON: {e}")
        return _ack("ignored", reason="invalid_json")
    if not isinstance(payload, dict):
        logger.error(f"Ignoring {platform} webhook whose body is not an object")
        return _ack("ignored", reason="invalid_payload")

    connections = ConnectionService(db)
    task_ids: List[str] = []

    if platform in META_PLATFORMS:
        batches, unresolved = split_meta_payload(platform, payload, connections)
    else:
        try:
            notification = decode_pubsub_message(payload)
        except AdapterError as e:
            logger.error(f"Ignoring undecodable {platform} notification: {e}")
            return _ack("ignored", reason="invalid_notification")
        account_key = notification.get(PUBSUB_ACCOUNT_KEYS[platform])
        connection = connections.resolve_webhook_connection(platform, str(account_key)) if account_key else None
        if connection is None:
            logger.warning(f"No active {platform} connection for notification account {account_key}")
        batches = [(connection, payload)] if connection else []
        unresolved = 0 if connection else 1

    for connection, batch in batches:
        try:
            task_ids.append(enqueue(platform, batch, connection.organization_id, connection.id))
        except Exception as e:
            logger.error(f"Failed to enqueue {platform} webhook for connection {connection.id}: {e}")

    logger.info(f"Received {platform} webhook: {len(task_ids)} queued, {unresolved} unresolved")
    return _ack("queued" if task_ids else "ignored", queued=len(task_ids), unresolved=unresolved, task_ids=task_ids)
