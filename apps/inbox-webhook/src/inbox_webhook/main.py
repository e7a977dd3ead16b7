"""
Inbox Webhook Service

FastAPI app that receives Evolution (WhatsApp) and Meta (Facebook/Instagram)
webhooks and serves live updates to connected viewers.

Responsibilities:
- Validate and classify provider payloads
- Resolve the channel account from the provider-side id
- Deduplicate deliveries and process canonical events
- Always acknowledge with 200 unless the body is not valid JSON
- Stream live updates, send operator replies, proxy provider media
"""

import asyncio
import base64
import binascii
import contextlib
import json
import logging
from typing import Any
from uuid import UUID

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from basecore.db import get_db, get_engine
from basecore.logging import setup_logging
from basecore.redis import get_async_redis_client, get_redis_client
from basecore.settings import get_settings

from inbox_webhook.sse import live_event_stream
from messaging_inbox.contracts.event_types import ChannelType
from messaging_inbox.contracts.events import MediaReference
from messaging_inbox.contracts.payloads import EvolutionWebhookPayload, MetaWebhookPayload, SendMessageRequest
from messaging_inbox.live.broadcaster import LiveUpdateBroadcaster, LiveUpdatePublisher
from messaging_inbox.live.redis_relay import RedisLiveUpdateRelay
from messaging_inbox.persistence.models import InboxBase
from messaging_inbox.persistence.repo import InboxRepository
from messaging_inbox.providers.base import ProviderConfigError, ProviderError
from messaging_inbox.providers.evolution.client import (
    MEDIA_PROXY_PATH,
    EvolutionChannelConfig,
    build_client,
    media_proxy_path,
)
from messaging_inbox.providers.evolution.webhook import (
    EvolutionEventCategory,
    classify_event,
    normalize_evolution_webhook,
    parse_chat_deletion,
    validate_api_key,
)
from messaging_inbox.providers.meta.webhook import (
    channel_type_for_object,
    normalize_meta_webhook,
    validate_signature,
    verify_webhook_challenge,
)
from messaging_inbox.routing.channel_resolver import ChannelResolver
from messaging_inbox.security.vault import CredentialVault, DecryptionError, get_vault
from messaging_inbox.service.chat_deletion import ChatDeletionHandler
from messaging_inbox.service.ingestion import WebhookIngestor
from messaging_inbox.service.outbound import (
    ConversationNotFound,
    OutboundMedia,
    OutboundMessageService,
    SendValidationError,
)

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Inbox Webhook",
    description="Receives channel webhooks, stores conversations and streams live updates",
    version="1.0.0",
)

# One registry per process; the publisher is swapped for the Redis relay at start-up if configured
app.state.broadcaster = LiveUpdateBroadcaster()
app.state.publisher = app.state.broadcaster
app.state.relay_task = None


def get_broadcaster(request: Request) -> LiveUpdateBroadcaster:
    """Local live update registry."""
    return request.app.state.broadcaster


def get_publisher(request: Request) -> LiveUpdatePublisher:
    """Publisher used by processing (local broadcaster or Redis relay)."""
    return request.app.state.publisher


def get_credential_vault() -> CredentialVault | None:
    """Vault for channel credentials, None when ENCRYPTION_KEY is not set."""
    try:
        return get_vault()
    except ValueError as e:
        logger.error(f"Credential vault unavailable: {e}")
        return None


def get_provider_transport() -> httpx.AsyncBaseTransport | None:
    """HTTP transport for provider calls; None uses the network."""
    return None


@app.on_event("startup")
async def startup():
    """Create tables (dev) and start the Redis relay if configured."""
    settings = get_settings()

    if settings.AUTO_CREATE_SCHEMA:
        InboxBase.metadata.create_all(get_engine())

    if settings.LIVE_UPDATES_BACKEND == "redis":
        relay = RedisLiveUpdateRelay(app.state.broadcaster, get_redis_client())
        app.state.publisher = relay
        app.state.relay_task = asyncio.create_task(relay.listen(get_async_redis_client()))

    logger.info("Inbox webhook service started", extra={"live_updates": settings.LIVE_UPDATES_BACKEND})


@app.on_event("shutdown")
async def shutdown():
    """Stop the Redis relay."""
    task = app.state.relay_task
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "inbox-webhook"}


async def _read_json(request: Request) -> tuple[bytes, Any]:
    body = await request.body()
    try:
        return body, json.loads(body)
    except json.JSONDecodeError:
        logger.warning("Invalid JSON payload", extra={"path": request.url.path})
        raise HTTPException(status_code=400, detail="Invalid JSON")


# =============================================================================
# Evolution (WhatsApp)
# =============================================================================


@app.post("/webhooks/evolution")
async def evolution_webhook(
    request: Request,
    db: Session = Depends(get_db),
    publisher: LiveUpdatePublisher = Depends(get_publisher),
    vault: CredentialVault | None = Depends(get_credential_vault),
    transport: httpx.AsyncBaseTransport | None = Depends(get_provider_transport),
):
    """Receive an Evolution API webhook (global webhook mode)."""
    return await _handle_evolution(request, db, publisher, vault, transport)


@app.post("/webhooks/evolution/{event:path}")
async def evolution_webhook_by_event(
    event: str,
    request: Request,
    db: Session = Depends(get_db),
    publisher: LiveUpdatePublisher = Depends(get_publisher),
    vault: CredentialVault | None = Depends(get_credential_vault),
    transport: httpx.AsyncBaseTransport | None = Depends(get_provider_transport),
):
    """
    Receive an Evolution API webhook ("webhook by events" mode).

    The gateway appends the event name to the URL, e.g. /webhooks/evolution/chats-delete.
    """
    return await _handle_evolution(request, db, publisher, vault, transport, path_event=event)


async def _handle_evolution(
    request: Request,
    db: Session,
    publisher: LiveUpdatePublisher,
    vault: CredentialVault | None,
    transport: httpx.AsyncBaseTransport | None,
    path_event: str | None = None,
) -> dict[str, Any]:
    """
    Flow:
    1. Validate the envelope and classify the event
    2. Resolve the channel account from the instance name
    3. Route deletions to the deletion handler
    4. Normalize, dedupe and process message events
    """
    _, raw = await _read_json(request)
    settings = get_settings()

    if settings.EVOLUTION_WEBHOOK_API_KEY:
        if not validate_api_key(dict(request.headers), settings.EVOLUTION_WEBHOOK_API_KEY):
            logger.warning("Invalid Evolution API key")
            raise HTTPException(status_code=403, detail="Invalid API key")

    try:
        envelope = EvolutionWebhookPayload.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Invalid Evolution payload: {e.error_count()} errors", extra={"errors": e.errors()})
        return {"received": True, "skipped": True}

    payload = dict(raw)
    payload["event"] = envelope.event or path_event or ""
    instance = envelope.instance

    category = classify_event(payload["event"])
    if category == EvolutionEventCategory.IGNORED:
        logger.debug("Ignoring Evolution event", extra={"event": payload["event"], "instance": instance})
        return {"received": True, "skipped": True}

    account = ChannelResolver(db).resolve_evolution_instance(instance)
    if account is None:
        return {"received": True, "error": "Channel not found"}

    if category in (EvolutionEventCategory.CHAT_DELETED, EvolutionEventCategory.DELETION_HINT):
        return await _handle_chat_deletion(db, publisher, vault, transport, account, payload, category)

    event = normalize_evolution_webhook(payload, instance)
    if event is None:
        logger.debug("Evolution event has no message content", extra={"event": payload["event"], "instance": instance})
        return {"received": True, "skipped": True}

    media = event.message.media
    if media and media.requires_fetch:
        event.message.media = MediaReference(url=media_proxy_path(instance, event.message.external_message_id))

    outcome = WebhookIngestor(db, publisher).ingest(account.workspace_id, "evolution", event)

    if outcome.status == "duplicate":
        return {"received": True, "duplicate": True}
    if outcome.status == "failed":
        return {"received": True, "processed": False, "error": outcome.error}

    logger.info(
        "Processed Evolution message",
        extra={"instance": instance, "dedupe_key": outcome.dedupe_key, "action": outcome.result.action},
    )
    return {"received": True, "processed": True}


async def _handle_chat_deletion(
    db: Session,
    publisher: LiveUpdatePublisher,
    vault: CredentialVault | None,
    transport: httpx.AsyncBaseTransport | None,
    account,
    payload: dict[str, Any],
    category: EvolutionEventCategory,
) -> dict[str, Any]:
    """Delete conversations for removed chats (confirmed or verified with the gateway)."""
    deletion = parse_chat_deletion(
        payload,
        account.external_id,
        confirmed=category == EvolutionEventCategory.CHAT_DELETED,
    )
    if not deletion.chat_ids:
        return {"received": True, "skipped": True}

    handler = ChatDeletionHandler(db, publisher)

    if deletion.confirmed:
        deleted = await handler.handle(account.workspace_id, account, deletion)
    else:
        try:
            client = build_client(
                EvolutionChannelConfig.from_channel_account(account),
                vault,
                timeout=get_settings().PROVIDER_TIMEOUT,
                transport=transport,
            )
        except (ProviderConfigError, DecryptionError) as e:
            logger.warning(f"Cannot verify deletion hint: {e}", extra={"instance": account.external_id})
            return {"received": True, "skipped": True}

        async with client:
            deleted = await handler.handle(account.workspace_id, account, deletion, client.chat_exists)

    return {"received": True, "processed": True, "deleted": len(deleted)}


@app.get(MEDIA_PROXY_PATH)
async def evolution_media(
    instance: str = Query(...),
    message_id: str = Query(..., alias="messageId"),
    db: Session = Depends(get_db),
    vault: CredentialVault | None = Depends(get_credential_vault),
    transport: httpx.AsyncBaseTransport | None = Depends(get_provider_transport),
):
    """Fetch the media of a stored WhatsApp message through the gateway."""
    account = ChannelResolver(db).resolve_evolution_instance(instance)
    if account is None:
        raise HTTPException(status_code=404, detail="Channel not found")

    message = InboxRepository(db).get_message_by_external_id(account.workspace_id, message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")

    data = (message.raw_payload or {}).get("data")
    message_key = data.get("key") if isinstance(data, dict) else None

    try:
        client = build_client(
            EvolutionChannelConfig.from_channel_account(account),
            vault,
            timeout=get_settings().PROVIDER_TIMEOUT,
            transport=transport,
        )
        async with client:
            content, mime_type = await client.fetch_media(message_key or {"id": message_id})
    except (ProviderConfigError, DecryptionError) as e:
        logger.error(f"Media proxy misconfigured: {e}", extra={"instance": instance})
        raise HTTPException(status_code=502, detail="Media unavailable")
    except ProviderError as e:
        logger.warning(f"Media fetch failed: {e}", extra={"instance": instance, "message_id": message_id})
        raise HTTPException(status_code=502, detail="Media unavailable")

    return Response(content=content, media_type=mime_type, headers={"Cache-Control": "private, max-age=86400"})


# =============================================================================
# Meta (Facebook Page / Instagram)
# =============================================================================


@app.get("/webhooks/meta")
async def verify_meta_webhook(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    """
    Handle Meta webhook verification.

    Meta sends a GET request with hub.mode, hub.verify_token, and hub.challenge.
    We must return hub.challenge if the token matches.
    """
    challenge = verify_webhook_challenge(
        mode=hub_mode or "",
        token=hub_verify_token or "",
        challenge=hub_challenge or "",
        verify_token=get_settings().META_VERIFY_TOKEN,
    )

    if challenge is not None:
        logger.info("Meta webhook verification successful")
        return Response(content=challenge, media_type="text/plain")

    logger.warning("Meta webhook verification failed", extra={"mode": hub_mode})
    raise HTTPException(status_code=403, detail="Verification failed")


@app.post("/webhooks/meta")
async def meta_webhook(
    request: Request,
    db: Session = Depends(get_db),
    publisher: LiveUpdatePublisher = Depends(get_publisher),
):
    """
    Receive a Meta webhook.

    Each entry is routed to the channel account of its page/account id;
    entries for unknown accounts are skipped, failed events are recorded
    on the ledger without failing the delivery.
    """
    body, raw = await _read_json(request)
    settings = get_settings()

    if settings.META_APP_SECRET:
        signature = request.headers.get("X-Hub-Signature-256", "")
        if not validate_signature(body, signature, settings.META_APP_SECRET):
            logger.warning("Invalid Meta webhook signature")
            raise HTTPException(status_code=403, detail="Invalid signature")

    try:
        envelope = MetaWebhookPayload.model_validate(raw)
    except ValidationError:
        logger.warning("Invalid Meta webhook object", extra={"object": raw.get("object") if isinstance(raw, dict) else None})
        raise HTTPException(status_code=400, detail="Invalid object")

    channel_type = channel_type_for_object(envelope.object)
    resolver = ChannelResolver(db)
    ingestor = WebhookIngestor(db, publisher)

    for entry in envelope.entry:
        external_id = str(entry.get("id") or "")
        account = resolver.resolve(channel_type, external_id) if external_id else None
        if account is None:
            continue

        events = normalize_meta_webhook({"object": envelope.object, "entry": [entry]}, external_id, channel_type)
        for event in events:
            outcome = ingestor.ingest(account.workspace_id, "meta", event)
            logger.info(
                f"Meta event {outcome.status}",
                extra={"external_id": external_id, "dedupe_key": outcome.dedupe_key},
            )

    return {"received": True}


# =============================================================================
# Live updates & operator replies
# =============================================================================


@app.get("/events")
async def live_events(
    request: Request,
    workspace_id: UUID = Query(..., alias="workspaceId"),
    broadcaster: LiveUpdateBroadcaster = Depends(get_broadcaster),
):
    """Stream live updates of a workspace as text/event-stream."""
    return StreamingResponse(
        live_event_stream(request, broadcaster, workspace_id, get_settings().LIVE_UPDATES_KEEPALIVE),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/messages/send", status_code=201)
async def send_message(
    request_body: SendMessageRequest,
    db: Session = Depends(get_db),
    publisher: LiveUpdatePublisher = Depends(get_publisher),
    vault: CredentialVault | None = Depends(get_credential_vault),
    transport: httpx.AsyncBaseTransport | None = Depends(get_provider_transport),
):
    """Send an operator reply in a conversation."""
    media = None
    if request_body.media_base64:
        try:
            content = base64.b64decode(request_body.media_base64, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="mediaBase64 is not valid base64")
        media = OutboundMedia(
            media_type=request_body.media_type or "document",
            content=content,
            file_name=request_body.file_name or "file",
            mime_type=request_body.mime_type or "application/octet-stream",
        )

    settings = get_settings()
    service = OutboundMessageService(
        db,
        vault,
        publisher,
        timeout=settings.PROVIDER_TIMEOUT,
        graph_api_version=settings.GRAPH_API_VERSION,
        transport=transport,
    )

    try:
        message = await service.send(
            request_body.workspace_id,
            request_body.conversation_id,
            text=request_body.text,
            media=media,
        )
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SendValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ProviderConfigError, DecryptionError) as e:
        logger.error(f"Channel not configured for sending: {e}")
        raise HTTPException(status_code=503, detail=str(e))
    except ProviderError as e:
        logger.warning(f"Send failed: {e}", extra={"conversation_id": str(request_body.conversation_id)})
        raise HTTPException(
            status_code=502,
            detail={"message": str(e), "status": e.status_code, "body": e.body},
        )

    return message.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8090)
