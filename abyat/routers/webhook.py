from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from abyat.config import Settings
from abyat.dependencies import Services, get_services, get_settings
from abyat.logging_config import get_logger
from abyat.schemas.whatsapp import WebhookAck, WebhookPayload

logger = get_logger("webhook")

router = APIRouter()


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: Optional[str] = Query(default=None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    config: Settings = Depends(get_settings),
):
    """Meta subscription handshake: echo the challenge when the token matches."""
    if hub_mode == "subscribe" and config.verify_token and hub_verify_token == config.verify_token:
        logger.info("Webhook verified successfully")
        return PlainTextResponse(hub_challenge or "")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Acknowledge immediately; the message itself is handled in the background.

    Duplicate deliveries are dropped here, before anything is scheduled.
    """
    try:
        body = await request.json()
    except ValueError as e:
        logger.warning(f"Webhook body is not JSON: {e}")
        return WebhookAck(success=False, message="Invalid payload")

    try:
        payload = WebhookPayload.model_validate(body)
    except ValidationError as e:
        logger.warning("Unrecognized webhook payload", extra={"context": {"errors": e.error_count()}})
        return WebhookAck(success=False, message="Unrecognized payload")

    message = payload.first_message()
    if message is None:
        return WebhookAck(message="No message")

    if services.dedup.is_duplicate(message.id, message.from_):
        return WebhookAck(message="Duplicate ignored")

    logger.info(
        "Message received",
        extra={"context": {"user_id": message.from_, "message_id": message.id, "type": message.type}},
    )
    background_tasks.add_task(services.conversation.process_inbound, message)
    return WebhookAck()
