"""
Webhook routes for chat channels.

Telegram flow:
  1. The bot is registered with setWebhook(secret_token=TELEGRAM_WEBHOOK_SECRET).
  2. Telegram POSTs every update to /api/v1/webhook/telegram with the
     x-telegram-bot-api-secret-token header.
  3. The update is normalised and acknowledged immediately; storing it,
     running the goal and replying happen in a background task.
"""

import hmac
from typing import Any, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel

from app.api.deps import get_inbound_handler
from app.channels.inbound import InboundHandler
from app.channels.models import InboundMessage
from app.channels.telegram import normalize_update
from app.core.config import settings
from app.core.errors import AgentGError
from app.core.observability import capture_exception

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])


class WebhookAck(BaseModel):
    ok: bool = True


def _verify_telegram_secret(secret_header: Optional[str]) -> None:
    """
    Check the Telegram secret token with a constant-time comparison.

    With no secret configured, updates are accepted outside production.
    """
    expected = settings.telegram_webhook_secret
    if not expected:
        if settings.environment == "production":
            logger.warning("telegram_webhook_secret not configured in production, rejecting update")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Webhook authentication is not configured on this server",
            )
        return

    if not secret_header or not hmac.compare_digest(expected.encode(), secret_header.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )


async def _process_inbound(handler: InboundHandler, message: InboundMessage) -> None:
    try:
        reply = await handler.handle(message)
    except AgentGError as e:
        logger.error("Inbound message processing failed", chat_id=message.chat_id, error=str(e))
        capture_exception(e, {"channel": message.channel, "chat_id": message.chat_id})
        return
    except Exception as e:
        # Runs after the ack, so nothing upstream would report it.
        logger.exception(
            "Inbound message processing crashed",
            channel=message.channel,
            chat_id=message.chat_id,
            message_id=message.message_id,
        )
        capture_exception(e, {"channel": message.channel, "chat_id": message.chat_id})
        return

    logger.info(
        "Inbound message processed",
        channel=message.channel,
        chat_id=message.chat_id,
        task_id=reply.task_id,
        replies=len(reply.messages),
    )


@router.post("/telegram", response_model=WebhookAck)
async def telegram_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_telegram_secret: Optional[str] = Header(None, alias="x-telegram-bot-api-secret-token"),
    handler: InboundHandler = Depends(get_inbound_handler),
) -> WebhookAck:
    """
    Receive a Telegram update.

    Auth: x-telegram-bot-api-secret-token must match TELEGRAM_WEBHOOK_SECRET.
    """
    _verify_telegram_secret(x_telegram_secret)

    try:
        update: Any = await request.json()
        message = normalize_update(update)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Malformed Telegram update: {e}",
        )

    if message is None:
        logger.debug("Telegram update without message ignored")
        return WebhookAck()

    logger.info("Telegram update received", chat_id=message.chat_id, message_id=message.message_id)
    background_tasks.add_task(_process_inbound, handler, message)
    return WebhookAck()
