"""
Call history, callback preferences, manual callbacks and inbound voice sessions.
"""

from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from app.agents.orchestrator.service import AgentService
from app.api.deps import get_agent_service, get_agent_store, get_current_user_id, get_telephony
from app.core.config import settings
from app.core.errors import StoreError, TelephonyError
from app.core.observability import capture_exception
from app.services.store import AgentStore
from app.voice.callback import default_preferences
from app.voice.models import CallbackOutcome, CallbackPreferences, CallDirection, CallRecord, QuietHours
from app.voice.modes import AssistantMode, infer_assistant_mode
from app.voice.quiet_hours import parse_hhmm
from app.voice.telephony import TelephonyProvider

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/agent/calls", tags=["calls"])


class CallsResponse(BaseModel):
    provider: str
    prefs: CallbackPreferences
    calls: list[CallRecord] = []


class PreferencesUpdate(BaseModel):
    """Partial update of callback preferences; omitted fields are kept."""
    phone_number: Optional[str] = Field(default=None, max_length=40)
    display_name: Optional[str] = Field(default=None, max_length=120)
    locale: Optional[str] = Field(default=None, max_length=5)
    call_me_when_finished: Optional[bool] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = Field(default=None, max_length=5)
    quiet_hours_end: Optional[str] = Field(default=None, max_length=5)
    timezone_offset_minutes: Optional[int] = Field(default=None, ge=-840, le=840)


class CallbackTrigger(BaseModel):
    task_id: str
    force: bool = False


class LinkCodeResponse(BaseModel):
    code: str
    expires_in: int


class CallStartRequest(BaseModel):
    """Open an inbound voice session."""
    channel: Literal["phone", "telegram", "web_voice"]
    mode: Literal["task_intake", "qa", "status_update"]
    initial_text: Optional[str] = Field(default=None, max_length=4000)
    related_task_id: Optional[str] = None


class CallStartResponse(BaseModel):
    call: CallRecord
    provider: str
    assistant_mode: AssistantMode


@router.get("", response_model=CallsResponse)
async def list_calls(
    user_id: str = Depends(get_current_user_id),
    store: AgentStore = Depends(get_agent_store),
    telephony: TelephonyProvider = Depends(get_telephony),
) -> CallsResponse:
    """Recent calls (newest first) and the user's callback preferences."""
    calls = await store.list_calls(user_id)
    prefs = await store.get_prefs(user_id) or default_preferences()
    return CallsResponse(provider=telephony.name, prefs=prefs, calls=calls)


@router.put("/prefs", response_model=CallbackPreferences)
async def update_preferences(
    update: PreferencesUpdate,
    user_id: str = Depends(get_current_user_id),
    store: AgentStore = Depends(get_agent_store),
) -> CallbackPreferences:
    """Update callback preferences."""
    for value in (update.quiet_hours_start, update.quiet_hours_end):
        if value is not None and parse_hhmm(value) is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Invalid quiet hours time: {value!r} (expected HH:MM)",
            )

    current = await store.get_prefs(user_id) or default_preferences()
    changes = update.model_dump(exclude_unset=True)

    quiet = current.quiet_hours.model_dump()
    for field, key in (
        ("quiet_hours_enabled", "enabled"),
        ("quiet_hours_start", "start"),
        ("quiet_hours_end", "end"),
        ("timezone_offset_minutes", "timezone_offset_minutes"),
    ):
        if changes.get(field) is not None:
            quiet[key] = changes[field]

    prefs = current.model_copy(update={
        **{
            key: changes[key]
            for key in ("phone_number", "display_name", "locale", "call_me_when_finished")
            if key in changes
        },
        "quiet_hours": QuietHours(**quiet),
    })

    saved = await store.save_prefs(user_id, prefs)
    logger.info("Callback preferences updated", user_id=user_id, fields=sorted(changes))
    return saved


@router.post("/callback", response_model=CallbackOutcome)
async def trigger_callback(
    trigger: CallbackTrigger,
    user_id: str = Depends(get_current_user_id),
    store: AgentStore = Depends(get_agent_store),
    service: AgentService = Depends(get_agent_service),
) -> CallbackOutcome:
    """
    Manually request the completion callback for a task.

    `force` skips the opt-in and quiet-hours checks; a phone number is still required.
    """
    task = await store.get_task(trigger.task_id)
    if task is None or task.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    prefs = await store.get_prefs(user_id)
    outcome = await service.callback_for_task(task, force=trigger.force, locale=prefs.locale if prefs else None)
    logger.info("Manual callback", task_id=task.id, queued=outcome.queued, reason=outcome.reason)
    return outcome


@router.post("/connect-code", response_model=LinkCodeResponse)
async def create_connect_code(
    user_id: str = Depends(get_current_user_id),
    store: AgentStore = Depends(get_agent_store),
) -> LinkCodeResponse:
    """One-time code for linking a chat with /connect CODE."""
    code = await store.create_link_code(user_id)
    return LinkCodeResponse(code=code, expires_in=settings.link_code_ttl)


@router.post("/start", response_model=CallStartResponse, status_code=status.HTTP_201_CREATED)
async def start_call(
    body: CallStartRequest,
    user_id: str = Depends(get_current_user_id),
    store: AgentStore = Depends(get_agent_store),
    telephony: TelephonyProvider = Depends(get_telephony),
) -> CallStartResponse:
    """
    Start an inbound voice session and record it.

    Task-intake sessions always run in platform mode; other modes switch to
    platform mode when the opening text asks for something Agent G can do.
    """
    prefs = await store.get_prefs(user_id)
    assistant_mode = infer_assistant_mode(body.initial_text or "", prefer_platform=body.mode == "task_intake")

    try:
        provider_call = await telephony.start_inbound_session(
            user_id=user_id,
            channel=body.channel,
            mode=body.mode,
            phone_number=prefs.phone_number if prefs else None,
            related_task_id=body.related_task_id,
            initial_text=body.initial_text,
        )
    except TelephonyError as e:
        logger.warning("Inbound session failed to start", user_id=user_id, channel=body.channel, error=str(e))
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to start call")

    record = CallRecord(
        user_id=user_id,
        direction=CallDirection.INBOUND,
        channel=body.channel,
        status=provider_call.status,
        transcript=provider_call.transcript or body.initial_text,
        related_task_id=body.related_task_id,
        meta={
            "provider": telephony.name,
            "provider_call_id": provider_call.provider_call_id,
            "assistant_mode": assistant_mode,
            "mode": body.mode,
            **provider_call.meta,
        },
    )
    try:
        saved = await store.save_call(record)
    except StoreError as e:
        logger.error("Inbound call not saved", user_id=user_id, provider_call_id=provider_call.provider_call_id)
        capture_exception(e, {"user_id": user_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to store call")

    logger.info(
        "Inbound session started",
        call_id=saved.id,
        channel=body.channel,
        mode=body.mode,
        assistant_mode=assistant_mode,
    )
    return CallStartResponse(call=saved, provider=telephony.name, assistant_mode=assistant_mode)


@router.get("/audio/{audio_id}")
async def callback_audio(
    audio_id: str,
    store: AgentStore = Depends(get_agent_store),
) -> Response:
    """
    Synthesized callback audio, fetched by the telephony provider during the call.

    Unauthenticated: the provider cannot send user credentials, and the id is
    a random 128-bit token that expires with callback_audio_ttl.
    """
    audio = await store.get_audio(audio_id)
    if audio is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audio not found")
    return Response(content=audio.audio, media_type=audio.mime_type)
