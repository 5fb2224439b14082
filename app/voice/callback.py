"""
Task-completion voice callbacks.
Decides whether a finished task warrants a phone call, and if so synthesizes
a tone-matched script, places the call and records it.
"""

from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from app.channels.composer import callback_script
from app.core.config import settings
from app.core.errors import StoreError, TelephonyError, VoiceSynthesisError
from app.core.observability import capture_exception
from app.services.store import AgentStore
from app.voice.models import (
    CallbackOutcome,
    CallbackPreferences,
    CallbackRequest,
    CallDirection,
    CallRecord,
    QuietHours,
    SynthesizedAudio,
)
from app.voice.quiet_hours import is_quiet_hours
from app.voice.telephony import TelephonyProvider
from app.voice.tone import detect_tone
from app.voice.tts import VoiceSynthesizer

logger = structlog.get_logger(__name__)


def default_preferences() -> CallbackPreferences:
    """Preferences for a user who has never saved any."""
    return CallbackPreferences(
        quiet_hours=QuietHours(
            enabled=True,
            start=settings.agent_g_quiet_hours_start,
            end=settings.agent_g_quiet_hours_end,
        )
    )


def callback_audio_url(audio_id: str) -> str:
    """Public URL the telephony provider plays the stored callback audio from."""
    base = settings.public_api_url.rstrip("/")
    return f"{base}{settings.api_v1_prefix}/agent/calls/audio/{audio_id}"


class CallbackDispatcher:
    """
    Places task-completion callbacks.

    Gate, in order:
    1. no phone number on file -> not queued, even when forced
    2. user hasn't opted in -> not queued unless forced
    3. inside the user's quiet hours -> not queued unless forced
    """

    def __init__(
        self,
        store: AgentStore,
        telephony: TelephonyProvider,
        synthesizer: Optional[VoiceSynthesizer] = None,
        clock: Optional[Callable[[], datetime]] = None,
        voice_enabled: Optional[bool] = None,
    ):
        self.store = store
        self.telephony = telephony
        self.synthesizer = synthesizer
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.voice_enabled = settings.agent_g_voice_enabled if voice_enabled is None else voice_enabled

    def _gate(self, prefs: CallbackPreferences, force: bool) -> Optional[str]:
        if not (prefs.phone_number or "").strip():
            return "no phone number"
        if force:
            return None
        if not prefs.call_me_when_finished:
            return "callback disabled"
        if is_quiet_hours(prefs.quiet_hours, self.clock()):
            return "quiet hours"
        return None

    async def dispatch(self, request: CallbackRequest) -> CallbackOutcome:
        """
        Decide on and place a callback for a finished task.

        Args:
            request: Task details and the dashboard link to read out

        Returns:
            CallbackOutcome; `reason` is set whenever nothing was queued
        """
        prefs = await self.store.get_prefs(request.user_id) or default_preferences()

        reason = self._gate(prefs, request.force)
        if reason:
            logger.info("Callback skipped", task_id=request.task_id, reason=reason)
            return CallbackOutcome(queued=False, reason=reason)

        script = callback_script(
            goal=request.task_goal,
            summary=request.summary,
            subtasks=request.subtasks,
            dashboard=request.dashboard_url,
            display_name=prefs.display_name,
            max_seconds=settings.agent_g_voice_max_seconds,
        )
        tone = detect_tone(request.task_goal)

        audio: Optional[SynthesizedAudio] = None
        audio_id: Optional[str] = None
        audio_url: Optional[str] = None
        if self.voice_enabled and self.synthesizer is not None:
            try:
                audio = await self.synthesizer.synthesize(script, tone.tone)
            except VoiceSynthesisError as e:
                logger.warning("Callback voice synthesis failed", task_id=request.task_id, error=str(e))
                return CallbackOutcome(queued=False, reason="voice synthesis failed")

            # The provider fetches the audio over HTTP while the call connects.
            try:
                audio_id = await self.store.save_audio(audio)
            except StoreError as e:
                logger.error("Callback audio not stored", task_id=request.task_id, error=str(e))
                capture_exception(e, {"task_id": request.task_id})
                return CallbackOutcome(queued=False, reason="failed to store callback audio")
            audio_url = callback_audio_url(audio_id)

        try:
            provider_call = await self.telephony.start_outbound_call(
                to=prefs.phone_number,
                script=script,
                metadata={"task_id": request.task_id, "callback": True},
                audio_url=audio_url,
            )
        except TelephonyError as e:
            logger.warning("Callback call failed to start", task_id=request.task_id, error=str(e))
            return CallbackOutcome(queued=False, reason="failed to start call", provider=self.telephony.name)

        record = CallRecord(
            user_id=request.user_id,
            direction=CallDirection.OUTBOUND,
            channel="phone",
            status=provider_call.status,
            transcript=script,
            summary=request.summary,
            related_task_id=request.task_id,
            started_at=self.clock(),
            meta={
                "provider": self.telephony.name,
                "provider_call_id": provider_call.provider_call_id,
                "callback": True,
                "forced": request.force,
                "tone": tone.tone.value,
                "tone_confidence": tone.confidence,
                "voice_provider": audio.provider if audio else None,
                "audio_id": audio_id,
                "audio_url": audio_url,
                **provider_call.meta,
            },
        )

        try:
            saved = await self.store.save_call(record)
        except StoreError as e:
            # The call is already placed at this point.
            logger.error(
                "Callback call placed but not saved",
                task_id=request.task_id,
                provider_call_id=provider_call.provider_call_id,
                error=str(e),
            )
            capture_exception(e, {"task_id": request.task_id})
            return CallbackOutcome(queued=False, reason="failed to save callback call", provider=self.telephony.name)

        logger.info(
            "Callback queued",
            task_id=request.task_id,
            call_id=saved.id,
            provider=self.telephony.name,
            tone=tone.tone.value,
        )
        return CallbackOutcome(queued=True, call_id=saved.id, provider=self.telephony.name)
