"""
Voice synthesis for callbacks.
ElevenLabs text-to-speech with tone-specific voice settings, bounded retries
and per-attempt timeouts on both the request and the audio download.
"""

import asyncio
from typing import Optional, Protocol

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from app.core.config import settings
from app.core.errors import VoiceSynthesisError
from app.voice.models import SynthesizedAudio, Tone, VoiceSettings

logger = structlog.get_logger(__name__)


# Calm, composed delivery for tense moods; looser and more expressive when happy.
TONE_VOICE_SETTINGS: dict[Tone, VoiceSettings] = {
    Tone.HAPPY: VoiceSettings(stability=0.4, similarity_boost=0.78, style=0.55),
    Tone.STRESSED: VoiceSettings(stability=0.72, similarity_boost=0.75, style=0.28),
    Tone.ANGRY: VoiceSettings(stability=0.72, similarity_boost=0.75, style=0.28),
    Tone.SAD: VoiceSettings(stability=0.72, similarity_boost=0.75, style=0.28),
    Tone.NEUTRAL: VoiceSettings(stability=0.58, similarity_boost=0.76, style=0.4),
}


def tone_settings(tone: Tone) -> VoiceSettings:
    """Voice settings for a detected tone."""
    return TONE_VOICE_SETTINGS.get(tone, TONE_VOICE_SETTINGS[Tone.NEUTRAL])


class VoiceSynthesizer(Protocol):
    """Turns text into speech audio. Raises VoiceSynthesisError on failure."""

    name: str

    async def synthesize(self, text: str, tone: Tone) -> SynthesizedAudio:
        ...


def _log_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning(
            "TTS attempt failed",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()),
        )


class ElevenLabsSynthesizer:
    """VoiceSynthesizer backed by the ElevenLabs text-to-speech API."""

    name = "elevenlabs"

    def __init__(
        self,
        api_key: Optional[str] = None,
        voice_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.api_key = (api_key if api_key is not None else settings.elevenlabs_api_key).strip()
        self.voice_id = (voice_id if voice_id is not None else settings.elevenlabs_voice_id).strip()
        self.timeout = timeout or settings.tts_timeout_seconds
        self.max_attempts = max_attempts or settings.tts_max_attempts
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key and self.voice_id)

    async def synthesize(self, text: str, tone: Tone) -> SynthesizedAudio:
        """
        Synthesize speech for `text`, shaped by `tone`.

        Raises:
            VoiceSynthesisError: when unconfigured, given empty text, or every attempt fails
        """
        if not self.is_configured():
            raise VoiceSynthesisError("missing_elevenlabs_config")

        cleaned = (text or "").strip()
        if not cleaned:
            raise VoiceSynthesisError("empty_tts_text")

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                retry=retry_if_exception_type(
                    (httpx.HTTPError, asyncio.TimeoutError, VoiceSynthesisError)
                ),
                after=_log_attempt,
                reraise=True,
            ):
                with attempt:
                    audio = await self._synthesize_once(cleaned, tone)
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            raise VoiceSynthesisError(f"tts_failed: {e!r}") from e

        logger.info("TTS synthesized", tone=tone.value, bytes=len(audio.audio))
        return audio

    async def _synthesize_once(self, text: str, tone: Tone) -> SynthesizedAudio:
        if self._client is not None:
            return await self._request(self._client, text, tone)
        async with httpx.AsyncClient() as client:
            return await self._request(client, text, tone)

    async def _request(self, client: httpx.AsyncClient, text: str, tone: Tone) -> SynthesizedAudio:
        request = client.build_request(
            "POST",
            f"{settings.elevenlabs_base_url}/v1/text-to-speech/{self.voice_id}",
            params={"output_format": "mp3_44100_128"},
            headers={
                "xi-api-key": self.api_key,
                "Content-Type": "application/json",
                "Accept": "audio/mpeg",
            },
            json={
                "text": text,
                "model_id": settings.elevenlabs_model_id,
                "voice_settings": tone_settings(tone).model_dump(),
            },
        )

        response = await asyncio.wait_for(client.send(request, stream=True), timeout=self.timeout)
        try:
            if response.status_code >= 400:
                raise VoiceSynthesisError(f"elevenlabs_http_{response.status_code}")
            audio = await asyncio.wait_for(response.aread(), timeout=self.timeout)
        finally:
            await response.aclose()

        if not audio:
            raise VoiceSynthesisError("empty_tts_audio")

        return SynthesizedAudio(
            audio=audio,
            mime_type="audio/mpeg",
            file_name="agent-g-callback.mp3",
            provider=self.name,
        )
