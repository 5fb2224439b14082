"""
Speech-to-text for chat voice notes.
"""

import asyncio
from typing import Optional, Protocol

import structlog
from openai import APIConnectionError, APITimeoutError, AsyncOpenAI, OpenAIError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from app.core.config import settings
from app.core.errors import TranscriptionError

logger = structlog.get_logger(__name__)


class Transcriber(Protocol):
    """Turns speech audio into text. Raises TranscriptionError on failure."""

    name: str

    async def transcribe(self, audio: bytes, file_name: str = "voice.ogg") -> str:
        ...


class OpenAITranscriber:
    """Transcriber backed by the OpenAI audio transcription endpoint."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.stt_model
        self.timeout = timeout or settings.stt_timeout_seconds
        self.max_attempts = max_attempts or settings.stt_max_attempts
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def transcribe(self, audio: bytes, file_name: str = "voice.ogg") -> str:
        """
        Transcribe one voice note.

        Raises:
            TranscriptionError: when unconfigured, given no audio, or the result is empty
        """
        if not self.is_configured():
            raise TranscriptionError("missing_openai_config")
        if not audio:
            raise TranscriptionError("empty_audio")

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                retry=retry_if_exception_type(
                    (APIConnectionError, APITimeoutError, asyncio.TimeoutError)
                ),
                reraise=True,
            ):
                with attempt:
                    result = await asyncio.wait_for(
                        self.client.audio.transcriptions.create(
                            model=self.model,
                            file=(file_name, audio),
                        ),
                        timeout=self.timeout,
                    )
        except (OpenAIError, asyncio.TimeoutError) as e:
            raise TranscriptionError(f"stt_failed: {e!r}") from e

        text = (getattr(result, "text", "") or "").strip()
        if not text:
            raise TranscriptionError("empty_transcript")

        logger.info("Voice note transcribed", chars=len(text))
        return text


def build_transcriber() -> Optional[Transcriber]:
    """Configured transcriber, or None when no OpenAI key is set."""
    transcriber = OpenAITranscriber()
    return transcriber if transcriber.is_configured() else None
