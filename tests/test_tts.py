"""
ElevenLabs synthesizer tests against httpx.MockTransport.
"""

import asyncio
import json

import httpx
import pytest

from app.core.errors import VoiceSynthesisError
from app.voice.models import Tone
from app.voice.tts import ElevenLabsSynthesizer


def _synthesizer(handler) -> ElevenLabsSynthesizer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ElevenLabsSynthesizer(api_key="key", voice_id="voice-1", client=client, timeout=2.0, max_attempts=2)


@pytest.mark.asyncio
async def test_synthesizes_with_tone_settings():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"ID3audio", headers={"Content-Type": "audio/mpeg"})

    audio = await _synthesizer(handler).synthesize("Your task is done", Tone.HAPPY)

    assert audio.audio == b"ID3audio"
    assert audio.mime_type == "audio/mpeg"
    assert audio.provider == "elevenlabs"

    [request] = seen
    assert request.url.path == "/v1/text-to-speech/voice-1"
    assert request.url.params["output_format"] == "mp3_44100_128"
    assert request.headers["xi-api-key"] == "key"
    body = json.loads(request.content)
    assert body["text"] == "Your task is done"
    assert body["voice_settings"]["stability"] == 0.4
    assert body["voice_settings"]["style"] == 0.55


@pytest.mark.asyncio
async def test_retries_once_then_succeeds():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(503)
        return httpx.Response(200, content=b"audio")

    audio = await _synthesizer(handler).synthesize("hello", Tone.NEUTRAL)

    assert audio.audio == b"audio"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_gives_up_after_two_attempts():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(VoiceSynthesisError):
        await _synthesizer(handler).synthesize("hello", Tone.NEUTRAL)

    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_empty_audio_is_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    with pytest.raises(VoiceSynthesisError, match="empty_tts_audio"):
        await _synthesizer(handler).synthesize("hello", Tone.SAD)


@pytest.mark.asyncio
async def test_rejects_empty_text_and_missing_config():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(VoiceSynthesisError, match="empty_tts_text"):
        await _synthesizer(handler).synthesize("   ", Tone.NEUTRAL)

    unconfigured = ElevenLabsSynthesizer(api_key="", voice_id="", client=httpx.AsyncClient())
    assert not unconfigured.is_configured()
    with pytest.raises(VoiceSynthesisError, match="missing_elevenlabs_config"):
        await unconfigured.synthesize("hello", Tone.NEUTRAL)


class SlowBody(httpx.AsyncByteStream):
    """Response body that stalls before yielding anything."""

    def __init__(self, delay: float):
        self.delay = delay

    async def __aiter__(self):
        await asyncio.sleep(self.delay)
        yield b"too late"


def _impatient_synthesizer(handler) -> ElevenLabsSynthesizer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ElevenLabsSynthesizer(api_key="key", voice_id="voice-1", client=client, timeout=0.05, max_attempts=2)


@pytest.mark.asyncio
async def test_hanging_request_times_out_after_two_attempts():
    attempts = []

    async def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        await asyncio.sleep(1)
        return httpx.Response(200, content=b"audio")

    with pytest.raises(VoiceSynthesisError, match="tts_failed"):
        await _impatient_synthesizer(handler).synthesize("hello", Tone.NEUTRAL)

    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_hanging_audio_download_times_out_after_two_attempts():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(200, headers={"Content-Type": "audio/mpeg"}, stream=SlowBody(delay=1))

    with pytest.raises(VoiceSynthesisError, match="tts_failed"):
        await _impatient_synthesizer(handler).synthesize("hello", Tone.NEUTRAL)

    assert len(attempts) == 2
