"""
Fakes for the collaborator protocols used in tests.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union

from app.channels.telegram import TelegramClient
from app.core.errors import ChannelError, RemoteCallError, TranscriptionError, VoiceSynthesisError
from app.services.remote import RemoteResponse
from app.voice.models import SynthesizedAudio, Tone

ORIGIN = "http://app.test"

Reply = Union[RemoteResponse, Exception]


class FakeRemoteCaller:
    """
    RemoteCaller that answers from a table keyed by (METHOD, path).

    Unrouted calls get a 404. Every call is recorded in `calls`.
    """

    def __init__(self, routes: Optional[dict[tuple[str, str], Reply]] = None):
        self.routes: dict[tuple[str, str], Reply] = dict(routes or {})
        self.calls: list[dict[str, Any]] = []

    def reply(self, method: str, path: str, status_code: int = 200, body: Any = None) -> None:
        self.routes[(method, path)] = RemoteResponse(status_code=status_code, body=body)

    def fail(self, method: str, path: str, timed_out: bool = False) -> None:
        self.routes[(method, path)] = RemoteCallError(f"boom: {path}", timed_out=timed_out)

    async def call(self, method, url, headers=None, body=None) -> RemoteResponse:
        path = url.removeprefix(ORIGIN)
        self.calls.append({"method": method, "path": path, "headers": headers or {}, "body": body})
        reply = self.routes.get((method, path))
        if reply is None:
            return RemoteResponse(status_code=404, body={"error": "not found"})
        if isinstance(reply, Exception):
            raise reply
        return reply

    def paths(self) -> list[str]:
        return [f"{c['method']} {c['path']}" for c in self.calls]


class FakeSynthesizer:
    """VoiceSynthesizer that records requests and can be told to fail."""

    name = "fake-tts"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests: list[tuple[str, Tone]] = []

    async def synthesize(self, text: str, tone: Tone) -> SynthesizedAudio:
        self.requests.append((text, tone))
        if self.fail:
            raise VoiceSynthesisError("tts_failed")
        return SynthesizedAudio(audio=b"ID3-fake", provider=self.name)


class FakeTelegramClient(TelegramClient):
    """TelegramClient that records outgoing messages instead of sending them."""

    def __init__(self):
        super().__init__(token="test-token")
        self.sent: list[tuple[str, str]] = []
        self.voices: list[tuple[str, SynthesizedAudio]] = []
        # Uploaded files by file id; unknown ids fail to download.
        self.files: dict[str, bytes] = {}

    async def send_message(self, chat_id: str, text: str) -> bool:
        self.sent.append((chat_id, text))
        return True

    async def send_voice(self, chat_id: str, audio: SynthesizedAudio, caption: Optional[str] = None) -> bool:
        self.voices.append((chat_id, audio))
        return True

    async def download_file(self, file_id: str) -> tuple[bytes, Optional[str]]:
        if file_id not in self.files:
            raise ChannelError(f"unknown file {file_id}")
        return self.files[file_id], f"https://files.telegram.test/voice/{file_id}.oga"


class FakeTranscriber:
    """Transcriber returning a canned transcript."""

    name = "fake-stt"

    def __init__(self, transcript: str = "", fail: bool = False):
        self.transcript = transcript
        self.fail = fail
        self.requests: list[bytes] = []

    async def transcribe(self, audio: bytes, file_name: str = "voice.ogg") -> str:
        self.requests.append(audio)
        if self.fail or not self.transcript:
            raise TranscriptionError("empty_transcript")
        return self.transcript


def fixed_clock(hour: int, minute: int = 0):
    """Clock returning a fixed UTC time on a fixed day."""
    return lambda: datetime(2024, 5, 1, hour, minute, tzinfo=timezone.utc)


