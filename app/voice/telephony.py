"""
Telephony providers for outbound callbacks and inbound call sessions.
"""

import asyncio
import uuid
from typing import Any, Optional, Protocol

import structlog
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient
from twilio.twiml.voice_response import VoiceResponse

from app.core.config import settings
from app.core.errors import TelephonyError
from app.voice.models import ProviderCall

logger = structlog.get_logger(__name__)


class TelephonyProvider(Protocol):
    """Places outbound calls and opens inbound sessions. Raises TelephonyError on failure."""

    name: str

    async def start_outbound_call(
        self,
        to: str,
        script: str,
        metadata: dict[str, Any],
        audio_url: Optional[str] = None,
    ) -> ProviderCall:
        ...

    async def start_inbound_session(
        self,
        user_id: str,
        channel: str,
        mode: str,
        phone_number: Optional[str] = None,
        related_task_id: Optional[str] = None,
        initial_text: Optional[str] = None,
    ) -> ProviderCall:
        ...


def build_twiml(script: str, audio_url: Optional[str] = None) -> str:
    """TwiML that plays the synthesized audio, or reads the script when there is none."""
    response = VoiceResponse()
    if audio_url:
        response.play(audio_url)
    else:
        response.say(script)
    return str(response)


class MockTelephonyProvider:
    """
    In-process provider for development and tests.

    Calls live in an explicit arena keyed by provider call id; update_status()
    stands in for the provider's status webhooks.
    """

    name = "mock"

    def __init__(self):
        self.calls: dict[str, dict[str, Any]] = {}

    async def start_outbound_call(
        self,
        to: str,
        script: str,
        metadata: dict[str, Any],
        audio_url: Optional[str] = None,
    ) -> ProviderCall:
        if not to:
            raise TelephonyError("missing destination number")

        call_id = f"mock_{uuid.uuid4().hex[:12]}"
        self.calls[call_id] = {
            "to": to,
            "script": script,
            "metadata": dict(metadata),
            "audio_url": audio_url,
            "twiml": build_twiml(script, audio_url),
            "status": "queued",
        }
        logger.info("Mock call queued", provider_call_id=call_id, has_audio=audio_url is not None)
        return ProviderCall(provider_call_id=call_id, status="queued", meta={"mock": True})

    async def start_inbound_session(
        self,
        user_id: str,
        channel: str,
        mode: str,
        phone_number: Optional[str] = None,
        related_task_id: Optional[str] = None,
        initial_text: Optional[str] = None,
    ) -> ProviderCall:
        session_id = f"mock_session_{uuid.uuid4().hex[:12]}"
        self.calls[session_id] = {
            "user_id": user_id,
            "channel": channel,
            "mode": mode,
            "related_task_id": related_task_id,
            "status": "in_progress",
        }
        logger.info("Mock inbound session started", provider_call_id=session_id, channel=channel, mode=mode)
        return ProviderCall(
            provider_call_id=session_id,
            status="in_progress",
            transcript=initial_text,
            meta={"mock": True},
        )

    def update_status(self, call_id: str, status: str) -> None:
        if call_id not in self.calls:
            raise KeyError(call_id)
        self.calls[call_id]["status"] = status


class TwilioTelephonyProvider:
    """Twilio Programmable Voice through the Twilio SDK."""

    name = "twilio"

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        client: Optional[TwilioClient] = None,
    ):
        self.account_sid = account_sid or settings.twilio_account_sid
        self.auth_token = auth_token or settings.twilio_auth_token
        self.from_number = from_number or settings.twilio_from_number
        self._client = client

    def is_configured(self) -> bool:
        return all([self.account_sid, self.auth_token, self.from_number])

    @property
    def client(self) -> TwilioClient:
        if self._client is None:
            self._client = TwilioClient(self.account_sid, self.auth_token)
        return self._client

    async def start_outbound_call(
        self,
        to: str,
        script: str,
        metadata: dict[str, Any],
        audio_url: Optional[str] = None,
    ) -> ProviderCall:
        if not self.is_configured():
            raise TelephonyError("missing twilio config")
        if not to:
            raise TelephonyError("missing destination number")

        twiml = build_twiml(script, audio_url)
        try:
            # The SDK is blocking; keep it off the event loop.
            call = await asyncio.to_thread(
                self.client.calls.create,
                to=to,
                from_=self.from_number,
                twiml=twiml,
            )
        except TwilioException as e:
            raise TelephonyError(f"twilio call failed: {e}") from e

        if not call.sid:
            raise TelephonyError("twilio response missing call sid")

        logger.info(
            "Twilio call started",
            provider_call_id=call.sid,
            task_id=metadata.get("task_id"),
            has_audio=audio_url is not None,
        )
        return ProviderCall(
            provider_call_id=call.sid,
            status=str(call.status or "queued"),
            meta={"audio_url": audio_url},
        )

    async def start_inbound_session(
        self,
        user_id: str,
        channel: str,
        mode: str,
        phone_number: Optional[str] = None,
        related_task_id: Optional[str] = None,
        initial_text: Optional[str] = None,
    ) -> ProviderCall:
        """
        Open a session the user joins by dialing in.

        Twilio has no call until the user dials our number, so the session
        carries the number to dial and waits for the incoming call.
        """
        if not self.is_configured():
            raise TelephonyError("missing twilio config")

        session_id = f"twilio_session_{uuid.uuid4().hex[:12]}"
        logger.info("Twilio inbound session opened", provider_call_id=session_id, channel=channel, mode=mode)
        return ProviderCall(
            provider_call_id=session_id,
            status="awaiting_call",
            transcript=initial_text,
            meta={"dial_in_number": self.from_number, "caller_number": phone_number},
        )


def get_telephony_provider() -> TelephonyProvider:
    """Provider selected by the calls_provider setting."""
    if settings.calls_provider == "twilio":
        return TwilioTelephonyProvider()
    return MockTelephonyProvider()
