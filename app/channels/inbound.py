"""
Inbound chat handling.
Stores the message, links chats via /connect, runs goals sent from linked
chats and answers voice notes with a voice reply.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from app.agents.orchestrator.service import AgentService
from app.channels.composer import completion_messages, first_line, normalize_locale, truncate_for_speech
from app.channels.models import ChannelLink, InboundMessage
from app.channels.telegram import TelegramClient
from app.core.config import settings
from app.core.errors import AgentGError, ChannelError, StoreError, TranscriptionError, VoiceSynthesisError
from app.core.observability import capture_exception
from app.services.store import AgentStore
from app.voice.models import CallDirection, CallRecord
from app.voice.modes import infer_assistant_mode
from app.voice.stt import Transcriber
from app.voice.tone import detect_tone
from app.voice.tts import VoiceSynthesizer

logger = structlog.get_logger(__name__)

CONNECT_FIRST = "Please connect your account first with /connect CODE from Agent G settings."
CONNECTED = "Your chat is now connected to Agent G. Send me a task to get started."
INVALID_CODE = "That connect code is invalid or expired. Generate a new one in Agent G settings."
EMPTY_TASK = "Please send a task description."
TRY_AGAIN = "Agent G could not process that request right now. Please retry in a moment."
VOICE_UNAVAILABLE = "Voice messages are not available right now. Please type your task instead."
VOICE_NOT_UNDERSTOOD = "I couldn't make out that voice message. Please try again or type your task."


class InboundReply(BaseModel):
    """What to send back to the chat, plus the task that ran (if any)."""
    messages: list[str] = []
    task_id: Optional[str] = None
    user_id: Optional[str] = None
    summary: Optional[str] = None
    call_id: Optional[str] = None
    voice_sent: bool = False


class InboundHandler:
    """Handles a normalised inbound chat message."""

    def __init__(
        self,
        store: AgentStore,
        service: AgentService,
        telegram: Optional[TelegramClient] = None,
        transcriber: Optional[Transcriber] = None,
        synthesizer: Optional[VoiceSynthesizer] = None,
        voice_enabled: Optional[bool] = None,
    ):
        self.store = store
        self.service = service
        self.telegram = telegram
        self.transcriber = transcriber
        self.synthesizer = synthesizer
        self.voice_enabled = settings.agent_g_voice_enabled if voice_enabled is None else voice_enabled

    async def handle(self, message: InboundMessage) -> InboundReply:
        await self.store.save_inbound(message)

        text = message.text.strip()
        if text.startswith("/connect"):
            reply = await self._connect(message, text)
        elif text.startswith("/"):
            reply = InboundReply()
        elif message.voice is not None:
            reply = await self._voice(message)
        else:
            reply = await self._run(message, text)

        if reply.messages and self.telegram is not None and message.channel == "telegram":
            await self.telegram.send_messages(message.chat_id, reply.messages)
        return reply

    async def _connect(self, message: InboundMessage, text: str) -> InboundReply:
        parts = text.split(maxsplit=1)
        if len(parts) < 2:
            return InboundReply(messages=[INVALID_CODE])

        user_id = await self.store.consume_link_code(parts[1])
        if not user_id:
            logger.info("Invalid connect code", channel=message.channel, chat_id=message.chat_id)
            return InboundReply(messages=[INVALID_CODE])

        prefs = await self.store.get_prefs(user_id)
        await self.store.link_channel(ChannelLink(
            channel=message.channel,
            chat_id=message.chat_id,
            user_id=user_id,
            locale=normalize_locale(prefs.locale if prefs else None),
        ))
        logger.info("Chat connected", channel=message.channel, chat_id=message.chat_id, user_id=user_id)
        return InboundReply(messages=[CONNECTED], user_id=user_id)

    async def _run(self, message: InboundMessage, goal: str) -> InboundReply:
        link = await self.store.get_channel_link(message.channel, message.chat_id)
        if link is None:
            return InboundReply(messages=[CONNECT_FIRST])
        return await self._run_for(link, message, goal)

    async def _run_for(self, link: ChannelLink, message: InboundMessage, goal: str) -> InboundReply:
        if not goal:
            return InboundReply(messages=[EMPTY_TASK], user_id=link.user_id)

        try:
            # The reply below already carries the links, so skip the separate chat notice.
            run = await self.service.run_goal(goal, link.user_id, locale=link.locale, notify=False)
        except AgentGError as e:
            logger.error("Inbound task failed", channel=message.channel, user_id=link.user_id, error=str(e))
            capture_exception(e, {"channel": message.channel, "chat_id": message.chat_id})
            return InboundReply(messages=[TRY_AGAIN], user_id=link.user_id)

        task = run.task
        summary = task.results.summary if task.results else ""
        return InboundReply(
            messages=completion_messages(summary, self.service.origin, task.id, link.locale),
            task_id=task.id,
            user_id=link.user_id,
            summary=summary,
        )

    def _voice_ready(self) -> bool:
        return (
            self.voice_enabled
            and self.transcriber is not None
            and self.telegram is not None
            and self.telegram.configured
        )

    async def _voice(self, message: InboundMessage) -> InboundReply:
        """
        Transcribe a voice note, run it as a goal and answer with a voice reply.

        The text replies still go out afterwards; the voice note is sent first
        when synthesis is available and succeeds.
        """
        link = await self.store.get_channel_link(message.channel, message.chat_id)
        if link is None:
            return InboundReply(messages=[CONNECT_FIRST])
        if not self._voice_ready():
            return InboundReply(messages=[VOICE_UNAVAILABLE], user_id=link.user_id)

        try:
            data, voice_url = await self.telegram.download_file(message.voice.file_id)
            transcript = await self.transcriber.transcribe(data, file_name="voice.ogg")
        except (ChannelError, TranscriptionError) as e:
            logger.warning("Voice note not transcribed", chat_id=message.chat_id, error=str(e))
            return InboundReply(messages=[VOICE_NOT_UNDERSTOOD], user_id=link.user_id)

        reply = await self._run_for(link, message, transcript)
        if reply.task_id is None:
            return reply

        tone = detect_tone(transcript)
        record = CallRecord(
            user_id=link.user_id,
            direction=CallDirection.INBOUND,
            channel=message.channel,
            status="ended",
            transcript=transcript,
            summary=reply.summary,
            related_task_id=reply.task_id,
            meta={
                "source": "telegram-voice",
                "voice_file_id": message.voice.file_id,
                "voice_url": voice_url,
                "assistant_mode": infer_assistant_mode(transcript),
                "tone": tone.tone.value,
            },
        )
        try:
            saved = await self.store.save_call(record)
            reply.call_id = saved.id
        except StoreError as e:
            logger.error("Voice call not saved", chat_id=message.chat_id, task_id=reply.task_id, error=str(e))
            capture_exception(e, {"channel": message.channel, "chat_id": message.chat_id})

        if self.synthesizer is not None:
            spoken = truncate_for_speech(
                first_line(reply.summary or reply.messages[0]),
                settings.agent_g_voice_max_seconds,
            )
            try:
                audio = await self.synthesizer.synthesize(spoken, tone.tone)
            except VoiceSynthesisError as e:
                logger.warning("Voice reply synthesis failed", chat_id=message.chat_id, error=str(e))
            else:
                reply.voice_sent = await self.telegram.send_voice(message.chat_id, audio)

        logger.info(
            "Voice note handled",
            chat_id=message.chat_id,
            task_id=reply.task_id,
            tone=tone.tone.value,
            voice_sent=reply.voice_sent,
        )
        return reply
