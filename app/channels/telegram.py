"""
Telegram bot client and update normalisation.
"""

from typing import Any, Optional

import structlog
from telegram import Bot, InputFile, LinkPreviewOptions
from telegram.error import TelegramError

from app.channels.composer import completion_notice
from app.channels.models import InboundMessage, VoiceNote
from app.core.config import settings
from app.core.errors import ChannelError
from app.services.store import AgentStore
from app.voice.models import SynthesizedAudio

logger = structlog.get_logger(__name__)

CHANNEL = "telegram"
# Telegram rejects messages longer than this.
MAX_MESSAGE_LENGTH = 4096
MAX_CAPTION_LENGTH = 1024


def _voice_note(message: dict[str, Any]) -> Optional[VoiceNote]:
    voice = message.get("voice")
    if not isinstance(voice, dict) or not voice.get("file_id"):
        return None
    return VoiceNote(
        file_id=str(voice["file_id"]),
        duration=voice.get("duration"),
        mime_type=voice.get("mime_type"),
    )


def normalize_update(update: dict[str, Any]) -> Optional[InboundMessage]:
    """
    Normalise a Telegram update into an InboundMessage.

    Returns None for updates that carry no message (callback queries, polls, ...).

    Raises:
        ValueError: if the update is not an object or its message has no chat id
    """
    if not isinstance(update, dict):
        raise ValueError("Telegram update must be an object")

    message = update.get("message") or update.get("edited_message")
    if message is None:
        return None
    if not isinstance(message, dict):
        raise ValueError("Telegram message must be an object")

    chat = message.get("chat") or {}
    chat_id = chat.get("id") if isinstance(chat, dict) else None
    if chat_id is None:
        raise ValueError("Telegram message has no chat id")

    sender = message.get("from") or {}
    user_id = sender.get("id") if isinstance(sender, dict) else None
    username = sender.get("username") if isinstance(sender, dict) else None
    message_id = message.get("message_id")

    return InboundMessage(
        channel=CHANNEL,
        chat_id=str(chat_id),
        user_id=str(user_id) if user_id is not None else None,
        username=username,
        text=str(message.get("text") or message.get("caption") or ""),
        message_id=str(message_id) if message_id is not None else None,
        date=message.get("date"),
        voice=_voice_note(message),
    )


class TelegramClient:
    """Thin wrapper over telegram.Bot for replies, voice notes and notices."""

    def __init__(self, token: Optional[str] = None, bot: Optional[Bot] = None):
        self.token = token if token is not None else settings.telegram_bot_token
        self._bot = bot

    @property
    def configured(self) -> bool:
        return bool(self.token) or self._bot is not None

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(self.token)
        return self._bot

    async def send_message(self, chat_id: str, text: str) -> bool:
        """Send a text message. Returns False (and logs) on any delivery failure."""
        if not self.configured:
            logger.warning("Telegram bot token not configured, dropping message", chat_id=chat_id)
            return False

        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text[:MAX_MESSAGE_LENGTH],
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )
        except TelegramError as e:
            logger.warning("Telegram send failed", chat_id=chat_id, error=str(e))
            return False
        return True

    async def send_messages(self, chat_id: str, messages: list[str]) -> None:
        for message in messages:
            await self.send_message(chat_id, message)

    async def send_voice(self, chat_id: str, audio: SynthesizedAudio, caption: Optional[str] = None) -> bool:
        """Send synthesized audio as a voice note. Returns False on delivery failure."""
        if not self.configured:
            logger.warning("Telegram bot token not configured, dropping voice note", chat_id=chat_id)
            return False

        try:
            await self.bot.send_voice(
                chat_id=chat_id,
                voice=InputFile(audio.audio, filename=audio.file_name),
                caption=caption[:MAX_CAPTION_LENGTH] if caption else None,
            )
        except TelegramError as e:
            logger.warning("Telegram voice send failed", chat_id=chat_id, error=str(e))
            return False
        return True

    async def download_file(self, file_id: str) -> tuple[bytes, Optional[str]]:
        """
        Fetch an uploaded file.

        Returns:
            The file bytes and the download URL Telegram reports for it

        Raises:
            ChannelError: if the bot is not configured or Telegram refuses the download
        """
        if not self.configured:
            raise ChannelError("telegram bot token not configured")
        try:
            tg_file = await self.bot.get_file(file_id)
            data = await tg_file.download_as_bytearray()
        except TelegramError as e:
            raise ChannelError(f"telegram file download failed: {e}") from e
        return bytes(data), tg_file.file_path


async def notify_task_completion(
    store: AgentStore,
    client: TelegramClient,
    user_id: str,
    task_id: str,
    summary: str,
    origin: str,
) -> bool:
    """Send a completion notice to the user's linked Telegram chat, if any."""
    chat_id = await store.get_user_chat(user_id, CHANNEL)
    if not chat_id:
        return False

    link = await store.get_channel_link(CHANNEL, chat_id)
    locale = link.locale if link else None
    sent = await client.send_message(chat_id, completion_notice(summary, origin, task_id, locale))
    logger.info("Telegram completion notice", task_id=task_id, sent=sent)
    return sent
