"""
Chat-channel models.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class VoiceNote(BaseModel):
    """A voice message attached to a chat update."""
    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(alias="fileId")
    duration: Optional[int] = None
    mime_type: Optional[str] = Field(default=None, alias="mimeType")


class InboundMessage(BaseModel):
    """A chat-channel update normalised to a channel-independent shape."""
    model_config = ConfigDict(populate_by_name=True)

    channel: str
    chat_id: str = Field(alias="chatId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    username: Optional[str] = None
    text: str = ""
    message_id: Optional[str] = Field(default=None, alias="messageId")
    date: Optional[int] = None
    voice: Optional[VoiceNote] = None


class ChannelLink(BaseModel):
    """A chat linked to a platform user via /connect."""
    channel: str
    chat_id: str
    user_id: str
    locale: str = "en"
    linked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
