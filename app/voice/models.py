"""
Models for tone detection, callback preferences and call records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.agents.orchestrator.models import SubtaskResult


class Tone(str, Enum):
    """Discrete emotional tone of user text."""
    HAPPY = "happy"
    NEUTRAL = "neutral"
    STRESSED = "stressed"
    ANGRY = "angry"
    SAD = "sad"


class ToneDetection(BaseModel):
    """Result of classifying one piece of text."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tone: Tone
    confidence: float = Field(ge=0.0, le=1.0)
    emoji_hint: bool = Field(default=False, alias="emojiHint")


class VoiceSettings(BaseModel):
    """Acoustic parameters passed to the voice-synthesis provider."""
    stability: float
    similarity_boost: float
    style: float
    use_speaker_boost: bool = True


class QuietHours(BaseModel):
    """Local time window during which callbacks are suppressed."""
    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"
    timezone_offset_minutes: int = Field(default=0, ge=-840, le=840)


class CallbackPreferences(BaseModel):
    """Per-user callback preferences, owned by the user profile."""
    phone_number: Optional[str] = None
    display_name: Optional[str] = None
    locale: str = "en"
    call_me_when_finished: bool = False
    quiet_hours: QuietHours = QuietHours()


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CallRecord(BaseModel):
    """One inbound or outbound call, as stored."""
    id: Optional[str] = None
    user_id: str
    direction: CallDirection
    channel: str
    status: str
    transcript: Optional[str] = None
    summary: Optional[str] = None
    related_task_id: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    meta: dict[str, Any] = {}


class SynthesizedAudio(BaseModel):
    """Audio produced by the voice-synthesis provider."""
    audio: bytes
    mime_type: str = "audio/mpeg"
    file_name: str = "agent-g-callback.mp3"
    provider: str = "elevenlabs"


class ProviderCall(BaseModel):
    """What the telephony provider reports after starting a call."""
    provider_call_id: str
    status: str
    transcript: Optional[str] = None
    meta: dict[str, Any] = {}


class CallbackRequest(BaseModel):
    """Everything needed to decide on and place a task-completion callback."""
    user_id: str
    task_id: str
    task_goal: str
    summary: str
    subtasks: list[SubtaskResult] = []
    dashboard_url: str
    force: bool = False


class CallbackOutcome(BaseModel):
    """Result of a callback attempt."""
    queued: bool
    reason: Optional[str] = None
    call_id: Optional[str] = None
    provider: Optional[str] = None
