"""
Persistence for tasks, callback preferences, calls and chat channels.
An in-memory store for development and tests, and a Redis store with typed
key patterns for deployments.
"""

import base64
import json
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import redis.asyncio as redis
import structlog
from pydantic import BaseModel, Field

from app.agents.orchestrator.models import AggregatedResult, TaskPlan
from app.channels.models import ChannelLink, InboundMessage
from app.core.config import settings
from app.core.errors import StoreError
from app.voice.models import CallbackPreferences, CallRecord, SynthesizedAudio

logger = structlog.get_logger(__name__)

# Most recent calls kept per user.
CALL_HISTORY_LIMIT = 50
INBOUND_HISTORY_LIMIT = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskRecord(BaseModel):
    """A goal run and its aggregated results, as stored."""
    id: str
    user_id: str
    goal: str
    status: str = "processing"
    plan: TaskPlan
    results: Optional[AggregatedResult] = None
    related_task_id: Optional[str] = None
    demo_mode: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class AgentStore(Protocol):
    """Durable store used by the orchestrator, callback dispatcher and channels."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def save_task(self, task: TaskRecord) -> TaskRecord: ...

    async def get_task(self, task_id: str) -> Optional[TaskRecord]: ...

    async def get_prefs(self, user_id: str) -> Optional[CallbackPreferences]: ...

    async def save_prefs(self, user_id: str, prefs: CallbackPreferences) -> CallbackPreferences: ...

    async def save_call(self, call: CallRecord) -> CallRecord: ...

    async def list_calls(self, user_id: str, limit: int = CALL_HISTORY_LIMIT) -> list[CallRecord]: ...

    async def save_inbound(self, message: InboundMessage) -> None: ...

    async def list_inbound(self, channel: str, chat_id: str) -> list[InboundMessage]: ...

    async def link_channel(self, link: ChannelLink) -> ChannelLink: ...

    async def get_channel_link(self, channel: str, chat_id: str) -> Optional[ChannelLink]: ...

    async def get_user_chat(self, user_id: str, channel: str) -> Optional[str]: ...

    async def create_link_code(self, user_id: str) -> str: ...

    async def consume_link_code(self, code: str) -> Optional[str]: ...

    async def save_audio(self, audio: SynthesizedAudio) -> str: ...

    async def get_audio(self, audio_id: str) -> Optional[SynthesizedAudio]: ...


def new_link_code() -> str:
    return secrets.token_hex(3).upper()


class InMemoryAgentStore:
    """AgentStore kept in process memory. Data is lost on restart."""

    def __init__(self):
        self.tasks: dict[str, TaskRecord] = {}
        self.prefs: dict[str, CallbackPreferences] = {}
        self.calls: dict[str, CallRecord] = {}
        self.inbound: dict[tuple[str, str], list[InboundMessage]] = {}
        self.links: dict[tuple[str, str], ChannelLink] = {}
        self.link_codes: dict[str, str] = {}
        self.audio: dict[str, SynthesizedAudio] = {}

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def save_task(self, task: TaskRecord) -> TaskRecord:
        self.tasks[task.id] = task
        return task

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self.tasks.get(task_id)

    async def get_prefs(self, user_id: str) -> Optional[CallbackPreferences]:
        return self.prefs.get(user_id)

    async def save_prefs(self, user_id: str, prefs: CallbackPreferences) -> CallbackPreferences:
        self.prefs[user_id] = prefs
        return prefs

    async def save_call(self, call: CallRecord) -> CallRecord:
        stored = call if call.id else call.model_copy(update={"id": str(uuid.uuid4())})
        self.calls[stored.id] = stored
        return stored

    async def list_calls(self, user_id: str, limit: int = CALL_HISTORY_LIMIT) -> list[CallRecord]:
        calls = [c for c in self.calls.values() if c.user_id == user_id]
        calls.sort(key=lambda c: c.started_at, reverse=True)
        return calls[:limit]

    async def save_inbound(self, message: InboundMessage) -> None:
        events = self.inbound.setdefault((message.channel, message.chat_id), [])
        events.append(message)
        del events[:-INBOUND_HISTORY_LIMIT]

    async def list_inbound(self, channel: str, chat_id: str) -> list[InboundMessage]:
        return list(self.inbound.get((channel, chat_id), []))

    async def link_channel(self, link: ChannelLink) -> ChannelLink:
        self.links[(link.channel, link.chat_id)] = link
        return link

    async def get_channel_link(self, channel: str, chat_id: str) -> Optional[ChannelLink]:
        return self.links.get((channel, chat_id))

    async def get_user_chat(self, user_id: str, channel: str) -> Optional[str]:
        for link in self.links.values():
            if link.user_id == user_id and link.channel == channel:
                return link.chat_id
        return None

    async def create_link_code(self, user_id: str) -> str:
        code = new_link_code()
        self.link_codes[code] = user_id
        return code

    async def consume_link_code(self, code: str) -> Optional[str]:
        return self.link_codes.pop(code.strip().upper(), None)

    async def save_audio(self, audio: SynthesizedAudio) -> str:
        audio_id = uuid.uuid4().hex
        self.audio[audio_id] = audio
        return audio_id

    async def get_audio(self, audio_id: str) -> Optional[SynthesizedAudio]:
        return self.audio.get(audio_id)


class RedisAgentStore:
    """
    AgentStore backed by Redis with JSON values.

    Key Patterns:
    - agent_task:{task_id} - Task record (TTL: agent_task_ttl)
    - agent_prefs:{user_id} - Callback preferences
    - agent_call:{call_id} - Call record (TTL: agent_task_ttl)
    - agent_calls:{user_id} - Sorted set of call ids by start time
    - agent_inbound:{channel}:{chat_id} - Capped list of inbound messages
    - agent_channel:{channel}:{chat_id} - Channel link
    - agent_chat:{user_id}:{channel} - Reverse lookup of a user's chat id
    - agent_link_code:{code} - Pending /connect code (TTL: link_code_ttl)
    - agent_audio:{audio_id} - Callback audio, base64 (TTL: callback_audio_ttl)
    """

    def __init__(self, url: Optional[str] = None):
        self.url = url or str(settings.redis_url)
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._client is None:
            self._client = redis.from_url(self.url, encoding="utf-8", decode_responses=True)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client, raising if not connected."""
        if self._client is None:
            raise StoreError("Redis not connected. Call connect() first.")
        return self._client

    async def _get_json(self, key: str) -> Optional[Any]:
        try:
            data = await self.client.get(key)
        except redis.RedisError as e:
            raise StoreError(f"read failed for {key}") from e
        return json.loads(data) if data else None

    async def _set_json(self, key: str, value: BaseModel, ttl: Optional[int] = None) -> None:
        serialized = value.model_dump_json()
        try:
            if ttl:
                await self.client.setex(key, ttl, serialized)
            else:
                await self.client.set(key, serialized)
        except redis.RedisError as e:
            raise StoreError(f"write failed for {key}") from e

    # Tasks
    async def save_task(self, task: TaskRecord) -> TaskRecord:
        await self._set_json(f"agent_task:{task.id}", task, settings.agent_task_ttl)
        return task

    async def get_task(self, task_id: str) -> Optional[TaskRecord]:
        data = await self._get_json(f"agent_task:{task_id}")
        return TaskRecord.model_validate(data) if data else None

    # Callback preferences
    async def get_prefs(self, user_id: str) -> Optional[CallbackPreferences]:
        data = await self._get_json(f"agent_prefs:{user_id}")
        return CallbackPreferences.model_validate(data) if data else None

    async def save_prefs(self, user_id: str, prefs: CallbackPreferences) -> CallbackPreferences:
        await self._set_json(f"agent_prefs:{user_id}", prefs)
        return prefs

    # Calls
    async def save_call(self, call: CallRecord) -> CallRecord:
        stored = call if call.id else call.model_copy(update={"id": str(uuid.uuid4())})
        await self._set_json(f"agent_call:{stored.id}", stored, settings.agent_task_ttl)
        index_key = f"agent_calls:{stored.user_id}"
        try:
            await self.client.zadd(index_key, {stored.id: stored.started_at.timestamp()})
            await self.client.zremrangebyrank(index_key, 0, -CALL_HISTORY_LIMIT - 1)
        except redis.RedisError as e:
            raise StoreError(f"write failed for {index_key}") from e
        return stored

    async def list_calls(self, user_id: str, limit: int = CALL_HISTORY_LIMIT) -> list[CallRecord]:
        try:
            call_ids = await self.client.zrevrange(f"agent_calls:{user_id}", 0, limit - 1)
        except redis.RedisError as e:
            raise StoreError(f"read failed for agent_calls:{user_id}") from e

        calls = []
        for call_id in call_ids:
            data = await self._get_json(f"agent_call:{call_id}")
            if data:
                calls.append(CallRecord.model_validate(data))
        return calls

    # Inbound chat events
    async def save_inbound(self, message: InboundMessage) -> None:
        key = f"agent_inbound:{message.channel}:{message.chat_id}"
        try:
            await self.client.rpush(key, message.model_dump_json(by_alias=True))
            await self.client.ltrim(key, -INBOUND_HISTORY_LIMIT, -1)
        except redis.RedisError as e:
            raise StoreError(f"write failed for {key}") from e

    async def list_inbound(self, channel: str, chat_id: str) -> list[InboundMessage]:
        key = f"agent_inbound:{channel}:{chat_id}"
        try:
            items = await self.client.lrange(key, 0, -1)
        except redis.RedisError as e:
            raise StoreError(f"read failed for {key}") from e
        return [InboundMessage.model_validate_json(item) for item in items]

    # Channel links
    async def link_channel(self, link: ChannelLink) -> ChannelLink:
        await self._set_json(f"agent_channel:{link.channel}:{link.chat_id}", link)
        try:
            await self.client.set(f"agent_chat:{link.user_id}:{link.channel}", link.chat_id)
        except redis.RedisError as e:
            raise StoreError("write failed for channel link") from e
        return link

    async def get_channel_link(self, channel: str, chat_id: str) -> Optional[ChannelLink]:
        data = await self._get_json(f"agent_channel:{channel}:{chat_id}")
        return ChannelLink.model_validate(data) if data else None

    async def get_user_chat(self, user_id: str, channel: str) -> Optional[str]:
        try:
            return await self.client.get(f"agent_chat:{user_id}:{channel}")
        except redis.RedisError as e:
            raise StoreError("read failed for user chat") from e

    async def create_link_code(self, user_id: str) -> str:
        code = new_link_code()
        try:
            await self.client.setex(f"agent_link_code:{code}", settings.link_code_ttl, user_id)
        except redis.RedisError as e:
            raise StoreError("write failed for link code") from e
        return code

    async def consume_link_code(self, code: str) -> Optional[str]:
        key = f"agent_link_code:{code.strip().upper()}"
        try:
            return await self.client.getdel(key)
        except redis.RedisError as e:
            raise StoreError("read failed for link code") from e

    # Callback audio
    async def save_audio(self, audio: SynthesizedAudio) -> str:
        audio_id = uuid.uuid4().hex
        # decode_responses=True, so the bytes travel as base64 text
        payload = json.dumps({
            "audio": base64.b64encode(audio.audio).decode("ascii"),
            "mime_type": audio.mime_type,
            "file_name": audio.file_name,
            "provider": audio.provider,
        })
        try:
            await self.client.setex(f"agent_audio:{audio_id}", settings.callback_audio_ttl, payload)
        except redis.RedisError as e:
            raise StoreError("write failed for callback audio") from e
        return audio_id

    async def get_audio(self, audio_id: str) -> Optional[SynthesizedAudio]:
        data = await self._get_json(f"agent_audio:{audio_id}")
        if not data:
            return None
        data["audio"] = base64.b64decode(data["audio"])
        return SynthesizedAudio.model_validate(data)


_store: Optional[AgentStore] = None


def get_store() -> AgentStore:
    """Process-wide store selected by the store_backend setting."""
    global _store
    if _store is None:
        _store = RedisAgentStore() if settings.store_backend == "redis" else InMemoryAgentStore()
        logger.info("Agent store initialized", backend=settings.store_backend)
    return _store
