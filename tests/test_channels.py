"""
Telegram normalisation and inbound chat handling tests.
"""

import pytest
from telegram.error import NetworkError

from app.agents.orchestrator.service import AgentService
from app.channels.inbound import (
    CONNECT_FIRST,
    CONNECTED,
    INVALID_CODE,
    VOICE_NOT_UNDERSTOOD,
    VOICE_UNAVAILABLE,
    InboundHandler,
)
from app.channels.models import ChannelLink, InboundMessage
from app.channels.telegram import TelegramClient, normalize_update, notify_task_completion
from app.core.errors import ChannelError
from app.services.store import InMemoryAgentStore
from app.voice.models import CallDirection, SynthesizedAudio
from tests.fakes import ORIGIN, FakeRemoteCaller, FakeSynthesizer, FakeTelegramClient, FakeTranscriber


def _update(text: str, chat_id: int = 777) -> dict:
    return {
        "update_id": 1,
        "message": {
            "message_id": 42,
            "date": 1714550400,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": 99, "username": "nino"},
            "text": text,
        },
    }


def _message(text: str) -> InboundMessage:
    return normalize_update(_update(text))


@pytest.fixture
def handler(store: InMemoryAgentStore, remote: FakeRemoteCaller, telegram: FakeTelegramClient) -> InboundHandler:
    service = AgentService(store=store, caller=remote, origin=ORIGIN, internal_secret="")
    return InboundHandler(store=store, service=service, telegram=telegram)


def test_normalize_update():
    message = normalize_update(_update("hello"))

    assert message.model_dump(by_alias=True) == {
        "channel": "telegram",
        "chatId": "777",
        "userId": "99",
        "username": "nino",
        "text": "hello",
        "messageId": "42",
        "date": 1714550400,
        "voice": None,
    }


def test_normalize_update_edge_cases():
    assert normalize_update({"update_id": 5, "callback_query": {}}) is None

    with pytest.raises(ValueError):
        normalize_update(["not", "an", "object"])
    with pytest.raises(ValueError):
        normalize_update({"message": {"text": "no chat"}})

    edited = normalize_update({"edited_message": {"chat": {"id": 1}, "caption": "photo caption"}})
    assert edited.text == "photo caption"
    assert edited.user_id is None


@pytest.mark.asyncio
async def test_unlinked_chat_is_asked_to_connect(handler, store, telegram):
    reply = await handler.handle(_message("Make instagram posts"))

    assert reply.messages == [CONNECT_FIRST]
    assert telegram.sent == [("777", CONNECT_FIRST)]
    assert len(await store.list_inbound("telegram", "777")) == 1


@pytest.mark.asyncio
async def test_connect_links_chat(handler, store):
    code = await store.create_link_code("user-1")

    reply = await handler.handle(_message(f"/connect {code.lower()}"))

    assert reply.messages == [CONNECTED]
    link = await store.get_channel_link("telegram", "777")
    assert link.user_id == "user-1"
    assert await store.get_user_chat("user-1", "telegram") == "777"

    # Codes are single-use.
    again = await handler.handle(_message(f"/connect {code}"))
    assert again.messages == [INVALID_CODE]


@pytest.mark.asyncio
async def test_linked_chat_runs_goal_and_replies_with_links(handler, store, remote, telegram):
    await store.link_channel(ChannelLink(channel="telegram", chat_id="777", user_id="user-1", locale="ka"))

    reply = await handler.handle(_message("Write instagram posts for my cafe"))

    assert reply.task_id is not None
    assert reply.messages[0] == "Done. 1/1 steps completed (completed) for: Write instagram posts for my cafe"
    assert f"{ORIGIN}/ka/services/agent-g/dashboard?task={reply.task_id}" in reply.messages[1]
    assert [chat for chat, _ in telegram.sent] == ["777"] * len(reply.messages)

    task = await store.get_task(reply.task_id)
    assert task.user_id == "user-1"
    assert task.status == "completed"
    assert "POST /api/chat" in remote.paths()


@pytest.mark.asyncio
async def test_unknown_commands_are_ignored(handler, telegram):
    reply = await handler.handle(_message("/start"))

    assert reply.messages == []
    assert telegram.sent == []


@pytest.mark.asyncio
async def test_notify_task_completion(store, telegram):
    assert not await notify_task_completion(store, telegram, "user-1", "t1", "summary", ORIGIN)

    await store.link_channel(ChannelLink(channel="telegram", chat_id="555", user_id="user-1"))
    assert await notify_task_completion(store, telegram, "user-1", "t1", "All done\nmore", ORIGIN)

    [(chat_id, text)] = telegram.sent
    assert chat_id == "555"
    assert "Done. All done" in text


class FakeBot:
    """Stands in for telegram.Bot; records calls and can fail every request."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests: list[tuple[str, dict]] = []

    def _record(self, method: str, **kwargs):
        self.requests.append((method, kwargs))
        if self.fail:
            raise NetworkError("telegram down")

    async def send_message(self, **kwargs):
        self._record("send_message", **kwargs)

    async def send_voice(self, **kwargs):
        self._record("send_voice", **kwargs)

    async def get_file(self, file_id):
        self._record("get_file", file_id=file_id)
        return FakeFile(file_id)


class FakeFile:
    def __init__(self, file_id: str):
        self.file_path = f"https://api.telegram.org/file/botabc/voice/{file_id}.oga"

    async def download_as_bytearray(self):
        return bytearray(b"OggS-voice")


@pytest.mark.asyncio
async def test_telegram_client_send_message():
    bot = FakeBot()
    client = TelegramClient(token="abc", bot=bot)

    assert await client.send_message("777", "x" * 5000)

    [(method, kwargs)] = bot.requests
    assert method == "send_message"
    assert kwargs["chat_id"] == "777"
    assert len(kwargs["text"]) == 4096
    assert kwargs["link_preview_options"].is_disabled is True


@pytest.mark.asyncio
async def test_telegram_client_failures_are_reported_not_raised():
    client = TelegramClient(token="abc", bot=FakeBot(fail=True))

    assert not await client.send_message("777", "hi")
    assert not await client.send_voice("777", SynthesizedAudio(audio=b"ID3"))
    with pytest.raises(ChannelError):
        await client.download_file("voice-1")


@pytest.mark.asyncio
async def test_telegram_client_sends_and_downloads_voice():
    bot = FakeBot()
    client = TelegramClient(token="abc", bot=bot)

    assert await client.send_voice("777", SynthesizedAudio(audio=b"ID3-fake", file_name="reply.mp3"), caption="Done")
    data, url = await client.download_file("voice-1")

    (_, voice_kwargs), (_, file_kwargs) = bot.requests
    assert voice_kwargs["voice"].filename == "reply.mp3"
    assert voice_kwargs["caption"] == "Done"
    assert file_kwargs == {"file_id": "voice-1"}
    assert data == b"OggS-voice"
    assert url.endswith("/voice/voice-1.oga")


@pytest.mark.asyncio
async def test_telegram_client_without_token_drops_message():
    client = TelegramClient(token="")

    assert not await client.send_message("777", "hi")
    assert not await client.send_voice("777", SynthesizedAudio(audio=b"ID3"))
    with pytest.raises(ChannelError):
        await client.download_file("voice-1")


def _voice_update(chat_id: int = 777) -> dict:
    update = _update("", chat_id)
    del update["message"]["text"]
    update["message"]["voice"] = {"file_id": "voice-1", "duration": 4, "mime_type": "audio/ogg"}
    return update


def test_normalize_voice_update():
    message = normalize_update(_voice_update())

    assert message.text == ""
    assert message.voice.file_id == "voice-1"
    assert message.voice.duration == 4
    assert message.voice.mime_type == "audio/ogg"

    no_file = _voice_update()
    no_file["message"]["voice"] = {"duration": 4}
    assert normalize_update(no_file).voice is None


def _voice_handler(store, remote, telegram, transcriber, synthesizer=None, voice_enabled=True) -> InboundHandler:
    service = AgentService(store=store, caller=remote, origin=ORIGIN, internal_secret="")
    return InboundHandler(
        store=store,
        service=service,
        telegram=telegram,
        transcriber=transcriber,
        synthesizer=synthesizer,
        voice_enabled=voice_enabled,
    )


@pytest.mark.asyncio
async def test_voice_note_runs_goal_records_call_and_replies_by_voice(store, remote, telegram):
    await store.link_channel(ChannelLink(channel="telegram", chat_id="777", user_id="user-1"))
    telegram.files["voice-1"] = b"OggS-voice"
    transcriber = FakeTranscriber("Write instagram posts for my cafe")
    synthesizer = FakeSynthesizer()
    handler = _voice_handler(store, remote, telegram, transcriber, synthesizer)

    reply = await handler.handle(normalize_update(_voice_update()))

    assert transcriber.requests == [b"OggS-voice"]
    assert reply.task_id is not None
    assert reply.voice_sent is True

    [call] = await store.list_calls("user-1")
    assert call.id == reply.call_id
    assert call.direction == CallDirection.INBOUND
    assert call.channel == "telegram"
    assert call.status == "ended"
    assert call.transcript == "Write instagram posts for my cafe"
    assert call.related_task_id == reply.task_id
    assert call.meta["source"] == "telegram-voice"
    assert call.meta["voice_url"] == "https://files.telegram.test/voice/voice-1.oga"
    assert call.meta["assistant_mode"] == "platform"

    # Spoken reply is the summary line, shaped by the transcript's tone.
    [(spoken, tone)] = synthesizer.requests
    assert spoken == "1/1 steps completed (completed) for: Write instagram posts for my cafe"
    assert tone.value == call.meta["tone"]
    [(chat_id, audio)] = telegram.voices
    assert chat_id == "777"
    assert audio.audio == b"ID3-fake"

    # The text replies with links still go out.
    assert [chat for chat, _ in telegram.sent] == ["777"] * len(reply.messages)


@pytest.mark.asyncio
async def test_voice_note_from_unlinked_chat(store, remote, telegram):
    handler = _voice_handler(store, remote, telegram, FakeTranscriber("hello"))

    reply = await handler.handle(normalize_update(_voice_update()))

    assert reply.messages == [CONNECT_FIRST]
    assert telegram.voices == []


@pytest.mark.asyncio
async def test_voice_note_when_voice_is_disabled(store, remote, telegram):
    await store.link_channel(ChannelLink(channel="telegram", chat_id="777", user_id="user-1"))
    transcriber = FakeTranscriber("Write instagram posts")
    handler = _voice_handler(store, remote, telegram, transcriber, voice_enabled=False)

    reply = await handler.handle(normalize_update(_voice_update()))

    assert reply.messages == [VOICE_UNAVAILABLE]
    assert transcriber.requests == []
    assert remote.calls == []


@pytest.mark.asyncio
async def test_untranscribable_voice_note_runs_nothing(store, remote, telegram):
    await store.link_channel(ChannelLink(channel="telegram", chat_id="777", user_id="user-1"))
    telegram.files["voice-1"] = b"OggS-voice"
    handler = _voice_handler(store, remote, telegram, FakeTranscriber(fail=True))

    reply = await handler.handle(normalize_update(_voice_update()))

    assert reply.messages == [VOICE_NOT_UNDERSTOOD]
    assert reply.task_id is None
    assert await store.list_calls("user-1") == []


@pytest.mark.asyncio
async def test_voice_reply_falls_back_to_text_when_synthesis_fails(store, remote, telegram):
    await store.link_channel(ChannelLink(channel="telegram", chat_id="777", user_id="user-1"))
    telegram.files["voice-1"] = b"OggS-voice"
    handler = _voice_handler(
        store, remote, telegram, FakeTranscriber("Write instagram posts"), FakeSynthesizer(fail=True)
    )

    reply = await handler.handle(normalize_update(_voice_update()))

    assert reply.task_id is not None
    assert reply.voice_sent is False
    assert telegram.voices == []
    assert len(telegram.sent) == len(reply.messages)
    assert len(await store.list_calls("user-1")) == 1
