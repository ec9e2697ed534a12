"""Tests for the live chat session state machine."""

import asyncio

import pytest

from src.livechat.chat.errors import AttachmentTooLarge, StreamTransportError
from src.livechat.models.attachment import ImageAttachment
from src.livechat.models.support_chat import (
    ChatState,
    SupportMessageType,
    SupportSender,
    TextDelta,
    ToolInvoked,
)

ESCALATE = ToolInvoked(name="deposit_escalation")
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


async def _wait_for(condition, timeout=1.0):
    async def _poll():
        while not condition():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_poll(), timeout)


def _contents(session):
    return [m.content for m in session.log]


def test_new_session_shows_welcome(make_session, texts):
    session, assistant = make_session()

    assert _contents(session) == [texts["welcome"]]
    assert session.state == ChatState.IDLE
    assert session.assistant_session is None
    assert assistant.create_calls == []


def test_open_off_hours_adds_notice_once(make_session, texts):
    session, _ = make_session(hour=23)

    assert session.open() is True
    assert session.open() is False
    session.open()

    assert _contents(session).count(texts["off_hours"]) == 1


def test_open_during_staffed_hours_adds_nothing(make_session):
    session, _ = make_session(hour=9)

    assert session.open() is False
    assert len(session.log) == 1


@pytest.mark.asyncio
async def test_deltas_concatenate_in_order(make_session, texts):
    session, assistant = make_session(scripts=[[
        TextDelta(text="Xin "),
        TextDelta(text="chào"),
        TextDelta(text="!"),
    ]])
    patches = []
    session.log.subscribe(
        lambda event, message: event == "updated" and patches.append(message.content)
    )

    await session.submit("  hello  ")

    messages = session.log.messages
    assert [m.content for m in messages] == [texts["welcome"], "hello", "Xin chào!"]
    assert messages[1].sender == SupportSender.USER
    assert messages[2].sender == SupportSender.AGENT
    assert patches == ["Xin ", "Xin chào", "Xin chào!"]
    assert assistant.stream_calls == [("hello", None)]
    assert session.state == ChatState.IDLE
    assert session.input_text == ""


@pytest.mark.asyncio
async def test_assistant_session_created_lazily_and_reused(make_session, texts, prompts):
    session, assistant = make_session()
    session.open()
    assert assistant.create_calls == []

    await session.submit("one")
    await session.submit("two")

    assert len(assistant.create_calls) == 1
    system_instruction, tools, seed_history = assistant.create_calls[0]
    assert system_instruction == prompts["sys_prompt"]
    assert [tool.name for tool in tools] == ["deposit_escalation"]
    assert seed_history == [texts["welcome"]]
    assert len(assistant.stream_calls) == 2


@pytest.mark.asyncio
async def test_empty_input_is_noop(make_session):
    session, assistant = make_session()

    await session.submit("   ")

    assert len(session.log) == 1
    assert assistant.stream_calls == []


@pytest.mark.asyncio
async def test_tool_call_supersedes_partial_reply(make_session, texts, notifications):
    session, _ = make_session(scripts=[[
        TextDelta(text="Let me "),
        TextDelta(text="check"),
        ESCALATE,
        TextDelta(text="never shown"),
    ]])

    await session.submit("my deposit failed")

    contents = _contents(session)
    assert contents == [texts["welcome"], "my deposit failed", texts["transfer"]]
    assert not any("Let me" in c for c in contents)
    assert session.handoff_active is True
    assert session.state == ChatState.HANDOFF_PENDING
    assert session.handoff_timer.active is True
    assert notifications == ["User Alice needs deposit support via Live Chat."]


@pytest.mark.asyncio
async def test_handoff_suppresses_assistant(make_session):
    session, assistant = make_session(scripts=[[ESCALATE]])
    await session.submit("top-up not received")

    await session.submit("hello? anyone?")
    await session.submit("still waiting")

    assert len(assistant.stream_calls) == 1
    assert _contents(session)[-2:] == ["hello? anyone?", "still waiting"]
    assert session.log.messages[-1].sender == SupportSender.USER


@pytest.mark.asyncio
async def test_handoff_without_user_skips_notification(make_session, notifications):
    session, _ = make_session(scripts=[[ESCALATE]], user_name=None)

    await session.submit("deposit problem")

    assert session.handoff_active is True
    assert notifications == []


@pytest.mark.asyncio
async def test_unknown_tool_is_ignored(make_session):
    session, _ = make_session(scripts=[[
        ToolInvoked(name="refund_order"),
        TextDelta(text="Sure."),
    ]])

    await session.submit("help")

    assert _contents(session)[-1] == "Sure."
    assert session.handoff_active is False


@pytest.mark.asyncio
async def test_handoff_timeout_resumes_assistant(make_session, texts):
    session, assistant = make_session(
        scripts=[[ESCALATE], [TextDelta(text="Back again")]],
        handoff_timeout=0.05,
    )
    await session.submit("deposit failed")

    await asyncio.sleep(0.2)

    assert _contents(session)[-1] == texts["handoff_timeout"]
    assert session.handoff_active is False
    assert session.state == ChatState.IDLE

    await session.submit("hi again")
    assert len(assistant.stream_calls) == 2
    assert _contents(session)[-1] == "Back again"


@pytest.mark.asyncio
async def test_initialization_error_shows_apology_and_retries_next_turn(
    make_session, fake_assistant_cls, texts
):
    assistant = fake_assistant_cls(fail_create=True)
    session, _ = make_session(assistant=assistant)

    await session.submit("hello")

    assert _contents(session) == [texts["welcome"], "hello", texts["init_error"]]
    assert session.assistant_session is None
    assert assistant.stream_calls == []
    assert session.state == ChatState.IDLE

    assistant.fail_create = False
    await session.submit("hello again")

    assert len(assistant.create_calls) == 2
    assert session.assistant_session is not None
    assert _contents(session)[-1] == "OK"


@pytest.mark.asyncio
async def test_stream_error_replaces_reserved_message(make_session, texts):
    session, _ = make_session(scripts=[[
        TextDelta(text="partial"),
        StreamTransportError("connection reset"),
    ]])

    await session.submit("hello")

    expected = texts["stream_error"].format(detail="connection reset")
    assert _contents(session) == [texts["welcome"], "hello", expected]
    assert session.handoff_active is False
    assert session.state == ChatState.IDLE


@pytest.mark.asyncio
async def test_unexpected_stream_failure_replaces_reserved_message(make_session, texts):
    session, _ = make_session(scripts=[[
        TextDelta(text="partial"),
        RuntimeError("socket dropped"),
    ]])

    await session.submit("hello")

    expected = texts["stream_error"].format(detail="socket dropped")
    assert _contents(session) == [texts["welcome"], "hello", expected]
    assert session.state == ChatState.IDLE


@pytest.mark.asyncio
async def test_log_turn_claims_turn_before_assistant_runs(make_session):
    session, assistant = make_session()

    session.set_input("first")
    turn = session.log_turn()
    session.set_input("second")
    assert session.log_turn() is None

    assert turn == ("first", None)
    assert _contents(session)[1:] == ["first", "second"]
    assert session.state == ChatState.STREAMING

    await session.run_assistant_turn(*turn)

    assert assistant.stream_calls == [("first", None)]
    assert _contents(session)[1:] == ["first", "second", "OK"]
    assert session.state == ChatState.IDLE


@pytest.mark.asyncio
async def test_image_and_text_logged_image_first(make_session):
    session, assistant = make_session()
    image = session.attach_image(PNG, "image/png")
    session.set_input("see screenshot")

    await session.send_message()

    user_messages = [m for m in session.log if m.sender == SupportSender.USER]
    assert [m.type for m in user_messages] == [
        SupportMessageType.IMAGE,
        SupportMessageType.TEXT,
    ]
    assert user_messages[0].content == image.data_uri
    assert assistant.stream_calls == [("see screenshot", image)]
    assert session.image_preview is None


@pytest.mark.asyncio
async def test_image_only_turn(make_session):
    session, assistant = make_session()
    session.attach_image(PNG, "image/png")

    await session.send_message()

    assert session.log.messages[1].type == SupportMessageType.IMAGE
    assert assistant.stream_calls[0][0] is None


@pytest.mark.asyncio
async def test_oversized_image_rejected_before_anything_is_sent(make_session, texts):
    session, assistant = make_session()
    too_big = ImageAttachment(
        data_uri="data:image/png;base64,AAAA",
        mime_type="image/png",
        size_bytes=5 * 1024 * 1024 + 1,
    )

    with pytest.raises(AttachmentTooLarge) as exc_info:
        await session.submit("look", image=too_big)

    assert exc_info.value.message == texts["attachment_too_large"]
    assert len(session.log) == 1
    assert assistant.stream_calls == []
    assert assistant.create_calls == []


def test_attach_oversized_image_keeps_buffer_empty(make_session):
    session, _ = make_session()

    with pytest.raises(AttachmentTooLarge):
        session.attach_image(b"\x00" * (5 * 1024 * 1024 + 1), "image/png")

    assert session.image_preview is None
    assert len(session.log) == 1


@pytest.mark.asyncio
async def test_close_drops_stale_stream_events(make_session, texts):
    gate = asyncio.Event()
    session, _ = make_session(scripts=[[
        TextDelta(text="a"),
        gate,
        TextDelta(text="b"),
        ESCALATE,
    ]])

    turn = asyncio.create_task(session.submit("hello"))
    await _wait_for(lambda: _contents(session)[-1] == "a")
    session.close()
    gate.set()
    await turn

    assert _contents(session) == [texts["welcome"], "hello", "a"]
    assert session.handoff_active is False
    assert session.state == ChatState.CLOSED


@pytest.mark.asyncio
async def test_close_cancels_handoff_timer(make_session, texts):
    session, _ = make_session(scripts=[[ESCALATE]], handoff_timeout=0.05)
    await session.submit("deposit failed")

    session.close()
    await asyncio.sleep(0.15)

    assert session.handoff_timer.active is False
    assert texts["handoff_timeout"] not in _contents(session)


@pytest.mark.asyncio
async def test_submit_after_close_is_ignored(make_session):
    session, assistant = make_session()
    session.close()

    await session.submit("anyone?")

    assert len(session.log) == 1
    assert assistant.stream_calls == []


@pytest.mark.asyncio
async def test_submit_while_streaming_is_logged_only(make_session):
    gate = asyncio.Event()
    session, assistant = make_session(scripts=[[gate, TextDelta(text="done")]])

    turn = asyncio.create_task(session.submit("first"))
    await _wait_for(lambda: session.state == ChatState.STREAMING)
    await session.submit("second")
    gate.set()
    await turn

    assert len(assistant.stream_calls) == 1
    # reply keeps the slot reserved before the second message
    assert _contents(session)[1:] == ["first", "done", "second"]


@pytest.mark.asyncio
async def test_staff_reply_restarts_fallback_timer(make_session, texts):
    session, assistant = make_session(scripts=[[ESCALATE]], handoff_timeout=0.1)
    await session.submit("deposit failed")
    await asyncio.sleep(0.06)

    posted = session.post_staff_message("Hi, I'm checking your deposit now.")
    await asyncio.sleep(0.06)

    assert posted.sender == SupportSender.AGENT
    assert texts["handoff_timeout"] not in _contents(session)
    assert session.handoff_active is True
    await session.submit("thanks")
    assert len(assistant.stream_calls) == 1

    await asyncio.sleep(0.25)

    assert _contents(session)[-1] == texts["handoff_timeout"]
    assert session.handoff_active is False


@pytest.mark.asyncio
async def test_staff_reply_outside_handoff_starts_no_timer(make_session):
    session, _ = make_session()

    session.post_staff_message("Anything else I can help with?")

    assert session.handoff_timer.active is False


@pytest.mark.asyncio
async def test_release_handoff_returns_to_assistant(make_session):
    session, assistant = make_session(scripts=[[ESCALATE]])
    await session.submit("deposit failed")

    assert session.release_handoff() is True
    assert session.release_handoff() is False
    assert session.handoff_timer.active is False

    await session.submit("another question")
    assert len(assistant.stream_calls) == 2


def test_session_stats(make_session):
    session, _ = make_session()

    stats = session.get_session_stats()

    assert stats["session_id"] == session.session_id
    assert stats["state"] == "idle"
    assert stats["message_count"] == 1
    assert stats["user_name"] == "Alice"
