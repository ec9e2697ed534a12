"""Pytest configuration and fixtures for live chat tests."""

import asyncio
from datetime import datetime
from pathlib import Path

import pytest
from omegaconf import OmegaConf

from src.livechat.chat.assistant_client import AssistantClient, AssistantSession
from src.livechat.chat.chat_session import ChatSession
from src.livechat.chat.errors import InitializationError
from src.livechat.models.support_chat import TextDelta
from src.livechat.utils.prompt_loader import PromptLoader

CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "config.yaml"


class FakeAssistantClient(AssistantClient):
    """Scripted assistant.

    Each script is a list of stream items: StreamEvents are yielded,
    exceptions are raised, asyncio.Events are awaited before continuing.
    """

    def __init__(self, scripts=None, fail_create=False):
        self.scripts = list(scripts or [])
        self.fail_create = fail_create
        self.create_calls = []
        self.stream_calls = []

    async def create_session(self, system_instruction, tool_declarations, seed_history):
        self.create_calls.append((system_instruction, tool_declarations, seed_history))
        if self.fail_create:
            raise InitializationError("assistant service unreachable")
        history = [{"role": "assistant", "content": text} for text in seed_history]
        return AssistantSession(system_instruction, tool_declarations, history)

    async def stream_reply(self, session, text=None, image=None):
        self.stream_calls.append((text, image))
        script = self.scripts.pop(0) if self.scripts else [TextDelta(text="OK")]
        for item in script:
            if isinstance(item, Exception):
                raise item
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            await asyncio.sleep(0)
            yield item


def clock_at(hour: int, minute: int = 30):
    return lambda: datetime(2026, 10, 18, hour, minute)


@pytest.fixture
def cfg():
    return OmegaConf.load(CONFIG_PATH)


@pytest.fixture
def prompts():
    return PromptLoader.load_prompts("support_chat")


@pytest.fixture
def texts(prompts):
    return prompts["messages"]


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def make_session(cfg, prompts, notifications):
    """Factory for a ChatSession wired to a scripted assistant."""
    created = []

    def _make(
        scripts=None,
        assistant=None,
        hour=12,
        clock=None,
        user_name="Alice",
        handoff_timeout=None,
    ):
        if handoff_timeout is not None:
            cfg.support_chat.handoff_timeout_seconds = handoff_timeout
        assistant = assistant or FakeAssistantClient(scripts)
        session = ChatSession(
            cfg,
            prompts,
            assistant,
            notify=notifications.append,
            user_name=user_name,
            clock=clock or clock_at(hour),
        )
        created.append(session)
        return session, assistant

    yield _make
    for session in created:
        session.close()


@pytest.fixture
def fake_assistant_cls():
    return FakeAssistantClient
