"""Boundary to the conversational assistant.

The chat session only relies on the AssistantClient contract: create a
session once, then stream replies as TextDelta / ToolInvoked events.
OpenAIAssistantClient is the production adapter on top of AsyncOpenAI.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from src.livechat.chat.errors import InitializationError, StreamTransportError
from src.livechat.models.attachment import ImageAttachment
from src.livechat.models.support_chat import (
    StreamEvent,
    TextDelta,
    ToolDeclaration,
    ToolInvoked,
)
from src.livechat.utils.settings import SETTINGS

logger = logging.getLogger(__name__)

# Result fed back to the model so later turns see the escalation as handled
TOOL_RESULT_CONTENT = "Escalated to a human administrator."


class AssistantSession:
    """Conversation state owned by exactly one chat session."""

    def __init__(
        self,
        system_instruction: str,
        tools: List[ToolDeclaration],
        history: List[Dict[str, Any]] = None
    ):
        self.system_instruction = system_instruction
        self.tools = tools
        self.history: List[Dict[str, Any]] = list(history or [])

    def messages_for(self, user_message: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": self.system_instruction},
            *self.history,
            user_message,
        ]


def build_user_message(
    text: Optional[str] = None,
    image: Optional[ImageAttachment] = None
) -> Dict[str, Any]:
    """User turn as OpenAI content parts, image first then text."""
    parts = []
    if image is not None:
        parts.append({"type": "image_url", "image_url": {"url": image.data_uri}})
    if text:
        parts.append({"type": "text", "text": text})
    return {"role": "user", "content": parts}


def _tool_call_turn(
    user_message: Dict[str, Any],
    call_id: str,
    name: str
) -> List[Dict[str, Any]]:
    return [
        user_message,
        {
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": call_id,
                "type": "function",
                "function": {"name": name, "arguments": json.dumps({})},
            }],
        },
        {
            "role": "tool",
            "tool_call_id": call_id,
            "content": TOOL_RESULT_CONTENT,
        },
    ]


class AssistantClient(ABC):

    @abstractmethod
    async def create_session(
        self,
        system_instruction: str,
        tool_declarations: List[ToolDeclaration],
        seed_history: List[str]
    ) -> AssistantSession:
        """Create a conversation, seed_history holds earlier assistant turns.

        Raises:
            InitializationError: if the service cannot be configured/reached
        """

    @abstractmethod
    def stream_reply(
        self,
        session: AssistantSession,
        text: Optional[str] = None,
        image: Optional[ImageAttachment] = None
    ) -> AsyncIterator[StreamEvent]:
        """Stream the reply to one user turn.

        Raises:
            StreamTransportError: when the stream fails mid-way
        """


class OpenAIAssistantClient(AssistantClient):
    """AssistantClient backed by OpenAI chat completions streaming."""

    def __init__(
        self,
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.2,
        client: Optional[AsyncOpenAI] = None
    ):
        self.model_name = model_name
        self.temperature = temperature
        self._client = client

    @classmethod
    def from_config(cls, cfg) -> "OpenAIAssistantClient":
        provider = cfg.get("provider", "openai")
        if provider != "openai":
            raise ValueError(f"Unsupported provider type: {provider}")
        return cls(
            model_name=cfg["model_name"],
            temperature=cfg.get("temperature", 0.2),
        )

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not SETTINGS.OPENAI_API_KEY:
                raise InitializationError("OPENAI_API_KEY is not configured")
            try:
                self._client = AsyncOpenAI(
                    api_key=SETTINGS.OPENAI_API_KEY,
                    base_url=SETTINGS.OPENAI_BASE_URL,
                )
            except openai.OpenAIError as e:
                raise InitializationError(
                    f"Could not create OpenAI client: {e}"
                ) from e
        return self._client

    async def create_session(
        self,
        system_instruction: str,
        tool_declarations: List[ToolDeclaration],
        seed_history: List[str]
    ) -> AssistantSession:
        self._get_client()
        history = [
            {"role": "assistant", "content": text} for text in seed_history
        ]
        logger.info(f"Assistant session created with model {self.model_name}")
        return AssistantSession(system_instruction, tool_declarations, history)

    async def stream_reply(
        self,
        session: AssistantSession,
        text: Optional[str] = None,
        image: Optional[ImageAttachment] = None
    ) -> AsyncIterator[StreamEvent]:
        client = self._get_client()
        user_message = build_user_message(text, image)
        reply_parts: List[str] = []
        try:
            stream = await client.chat.completions.create(
                model=self.model_name,
                messages=session.messages_for(user_message),
                tools=[tool.to_openai() for tool in session.tools],
                temperature=self.temperature,
                stream=True,
            )
            async with stream:
                async for chunk in stream:
                    delta = chunk.choices[0].delta if chunk.choices else None
                    if not delta:
                        continue
                    if delta.tool_calls:
                        call = delta.tool_calls[0]
                        name = call.function.name if call.function else None
                        if name:
                            # Commit before yielding, the consumer stops here
                            session.history.extend(
                                _tool_call_turn(user_message, call.id, name)
                            )
                            logger.info(f"Assistant invoked tool {name}")
                            yield ToolInvoked(name=name)
                            return
                        continue
                    if delta.content:
                        reply_parts.append(delta.content)
                        yield TextDelta(text=delta.content)
        except (openai.OpenAIError, httpx.HTTPError) as e:
            logger.error(f"Assistant stream failed: {e}")
            raise StreamTransportError(str(e)) from e

        session.history.extend([
            user_message,
            {"role": "assistant", "content": "".join(reply_parts)},
        ])
