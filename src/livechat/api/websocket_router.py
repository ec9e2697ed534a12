import asyncio
import logging
from contextlib import suppress
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from starlette.websockets import WebSocketState

from src.livechat.api.deps import get_websocket_service_container
from src.livechat.chat.chat_session import ChatSession
from src.livechat.chat.errors import SupportChatError
from src.livechat.chat.service_container import ServiceContainer
from src.livechat.models.support_chat import SupportMessage

logger = logging.getLogger(__name__)

router = APIRouter()


def message_frame(event: str, message: SupportMessage) -> dict:
    return {
        "type": f"message_{event}",
        "message": message.model_dump(mode="json"),
    }


class WidgetConnection:
    """Bridges one customer widget websocket to its own ChatSession.

    Transcript changes are queued by the log listener and written by a
    single sender task, so frames keep the order of log mutations.
    Assistant turns run as tasks: the receive loop stays free to accept
    input (logged only while streaming) and to notice a disconnect.
    """

    def __init__(self, websocket: WebSocket, session: ChatSession):
        self.websocket = websocket
        self.session = session
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.turn_task: Optional[asyncio.Task] = None
        self._sender: Optional[asyncio.Task] = None
        self._closing = False

    def start(self) -> None:
        self.session.log.subscribe(self._on_log_change)
        self._sender = asyncio.create_task(self._send_loop())

    def _on_log_change(self, event: str, message: SupportMessage) -> None:
        self.outbox.put_nowait(message_frame(event, message))

    async def _send_loop(self) -> None:
        while True:
            frame = await self.outbox.get()
            await self.websocket.send_json(frame)

    def send(self, frame: dict) -> None:
        if self._closing:
            return
        self.outbox.put_nowait(frame)

    async def handle_message(self, data: dict) -> None:
        image_uri = data.get("image")
        if image_uri:
            try:
                self.session.attach_image_uri(image_uri)
            except SupportChatError as e:
                logger.info(f"Attachment rejected: {e.message}")
                self.send({"type": "error", "message": e.message})
                return
        self.session.set_input(data.get("content", ""))

        # Input is logged now, only the assistant call is deferred
        turn = self.session.log_turn()
        if turn is None:
            return
        self.turn_task = asyncio.create_task(self._run_turn(*turn))

    async def _run_turn(self, text, image) -> None:
        self.send({"type": "typing", "active": True})
        try:
            await self.session.run_assistant_turn(text, image)
        except Exception as e:
            logger.error(f"Error processing chat turn: {e}", exc_info=True)
            self.send({"type": "error", "message": "Chat turn failed"})
        finally:
            self.send({
                "type": "typing",
                "active": False,
                "state": self.session.state.value,
            })

    async def close(self) -> None:
        self._closing = True
        self.session.log.unsubscribe(self._on_log_change)
        self.session.close()
        if self.turn_task is not None and not self.turn_task.done():
            self.turn_task.cancel()
            with suppress(asyncio.CancelledError):
                await self.turn_task
        if self._sender is not None:
            self._sender.cancel()


@router.websocket("/support/{customer_id}")
async def support_widget_endpoint(
    websocket: WebSocket,
    customer_id: str,
    user_name: Optional[str] = None,
    services: ServiceContainer = Depends(get_websocket_service_container)
):
    """Live support widget connection, one ChatSession per connection.

    Client frames:
        {"type": "open"}  widget shown, runs the off-hours check
        {"type": "message", "content": str, "image": data URI (optional)}
    Server frames:
        history, message_appended, message_updated, message_removed,
        typing, error
    """
    if services is None:
        return
    await websocket.accept()
    session = services.create_chat_session(customer_id, user_name)
    connection = WidgetConnection(websocket, session)
    try:
        await websocket.send_json({
            "type": "history",
            "session_id": session.session_id,
            "messages": [m.model_dump(mode="json") for m in session.log],
        })
        connection.start()

        while True:
            data = await websocket.receive_json()
            frame_type = data.get("type")
            if frame_type == "open":
                session.open()
            elif frame_type == "message":
                await connection.handle_message(data)
            else:
                connection.send({
                    "type": "error",
                    "message": f"Unknown frame type: {frame_type}",
                })

    except WebSocketDisconnect:
        logger.info(f"Support widget disconnected: {session.session_id}")
    except Exception as e:
        logger.error(f"Support widget error: {e}")
        if websocket.client_state != WebSocketState.DISCONNECTED:
            try:
                await websocket.close(code=1011)  # 1011 = Internal Error
            except Exception as close_error:
                logger.error(f"Error closing WebSocket: {close_error}")
    finally:
        await connection.close()
        services.close_session(session.session_id)


@router.websocket("/staff/{client_id}")
async def staff_console_endpoint(
    websocket: WebSocket,
    client_id: str,
    services: ServiceContainer = Depends(get_websocket_service_container)
):
    """Staff console connection.

    Receives support_request frames on handoff. Client frames:
        {"type": "message", "session_id": str, "content": str}
        {"type": "command", "action": "release", "session_id": str}
    """
    if services is None:
        return
    await services.staff_manager.connect(websocket, client_id)
    try:
        while True:
            data = await websocket.receive_json()
            session_id = data.get("session_id")
            session = services.get_session(session_id)
            if session is None:
                await websocket.send_json({
                    "type": "command_result",
                    "action": data.get("action", data.get("type")),
                    "success": False,
                    "message": f"Session {session_id} not found",
                })
                continue

            if data.get("type") == "message":
                posted = session.post_staff_message(data.get("content", ""))
                await websocket.send_json({
                    "type": "command_result",
                    "action": "message",
                    "success": posted is not None,
                    "message": posted.id if posted else "Nothing was posted",
                })
            elif data.get("type") == "command" and data.get("action") == "release":
                released = session.release_handoff()
                await websocket.send_json({
                    "type": "command_result",
                    "action": "release",
                    "success": released,
                    "message": (
                        "Released to assistant" if released
                        else "Session is not waiting for staff"
                    ),
                })
            else:
                await websocket.send_json({
                    "type": "command_result",
                    "action": data.get("action", data.get("type")),
                    "success": False,
                    "message": "Unknown command",
                })
    except WebSocketDisconnect:
        logger.info(f"Staff console disconnected: {client_id}")
    finally:
        await services.staff_manager.disconnect(client_id)
