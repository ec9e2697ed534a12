from fastapi import WebSocket
import logging
from typing import Dict
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class StaffConnectionManager:
    """Staff console websockets that receive support requests.

    Structure: {client_id: websocket}
    """

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, client_id: str):
        await websocket.accept()
        self.active_connections[client_id] = websocket
        logger.info(f"Staff console {client_id} connected")

    async def disconnect(self, client_id: str):
        if self.active_connections.pop(client_id, None) is not None:
            logger.info(f"Staff console {client_id} disconnected")

    async def broadcast_to_staff(self, message: dict) -> int:
        """Send to every connected console, returns how many got it."""
        delivered = 0
        closed_connections = []
        for client_id, websocket in list(self.active_connections.items()):
            try:
                if websocket.client_state == WebSocketState.CONNECTED:
                    await websocket.send_json(message)
                    delivered += 1
                else:
                    closed_connections.append(client_id)
            except Exception as e:
                logger.error(f"Error broadcasting to staff {client_id}: {e}")
                closed_connections.append(client_id)
        for client_id in closed_connections:
            self.active_connections.pop(client_id, None)
        return delivered
