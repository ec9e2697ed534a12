import logging
from typing import List, Optional

from fastapi import Request, HTTPException, WebSocket
from hydra import initialize, compose
from omegaconf import DictConfig

from src.livechat.chat.service_container import ServiceContainer

logger = logging.getLogger(__name__)


def get_config(overrides: Optional[List[str]] = None) -> DictConfig:
    """Compose config/config.yaml, e.g. overrides=["api.port=9000"]."""
    with initialize(version_base=None, config_path="./../../../config"):
        cfg = compose(config_name="config.yaml", overrides=overrides or [])
    logger.debug(f"Config composed with overrides {overrides or []}")
    return cfg


def get_service_container(request: Request) -> ServiceContainer:
    """Container for the staff HTTP routes, 503 until startup finished."""
    if not getattr(request.app.state, "startup_complete", False):
        raise HTTPException(
            status_code=503,
            detail="Live chat is starting up. Please try again in a moment."
        )
    if not hasattr(request.app.state, "service_container"):
        raise HTTPException(
            status_code=500,
            detail="Live chat services not available"
        )
    return request.app.state.service_container


async def get_websocket_service_container(
    websocket: WebSocket
) -> Optional[ServiceContainer]:
    """Container for widget and staff sockets, closes the socket if absent."""
    container = getattr(websocket.app.state, "service_container", None)
    if container is None:
        logger.warning("Live chat services not ready, refusing websocket")
        await websocket.close(code=1013)  # 1013 = Try Again Later
    return container
