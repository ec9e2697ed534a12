"""To test run: python -m src.livechat.api.main
Interact via SwaggerUi: http://localhost:8000/chat/docs
"""

import logging
import logfire
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from src.livechat.utils.logging import setup_logging
from src.livechat.api.deps import get_config
from src.livechat.api import staff_router, websocket_router
from src.livechat.chat.service_container import ServiceContainer

setup_logging()
logfire.configure(send_to_logfire='if-token-present')
logger = logging.getLogger(__name__)
cfg = get_config()
ORIGINS = ["*"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.
    Handles initialization and cleanup of service container.
    """
    app.state.startup_complete = False
    try:
        logger.info("Creating service container")
        service_container = ServiceContainer(cfg)
        await service_container.initialize()
        app.state.service_container = service_container
        app.state.startup_complete = True
        logger.info("Service container initialized and ready")
    except Exception as e:
        logger.error(f"Error during application initialization: {e}", exc_info=True)
        raise
    yield
    app.state.startup_complete = False
    await app.state.service_container.cleanup()
    logger.info("Service container cleaned up")

app = FastAPI(
    title="DigiMarket Live Support Chat",
    description="Live support chat with assistant replies and staff handoff.",
    version="1.0",
    docs_url="/chat/docs",
    openapi_url="/chat/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(staff_router.router, prefix="/staff", tags=["staff"])
app.include_router(websocket_router.router, prefix="/ws", tags=["websocket"])


@app.get("/")
@app.head("/")
async def root():
    """Root endpoint for the FastAPI server."""
    return {
        "message": "Welcome to the DigiMarket Live Support Chat API",
        "version": 1.0,
        "docs": "chat/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for the FastAPI server."""
    return {"status": "healthy"}


def main() -> None:
    """Main function to run the FastAPI server."""
    uvicorn.run(
        "src.livechat.api.main:app",
        host=cfg.api.host,
        port=cfg.api.port,
        reload=cfg.api.reload,
    )


if __name__ == "__main__":
    main()
