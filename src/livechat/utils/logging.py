"""Logging setup shared by the API server and the terminal tester."""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from src.livechat.utils.settings import SETTINGS

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILENAME = "livechat.log"


def setup_logging(level: int = logging.INFO, log_dir: str = None) -> None:
    """Configure root logger with console and rotating file handlers.

    Calling it more than once is harmless, handlers are only added once.
    """
    root = logging.getLogger()
    if getattr(root, "_livechat_configured", False):
        return

    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    log_path = Path(log_dir or SETTINGS.LOG_DIR)
    try:
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path / LOG_FILENAME,
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        root.warning(f"File logging disabled, cannot write to {log_path}: {e}")

    # openai/httpx are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    root._livechat_configured = True
