import logging
import sys
import os
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None):
    """
    Configure logging with Rich for console output
    and standard formatting for file output.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    if os.environ.get("NO_RICH_LOGGING"):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers = [handler]
    else:
        handlers = [RichHandler(rich_tracebacks=True, markup=False)]

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )

    # Request logs from the REST client and the alert store are too chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

def get_logger(name: str):
    return logging.getLogger(f"socfeed.{name}")
