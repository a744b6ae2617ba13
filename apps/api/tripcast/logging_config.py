import logging
import os

from rich.logging import RichHandler

LOG_LEVEL = os.environ.get("TRIPCAST_LOG_LEVEL", "INFO")

def configure(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_time=False, show_path=False)],
    )
    # per-request client logs are too chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
