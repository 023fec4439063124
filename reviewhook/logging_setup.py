"""Process-wide logging configuration."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging through rich for server, worker and CLI processes."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
        ],
        force=True,
    )
    # httpx logs every request at INFO, including URLs with query tokens.
    logging.getLogger("httpx").setLevel(logging.WARNING)
