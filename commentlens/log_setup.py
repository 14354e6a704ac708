"""Logging configuration for Comment Lens."""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from commentlens.config import LoggingConfig

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: LoggingConfig | None = None, verbose: bool = False) -> None:
    """Install handlers on the root logger.

    Args:
        config: Logging settings. Defaults are used when None.
        verbose: Force DEBUG level regardless of config.
    """
    config = config or LoggingConfig()
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)

    if config.rich:
        console_handler: logging.Handler = RichHandler(
            console=Console(stderr=True), rich_tracebacks=True, show_path=False, markup=False
        )
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(console_handler)

    if config.file:
        log_path = Path(config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(file_handler)

    # Keep HTTP client chatter out of the analysis log
    for noisy in ("httpx", "openai", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
