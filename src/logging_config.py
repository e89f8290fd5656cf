"""Shared logging configuration for the KB pipeline CLIs.

Call ``configure_logging()`` once at any CLI entry point. Library modules only
create ``logging.getLogger(__name__)`` loggers and never add handlers.
"""

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DIR = "logs"
LOG_FILE = "pipeline.log"

# Chatty third-party loggers kept at WARNING unless running verbose
_NOISY_LOGGERS = ("urllib3", "requests")


def configure_logging(level: int = logging.INFO, verbose: bool = False) -> None:
    """Configure the root logger with a console and a ``logs/pipeline.log`` handler.

    Idempotent: if the root logger already has handlers only the level changes.

    Args:
        level: Base log level
        verbose: Force DEBUG, including the HTTP client loggers
    """
    root = logging.getLogger()
    if verbose:
        level = logging.DEBUG

    if not root.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

        try:
            os.makedirs(LOG_DIR, exist_ok=True)
            fh = logging.FileHandler(os.path.join(LOG_DIR, LOG_FILE), mode="a", encoding="utf-8")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            # Read-only checkout: console logging only
            pass

    root.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
