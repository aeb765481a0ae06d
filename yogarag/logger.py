"""
yogarag/logger.py - Logging setup
=================================

Library modules log through ``logging.getLogger(__name__)``; entry points
(the API and the build CLI) call ``configure_logging()`` once at startup.
"""

import logging
import sys

from yogarag.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Install a single stdout handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger.setLevel(level.upper())
    root_logger.addHandler(handler)

    # Reduce noise from verbose third-party libraries
    for noisy in ("httpx", "urllib3", "sentence_transformers", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
