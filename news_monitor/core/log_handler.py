"""
Logging setup for the news monitor.

All modules log through ``logging.getLogger(__name__)``; this module only
configures the root logger once, at process start.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are too chatty at INFO.
QUIET_LOGGERS = ("urllib3", "charset_normalizer")


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure console logging and, optionally, a UTF-8 log file.

    Args:
        level: Logging level name, e.g. ``"INFO"`` or ``"DEBUG"``.
        log_file: Optional path of a file that receives the same records.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
