#!/usr/bin/env python3
"""
Logging configuration shared by the command line and the Inkscape extension.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, TextIO

MODULE_PREFIX = "embroidery_"


class _ModuleFilter(logging.Filter):
    """Only pass records emitted by the embroidery_* modules."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.name.startswith(MODULE_PREFIX) or record.name == "__main__"


def setup_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the root logger for the embroidery modules.

    The modules live side by side in the extension directory, so their
    loggers share no package parent; handlers go on the root logger with a
    filter instead. Inkscape reads the exported file from stdout, so the
    extension passes ``sys.stderr`` as ``stream``.
    """
    root = logging.getLogger()
    root.setLevel(level)

    # Avoid duplicate output when called more than once.
    if root.hasHandlers():
        root.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_ModuleFilter())
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_ModuleFilter())
        root.addHandler(file_handler)

    logger = logging.getLogger("embroidery_logging")
    logger.debug("Logging initialized.")
    return logger
