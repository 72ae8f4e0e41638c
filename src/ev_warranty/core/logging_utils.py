# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Central logging utilities for the claim lifecycle engine.

Key Features
------------
1. configure_logging(): one-time handler setup plus the package log level.
2. get_logger(name): typed helper that always returns a configured logger.
"""

from __future__ import annotations

import logging
from typing import Final

from beartype import beartype

__all__: Final = [
    "configure_logging",
    "get_logger",
]

_DEFAULT_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_ROOT_LOGGER_NAME: Final = "ev_warranty"
_is_configured: bool = False


@beartype
def configure_logging(
    *, level: int | str | None = None, fmt: str = _DEFAULT_LOG_FORMAT
) -> None:
    """Configure the root handler once and set the package log level.

    Calling this function multiple times is safe: handlers are installed
    only on the first invocation, while an explicit ``level`` is applied to
    the ``ev_warranty`` logger every time.
    """
    global _is_configured
    if not _is_configured:
        logging.basicConfig(level=logging.INFO, format=fmt)
        _is_configured = True

    if level is not None:
        logging.getLogger(_ROOT_LOGGER_NAME).setLevel(level)


@beartype
def get_logger(name: str | None = None, *, level: int | None = None) -> logging.Logger:
    """Return a module-scoped logger that is guaranteed to be configured."""
    if not _is_configured:
        configure_logging()
    logger = logging.getLogger(name or _ROOT_LOGGER_NAME)
    if level is not None:
        logger.setLevel(level)
    return logger
