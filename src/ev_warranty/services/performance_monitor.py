# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Performance monitoring decorator for lifecycle commands."""

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from beartype import beartype

from ..core.config import Settings, get_settings
from ..core.logging_utils import get_logger

P = ParamSpec("P")
T = TypeVar("T")

logger = get_logger(__name__)


def _settings_for(args: tuple[object, ...]) -> Settings:
    """Settings of the object a method was called on, else the global ones."""
    owner_settings = getattr(args[0], "settings", None) if args else None
    if isinstance(owner_settings, Settings):
        return owner_settings
    return get_settings()


@beartype
def performance_monitor(
    operation_name: str,
    max_duration_ms: int | None = None,
    log_slow_operations: bool = True,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Time a command and warn when it runs slower than the threshold.

    Args:
        operation_name: Name of the operation for monitoring
        max_duration_ms: Alert threshold in milliseconds, defaulting to
            ``slow_command_threshold_ms`` of the decorated object's
            ``settings``, or of the global settings when it has none
        log_slow_operations: Whether to log slow operations
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            threshold = (
                max_duration_ms or _settings_for(args).slow_command_threshold_ms
            )
            start_time = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000
                logger.error(
                    "%s failed after %.2fms: %s", operation_name, duration_ms, e
                )
                raise

            duration_ms = (time.perf_counter() - start_time) * 1000
            if log_slow_operations and duration_ms > threshold:
                logger.warning(
                    "PERFORMANCE WARNING: %s took %.2fms (threshold: %dms)",
                    operation_name,
                    duration_ms,
                    threshold,
                )
            return result

        return wrapper

    return decorator
