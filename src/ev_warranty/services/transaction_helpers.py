# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Transaction helper patterns for safe claim store operations.

This module provides the one way lifecycle commands touch the store:
stage everything inside a unit of work and commit only on success.
"""

from collections.abc import Callable
from typing import TypeVar

from beartype import beartype

from ..core.errors import ConcurrencyConflictError, EngineError
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Result
from ..core.unit_of_work import InMemoryClaimStore, UnitOfWork

logger = get_logger(__name__)

T = TypeVar("T")


@beartype
def run_in_transaction(
    store: InMemoryClaimStore,
    operation: Callable[[UnitOfWork], Result[T, EngineError]],
) -> Result[T, EngineError]:
    """Execute operation within a unit of work with automatic rollback.

    ``Ok`` commits, ``Err`` rolls back. Lock timeouts and version conflicts
    become ``CONCURRENCY_CONFLICT`` errors the caller may retry. Any other
    exception, including ``StorageUnavailableError``, propagates after the
    rollback.

    Example:
        ```python
        def _operation(uow):
            claim = uow.lock_claim(claim_id)
            if claim is None:
                return Err(EngineError.not_found("Claim", claim_id))
            uow.stage_claim(updated)
            return Ok(updated)

        result = run_in_transaction(store, _operation)
        ```
    """
    try:
        with store.unit_of_work() as uow:
            result = operation(uow)
            if isinstance(result, Err):
                return result
            uow.commit()
            return result
    except ConcurrencyConflictError as e:
        logger.info("Concurrency conflict, transaction rolled back: %s", e)
        return Err(EngineError.concurrency_conflict(str(e)))


@beartype
def with_retry_on_conflict(
    operation: Callable[[], Result[T, EngineError]],
    *,
    max_attempts: int = 3,
) -> Result[T, EngineError]:
    """Re-run a command while it loses lock races.

    Safe because every attempt re-reads and re-checks the locked claim.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    result: Result[T, EngineError] = operation()
    attempt = 1
    while (
        attempt < max_attempts
        and isinstance(result, Err)
        and result.error.kind.retryable
    ):
        attempt += 1
        logger.debug("Retrying after concurrency conflict (attempt %d)", attempt)
        result = operation()
    return result


__all__ = ["run_in_transaction", "with_retry_on_conflict"]
