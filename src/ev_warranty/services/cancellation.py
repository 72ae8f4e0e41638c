# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Cancellation sub-flow layered over the main claim lifecycle.

``NONE -> CANCEL_REQUESTED -> (rejected: NONE | accepted: HANDOVER_FOR_CANCEL)``
and from ``HANDOVER_FOR_CANCEL`` the claim is either closed or reopened at
the exact status it had when cancellation was requested. The main status
does not move while a cancellation is in flight.
"""

from datetime import datetime

from attrs import frozen
from beartype import beartype

from ..core.errors import EngineError
from ..core.result_types import Err, Ok, Result
from ..models.claim import (
    CancellationOutcome,
    CancellationState,
    Claim,
    ClaimCancellation,
    ClaimStatus,
)
from ..models.user import Actor
from .notifications import ClaimEventType


@frozen
class CancellationStep:
    """Claim after one sub-flow step, with its audit note and event."""

    claim: Claim
    note: str
    event_type: ClaimEventType


def _expect_state(
    cancellation: ClaimCancellation, state: CancellationState, code: str
) -> EngineError | None:
    if cancellation.state == state:
        return None
    return EngineError.invalid_transition(
        code,
        f"Cancellation is {cancellation.state.value}, expected {state.value}",
    )


class CancellationSubflow:
    """Applies cancellation steps to a claim snapshot."""

    def __init__(self, max_requests: int) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self._max_requests = max_requests

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @beartype
    def request(
        self, claim: Claim, actor: Actor, reason: str | None, now: datetime
    ) -> Result[CancellationStep, EngineError]:
        """Open a cancellation request; the lifetime count is capped."""
        current = claim.cancellation_record
        if current.request_count >= self._max_requests:
            return Err(
                EngineError.limit_exceeded(
                    "CANCEL_LIMIT_EXCEEDED",
                    f"Claim {claim.claim_number} already had "
                    f"{current.request_count} cancellation requests "
                    f"(limit {self._max_requests})",
                )
            )
        if current.active:
            return Err(
                EngineError.invalid_transition(
                    "CANCELLATION_IN_PROGRESS",
                    f"Cancellation already {current.state.value}",
                )
            )

        cancellation = ClaimCancellation(
            state=CancellationState.CANCEL_REQUESTED,
            request_count=current.request_count + 1,
            previous_status=claim.status,
            requested_by=actor.user_id,
            requested_at=now,
            reason=reason,
            outcome=current.outcome,
        )
        return Ok(
            CancellationStep(
                claim=claim.model_copy(update={"cancellation": cancellation}),
                note=f"Cancellation requested ({cancellation.request_count}/"
                f"{self._max_requests})" + (f": {reason}" if reason else ""),
                event_type=ClaimEventType.CANCEL_REQUESTED,
            )
        )

    @beartype
    def accept(
        self, claim: Claim, actor: Actor, notes: str | None, now: datetime
    ) -> Result[CancellationStep, EngineError]:
        current = claim.cancellation_record
        error = _expect_state(
            current, CancellationState.CANCEL_REQUESTED, "NO_PENDING_CANCELLATION"
        )
        if error is not None:
            return Err(error)

        cancellation = current.model_copy(
            update={
                "state": CancellationState.HANDOVER_FOR_CANCEL,
                "handled_by": actor.user_id,
                "handled_at": now,
                "outcome": CancellationOutcome.ACCEPTED,
            }
        )
        return Ok(
            CancellationStep(
                claim=claim.model_copy(update={"cancellation": cancellation}),
                note=notes or "Cancellation accepted; awaiting vehicle handover",
                event_type=ClaimEventType.CANCEL_ACCEPTED,
            )
        )

    @beartype
    def reject(
        self, claim: Claim, actor: Actor, notes: str | None, now: datetime
    ) -> Result[CancellationStep, EngineError]:
        """Back to NONE; the request count is kept."""
        current = claim.cancellation_record
        error = _expect_state(
            current, CancellationState.CANCEL_REQUESTED, "NO_PENDING_CANCELLATION"
        )
        if error is not None:
            return Err(error)

        cancellation = current.model_copy(
            update={
                "state": CancellationState.NONE,
                "handled_by": actor.user_id,
                "handled_at": now,
                "outcome": CancellationOutcome.REJECTED,
            }
        )
        return Ok(
            CancellationStep(
                claim=claim.model_copy(update={"cancellation": cancellation}),
                note=notes or "Cancellation request rejected",
                event_type=ClaimEventType.CANCEL_REJECTED,
            )
        )

    @beartype
    def confirm_handover(
        self, claim: Claim, actor: Actor, notes: str | None, now: datetime
    ) -> Result[CancellationStep, EngineError]:
        """Vehicle returned to the customer; the claim closes."""
        current = claim.cancellation_record
        error = _expect_state(
            current, CancellationState.HANDOVER_FOR_CANCEL, "CANCELLATION_NOT_ACCEPTED"
        )
        if error is not None:
            return Err(error)

        cancellation = current.model_copy(
            update={
                "state": CancellationState.NONE,
                "handled_by": actor.user_id,
                "handled_at": now,
                "outcome": CancellationOutcome.CLOSED,
            }
        )
        return Ok(
            CancellationStep(
                claim=claim.model_copy(
                    update={"cancellation": cancellation, "status": ClaimStatus.CLOSED}
                ),
                note=notes or "Vehicle handed over; claim cancelled",
                event_type=ClaimEventType.CANCEL_CLOSED,
            )
        )

    @beartype
    def reopen(
        self, claim: Claim, actor: Actor, notes: str | None, now: datetime
    ) -> Result[CancellationStep, EngineError]:
        """Resume the main flow at the remembered status."""
        current = claim.cancellation_record
        error = _expect_state(
            current, CancellationState.HANDOVER_FOR_CANCEL, "CANCELLATION_NOT_ACCEPTED"
        )
        if error is not None:
            return Err(error)

        previous = current.previous_status
        if previous is None:
            raise RuntimeError(
                f"Claim {claim.claim_number} lost its pre-cancellation status"
            )

        cancellation = current.model_copy(
            update={
                "state": CancellationState.NONE,
                "handled_by": actor.user_id,
                "handled_at": now,
                "outcome": CancellationOutcome.REOPENED,
            }
        )
        return Ok(
            CancellationStep(
                claim=claim.model_copy(
                    update={"cancellation": cancellation, "status": previous}
                ),
                note=notes or f"Cancellation withdrawn; resumed at {previous.value}",
                event_type=ClaimEventType.CANCEL_REOPENED,
            )
        )
