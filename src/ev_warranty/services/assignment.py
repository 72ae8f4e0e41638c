# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Technician capacity matching and workload accounting.

Workload only moves through ``increment_workload`` and
``decrement_workload``, each applied under the technician's write-intent
lock and committed together with the claim event that caused it.
"""

from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from attrs import frozen
from beartype import beartype

from ..core.errors import EngineError
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok, Result
from ..core.unit_of_work import InMemoryClaimStore, UnitOfWork
from ..models.technician import CertificationLevel, TechnicianProfile, TechnicianStatus
from .transaction_helpers import run_in_transaction

logger = get_logger(__name__)


@beartype
def can_assign_work(profile: TechnicianProfile, start_time: datetime) -> bool:
    """Whether the technician can take work starting at ``start_time``.

    Active technicians qualify with spare capacity, or when busy but the
    start is at or after their next free slot.
    """
    if not profile.active:
        return False
    if profile.has_capacity:
        return True
    return (
        profile.status == TechnicianStatus.BUSY
        and profile.available_from is not None
        and start_time >= profile.available_from
    )


@beartype
def increment_workload(
    profile: TechnicianProfile,
) -> Result[TechnicianProfile, EngineError]:
    if not profile.has_capacity:
        return Err(
            EngineError.capacity_unavailable(
                "TECHNICIAN_AT_CAPACITY",
                f"Technician {profile.user_id} is at maximum workload "
                f"({profile.max_workload})",
            )
        )
    workload = profile.current_workload + 1
    update: dict[str, object] = {"current_workload": workload}
    if workload >= profile.max_workload:
        # next free slot is unknown until the directory schedules one
        update["available_from"] = None
    return Ok(profile.model_copy(update=update))


@beartype
def decrement_workload(profile: TechnicianProfile, now: datetime) -> TechnicianProfile:
    """Release one unit of workload; never goes below zero."""
    if profile.current_workload == 0:
        logger.warning(
            "Workload release for technician %s already at zero", profile.user_id
        )
        return profile
    return profile.model_copy(
        update={
            "current_workload": profile.current_workload - 1,
            "available_from": now,
        }
    )


@beartype
def record_completion(
    profile: TechnicianProfile, hours: Decimal
) -> TechnicianProfile:
    """Fold one completed job into the running average completion time."""
    completed = profile.total_completed_work_orders
    total_hours = profile.average_completion_hours * completed + hours
    average = (total_hours / (completed + 1)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    return profile.model_copy(
        update={
            "total_completed_work_orders": completed + 1,
            "average_completion_hours": average,
        }
    )


@beartype
def find_best_available_technician(
    profiles: Iterable[TechnicianProfile],
    specialization: str,
    min_level: CertificationLevel | None = None,
) -> Result[TechnicianProfile, EngineError]:
    """Lowest workload wins, then lowest average completion hours."""
    wanted = specialization.strip().lower()
    candidates = [
        p
        for p in profiles
        if p.active
        and p.has_capacity
        and p.specialization.strip().lower() == wanted
        and (min_level is None or p.certification_level.at_least(min_level))
    ]
    if not candidates:
        return Err(
            EngineError.capacity_unavailable(
                "NO_TECHNICIAN_AVAILABLE",
                f"No available technician for specialization '{specialization}'",
            )
        )
    best = min(
        candidates,
        key=lambda p: (p.current_workload, p.average_completion_hours, p.user_id),
    )
    return Ok(best)


@frozen
class Reservation:
    """Outcome of reserving a technician for a claim."""

    technician: TechnicianProfile
    holds_capacity: bool
    scheduled_start: datetime | None


class AssignmentCoordinator:
    """Matches and reserves technician capacity against the claim store."""

    def __init__(self, store: InMemoryClaimStore) -> None:
        """Initialize coordinator with dependency validation."""
        if not isinstance(store, InMemoryClaimStore):
            raise ValueError("Claim store required")
        self._store = store

    @beartype
    def can_assign_work(self, technician_id: int, start_time: datetime) -> bool:
        profile = self._store.get_technician(technician_id)
        if profile is None:
            logger.debug("Technician %s not found", technician_id)
            return False
        return can_assign_work(profile, start_time)

    @beartype
    def find_best_available_technician(
        self, specialization: str, min_level: CertificationLevel | None = None
    ) -> Result[TechnicianProfile, EngineError]:
        return find_best_available_technician(
            self._store.list_technicians(), specialization, min_level
        )

    @beartype
    def increment_workload(
        self, technician_id: int
    ) -> Result[TechnicianProfile, EngineError]:
        """Take one unit of capacity in its own transaction."""

        def _operation(uow: UnitOfWork) -> Result[TechnicianProfile, EngineError]:
            profile = uow.lock_technician(technician_id)
            if profile is None:
                return Err(EngineError.not_found("Technician", technician_id))
            result = increment_workload(profile)
            if isinstance(result, Ok):
                uow.stage_technician(result.value)
            return result

        return run_in_transaction(self._store, _operation)

    @beartype
    def decrement_workload(
        self, technician_id: int
    ) -> Result[TechnicianProfile, EngineError]:
        """Release one unit of capacity in its own transaction."""

        def _operation(uow: UnitOfWork) -> Result[TechnicianProfile, EngineError]:
            profile = uow.lock_technician(technician_id)
            if profile is None:
                return Err(EngineError.not_found("Technician", technician_id))
            return Ok(uow.stage_technician(decrement_workload(profile, uow.clock())))

        return run_in_transaction(self._store, _operation)

    @beartype
    def reserve(
        self, uow: UnitOfWork, technician_id: int, start_time: datetime
    ) -> Result[Reservation, EngineError]:
        """Reserve a technician inside the caller's unit of work.

        A technician with spare capacity is bumped immediately. A busy one
        whose next free slot is not after ``start_time`` gets a
        future-dated reservation that takes capacity when repair starts.
        """
        profile = uow.lock_technician(technician_id)
        if profile is None:
            return Err(EngineError.not_found("Technician", technician_id))
        if not can_assign_work(profile, start_time):
            reason = "inactive" if not profile.active else "fully booked"
            return Err(
                EngineError.capacity_unavailable(
                    "TECHNICIAN_UNAVAILABLE",
                    f"Technician {technician_id} is {reason} "
                    f"for {start_time.isoformat()}",
                )
            )

        if profile.has_capacity:
            bumped = increment_workload(profile)
            if isinstance(bumped, Err):
                return bumped
            uow.stage_technician(bumped.value)
            return Ok(
                Reservation(
                    technician=bumped.value, holds_capacity=True, scheduled_start=None
                )
            )

        logger.info(
            "Future-dated reservation of technician %s from %s",
            technician_id,
            start_time.isoformat(),
        )
        return Ok(
            Reservation(
                technician=profile, holds_capacity=False, scheduled_start=start_time
            )
        )

    @beartype
    def claim_capacity(
        self, uow: UnitOfWork, technician_id: int
    ) -> Result[TechnicianProfile, EngineError]:
        """Take the capacity a future-dated reservation deferred."""
        profile = uow.lock_technician(technician_id)
        if profile is None:
            return Err(EngineError.not_found("Technician", technician_id))
        result = increment_workload(profile)
        if isinstance(result, Ok):
            uow.stage_technician(result.value)
        return result

    @beartype
    def release(
        self,
        uow: UnitOfWork,
        technician_id: int,
        completed_hours: Decimal | None = None,
    ) -> Result[TechnicianProfile, EngineError]:
        """Release capacity, optionally recording a completed job."""
        profile = uow.lock_technician(technician_id)
        if profile is None:
            return Err(EngineError.not_found("Technician", technician_id))
        released = decrement_workload(profile, uow.clock())
        if completed_hours is not None:
            released = record_completion(released, completed_hours)
        return Ok(uow.stage_technician(released))
