# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Readiness checklists for forward lifecycle transitions.

Each check collects every unmet requirement instead of stopping at the
first one, so callers can show a complete checklist.
"""

from attrs import frozen
from beartype import beartype

from ..core.config import Settings
from ..core.errors import EngineError, MissingRequirement
from ..core.logging_utils import get_logger
from ..core.result_types import Err
from ..models.claim import Claim, PaymentStatus, RepairType
from .collaborators import VehicleDirectory, WorkOrderQuery
from .cost_aggregator import ClaimCostAggregator
from .transitions import ClaimCommand

logger = get_logger(__name__)


@frozen
class ReadinessReport:
    """Checklist outcome for one command."""

    command: ClaimCommand
    missing: tuple[MissingRequirement, ...] = ()

    @property
    def ready(self) -> bool:
        return not self.missing

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(item.code for item in self.missing)

    @beartype
    def to_error(self) -> EngineError:
        return EngineError.validation_failed(
            self.missing,
            message=f"{self.command.value} blocked: "
            + "; ".join(item.message for item in self.missing),
        )


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class ClaimValidationService:
    """Checks a claim's readiness for each guarded forward transition."""

    def __init__(
        self,
        cost_aggregator: ClaimCostAggregator,
        work_orders: WorkOrderQuery,
        vehicles: VehicleDirectory,
        settings: Settings,
    ) -> None:
        """Initialize validator with dependency validation."""
        if not isinstance(cost_aggregator, ClaimCostAggregator):
            raise ValueError("Cost aggregator required")
        if not isinstance(work_orders, WorkOrderQuery):
            raise ValueError("Work order query required")
        if not isinstance(vehicles, VehicleDirectory):
            raise ValueError("Vehicle directory required")

        self._costs = cost_aggregator
        self._work_orders = work_orders
        self._vehicles = vehicles
        self._settings = settings

    @beartype
    def readiness(self, claim: Claim, command: ClaimCommand) -> ReadinessReport:
        """Run the checklist guarding ``command``; unguarded commands pass."""
        checks = {
            ClaimCommand.SUBMIT_INTAKE: self.check_intake,
            ClaimCommand.MARK_READY_FOR_SUBMISSION: self.check_submission,
            ClaimCommand.SUBMIT_TO_EVM: self.check_submission,
            ClaimCommand.START_REPAIR: self.check_repair_start,
            ClaimCommand.MARK_WORK_DONE: self.check_repair_completion,
            ClaimCommand.COMPLETE_REPAIR: self.check_repair_completion,
            ClaimCommand.CLOSE_CLAIM: self.check_closure,
        }
        check = checks.get(command)
        if check is None:
            return ReadinessReport(command=command)
        report = check(claim)
        if command != report.command:
            report = ReadinessReport(command=command, missing=report.missing)
        return report

    @beartype
    def check_intake(self, claim: Claim) -> ReadinessReport:
        missing = self._reported_failure(claim)
        if claim.vehicle_id is None:
            missing.append(
                MissingRequirement("VEHICLE_REQUIRED", "A vehicle must be linked")
            )
        return ReadinessReport(ClaimCommand.SUBMIT_INTAKE, tuple(missing))

    @beartype
    def check_submission(self, claim: Claim) -> ReadinessReport:
        """Checklist guarding submission to EVM."""
        diagnostic = claim.diagnostic_record
        missing = self._reported_failure(claim)

        if _blank(diagnostic.initial_diagnosis) and _blank(
            diagnostic.diagnostic_details
        ):
            missing.append(
                MissingRequirement(
                    "DIAGNOSIS_REQUIRED", "A technical diagnosis is required"
                )
            )

        repair_type = claim.repair_type
        if repair_type is None:
            missing.append(
                MissingRequirement("REPAIR_TYPE_REQUIRED", "Choose EVM or SC repair")
            )
        elif repair_type == RepairType.EVM_REPAIR:
            if _blank(diagnostic.test_results) and _blank(diagnostic.repair_notes):
                missing.append(
                    MissingRequirement(
                        "EVIDENCE_REQUIRED", "Test results or repair notes are required"
                    )
                )
        elif not claim.repair_record.service_catalog_items:
            missing.append(
                MissingRequirement(
                    "SERVICE_ITEMS_REQUIRED",
                    "At least one service catalog item is required",
                )
            )

        cost = self._costs.aggregate(claim)
        if isinstance(cost, Err):
            missing.append(MissingRequirement("COST_INVALID", cost.error.message))
        else:
            breakdown = cost.unwrap()
            total = breakdown.authoritative_cost
            if total is not None and total < 0:
                missing.append(
                    MissingRequirement("COST_INVALID", "Total cost cannot be negative")
                )

        if repair_type == RepairType.EVM_REPAIR:
            missing.extend(self._warranty_requirements(claim))

        return ReadinessReport(ClaimCommand.SUBMIT_TO_EVM, tuple(missing))

    @beartype
    def check_repair_start(self, claim: Claim) -> ReadinessReport:
        missing: list[MissingRequirement] = []
        if claim.assignment is None:
            missing.append(
                MissingRequirement(
                    "TECHNICIAN_REQUIRED", "A technician must be assigned"
                )
            )

        if claim.repair_type == RepairType.EVM_REPAIR:
            if claim.approval_record.approved_at is None:
                missing.append(
                    MissingRequirement(
                        "EVM_APPROVAL_REQUIRED", "EVM has not approved this claim"
                    )
                )
            eligibility = claim.eligibility_record
            if not eligibility.auto_checked:
                missing.append(_check_required())
            elif not eligibility.repair_unlocked:
                missing.append(_override_required())
        elif claim.repair_type == RepairType.SC_REPAIR:
            if claim.repair_record.customer_payment_status != PaymentStatus.PAID:
                missing.append(
                    MissingRequirement(
                        "PAYMENT_REQUIRED", "Customer payment has not been received"
                    )
                )
        else:
            missing.append(
                MissingRequirement("REPAIR_TYPE_REQUIRED", "Choose EVM or SC repair")
            )

        return ReadinessReport(ClaimCommand.START_REPAIR, tuple(missing))

    @beartype
    def check_repair_completion(self, claim: Claim) -> ReadinessReport:
        """All non-cancelled work orders must be DONE, and there must be one."""
        orders = [
            wo
            for wo in self._work_orders.list_for_claim(claim.id)
            if not wo.is_cancelled
        ]
        missing: list[MissingRequirement] = []
        if not orders:
            missing.append(
                MissingRequirement(
                    "WORK_ORDERS_REQUIRED", "No work orders recorded for this claim"
                )
            )
        else:
            open_ids = [str(wo.id) for wo in orders if not wo.is_done]
            if open_ids:
                missing.append(
                    MissingRequirement(
                        "WORK_ORDERS_NOT_DONE",
                        f"Work orders not done: {', '.join(open_ids)}",
                    )
                )
        return ReadinessReport(ClaimCommand.COMPLETE_REPAIR, tuple(missing))

    @beartype
    def check_closure(self, claim: Claim) -> ReadinessReport:
        missing: list[MissingRequirement] = []
        if not claim.handover_confirmed:
            missing.append(
                MissingRequirement(
                    "HANDOVER_NOT_CONFIRMED", "Vehicle handover has not been confirmed"
                )
            )
        return ReadinessReport(ClaimCommand.CLOSE_CLAIM, tuple(missing))

    def _reported_failure(self, claim: Claim) -> list[MissingRequirement]:
        text = claim.diagnostic_record.reported_failure
        minimum = self._settings.min_reported_failure_length
        if _blank(text) or len(text.strip()) < minimum:
            return [
                MissingRequirement(
                    "REPORTED_FAILURE_REQUIRED",
                    f"Reported failure must be at least {minimum} characters",
                )
            ]
        return []

    def _warranty_requirements(self, claim: Claim) -> list[MissingRequirement]:
        eligibility = claim.eligibility_record
        if not eligibility.auto_checked:
            return [_check_required()]

        missing: list[MissingRequirement] = []
        vehicle = (
            self._vehicles.get_vehicle(claim.vehicle_id)
            if claim.vehicle_id is not None
            else None
        )
        if vehicle is not None and vehicle.mileage_km != eligibility.checked_mileage_km:
            logger.info(
                "Warranty check on claim %s is stale (checked at %s km, now %s km)",
                claim.claim_number,
                eligibility.checked_mileage_km,
                vehicle.mileage_km,
            )
            missing.append(
                MissingRequirement(
                    "WARRANTY_CHECK_STALE",
                    "Vehicle mileage changed since the last warranty check",
                )
            )
        if eligibility.requires_override_confirmation:
            missing.append(_override_required())
        return missing


def _check_required() -> MissingRequirement:
    return MissingRequirement(
        "WARRANTY_CHECK_REQUIRED", "Run the automatic warranty check first"
    )


def _override_required() -> MissingRequirement:
    return MissingRequirement(
        "WARRANTY_OVERRIDE_REQUIRED",
        "Vehicle is out of warranty; a confirmed manual override is required",
    )
