# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Claim aggregate, its owned sub-records and the status history row.

A claim owns its sub-records by composition. Each is created lazily the
first time a command touches it and is never shared between claims.
Technicians, vehicles and customers are referenced by id only.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from beartype import beartype
from pydantic import Field, field_validator, model_validator

from ..core.errors import CorruptClaimStateError
from .base import BaseModelConfig, TimestampedModel
from .work_order import ServiceCatalogLine


class ClaimStatus(str, Enum):
    """Closed set of persisted claim status codes."""

    DRAFT = "DRAFT"
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_EVM_APPROVAL = "PENDING_EVM_APPROVAL"
    EVM_APPROVED = "EVM_APPROVED"
    REJECTED = "REJECTED"
    READY_FOR_REPAIR = "READY_FOR_REPAIR"
    REPAIR_IN_PROGRESS = "REPAIR_IN_PROGRESS"
    HANDOVER_PENDING = "HANDOVER_PENDING"
    READY_FOR_HANDOVER = "READY_FOR_HANDOVER"
    COMPLETED = "COMPLETED"
    CLOSED = "CLOSED"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self is ClaimStatus.CLOSED

    @classmethod
    @beartype
    def from_code(cls, code: str) -> "ClaimStatus":
        """Parse a persisted code, treating anything unknown as corruption."""
        try:
            return cls(code)
        except ValueError as e:
            raise CorruptClaimStateError(f"Unknown claim status code: {code!r}") from e


_STATUS_LABELS = {
    ClaimStatus.DRAFT: "Draft",
    ClaimStatus.OPEN: "Open",
    ClaimStatus.IN_PROGRESS: "In progress",
    ClaimStatus.PENDING_EVM_APPROVAL: "Pending EVM approval",
    ClaimStatus.EVM_APPROVED: "EVM approved",
    ClaimStatus.REJECTED: "Rejected",
    ClaimStatus.READY_FOR_REPAIR: "Ready for repair",
    ClaimStatus.REPAIR_IN_PROGRESS: "Repair in progress",
    ClaimStatus.HANDOVER_PENDING: "Handover pending",
    ClaimStatus.READY_FOR_HANDOVER: "Ready for handover",
    ClaimStatus.COMPLETED: "Completed",
    ClaimStatus.CLOSED: "Closed",
}


class RepairType(str, Enum):
    """Who funds the repair."""

    EVM_REPAIR = "EVM_REPAIR"
    SC_REPAIR = "SC_REPAIR"


class PaymentStatus(str, Enum):
    """Customer payment state for SC repairs."""

    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class CancellationState(str, Enum):
    """Position in the cancellation sub-flow."""

    NONE = "NONE"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    HANDOVER_FOR_CANCEL = "HANDOVER_FOR_CANCEL"


class CancellationOutcome(str, Enum):
    """Most recent resolution of a cancellation request."""

    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    REOPENED = "REOPENED"
    CLOSED = "CLOSED"


@beartype
class ClaimDiagnostic(BaseModelConfig):
    """Failure report and technical diagnosis."""

    reported_failure: str | None = Field(None, max_length=2000)
    initial_diagnosis: str | None = Field(None, max_length=10000)
    diagnostic_details: str | None = Field(None, max_length=10000)
    problem_type: str | None = Field(None, max_length=100)
    problem_description: str | None = Field(None, max_length=2000)
    test_results: str | None = Field(None, max_length=5000)
    repair_notes: str | None = Field(None, max_length=5000)
    handover_issues: tuple[str, ...] = Field(default=())


@beartype
class ClaimCost(BaseModelConfig):
    """Monetary figures for a claim. All amounts are non-negative."""

    warranty_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    company_paid_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    total_service_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    total_third_party_parts_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    total_oem_parts_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    total_estimated_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    total_labor_hours: Decimal | None = Field(None, ge=0, decimal_places=2)

    @model_validator(mode="after")
    @beartype
    def validate_estimated_total(self) -> "ClaimCost":
        """Estimated total must equal its parts when all are present."""
        if (
            self.total_estimated_cost is not None
            and self.total_service_cost is not None
            and self.total_third_party_parts_cost is not None
        ):
            expected = self.total_service_cost + self.total_third_party_parts_cost
            if self.total_estimated_cost != expected:
                raise ValueError(
                    f"total_estimated_cost {self.total_estimated_cost} must equal "
                    f"service plus third-party parts ({expected})"
                )
        return self


@beartype
class ClaimApproval(BaseModelConfig):
    """EVM decision trail and resubmission counters."""

    approved_by: int | None = Field(None, ge=1)
    approved_at: datetime | None = Field(None)
    approval_notes: str | None = Field(None, max_length=2000)
    rejected_by: int | None = Field(None, ge=1)
    rejected_at: datetime | None = Field(None)
    rejection_reason: str | None = Field(None, max_length=1000)
    rejection_notes: str | None = Field(None, max_length=2000)
    rejection_count: int = Field(default=0, ge=0)
    resubmit_count: int = Field(default=0, ge=0)
    can_resubmit: bool = Field(default=True)


@beartype
class ClaimAssignment(BaseModelConfig):
    """Technician holding the claim's repair work."""

    technician_id: int = Field(..., ge=1, description="Technician user id")
    assigned_by: int = Field(..., ge=1)
    assigned_at: datetime = Field(...)
    scheduled_start: datetime | None = Field(
        None, description="Start of a future-dated assignment"
    )
    holds_capacity: bool = Field(
        default=True, description="Whether a workload unit is currently reserved"
    )
    work_completed: bool = Field(default=False)
    completed_at: datetime | None = Field(None)


@beartype
class WarrantyEligibility(BaseModelConfig):
    """Automatic check result and the manual override trail."""

    assessment: str | None = Field(None, max_length=2000)
    is_eligible: bool | None = Field(None)
    auto_eligible: bool | None = Field(None)
    auto_reasons: tuple[str, ...] = Field(default=())
    auto_checked_at: datetime | None = Field(None)
    checked_mileage_km: int | None = Field(None, ge=0)
    applied_coverage_years: int | None = Field(None, ge=0)
    applied_coverage_km: int | None = Field(None, ge=0)
    manual_override: bool = Field(default=False)
    override_confirmed: bool = Field(default=False)
    override_confirmed_at: datetime | None = Field(None)
    override_confirmed_by: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    @beartype
    def validate_confirmation(self) -> "WarrantyEligibility":
        """A confirmation is only meaningful on top of an override."""
        if self.override_confirmed and not self.manual_override:
            raise ValueError("override_confirmed requires manual_override")
        return self

    @property
    def auto_checked(self) -> bool:
        return self.auto_checked_at is not None

    @property
    def override_effective(self) -> bool:
        return self.manual_override and self.override_confirmed

    @property
    def requires_override_confirmation(self) -> bool:
        return self.auto_eligible is False and not self.override_effective

    @property
    def repair_unlocked(self) -> bool:
        """True once EVM-funded repair fields may depend on eligibility."""
        return self.auto_checked and (
            self.auto_eligible is True or self.override_effective
        )


@beartype
class RepairConfiguration(BaseModelConfig):
    """Repair funding path and SC service selection."""

    repair_type: RepairType | None = Field(None)
    customer_payment_status: PaymentStatus | None = Field(None)
    service_catalog_items: tuple[ServiceCatalogLine, ...] = Field(default=())


@beartype
class ClaimCancellation(BaseModelConfig):
    """Cancellation sub-flow state and its lifetime request counter."""

    state: CancellationState = Field(default=CancellationState.NONE)
    request_count: int = Field(default=0, ge=0)
    previous_status: ClaimStatus | None = Field(
        None, description="Main-flow status remembered for an exact reopen"
    )
    requested_by: int | None = Field(None, ge=1)
    requested_at: datetime | None = Field(None)
    reason: str | None = Field(None, max_length=1000)
    handled_by: int | None = Field(None, ge=1)
    handled_at: datetime | None = Field(None)
    outcome: CancellationOutcome | None = Field(None)

    @model_validator(mode="after")
    @beartype
    def validate_previous_status(self) -> "ClaimCancellation":
        if self.state != CancellationState.NONE and self.previous_status is None:
            raise ValueError("An active cancellation must remember the prior status")
        return self

    @property
    def active(self) -> bool:
        return self.state != CancellationState.NONE


@beartype
class Claim(TimestampedModel):
    """Warranty claim aggregate root."""

    id: int = Field(..., ge=1)
    claim_number: str = Field(..., min_length=11, max_length=30)
    status: ClaimStatus = Field(..., description="Current lifecycle status")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency token")
    created_by: int = Field(..., ge=1)
    vehicle_id: int | None = Field(None, ge=1)
    customer_id: int | None = Field(None, ge=1)
    service_center_id: int | None = Field(None, ge=1)
    ready_for_submission: bool = Field(default=False)
    inspection_passed: bool | None = Field(None)
    handover_confirmed: bool = Field(default=False)

    diagnostic: ClaimDiagnostic | None = Field(None)
    cost: ClaimCost | None = Field(None)
    approval: ClaimApproval | None = Field(None)
    assignment: ClaimAssignment | None = Field(None)
    warranty_eligibility: WarrantyEligibility | None = Field(None)
    repair_configuration: RepairConfiguration | None = Field(None)
    cancellation: ClaimCancellation | None = Field(None)

    @field_validator("claim_number")
    @classmethod
    @beartype
    def validate_claim_number(cls, v: str) -> str:
        """Ensure claim number follows PREFIX-YYYY-NNNNNN."""
        parts = v.split("-")
        if len(parts) != 3:
            raise ValueError("Claim number must have three parts separated by hyphens")
        prefix, year, sequence = parts
        if not prefix.isalpha() or not prefix.isupper():
            raise ValueError("Claim number prefix must be upper-case letters")
        if len(year) != 4 or not year.isdigit():
            raise ValueError("Claim number year must be four digits")
        if len(sequence) != 6 or not sequence.isdigit():
            raise ValueError("Claim number sequence must be six digits")
        return v

    @property
    def diagnostic_record(self) -> ClaimDiagnostic:
        return self.diagnostic or ClaimDiagnostic()

    @property
    def cost_record(self) -> ClaimCost:
        return self.cost or ClaimCost()

    @property
    def approval_record(self) -> ClaimApproval:
        return self.approval or ClaimApproval()

    @property
    def eligibility_record(self) -> WarrantyEligibility:
        return self.warranty_eligibility or WarrantyEligibility()

    @property
    def repair_record(self) -> RepairConfiguration:
        return self.repair_configuration or RepairConfiguration()

    @property
    def cancellation_record(self) -> ClaimCancellation:
        return self.cancellation or ClaimCancellation()

    @property
    def repair_type(self) -> RepairType | None:
        return self.repair_record.repair_type

    @property
    def cancellation_active(self) -> bool:
        return self.cancellation_record.active


@beartype
class ClaimStatusHistory(BaseModelConfig):
    """Append-only audit row written with every applied command."""

    id: int = Field(..., ge=1)
    claim_id: int = Field(..., ge=1)
    status: ClaimStatus = Field(...)
    label: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)
    changed_at: datetime = Field(...)
    changed_by: int = Field(..., ge=1)
    note: str | None = Field(None, max_length=2000)
    cancellation_state: CancellationState = Field(default=CancellationState.NONE)
