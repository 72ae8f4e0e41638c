# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Command payloads accepted by the lifecycle state machine."""

from datetime import datetime
from decimal import Decimal

from beartype import beartype
from pydantic import Field, model_validator

from .base import BaseModelConfig
from .claim import PaymentStatus, RepairType
from .technician import CertificationLevel
from .work_order import ServiceCatalogLine


@beartype
class DraftRequest(BaseModelConfig):
    """Initial intake data for a new claim."""

    vehicle_id: int | None = Field(None, ge=1)
    customer_id: int | None = Field(None, ge=1)
    service_center_id: int | None = Field(None, ge=1)
    reported_failure: str | None = Field(None, max_length=2000)


@beartype
class DiagnosticUpdate(BaseModelConfig):
    """Partial update of diagnostic, repair and warranty-override fields.

    Fields left as ``None`` keep their current value.
    """

    reported_failure: str | None = Field(None, max_length=2000)
    initial_diagnosis: str | None = Field(None, max_length=10000)
    diagnostic_details: str | None = Field(None, max_length=10000)
    problem_type: str | None = Field(None, max_length=100)
    problem_description: str | None = Field(None, max_length=2000)
    test_results: str | None = Field(None, max_length=5000)
    repair_notes: str | None = Field(None, max_length=5000)
    repair_type: RepairType | None = Field(None)
    service_catalog_items: tuple[ServiceCatalogLine, ...] | None = Field(None)
    warranty_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    warranty_assessment: str | None = Field(None, max_length=2000)
    manual_warranty_override: bool | None = Field(None)
    manual_override_confirmed: bool | None = Field(None)

    @model_validator(mode="after")
    @beartype
    def validate_at_least_one_field(self) -> "DiagnosticUpdate":
        """Ensure at least one field is provided for update."""
        if not any(
            getattr(self, name) is not None for name in type(self).model_fields
        ):
            raise ValueError("At least one field must be provided for update")
        return self


@beartype
class AssignmentRequest(BaseModelConfig):
    """Assign a named technician, or the best match for a specialization."""

    technician_id: int | None = Field(None, ge=1)
    specialization: str | None = Field(None, min_length=1, max_length=100)
    min_level: CertificationLevel | None = Field(None)
    start_time: datetime | None = Field(
        None, description="Planned start; defaults to now"
    )

    @model_validator(mode="after")
    @beartype
    def validate_target(self) -> "AssignmentRequest":
        if self.technician_id is None and self.specialization is None:
            raise ValueError("Either technician_id or specialization is required")
        return self


@beartype
class ApprovalDecision(BaseModelConfig):
    """EVM approval with the company-paid amount."""

    company_paid_cost: Decimal | None = Field(None, ge=0, decimal_places=2)
    notes: str | None = Field(None, max_length=2000)


@beartype
class RejectionDecision(BaseModelConfig):
    """EVM rejection. ``final`` forbids any further resubmission."""

    reason: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=2000)
    final: bool = Field(default=False)


@beartype
class ResubmissionRequest(BaseModelConfig):
    revised_diagnosis: str | None = Field(None, max_length=5000)
    response_to_rejection: str | None = Field(None, max_length=2000)


@beartype
class PaymentUpdate(BaseModelConfig):
    status: PaymentStatus = Field(...)


@beartype
class InspectionResult(BaseModelConfig):
    passed: bool = Field(...)
    notes: str | None = Field(None, max_length=2000)


@beartype
class HandoverRequest(BaseModelConfig):
    customer_satisfied: bool = Field(default=True)
    notes: str | None = Field(None, max_length=2000)


@beartype
class CancellationRequest(BaseModelConfig):
    reason: str | None = Field(None, max_length=1000)


@beartype
class CommandNote(BaseModelConfig):
    """Free-text note for commands without a structured payload."""

    notes: str | None = Field(None, max_length=2000)
