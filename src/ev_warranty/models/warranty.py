# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Vehicles, warranty conditions and eligibility verdicts."""

from datetime import date, datetime

from beartype import beartype
from pydantic import Field, model_validator

from .base import BaseModelConfig


@beartype
class Vehicle(BaseModelConfig):
    """Vehicle attributes the eligibility evaluator reads."""

    id: int = Field(..., ge=1)
    vin: str = Field(..., min_length=17, max_length=17, pattern=r"^[A-HJ-NPR-Z0-9]{17}$")
    model_id: int = Field(..., ge=1, description="Vehicle model the warranty is keyed by")
    registration_date: date | None = Field(None)
    warranty_start_date: date | None = Field(
        None, description="Overrides the registration date as coverage start"
    )
    mileage_km: int | None = Field(None, ge=0, description="Current odometer reading")

    @property
    def coverage_start(self) -> date | None:
        return self.warranty_start_date or self.registration_date


@beartype
class WarrantyCondition(BaseModelConfig):
    """Coverage limits for a vehicle model over an effective window."""

    id: int = Field(..., ge=1)
    model_id: int | None = Field(
        None, ge=1, description="None marks a generic fallback condition"
    )
    coverage_years: int | None = Field(None, ge=0, le=30)
    coverage_km: int | None = Field(None, ge=0)
    effective_from: date = Field(...)
    effective_to: date | None = Field(None, description="Open-ended when None")
    active: bool = Field(default=True)
    updated_at: datetime = Field(...)
    description: str | None = Field(None, max_length=500)

    @model_validator(mode="after")
    @beartype
    def validate_window(self) -> "WarrantyCondition":
        """Ensure the effective window is not inverted."""
        if self.effective_to is not None and self.effective_to < self.effective_from:
            raise ValueError("effective_to must not precede effective_from")
        return self

    @property
    def coverage_months(self) -> int | None:
        if self.coverage_years is None:
            return None
        return self.coverage_years * 12

    @beartype
    def is_effective_on(self, day: date) -> bool:
        if not self.active or day < self.effective_from:
            return False
        return self.effective_to is None or day <= self.effective_to


@beartype
class EligibilityVerdict(BaseModelConfig):
    """Outcome of a warranty eligibility evaluation."""

    eligible: bool = Field(...)
    reasons: tuple[str, ...] = Field(..., min_length=1)
    applied_coverage_years: int | None = Field(None)
    applied_coverage_km: int | None = Field(None)
    condition_id: int | None = Field(None)
    vehicle_age_months: int | None = Field(None, ge=0)
    mileage_km: int | None = Field(None, ge=0)

    @property
    def summary(self) -> str:
        verdict = "eligible" if self.eligible else "not eligible"
        return f"Warranty {verdict}: {', '.join(self.reasons)}"
