# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Technician profiles and their derived capacity state."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from beartype import beartype
from pydantic import Field, model_validator

from ..core.config import get_settings
from .base import BaseModelConfig


class CertificationLevel(str, Enum):
    """Ordered technician certification levels."""

    JUNIOR = "JUNIOR"
    SENIOR = "SENIOR"
    EXPERT = "EXPERT"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def at_least(self, other: "CertificationLevel") -> bool:
        return self.rank >= other.rank


_LEVEL_RANK = {
    CertificationLevel.JUNIOR: 1,
    CertificationLevel.SENIOR: 2,
    CertificationLevel.EXPERT: 3,
}


class TechnicianStatus(str, Enum):
    """Assignment status, always derived from workload."""

    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"


@beartype
class TechnicianProfile(BaseModelConfig):
    """Repair capacity of one technician, keyed by their user account."""

    user_id: int = Field(..., ge=1, description="One-to-one with the user account")
    name: str = Field(..., min_length=1, max_length=200)
    specialization: str = Field(..., min_length=1, max_length=100)
    certification_level: CertificationLevel = Field(default=CertificationLevel.JUNIOR)
    active: bool = Field(default=True)
    current_workload: int = Field(default=0, ge=0)
    max_workload: int = Field(
        default_factory=lambda: get_settings().default_max_workload,
        ge=1,
        description="Concurrent assignment ceiling, defaulting to the configured one",
    )
    available_from: datetime | None = Field(
        None, description="Next free slot once a busy technician frees capacity"
    )
    total_completed_work_orders: int = Field(default=0, ge=0)
    average_completion_hours: Decimal = Field(default=Decimal("0"), ge=0)

    @model_validator(mode="after")
    @beartype
    def validate_workload_bounds(self) -> "TechnicianProfile":
        """Workload must stay within [0, max_workload]."""
        if self.current_workload > self.max_workload:
            raise ValueError(
                f"current_workload {self.current_workload} exceeds "
                f"max_workload {self.max_workload}"
            )
        return self

    @property
    def status(self) -> TechnicianStatus:
        if self.current_workload >= self.max_workload:
            return TechnicianStatus.BUSY
        return TechnicianStatus.AVAILABLE

    @property
    def remaining_capacity(self) -> int:
        return self.max_workload - self.current_workload

    @property
    def workload_percentage(self) -> float:
        return round(self.current_workload * 100.0 / self.max_workload, 2)

    @property
    def has_capacity(self) -> bool:
        return self.current_workload < self.max_workload
