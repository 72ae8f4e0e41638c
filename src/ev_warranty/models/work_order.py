# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Work orders and service-catalog lines consumed by cost aggregation."""

from decimal import Decimal
from enum import Enum

from beartype import beartype
from pydantic import Field, field_validator

from .base import BaseModelConfig


class WorkOrderStatus(str, Enum):
    """Enumeration of work order states."""

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


class PartSource(str, Enum):
    """Where a part used on a work order comes from."""

    OEM = "OEM"
    THIRD_PARTY = "THIRD_PARTY"


@beartype
class WorkOrderPart(BaseModelConfig):
    """A part consumed by a work order."""

    source: PartSource = Field(..., description="OEM serial or third-party catalog part")
    part_id: int = Field(..., ge=1, description="Part or third-party catalog id")
    serial_number: str | None = Field(None, max_length=100)
    quantity: int = Field(default=1, ge=1, le=1000)


@beartype
class WorkOrder(BaseModelConfig):
    """A unit of technician work against a claim."""

    id: int = Field(..., ge=1)
    claim_id: int = Field(..., ge=1)
    technician_id: int | None = Field(None, ge=1)
    status: WorkOrderStatus = Field(default=WorkOrderStatus.OPEN)
    labor_hours: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    parts: tuple[WorkOrderPart, ...] = Field(default=())

    @property
    def is_done(self) -> bool:
        return self.status == WorkOrderStatus.DONE

    @property
    def is_cancelled(self) -> bool:
        return self.status == WorkOrderStatus.CANCELLED


@beartype
class ServiceCatalogLine(BaseModelConfig):
    """A priced service item selected for an SC repair."""

    service_item_id: int = Field(..., ge=1)
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(default=1, ge=1, le=1000)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)

    @field_validator("name")
    @classmethod
    @beartype
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Service item name cannot be blank")
        return v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
