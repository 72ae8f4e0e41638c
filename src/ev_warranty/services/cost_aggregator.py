# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Cost aggregation across work orders, parts and service-catalog lines."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Final

from beartype import beartype
from pydantic import Field

from ..core.errors import EngineError
from ..core.logging_utils import get_logger
from ..core.result_types import Err, Ok, Result
from ..models.base import BaseModelConfig
from ..models.claim import Claim, ClaimCost, RepairType
from ..models.work_order import PartSource, WorkOrder
from .collaborators import PartCatalog, WorkOrderQuery

logger = get_logger(__name__)

_CENT: Final = Decimal("0.01")
_ZERO: Final = Decimal("0.00")


@beartype
def round_money(amount: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


@beartype
class CostBreakdown(BaseModelConfig):
    """Aggregated figures for one claim."""

    repair_type: RepairType | None = Field(None)
    total_labor_hours: Decimal = Field(default=_ZERO, ge=0)
    total_oem_parts_cost: Decimal = Field(default=_ZERO, ge=0)
    total_third_party_parts_cost: Decimal = Field(default=_ZERO, ge=0)
    total_service_cost: Decimal = Field(default=_ZERO, ge=0)
    total_estimated_cost: Decimal | None = Field(
        None, ge=0, description="Computed for SC repairs only"
    )
    authoritative_cost: Decimal | None = Field(
        None, ge=0, description="Estimated total for SC, company-paid cost for EVM"
    )


class ClaimCostAggregator:
    """Derives cost totals for a claim."""

    def __init__(self, work_orders: WorkOrderQuery, parts: PartCatalog) -> None:
        """Initialize aggregator with dependency validation."""
        if not isinstance(work_orders, WorkOrderQuery):
            raise ValueError("Work order query required")
        if not isinstance(parts, PartCatalog):
            raise ValueError("Part catalog required")

        self._work_orders = work_orders
        self._parts = parts

    @beartype
    def aggregate(self, claim: Claim) -> Result[CostBreakdown, EngineError]:
        """Sum labor, parts and service lines for the claim.

        Cancelled work orders are ignored. A part without a catalog price
        fails the aggregation rather than counting as free.
        """
        orders = [
            wo
            for wo in self._work_orders.list_for_claim(claim.id)
            if not wo.is_cancelled
        ]

        parts_result = self._price_parts(orders)
        if isinstance(parts_result, Err):
            return parts_result
        oem_total, third_party_total = parts_result.unwrap()

        labor_hours = round_money(sum((wo.labor_hours for wo in orders), _ZERO))
        service_total = sum(
            (
                round_money(line.line_total)
                for line in claim.repair_record.service_catalog_items
            ),
            _ZERO,
        )

        repair_type = claim.repair_type
        estimated: Decimal | None = None
        authoritative: Decimal | None = None
        if repair_type == RepairType.SC_REPAIR:
            estimated = service_total + third_party_total
            authoritative = estimated
        elif repair_type == RepairType.EVM_REPAIR:
            authoritative = claim.cost_record.company_paid_cost

        return Ok(
            CostBreakdown(
                repair_type=repair_type,
                total_labor_hours=labor_hours,
                total_oem_parts_cost=oem_total,
                total_third_party_parts_cost=third_party_total,
                total_service_cost=service_total,
                total_estimated_cost=estimated,
                authoritative_cost=authoritative,
            )
        )

    @beartype
    def refresh_cost(self, claim: Claim) -> Result[ClaimCost, EngineError]:
        """Return the claim's cost record with aggregated totals filled in."""
        result = self.aggregate(claim)
        if isinstance(result, Err):
            return result
        breakdown = result.unwrap()
        current = claim.cost_record

        return Ok(
            ClaimCost(
                warranty_cost=current.warranty_cost,
                company_paid_cost=current.company_paid_cost,
                total_service_cost=breakdown.total_service_cost,
                total_third_party_parts_cost=breakdown.total_third_party_parts_cost,
                total_oem_parts_cost=breakdown.total_oem_parts_cost,
                total_estimated_cost=breakdown.total_estimated_cost,
                total_labor_hours=breakdown.total_labor_hours,
            )
        )

    def _price_parts(
        self, orders: list[WorkOrder]
    ) -> Result[tuple[Decimal, Decimal], EngineError]:
        oem_total = _ZERO
        third_party_total = _ZERO

        for order in orders:
            for part in order.parts:
                if part.source == PartSource.OEM:
                    unit_cost = self._parts.oem_unit_cost(part.part_id)
                else:
                    unit_cost = self._parts.third_party_unit_cost(part.part_id)

                if unit_cost is None:
                    logger.warning(
                        "No unit cost for %s part %s on work order %s",
                        part.source.value,
                        part.part_id,
                        order.id,
                    )
                    return Err(
                        EngineError.not_found(
                            "Part", f"{part.source.value}:{part.part_id}"
                        )
                    )

                line_cost = round_money(unit_cost * part.quantity)
                if part.source == PartSource.OEM:
                    oem_total += line_cost
                else:
                    third_party_total += line_cost

        return Ok((oem_total, third_party_total))
