# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Interfaces of the external collaborators the engine reads from.

Each protocol has a small in-memory implementation used for wiring the
engine in tests and local runs.
"""

from collections.abc import Iterable
from decimal import Decimal
from typing import Protocol, runtime_checkable

from beartype import beartype

from ..models.warranty import Vehicle, WarrantyCondition
from ..models.work_order import WorkOrder


@runtime_checkable
class WorkOrderQuery(Protocol):
    """Lists work orders recorded against a claim."""

    def list_for_claim(self, claim_id: int) -> list[WorkOrder]: ...


@runtime_checkable
class VehicleDirectory(Protocol):
    def get_vehicle(self, vehicle_id: int) -> Vehicle | None: ...


@runtime_checkable
class WarrantyConditionLookup(Protocol):
    """Warranty conditions keyed by vehicle model, including generic ones."""

    def conditions_for_model(self, model_id: int) -> list[WarrantyCondition]: ...


@runtime_checkable
class PartCatalog(Protocol):
    """Unit prices for OEM parts and third-party catalog parts."""

    def oem_unit_cost(self, part_id: int) -> Decimal | None: ...

    def third_party_unit_cost(self, part_id: int) -> Decimal | None: ...


class InMemoryWorkOrders:
    """Work orders held in a dict, keyed by id."""

    def __init__(self, work_orders: Iterable[WorkOrder] = ()) -> None:
        self._orders: dict[int, WorkOrder] = {wo.id: wo for wo in work_orders}

    @beartype
    def put(self, work_order: WorkOrder) -> None:
        self._orders[work_order.id] = work_order

    @beartype
    def list_for_claim(self, claim_id: int) -> list[WorkOrder]:
        return sorted(
            (wo for wo in self._orders.values() if wo.claim_id == claim_id),
            key=lambda wo: wo.id,
        )


class InMemoryVehicles:
    def __init__(self, vehicles: Iterable[Vehicle] = ()) -> None:
        self._vehicles: dict[int, Vehicle] = {v.id: v for v in vehicles}

    @beartype
    def put(self, vehicle: Vehicle) -> None:
        self._vehicles[vehicle.id] = vehicle

    @beartype
    def get_vehicle(self, vehicle_id: int) -> Vehicle | None:
        return self._vehicles.get(vehicle_id)


class InMemoryWarrantyConditions:
    def __init__(self, conditions: Iterable[WarrantyCondition] = ()) -> None:
        self._conditions: list[WarrantyCondition] = list(conditions)

    @beartype
    def add(self, condition: WarrantyCondition) -> None:
        self._conditions.append(condition)

    @beartype
    def conditions_for_model(self, model_id: int) -> list[WarrantyCondition]:
        return [
            c for c in self._conditions if c.model_id is None or c.model_id == model_id
        ]


class InMemoryPartCatalog:
    def __init__(
        self,
        oem_prices: dict[int, Decimal] | None = None,
        third_party_prices: dict[int, Decimal] | None = None,
    ) -> None:
        self._oem = dict(oem_prices or {})
        self._third_party = dict(third_party_prices or {})

    @beartype
    def oem_unit_cost(self, part_id: int) -> Decimal | None:
        return self._oem.get(part_id)

    @beartype
    def third_party_unit_cost(self, part_id: int) -> Decimal | None:
        return self._third_party.get(part_id)
