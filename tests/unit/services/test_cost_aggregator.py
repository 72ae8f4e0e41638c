"""Unit tests for claim cost aggregation ensuring penny precision."""

from decimal import Decimal

import pytest

from ev_warranty.core.errors import ErrorKind
from ev_warranty.models import (
    ClaimCost,
    RepairConfiguration,
    RepairType,
    WorkOrderStatus,
)
from ev_warranty.services.collaborators import InMemoryPartCatalog, InMemoryWorkOrders
from ev_warranty.services.cost_aggregator import ClaimCostAggregator, round_money
from tests.fixtures.test_data import OEM_PART_ID, THIRD_PARTY_PART_ID, TestDataFactory


@pytest.fixture
def catalog() -> InMemoryPartCatalog:
    return InMemoryPartCatalog(
        oem_prices={OEM_PART_ID: Decimal("120.00")},
        third_party_prices={THIRD_PARTY_PART_ID: Decimal("45.555")},
    )


class TestRoundMoney:
    """Test half-up rounding."""

    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            ("0.005", "0.01"),
            ("2.675", "2.68"),
            ("1.004", "1.00"),
            ("10", "10.00"),
        ],
    )
    def test_half_up(self, amount, expected):
        """Test halves round away from zero."""
        assert round_money(Decimal(amount)) == Decimal(expected)


class TestClaimCostAggregator:
    """Test aggregation across work orders, parts and service lines."""

    def test_sc_repair_estimated_total(self, catalog):
        """Test SC totals are service lines plus third-party parts."""
        orders = InMemoryWorkOrders(
            [
                TestDataFactory.work_order(
                    1, 1, labor_hours="1.25", oem_quantity=1, third_party_quantity=1
                ),
                TestDataFactory.work_order(2, 1, labor_hours="2.50", third_party_quantity=2),
            ]
        )
        claim = TestDataFactory.claim(
            repair_configuration=RepairConfiguration(
                repair_type=RepairType.SC_REPAIR,
                service_catalog_items=(
                    TestDataFactory.service_line(1, unit_price="80.00"),
                    TestDataFactory.service_line(2, quantity=3, unit_price="19.99"),
                ),
            )
        )

        result = ClaimCostAggregator(orders, catalog).aggregate(claim)

        assert result.is_ok()
        breakdown = result.unwrap()
        assert breakdown.total_labor_hours == Decimal("3.75")
        assert breakdown.total_oem_parts_cost == Decimal("120.00")
        # 45.555 -> 45.56 per line, 91.11 for the quantity-two line
        assert breakdown.total_third_party_parts_cost == Decimal("136.67")
        assert breakdown.total_service_cost == Decimal("139.97")
        assert breakdown.total_estimated_cost == Decimal("276.64")
        assert breakdown.authoritative_cost == Decimal("276.64")

    def test_evm_repair_uses_company_paid_cost(self, catalog):
        """Test EVM totals are never computed, only entered."""
        orders = InMemoryWorkOrders([TestDataFactory.work_order(1, 1, oem_quantity=2)])
        claim = TestDataFactory.claim(
            repair_configuration=RepairConfiguration(repair_type=RepairType.EVM_REPAIR),
            cost=ClaimCost(company_paid_cost=Decimal("999.99")),
        )

        breakdown = ClaimCostAggregator(orders, catalog).aggregate(claim).unwrap()

        assert breakdown.total_oem_parts_cost == Decimal("240.00")
        assert breakdown.total_estimated_cost is None
        assert breakdown.authoritative_cost == Decimal("999.99")

    def test_cancelled_work_orders_ignored(self, catalog):
        """Test cancelled orders contribute no hours or parts."""
        orders = InMemoryWorkOrders(
            [
                TestDataFactory.work_order(1, 1, labor_hours="2.00"),
                TestDataFactory.work_order(
                    2,
                    1,
                    status=WorkOrderStatus.CANCELLED,
                    labor_hours="9.00",
                    oem_quantity=5,
                ),
            ]
        )
        claim = TestDataFactory.claim()

        breakdown = ClaimCostAggregator(orders, catalog).aggregate(claim).unwrap()

        assert breakdown.total_labor_hours == Decimal("2.00")
        assert breakdown.total_oem_parts_cost == Decimal("0.00")

    def test_unpriced_part_fails(self):
        """Test a part missing from the catalog is an error, not free."""
        orders = InMemoryWorkOrders([TestDataFactory.work_order(1, 1, oem_quantity=1)])

        result = ClaimCostAggregator(orders, InMemoryPartCatalog()).aggregate(
            TestDataFactory.claim()
        )

        assert result.is_err()
        assert result.unwrap_err().kind == ErrorKind.NOT_FOUND
        assert result.unwrap_err().code == "PART_NOT_FOUND"

    def test_refresh_cost_keeps_entered_amounts(self, catalog):
        """Test refresh preserves warranty and company-paid figures."""
        orders = InMemoryWorkOrders([TestDataFactory.work_order(1, 1, labor_hours="1.50")])
        claim = TestDataFactory.claim(
            cost=ClaimCost(
                warranty_cost=Decimal("50.00"), company_paid_cost=Decimal("400.00")
            )
        )

        cost = ClaimCostAggregator(orders, catalog).refresh_cost(claim).unwrap()

        assert cost.warranty_cost == Decimal("50.00")
        assert cost.company_paid_cost == Decimal("400.00")
        assert cost.total_labor_hours == Decimal("1.50")

    def test_requires_collaborators(self, catalog):
        """Test dependency validation."""
        with pytest.raises(ValueError, match="Work order query required"):
            ClaimCostAggregator(object(), catalog)  # type: ignore[arg-type]
