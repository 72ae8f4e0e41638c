"""Shared fixtures for the claim lifecycle engine tests.

Every fixture wires the real engine against in-memory collaborators and a
deterministic clock.
"""

from collections.abc import Callable, Generator
from datetime import date
from decimal import Decimal

import pytest

from ev_warranty.core.config import Settings, clear_settings_cache
from ev_warranty.core.result_types import Ok
from ev_warranty.core.unit_of_work import InMemoryClaimStore
from ev_warranty.models import (
    ActorRole,
    AssignmentRequest,
    CertificationLevel,
    Claim,
)
from ev_warranty.models.user import Actor
from ev_warranty.services.collaborators import (
    InMemoryPartCatalog,
    InMemoryVehicles,
    InMemoryWarrantyConditions,
)
from ev_warranty.services.state_machine import ClaimLifecycleStateMachine
from tests.fixtures.test_data import (
    BATTERY_JUNIOR_ID,
    BATTERY_SENIOR_ID,
    MOTOR_EXPERT_ID,
    OEM_PART_ID,
    OUT_OF_WARRANTY_VEHICLE_ID,
    THIRD_PARTY_PART_ID,
    FakeClock,
    FlakyWorkOrders,
    RecordingNotificationSink,
    TestDataFactory,
)


@pytest.fixture(autouse=True)
def _reset_settings() -> Generator[None, None, None]:
    """Keep the cached settings from leaking between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(lock_timeout_seconds=2.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(settings: Settings, clock: FakeClock) -> InMemoryClaimStore:
    """Claim store seeded with three technicians."""
    store = InMemoryClaimStore.from_settings(settings, clock=clock)
    store.add_technician(TestDataFactory.technician(BATTERY_SENIOR_ID))
    store.add_technician(
        TestDataFactory.technician(
            BATTERY_JUNIOR_ID,
            level=CertificationLevel.JUNIOR,
            average_completion_hours=Decimal("6.00"),
        )
    )
    store.add_technician(
        TestDataFactory.technician(
            MOTOR_EXPERT_ID,
            specialization="Motor",
            level=CertificationLevel.EXPERT,
            max_workload=1,
        )
    )
    return store


@pytest.fixture
def vehicles() -> InMemoryVehicles:
    return InMemoryVehicles(
        [
            TestDataFactory.vehicle(),
            TestDataFactory.vehicle(
                OUT_OF_WARRANTY_VEHICLE_ID,
                registration_date=date(2019, 1, 1),
                mileage_km=150_000,
            ),
        ]
    )


@pytest.fixture
def conditions() -> InMemoryWarrantyConditions:
    return InMemoryWarrantyConditions([TestDataFactory.condition()])


@pytest.fixture
def work_orders() -> FlakyWorkOrders:
    return FlakyWorkOrders()


@pytest.fixture
def parts() -> InMemoryPartCatalog:
    return InMemoryPartCatalog(
        oem_prices={OEM_PART_ID: Decimal("120.00")},
        third_party_prices={THIRD_PARTY_PART_ID: Decimal("45.555")},
    )


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def engine(
    store: InMemoryClaimStore,
    work_orders: FlakyWorkOrders,
    vehicles: InMemoryVehicles,
    conditions: InMemoryWarrantyConditions,
    parts: InMemoryPartCatalog,
    sink: RecordingNotificationSink,
    settings: Settings,
) -> ClaimLifecycleStateMachine:
    return ClaimLifecycleStateMachine(
        store,
        work_orders=work_orders,
        vehicles=vehicles,
        conditions=conditions,
        parts=parts,
        notifications=sink,
        settings=settings,
    )


@pytest.fixture
def sc_staff() -> Actor:
    return TestDataFactory.actor(100, ActorRole.SC_STAFF, "sc.staff")


@pytest.fixture
def technician() -> Actor:
    return TestDataFactory.actor(BATTERY_SENIOR_ID, ActorRole.SC_TECHNICIAN, "tech.senior")


@pytest.fixture
def other_technician() -> Actor:
    return TestDataFactory.actor(BATTERY_JUNIOR_ID, ActorRole.SC_TECHNICIAN, "tech.junior")


@pytest.fixture
def evm_staff() -> Actor:
    return TestDataFactory.actor(200, ActorRole.EVM_STAFF, "evm.reviewer")


@pytest.fixture
def admin() -> Actor:
    return TestDataFactory.actor(1, ActorRole.ADMIN, "admin")


@pytest.fixture
def open_claim(
    engine: ClaimLifecycleStateMachine, sc_staff: Actor
) -> Callable[..., Claim]:
    """Create a claim and move it through intake to OPEN."""

    def _open(vehicle_id: int = 1) -> Claim:
        draft = engine.create_draft(
            sc_staff, TestDataFactory.draft_request(vehicle_id=vehicle_id)
        )
        assert isinstance(draft, Ok), draft
        opened = engine.submit_intake(draft.value.id, sc_staff)
        assert isinstance(opened, Ok), opened
        return opened.value

    return _open


@pytest.fixture
def diagnosed_evm_claim(
    engine: ClaimLifecycleStateMachine,
    open_claim: Callable[..., Claim],
    sc_staff: Actor,
    technician: Actor,
) -> Callable[..., Claim]:
    """OPEN claim with a technician assigned and an EVM diagnosis recorded."""

    def _diagnosed(vehicle_id: int = 1) -> Claim:
        claim = open_claim(vehicle_id)
        assigned = engine.assign_technician(
            claim.id, sc_staff, AssignmentRequest(technician_id=BATTERY_SENIOR_ID)
        )
        assert isinstance(assigned, Ok), assigned
        diagnosed = engine.update_diagnostic(
            claim.id, technician, TestDataFactory.evm_diagnostic()
        )
        assert isinstance(diagnosed, Ok), diagnosed
        return diagnosed.value

    return _diagnosed


@pytest.fixture
def pending_claim(
    engine: ClaimLifecycleStateMachine,
    diagnosed_evm_claim: Callable[..., Claim],
    sc_staff: Actor,
) -> Callable[[], Claim]:
    """Claim waiting for EVM approval."""

    def _pending() -> Claim:
        claim = diagnosed_evm_claim()
        submitted = engine.submit_to_evm(claim.id, sc_staff)
        assert isinstance(submitted, Ok), submitted
        return submitted.value

    return _pending
