"""Unit tests for technician matching and workload accounting."""

from datetime import timedelta
from decimal import Decimal

import pytest

from ev_warranty.core.errors import ErrorKind
from ev_warranty.models import CertificationLevel, TechnicianStatus
from ev_warranty.services.assignment import (
    AssignmentCoordinator,
    can_assign_work,
    decrement_workload,
    find_best_available_technician,
    increment_workload,
    record_completion,
)
from tests.fixtures.test_data import (
    BATTERY_JUNIOR_ID,
    BATTERY_SENIOR_ID,
    FIXED_NOW,
    MOTOR_EXPERT_ID,
    TestDataFactory,
)


class TestCanAssignWork:
    """Test assignment eligibility."""

    def test_full_technician_with_future_slot(self):
        """Test a full technician only qualifies from their next free slot."""
        free_at = FIXED_NOW + timedelta(hours=2)
        profile = TestDataFactory.technician(
            current_workload=5, max_workload=5, available_from=free_at
        )

        assert profile.status == TechnicianStatus.BUSY
        assert can_assign_work(profile, FIXED_NOW) is False
        assert can_assign_work(profile, free_at) is True
        assert can_assign_work(profile, free_at + timedelta(minutes=1)) is True

    def test_full_technician_without_slot(self):
        """Test no free slot means no assignment."""
        profile = TestDataFactory.technician(current_workload=5, max_workload=5)
        assert can_assign_work(profile, FIXED_NOW + timedelta(days=30)) is False

    def test_spare_capacity(self):
        """Test any start time works with spare capacity."""
        assert can_assign_work(TestDataFactory.technician(current_workload=4), FIXED_NOW)

    def test_inactive_never_assignable(self):
        """Test inactive technicians are skipped regardless of capacity."""
        profile = TestDataFactory.technician(active=False)
        assert can_assign_work(profile, FIXED_NOW) is False


class TestWorkloadCounters:
    """Test increment and decrement bounds."""

    def test_increment_to_max_marks_busy(self):
        """Test the last unit flips status to BUSY."""
        profile = TestDataFactory.technician(
            current_workload=4, available_from=FIXED_NOW
        )

        bumped = increment_workload(profile).unwrap()

        assert bumped.current_workload == 5
        assert bumped.status == TechnicianStatus.BUSY
        assert bumped.available_from is None

    def test_increment_at_max_refused(self):
        """Test workload never exceeds the maximum."""
        profile = TestDataFactory.technician(current_workload=5)

        result = increment_workload(profile)

        assert result.is_err()
        assert result.unwrap_err().kind == ErrorKind.CAPACITY_UNAVAILABLE
        assert result.unwrap_err().code == "TECHNICIAN_AT_CAPACITY"

    def test_decrement_sets_free_slot(self):
        """Test releasing capacity records when it became free."""
        profile = TestDataFactory.technician(current_workload=5)

        released = decrement_workload(profile, FIXED_NOW)

        assert released.current_workload == 4
        assert released.available_from == FIXED_NOW
        assert released.status == TechnicianStatus.AVAILABLE

    def test_decrement_floors_at_zero(self, caplog):
        """Test a release at zero stays at zero and is logged."""
        profile = TestDataFactory.technician(current_workload=0)

        with caplog.at_level("WARNING"):
            released = decrement_workload(profile, FIXED_NOW)

        assert released.current_workload == 0
        assert "already at zero" in caplog.text

    def test_sequence_stays_in_range(self):
        """Test any mix of increments and decrements stays within bounds."""
        profile = TestDataFactory.technician(current_workload=0, max_workload=3)
        for step in "++++-++--------+":
            if step == "+":
                result = increment_workload(profile)
                profile = result.unwrap_or(profile)
            else:
                profile = decrement_workload(profile, FIXED_NOW)
            assert 0 <= profile.current_workload <= profile.max_workload
        assert profile.current_workload == 1

    def test_record_completion_running_average(self):
        """Test the average completion hours fold in each job."""
        profile = TestDataFactory.technician(
            total_completed_work_orders=3, average_completion_hours=Decimal("4.00")
        )

        updated = record_completion(profile, Decimal("2.00"))

        assert updated.total_completed_work_orders == 4
        assert updated.average_completion_hours == Decimal("3.50")


class TestFindBestAvailableTechnician:
    """Test technician matching."""

    def test_lowest_workload_then_fastest(self):
        """Test workload first, average completion hours second."""
        busy_fast = TestDataFactory.technician(
            1, current_workload=2, average_completion_hours=Decimal("1.00")
        )
        idle_slow = TestDataFactory.technician(
            2, current_workload=0, average_completion_hours=Decimal("8.00")
        )
        idle_fast = TestDataFactory.technician(
            3, current_workload=0, average_completion_hours=Decimal("3.00")
        )

        best = find_best_available_technician(
            [busy_fast, idle_slow, idle_fast], "battery"
        ).unwrap()

        assert best.user_id == 3

    def test_minimum_level_filters(self):
        """Test certification below the minimum is excluded."""
        junior = TestDataFactory.technician(1, level=CertificationLevel.JUNIOR)
        expert = TestDataFactory.technician(
            2, level=CertificationLevel.EXPERT, current_workload=3
        )

        best = find_best_available_technician(
            [junior, expert], "Battery", CertificationLevel.SENIOR
        ).unwrap()

        assert best.user_id == 2

    def test_no_match(self):
        """Test no candidate is a capacity error."""
        full = TestDataFactory.technician(1, current_workload=5)

        result = find_best_available_technician([full], "Battery")

        assert result.is_err()
        assert result.unwrap_err().code == "NO_TECHNICIAN_AVAILABLE"


class TestAssignmentCoordinator:
    """Test store-backed workload changes."""

    def test_increment_and_decrement_commit(self, store):
        """Test each call commits one workload change."""
        coordinator = AssignmentCoordinator(store)

        assert coordinator.increment_workload(BATTERY_SENIOR_ID).unwrap().current_workload == 1
        assert store.get_technician(BATTERY_SENIOR_ID).current_workload == 1

        assert coordinator.decrement_workload(BATTERY_SENIOR_ID).unwrap().current_workload == 0
        assert store.get_technician(BATTERY_SENIOR_ID).current_workload == 0

    def test_increment_refused_leaves_store_untouched(self, store):
        """Test a refused increment does not commit."""
        coordinator = AssignmentCoordinator(store)
        assert coordinator.increment_workload(MOTOR_EXPERT_ID).is_ok()

        result = coordinator.increment_workload(MOTOR_EXPERT_ID)

        assert result.unwrap_err().kind == ErrorKind.CAPACITY_UNAVAILABLE
        assert store.get_technician(MOTOR_EXPERT_ID).current_workload == 1

    def test_unknown_technician(self, store):
        """Test missing technicians are NOT_FOUND and never assignable."""
        coordinator = AssignmentCoordinator(store)

        assert coordinator.increment_workload(999).unwrap_err().code == "TECHNICIAN_NOT_FOUND"
        assert coordinator.can_assign_work(999, FIXED_NOW) is False

    def test_find_best_reads_directory(self, store):
        """Test matching runs against the seeded directory."""
        coordinator = AssignmentCoordinator(store)

        best = coordinator.find_best_available_technician("Battery").unwrap()
        senior = coordinator.find_best_available_technician(
            "Battery", CertificationLevel.SENIOR
        ).unwrap()

        # equal workload, senior is faster on average
        assert best.user_id == BATTERY_SENIOR_ID
        assert senior.user_id == BATTERY_SENIOR_ID
        assert coordinator.can_assign_work(BATTERY_JUNIOR_ID, FIXED_NOW)

    def test_full_technician_without_slot_refused(self, store, clock):
        """Test a full technician with no known free slot cannot be reserved."""
        coordinator = AssignmentCoordinator(store)
        coordinator.increment_workload(MOTOR_EXPERT_ID)
        assert store.get_technician(MOTOR_EXPERT_ID).status == TechnicianStatus.BUSY

        with store.unit_of_work() as uow:
            refused = coordinator.reserve(uow, MOTOR_EXPERT_ID, clock())

        assert refused.unwrap_err().code == "TECHNICIAN_UNAVAILABLE"

    def test_future_dated_reservation_defers_capacity(self, store, clock):
        """Test a reservation from the next free slot holds no capacity yet."""
        free_at = clock() + timedelta(hours=1)
        store.add_technician(
            TestDataFactory.technician(
                900, current_workload=2, max_workload=2, available_from=free_at
            )
        )
        coordinator = AssignmentCoordinator(store)

        with store.unit_of_work() as uow:
            early = coordinator.reserve(uow, 900, clock())
            later = coordinator.reserve(uow, 900, free_at)
            uow.commit()

        assert early.is_err()
        reservation = later.unwrap()
        assert reservation.holds_capacity is False
        assert reservation.scheduled_start == free_at
        assert store.get_technician(900).current_workload == 2

    def test_release_records_completion(self, store):
        """Test releasing with hours updates completion statistics."""
        coordinator = AssignmentCoordinator(store)
        coordinator.increment_workload(BATTERY_SENIOR_ID)

        with store.unit_of_work() as uow:
            released = coordinator.release(
                uow, BATTERY_SENIOR_ID, completed_hours=Decimal("2.00")
            ).unwrap()
            uow.commit()

        assert released.current_workload == 0
        assert released.total_completed_work_orders == 1
        assert store.get_technician(BATTERY_SENIOR_ID).average_completion_hours == Decimal(
            "2.00"
        )
