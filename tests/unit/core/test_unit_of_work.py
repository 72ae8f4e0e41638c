"""Unit tests for the in-memory claim store and its units of work."""

import threading
from datetime import timedelta

import pytest

from ev_warranty.core.errors import (
    ConcurrencyConflictError,
    CorruptClaimStateError,
    LockTimeoutError,
    StorageUnavailableError,
)
from ev_warranty.core.unit_of_work import InMemoryClaimStore
from ev_warranty.models import ClaimStatus
from tests.fixtures.test_data import FIXED_NOW, FakeClock, TestDataFactory


@pytest.fixture
def bare_store(clock: FakeClock) -> InMemoryClaimStore:
    return InMemoryClaimStore(lock_timeout=0.2, clock=clock)


def _create(store: InMemoryClaimStore, status: ClaimStatus = ClaimStatus.DRAFT):
    with store.unit_of_work() as uow:
        claim_id, number = uow.reserve_claim_identity()
        claim = TestDataFactory.claim(claim_id, claim_number=number, status=status)
        staged = uow.stage_claim(claim)
        uow.append_history(staged, actor_id=100, command="createDraft")
        uow.commit()
    return staged


class TestClaimIdentity:
    """Test claim id and number allocation."""

    def test_claim_numbers_are_sequential_and_formatted(self, bare_store):
        """Test numbers follow PREFIX-YYYY-NNNNNN with the clock's year."""
        first = _create(bare_store)
        second = _create(bare_store)

        assert first.claim_number == "CLM-2025-000001"
        assert second.claim_number == "CLM-2025-000002"
        assert bare_store.find_by_number("CLM-2025-000002") == second

    def test_each_save_bumps_version(self, bare_store):
        """Test the optimistic version increases on every commit."""
        claim = _create(bare_store)
        assert claim.version == 1

        with bare_store.unit_of_work() as uow:
            locked = uow.lock_claim(claim.id)
            staged = uow.stage_claim(locked.model_copy(update={"ready_for_submission": True}))
            uow.commit()

        assert staged.version == 2
        assert bare_store.get_claim(claim.id).version == 2


class TestAtomicity:
    """Test staged writes are all-or-nothing."""

    def test_exit_without_commit_discards_everything(self, bare_store):
        """Test a rolled-back unit leaves no claim and no history."""
        with bare_store.unit_of_work() as uow:
            claim_id, number = uow.reserve_claim_identity()
            claim = TestDataFactory.claim(claim_id, claim_number=number)
            uow.append_history(uow.stage_claim(claim), actor_id=100, command="createDraft")

        assert bare_store.get_claim(claim_id) is None
        assert bare_store.get_history(claim_id) == ()

    def test_exception_rolls_back_and_releases_locks(self, bare_store):
        """Test an exception inside the unit leaves the lock free."""
        claim = _create(bare_store)

        with pytest.raises(RuntimeError, match="handler blew up"):
            with bare_store.unit_of_work() as uow:
                locked = uow.lock_claim(claim.id)
                uow.stage_claim(locked.model_copy(update={"status": ClaimStatus.OPEN}))
                raise RuntimeError("handler blew up")

        assert bare_store.get_claim(claim.id).status == ClaimStatus.DRAFT
        with bare_store.unit_of_work() as uow:
            assert uow.lock_claim(claim.id) is not None

    def test_stage_requires_lock(self, bare_store):
        """Test a claim must be locked in the same unit before staging."""
        claim = _create(bare_store)
        with bare_store.unit_of_work() as uow:
            with pytest.raises(RuntimeError, match="not locked"):
                uow.stage_claim(claim)

    def test_double_commit_rejected(self, bare_store):
        """Test a unit of work commits at most once."""
        with bare_store.unit_of_work() as uow:
            uow.commit()
            with pytest.raises(RuntimeError, match="already committed"):
                uow.commit()


class TestHistoryOrdering:
    """Test history timestamps."""

    def test_history_timestamps_strictly_increase_with_frozen_clock(self, bare_store):
        """Test rows written at the same instant still order strictly."""
        claim = _create(bare_store)
        for status in (ClaimStatus.OPEN, ClaimStatus.IN_PROGRESS):
            with bare_store.unit_of_work() as uow:
                locked = uow.lock_claim(claim.id)
                staged = uow.stage_claim(locked.model_copy(update={"status": status}))
                uow.append_history(staged, actor_id=100, command="test")
                uow.commit()

        rows = bare_store.get_history(claim.id)
        assert [row.status for row in rows] == [
            ClaimStatus.DRAFT,
            ClaimStatus.OPEN,
            ClaimStatus.IN_PROGRESS,
        ]
        stamps = [row.changed_at for row in rows]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 3
        assert stamps[0] == FIXED_NOW
        assert stamps[2] - stamps[0] == timedelta(microseconds=2)


class TestLocking:
    """Test write-intent locks and optimistic checks."""

    def test_lock_timeout_raises(self, bare_store):
        """Test a second thread gives up after the configured timeout."""
        claim = _create(bare_store)
        held = threading.Event()
        release = threading.Event()

        def _holder():
            with bare_store.unit_of_work() as uow:
                uow.lock_claim(claim.id)
                held.set()
                release.wait(timeout=5)

        thread = threading.Thread(target=_holder)
        thread.start()
        held.wait(timeout=5)
        try:
            with pytest.raises(LockTimeoutError):
                with bare_store.unit_of_work() as uow:
                    uow.lock_claim(claim.id)
        finally:
            release.set()
            thread.join()

    def test_version_mismatch_conflicts(self, bare_store):
        """Test a commit against a row changed underneath it is refused."""
        claim = _create(bare_store)

        with bare_store.unit_of_work() as uow:
            locked = uow.lock_claim(claim.id)
            uow.stage_claim(locked.model_copy(update={"status": ClaimStatus.OPEN}))
            # simulate a writer that bypassed the lock
            bare_store._claims[claim.id] = claim.model_copy(update={"version": 7})
            with pytest.raises(ConcurrencyConflictError):
                uow.commit()


class TestAvailabilityAndRestore:
    """Test fatal storage conditions."""

    def test_unavailable_store_raises(self, bare_store):
        """Test every access fails once the store is down."""
        bare_store.set_available(False)

        with pytest.raises(StorageUnavailableError):
            bare_store.unit_of_work().__enter__()
        with pytest.raises(StorageUnavailableError):
            bare_store.get_claim(1)

    def test_restore_rejects_unknown_status(self, bare_store):
        """Test an unknown persisted status code is corruption."""
        record = TestDataFactory.claim(1).model_dump()
        record["status"] = "ON_HOLD"

        with pytest.raises(CorruptClaimStateError, match="ON_HOLD"):
            bare_store.restore([record])

    def test_restore_loads_rows_and_advances_sequence(self, bare_store):
        """Test restored claims are readable and new ids continue after them."""
        record = TestDataFactory.claim(41, claim_number="CLM-2024-000041").model_dump()
        record["status"] = "OPEN"

        restored = bare_store.restore([record])

        assert restored[0].status == ClaimStatus.OPEN
        assert bare_store.get_claim(41) == restored[0]
        assert _create(bare_store).id == 42

    def test_duplicate_technician_rejected(self, bare_store):
        """Test the technician directory is keyed by user id."""
        bare_store.add_technician(TestDataFactory.technician(501))
        with pytest.raises(ValueError, match="already registered"):
            bare_store.add_technician(TestDataFactory.technician(501))
