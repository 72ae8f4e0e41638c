"""Unit tests for transaction and conflict-retry helpers."""

import threading

import pytest

from ev_warranty.core.config import Settings
from ev_warranty.core.errors import EngineError, ErrorKind
from ev_warranty.core.result_types import Err, Ok
from ev_warranty.models import ClaimStatus
from ev_warranty.services.transaction_helpers import (
    run_in_transaction,
    with_retry_on_conflict,
)
from tests.fixtures.test_data import TestDataFactory


@pytest.fixture
def settings() -> Settings:
    """Short lock timeout so a held claim lock conflicts quickly."""
    return Settings(lock_timeout_seconds=0.05)


class _ClaimLockHolder:
    """Holds one claim's write-intent lock from another thread."""

    def __init__(self, store, claim_id: int) -> None:
        self._store = store
        self._claim_id = claim_id
        self._held = threading.Event()
        self._release = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        with self._store.unit_of_work() as uow:
            uow.lock_claim(self._claim_id)
            self._held.set()
            self._release.wait(timeout=5)

    def start(self) -> None:
        self._thread.start()
        assert self._held.wait(timeout=5)

    def release(self) -> None:
        self._release.set()
        self._thread.join(timeout=5)


class TestRunInTransaction:
    """Test commit and rollback around an operation."""

    def test_lock_timeout_becomes_conflict(self, engine, store, sc_staff):
        """Test a lost lock race is reported, not raised."""
        draft = engine.create_draft(sc_staff, TestDataFactory.draft_request()).unwrap()
        holder = _ClaimLockHolder(store, draft.id)
        holder.start()
        try:
            result = run_in_transaction(
                store, lambda uow: Ok(uow.lock_claim(draft.id))
            )
        finally:
            holder.release()

        assert result.unwrap_err().kind == ErrorKind.CONCURRENCY_CONFLICT


class TestRetryOnConflict:
    """Test callers can safely retry lost lock races."""

    def test_retry_succeeds_once_lock_is_released(self, engine, store, sc_staff):
        """Test the first attempt conflicts and the retry applies to fresh state."""
        draft = engine.create_draft(sc_staff, TestDataFactory.draft_request()).unwrap()
        holder = _ClaimLockHolder(store, draft.id)
        holder.start()
        attempts = []

        def _submit():
            result = engine.submit_intake(draft.id, sc_staff)
            attempts.append(result)
            if len(attempts) == 1:
                holder.release()
            return result

        result = with_retry_on_conflict(_submit)

        assert len(attempts) == 2
        assert attempts[0].unwrap_err().kind == ErrorKind.CONCURRENCY_CONFLICT
        assert result.unwrap().status == ClaimStatus.OPEN
        assert store.get_claim(draft.id).status == ClaimStatus.OPEN
        assert [row.status for row in store.get_history(draft.id)] == [
            ClaimStatus.DRAFT,
            ClaimStatus.OPEN,
        ]

    def test_retry_sees_state_committed_meanwhile(self, engine, store, sc_staff):
        """Test a retry re-checks guards against what the winner committed."""
        draft = engine.create_draft(sc_staff, TestDataFactory.draft_request()).unwrap()
        holder = _ClaimLockHolder(store, draft.id)
        holder.start()
        attempts = []

        def _submit():
            result = engine.submit_intake(draft.id, sc_staff)
            attempts.append(result)
            if len(attempts) == 1:
                holder.release()
                engine.submit_intake(draft.id, sc_staff).unwrap()
            return result

        result = with_retry_on_conflict(_submit)

        assert len(attempts) == 2
        assert result.unwrap_err().kind == ErrorKind.INVALID_TRANSITION
        assert len(store.get_history(draft.id)) == 2

    def test_gives_up_after_max_attempts(self, engine, store, sc_staff):
        draft = engine.create_draft(sc_staff, TestDataFactory.draft_request()).unwrap()
        holder = _ClaimLockHolder(store, draft.id)
        holder.start()
        attempts = []

        def _submit():
            result = engine.submit_intake(draft.id, sc_staff)
            attempts.append(result)
            return result

        try:
            result = with_retry_on_conflict(_submit, max_attempts=2)
        finally:
            holder.release()

        assert len(attempts) == 2
        assert result.unwrap_err().kind == ErrorKind.CONCURRENCY_CONFLICT
        assert store.get_claim(draft.id).status == ClaimStatus.DRAFT

    @pytest.mark.parametrize(
        "error",
        [
            EngineError.not_found("Claim", 99),
            EngineError.invalid_transition("INVALID_TRANSITION", "Claim is closed"),
        ],
    )
    def test_other_failures_are_not_retried(self, error):
        """Test only concurrency conflicts trigger another attempt."""
        calls = []

        def _fail():
            calls.append(1)
            return Err(error)

        result = with_retry_on_conflict(_fail, max_attempts=5)

        assert len(calls) == 1
        assert result.unwrap_err() is error

    def test_success_is_not_retried(self):
        calls = []

        def _ok():
            calls.append(1)
            return Ok("done")

        assert with_retry_on_conflict(_ok).unwrap() == "done"
        assert len(calls) == 1

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="at least 1"):
            with_retry_on_conflict(lambda: Ok(1), max_attempts=0)
