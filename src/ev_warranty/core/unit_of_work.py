# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""In-memory claim store with write-intent locking and atomic commits.

The store stands in for the relational database behind the engine. A
``UnitOfWork`` reads rows under per-row re-entrant locks, stages every
write, and applies them in one step on ``commit()``. Leaving the context
without committing discards everything staged, so no error path can
expose a status change without its history row or the reverse.

Lock order is claim first, then technicians by ascending id.
"""

import threading
from collections.abc import Callable, Hashable, Iterable, Mapping
from datetime import datetime, timedelta, timezone
from types import TracebackType
from typing import Any

from beartype import beartype

from ..models.claim import (
    CancellationState,
    Claim,
    ClaimStatus,
    ClaimStatusHistory,
)
from ..models.technician import TechnicianProfile
from .config import Settings, get_settings
from .errors import (
    ConcurrencyConflictError,
    LockTimeoutError,
    StorageUnavailableError,
)
from .logging_utils import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


@beartype
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _LockRegistry:
    """Lazily created re-entrant lock per row key."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def get(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock


class InMemoryClaimStore:
    """Committed state shared by all units of work."""

    def __init__(
        self,
        *,
        lock_timeout: float | None = None,
        claim_number_prefix: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Create an empty store; unset options come from the global settings."""
        settings = get_settings()
        if lock_timeout is None:
            lock_timeout = settings.lock_timeout_seconds
        if lock_timeout <= 0:
            raise ValueError("lock_timeout must be positive")

        self.lock_timeout = lock_timeout
        self.claim_number_prefix = claim_number_prefix or settings.claim_number_prefix
        self.clock: Clock = clock or utc_now

        self._claims: dict[int, Claim] = {}
        self._history: dict[int, list[ClaimStatusHistory]] = {}
        self._technicians: dict[int, TechnicianProfile] = {}
        self._claim_seq = 0
        self._history_seq = 0
        self._commit_lock = threading.Lock()
        self._locks = _LockRegistry()
        self._available = True

    @classmethod
    @beartype
    def from_settings(
        cls, settings: Settings, *, clock: Clock | None = None
    ) -> "InMemoryClaimStore":
        """Create a store using the lock timeout and claim prefix of ``settings``."""
        return cls(
            lock_timeout=settings.lock_timeout_seconds,
            claim_number_prefix=settings.claim_number_prefix,
            clock=clock,
        )

    # Availability

    @beartype
    def set_available(self, available: bool) -> None:
        """Simulate the store going away or coming back."""
        self._available = available

    def ensure_available(self) -> None:
        if not self._available:
            raise StorageUnavailableError("Claim store is unavailable")

    @beartype
    def unit_of_work(self) -> "UnitOfWork":
        return UnitOfWork(self)

    # Committed reads

    @beartype
    def get_claim(self, claim_id: int) -> Claim | None:
        self.ensure_available()
        return self._claims.get(claim_id)

    @beartype
    def find_by_number(self, claim_number: str) -> Claim | None:
        self.ensure_available()
        for claim in self._claims.values():
            if claim.claim_number == claim_number:
                return claim
        return None

    @beartype
    def list_claims(self, status: ClaimStatus | None = None) -> list[Claim]:
        self.ensure_available()
        claims = sorted(self._claims.values(), key=lambda c: c.id)
        if status is None:
            return claims
        return [c for c in claims if c.status == status]

    @beartype
    def get_history(self, claim_id: int) -> tuple[ClaimStatusHistory, ...]:
        self.ensure_available()
        return tuple(self._history.get(claim_id, ()))

    @beartype
    def get_technician(self, user_id: int) -> TechnicianProfile | None:
        self.ensure_available()
        return self._technicians.get(user_id)

    @beartype
    def list_technicians(self) -> list[TechnicianProfile]:
        self.ensure_available()
        return sorted(self._technicians.values(), key=lambda t: t.user_id)

    # Directory seeding and restore

    @beartype
    def add_technician(self, profile: TechnicianProfile) -> None:
        """Register a technician profile from the directory."""
        self.ensure_available()
        with self._commit_lock:
            if profile.user_id in self._technicians:
                raise ValueError(f"Technician {profile.user_id} already registered")
            self._technicians[profile.user_id] = profile

    @beartype
    def restore(self, records: Iterable[Mapping[str, Any]]) -> list[Claim]:
        """Load persisted claim rows, rejecting unknown status codes."""
        self.ensure_available()
        restored: list[Claim] = []
        for record in records:
            status = ClaimStatus.from_code(str(record.get("status")))
            claim = Claim.model_validate({**record, "status": status})
            restored.append(claim)

        with self._commit_lock:
            for claim in restored:
                self._claims[claim.id] = claim
                self._claim_seq = max(self._claim_seq, claim.id)
        return restored

    # Internal helpers used by UnitOfWork

    def _lock_for(self, key: Hashable) -> threading.RLock:
        return self._locks.get(key)

    def _reserve_claim_identity(self, year: int) -> tuple[int, str]:
        with self._commit_lock:
            self._claim_seq += 1
            claim_id = self._claim_seq
        return claim_id, f"{self.claim_number_prefix}-{year:04d}-{claim_id:06d}"

    def _reserve_history_id(self) -> int:
        with self._commit_lock:
            self._history_seq += 1
            return self._history_seq

    def _last_history(self, claim_id: int) -> ClaimStatusHistory | None:
        rows = self._history.get(claim_id)
        return rows[-1] if rows else None


class UnitOfWork:
    """One transaction against the store.

    Example:
        ```python
        with store.unit_of_work() as uow:
            claim = uow.lock_claim(claim_id)
            uow.stage_claim(updated)
            uow.append_history(...)
            uow.commit()
        ```
    """

    def __init__(self, store: InMemoryClaimStore) -> None:
        self._store = store
        self._held: list[threading.RLock] = []
        self._base_versions: dict[int, int | None] = {}
        self._claims: dict[int, Claim] = {}
        self._technicians: dict[int, TechnicianProfile] = {}
        self._history: list[ClaimStatusHistory] = []
        self._committed = False

    def __enter__(self) -> "UnitOfWork":
        self._store.ensure_available()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if not self._committed and (self._claims or self._history):
                logger.debug(
                    "Rolling back unit of work with %d staged claim(s)",
                    len(self._claims),
                )
            self._claims.clear()
            self._technicians.clear()
            self._history.clear()
        finally:
            while self._held:
                self._held.pop().release()

    @property
    def committed(self) -> bool:
        return self._committed

    @property
    def clock(self) -> Clock:
        return self._store.clock

    def _acquire(self, key: Hashable) -> None:
        lock = self._store._lock_for(key)
        if not lock.acquire(timeout=self._store.lock_timeout):
            raise LockTimeoutError(f"Timed out waiting for lock on {key}")
        self._held.append(lock)

    # Locked reads

    @beartype
    def lock_claim(self, claim_id: int) -> Claim | None:
        """Read a claim under its write-intent lock."""
        self._store.ensure_available()
        self._acquire(("claim", claim_id))
        if claim_id in self._claims:
            return self._claims[claim_id]

        claim = self._store._claims.get(claim_id)
        self._base_versions.setdefault(
            claim_id, claim.version if claim is not None else None
        )
        return claim

    @beartype
    def lock_technician(self, user_id: int) -> TechnicianProfile | None:
        """Read a technician profile under its write-intent lock."""
        self._store.ensure_available()
        self._acquire(("technician", user_id))
        if user_id in self._technicians:
            return self._technicians[user_id]
        return self._store._technicians.get(user_id)

    @beartype
    def reserve_claim_identity(self) -> tuple[int, str]:
        """Allocate an id and claim number and lock the new row."""
        claim_id, number = self._store._reserve_claim_identity(self.clock().year)
        self._acquire(("claim", claim_id))
        self._base_versions[claim_id] = None
        return claim_id, number

    # Staged writes

    @beartype
    def stage_claim(self, claim: Claim) -> Claim:
        """Stage a claim write, bumping its version."""
        if claim.id not in self._base_versions:
            raise RuntimeError(f"Claim {claim.id} was not locked in this unit of work")
        base = self._base_versions[claim.id]
        staged = claim.model_copy(update={"version": (base or 0) + 1})
        self._claims[claim.id] = staged
        return staged

    @beartype
    def stage_technician(self, profile: TechnicianProfile) -> TechnicianProfile:
        self._technicians[profile.user_id] = profile
        return profile

    @beartype
    def append_history(
        self,
        claim: Claim,
        *,
        actor_id: int,
        command: str,
        note: str | None = None,
    ) -> ClaimStatusHistory:
        """Stage a history row; timestamps strictly increase per claim."""
        previous = self._last_staged_history(claim.id) or self._store._last_history(
            claim.id
        )
        changed_at = self.clock()
        if previous is not None and changed_at <= previous.changed_at:
            changed_at = previous.changed_at + timedelta(microseconds=1)

        row = ClaimStatusHistory(
            id=self._store._reserve_history_id(),
            claim_id=claim.id,
            status=claim.status,
            label=claim.status.label,
            command=command,
            changed_at=changed_at,
            changed_by=actor_id,
            note=note,
            cancellation_state=(
                claim.cancellation.state
                if claim.cancellation is not None
                else CancellationState.NONE
            ),
        )
        self._history.append(row)
        return row

    def _last_staged_history(self, claim_id: int) -> ClaimStatusHistory | None:
        for row in reversed(self._history):
            if row.claim_id == claim_id:
                return row
        return None

    def commit(self) -> None:
        """Apply all staged writes atomically."""
        if self._committed:
            raise RuntimeError("Unit of work already committed")
        self._store.ensure_available()

        store = self._store
        with store._commit_lock:
            for claim_id in self._claims:
                current = store._claims.get(claim_id)
                current_version = current.version if current is not None else None
                if current_version != self._base_versions.get(claim_id):
                    raise ConcurrencyConflictError(
                        f"Claim {claim_id} changed since it was read"
                    )

            store._claims.update(self._claims)
            store._technicians.update(self._technicians)
            for row in self._history:
                store._history.setdefault(row.claim_id, []).append(row)

        self._committed = True
