# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Error taxonomy for the claim lifecycle engine.

Expected failures travel as ``EngineError`` values inside ``Err``. The
exception classes below are for conditions the engine cannot handle: they
propagate to the caller after the unit of work has rolled back.
"""

from enum import Enum
from typing import Any

from attrs import field, frozen
from beartype import beartype


class ErrorKind(str, Enum):
    """Categories of rejected commands."""

    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    CAPACITY_UNAVAILABLE = "CAPACITY_UNAVAILABLE"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    @property
    def retryable(self) -> bool:
        """Only lost lock races are safe to retry unchanged."""
        return self is ErrorKind.CONCURRENCY_CONFLICT


@frozen
class MissingRequirement:
    """One unmet item of a readiness checklist."""

    code: str
    message: str

    @beartype
    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


@frozen
class EngineError:
    """A command rejected for a business reason."""

    kind: ErrorKind
    code: str
    message: str
    missing: tuple[MissingRequirement, ...] = field(default=())

    @property
    def missing_codes(self) -> tuple[str, ...]:
        return tuple(item.code for item in self.missing)

    @beartype
    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and logs."""
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "missing": [item.to_dict() for item in self.missing],
        }

    def __str__(self) -> str:
        return f"{self.kind.value}[{self.code}]: {self.message}"

    @classmethod
    @beartype
    def not_found(cls, entity: str, identifier: object) -> "EngineError":
        return cls(
            kind=ErrorKind.NOT_FOUND,
            code=f"{entity.upper()}_NOT_FOUND",
            message=f"{entity} {identifier} not found",
        )

    @classmethod
    @beartype
    def invalid_transition(
        cls, code: str, message: str
    ) -> "EngineError":
        return cls(kind=ErrorKind.INVALID_TRANSITION, code=code, message=message)

    @classmethod
    @beartype
    def validation_failed(
        cls, missing: tuple[MissingRequirement, ...], message: str | None = None
    ) -> "EngineError":
        if len(missing) == 1:
            code = missing[0].code
        else:
            code = "READINESS_CHECK_FAILED"
        return cls(
            kind=ErrorKind.VALIDATION_FAILED,
            code=code,
            message=message
            or "; ".join(item.message for item in missing)
            or "Validation failed",
            missing=missing,
        )

    @classmethod
    @beartype
    def limit_exceeded(cls, code: str, message: str) -> "EngineError":
        return cls(kind=ErrorKind.LIMIT_EXCEEDED, code=code, message=message)

    @classmethod
    @beartype
    def concurrency_conflict(cls, message: str) -> "EngineError":
        return cls(
            kind=ErrorKind.CONCURRENCY_CONFLICT,
            code="CONCURRENCY_CONFLICT",
            message=message,
        )

    @classmethod
    @beartype
    def capacity_unavailable(cls, code: str, message: str) -> "EngineError":
        return cls(kind=ErrorKind.CAPACITY_UNAVAILABLE, code=code, message=message)

    @classmethod
    @beartype
    def permission_denied(cls, message: str) -> "EngineError":
        return cls(
            kind=ErrorKind.PERMISSION_DENIED,
            code="ACTOR_NOT_PERMITTED",
            message=message,
        )


class StorageUnavailableError(RuntimeError):
    """The backing store cannot be reached."""


class CorruptClaimStateError(ValueError):
    """A persisted claim carries a status code outside the closed set."""


class ConcurrencyConflictError(RuntimeError):
    """A staged write lost against a concurrent commit."""


class LockTimeoutError(ConcurrencyConflictError):
    """A write-intent lock could not be acquired in time."""
