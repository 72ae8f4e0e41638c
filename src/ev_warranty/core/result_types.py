# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Ok/Err result wrappers for expected, typed failures.

Lifecycle commands never raise for business-rule outcomes; they return
``Ok(claim)`` or ``Err(EngineError)``. Exceptions are reserved for fatal
conditions such as an unavailable store.
"""

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Generic, NoReturn, TypeVar

from attrs import frozen
from beartype import beartype

T = TypeVar("T")
U = TypeVar("U")
E = TypeVar("E")


@frozen
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T

    @beartype
    def is_ok(self) -> bool:
        return True

    @beartype
    def is_err(self) -> bool:
        return False

    @property
    def ok_value(self) -> T:
        """The carried value."""
        return self.value

    @property
    def err_value(self) -> None:
        """Always ``None`` for a success."""
        return None

    @beartype
    def unwrap(self) -> T:
        return self.value

    @beartype
    def unwrap_or(self, default: Any) -> T:
        return self.value

    @beartype
    def unwrap_err(self) -> NoReturn:
        raise ValueError(f"Called unwrap_err on Ok value: {self.value!r}")

    def map(self, fn: Callable[[T], U]) -> "Ok[U]":
        """Apply ``fn`` to the carried value."""
        return Ok(fn(self.value))


@frozen
class Err(Generic[E]):
    """Failed outcome carrying an error value."""

    error: E

    @beartype
    def is_ok(self) -> bool:
        return False

    @beartype
    def is_err(self) -> bool:
        return True

    @property
    def ok_value(self) -> None:
        """Always ``None`` for a failure."""
        return None

    @property
    def err_value(self) -> E:
        """The carried error."""
        return self.error

    @beartype
    def unwrap(self) -> NoReturn:
        raise ValueError(f"Called unwrap on Err value: {self.error}")

    @beartype
    def unwrap_or(self, default: T) -> T:
        return default

    @beartype
    def unwrap_err(self) -> E:
        return self.error

    def map(self, fn: Callable[[Any], Any]) -> "Err[E]":
        """Failures pass through untouched."""
        return self


if TYPE_CHECKING:
    Result = Ok[T] | Err[E]
else:

    class Result(Generic[T, E]):
        """Runtime stand-in so ``Result[T, E]`` works in annotations."""

        @staticmethod
        @beartype
        def ok(value: T) -> Ok[T]:
            return Ok(value)

        @staticmethod
        @beartype
        def err(error: E) -> Err[E]:
            return Err(error)

        def __class_getitem__(cls, params: Any) -> Any:
            return Ok[Any] | Err[Any]
