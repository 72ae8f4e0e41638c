# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Actors issuing lifecycle commands."""

from enum import Enum

from beartype import beartype
from pydantic import Field

from .base import BaseModelConfig


class ActorRole(str, Enum):
    """Roles recognised by the lifecycle guards."""

    SC_STAFF = "SC_STAFF"
    SC_TECHNICIAN = "SC_TECHNICIAN"
    EVM_STAFF = "EVM_STAFF"
    ADMIN = "ADMIN"


SC_ROLES = frozenset({ActorRole.SC_STAFF, ActorRole.SC_TECHNICIAN, ActorRole.ADMIN})
STAFF_ROLES = frozenset({ActorRole.SC_STAFF, ActorRole.ADMIN})
EVM_ROLES = frozenset({ActorRole.EVM_STAFF, ActorRole.ADMIN})


@beartype
class Actor(BaseModelConfig):
    """The authenticated user on whose behalf a command runs."""

    user_id: int = Field(..., ge=1, description="User account id")
    username: str = Field(..., min_length=1, max_length=100)
    role: ActorRole = Field(..., description="Role used for capability checks")

    @property
    def is_technician(self) -> bool:
        return self.role == ActorRole.SC_TECHNICIAN
