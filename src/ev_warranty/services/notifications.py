# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Claim event notifications.

Events are published after the command's unit of work has committed.
Delivery is best effort: a failing sink is logged and the command result
stands.
"""

from datetime import datetime
from enum import Enum
from typing import Protocol, runtime_checkable

from beartype import beartype
from pydantic import Field

from ..core.logging_utils import get_logger
from ..models.base import BaseModelConfig
from ..models.claim import ClaimStatus

logger = get_logger(__name__)


class ClaimEventType(str, Enum):
    """Events the notification sink is informed of."""

    SUBMITTED_TO_EVM = "SUBMITTED_TO_EVM"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESUBMITTED = "RESUBMITTED"
    OUT_OF_WARRANTY = "OUT_OF_WARRANTY"
    INSPECTION_FAILED = "INSPECTION_FAILED"
    HANDOVER_ISSUE = "HANDOVER_ISSUE"
    REPAIR_COMPLETED = "REPAIR_COMPLETED"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    CANCEL_ACCEPTED = "CANCEL_ACCEPTED"
    CANCEL_REJECTED = "CANCEL_REJECTED"
    CANCEL_CLOSED = "CANCEL_CLOSED"
    CANCEL_REOPENED = "CANCEL_REOPENED"
    CLAIM_CLOSED = "CLAIM_CLOSED"

    @property
    def is_problem(self) -> bool:
        return self in {
            ClaimEventType.OUT_OF_WARRANTY,
            ClaimEventType.INSPECTION_FAILED,
            ClaimEventType.HANDOVER_ISSUE,
        }


@beartype
class ClaimEvent(BaseModelConfig):
    """Something a downstream party should hear about."""

    event_type: ClaimEventType = Field(...)
    claim_id: int = Field(..., ge=1)
    claim_number: str = Field(..., min_length=1)
    status: ClaimStatus = Field(...)
    actor_id: int = Field(..., ge=1)
    message: str = Field(..., min_length=1, max_length=2000)
    occurred_at: datetime = Field(...)


@runtime_checkable
class NotificationSink(Protocol):
    def notify(self, event: ClaimEvent) -> None: ...


class LoggingNotificationSink:
    """Default sink: writes events to the application log."""

    def __init__(self, logger_name: str = "ev_warranty.notifications") -> None:
        self._logger = get_logger(logger_name)

    @beartype
    def notify(self, event: ClaimEvent) -> None:
        self._logger.info(
            "[%s] %s (%s): %s",
            event.event_type.value,
            event.claim_number,
            event.status.value,
            event.message,
        )


@beartype
def publish(sink: NotificationSink, events: list[ClaimEvent]) -> int:
    """Deliver events in order; returns how many were delivered."""
    delivered = 0
    for event in events:
        try:
            sink.notify(event)
        except Exception as e:
            logger.warning(
                "Notification %s for claim %s failed: %s",
                event.event_type.value,
                event.claim_number,
                e,
            )
            continue
        delivered += 1
    return delivered
