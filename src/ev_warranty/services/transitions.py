# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Fixed transition rules for the claim lifecycle.

``TRANSITION_TABLE`` maps every command to the statuses it may run from,
the status it moves to and the roles allowed to issue it.
``STATUS_SUCCESSORS`` lists, for every status, where a claim may go next.
Both tables are checked for completeness when this module is imported.
"""

from enum import Enum
from types import MappingProxyType
from typing import Final

from attrs import frozen

from ..models.claim import ClaimStatus
from ..models.user import EVM_ROLES, SC_ROLES, STAFF_ROLES, ActorRole


class ClaimCommand(str, Enum):
    """Commands accepted by the lifecycle state machine."""

    CREATE_DRAFT = "createDraft"
    SUBMIT_INTAKE = "submitIntake"
    ASSIGN_TECHNICIAN = "assignTechnician"
    UPDATE_DIAGNOSTIC = "updateDiagnostic"
    RUN_WARRANTY_CHECK = "runWarrantyCheck"
    MARK_READY_FOR_SUBMISSION = "markReadyForSubmission"
    SUBMIT_TO_EVM = "submitToEvm"
    APPROVE = "approve"
    REJECT = "reject"
    RESUBMIT = "resubmit"
    UPDATE_PAYMENT_STATUS = "updatePaymentStatus"
    START_REPAIR = "startRepair"
    MARK_WORK_DONE = "markWorkDone"
    COMPLETE_REPAIR = "completeRepair"
    PERFORM_INSPECTION = "performInspection"
    HANDOVER_VEHICLE = "handoverVehicle"
    CLOSE_CLAIM = "closeClaim"
    REQUEST_CANCEL = "requestCancel"
    ACCEPT_CANCEL = "acceptCancel"
    REJECT_CANCEL = "rejectCancel"
    CONFIRM_HANDOVER_CANCEL = "confirmHandoverCancel"
    REOPEN_AFTER_CANCEL = "reopenAfterCancel"

    @property
    def is_cancellation(self) -> bool:
        return self in _CANCELLATION_COMMANDS


_CANCELLATION_COMMANDS: Final = frozenset(
    {
        ClaimCommand.REQUEST_CANCEL,
        ClaimCommand.ACCEPT_CANCEL,
        ClaimCommand.REJECT_CANCEL,
        ClaimCommand.CONFIRM_HANDOVER_CANCEL,
        ClaimCommand.REOPEN_AFTER_CANCEL,
    }
)


@frozen
class CommandRule:
    """Allowed sources, fixed target (None when the handler decides) and roles."""

    sources: frozenset[ClaimStatus]
    target: ClaimStatus | None
    roles: frozenset[ActorRole]

    def allows(self, status: ClaimStatus) -> bool:
        return status in self.sources


S = ClaimStatus

NON_TERMINAL: Final = frozenset(s for s in ClaimStatus if not s.is_terminal)

TRANSITION_TABLE: Final = MappingProxyType(
    {
        ClaimCommand.CREATE_DRAFT: CommandRule(frozenset(), S.DRAFT, SC_ROLES),
        ClaimCommand.SUBMIT_INTAKE: CommandRule(
            frozenset({S.DRAFT}), S.OPEN, SC_ROLES
        ),
        ClaimCommand.ASSIGN_TECHNICIAN: CommandRule(
            frozenset({S.OPEN, S.IN_PROGRESS, S.EVM_APPROVED, S.READY_FOR_REPAIR}),
            None,
            STAFF_ROLES,
        ),
        ClaimCommand.UPDATE_DIAGNOSTIC: CommandRule(
            frozenset(
                {
                    S.DRAFT,
                    S.OPEN,
                    S.IN_PROGRESS,
                    S.READY_FOR_REPAIR,
                    S.REPAIR_IN_PROGRESS,
                }
            ),
            None,
            SC_ROLES,
        ),
        ClaimCommand.RUN_WARRANTY_CHECK: CommandRule(NON_TERMINAL, None, SC_ROLES),
        ClaimCommand.MARK_READY_FOR_SUBMISSION: CommandRule(
            frozenset({S.OPEN, S.IN_PROGRESS}), None, SC_ROLES
        ),
        ClaimCommand.SUBMIT_TO_EVM: CommandRule(
            frozenset({S.OPEN, S.IN_PROGRESS}), S.PENDING_EVM_APPROVAL, SC_ROLES
        ),
        ClaimCommand.APPROVE: CommandRule(
            frozenset({S.PENDING_EVM_APPROVAL}), S.EVM_APPROVED, EVM_ROLES
        ),
        ClaimCommand.REJECT: CommandRule(
            frozenset({S.PENDING_EVM_APPROVAL}), S.REJECTED, EVM_ROLES
        ),
        ClaimCommand.RESUBMIT: CommandRule(
            frozenset({S.REJECTED}), S.PENDING_EVM_APPROVAL, SC_ROLES
        ),
        ClaimCommand.UPDATE_PAYMENT_STATUS: CommandRule(
            frozenset({S.IN_PROGRESS}), None, STAFF_ROLES
        ),
        ClaimCommand.START_REPAIR: CommandRule(
            frozenset({S.EVM_APPROVED, S.READY_FOR_REPAIR}),
            S.REPAIR_IN_PROGRESS,
            SC_ROLES,
        ),
        ClaimCommand.MARK_WORK_DONE: CommandRule(
            frozenset({S.REPAIR_IN_PROGRESS}), None, SC_ROLES
        ),
        ClaimCommand.COMPLETE_REPAIR: CommandRule(
            frozenset({S.REPAIR_IN_PROGRESS}), S.HANDOVER_PENDING, SC_ROLES
        ),
        ClaimCommand.PERFORM_INSPECTION: CommandRule(
            frozenset({S.HANDOVER_PENDING}), None, STAFF_ROLES
        ),
        ClaimCommand.HANDOVER_VEHICLE: CommandRule(
            frozenset({S.READY_FOR_HANDOVER}), None, STAFF_ROLES
        ),
        ClaimCommand.CLOSE_CLAIM: CommandRule(
            frozenset({S.READY_FOR_HANDOVER, S.COMPLETED}), S.CLOSED, STAFF_ROLES
        ),
        ClaimCommand.REQUEST_CANCEL: CommandRule(NON_TERMINAL, None, SC_ROLES),
        ClaimCommand.ACCEPT_CANCEL: CommandRule(NON_TERMINAL, None, STAFF_ROLES),
        ClaimCommand.REJECT_CANCEL: CommandRule(NON_TERMINAL, None, STAFF_ROLES),
        ClaimCommand.CONFIRM_HANDOVER_CANCEL: CommandRule(
            NON_TERMINAL, S.CLOSED, STAFF_ROLES
        ),
        ClaimCommand.REOPEN_AFTER_CANCEL: CommandRule(
            NON_TERMINAL, None, STAFF_ROLES
        ),
    }
)

# Every non-terminal status may also close through an accepted cancellation.
STATUS_SUCCESSORS: Final = MappingProxyType(
    {
        S.DRAFT: frozenset({S.OPEN, S.CLOSED}),
        S.OPEN: frozenset({S.IN_PROGRESS, S.PENDING_EVM_APPROVAL, S.CLOSED}),
        S.IN_PROGRESS: frozenset(
            {S.PENDING_EVM_APPROVAL, S.READY_FOR_REPAIR, S.CLOSED}
        ),
        S.PENDING_EVM_APPROVAL: frozenset({S.EVM_APPROVED, S.REJECTED, S.CLOSED}),
        S.EVM_APPROVED: frozenset({S.REPAIR_IN_PROGRESS, S.CLOSED}),
        S.REJECTED: frozenset({S.PENDING_EVM_APPROVAL, S.CLOSED}),
        S.READY_FOR_REPAIR: frozenset({S.REPAIR_IN_PROGRESS, S.CLOSED}),
        S.REPAIR_IN_PROGRESS: frozenset({S.HANDOVER_PENDING, S.CLOSED}),
        S.HANDOVER_PENDING: frozenset(
            {S.READY_FOR_HANDOVER, S.REPAIR_IN_PROGRESS, S.CLOSED}
        ),
        S.READY_FOR_HANDOVER: frozenset({S.COMPLETED, S.OPEN, S.CLOSED}),
        S.COMPLETED: frozenset({S.CLOSED}),
        S.CLOSED: frozenset(),
    }
)


def rule_for(command: ClaimCommand) -> CommandRule:
    return TRANSITION_TABLE[command]


def can_move(current: ClaimStatus, target: ClaimStatus) -> bool:
    """Staying put is always allowed; moving must follow the successor table."""
    return target == current or target in STATUS_SUCCESSORS[current]


def _verify_tables() -> None:
    missing_commands = set(ClaimCommand) - set(TRANSITION_TABLE)
    if missing_commands:
        raise RuntimeError(
            f"Commands without transition rules: {sorted(c.value for c in missing_commands)}"
        )

    missing_statuses = set(ClaimStatus) - set(STATUS_SUCCESSORS)
    if missing_statuses:
        raise RuntimeError(
            f"Statuses without successors: {sorted(s.value for s in missing_statuses)}"
        )

    for command, rule in TRANSITION_TABLE.items():
        if rule.target is None:
            continue
        for source in rule.sources:
            if not can_move(source, rule.target):
                raise RuntimeError(
                    f"{command.value}: {source.value} -> {rule.target.value} "
                    "is not a listed successor"
                )


_PROGRESS_ORDER: Final = (
    S.DRAFT,
    S.OPEN,
    S.IN_PROGRESS,
    S.PENDING_EVM_APPROVAL,
    S.EVM_APPROVED,
    S.READY_FOR_REPAIR,
    S.REPAIR_IN_PROGRESS,
    S.HANDOVER_PENDING,
    S.READY_FOR_HANDOVER,
    S.COMPLETED,
    S.CLOSED,
)


def completion_percentage(status: ClaimStatus) -> int:
    """Rough position of a status along the main flow, 0 to 100."""
    anchor = S.PENDING_EVM_APPROVAL if status == S.REJECTED else status
    index = _PROGRESS_ORDER.index(anchor)
    return round(index * 100 / (len(_PROGRESS_ORDER) - 1))


_verify_tables()
