"""Unit tests for the fixed transition tables."""

import pytest

from ev_warranty.models import ActorRole, ClaimStatus
from ev_warranty.services.transitions import (
    STATUS_SUCCESSORS,
    TRANSITION_TABLE,
    ClaimCommand,
    can_move,
    completion_percentage,
    rule_for,
)


class TestTables:
    """Test the tables cover every command and status."""

    def test_every_command_has_a_rule(self):
        assert set(TRANSITION_TABLE) == set(ClaimCommand)

    def test_every_status_has_successors(self):
        assert set(STATUS_SUCCESSORS) == set(ClaimStatus)

    def test_closed_has_no_way_out(self):
        """Test CLOSED is terminal for every command."""
        assert STATUS_SUCCESSORS[ClaimStatus.CLOSED] == frozenset()
        for command in ClaimCommand:
            assert not rule_for(command).allows(ClaimStatus.CLOSED)

    def test_every_open_status_can_close(self):
        """Test cancellation can close a claim from any non-terminal status."""
        for status in ClaimStatus:
            if not status.is_terminal:
                assert can_move(status, ClaimStatus.CLOSED)

    def test_fixed_targets_are_successors(self):
        for command, rule in TRANSITION_TABLE.items():
            if rule.target is None:
                continue
            for source in rule.sources:
                assert can_move(source, rule.target), command


class TestCanMove:
    """Test single-step movement."""

    @pytest.mark.parametrize(
        ("current", "target", "allowed"),
        [
            (ClaimStatus.DRAFT, ClaimStatus.OPEN, True),
            (ClaimStatus.DRAFT, ClaimStatus.IN_PROGRESS, False),
            (ClaimStatus.REJECTED, ClaimStatus.PENDING_EVM_APPROVAL, True),
            (ClaimStatus.HANDOVER_PENDING, ClaimStatus.REPAIR_IN_PROGRESS, True),
            (ClaimStatus.READY_FOR_HANDOVER, ClaimStatus.OPEN, True),
            (ClaimStatus.EVM_APPROVED, ClaimStatus.PENDING_EVM_APPROVAL, False),
            (ClaimStatus.COMPLETED, ClaimStatus.OPEN, False),
            (ClaimStatus.IN_PROGRESS, ClaimStatus.IN_PROGRESS, True),
        ],
    )
    def test_successor_rules(self, current, target, allowed):
        assert can_move(current, target) is allowed


class TestRoles:
    """Test who may issue which command."""

    def test_evm_decisions_are_evm_only(self):
        for command in (ClaimCommand.APPROVE, ClaimCommand.REJECT):
            roles = rule_for(command).roles
            assert ActorRole.EVM_STAFF in roles
            assert ActorRole.SC_STAFF not in roles
            assert ActorRole.SC_TECHNICIAN not in roles

    def test_evm_staff_cannot_submit(self):
        assert ActorRole.EVM_STAFF not in rule_for(ClaimCommand.SUBMIT_TO_EVM).roles

    def test_technicians_cannot_inspect_or_close(self):
        """Test final inspection and closure belong to service center staff."""
        for command in (
            ClaimCommand.PERFORM_INSPECTION,
            ClaimCommand.HANDOVER_VEHICLE,
            ClaimCommand.CLOSE_CLAIM,
            ClaimCommand.ACCEPT_CANCEL,
        ):
            assert ActorRole.SC_TECHNICIAN not in rule_for(command).roles

    def test_admin_may_issue_every_command(self):
        for command in ClaimCommand:
            assert ActorRole.ADMIN in rule_for(command).roles

    def test_only_cancellation_commands_flagged(self):
        flagged = {command for command in ClaimCommand if command.is_cancellation}
        assert flagged == {
            ClaimCommand.REQUEST_CANCEL,
            ClaimCommand.ACCEPT_CANCEL,
            ClaimCommand.REJECT_CANCEL,
            ClaimCommand.CONFIRM_HANDOVER_CANCEL,
            ClaimCommand.REOPEN_AFTER_CANCEL,
        }


class TestCompletionPercentage:
    """Test the progress indicator."""

    def test_bounds(self):
        assert completion_percentage(ClaimStatus.DRAFT) == 0
        assert completion_percentage(ClaimStatus.CLOSED) == 100

    def test_rejected_sits_with_pending(self):
        assert completion_percentage(ClaimStatus.REJECTED) == completion_percentage(
            ClaimStatus.PENDING_EVM_APPROVAL
        )

    def test_monotonic_along_main_flow(self):
        flow = [
            ClaimStatus.DRAFT,
            ClaimStatus.OPEN,
            ClaimStatus.IN_PROGRESS,
            ClaimStatus.PENDING_EVM_APPROVAL,
            ClaimStatus.EVM_APPROVED,
            ClaimStatus.REPAIR_IN_PROGRESS,
            ClaimStatus.HANDOVER_PENDING,
            ClaimStatus.READY_FOR_HANDOVER,
            ClaimStatus.COMPLETED,
            ClaimStatus.CLOSED,
        ]
        percentages = [completion_percentage(status) for status in flow]
        assert percentages == sorted(percentages)
        assert len(set(percentages)) == len(percentages)
