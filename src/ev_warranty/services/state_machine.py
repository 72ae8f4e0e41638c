# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Claim lifecycle state machine.

Every command runs as one unit of work: lock the claim, check the
transition table and the command's guards against the locked snapshot,
stage the new claim and its history row, commit. Any rejection or
exception discards everything staged. Notifications go out only after
a successful commit.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

from attrs import field, frozen
from beartype import beartype

from ..core.config import Settings, get_settings
from ..core.errors import EngineError, MissingRequirement
from ..core.logging_utils import configure_logging, get_logger
from ..core.result_types import Err, Ok, Result
from ..core.unit_of_work import InMemoryClaimStore, UnitOfWork
from ..models.claim import (
    CancellationState,
    Claim,
    ClaimAssignment,
    ClaimDiagnostic,
    ClaimStatus,
    ClaimStatusHistory,
    PaymentStatus,
    RepairConfiguration,
    RepairType,
    WarrantyEligibility,
)
from ..models.commands import (
    ApprovalDecision,
    AssignmentRequest,
    CancellationRequest,
    CommandNote,
    DiagnosticUpdate,
    DraftRequest,
    HandoverRequest,
    InspectionResult,
    PaymentUpdate,
    RejectionDecision,
    ResubmissionRequest,
)
from ..models.user import Actor
from ..models.warranty import Vehicle
from .assignment import AssignmentCoordinator
from .cancellation import CancellationStep, CancellationSubflow
from .collaborators import (
    PartCatalog,
    VehicleDirectory,
    WarrantyConditionLookup,
    WorkOrderQuery,
)
from .cost_aggregator import ClaimCostAggregator
from .eligibility import WarrantyEligibilityEvaluator, apply_verdict
from .notifications import (
    ClaimEvent,
    ClaimEventType,
    LoggingNotificationSink,
    NotificationSink,
    publish,
)
from .performance_monitor import performance_monitor
from .transaction_helpers import run_in_transaction
from .transitions import (
    ClaimCommand,
    CommandRule,
    can_move,
    completion_percentage,
    rule_for,
)
from .validation import ClaimValidationService, ReadinessReport

logger = get_logger(__name__)

_DIAGNOSTIC_FIELDS = (
    "reported_failure",
    "initial_diagnosis",
    "diagnostic_details",
    "problem_type",
    "problem_description",
    "test_results",
    "repair_notes",
)


@frozen
class _Outcome:
    """Result of a command handler before it is staged."""

    claim: Claim
    note: str | None = None
    events: tuple[tuple[ClaimEventType, str], ...] = field(default=())


@frozen
class ClaimProgress:
    """Step view of where a claim sits along the main flow."""

    claim_number: str
    status: ClaimStatus
    label: str
    percentage: int
    cancellation_state: CancellationState


_Handler = Callable[[UnitOfWork, Claim], Result[_Outcome, EngineError]]


def _note_of(payload: CommandNote | None) -> str | None:
    return payload.notes if payload is not None else None


class ClaimLifecycleStateMachine:
    """Accepts lifecycle commands and applies them transactionally."""

    def __init__(
        self,
        store: InMemoryClaimStore,
        *,
        work_orders: WorkOrderQuery,
        vehicles: VehicleDirectory,
        conditions: WarrantyConditionLookup,
        parts: PartCatalog,
        notifications: NotificationSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the state machine with dependency validation."""
        if not isinstance(store, InMemoryClaimStore):
            raise ValueError("Claim store required")
        if not isinstance(vehicles, VehicleDirectory):
            raise ValueError("Vehicle directory required")
        if notifications is not None and not isinstance(
            notifications, NotificationSink
        ):
            raise ValueError("Notification sink must implement notify()")

        self._settings = settings or get_settings()
        configure_logging(level=self._settings.log_level)
        self._store = store
        self._vehicles = vehicles
        self._evaluator = WarrantyEligibilityEvaluator(conditions)
        self._costs = ClaimCostAggregator(work_orders, parts)
        self._validator = ClaimValidationService(
            self._costs, work_orders, vehicles, self._settings
        )
        self._assignments = AssignmentCoordinator(store)
        self._cancellation = CancellationSubflow(self._settings.max_cancel_requests)
        self._sink: NotificationSink = notifications or LoggingNotificationSink()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def validator(self) -> ClaimValidationService:
        return self._validator

    @property
    def assignments(self) -> AssignmentCoordinator:
        return self._assignments

    @property
    def costs(self) -> ClaimCostAggregator:
        return self._costs

    @property
    def evaluator(self) -> WarrantyEligibilityEvaluator:
        return self._evaluator

    # Queries

    @beartype
    def get_claim(self, claim_id: int) -> Result[Claim, EngineError]:
        claim = self._store.get_claim(claim_id)
        if claim is None:
            return Err(EngineError.not_found("Claim", claim_id))
        return Ok(claim)

    @beartype
    def list_claims(self, status: ClaimStatus | None = None) -> list[Claim]:
        return self._store.list_claims(status)

    @beartype
    def get_history(self, claim_id: int) -> tuple[ClaimStatusHistory, ...]:
        return self._store.get_history(claim_id)

    @beartype
    def time_in_status(
        self, claim_id: int, status: ClaimStatus, now: datetime | None = None
    ) -> timedelta:
        """Total time the claim has spent in ``status``, from history alone."""
        rows = self._store.get_history(claim_id)
        total = timedelta()
        for current, following in zip(rows, rows[1:]):
            if current.status == status:
                total += following.changed_at - current.changed_at
        if rows and rows[-1].status == status and not status.is_terminal:
            end = now or self._store.clock()
            total += max(end - rows[-1].changed_at, timedelta())
        return total

    @beartype
    def readiness(
        self, claim_id: int, command: ClaimCommand
    ) -> Result[ReadinessReport, EngineError]:
        """Checklist for ``command`` without applying anything."""
        claim = self._store.get_claim(claim_id)
        if claim is None:
            return Err(EngineError.not_found("Claim", claim_id))
        return Ok(self._validator.readiness(claim, command))

    @beartype
    def completion_progress(
        self, claim_id: int
    ) -> Result[ClaimProgress, EngineError]:
        claim = self._store.get_claim(claim_id)
        if claim is None:
            return Err(EngineError.not_found("Claim", claim_id))
        return Ok(
            ClaimProgress(
                claim_number=claim.claim_number,
                status=claim.status,
                label=claim.status.label,
                percentage=completion_percentage(claim.status),
                cancellation_state=claim.cancellation_record.state,
            )
        )

    # Intake and diagnosis

    @performance_monitor("create_draft")
    @beartype
    def create_draft(
        self, actor: Actor, request: DraftRequest
    ) -> Result[Claim, EngineError]:
        """Open a new claim in DRAFT."""
        rule = rule_for(ClaimCommand.CREATE_DRAFT)
        if actor.role not in rule.roles:
            return Err(
                EngineError.permission_denied(
                    f"{actor.role.value} cannot create claims"
                )
            )
        if request.vehicle_id is not None and (
            self._vehicles.get_vehicle(request.vehicle_id) is None
        ):
            return Err(EngineError.not_found("Vehicle", request.vehicle_id))

        def _operation(uow: UnitOfWork) -> Result[Claim, EngineError]:
            claim_id, claim_number = uow.reserve_claim_identity()
            now = uow.clock()
            diagnostic = (
                ClaimDiagnostic(reported_failure=request.reported_failure)
                if request.reported_failure
                else None
            )
            claim = Claim(
                id=claim_id,
                claim_number=claim_number,
                status=ClaimStatus.DRAFT,
                created_by=actor.user_id,
                vehicle_id=request.vehicle_id,
                customer_id=request.customer_id,
                service_center_id=request.service_center_id,
                diagnostic=diagnostic,
                created_at=now,
                updated_at=now,
            )
            staged = uow.stage_claim(claim)
            uow.append_history(
                staged,
                actor_id=actor.user_id,
                command=ClaimCommand.CREATE_DRAFT.value,
                note="Draft created",
            )
            return Ok(staged)

        result = run_in_transaction(self._store, _operation)
        if isinstance(result, Ok):
            logger.info(
                "Claim %s created as DRAFT by %s",
                result.value.claim_number,
                actor.username,
            )
        return result

    @performance_monitor("submit_intake")
    @beartype
    def submit_intake(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        """Promote a draft to an open claim once intake data is complete."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            report = self._validator.check_intake(claim)
            if not report.ready:
                return Err(report.to_error())
            return Ok(
                _Outcome(
                    claim=claim.model_copy(update={"status": ClaimStatus.OPEN}),
                    note=_note_of(payload) or "Intake submitted",
                )
            )

        return self._execute(ClaimCommand.SUBMIT_INTAKE, claim_id, actor, _handler)

    @performance_monitor("assign_technician")
    @beartype
    def assign_technician(
        self, claim_id: int, actor: Actor, request: AssignmentRequest
    ) -> Result[Claim, EngineError]:
        """Assign a technician, reserving capacity in the same transaction."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            now = uow.clock()
            start = request.start_time or now

            technician_id = request.technician_id
            if technician_id is None:
                best = self._assignments.find_best_available_technician(
                    request.specialization or "", request.min_level
                )
                if isinstance(best, Err):
                    return best
                technician_id = best.value.user_id

            previous = claim.assignment
            if previous is not None and previous.technician_id == technician_id:
                return Err(
                    EngineError.invalid_transition(
                        "TECHNICIAN_ALREADY_ASSIGNED",
                        f"Technician {technician_id} already holds this claim",
                    )
                )

            involved = {technician_id}
            if previous is not None:
                involved.add(previous.technician_id)
            for user_id in sorted(involved):
                uow.lock_technician(user_id)

            if previous is not None and previous.holds_capacity:
                released = self._assignments.release(uow, previous.technician_id)
                if isinstance(released, Err):
                    return released

            reservation = self._assignments.reserve(uow, technician_id, start)
            if isinstance(reservation, Err):
                return reservation
            reserved = reservation.unwrap()

            assignment = ClaimAssignment(
                technician_id=technician_id,
                assigned_by=actor.user_id,
                assigned_at=now,
                scheduled_start=reserved.scheduled_start,
                holds_capacity=reserved.holds_capacity,
            )
            status = (
                ClaimStatus.IN_PROGRESS
                if claim.status == ClaimStatus.OPEN
                else claim.status
            )
            note = f"Assigned technician {reserved.technician.name}"
            if reserved.scheduled_start is not None:
                note += f" from {reserved.scheduled_start.isoformat()}"
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={"assignment": assignment, "status": status}
                    ),
                    note=note,
                )
            )

        return self._execute(ClaimCommand.ASSIGN_TECHNICIAN, claim_id, actor, _handler)

    @performance_monitor("update_diagnostic")
    @beartype
    def update_diagnostic(
        self, claim_id: int, actor: Actor, update: DiagnosticUpdate
    ) -> Result[Claim, EngineError]:
        """Merge diagnostic, repair and override fields into the claim.

        The automatic warranty check is re-run when the vehicle is known,
        and cost totals are recomputed.
        """

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            now = uow.clock()
            repair = claim.repair_record
            if (
                repair.repair_type == RepairType.SC_REPAIR
                and update.repair_type == RepairType.EVM_REPAIR
            ):
                return Err(
                    EngineError.invalid_transition(
                        "REPAIR_TYPE_LOCKED",
                        "An SC repair cannot be switched to EVM repair",
                    )
                )

            eligibility_result = self._merge_override(claim, update, actor, now)
            if isinstance(eligibility_result, Err):
                return eligibility_result
            eligibility = eligibility_result.unwrap()

            current = claim.diagnostic_record.model_dump()
            for name in _DIAGNOSTIC_FIELDS:
                value = getattr(update, name)
                if value is not None:
                    current[name] = value
            diagnostic = ClaimDiagnostic.model_validate(current)

            repair_type = update.repair_type or repair.repair_type
            payment = repair.customer_payment_status
            if repair_type == RepairType.SC_REPAIR and payment is None:
                payment = PaymentStatus.PENDING
            repair_configuration = RepairConfiguration(
                repair_type=repair_type,
                customer_payment_status=payment,
                service_catalog_items=(
                    update.service_catalog_items
                    if update.service_catalog_items is not None
                    else repair.service_catalog_items
                ),
            )

            cost = claim.cost_record
            if update.warranty_cost is not None:
                cost = cost.model_copy(update={"warranty_cost": update.warranty_cost})

            updated = claim.model_copy(
                update={
                    "diagnostic": diagnostic,
                    "repair_configuration": repair_configuration,
                    "warranty_eligibility": eligibility,
                    "cost": cost,
                    "ready_for_submission": False,
                    "status": (
                        ClaimStatus.IN_PROGRESS
                        if claim.status == ClaimStatus.OPEN
                        else claim.status
                    ),
                }
            )

            events: list[tuple[ClaimEventType, str]] = []
            if updated.vehicle_id is not None:
                vehicle = self._vehicles.get_vehicle(updated.vehicle_id)
                if vehicle is not None:
                    rechecked = self._with_warranty_check(updated, vehicle, now)
                    events.extend(rechecked.events)
                    updated = rechecked.claim

            refreshed = self._costs.refresh_cost(updated)
            if isinstance(refreshed, Err):
                return refreshed
            updated = updated.model_copy(update={"cost": refreshed.value})

            return Ok(
                _Outcome(claim=updated, note="Diagnostic updated", events=tuple(events))
            )

        return self._execute(ClaimCommand.UPDATE_DIAGNOSTIC, claim_id, actor, _handler)

    @performance_monitor("run_warranty_check")
    @beartype
    def run_warranty_check(
        self, claim_id: int, actor: Actor
    ) -> Result[Claim, EngineError]:
        """Run the automatic eligibility check against the linked vehicle."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            if claim.vehicle_id is None:
                return Err(
                    EngineError.validation_failed(
                        (
                            MissingRequirement(
                                "VEHICLE_REQUIRED", "A vehicle must be linked"
                            ),
                        )
                    )
                )
            vehicle = self._vehicles.get_vehicle(claim.vehicle_id)
            if vehicle is None:
                return Err(EngineError.not_found("Vehicle", claim.vehicle_id))
            return Ok(self._with_warranty_check(claim, vehicle, uow.clock()))

        return self._execute(ClaimCommand.RUN_WARRANTY_CHECK, claim_id, actor, _handler)

    @performance_monitor("mark_ready_for_submission")
    @beartype
    def mark_ready_for_submission(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            report = self._validator.check_submission(claim)
            if not report.ready:
                return Err(report.to_error())
            return Ok(
                _Outcome(
                    claim=claim.model_copy(update={"ready_for_submission": True}),
                    note=_note_of(payload) or "Ready for submission",
                )
            )

        return self._execute(
            ClaimCommand.MARK_READY_FOR_SUBMISSION, claim_id, actor, _handler
        )

    # EVM approval branch

    @performance_monitor("submit_to_evm")
    @beartype
    def submit_to_evm(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        """Send an EVM-funded claim for approval after the full checklist."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            if claim.repair_type == RepairType.SC_REPAIR:
                return Err(
                    EngineError.invalid_transition(
                        "SC_REPAIR_NOT_EVM_FUNDED",
                        "SC repairs are paid by the service center, not EVM",
                    )
                )
            report = self._validator.check_submission(claim)
            if not report.ready:
                return Err(report.to_error())

            refreshed = self._costs.refresh_cost(claim)
            if isinstance(refreshed, Err):
                return refreshed
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={
                            "status": ClaimStatus.PENDING_EVM_APPROVAL,
                            "ready_for_submission": True,
                            "cost": refreshed.value,
                        }
                    ),
                    note=_note_of(payload) or "Submitted to EVM",
                    events=(
                        (ClaimEventType.SUBMITTED_TO_EVM, "Claim awaiting EVM approval"),
                    ),
                )
            )

        return self._execute(ClaimCommand.SUBMIT_TO_EVM, claim_id, actor, _handler)

    @performance_monitor("approve")
    @beartype
    def approve(
        self, claim_id: int, actor: Actor, decision: ApprovalDecision | None = None
    ) -> Result[Claim, EngineError]:
        decision = decision or ApprovalDecision()

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            approval = claim.approval_record.model_copy(
                update={
                    "approved_by": actor.user_id,
                    "approved_at": uow.clock(),
                    "approval_notes": decision.notes,
                }
            )
            cost = claim.cost_record
            if decision.company_paid_cost is not None:
                cost = cost.model_copy(
                    update={"company_paid_cost": decision.company_paid_cost}
                )
            message = "Approved by EVM"
            if cost.company_paid_cost is not None:
                message += f" (company-paid {cost.company_paid_cost})"
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={
                            "status": ClaimStatus.EVM_APPROVED,
                            "approval": approval,
                            "cost": cost,
                        }
                    ),
                    note=decision.notes or message,
                    events=((ClaimEventType.APPROVED, message),),
                )
            )

        return self._execute(ClaimCommand.APPROVE, claim_id, actor, _handler)

    @performance_monitor("reject")
    @beartype
    def reject(
        self, claim_id: int, actor: Actor, decision: RejectionDecision
    ) -> Result[Claim, EngineError]:
        """Reject with a mandatory reason; decides whether resubmission stays open."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            reason = (decision.reason or "").strip()
            if not reason:
                return Err(
                    EngineError.validation_failed(
                        (
                            MissingRequirement(
                                "REJECTION_REASON_REQUIRED",
                                "A rejection reason is required",
                            ),
                        )
                    )
                )

            current = claim.approval_record
            can_resubmit = (
                not decision.final
                and current.resubmit_count < self._settings.max_resubmit_count
            )
            approval = current.model_copy(
                update={
                    "rejected_by": actor.user_id,
                    "rejected_at": uow.clock(),
                    "rejection_reason": reason,
                    "rejection_notes": decision.notes,
                    "rejection_count": current.rejection_count + 1,
                    "can_resubmit": can_resubmit,
                }
            )
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={
                            "status": ClaimStatus.REJECTED,
                            "approval": approval,
                            "ready_for_submission": False,
                        }
                    ),
                    note=f"Rejected: {reason}",
                    events=((ClaimEventType.REJECTED, f"Rejected: {reason}"),),
                )
            )

        return self._execute(ClaimCommand.REJECT, claim_id, actor, _handler)

    @performance_monitor("resubmit")
    @beartype
    def resubmit(
        self,
        claim_id: int,
        actor: Actor,
        request: ResubmissionRequest | None = None,
    ) -> Result[Claim, EngineError]:
        """Send a rejected claim back to EVM while under the resubmission ceiling."""
        request = request or ResubmissionRequest()

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            current = claim.approval_record
            ceiling = self._settings.max_resubmit_count
            if not current.can_resubmit or current.resubmit_count >= ceiling:
                return Err(
                    EngineError.limit_exceeded(
                        "RESUBMIT_LIMIT_EXCEEDED",
                        f"Claim {claim.claim_number} cannot be resubmitted "
                        f"({current.resubmit_count}/{ceiling} used)",
                    )
                )

            count = current.resubmit_count + 1
            block = [f"=== RESUBMISSION #{count} ==="]
            if request.response_to_rejection:
                block.append(f"Response to rejection: {request.response_to_rejection}")
            if request.revised_diagnosis:
                block.append(f"Revised diagnosis: {request.revised_diagnosis}")
            diagnostic = claim.diagnostic_record
            trail = "\n\n".join(
                part for part in (diagnostic.initial_diagnosis, "\n".join(block)) if part
            )

            approval = current.model_copy(
                update={
                    "resubmit_count": count,
                    "can_resubmit": count < ceiling,
                    "rejection_reason": None,
                    "rejection_notes": None,
                }
            )
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={
                            "status": ClaimStatus.PENDING_EVM_APPROVAL,
                            "approval": approval,
                            "diagnostic": diagnostic.model_copy(
                                update={"initial_diagnosis": trail}
                            ),
                        }
                    ),
                    note=f"Resubmission #{count}",
                    events=((ClaimEventType.RESUBMITTED, f"Resubmission #{count}"),),
                )
            )

        return self._execute(ClaimCommand.RESUBMIT, claim_id, actor, _handler)

    # Repair

    @performance_monitor("update_payment_status")
    @beartype
    def update_payment_status(
        self, claim_id: int, actor: Actor, update: PaymentUpdate
    ) -> Result[Claim, EngineError]:
        """Record customer payment on an SC repair; PAID opens the repair gate."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            if claim.repair_type != RepairType.SC_REPAIR:
                return Err(
                    EngineError.invalid_transition(
                        "PAYMENT_NOT_APPLICABLE",
                        "Customer payment only applies to SC repairs",
                    )
                )
            repair = claim.repair_record.model_copy(
                update={"customer_payment_status": update.status}
            )
            status = (
                ClaimStatus.READY_FOR_REPAIR
                if update.status == PaymentStatus.PAID
                else claim.status
            )
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={"repair_configuration": repair, "status": status}
                    ),
                    note=f"Customer payment {update.status.value}",
                )
            )

        return self._execute(
            ClaimCommand.UPDATE_PAYMENT_STATUS, claim_id, actor, _handler
        )

    @performance_monitor("start_repair")
    @beartype
    def start_repair(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        """Begin repair; deferred technician capacity is taken now."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            report = self._validator.check_repair_start(claim)
            if not report.ready:
                return Err(report.to_error())

            assignment = claim.assignment
            if assignment is not None and not assignment.holds_capacity:
                taken = self._assignments.claim_capacity(uow, assignment.technician_id)
                if isinstance(taken, Err):
                    return taken
                assignment = assignment.model_copy(update={"holds_capacity": True})

            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={
                            "status": ClaimStatus.REPAIR_IN_PROGRESS,
                            "assignment": assignment,
                        }
                    ),
                    note=_note_of(payload) or "Repair started",
                )
            )

        return self._execute(ClaimCommand.START_REPAIR, claim_id, actor, _handler)

    @performance_monitor("mark_work_done")
    @beartype
    def mark_work_done(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        """Technician finished; releases their workload and records the job."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            if claim.assignment is None:
                return Err(
                    EngineError.validation_failed(
                        (
                            MissingRequirement(
                                "TECHNICIAN_REQUIRED", "A technician must be assigned"
                            ),
                        )
                    )
                )
            if claim.assignment.work_completed:
                return Err(
                    EngineError.invalid_transition(
                        "WORK_ALREADY_DONE", "Work was already marked done"
                    )
                )
            report = self._validator.check_repair_completion(claim)
            if not report.ready:
                return Err(report.to_error())

            finished = self._finish_work(uow, claim)
            if isinstance(finished, Err):
                return finished
            return Ok(
                _Outcome(
                    claim=finished.value,
                    note=_note_of(payload) or "Work marked done",
                )
            )

        return self._execute(ClaimCommand.MARK_WORK_DONE, claim_id, actor, _handler)

    @performance_monitor("complete_repair")
    @beartype
    def complete_repair(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        """Close out repair work once every work order is DONE."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            report = self._validator.check_repair_completion(claim)
            if not report.ready:
                return Err(report.to_error())

            updated = claim
            if claim.assignment is not None and not claim.assignment.work_completed:
                finished = self._finish_work(uow, claim)
                if isinstance(finished, Err):
                    return finished
                updated = finished.value

            refreshed = self._costs.refresh_cost(updated)
            if isinstance(refreshed, Err):
                return refreshed

            return Ok(
                _Outcome(
                    claim=updated.model_copy(
                        update={
                            "status": ClaimStatus.HANDOVER_PENDING,
                            "cost": refreshed.value,
                        }
                    ),
                    note=_note_of(payload) or "Repair completed",
                    events=((ClaimEventType.REPAIR_COMPLETED, "Repair completed"),),
                )
            )

        return self._execute(ClaimCommand.COMPLETE_REPAIR, claim_id, actor, _handler)

    @performance_monitor("perform_inspection")
    @beartype
    def perform_inspection(
        self, claim_id: int, actor: Actor, result: InspectionResult
    ) -> Result[Claim, EngineError]:
        """Final inspection; a failure sends the vehicle back to repair."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            if result.passed:
                return Ok(
                    _Outcome(
                        claim=claim.model_copy(
                            update={
                                "status": ClaimStatus.READY_FOR_HANDOVER,
                                "inspection_passed": True,
                            }
                        ),
                        note=result.notes or "Final inspection passed",
                    )
                )

            assignment = claim.assignment
            if assignment is not None:
                assignment = assignment.model_copy(
                    update={"work_completed": False, "completed_at": None}
                )
                if not assignment.holds_capacity:
                    taken = self._assignments.claim_capacity(
                        uow, assignment.technician_id
                    )
                    if isinstance(taken, Ok):
                        assignment = assignment.model_copy(
                            update={"holds_capacity": True}
                        )
                    else:
                        logger.warning(
                            "Rework on claim %s without technician capacity: %s",
                            claim.claim_number,
                            taken.error,
                        )

            message = result.notes or "Final inspection failed"
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={
                            "status": ClaimStatus.REPAIR_IN_PROGRESS,
                            "inspection_passed": False,
                            "assignment": assignment,
                        }
                    ),
                    note=message,
                    events=((ClaimEventType.INSPECTION_FAILED, message),),
                )
            )

        return self._execute(
            ClaimCommand.PERFORM_INSPECTION, claim_id, actor, _handler
        )

    # Handover and closure

    @performance_monitor("handover_vehicle")
    @beartype
    def handover_vehicle(
        self, claim_id: int, actor: Actor, request: HandoverRequest | None = None
    ) -> Result[Claim, EngineError]:
        """Hand the vehicle back; an unhappy customer reopens the claim."""
        request = request or HandoverRequest()

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            if request.customer_satisfied:
                return Ok(
                    _Outcome(
                        claim=claim.model_copy(
                            update={
                                "status": ClaimStatus.COMPLETED,
                                "handover_confirmed": True,
                            }
                        ),
                        note=request.notes or "Vehicle handed over",
                    )
                )

            issue = request.notes or "Customer not satisfied at handover"
            diagnostic = claim.diagnostic_record
            return Ok(
                _Outcome(
                    claim=claim.model_copy(
                        update={
                            "status": ClaimStatus.OPEN,
                            "handover_confirmed": False,
                            "inspection_passed": None,
                            "ready_for_submission": False,
                            "diagnostic": diagnostic.model_copy(
                                update={
                                    "handover_issues": diagnostic.handover_issues
                                    + (issue,)
                                }
                            ),
                        }
                    ),
                    note=f"Handover issue: {issue}",
                    events=((ClaimEventType.HANDOVER_ISSUE, issue),),
                )
            )

        return self._execute(ClaimCommand.HANDOVER_VEHICLE, claim_id, actor, _handler)

    @performance_monitor("close_claim")
    @beartype
    def close_claim(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            report = self._validator.check_closure(claim)
            if not report.ready:
                return Err(report.to_error())

            released = self._release_held_capacity(uow, claim)
            if isinstance(released, Err):
                return released
            return Ok(
                _Outcome(
                    claim=released.value.model_copy(
                        update={"status": ClaimStatus.CLOSED}
                    ),
                    note=_note_of(payload) or "Claim closed",
                    events=((ClaimEventType.CLAIM_CLOSED, "Claim closed"),),
                )
            )

        return self._execute(ClaimCommand.CLOSE_CLAIM, claim_id, actor, _handler)

    # Cancellation sub-flow

    @performance_monitor("request_cancel")
    @beartype
    def request_cancel(
        self,
        claim_id: int,
        actor: Actor,
        request: CancellationRequest | None = None,
    ) -> Result[Claim, EngineError]:
        reason = request.reason if request is not None else None
        return self._execute(
            ClaimCommand.REQUEST_CANCEL,
            claim_id,
            actor,
            lambda uow, claim: self._cancellation_step(
                self._cancellation.request(claim, actor, reason, uow.clock())
            ),
        )

    @performance_monitor("accept_cancel")
    @beartype
    def accept_cancel(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        return self._execute(
            ClaimCommand.ACCEPT_CANCEL,
            claim_id,
            actor,
            lambda uow, claim: self._cancellation_step(
                self._cancellation.accept(claim, actor, _note_of(payload), uow.clock())
            ),
        )

    @performance_monitor("reject_cancel")
    @beartype
    def reject_cancel(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        return self._execute(
            ClaimCommand.REJECT_CANCEL,
            claim_id,
            actor,
            lambda uow, claim: self._cancellation_step(
                self._cancellation.reject(claim, actor, _note_of(payload), uow.clock())
            ),
        )

    @performance_monitor("confirm_handover_cancel")
    @beartype
    def confirm_handover_cancel(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        """Vehicle returned after an accepted cancellation; closes the claim."""

        def _handler(uow: UnitOfWork, claim: Claim) -> Result[_Outcome, EngineError]:
            step = self._cancellation.confirm_handover(
                claim, actor, _note_of(payload), uow.clock()
            )
            if isinstance(step, Err):
                return step
            released = self._release_held_capacity(uow, step.value.claim)
            if isinstance(released, Err):
                return released
            return self._cancellation_step(
                Ok(
                    CancellationStep(
                        claim=released.value,
                        note=step.value.note,
                        event_type=step.value.event_type,
                    )
                )
            )

        return self._execute(
            ClaimCommand.CONFIRM_HANDOVER_CANCEL, claim_id, actor, _handler
        )

    @performance_monitor("reopen_after_cancel")
    @beartype
    def reopen_after_cancel(
        self, claim_id: int, actor: Actor, payload: CommandNote | None = None
    ) -> Result[Claim, EngineError]:
        return self._execute(
            ClaimCommand.REOPEN_AFTER_CANCEL,
            claim_id,
            actor,
            lambda uow, claim: self._cancellation_step(
                self._cancellation.reopen(claim, actor, _note_of(payload), uow.clock())
            ),
        )

    # Internals

    def _execute(
        self,
        command: ClaimCommand,
        claim_id: int,
        actor: Actor,
        handler: _Handler,
    ) -> Result[Claim, EngineError]:
        rule = rule_for(command)
        pending: list[ClaimEvent] = []
        transition: list[ClaimStatus] = []

        def _operation(uow: UnitOfWork) -> Result[Claim, EngineError]:
            claim = uow.lock_claim(claim_id)
            if claim is None:
                return Err(EngineError.not_found("Claim", claim_id))

            refusal = self._check_command(command, rule, claim, actor)
            if refusal is not None:
                return Err(refusal)

            outcome = handler(uow, claim)
            if isinstance(outcome, Err):
                return outcome
            updated = outcome.value.claim

            if not can_move(claim.status, updated.status):
                raise RuntimeError(
                    f"{command.value} produced {claim.status.value} -> "
                    f"{updated.status.value}, which the successor table forbids"
                )

            now = uow.clock()
            staged = uow.stage_claim(updated.model_copy(update={"updated_at": now}))
            uow.append_history(
                staged,
                actor_id=actor.user_id,
                command=command.value,
                note=outcome.value.note,
            )

            transition[:] = [claim.status, staged.status]
            pending[:] = [
                ClaimEvent(
                    event_type=event_type,
                    claim_id=staged.id,
                    claim_number=staged.claim_number,
                    status=staged.status,
                    actor_id=actor.user_id,
                    message=message,
                    occurred_at=now,
                )
                for event_type, message in outcome.value.events
            ]
            return Ok(staged)

        result = run_in_transaction(self._store, _operation)
        if isinstance(result, Err):
            logger.debug(
                "%s on claim %s rejected: %s", command.value, claim_id, result.error
            )
            return result

        source, target = transition
        logger.info(
            "%s %s: %s -> %s by %s",
            result.value.claim_number,
            command.value,
            source.value,
            target.value,
            actor.username,
        )
        publish(self._sink, pending)
        return result

    def _check_command(
        self, command: ClaimCommand, rule: CommandRule, claim: Claim, actor: Actor
    ) -> EngineError | None:
        if claim.cancellation_active and not command.is_cancellation:
            return EngineError.invalid_transition(
                "CANCELLATION_IN_PROGRESS",
                f"{command.value} is blocked while cancellation is "
                f"{claim.cancellation_record.state.value}",
            )
        if not rule.allows(claim.status):
            return EngineError.invalid_transition(
                "INVALID_TRANSITION",
                f"{command.value} is not allowed from {claim.status.value}",
            )
        if actor.role not in rule.roles:
            return EngineError.permission_denied(
                f"{actor.role.value} cannot {command.value}"
            )
        if (
            actor.is_technician
            and claim.assignment is not None
            and claim.assignment.technician_id != actor.user_id
        ):
            return EngineError.permission_denied(
                f"Claim {claim.claim_number} is assigned to another technician"
            )
        return None

    def _merge_override(
        self, claim: Claim, update: DiagnosticUpdate, actor: Actor, now: datetime
    ) -> Result[WarrantyEligibility, EngineError]:
        """Apply override changes; confirming needs an override set earlier."""
        current = claim.eligibility_record
        override = (
            update.manual_warranty_override
            if update.manual_warranty_override is not None
            else current.manual_override
        )

        if update.manual_override_confirmed and not current.manual_override:
            return Err(
                EngineError.validation_failed(
                    (
                        MissingRequirement(
                            "OVERRIDE_NOT_SET",
                            "Set the manual warranty override before confirming it",
                        ),
                    )
                )
            )

        fields = current.model_dump()
        fields["manual_override"] = override
        if update.warranty_assessment is not None:
            fields["assessment"] = update.warranty_assessment

        if not override:
            fields.update(
                override_confirmed=False,
                override_confirmed_at=None,
                override_confirmed_by=None,
            )
        elif update.manual_override_confirmed is not None:
            confirmed = update.manual_override_confirmed
            fields.update(
                override_confirmed=confirmed,
                override_confirmed_at=now if confirmed else None,
                override_confirmed_by=actor.user_id if confirmed else None,
            )

        eligibility = WarrantyEligibility.model_validate(fields)
        if eligibility.auto_checked:
            eligibility = eligibility.model_copy(
                update={
                    "is_eligible": bool(eligibility.auto_eligible)
                    or eligibility.override_effective
                }
            )
        return Ok(eligibility)

    def _with_warranty_check(
        self, claim: Claim, vehicle: Vehicle, now: datetime
    ) -> _Outcome:
        verdict = self._evaluator.evaluate(vehicle, now.date())
        eligibility = apply_verdict(claim.warranty_eligibility, verdict, now)
        events: tuple[tuple[ClaimEventType, str], ...] = ()
        if not verdict.eligible and claim.eligibility_record.auto_eligible is not False:
            events = ((ClaimEventType.OUT_OF_WARRANTY, verdict.summary),)
        return _Outcome(
            claim=claim.model_copy(update={"warranty_eligibility": eligibility}),
            note=verdict.summary,
            events=events,
        )

    def _finish_work(
        self, uow: UnitOfWork, claim: Claim
    ) -> Result[Claim, EngineError]:
        """Release the technician and record labor hours against their stats."""
        assignment = claim.assignment
        if assignment is None:
            return Ok(claim)

        if assignment.holds_capacity:
            breakdown = self._costs.aggregate(claim)
            if isinstance(breakdown, Err):
                return breakdown
            released = self._assignments.release(
                uow,
                assignment.technician_id,
                completed_hours=breakdown.value.total_labor_hours,
            )
            if isinstance(released, Err):
                return released

        return Ok(
            claim.model_copy(
                update={
                    "assignment": assignment.model_copy(
                        update={
                            "holds_capacity": False,
                            "work_completed": True,
                            "completed_at": uow.clock(),
                        }
                    )
                }
            )
        )

    def _release_held_capacity(
        self, uow: UnitOfWork, claim: Claim
    ) -> Result[Claim, EngineError]:
        assignment = claim.assignment
        if assignment is None or not assignment.holds_capacity:
            return Ok(claim)
        released = self._assignments.release(uow, assignment.technician_id)
        if isinstance(released, Err):
            return released
        return Ok(
            claim.model_copy(
                update={
                    "assignment": assignment.model_copy(
                        update={"holds_capacity": False}
                    )
                }
            )
        )

    @staticmethod
    def _cancellation_step(
        step: Result[CancellationStep, EngineError],
    ) -> Result[_Outcome, EngineError]:
        if isinstance(step, Err):
            return step
        value = step.value
        return Ok(
            _Outcome(
                claim=value.claim,
                note=value.note,
                events=((value.event_type, value.note),),
            )
        )

