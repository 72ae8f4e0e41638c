# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Domain models for the claim lifecycle engine."""

from .base import BaseModelConfig, TimestampedModel
from .claim import (
    CancellationOutcome,
    CancellationState,
    Claim,
    ClaimApproval,
    ClaimAssignment,
    ClaimCancellation,
    ClaimCost,
    ClaimDiagnostic,
    ClaimStatus,
    ClaimStatusHistory,
    PaymentStatus,
    RepairConfiguration,
    RepairType,
    WarrantyEligibility,
)
from .commands import (
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
from .technician import CertificationLevel, TechnicianProfile, TechnicianStatus
from .user import Actor, ActorRole
from .warranty import EligibilityVerdict, Vehicle, WarrantyCondition
from .work_order import (
    PartSource,
    ServiceCatalogLine,
    WorkOrder,
    WorkOrderPart,
    WorkOrderStatus,
)

__all__ = [
    # Base models
    "BaseModelConfig",
    "TimestampedModel",
    # Claim aggregate
    "Claim",
    "ClaimStatus",
    "ClaimStatusHistory",
    "ClaimDiagnostic",
    "ClaimCost",
    "ClaimApproval",
    "ClaimAssignment",
    "WarrantyEligibility",
    "RepairConfiguration",
    "ClaimCancellation",
    "CancellationState",
    "CancellationOutcome",
    "RepairType",
    "PaymentStatus",
    # Commands
    "DraftRequest",
    "DiagnosticUpdate",
    "AssignmentRequest",
    "ApprovalDecision",
    "RejectionDecision",
    "ResubmissionRequest",
    "PaymentUpdate",
    "InspectionResult",
    "HandoverRequest",
    "CancellationRequest",
    "CommandNote",
    # Collaborator records
    "Actor",
    "ActorRole",
    "TechnicianProfile",
    "TechnicianStatus",
    "CertificationLevel",
    "Vehicle",
    "WarrantyCondition",
    "EligibilityVerdict",
    "WorkOrder",
    "WorkOrderPart",
    "WorkOrderStatus",
    "PartSource",
    "ServiceCatalogLine",
]
