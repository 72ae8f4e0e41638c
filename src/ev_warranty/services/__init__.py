# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Business logic service layer."""

from ev_warranty.core.result_types import Err, Ok, Result

from .assignment import AssignmentCoordinator
from .collaborators import (
    InMemoryPartCatalog,
    InMemoryVehicles,
    InMemoryWarrantyConditions,
    InMemoryWorkOrders,
    PartCatalog,
    VehicleDirectory,
    WarrantyConditionLookup,
    WorkOrderQuery,
)
from .cost_aggregator import ClaimCostAggregator, CostBreakdown
from .eligibility import WarrantyEligibilityEvaluator
from .notifications import (
    ClaimEvent,
    ClaimEventType,
    LoggingNotificationSink,
    NotificationSink,
)
from .state_machine import ClaimLifecycleStateMachine, ClaimProgress
from .transitions import ClaimCommand
from .validation import ClaimValidationService, ReadinessReport

__all__ = [
    "Result",
    "Ok",
    "Err",
    "ClaimLifecycleStateMachine",
    "ClaimProgress",
    "ClaimCommand",
    "ClaimValidationService",
    "ReadinessReport",
    "ClaimCostAggregator",
    "CostBreakdown",
    "WarrantyEligibilityEvaluator",
    "AssignmentCoordinator",
    "ClaimEvent",
    "ClaimEventType",
    "NotificationSink",
    "LoggingNotificationSink",
    "WorkOrderQuery",
    "VehicleDirectory",
    "WarrantyConditionLookup",
    "PartCatalog",
    "InMemoryWorkOrders",
    "InMemoryVehicles",
    "InMemoryWarrantyConditions",
    "InMemoryPartCatalog",
]
