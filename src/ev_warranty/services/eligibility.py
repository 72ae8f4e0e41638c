# EV Warranty Engine - Claim Lifecycle Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""Warranty eligibility evaluation.

Evaluation is a pure function of the vehicle, the candidate conditions and
the evaluation date. The same inputs always give the same verdict.
"""

from calendar import monthrange
from collections.abc import Iterable
from datetime import date, datetime
from typing import Final

from beartype import beartype

from ..core.logging_utils import get_logger
from ..models.claim import WarrantyEligibility
from ..models.warranty import EligibilityVerdict, Vehicle, WarrantyCondition
from .collaborators import WarrantyConditionLookup

logger = get_logger(__name__)

NO_POLICY_FOUND: Final = "NO_POLICY_FOUND"
COVERAGE_PERIOD_EXCEEDED: Final = "COVERAGE_PERIOD_EXCEEDED"
WITHIN_COVERAGE_PERIOD: Final = "WITHIN_COVERAGE_PERIOD"
MILEAGE_LIMIT_EXCEEDED: Final = "MILEAGE_LIMIT_EXCEEDED"
WITHIN_MILEAGE_LIMIT: Final = "WITHIN_MILEAGE_LIMIT"
MISSING_WARRANTY_START: Final = "MISSING_WARRANTY_START"
MISSING_MILEAGE: Final = "MISSING_MILEAGE"
UNLIMITED_COVERAGE: Final = "UNLIMITED_COVERAGE"


@beartype
def months_between(start: date, end: date) -> int:
    """Whole months elapsed from ``start`` to ``end`` (0 if end precedes start)."""
    if end <= start:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return max(months, 0)


@beartype
def add_months(start: date, months: int) -> date:
    """Calendar date ``months`` after ``start``, clamped to the month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(start.day, monthrange(year, month)[1]))


@beartype
def resolve_condition(
    conditions: Iterable[WarrantyCondition], model_id: int, as_of: date
) -> WarrantyCondition | None:
    """Pick the most specific condition effective on ``as_of``.

    A condition for the exact model beats a generic one; among equally
    specific conditions the most recently updated wins.
    """
    candidates = [
        c
        for c in conditions
        if c.is_effective_on(as_of) and c.model_id in (model_id, None)
    ]
    if not candidates:
        return None
    return max(
        candidates, key=lambda c: (c.model_id is not None, c.updated_at, c.id)
    )


@beartype
def evaluate_coverage(
    vehicle_age_months: int | None,
    mileage_km: int | None,
    condition: WarrantyCondition | None,
    *,
    on_end_date: bool = False,
) -> EligibilityVerdict:
    """Compare age and mileage against a condition's limits.

    The vehicle is covered only while it is inside every limit the
    condition defines. Period reasons come before mileage reasons.
    ``on_end_date`` marks an evaluation on the last day of the coverage
    period, which is still covered.
    """
    if condition is None:
        return EligibilityVerdict(
            eligible=False,
            reasons=(NO_POLICY_FOUND,),
            vehicle_age_months=vehicle_age_months,
            mileage_km=mileage_km,
        )

    reasons: list[str] = []
    eligible = True

    coverage_months = condition.coverage_months
    if coverage_months is not None:
        if vehicle_age_months is None:
            reasons.append(MISSING_WARRANTY_START)
            eligible = False
        elif vehicle_age_months < coverage_months or (
            vehicle_age_months == coverage_months and on_end_date
        ):
            reasons.append(WITHIN_COVERAGE_PERIOD)
        else:
            reasons.append(COVERAGE_PERIOD_EXCEEDED)
            eligible = False

    if condition.coverage_km is not None:
        if mileage_km is None:
            reasons.append(MISSING_MILEAGE)
            eligible = False
        elif mileage_km <= condition.coverage_km:
            reasons.append(WITHIN_MILEAGE_LIMIT)
        else:
            reasons.append(MILEAGE_LIMIT_EXCEEDED)
            eligible = False

    if not reasons:
        reasons.append(UNLIMITED_COVERAGE)

    return EligibilityVerdict(
        eligible=eligible,
        reasons=tuple(reasons),
        applied_coverage_years=condition.coverage_years,
        applied_coverage_km=condition.coverage_km,
        condition_id=condition.id,
        vehicle_age_months=vehicle_age_months,
        mileage_km=mileage_km,
    )


@beartype
def evaluate_vehicle(
    vehicle: Vehicle, conditions: Iterable[WarrantyCondition], as_of: date
) -> EligibilityVerdict:
    """Resolve the condition for the vehicle's model and evaluate it.

    The coverage period runs up to and including its end date.
    """
    condition = resolve_condition(conditions, vehicle.model_id, as_of)
    start = vehicle.coverage_start
    if start is None:
        return evaluate_coverage(None, vehicle.mileage_km, condition)

    coverage_months = condition.coverage_months if condition is not None else None
    on_end_date = (
        coverage_months is not None and as_of == add_months(start, coverage_months)
    )
    return evaluate_coverage(
        months_between(start, as_of),
        vehicle.mileage_km,
        condition,
        on_end_date=on_end_date,
    )


@beartype
def apply_verdict(
    current: WarrantyEligibility | None,
    verdict: EligibilityVerdict,
    checked_at: datetime,
) -> WarrantyEligibility:
    """Record an automatic check on the claim's eligibility sub-record.

    Override flags and the staff assessment text are kept; the effective
    eligibility is the automatic result unless a confirmed override is in
    place.
    """
    base = current or WarrantyEligibility()
    return WarrantyEligibility(
        assessment=base.assessment,
        is_eligible=verdict.eligible or base.override_effective,
        auto_eligible=verdict.eligible,
        auto_reasons=verdict.reasons,
        auto_checked_at=checked_at,
        checked_mileage_km=verdict.mileage_km,
        applied_coverage_years=verdict.applied_coverage_years,
        applied_coverage_km=verdict.applied_coverage_km,
        manual_override=base.manual_override,
        override_confirmed=base.override_confirmed,
        override_confirmed_at=base.override_confirmed_at,
        override_confirmed_by=base.override_confirmed_by,
    )


class WarrantyEligibilityEvaluator:
    """Evaluates vehicles against conditions from the lookup collaborator."""

    def __init__(self, conditions: WarrantyConditionLookup) -> None:
        """Initialize evaluator with dependency validation."""
        if not isinstance(conditions, WarrantyConditionLookup):
            raise ValueError("Warranty condition lookup required")
        self._conditions = conditions

    @beartype
    def evaluate(self, vehicle: Vehicle, as_of: date) -> EligibilityVerdict:
        verdict = evaluate_vehicle(
            vehicle, self._conditions.conditions_for_model(vehicle.model_id), as_of
        )
        logger.debug(
            "Eligibility for vehicle %s on %s: %s",
            vehicle.id,
            as_of.isoformat(),
            verdict.summary,
        )
        return verdict
