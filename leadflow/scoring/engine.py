"""Deterministic lead scoring engine."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadflow.core.exceptions import ValidationFailure
from leadflow.models.enums import CalculationMethod, FactorCategory
from leadflow.models.scoring_factor import ScoringFactor
from leadflow.scoring.rules import Rule, parse_rule

SCORE_CAP = 100

# (minimum score, priority level), checked top-down.
PRIORITY_THRESHOLDS: tuple[tuple[int, int], ...] = ((80, 5), (60, 4), (40, 3), (20, 2))

TIMING_OUTCOMES = frozenset({"same_day", "next_day", "future"})
COMPLETENESS_OUTCOMES = frozenset({"complete", "mostly_complete", "partial", "minimal"})


def _timing_urgency(lead: Any) -> str:
    service_date = getattr(lead, "service_date", None)
    created_at = getattr(lead, "created_at", None)
    if service_date is None or created_at is None:
        return "future"
    hours_until_service = (service_date - created_at).total_seconds() / 3600
    if hours_until_service <= 24:
        return "same_day"
    if hours_until_service <= 48:
        return "next_day"
    return "future"


def _contact_completeness(lead: Any) -> str:
    completeness = 0
    if getattr(lead, "email", None):
        completeness += 25
    if getattr(lead, "phone", None):
        completeness += 25
    if getattr(lead, "company_name", None):
        completeness += 25
    if getattr(lead, "pickup_location", None) or getattr(lead, "destination", None):
        completeness += 25
    if completeness >= 100:
        return "complete"
    if completeness >= 75:
        return "mostly_complete"
    if completeness >= 50:
        return "partial"
    return "minimal"


def _weekend_submission(lead: Any) -> bool:
    created_at: datetime | None = getattr(lead, "created_at", None)
    return created_at is not None and created_at.weekday() >= 5


def _value_or(attribute: str, default: Any) -> Callable[[Any], Any]:
    def extract(lead: Any) -> Any:
        value = getattr(lead, attribute, None)
        return default if value is None else value

    return extract


@dataclass(frozen=True)
class Extractor:
    method: CalculationMethod
    fields: tuple[str, ...]
    read: Callable[[Any], Any]
    outcomes: frozenset[str] | None = None


EXTRACTORS: dict[str, Extractor] = {
    "company_name_present": Extractor(
        CalculationMethod.EXACT_MATCH,
        ("company_name",),
        lambda lead: "present" if (getattr(lead, "company_name", None) or "").strip() else "absent",
    ),
    "service_type_priority": Extractor(CalculationMethod.EXACT_MATCH, ("service_type",), _value_or("service_type", None)),
    "budget_tier": Extractor(CalculationMethod.EXACT_MATCH, ("budget_tier",), _value_or("budget_tier", None)),
    "estimated_value_tier": Extractor(CalculationMethod.RANGE, ("estimated_value",), _value_or("estimated_value", 0)),
    "geographic_proximity": Extractor(CalculationMethod.RANGE, ("distance_from_base",), _value_or("distance_from_base", 999)),
    "group_size_factor": Extractor(CalculationMethod.RANGE, ("passenger_count",), _value_or("passenger_count", 1)),
    "company_size_estimate": Extractor(
        CalculationMethod.RANGE, ("company_size_estimate",), _value_or("company_size_estimate", 0)
    ),
    "timing_urgency": Extractor(
        CalculationMethod.FORMULA, ("service_date", "created_at"), _timing_urgency, TIMING_OUTCOMES
    ),
    "contact_completeness": Extractor(
        CalculationMethod.FORMULA,
        ("email", "phone", "company_name", "pickup_location", "destination"),
        _contact_completeness,
        COMPLETENESS_OUTCOMES,
    ),
    "has_website": Extractor(
        CalculationMethod.BOOLEAN, ("website",), lambda lead: bool((getattr(lead, "website", None) or "").strip())
    ),
    "weekend_submission": Extractor(CalculationMethod.BOOLEAN, ("created_at",), _weekend_submission),
}


@dataclass(frozen=True)
class LoadedFactor:
    """A validated, evaluation-ready scoring factor snapshot."""

    name: str
    category: str
    weight: int
    method: CalculationMethod
    rule: Rule
    extractor: Extractor

    def evaluate(self, lead: Any) -> int:
        return self.rule.evaluate(self.extractor.read(lead))


@dataclass(frozen=True)
class ScoreResult:
    total: int
    breakdown: list[dict[str, Any]] = field(default_factory=list)

    @property
    def priority_level(self) -> int:
        return priority_level_for(self.total)


def load_factor(
    name: str,
    category: str,
    weight: int,
    calculation_method: str,
    value_mappings: dict[str, Any] | None,
) -> LoadedFactor:
    """Validate one factor definition and bind its rule and extractor."""
    extractor = EXTRACTORS.get(name)
    if extractor is None:
        raise ValidationFailure(f"Unknown scoring factor: {name}", field="name")
    try:
        FactorCategory(category)
    except ValueError as exc:
        raise ValidationFailure(f"{name}: unknown category '{category}'", field="category") from exc
    if isinstance(weight, bool) or not isinstance(weight, int) or not 0 <= weight <= 100:
        raise ValidationFailure(f"{name}: weight must be an integer within 0..100", field="weight")

    rule = parse_rule(name, calculation_method, value_mappings, extractor.outcomes)
    method = CalculationMethod(calculation_method)
    if method is not extractor.method:
        raise ValidationFailure(
            f"{name}: expects calculation method '{extractor.method.value}', got '{method.value}'",
            field="calculation_method",
        )
    return LoadedFactor(name=name, category=category, weight=weight, method=method, rule=rule, extractor=extractor)


def load_factor_row(row: ScoringFactor) -> LoadedFactor:
    return load_factor(row.name, row.category, row.weight, row.calculation_method, row.value_mappings)


def load_active_factors(session: Session) -> list[LoadedFactor]:
    """Read a consistent snapshot of the active factors, heaviest first."""
    rows = session.scalars(
        select(ScoringFactor)
        .where(ScoringFactor.active.is_(True))
        .order_by(ScoringFactor.weight.desc(), ScoringFactor.name.asc())
    ).all()
    return [load_factor_row(row) for row in rows]


def priority_level_for(total: int) -> int:
    for minimum, level in PRIORITY_THRESHOLDS:
        if total >= minimum:
            return level
    return 1


def score(lead: Any, factors: Sequence[LoadedFactor]) -> ScoreResult:
    """Score a lead against active factors; pure and capped at 100."""
    breakdown: list[dict[str, Any]] = []
    raw_total = 0
    for factor in factors:
        points = factor.evaluate(lead)
        raw_total += points
        breakdown.append(
            {
                "factor": factor.name,
                "category": factor.category,
                "weight": factor.weight,
                "points": points,
            }
        )
    return ScoreResult(total=max(0, min(SCORE_CAP, raw_total)), breakdown=breakdown)


def scoring_fields(factors: Iterable[LoadedFactor]) -> frozenset[str]:
    """Lead attributes read by the given factors."""
    fields: set[str] = set()
    for factor in factors:
        fields.update(factor.extractor.fields)
    return frozenset(fields)


def weight_budget_report(factors: Iterable[LoadedFactor]) -> dict[str, Any]:
    """Report the active weight sum; the engine never enforces it."""
    weights = {factor.name: factor.weight for factor in factors}
    total_weight = sum(weights.values())
    return {
        "total_weight": total_weight,
        "factor_count": len(weights),
        "weights": weights,
        "exceeds_cap": total_weight > SCORE_CAP,
    }
