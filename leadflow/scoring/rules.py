"""Tagged scoring rule variants parsed from factor value mappings.

Each ``ScoringFactor`` row stores an open JSON mapping. It is parsed once, when
the factor is loaded, into one of four closed rule shapes so malformed
configuration fails at load time instead of silently scoring zero later.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from leadflow.core.exceptions import ValidationFailure
from leadflow.models.enums import CalculationMethod

_OPEN_BUCKET = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*\+\s*$")
_CLOSED_BUCKET = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*-\s*(\d+(?:\.\d+)?)\s*$")
_EXACT_BUCKET = re.compile(r"^\s*(-?\d+(?:\.\d+)?)\s*$")

MAX_POINTS = 100


def _points(factor: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailure(f"{factor}: points for '{key}' must be an integer", field="value_mappings")
    if value < 0 or value > MAX_POINTS:
        raise ValidationFailure(f"{factor}: points for '{key}' must be within 0..{MAX_POINTS}", field="value_mappings")
    return value


def _as_number(raw: str) -> float:
    number = float(raw)
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class ExactMatchRule:
    """Categorical lookup; unmapped values score 0."""

    table: Mapping[str, int]

    def evaluate(self, value: Any) -> int:
        if value is None:
            return 0
        return self.table.get(str(getattr(value, "value", value)), 0)


@dataclass(frozen=True)
class RangeBucket:
    label: str
    low: float
    high: float | None
    exact: bool
    points: int

    def contains(self, value: float) -> bool:
        if self.exact:
            return value == self.low
        if self.high is None:
            return value >= self.low
        return self.low <= value <= self.high


@dataclass(frozen=True)
class RangeRule:
    """Ordered numeric buckets; the first matching bucket wins."""

    buckets: tuple[RangeBucket, ...]

    def evaluate(self, value: Any) -> int:
        if value is None:
            return 0
        numeric = float(value)
        for bucket in self.buckets:
            if bucket.contains(numeric):
                return bucket.points
        return 0


@dataclass(frozen=True)
class BooleanRule:
    when_true: int
    when_false: int

    def evaluate(self, value: Any) -> int:
        return self.when_true if value else self.when_false


@dataclass(frozen=True)
class FormulaRule:
    """Maps the outcome label of a derived computation to points."""

    outcomes: Mapping[str, int]

    def evaluate(self, value: Any) -> int:
        if value is None:
            return 0
        return self.outcomes.get(str(value), 0)


Rule = ExactMatchRule | RangeRule | BooleanRule | FormulaRule


def parse_range_bucket(factor: str, label: str, points: int) -> RangeBucket:
    match = _OPEN_BUCKET.match(label)
    if match:
        return RangeBucket(label=label, low=_as_number(match.group(1)), high=None, exact=False, points=points)
    match = _CLOSED_BUCKET.match(label)
    if match:
        low, high = _as_number(match.group(1)), _as_number(match.group(2))
        if low > high:
            raise ValidationFailure(f"{factor}: bucket '{label}' has low > high", field="value_mappings")
        return RangeBucket(label=label, low=low, high=high, exact=False, points=points)
    match = _EXACT_BUCKET.match(label)
    if match:
        value = _as_number(match.group(1))
        return RangeBucket(label=label, low=value, high=value, exact=True, points=points)
    raise ValidationFailure(f"{factor}: unparseable range bucket '{label}'", field="value_mappings")


def parse_rule(
    factor: str,
    method: str,
    mappings: Mapping[str, Any] | None,
    allowed_outcomes: frozenset[str] | None = None,
) -> Rule:
    """Parse a raw value mapping into a validated rule variant."""
    if mappings is None:
        mappings = {}
    if not isinstance(mappings, Mapping):
        raise ValidationFailure(f"{factor}: value_mappings must be an object", field="value_mappings")
    try:
        calculation = CalculationMethod(method)
    except ValueError as exc:
        raise ValidationFailure(f"{factor}: unknown calculation method '{method}'", field="calculation_method") from exc

    if calculation is CalculationMethod.EXACT_MATCH:
        return ExactMatchRule(table={str(k): _points(factor, str(k), v) for k, v in mappings.items()})

    if calculation is CalculationMethod.RANGE:
        buckets = tuple(
            parse_range_bucket(factor, str(label), _points(factor, str(label), value))
            for label, value in mappings.items()
        )
        return RangeRule(buckets=buckets)

    if calculation is CalculationMethod.BOOLEAN:
        unknown = set(mappings) - {"true", "false"}
        if unknown:
            raise ValidationFailure(f"{factor}: boolean keys must be 'true'/'false', got {sorted(unknown)}", field="value_mappings")
        return BooleanRule(
            when_true=_points(factor, "true", mappings.get("true", 0)),
            when_false=_points(factor, "false", mappings.get("false", 0)),
        )

    outcomes = {str(k): _points(factor, str(k), v) for k, v in mappings.items()}
    if allowed_outcomes is not None:
        unknown = set(outcomes) - allowed_outcomes
        if unknown:
            raise ValidationFailure(f"{factor}: unknown formula outcomes {sorted(unknown)}", field="value_mappings")
    return FormulaRule(outcomes=outcomes)
