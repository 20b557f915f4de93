"""Lead scoring engine and default factor catalog."""

from leadflow.scoring.engine import (
    LoadedFactor,
    ScoreResult,
    load_active_factors,
    load_factor,
    priority_level_for,
    score,
    scoring_fields,
    weight_budget_report,
)

__all__ = [
    "LoadedFactor",
    "ScoreResult",
    "load_active_factors",
    "load_factor",
    "priority_level_for",
    "score",
    "scoring_fields",
    "weight_budget_report",
]
