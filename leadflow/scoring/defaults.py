"""Default scoring factor catalog."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from leadflow.models.scoring_factor import ScoringFactor
from leadflow.scoring.engine import load_active_factors, load_factor, weight_budget_report

logger = logging.getLogger(__name__)


def default_factor_definitions() -> list[dict[str, Any]]:
    return [
        {
            "name": "company_name_present",
            "category": "company",
            "weight": 10,
            "calculation_method": "exact_match",
            "value_mappings": {"present": 10, "absent": 0},
            "description": "Adds points if company name is provided",
        },
        {
            "name": "estimated_value_tier",
            "category": "service",
            "weight": 30,
            "calculation_method": "range",
            "value_mappings": {"1000+": 30, "500-999": 20, "100-499": 10, "0-99": 5},
            "description": "Higher estimated values get more points",
        },
        {
            "name": "service_type_priority",
            "category": "service",
            "weight": 25,
            "calculation_method": "exact_match",
            "value_mappings": {"corporate": 25, "airport": 20, "events": 15, "wedding": 15, "hourly": 10},
            "description": "Corporate bookings have highest priority",
        },
        {
            "name": "geographic_proximity",
            "category": "geographic",
            "weight": 15,
            "calculation_method": "range",
            "value_mappings": {"0-25": 15, "26-50": 10, "51-100": 5, "100+": 0},
            "description": "Closer locations are prioritized",
        },
        {
            "name": "group_size_factor",
            "category": "service",
            "weight": 15,
            "calculation_method": "range",
            "value_mappings": {"8+": 15, "4-7": 10, "2-3": 5, "1": 0},
            "description": "Larger groups generate more revenue",
        },
        {
            "name": "timing_urgency",
            "category": "timing",
            "weight": 5,
            "calculation_method": "formula",
            "value_mappings": {"same_day": 5, "next_day": 3, "future": 1},
            "description": "Urgent bookings need immediate attention",
            # Seeded inactive; enable it to reward near-term bookings.
            "active": False,
        },
    ]


def seed_default_factors(session: Session) -> list[ScoringFactor]:
    """Insert any missing default factors; existing rows are left untouched."""
    existing = set(session.scalars(select(ScoringFactor.name)).all())
    created: list[ScoringFactor] = []
    for definition in default_factor_definitions():
        if definition["name"] in existing:
            continue
        load_factor(
            definition["name"],
            definition["category"],
            definition["weight"],
            definition["calculation_method"],
            definition["value_mappings"],
        )
        row = ScoringFactor(**{"active": True, **definition})
        session.add(row)
        created.append(row)
    session.commit()
    if created:
        logger.info(
            "scoring.defaults_seeded",
            extra={"event": "scoring.defaults_seeded", "factors": [row.name for row in created]},
        )
    budget = weight_budget_report(load_active_factors(session))
    log = logger.warning if budget["exceeds_cap"] else logger.info
    log(
        "scoring.weight_budget",
        extra={
            "event": "scoring.weight_budget",
            "total_weight": budget["total_weight"],
            "factor_count": budget["factor_count"],
            "exceeds_cap": budget["exceeds_cap"],
        },
    )
    return created
