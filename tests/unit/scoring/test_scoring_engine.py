from __future__ import annotations

import logging
from datetime import datetime
from types import SimpleNamespace

import pytest

from conftest import NOW, lead_data
from leadflow.core.exceptions import ValidationFailure
from leadflow.scoring.defaults import default_factor_definitions, seed_default_factors
from leadflow.scoring.engine import load_active_factors, load_factor, priority_level_for, score, weight_budget_report
from leadflow.services.lead_service import LeadService


def _factors(*names):
    definitions = {item["name"]: item for item in default_factor_definitions()}
    return [
        load_factor(
            name,
            definitions[name]["category"],
            definitions[name]["weight"],
            definitions[name]["calculation_method"],
            definitions[name]["value_mappings"],
        )
        for name in names
    ]


def _lead(**fields):
    base = {
        "company_name": None,
        "email": "lead@example.com",
        "phone": None,
        "pickup_location": None,
        "destination": None,
        "website": None,
        "service_type": "hourly",
        "service_date": None,
        "estimated_value": None,
        "passenger_count": None,
        "distance_from_base": None,
        "budget_tier": None,
        "company_size_estimate": None,
        "created_at": datetime(2026, 10, 21, 15, 0),
    }
    base.update(fields)
    return SimpleNamespace(**base)


def test_corporate_lead_scores_ninety_with_priority_five():
    factors = _factors(
        "company_name_present",
        "estimated_value_tier",
        "service_type_priority",
        "geographic_proximity",
        "group_size_factor",
    )
    lead = _lead(
        company_name="Acme Corp",
        estimated_value=1500,
        service_type="corporate",
        passenger_count=6,
        distance_from_base=10,
    )

    result = score(lead, factors)

    assert result.total == 90
    assert result.priority_level == 5
    assert {row["factor"]: row["points"] for row in result.breakdown} == {
        "company_name_present": 10,
        "estimated_value_tier": 30,
        "service_type_priority": 25,
        "geographic_proximity": 15,
        "group_size_factor": 10,
    }


def test_score_is_capped_at_one_hundred():
    factors = [
        load_factor("company_name_present", "company", 60, "exact_match", {"present": 60, "absent": 0}),
        load_factor("service_type_priority", "service", 60, "exact_match", {"corporate": 60}),
    ]
    result = score(_lead(company_name="Acme", service_type="corporate"), factors)
    assert result.total == 100
    assert weight_budget_report(factors)["exceeds_cap"] is True


def test_missing_distance_scores_as_far_away():
    factors = _factors("geographic_proximity")
    assert score(_lead(distance_from_base=None), factors).total == 0
    assert score(_lead(distance_from_base=30), factors).total == 10


def test_unmapped_category_scores_zero():
    factors = [load_factor("service_type_priority", "service", 25, "exact_match", {"corporate": 25})]
    assert score(_lead(service_type="wedding"), factors).total == 0


def test_timing_urgency_uses_hours_until_service():
    factors = _factors("timing_urgency")
    created = datetime(2026, 10, 21, 15, 0)
    assert score(_lead(created_at=created, service_date=datetime(2026, 10, 22, 9, 0)), factors).total == 5
    assert score(_lead(created_at=created, service_date=datetime(2026, 10, 23, 9, 0)), factors).total == 3
    assert score(_lead(created_at=created, service_date=None), factors).total == 1


@pytest.mark.parametrize(
    ("total", "level"),
    [(100, 5), (80, 5), (79, 4), (60, 4), (45, 3), (20, 2), (19, 1), (0, 1)],
)
def test_priority_level_thresholds(total, level):
    assert priority_level_for(total) == level


def test_malformed_range_bucket_is_rejected_at_load_time():
    with pytest.raises(ValidationFailure):
        load_factor("estimated_value_tier", "service", 30, "range", {"lots": 30})


def test_formula_with_unknown_outcome_is_rejected():
    with pytest.raises(ValidationFailure):
        load_factor("timing_urgency", "timing", 5, "formula", {"yesterday": 5})


def test_method_must_match_factor_extractor():
    with pytest.raises(ValidationFailure):
        load_factor("estimated_value_tier", "service", 30, "exact_match", {"1000": 30})


def test_points_outside_range_are_rejected():
    with pytest.raises(ValidationFailure):
        load_factor("company_name_present", "company", 10, "exact_match", {"present": 150})


def test_seeded_defaults_load_heaviest_first(session):
    created = seed_default_factors(session)
    assert len(created) == len(default_factor_definitions())
    assert seed_default_factors(session) == []

    factors = load_active_factors(session)
    assert factors[0].name == "estimated_value_tier"
    assert "timing_urgency" not in {factor.name for factor in factors}
    assert weight_budget_report(factors)["total_weight"] == 95


def test_default_catalog_scores_corporate_lead_ninety(session):
    seed_default_factors(session)

    lead = LeadService(db=session).create_lead(
        lead_data(
            company_name="Acme Corp",
            estimated_value=1500,
            service_type="corporate",
            passenger_count=6,
            distance_from_base=10,
        ),
        now=NOW,
    )

    assert lead.score == 90
    assert lead.priority_level == 5
    assert sum(row["points"] for row in lead.score_breakdown) == 90


def test_seeding_logs_active_weight_budget(session, caplog):
    with caplog.at_level(logging.INFO, logger="leadflow.scoring.defaults"):
        seed_default_factors(session)

    [record] = [row for row in caplog.records if row.getMessage() == "scoring.weight_budget"]
    assert record.total_weight == 95
    assert record.exceeds_cap is False
