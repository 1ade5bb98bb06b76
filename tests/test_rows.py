"""Tests for the row/model accessors shared by the scorers."""

from reportwatch.models import IncidentCategory, IncidentStatus, StatusUpdate
from reportwatch.services.confidence_scorer import has_narrative_detail
from reportwatch.services.risk_scorer import calculate_risk_score
from reportwatch.utils.rows import enum_value, field_of
from conftest import NOW, make_incident


def test_field_of_reads_dicts_and_models():
    update = StatusUpdate(status="verified")

    assert field_of({"status": "pending"}, "status") == "pending"
    assert field_of({}, "status") is None
    assert field_of(update, "status") is IncidentStatus.VERIFIED
    assert field_of(update, "missing") is None


def test_enum_value_unwraps_members_only():
    assert enum_value(IncidentCategory.FRAUD) == "fraud"
    assert enum_value("fraud") == "fraud"
    assert enum_value(None) is None


def test_scorers_treat_enum_members_like_strings():
    as_strings = [make_incident(status="verified", severity="high")]
    as_enums = [make_incident(status=IncidentStatus.VERIFIED, severity="high")]

    assert calculate_risk_score(as_enums, now=NOW) == calculate_risk_score(as_strings, now=NOW)
    assert has_narrative_detail({"what_was_promised": "  "}) is False
    assert has_narrative_detail({"what_actually_happened": "Nothing arrived"}) is True
