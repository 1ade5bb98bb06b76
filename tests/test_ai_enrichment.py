"""Tests for the best-effort categorization and duplicate-detection calls."""

import time
import uuid

import pytest

from reportwatch.exceptions import CollaboratorUnavailable
from reportwatch.services.ai_enrichment import AIEnrichmentService, SIMILARITY_MESSAGE
from reportwatch.services.llm_errors import ErrorCategory, LLMError
from reportwatch.utils.llm_parsing import parse_llm_json
from conftest import FakeRouter, make_ai_settings


INCIDENT = {
    "id": uuid.uuid4(),
    "title": "Caller posing as bank fraud team",
    "description": "Asked for a one-time passcode over the phone.",
    "category": "fraud",
    "date_occurred": "2026-02-28",
}


def _candidate(title="Similar bank call"):
    return {"id": uuid.uuid4(), "title": title, "description": "Same script.", "category": "fraud"}


class SlowRouter(FakeRouter):
    def call(self, *args, **kwargs):
        time.sleep(0.3)
        return super().call(*args, **kwargs)


# ============================================================
# Categorization
# ============================================================

async def test_categorize_returns_suggestion(enrichment):
    result = await enrichment.categorize(INCIDENT)

    assert result == {
        "suggested": "scam",
        "confidence": 82,
        "explanation": "Deceptive scheme.",
        "differs_from_submitted": True,
    }


async def test_categorize_clamps_confidence():
    router = FakeRouter(category_reply='{"primary_category": "fraud", "confidence": 140}')
    service = AIEnrichmentService(router=router, settings=make_ai_settings())

    result = await service.categorize(INCIDENT)

    assert result["confidence"] == 100
    assert result["differs_from_submitted"] is False


async def test_unknown_category_is_unavailable():
    router = FakeRouter(category_reply='{"primary_category": "espionage", "confidence": 90}')
    service = AIEnrichmentService(router=router, settings=make_ai_settings())

    with pytest.raises(CollaboratorUnavailable):
        await service.categorize(INCIDENT)


async def test_fenced_reply_is_parsed():
    router = FakeRouter(
        category_reply='Here you go:\n```json\n{"primary_category": "scam", "confidence": 60}\n```')
    service = AIEnrichmentService(router=router, settings=make_ai_settings())

    assert (await service.categorize(INCIDENT))["suggested"] == "scam"


async def test_garbage_reply_is_unavailable():
    router = FakeRouter(category_reply="I cannot help with that.")
    service = AIEnrichmentService(router=router, settings=make_ai_settings())

    with pytest.raises(CollaboratorUnavailable):
        await service.categorize(INCIDENT)


async def test_provider_error_is_unavailable():
    error = LLMError(ErrorCategory.TRANSIENT, "rate_limit", "slow down", "anthropic")
    service = AIEnrichmentService(router=FakeRouter(error=error), settings=make_ai_settings())

    with pytest.raises(CollaboratorUnavailable):
        await service.categorize(INCIDENT)


async def test_timeout_is_unavailable():
    router = SlowRouter(category_reply='{"primary_category": "scam", "confidence": 50}')
    service = AIEnrichmentService(router=router, settings=make_ai_settings(timeout=0.05))

    with pytest.raises(CollaboratorUnavailable):
        await service.categorize(INCIDENT)


async def test_unconfigured_provider_is_unavailable(router):
    router._provider.available = False
    service = AIEnrichmentService(router=router, settings=make_ai_settings())

    with pytest.raises(CollaboratorUnavailable):
        await service.categorize(INCIDENT)
    assert router.calls == []


# ============================================================
# Duplicate detection
# ============================================================

async def test_duplicates_filtered_and_sorted():
    strong, weak, medium = _candidate("Strong"), _candidate("Weak"), _candidate("Medium")
    reply = (
        '{"similar": ['
        f'{{"incident_id": "{weak["id"]}", "similarity_score": 30, "reason": "same bank"}},'
        f'{{"incident_id": "{medium["id"]}", "similarity_score": 50, "reason": "same script"}},'
        f'{{"incident_id": "{strong["id"]}", "similarity_score": 91, "reason": "same caller"}},'
        f'{{"incident_id": "{uuid.uuid4()}", "similarity_score": 99, "reason": "not a candidate"}}'
        ']}'
    )
    service = AIEnrichmentService(router=FakeRouter(duplicate_reply=reply), settings=make_ai_settings())

    similar = await service.detect_duplicates(INCIDENT, [strong, weak, medium])

    assert [s["title"] for s in similar] == ["Strong", "Medium"]
    assert similar[0] == {
        "incident_id": str(strong["id"]),
        "similarity_score": 91.0,
        "reason": "same caller",
        "title": "Strong",
    }


async def test_no_candidates_skips_the_call(enrichment, router):
    assert await enrichment.detect_duplicates(INCIDENT, []) == []
    assert router.calls == []


async def test_unreadable_candidates_is_unavailable(enrichment):
    with pytest.raises(CollaboratorUnavailable):
        await enrichment.detect_duplicates(INCIDENT, None)


# ============================================================
# enrich()
# ============================================================

async def test_enrich_reports_both_features(enrichment):
    result = await enrichment.enrich(INCIDENT, [_candidate()])
    body = result.to_dict()

    assert body["ai_category"]["suggested"] == "scam"
    assert body["similar_incidents"] == []
    assert body["similarity_warning"] is False
    assert body["similarity_message"] is None
    assert body["ai_available"] == {"categorization": True, "duplicate_detection": True}


async def test_enrich_isolates_one_failure():
    candidate = _candidate()
    reply = f'{{"similar": [{{"incident_id": "{candidate["id"]}", "similarity_score": 80}}]}}'
    router = FakeRouter(category_reply="not json", duplicate_reply=reply)
    service = AIEnrichmentService(router=router, settings=make_ai_settings())

    result = await service.enrich(INCIDENT, [candidate])

    assert result.ai_category is None
    assert not result.categorization_available
    assert result.duplicate_detection_available
    assert result.similarity_warning
    assert result.similarity_message == SIMILARITY_MESSAGE


async def test_enrich_swallows_unexpected_errors():
    service = AIEnrichmentService(router=FakeRouter(error=RuntimeError("boom")), settings=make_ai_settings())

    result = await service.enrich(INCIDENT, [_candidate()])

    assert result.to_dict()["ai_available"] == {"categorization": False, "duplicate_detection": False}


async def test_disabled_makes_no_calls(router):
    service = AIEnrichmentService(router=router, settings=make_ai_settings(enabled=False))

    result = await service.enrich(INCIDENT, [_candidate()])

    assert router.calls == []
    assert result.to_dict()["ai_available"] == {"categorization": False, "duplicate_detection": False}


# ============================================================
# JSON extraction
# ============================================================

def test_parse_llm_json_extracts_object_from_prose():
    assert parse_llm_json('Sure! {"a": 1} Hope that helps.') == {"a": 1}


def test_parse_llm_json_rejects_non_object():
    with pytest.raises(ValueError):
        parse_llm_json("[1, 2, 3]")
