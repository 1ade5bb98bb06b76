"""Tests for the Celery wiring and the task bodies."""

import uuid

from celery.schedules import crontab

from reportwatch.celery_app import app as celery_app
from reportwatch.tasks import recompute_tasks, scheduled_tasks
from conftest import NOW


def test_tasks_are_routed_to_their_queues():
    routes = celery_app.conf.task_routes
    assert routes[recompute_tasks.recompute_entity_risk.name] == {"queue": "scoring"}
    assert routes[scheduled_tasks.sweep_rate_limits.name] == {"queue": "default"}


def test_sweep_runs_hourly():
    entry = celery_app.conf.beat_schedule["sweep-rate-limits-hourly"]
    assert entry["task"] == scheduled_tasks.sweep_rate_limits.name
    assert entry["schedule"] == crontab(minute=15)


async def test_recompute_task_body(monkeypatch, repo, hooks, writer):
    entity, _ = await repo.insert_entity("website", "Shop", "shop.example", "shop.example")
    await writer.insert_incident({
        "entity_id": entity["id"],
        "title": "Counterfeit goods shipped",
        "description": "Received obvious fakes instead of the branded items advertised.",
        "category": "misrepresentation",
        "severity": "medium",
        "date_occurred": NOW.date(),
    })
    repo.risk_scores.clear()
    monkeypatch.setattr("reportwatch.services.repository._repository", repo)
    monkeypatch.setattr("reportwatch.services.recomputation._hooks", hooks)

    result = await recompute_tasks._async_recompute_entity_risk(str(entity["id"]))

    assert result["status"] == "recomputed"
    assert result["total_incidents"] == 1
    assert entity["id"] in repo.risk_scores


async def test_recompute_task_unknown_entity(monkeypatch, repo, hooks):
    monkeypatch.setattr("reportwatch.services.repository._repository", repo)
    monkeypatch.setattr("reportwatch.services.recomputation._hooks", hooks)

    result = await recompute_tasks._async_recompute_entity_risk(str(uuid.uuid4()))

    assert result["status"] == "not_found"
    assert repo.refresh_calls == 0


async def test_sweep_task_body(monkeypatch, repo, limiter):
    await limiter.record("fp", "search", now=NOW.replace(year=2020))
    monkeypatch.setattr("reportwatch.services.rate_limiter._limiter", limiter)

    assert await scheduled_tasks._async_sweep_rate_limits() == {"deleted": 1}
    assert repo.rate_limit_events == []
