"""Shared fixtures: an in-memory store and the services wired on top of it."""

import asyncio
import copy
import uuid
from datetime import datetime, timedelta, timezone
from itertools import count

import pytest

from reportwatch.exceptions import NotFoundError, StorageError, ValidationError
from reportwatch.services.ai_enrichment import AIEnrichmentService
from reportwatch.services.llm_provider import LLMResponse
from reportwatch.services.rate_limiter import RateLimiter
from reportwatch.services.recomputation import ReactiveWriter, RecomputationHooks
from reportwatch.services.settings import AISettings
from reportwatch.services.submission_service import SubmissionService
from reportwatch.services.thresholds import RATE_LIMITS

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _key(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class InMemoryRepository:
    """Dict-backed stand-in for PostgresRepository with the same method names."""

    def __init__(self):
        self.entities = {}
        self.incidents = {}
        self.evidence = {}
        self.risk_scores = {}
        self.rate_limit_events = []
        self.fail = set()
        self.refresh_calls = 0
        self._seq = count()
        self._locks = {}

    def _check_fail(self, name):
        if name in self.fail:
            raise StorageError(f"Storage failure in {name}")

    def _stamp(self) -> datetime:
        return NOW + timedelta(microseconds=next(self._seq))

    def _lock(self, kind, key) -> asyncio.Lock:
        """Stands in for the row lock PostgresRepository takes around a refresh."""
        return self._locks.setdefault((kind, key), asyncio.Lock())

    # --- Entities ---

    async def get_entity(self, entity_id):
        self._check_fail("get_entity")
        row = self.entities.get(_key(entity_id))
        return copy.deepcopy(row)

    async def find_entity(self, entity_type, normalized_identifier):
        for row in self.entities.values():
            if row["type"] == entity_type and row["normalized_identifier"] == normalized_identifier:
                return copy.deepcopy(row)
        return None

    async def insert_entity(self, entity_type, name, identifier, normalized_identifier):
        existing = await self.find_entity(entity_type, normalized_identifier)
        if existing is not None:
            return existing, False
        stamp = self._stamp()
        row = {
            "id": uuid.uuid4(),
            "type": entity_type,
            "name": name,
            "identifier": identifier,
            "normalized_identifier": normalized_identifier,
            "created_at": stamp,
            "updated_at": stamp,
        }
        self.entities[row["id"]] = row
        return copy.deepcopy(row), True

    async def list_entity_ids(self):
        return list(self.entities)

    # --- Incidents ---

    async def get_incident(self, incident_id):
        self._check_fail("get_incident")
        return copy.deepcopy(self.incidents.get(_key(incident_id)))

    async def insert_incident(self, fields):
        self._check_fail("insert_incident")
        stamp = self._stamp()
        row = {
            "id": uuid.uuid4(),
            "entity_id": _key(fields["entity_id"]),
            "title": fields["title"],
            "description": fields["description"],
            "what_was_promised": fields.get("what_was_promised"),
            "what_actually_happened": fields.get("what_actually_happened"),
            "category": fields["category"],
            "severity": fields["severity"],
            "status": "pending",
            "date_occurred": fields["date_occurred"],
            "location": fields.get("location"),
            "verification_confidence": fields["verification_confidence"],
            "evidence_count": 0,
            "verified_at": None,
            "submitter_fingerprint": fields.get("submitter_fingerprint"),
            "created_at": stamp,
            "updated_at": stamp,
        }
        self.incidents[row["id"]] = row
        return copy.deepcopy(row)

    async def update_incident_status(self, incident_id, status, verified_at=None, guard=None):
        row = self.incidents.get(_key(incident_id))
        if row is None:
            return None
        before = copy.deepcopy(row)
        if guard is not None:
            guard(copy.deepcopy(before), status)
        row["status"] = status
        if verified_at is not None:
            row["verified_at"] = verified_at
        row["updated_at"] = self._stamp()
        return before, copy.deepcopy(row)

    async def delete_incident(self, incident_id):
        row = self.incidents.pop(_key(incident_id), None)
        if row is None:
            return None
        for ev_id in [k for k, e in self.evidence.items() if e["incident_id"] == row["id"]]:
            del self.evidence[ev_id]
        return row

    async def list_entity_incidents(self, entity_id, exclude_id=None, limit=None):
        self._check_fail("list_entity_incidents")
        entity_id = _key(entity_id)
        rows = [
            r for r in self.incidents.values()
            if r["entity_id"] == entity_id and (exclude_id is None or r["id"] != _key(exclude_id))
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def refresh_incident_confidence(self, incident_id, compute):
        incident_id = _key(incident_id)
        async with self._lock("incident", incident_id):
            if incident_id not in self.incidents:
                return None
            incident = copy.deepcopy(self.incidents[incident_id])
            evidence = await self.list_evidence(incident_id)
            confidence, evidence_count = compute(incident, evidence)
            self._check_fail("refresh_incident_confidence")
            row = self.incidents.get(incident_id)
            if row is None:
                return None
            row["verification_confidence"] = confidence
            row["evidence_count"] = evidence_count
            row["updated_at"] = self._stamp()
            return copy.deepcopy(row)

    # --- Evidence ---

    async def list_evidence(self, incident_id):
        """Read step of refresh_incident_confidence."""
        incident_id = _key(incident_id)
        rows = [e for e in self.evidence.values() if e["incident_id"] == incident_id]
        rows.sort(key=lambda e: e["created_at"])
        return copy.deepcopy(rows)

    async def insert_evidence(self, incident_id, evidence, max_per_incident):
        incident = self.incidents.get(_key(incident_id))
        if incident is None:
            raise NotFoundError("Incident not found")
        if incident["status"] != "pending":
            raise ValidationError("Cannot add evidence to non-pending incidents")
        existing = sum(1 for e in self.evidence.values() if e["incident_id"] == incident["id"])
        if existing >= max_per_incident:
            raise ValidationError(f"Maximum {max_per_incident} evidence files per incident")
        row = {
            "id": uuid.uuid4(),
            "incident_id": incident["id"],
            "file_name": evidence.get("file_name"),
            "mime_type": evidence["mime_type"],
            "size_bytes": evidence["size_bytes"],
            "storage_path": evidence.get("storage_path"),
            "is_verified": False,
            "verification_notes": None,
            "created_at": self._stamp(),
        }
        self.evidence[row["id"]] = row
        return copy.deepcopy(row)

    async def update_evidence_verification(self, evidence_id, is_verified, notes=None):
        row = self.evidence.get(_key(evidence_id))
        if row is None:
            return None
        before = copy.deepcopy(row)
        row["is_verified"] = is_verified
        if notes is not None:
            row["verification_notes"] = notes
        return before, copy.deepcopy(row)

    async def delete_evidence(self, evidence_id):
        return self.evidence.pop(_key(evidence_id), None)

    # --- Risk scores ---

    async def get_risk_score(self, entity_id):
        return copy.deepcopy(self.risk_scores.get(_key(entity_id)))

    async def refresh_risk_score(self, entity_id, compute):
        entity_id = _key(entity_id)
        async with self._lock("entity", entity_id):
            incidents = await self.list_entity_incidents(entity_id)
            row = dict(compute(incidents))
            self._check_fail("refresh_risk_score")
            self.refresh_calls += 1
            row["entity_id"] = entity_id
            self.risk_scores[entity_id] = row
            return copy.deepcopy(row)

    # --- Rate-limit ledger ---

    async def count_rate_limit_events(self, fingerprint, action_type, since):
        self._check_fail("count_rate_limit_events")
        return sum(
            1 for fp, action, created_at in self.rate_limit_events
            if fp == fingerprint and action == action_type and created_at >= since
        )

    async def insert_rate_limit_event(self, fingerprint, action_type, created_at):
        self._check_fail("insert_rate_limit_event")
        self.rate_limit_events.append((fingerprint, action_type, created_at))

    async def delete_rate_limit_events_before(self, cutoff):
        kept = [e for e in self.rate_limit_events if e[2] >= cutoff]
        deleted = len(self.rate_limit_events) - len(kept)
        self.rate_limit_events = kept
        return deleted


class FakeProvider:
    def __init__(self, available=True):
        self.available = available

    def is_available(self):
        return self.available


class FakeRouter:
    """Answers categorization and duplicate prompts with canned JSON."""

    def __init__(self, category_reply=None, duplicate_reply=None, error=None):
        self.category_reply = category_reply
        self.duplicate_reply = duplicate_reply
        self.error = error
        self.calls = []
        self._provider = FakeProvider()

    def get_provider(self, name):
        return self._provider

    def provider_status(self):
        return {"anthropic": self._provider.available}

    def call(self, system_prompt, user_message, model=None, max_tokens=800,
             provider_name="anthropic", fallback_provider=None, fallback_model=None):
        self.calls.append(system_prompt)
        if self.error is not None:
            raise self.error
        reply = self.category_reply if "categorization" in system_prompt else self.duplicate_reply
        if reply is None:
            raise RuntimeError("no canned reply")
        return LLMResponse(text=reply, provider=provider_name, model=model or "fake")


def make_ai_settings(enabled=True, timeout=1.0):
    return AISettings(
        enabled=enabled,
        provider="anthropic",
        model="test-model",
        max_tokens=200,
        call_timeout_seconds=timeout,
    )


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def hooks(repo):
    return RecomputationHooks(repo, clock=lambda: NOW)


@pytest.fixture
def writer(repo, hooks):
    return ReactiveWriter(repo, hooks)


@pytest.fixture
def limiter(repo):
    return RateLimiter(repo, dict(RATE_LIMITS), window_seconds=3600, retention_hours=24)


@pytest.fixture
def router():
    return FakeRouter(
        category_reply='{"primary_category": "scam", "confidence": 82, "explanation": "Deceptive scheme."}',
        duplicate_reply='{"similar": []}',
    )


@pytest.fixture
def enrichment(router):
    return AIEnrichmentService(router=router, settings=make_ai_settings())


@pytest.fixture
def service(repo, limiter, writer, hooks, enrichment):
    return SubmissionService(repo, limiter, writer, hooks, enrichment)


@pytest.fixture
def yesterday():
    return (datetime.now(timezone.utc) - timedelta(days=1)).date()


@pytest.fixture
def submission(yesterday):
    """A valid submission body against a new inline entity."""
    return {
        "entity": {"type": "phone", "name": "Unknown caller", "identifier": "+1 555 0100"},
        "title": "Caller posing as bank fraud team",
        "description": (
            "Received a call claiming to be from my bank's fraud department asking "
            "me to read back a one-time passcode."
        ),
        "category": "fraud",
        "severity": "high",
        "date_occurred": yesterday.isoformat(),
    }


def make_incident(status="pending", severity="low", occurred=None, **extra):
    """A bare incident row for the pure scorers."""
    row = {
        "status": status,
        "severity": severity,
        "date_occurred": occurred or NOW.date(),
        "category": "fraud",
    }
    row.update(extra)
    return row
