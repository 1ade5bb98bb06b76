"""
Relational store access for entities, incidents, evidence, risk scores and the
rate-limit ledger.

This is the only module that issues SQL. Every method returns plain dicts so
that the scorers and the recomputation hooks stay storage-agnostic. Mutations
that need a consistent before/after pair (status changes, evidence
verification) run inside a single transaction with a row lock, as do the
read-compute-write refreshes of derived state.

Driver failures are re-raised as ``StorageError``; domain guards (incident
not pending, evidence quota) raise the matching domain errors.
"""

import functools
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from reportwatch.database import (
    fetch,
    fetchrow,
    fetchval,
    execute,
    get_transaction,
    parse_command_status,
)
from reportwatch.exceptions import NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_INCIDENT_COLUMNS = """
    id, entity_id, title, description, what_was_promised, what_actually_happened,
    category::text AS category, severity::text AS severity, status::text AS status,
    date_occurred, location, verification_confidence, evidence_count, verified_at,
    submitter_fingerprint, created_at, updated_at
"""

_ENTITY_COLUMNS = """
    id, type::text AS type, name, identifier, normalized_identifier, created_at, updated_at
"""

_ENTITY_INCIDENTS_SQL = f"""
    SELECT {_INCIDENT_COLUMNS} FROM incident_reports
    WHERE entity_id = $1::uuid
      AND ($2::uuid IS NULL OR id <> $2::uuid)
    ORDER BY created_at DESC
    LIMIT $3
"""


def _storage_errors(func):
    """Translate driver/network failures into StorageError."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except _DRIVER_ERRORS as exc:
            logger.error(f"Storage failure in {func.__name__}: {exc}")
            raise StorageError(f"Storage failure in {func.__name__}") from exc

    return wrapper


def _row(record) -> Optional[Dict[str, Any]]:
    return dict(record) if record is not None else None


class PostgresRepository:
    """asyncpg-backed implementation of the store used by the core services."""

    # --- Entities ---

    @_storage_errors
    async def get_entity(self, entity_id) -> Optional[Dict[str, Any]]:
        row = await fetchrow(
            f"SELECT {_ENTITY_COLUMNS} FROM entities WHERE id = $1::uuid",
            str(entity_id),
        )
        return _row(row)

    @_storage_errors
    async def find_entity(self, entity_type: str, normalized_identifier: str) -> Optional[Dict[str, Any]]:
        row = await fetchrow(
            f"""SELECT {_ENTITY_COLUMNS} FROM entities
                WHERE type = $1::entity_type AND normalized_identifier = $2""",
            entity_type,
            normalized_identifier,
        )
        return _row(row)

    @_storage_errors
    async def insert_entity(
        self,
        entity_type: str,
        name: str,
        identifier: str,
        normalized_identifier: str,
    ) -> Tuple[Dict[str, Any], bool]:
        """Insert an entity, or return the concurrent winner on key conflict.

        Returns ``(row, created)``.
        """
        row = await fetchrow(
            f"""INSERT INTO entities (type, name, identifier, normalized_identifier)
                VALUES ($1::entity_type, $2, $3, $4)
                ON CONFLICT (type, normalized_identifier)
                DO UPDATE SET updated_at = entities.updated_at
                RETURNING {_ENTITY_COLUMNS}, (xmax = 0) AS created""",
            entity_type,
            name,
            identifier,
            normalized_identifier,
        )
        result = dict(row)
        created = bool(result.pop("created"))
        return result, created

    @_storage_errors
    async def list_entity_ids(self) -> List[Any]:
        rows = await fetch("SELECT id FROM entities ORDER BY created_at")
        return [r["id"] for r in rows]

    # --- Incidents ---

    @_storage_errors
    async def get_incident(self, incident_id) -> Optional[Dict[str, Any]]:
        row = await fetchrow(
            f"SELECT {_INCIDENT_COLUMNS} FROM incident_reports WHERE id = $1::uuid",
            str(incident_id),
        )
        return _row(row)

    @_storage_errors
    async def insert_incident(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        row = await fetchrow(
            f"""INSERT INTO incident_reports (
                    entity_id, title, description, what_was_promised, what_actually_happened,
                    category, severity, date_occurred, location, status,
                    verification_confidence, evidence_count, submitter_fingerprint
                ) VALUES (
                    $1::uuid, $2, $3, $4, $5,
                    $6::incident_category, $7::severity_level, $8, $9, 'pending',
                    $10, 0, $11
                )
                RETURNING {_INCIDENT_COLUMNS}""",
            str(fields["entity_id"]),
            fields["title"],
            fields["description"],
            fields.get("what_was_promised"),
            fields.get("what_actually_happened"),
            fields["category"],
            fields["severity"],
            fields["date_occurred"],
            fields.get("location"),
            fields["verification_confidence"],
            fields.get("submitter_fingerprint"),
        )
        return dict(row)

    @_storage_errors
    async def update_incident_status(
        self,
        incident_id,
        status: str,
        verified_at: Optional[datetime] = None,
        guard=None,
    ) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """Change status under a row lock. Returns ``(before, after)`` or None.

        ``guard(before_row, status)`` runs while the row is locked and may raise
        to abort the change.
        """
        async with get_transaction() as conn:
            before = await conn.fetchrow(
                f"SELECT {_INCIDENT_COLUMNS} FROM incident_reports WHERE id = $1::uuid FOR UPDATE",
                str(incident_id),
            )
            if before is None:
                return None
            if guard is not None:
                guard(dict(before), status)
            after = await conn.fetchrow(
                f"""UPDATE incident_reports
                    SET status = $2::verification_status,
                        verified_at = COALESCE($3, verified_at),
                        updated_at = now()
                    WHERE id = $1::uuid
                    RETURNING {_INCIDENT_COLUMNS}""",
                str(incident_id),
                status,
                verified_at,
            )
            return dict(before), dict(after)

    @_storage_errors
    async def delete_incident(self, incident_id) -> Optional[Dict[str, Any]]:
        row = await fetchrow(
            f"DELETE FROM incident_reports WHERE id = $1::uuid RETURNING {_INCIDENT_COLUMNS}",
            str(incident_id),
        )
        return _row(row)

    @_storage_errors
    async def list_entity_incidents(
        self,
        entity_id,
        exclude_id=None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """All incidents for an entity in one consistent read, newest first."""
        rows = await fetch(
            _ENTITY_INCIDENTS_SQL,
            str(entity_id),
            str(exclude_id) if exclude_id else None,
            limit,
        )
        return [dict(r) for r in rows]

    @_storage_errors
    async def refresh_incident_confidence(self, incident_id, compute) -> Optional[Dict[str, Any]]:
        """Rescore an incident from its evidence while holding the incident row lock.

        ``compute(incident, evidence)`` returns ``(confidence, evidence_count)``.
        Refreshes of one incident serialize on the lock, so the one that read
        the evidence last is also the one that writes last.
        Returns the updated incident, or None if it no longer exists.
        """
        async with get_transaction() as conn:
            incident = await conn.fetchrow(
                f"""SELECT {_INCIDENT_COLUMNS} FROM incident_reports
                    WHERE id = $1::uuid FOR NO KEY UPDATE""",
                str(incident_id),
            )
            if incident is None:
                return None
            evidence = await conn.fetch(
                """SELECT * FROM incident_evidence
                   WHERE incident_id = $1::uuid
                   ORDER BY created_at ASC""",
                str(incident_id),
            )
            confidence, evidence_count = compute(dict(incident), [dict(e) for e in evidence])
            row = await conn.fetchrow(
                f"""UPDATE incident_reports
                    SET verification_confidence = $2,
                        evidence_count = $3,
                        updated_at = now()
                    WHERE id = $1::uuid
                    RETURNING {_INCIDENT_COLUMNS}""",
                str(incident_id),
                confidence,
                evidence_count,
            )
            return dict(row)

    # --- Evidence ---

    @_storage_errors
    async def insert_evidence(
        self,
        incident_id,
        evidence: Dict[str, Any],
        max_per_incident: int,
    ) -> Dict[str, Any]:
        """Attach evidence while holding the incident row lock.

        The pending-status and per-incident quota checks run under the same
        lock, so concurrent uploads cannot exceed the quota.
        """
        async with get_transaction() as conn:
            incident = await conn.fetchrow(
                "SELECT status::text AS status FROM incident_reports WHERE id = $1::uuid FOR UPDATE",
                str(incident_id),
            )
            if incident is None:
                raise NotFoundError("Incident not found")
            if incident["status"] != "pending":
                raise ValidationError("Cannot add evidence to non-pending incidents")

            existing = await conn.fetchval(
                "SELECT COUNT(*) FROM incident_evidence WHERE incident_id = $1::uuid",
                str(incident_id),
            )
            if existing >= max_per_incident:
                raise ValidationError(f"Maximum {max_per_incident} evidence files per incident")

            row = await conn.fetchrow(
                """INSERT INTO incident_evidence
                       (incident_id, file_name, mime_type, size_bytes, storage_path)
                   VALUES ($1::uuid, $2, $3, $4, $5)
                   RETURNING *""",
                str(incident_id),
                evidence.get("file_name"),
                evidence["mime_type"],
                evidence["size_bytes"],
                evidence.get("storage_path"),
            )
            return dict(row)

    @_storage_errors
    async def update_evidence_verification(
        self,
        evidence_id,
        is_verified: bool,
        notes: Optional[str] = None,
    ) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        async with get_transaction() as conn:
            before = await conn.fetchrow(
                "SELECT * FROM incident_evidence WHERE id = $1::uuid FOR UPDATE",
                str(evidence_id),
            )
            if before is None:
                return None
            after = await conn.fetchrow(
                """UPDATE incident_evidence
                   SET is_verified = $2,
                       verification_notes = COALESCE($3, verification_notes)
                   WHERE id = $1::uuid
                   RETURNING *""",
                str(evidence_id),
                is_verified,
                notes,
            )
            return dict(before), dict(after)

    @_storage_errors
    async def delete_evidence(self, evidence_id) -> Optional[Dict[str, Any]]:
        row = await fetchrow(
            "DELETE FROM incident_evidence WHERE id = $1::uuid RETURNING *",
            str(evidence_id),
        )
        return _row(row)

    # --- Risk scores ---

    @_storage_errors
    async def get_risk_score(self, entity_id) -> Optional[Dict[str, Any]]:
        row = await fetchrow(
            """SELECT entity_id, total_incidents, verified_incidents, severity_score,
                      risk_level, last_incident_at, calculated_at
               FROM entity_risk_scores WHERE entity_id = $1::uuid""",
            str(entity_id),
        )
        return _row(row)

    @_storage_errors
    async def refresh_risk_score(self, entity_id, compute) -> Dict[str, Any]:
        """Rebuild the entity's single risk row while holding the entity row lock.

        ``compute(incidents)`` returns the row to store. Concurrent refreshes
        of one entity serialize on the lock, so the row left in place is the
        one computed from the latest read of the entity's incidents.
        """
        async with get_transaction() as conn:
            await conn.execute(
                "SELECT 1 FROM entities WHERE id = $1::uuid FOR NO KEY UPDATE",
                str(entity_id),
            )
            rows = await conn.fetch(_ENTITY_INCIDENTS_SQL, str(entity_id), None, None)
            score = compute([dict(r) for r in rows])
            row = await conn.fetchrow(
                """INSERT INTO entity_risk_scores (
                       entity_id, total_incidents, verified_incidents,
                       severity_score, risk_level, last_incident_at, calculated_at
                   ) VALUES ($1::uuid, $2, $3, $4, $5, $6, $7)
                   ON CONFLICT (entity_id) DO UPDATE SET
                       total_incidents = EXCLUDED.total_incidents,
                       verified_incidents = EXCLUDED.verified_incidents,
                       severity_score = EXCLUDED.severity_score,
                       risk_level = EXCLUDED.risk_level,
                       last_incident_at = EXCLUDED.last_incident_at,
                       calculated_at = EXCLUDED.calculated_at
                   RETURNING entity_id, total_incidents, verified_incidents, severity_score,
                             risk_level, last_incident_at, calculated_at""",
                str(entity_id),
                score["total_incidents"],
                score["verified_incidents"],
                score["severity_score"],
                score["risk_level"],
                score["last_incident_at"],
                score["calculated_at"],
            )
            return dict(row)

    # --- Rate-limit ledger ---

    @_storage_errors
    async def count_rate_limit_events(
        self,
        fingerprint: str,
        action_type: str,
        since: datetime,
    ) -> int:
        count = await fetchval(
            """SELECT COUNT(*) FROM rate_limit_events
               WHERE client_fingerprint = $1
                 AND action_type = $2
                 AND created_at >= $3""",
            fingerprint,
            action_type,
            since,
        )
        return int(count or 0)

    @_storage_errors
    async def insert_rate_limit_event(
        self,
        fingerprint: str,
        action_type: str,
        created_at: datetime,
    ) -> None:
        await execute(
            """INSERT INTO rate_limit_events (client_fingerprint, action_type, created_at)
               VALUES ($1, $2, $3)""",
            fingerprint,
            action_type,
            created_at,
        )

    @_storage_errors
    async def delete_rate_limit_events_before(self, cutoff: datetime) -> int:
        status = await execute(
            "DELETE FROM rate_limit_events WHERE created_at < $1",
            cutoff,
        )
        return parse_command_status(status)


# Singleton
_repository: Optional[PostgresRepository] = None


def get_repository() -> PostgresRepository:
    """Get the singleton repository instance."""
    global _repository
    if _repository is None:
        _repository = PostgresRepository()
    return _repository
