"""
Best-effort AI collaborators run after an incident is stored.

Two independent calls run concurrently, each bounded by
``AI_CALL_TIMEOUT_SECONDS``:

1. Categorization: the model suggests one of the ten incident categories;
   the suggestion is returned alongside the submitter's own choice and is
   never written back.
2. Duplicate detection: the new incident is compared against up to 20 of the
   entity's other incidents; matches scoring below 50 are dropped.

Any failure (not configured, timeout, provider error, unparseable output)
marks that feature unavailable for this response. Nothing here touches the
stored incident, its confidence or the entity's risk score.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from reportwatch.exceptions import CollaboratorUnavailable
from reportwatch.models import IncidentCategory
from reportwatch.utils.llm_parsing import parse_llm_json
from reportwatch.utils.rows import enum_value
from .llm_errors import LLMError
from .thresholds import MIN_DUPLICATE_SIMILARITY, DUPLICATE_CANDIDATE_LIMIT

logger = logging.getLogger(__name__)

CATEGORY_DESCRIPTIONS = {
    "fraud": "Intentional deception for financial or personal gain",
    "scam": "Schemes designed to deceive victims",
    "harassment": "Unwanted, aggressive behavior",
    "misrepresentation": "False or misleading claims about products, services, or identity",
    "non_delivery": "Failure to deliver promised goods or services",
    "quality_issue": "Products or services not meeting stated specifications",
    "safety_concern": "Potential harm to health or safety",
    "data_breach": "Unauthorized access to personal information",
    "unauthorized_charges": "Charges made without consent",
    "other": "Incidents not fitting other categories",
}

CATEGORIZE_SYSTEM_PROMPT = (
    "You are a neutral incident categorization assistant. Analyze the incident "
    "and choose the most fitting category. Be factual, never accusatory, and make "
    "no legal judgments.\n\nAvailable categories:\n"
    + "\n".join(f"- {k}: {v}" for k, v in CATEGORY_DESCRIPTIONS.items())
    + '\n\nRespond with JSON only: {"primary_category": "<category id>", '
    '"confidence": <0-100>, "explanation": "<one neutral sentence>"}'
)

DUPLICATE_SYSTEM_PROMPT = (
    "You are a duplicate detection assistant. Compare the new incident against "
    "the existing incidents and identify any that describe the same or a very "
    "similar event. Be conservative: only flag truly similar incidents. Focus on "
    "dates, descriptions, amounts and parties involved.\n\n"
    'Respond with JSON only: {"similar": [{"incident_id": "<id>", '
    '"similarity_score": <0-100>, "reason": "<short reason>"}]}'
)

SIMILARITY_MESSAGE = (
    "Similar incidents have been reported for this entity. "
    "Your report has been submitted and will be reviewed."
)


@dataclass
class EnrichmentResult:
    ai_category: Optional[Dict[str, Any]] = None
    similar_incidents: List[Dict[str, Any]] = field(default_factory=list)
    categorization_available: bool = False
    duplicate_detection_available: bool = False

    @property
    def similarity_warning(self) -> bool:
        return bool(self.similar_incidents)

    @property
    def similarity_message(self) -> Optional[str]:
        return SIMILARITY_MESSAGE if self.similarity_warning else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ai_category": self.ai_category,
            "similar_incidents": self.similar_incidents,
            "similarity_warning": self.similarity_warning,
            "similarity_message": self.similarity_message,
            "ai_available": {
                "categorization": self.categorization_available,
                "duplicate_detection": self.duplicate_detection_available,
            },
        }


def _incident_prompt(incident: Dict[str, Any]) -> str:
    lines = [
        f"Title: {incident.get('title')}",
        f"Description: {incident.get('description')}",
    ]
    if incident.get("what_was_promised"):
        lines.append(f"What was promised: {incident['what_was_promised']}")
    if incident.get("what_actually_happened"):
        lines.append(f"What actually happened: {incident['what_actually_happened']}")
    if incident.get("category"):
        lines.append(f"Category: {enum_value(incident['category'])}")
    if incident.get("date_occurred"):
        lines.append(f"Date: {incident['date_occurred']}")
    return "\n".join(lines)


class AIEnrichmentService:
    """Runs the optional categorization and duplicate-detection calls."""

    def __init__(self, router=None, settings=None):
        self._router = router
        self._settings = settings

    @property
    def settings(self):
        if self._settings is None:
            from .settings import get_settings_service
            self._settings = get_settings_service().ai
        return self._settings

    @property
    def router(self):
        if self._router is None:
            from .llm_provider import get_llm_router
            self._router = get_llm_router()
        return self._router

    async def _call_json(self, system_prompt: str, user_message: str) -> Dict[str, Any]:
        """One bounded LLM call returning parsed JSON, or CollaboratorUnavailable."""
        cfg = self.settings
        if not cfg.enabled:
            raise CollaboratorUnavailable("AI enrichment disabled")
        candidates = [self.router.get_provider(cfg.provider)]
        if cfg.fallback_provider:
            candidates.append(self.router.get_provider(cfg.fallback_provider))
        if not any(p is not None and p.is_available() for p in candidates):
            raise CollaboratorUnavailable(f"AI provider '{cfg.provider}' not configured")

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(
                    self.router.call,
                    system_prompt=system_prompt,
                    user_message=user_message,
                    model=cfg.model,
                    max_tokens=cfg.max_tokens,
                    provider_name=cfg.provider,
                    fallback_provider=cfg.fallback_provider,
                    fallback_model=cfg.fallback_model,
                ),
                timeout=cfg.call_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise CollaboratorUnavailable(
                f"AI call timed out after {cfg.call_timeout_seconds}s") from exc
        except LLMError as exc:
            raise CollaboratorUnavailable(str(exc)) from exc

        try:
            return parse_llm_json(response.text)
        except (json.JSONDecodeError, ValueError) as exc:
            raise CollaboratorUnavailable(f"Unparseable AI response: {exc}") from exc

    async def categorize(self, incident: Dict[str, Any]) -> Dict[str, Any]:
        """Suggest a category for ``incident``."""
        data = await self._call_json(
            CATEGORIZE_SYSTEM_PROMPT,
            "Please categorize this incident:\n" + _incident_prompt(incident),
        )
        try:
            suggested = IncidentCategory(data.get("primary_category")).value
        except ValueError as exc:
            raise CollaboratorUnavailable(
                f"AI suggested unknown category {data.get('primary_category')!r}") from exc

        try:
            confidence = max(0, min(100, int(round(float(data.get("confidence", 0))))))
        except (TypeError, ValueError):
            confidence = 0

        submitted = enum_value(incident.get("category"))
        return {
            "suggested": suggested,
            "confidence": confidence,
            "explanation": str(data.get("explanation") or ""),
            "differs_from_submitted": suggested != submitted,
        }

    async def detect_duplicates(
        self,
        incident: Dict[str, Any],
        candidates: Optional[List[Dict[str, Any]]],
    ) -> List[Dict[str, Any]]:
        """Similar incidents among ``candidates`` scoring at least 50.

        ``candidates=None`` means the comparison set could not be read.
        """
        if candidates is None:
            raise CollaboratorUnavailable("Comparison incidents could not be loaded")
        candidates = candidates[:DUPLICATE_CANDIDATE_LIMIT]
        if not candidates:
            return []

        existing = "\n\n".join(
            f"[{i}] ID: {c['id']}\n{_incident_prompt(c)}" for i, c in enumerate(candidates)
        )
        data = await self._call_json(
            DUPLICATE_SYSTEM_PROMPT,
            f"NEW INCIDENT:\n{_incident_prompt(incident)}\n\nEXISTING INCIDENTS:\n{existing}",
        )

        by_id = {str(c["id"]): c for c in candidates}
        similar = []
        for item in data.get("similar") or []:
            if not isinstance(item, dict):
                continue
            match = by_id.get(str(item.get("incident_id")))
            if match is None:
                continue
            try:
                score = float(item.get("similarity_score", 0))
            except (TypeError, ValueError):
                continue
            if score < MIN_DUPLICATE_SIMILARITY:
                continue
            similar.append({
                "incident_id": str(match["id"]),
                "similarity_score": score,
                "reason": str(item.get("reason") or ""),
                "title": match.get("title"),
            })
        similar.sort(key=lambda s: s["similarity_score"], reverse=True)
        return similar

    async def enrich(
        self,
        incident: Dict[str, Any],
        candidates: Optional[List[Dict[str, Any]]],
    ) -> EnrichmentResult:
        """Run both collaborators concurrently; failures never propagate."""
        if not self.settings.enabled:
            return EnrichmentResult()

        category_result, duplicate_result = await asyncio.gather(
            self.categorize(incident),
            self.detect_duplicates(incident, candidates),
            return_exceptions=True,
        )

        result = EnrichmentResult()
        if isinstance(category_result, BaseException):
            logger.warning(f"Categorization unavailable for {incident.get('id')}: {category_result}")
        else:
            result.ai_category = category_result
            result.categorization_available = True
            logger.info(
                f"AI suggested category {category_result['suggested']} "
                f"(submitted {enum_value(incident.get('category'))})"
            )

        if isinstance(duplicate_result, BaseException):
            logger.warning(f"Duplicate detection unavailable for {incident.get('id')}: {duplicate_result}")
        else:
            result.similar_incidents = duplicate_result
            result.duplicate_detection_available = True
            if duplicate_result:
                logger.info(f"Found {len(duplicate_result)} similar incidents for {incident.get('id')}")

        return result


# Singleton
_service: Optional[AIEnrichmentService] = None


def get_ai_enrichment_service() -> AIEnrichmentService:
    global _service
    if _service is None:
        _service = AIEnrichmentService()
    return _service
