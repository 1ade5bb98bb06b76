"""
Scoring, abuse-control and orchestration services.
"""

from .settings import SettingsService, get_settings_service
from .rate_limiter import ActionType, RateLimiter, RateLimitStatus, fingerprint_client, get_rate_limiter
from .confidence_scorer import ConfidenceResult, calculate_confidence, score_incident
from .incident_lifecycle import ensure_transition, can_transition, is_terminal
from .risk_scorer import RiskAssessment, FactorBreakdown, calculate_risk_score, determine_risk_level
from .recomputation import (
    RecomputationHooks,
    ReactiveWriter,
    get_recomputation_hooks,
    get_reactive_writer,
)
from .repository import PostgresRepository, get_repository
from .llm_provider import LLMRouter, get_llm_router, LLMResponse
from .ai_enrichment import AIEnrichmentService, EnrichmentResult, get_ai_enrichment_service
from .submission_service import SubmissionService, get_submission_service

__all__ = [
    # Settings
    "SettingsService",
    "get_settings_service",
    # Rate limiting
    "ActionType",
    "RateLimiter",
    "RateLimitStatus",
    "fingerprint_client",
    "get_rate_limiter",
    # Confidence and lifecycle
    "ConfidenceResult",
    "calculate_confidence",
    "score_incident",
    "ensure_transition",
    "can_transition",
    "is_terminal",
    # Risk
    "RiskAssessment",
    "FactorBreakdown",
    "calculate_risk_score",
    "determine_risk_level",
    # Recomputation
    "RecomputationHooks",
    "ReactiveWriter",
    "get_recomputation_hooks",
    "get_reactive_writer",
    # Storage
    "PostgresRepository",
    "get_repository",
    # AI collaborators
    "LLMRouter",
    "get_llm_router",
    "LLMResponse",
    "AIEnrichmentService",
    "EnrichmentResult",
    "get_ai_enrichment_service",
    # Orchestration
    "SubmissionService",
    "get_submission_service",
]
