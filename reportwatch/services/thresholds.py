"""
Centralized scoring and abuse-control constants -- single source of truth.

All weights, ceilings and limits used by the risk scorer, the confidence
scorer, the rate limiter and the evidence handler are defined here. Services
import these constants instead of hard-coding magic numbers.

The rate-limit values serve as defaults; the settings service can override
them from the environment.
"""

# ---------------------------------------------------------------------------
# Risk scoring
# ---------------------------------------------------------------------------

RISK_ALGORITHM_VERSION = "1.0.0"

# Factor weights (sum to 100)
FREQUENCY_WEIGHT = 30
SEVERITY_WEIGHT = 35
RECENCY_WEIGHT = 20
VERIFICATION_WEIGHT = 15

# Incident count at which the frequency factor saturates
FREQUENCY_THRESHOLD = 10

# Per-incident severity weights; the maximum is the severity denominator
SEVERITY_WEIGHTS = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}
MAX_SEVERITY_WEIGHT = 4

# Verified incidents count 1.5x inside the severity sum
VERIFIED_SEVERITY_MULTIPLIER = 1.5

# Exponential time decay of incident relevance
RECENCY_HALF_LIFE_DAYS = 90

# Window reported in the recency explanation
RECENT_WINDOW_DAYS = 30

# Upper bounds (inclusive) of each risk level; 0 is always "unknown"
RISK_LEVEL_BOUNDS = (
    (25, "low"),
    (50, "moderate"),
    (75, "high"),
    (100, "critical"),
)

# Only these statuses contribute to the risk score or its counts
SCORED_STATUSES = frozenset({"pending", "verified"})

RISK_DISCLAIMER = (
    "This risk indicator is calculated algorithmically based on reported incidents. "
    "It is not a determination of guilt or wrongdoing. The indicator reflects the volume, "
    "severity, and recency of user-submitted reports, which have not been independently verified."
)

# ---------------------------------------------------------------------------
# Verification confidence
# ---------------------------------------------------------------------------

CONFIDENCE_BASE = 10
CONFIDENCE_PER_EVIDENCE = 15
CONFIDENCE_EVIDENCE_CAP = 50
CONFIDENCE_PER_VERIFIED_EVIDENCE = 10
CONFIDENCE_NARRATIVE_BONUS = 10
CONFIDENCE_MAX = 100

# ---------------------------------------------------------------------------
# Rate limiting (requests per window per client fingerprint)
# ---------------------------------------------------------------------------

RATE_LIMITS = {
    "incident_submission": 10,
    "entity_creation": 20,
    "ai_call": 30,
    "search": 100,
}

RATE_LIMIT_WINDOW_SECONDS = 3600

# Ledger rows older than this are swept (longest window in use)
RATE_LIMIT_RETENTION_HOURS = 24

FINGERPRINT_LENGTH = 16

# ---------------------------------------------------------------------------
# Evidence upload limits
# ---------------------------------------------------------------------------

MAX_EVIDENCE_PER_INCIDENT = 5
MAX_EVIDENCE_SIZE_BYTES = 10 * 1024 * 1024
ALLOWED_EVIDENCE_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
    "application/pdf",
)

# ---------------------------------------------------------------------------
# AI collaborators
# ---------------------------------------------------------------------------

# Similar incidents below this score (0-100) are dropped
MIN_DUPLICATE_SIMILARITY = 50

# How many of the entity's other incidents are sent for comparison
DUPLICATE_CANDIDATE_LIMIT = 20
