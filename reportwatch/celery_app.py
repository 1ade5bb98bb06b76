"""
Celery application, queue definitions, task routing, and beat schedule.
"""

import logging
import os

from celery import Celery
from celery.schedules import crontab
from celery.signals import after_setup_logger
from kombu import Exchange, Queue

BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
RESULT_BACKEND = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# ---------------------------------------------------------------------------
# Per-task retry policies (override via environment variables)
# ---------------------------------------------------------------------------

# Risk recompute (storage errors are usually transient)
RECOMPUTE_MAX_RETRIES = int(os.getenv("CELERY_RECOMPUTE_MAX_RETRIES", "3"))
RECOMPUTE_RETRY_BACKOFF = int(os.getenv("CELERY_RECOMPUTE_RETRY_BACKOFF", "30"))
RECOMPUTE_RETRY_BACKOFF_MAX = int(os.getenv("CELERY_RECOMPUTE_RETRY_BACKOFF_MAX", "600"))

app = Celery(
    "reportwatch",
    include=[
        "reportwatch.tasks.scheduled_tasks",
        "reportwatch.tasks.recompute_tasks",
    ],
)

# ---------------------------------------------------------------------------
# Broker / result backend
# ---------------------------------------------------------------------------
app.conf.broker_url = BROKER_URL
app.conf.result_backend = RESULT_BACKEND

# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
app.conf.accept_content = ["json"]
app.conf.task_serializer = "json"
app.conf.result_serializer = "json"

# ---------------------------------------------------------------------------
# Reliability
# ---------------------------------------------------------------------------
app.conf.task_acks_late = True                 # ACK only after task completes
app.conf.worker_prefetch_multiplier = 1        # One task at a time per process
app.conf.task_reject_on_worker_lost = True     # Re-queue on crash
app.conf.broker_connection_retry_on_startup = True

# ---------------------------------------------------------------------------
# Queue topology
# ---------------------------------------------------------------------------
default_exchange = Exchange("default", type="direct")
scoring_exchange = Exchange("scoring", type="direct")

app.conf.task_queues = (
    Queue("default", default_exchange, routing_key="default"),
    Queue("scoring", scoring_exchange, routing_key="scoring"),
)

app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

# ---------------------------------------------------------------------------
# Task routing
# ---------------------------------------------------------------------------
app.conf.task_routes = {
    "reportwatch.tasks.scheduled_tasks.sweep_rate_limits": {"queue": "default"},
    "reportwatch.tasks.recompute_tasks.recompute_entity_risk": {"queue": "scoring"},
}

# ---------------------------------------------------------------------------
# Beat schedule (periodic tasks)
# ---------------------------------------------------------------------------
app.conf.beat_schedule = {
    "sweep-rate-limits-hourly": {
        "task": "reportwatch.tasks.scheduled_tasks.sweep_rate_limits",
        "schedule": crontab(minute=15),  # Every hour at :15
    },
}


@after_setup_logger.connect
def _configure_worker_logging(logger, *args, **kwargs):
    from reportwatch.services.settings import LOG_FORMAT
    for handler in logger.handlers:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
