import os

from celery import Celery

from .env_settings import get_env

REDIS_URL = get_env().redis_url

# Use container TZ if provided (e.g. TZ=Asia/Almaty).
# Celery otherwise logs/schedules in UTC by default.
TZ_NAME = (os.getenv("TZ") or "UTC").strip() or "UTC"
ENABLE_UTC = TZ_NAME.upper() in {"UTC", "GMT", "ETC/UTC", "ETC/GMT"}

celery_app = Celery(
    "svc_reconciler",
    broker=REDIS_URL,
    backend=REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=TZ_NAME,
    enable_utc=ENABLE_UTC,
)

# Celery Beat: a frequent "tick" decides when the real run is due
# (RECONCILE_INTERVAL_MIN).
celery_app.conf.beat_schedule = {
    "maybe-run-reconcile": {
        "task": "svc_reconciler.tasks.maybe_run_reconcile",
        "schedule": 60.0,
    }
}

# Ensure task modules are imported
from . import tasks  # noqa: E402,F401
