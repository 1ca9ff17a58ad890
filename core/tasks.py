import json
import logging
import time

from celery import shared_task
from django.conf import settings
from django.utils import timezone
import redis

from .models import Student
from .services.notifications import InactivityNotifier
from .services.sync import AccountSyncWorker, SyncOrchestrator
from .services.sync_errors import AlreadyRunning

logger = logging.getLogger(__name__)

_redis_client = None


def _get_redis_client():
    global _redis_client
    if _redis_client is None:
        url = getattr(settings, "CELERY_BROKER_URL", "redis://localhost:6379/0")
        _redis_client = redis.Redis.from_url(url, socket_connect_timeout=2, socket_timeout=2)
    return _redis_client


def _set_task_health(task_name: str, payload: dict, ttl_seconds: int = 2 * 24 * 3600) -> None:
    data = {
        "task": task_name,
        "at": timezone.now().isoformat(),
        **(payload or {}),
    }
    try:
        _get_redis_client().set(
            f"task_health:{task_name}",
            json.dumps(data, default=str),
            ex=ttl_seconds,
        )
    except Exception:
        logger.exception("Failed to store task health for %s", task_name)


def run_sync_and_notify(window_days=None, notify=True) -> dict:
    """
    Two-stage job: sync every student, then send inactivity reminders.

    Raises AlreadyRunning when another run holds the lease; any other
    exception means the run itself could not proceed (e.g. database down).
    A non-positive window is rejected with ValueError before anything syncs.
    """
    if window_days is not None and int(window_days) < 1:
        raise ValueError(f"window_days must be a positive integer, got {window_days}")
    started = time.monotonic()
    sync_summary = SyncOrchestrator().run_all()
    notify_summary = None
    if notify:
        notify_summary = InactivityNotifier().notify(window_days)

    result = {
        "status": "ok",
        "sync": sync_summary.as_dict(),
        "notify": notify_summary.as_dict() if notify_summary else None,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }
    _set_task_health("sync_all_students", {
        "accounts": sync_summary.total,
        "succeeded": sync_summary.succeeded,
        "failed": sync_summary.failed,
        "skipped": sync_summary.skipped,
        "reminders_sent": notify_summary.sent if notify_summary else 0,
        "reminders_failed": notify_summary.failed if notify_summary else 0,
        "duration_ms": result["duration_ms"],
    })
    return result


@shared_task
def sync_all_students(window_days=None) -> dict:
    try:
        return run_sync_and_notify(window_days)
    except AlreadyRunning:
        logger.info("sync_all_students skipped: another run holds the lease")
        return {"status": "locked", "message": "already running"}


@shared_task
def notify_inactive_students(window_days=None) -> dict:
    return InactivityNotifier().notify(window_days).as_dict()


@shared_task
def sync_student(student_id) -> dict:
    try:
        student = Student.objects.get(id=student_id)
    except Student.DoesNotExist:
        return {"status": "not_found", "student_id": student_id}

    return AccountSyncWorker().sync(student).as_dict()
