"""
Inactivity reminders.

Selection is stateless: every call re-notifies (and re-increments) every
student that is still inactive. There is no "already notified today"
guard, so callers that want at most one email per day must limit how
often ``notify`` is invoked.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.conf import settings
from django.db import DatabaseError
from django.db.models import F
from django.utils import timezone

from core.models import ProblemStats, Student

from .mailer import send_inactivity_reminder
from .problem_stats import ProblemStatistics, has_activity_since, window_start
from .sync_errors import MailFailure, PersistenceFailure, SyncError

logger = logging.getLogger(__name__)


@dataclass
class NotifyOutcome:
    student_id: int
    email: str
    status: str
    reminder_count: int
    error: SyncError | None = None

    def as_dict(self) -> dict:
        data = {
            "student_id": self.student_id,
            "email": self.email,
            "status": self.status,
            "reminder_count": self.reminder_count,
        }
        if self.error is not None:
            data["error"] = self.error.as_dict()
        return data


@dataclass
class NotifyRunSummary:
    window_days: int
    started_at: datetime
    finished_at: datetime | None = None
    considered: int = 0
    selected: int = 0
    sent: int = 0
    failed: int = 0
    outcomes: list[NotifyOutcome] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "window_days": self.window_days,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "considered": self.considered,
            "selected": self.selected,
            "sent": self.sent,
            "failed": self.failed,
            "failures": [o.as_dict() for o in self.outcomes if o.status == "failed"],
        }


def _stored_stats(student: Student) -> ProblemStatistics:
    try:
        stats = student.problem_stats
    except ProblemStats.DoesNotExist:
        return ProblemStatistics()
    return ProblemStatistics.from_json(stats.history, stats.buckets)


def is_inactive(student: Student, window_days: int, now=None) -> bool:
    now = now or timezone.now()
    history = _stored_stats(student).history
    return not has_activity_since(history, window_start(now, window_days))


class InactivityNotifier:
    def __init__(self, send=send_inactivity_reminder):
        self._send = send

    def select_inactive(self, window_days: int, now=None) -> tuple[int, list[Student]]:
        now = now or timezone.now()
        candidates = list(
            Student.objects.filter(reminder_disabled=False)
            .select_related("problem_stats")
            .order_by("id")
        )
        return len(candidates), [s for s in candidates if is_inactive(s, window_days, now)]

    def notify(self, window_days=None, now=None) -> NotifyRunSummary:
        if window_days is None:
            window_days = getattr(settings, "INACTIVITY_WINDOW_DAYS", 7)
        window_days = int(window_days)
        if window_days < 1:
            raise ValueError(f"window_days must be a positive integer, got {window_days}")
        now = now or timezone.now()
        summary = NotifyRunSummary(window_days=window_days, started_at=timezone.now())

        summary.considered, inactive = self.select_inactive(window_days, now)
        summary.selected = len(inactive)
        for student in inactive:
            outcome = self._remind(student, window_days)
            summary.outcomes.append(outcome)
            if outcome.status == "sent":
                summary.sent += 1
            else:
                summary.failed += 1

        summary.finished_at = timezone.now()
        logger.info(
            "notify_inactive window_days=%s considered=%s selected=%s sent=%s failed=%s",
            window_days,
            summary.considered,
            summary.selected,
            summary.sent,
            summary.failed,
        )
        return summary

    def _remind(self, student: Student, window_days: int) -> NotifyOutcome:
        try:
            self._send(student, window_days)
        except MailFailure as exc:
            logger.warning("Reminder not sent student_id=%s email=%s: %s", student.id, student.email, exc)
            return NotifyOutcome(student.id, student.email, "failed", student.reminder_count, exc)

        try:
            Student.objects.filter(pk=student.pk).update(reminder_count=F("reminder_count") + 1)
            student.refresh_from_db(fields=["reminder_count"])
        except DatabaseError as exc:
            error = PersistenceFailure(f"Reminder sent but count not stored: {exc}")
            logger.error("Reminder count update failed student_id=%s: %s", student.id, exc)
            return NotifyOutcome(student.id, student.email, "failed", student.reminder_count, error)

        logger.info("Reminder sent student_id=%s reminder_count=%s", student.id, student.reminder_count)
        return NotifyOutcome(student.id, student.email, "sent", student.reminder_count)
