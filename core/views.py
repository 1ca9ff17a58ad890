import logging
from datetime import timedelta

from django.http import HttpResponseBadRequest, JsonResponse
from django.shortcuts import get_object_or_404
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .models import ProblemStats, Student
from .services.problem_stats import ProblemStatistics, summarize_problem_window, window_start
from .services.sync import AccountSyncWorker
from .services.sync_errors import AlreadyRunning
from .tasks import run_sync_and_notify

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


def _days_param(request, default=DEFAULT_WINDOW_DAYS):
    raw = request.GET.get("days")
    if raw in (None, ""):
        return default
    try:
        days = int(raw)
    except (TypeError, ValueError):
        return None
    return days if days > 0 else None


@csrf_exempt
@require_POST
def sync_all(request):
    window_days = request.GET.get("window_days") or request.POST.get("window_days")
    if window_days is not None:
        try:
            window_days = int(window_days)
        except ValueError:
            window_days = 0
        if window_days < 1:
            return HttpResponseBadRequest("window_days must be a positive integer.")

    try:
        result = run_sync_and_notify(window_days)
    except AlreadyRunning as exc:
        return JsonResponse({"status": "already_running", "message": str(exc)}, status=409)
    except Exception as exc:
        logger.exception("sync-all run failed")
        return JsonResponse({"status": "error", "message": str(exc)}, status=500)
    return JsonResponse(result)


@csrf_exempt
@require_POST
def sync_student(request, student_id: int):
    student = get_object_or_404(Student, id=student_id)
    outcome = AccountSyncWorker().sync(student)
    return JsonResponse(outcome.as_dict())


@require_GET
def student_contests(request, student_id: int):
    student = get_object_or_404(Student, id=student_id)
    days = _days_param(request)
    if days is None:
        return HttpResponseBadRequest("days must be a positive integer.")

    since = timezone.now() - timedelta(days=days)
    rows = student.contest_results.filter(date__gte=since).order_by("date", "id")
    return JsonResponse({
        "student_id": student.id,
        "days": days,
        "contests": [
            {
                "contest_id": row.contest_id,
                "contest_name": row.contest_name,
                "date": row.date.isoformat(),
                "rank": row.rank,
                "old_rating": row.old_rating,
                "new_rating": row.new_rating,
                "rating_change": row.rating_change,
                "unsolved_problems": row.unsolved_problems,
            }
            for row in rows
        ],
    })


@require_GET
def student_problems(request, student_id: int):
    student = get_object_or_404(Student, id=student_id)
    days = _days_param(request)
    if days is None:
        return HttpResponseBadRequest("days must be a positive integer.")

    try:
        stored = student.problem_stats
        stats = ProblemStatistics.from_json(stored.history, stored.buckets)
    except ProblemStats.DoesNotExist:
        stats = ProblemStatistics()

    now = timezone.now()
    since = window_start(now, days)
    return JsonResponse({
        "student_id": student.id,
        "days": days,
        "history": [entry.to_json() for entry in stats.history if entry.date >= since],
        "buckets": stats.buckets_json(),
        "total_solved": stats.total_solved,
        "summary": summarize_problem_window(stats, days, now),
    })


@csrf_exempt
@require_POST
def reminder_toggle(request, student_id: int):
    student = get_object_or_404(Student, id=student_id)
    student.reminder_disabled = not student.reminder_disabled
    student.save(update_fields=["reminder_disabled", "updated_at"])
    return JsonResponse({"student_id": student.id, "reminder_disabled": student.reminder_disabled})
