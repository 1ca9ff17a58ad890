import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Q
from django.utils import timezone

from core.models import ContestResult, ProblemStats, Student, SyncLease

from .api_client import CodeforcesClient, RemoteProfile
from .problem_stats import AggregatedStats, aggregate_feed
from .sync_errors import AlreadyRunning, LeaseLost, PersistenceFailure, SyncError

logger = logging.getLogger(__name__)

SYNC_LEASE_NAME = "sync_all_students"


# --- Run lease ---

def acquire_lease(name: str, ttl_seconds: int, now=None) -> str | None:
    """
    Test-and-set on the named lease row. Returns the owner token, or None
    when another owner still holds an unexpired lease.
    """
    now = now or timezone.now()
    lease, _ = SyncLease.objects.get_or_create(name=name)
    if lease.owner and lease.expires_at and lease.expires_at <= now:
        logger.warning(
            "Reclaiming expired lease %s from owner=%s (expired at %s)",
            name,
            lease.owner,
            lease.expires_at.isoformat(),
        )

    token = uuid.uuid4().hex
    acquired = (
        SyncLease.objects.filter(name=name)
        .filter(Q(owner="") | Q(expires_at__isnull=True) | Q(expires_at__lte=now))
        .update(owner=token, acquired_at=now, expires_at=now + timedelta(seconds=ttl_seconds))
    )
    return token if acquired else None


def renew_lease(name: str, token: str, ttl_seconds: int, now=None) -> bool:
    now = now or timezone.now()
    return bool(
        SyncLease.objects.filter(name=name, owner=token).update(
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
    )


def release_lease(name: str, token: str) -> bool:
    return bool(
        SyncLease.objects.filter(name=name, owner=token).update(
            owner="",
            expires_at=None,
        )
    )


# --- Per-account worker ---

@dataclass(frozen=True)
class AccountSnapshot:
    student_id: int
    handle: str | None
    name: str = ""

    @property
    def has_handle(self) -> bool:
        return bool((self.handle or "").strip())

    @classmethod
    def from_student(cls, student: Student) -> "AccountSnapshot":
        return cls(student_id=student.id, handle=student.handle_codeforces, name=student.name)


@dataclass(frozen=True)
class PreparedSync:
    account: AccountSnapshot
    profile: RemoteProfile
    stats: AggregatedStats


@dataclass
class AccountOutcome:
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"

    student_id: int
    handle: str | None
    status: str
    reason: str = ""
    error: SyncError | None = None
    total_solved: int | None = None
    contests: int | None = None

    @classmethod
    def skipped(cls, account: AccountSnapshot, reason: str) -> "AccountOutcome":
        return cls(student_id=account.student_id, handle=account.handle, status=cls.SKIPPED, reason=reason)

    @classmethod
    def failed(cls, account: AccountSnapshot, error: SyncError) -> "AccountOutcome":
        return cls(
            student_id=account.student_id,
            handle=account.handle,
            status=cls.FAILED,
            reason=error.kind,
            error=error,
        )

    def as_dict(self) -> dict:
        data = {
            "student_id": self.student_id,
            "handle": self.handle,
            "status": self.status,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.error is not None:
            data["error"] = self.error.as_dict()
        if self.status == self.OK:
            data["total_solved"] = self.total_solved
            data["contests"] = self.contests
        return data


class AccountSyncWorker:
    """
    Syncs one account: remote fetch + aggregation (``fetch``) followed by a
    single atomic replace of everything the sync owns (``commit``).

    ``fetch`` never touches the database, so it is safe to run on pool
    threads; ``commit`` is the only externally visible write.
    """

    def __init__(self, client: CodeforcesClient | None = None, account_timeout=None, clock=time.monotonic):
        self.client = client or CodeforcesClient()
        if account_timeout is None:
            account_timeout = getattr(settings, "SYNC_ACCOUNT_TIMEOUT_SECONDS", 180)
        self.account_timeout = account_timeout
        self._clock = clock

    def fetch(self, account: AccountSnapshot) -> PreparedSync:
        deadline = None
        if self.account_timeout:
            deadline = self._clock() + float(self.account_timeout)
        feed = self.client.fetch_account(account.handle, deadline=deadline)
        return PreparedSync(account=account, profile=feed.profile, stats=aggregate_feed(feed))

    def commit(self, prepared: PreparedSync, now=None) -> AccountOutcome:
        now = now or timezone.now()
        account = prepared.account
        profile = prepared.profile
        problem_stats = prepared.stats.problem_stats
        contests = prepared.stats.contests

        try:
            with transaction.atomic():
                student = Student.objects.select_for_update().filter(pk=account.student_id).first()
                if student is None:
                    return AccountOutcome.skipped(account, "removed during sync")

                student.rating_current = profile.rating or 0
                student.rating_max = profile.max_rating or 0
                student.rank = profile.rank or ""
                student.avatar = profile.avatar or ""
                student.title_photo = profile.title_photo or ""
                student.last_synced_at = now
                student.save(update_fields=[
                    "rating_current",
                    "rating_max",
                    "rank",
                    "avatar",
                    "title_photo",
                    "last_synced_at",
                    "updated_at",
                ])

                # Contest history is replaced wholesale, never merged.
                ContestResult.objects.filter(student=student).delete()
                ContestResult.objects.bulk_create([
                    ContestResult(
                        student=student,
                        contest_id=entry.contest_id,
                        contest_name=entry.contest_name,
                        date=entry.date,
                        rank=entry.rank,
                        old_rating=entry.old_rating,
                        new_rating=entry.new_rating,
                        rating_change=entry.rating_change,
                        unsolved_problems=entry.unsolved_problems,
                    )
                    for entry in contests
                ])

                ProblemStats.objects.update_or_create(
                    student=student,
                    defaults={
                        "history": problem_stats.history_json(),
                        "buckets": problem_stats.buckets_json(),
                        "total_solved": problem_stats.total_solved,
                    },
                )
        except DatabaseError as exc:
            raise PersistenceFailure(f"Could not store sync result: {exc}", handle=account.handle) from exc

        logger.info(
            "Synced student_id=%s handle=%s contests=%s solved=%s",
            account.student_id,
            account.handle,
            len(contests),
            problem_stats.total_solved,
        )
        return AccountOutcome(
            student_id=account.student_id,
            handle=account.handle,
            status=AccountOutcome.OK,
            total_solved=problem_stats.total_solved,
            contests=len(contests),
        )

    def sync(self, student: Student) -> AccountOutcome:
        account = AccountSnapshot.from_student(student)
        if not account.has_handle:
            return AccountOutcome.skipped(account, "no handle")
        try:
            return self.commit(self.fetch(account))
        except SyncError as exc:
            logger.warning(
                "Sync failed student_id=%s handle=%s kind=%s: %s",
                account.student_id,
                account.handle,
                exc.kind,
                exc,
            )
            return AccountOutcome.failed(account, exc)


# --- Orchestrator ---

@dataclass
class SyncRunSummary:
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    aborted: bool = False
    outcomes: list[AccountOutcome] = field(default_factory=list)

    def record(self, outcome: AccountOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == AccountOutcome.OK:
            self.succeeded += 1
        elif outcome.status == AccountOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1

    @property
    def failures(self) -> list[AccountOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == AccountOutcome.FAILED]

    @property
    def duration_ms(self) -> int | None:
        if not self.finished_at:
            return None
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def as_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "aborted": self.aborted,
            "failures": [outcome.as_dict() for outcome in self.failures],
        }


class SyncOrchestrator:
    lease_name = SYNC_LEASE_NAME

    def __init__(self, worker: AccountSyncWorker | None = None, max_workers=None, lease_seconds=None):
        self.worker = worker or AccountSyncWorker()
        self.max_workers = max(1, int(max_workers or getattr(settings, "SYNC_MAX_WORKERS", 4)))
        self.lease_seconds = int(lease_seconds or getattr(settings, "SYNC_LEASE_SECONDS", 30 * 60))

    def run_all(self) -> SyncRunSummary:
        token = acquire_lease(self.lease_name, self.lease_seconds)
        if token is None:
            raise AlreadyRunning("A sync run is already in progress")

        summary = SyncRunSummary(run_id=token, started_at=timezone.now())
        try:
            accounts = self._snapshot_accounts()
            summary.total = len(accounts)
            pending = []
            for account in accounts:
                if account.has_handle:
                    pending.append(account)
                else:
                    summary.record(AccountOutcome.skipped(account, "no handle"))
            if pending:
                self._run_pool(pending, summary, token)
        finally:
            summary.finished_at = timezone.now()
            release_lease(self.lease_name, token)

        logger.info(
            "sync_all run_id=%s accounts=%s succeeded=%s failed=%s skipped=%s duration_ms=%s",
            summary.run_id,
            summary.total,
            summary.succeeded,
            summary.failed,
            summary.skipped,
            summary.duration_ms,
        )
        return summary

    def _snapshot_accounts(self) -> list[AccountSnapshot]:
        rows = Student.objects.order_by("id").values_list("id", "handle_codeforces", "name")
        return [AccountSnapshot(student_id=pk, handle=handle, name=name) for pk, handle, name in rows]

    def _run_pool(self, pending: list[AccountSnapshot], summary: SyncRunSummary, token: str) -> None:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(pending)),
            thread_name_prefix="cf-sync",
        )
        try:
            futures = {executor.submit(self.worker.fetch, account): account for account in pending}
            remaining = dict(futures)
            for future in as_completed(futures):
                # Commits only happen while this run still owns the lease.
                if not renew_lease(self.lease_name, token, self.lease_seconds):
                    self._abort(summary, remaining)
                    break
                summary.record(self._finish(remaining.pop(future), future))
        finally:
            # Queued fetches are dropped; in-flight ones finish but are never committed.
            executor.shutdown(wait=True, cancel_futures=True)

    def _abort(self, summary: SyncRunSummary, remaining: dict) -> None:
        logger.error(
            "sync_all run_id=%s lost lease %s; %s accounts left uncommitted",
            summary.run_id,
            self.lease_name,
            len(remaining),
        )
        summary.aborted = True
        for future, account in remaining.items():
            future.cancel()
            summary.record(AccountOutcome.failed(
                account,
                LeaseLost("Run lease lost before commit", handle=account.handle),
            ))

    def _finish(self, account: AccountSnapshot, future) -> AccountOutcome:
        try:
            return self.worker.commit(future.result())
        except SyncError as exc:
            logger.warning(
                "Sync failed student_id=%s handle=%s kind=%s: %s",
                account.student_id,
                account.handle,
                exc.kind,
                exc,
            )
            return AccountOutcome.failed(account, exc)
        except Exception as exc:
            logger.exception("Unexpected sync failure student_id=%s handle=%s", account.student_id, account.handle)
            return AccountOutcome.failed(account, SyncError(str(exc), handle=account.handle))
