import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from core.models import ContestResult, ProblemStats, Student, SyncLease
from core.services.sync import (
    SYNC_LEASE_NAME,
    AccountSyncWorker,
    SyncOrchestrator,
    SyncRunSummary,
    acquire_lease,
    release_lease,
    renew_lease,
)
from core.services.sync_errors import AlreadyRunning, InvalidAccount, RemoteUnavailable
from core.tests.helpers import FakeCodeforcesClient, make_feed, rating_event, submission, utc


def _student(n, handle="default", **extra):
    if handle == "default":
        handle = f"user{n}"
    return Student.objects.create(
        name=f"Student {n}",
        email=f"student{n}@example.com",
        handle_codeforces=handle,
        **extra,
    )


class AccountSyncWorkerTests(TestCase):
    def test_successful_sync_persists_everything(self):
        student = _student(1)
        worker = AccountSyncWorker(client=FakeCodeforcesClient())

        outcome = worker.sync(student)

        self.assertEqual(outcome.status, "ok")
        student.refresh_from_db()
        self.assertEqual(student.rating_current, 1500)
        self.assertEqual(student.rating_max, 1600)
        self.assertEqual(student.rank, "specialist")
        self.assertIsNotNone(student.last_synced_at)
        results = list(student.contest_results.all())
        self.assertEqual([r.contest_id for r in results], ["1900", "1901"])
        self.assertEqual(results[0].rating_change, 50)
        self.assertIsNone(results[0].unsolved_problems)
        stats = student.problem_stats
        self.assertEqual(stats.total_solved, 3)
        self.assertEqual(stats.buckets, [{"rating": 800, "count": 1}, {"rating": 1200, "count": 2}])
        self.assertEqual([row["date"] for row in stats.history], ["2026-10-01", "2026-10-03"])

    def test_contest_history_is_replaced_not_merged(self):
        student = _student(1)
        ContestResult.objects.create(
            student=student,
            contest_id="1",
            contest_name="Corrupted leftover",
            date=utc(2020, 1, 1),
            old_rating=0,
            new_rating=9999,
            rating_change=9999,
        )
        feed = make_feed("user1", rating_events=[rating_event(1950, utc(2026, 10, 2), 1500, 1520)])
        worker = AccountSyncWorker(client=FakeCodeforcesClient(feeds={"user1": feed}))

        worker.sync(student)
        worker.sync(student)

        self.assertEqual(list(student.contest_results.values_list("contest_id", flat=True)), ["1950"])
        self.assertEqual(ProblemStats.objects.filter(student=student).count(), 1)

    def test_student_without_handle_is_skipped(self):
        student = _student(1, handle=None)
        client = FakeCodeforcesClient()

        outcome = AccountSyncWorker(client=client).sync(student)

        self.assertEqual(outcome.status, "skipped")
        self.assertEqual(client.calls, [])
        student.refresh_from_db()
        self.assertIsNone(student.last_synced_at)

    def test_remote_failure_writes_nothing(self):
        student = _student(1)
        client = FakeCodeforcesClient(errors={"user1": RemoteUnavailable("HTTP 503")})

        outcome = AccountSyncWorker(client=client).sync(student)

        self.assertEqual(outcome.status, "failed")
        self.assertEqual(outcome.error.kind, "remote_unavailable")
        student.refresh_from_db()
        self.assertIsNone(student.last_synced_at)
        self.assertFalse(ContestResult.objects.exists())
        self.assertFalse(ProblemStats.objects.exists())

    def test_invalid_account_is_reported_as_such(self):
        student = _student(1)
        client = FakeCodeforcesClient(errors={"user1": InvalidAccount("handle not found")})

        outcome = AccountSyncWorker(client=client).sync(student)

        self.assertEqual(outcome.reason, "invalid_account")

    def test_persistence_failure_leaves_previous_data_intact(self):
        student = _student(1)
        old_feed = make_feed("user1", rating=1300, rating_events=[rating_event(1800, utc(2026, 1, 1), 1200, 1300)])
        AccountSyncWorker(client=FakeCodeforcesClient(feeds={"user1": old_feed})).sync(student)
        student.refresh_from_db()
        old_synced_at = student.last_synced_at

        worker = AccountSyncWorker(client=FakeCodeforcesClient())
        with patch.object(ProblemStats.objects, "update_or_create", side_effect=DatabaseError("disk full")):
            outcome = worker.sync(student)

        self.assertEqual(outcome.status, "failed")
        self.assertEqual(outcome.error.kind, "persistence_failure")
        student.refresh_from_db()
        self.assertEqual(student.rating_current, 1300)
        self.assertEqual(student.last_synced_at, old_synced_at)
        self.assertEqual(list(student.contest_results.values_list("contest_id", flat=True)), ["1800"])

    def test_fetch_passes_a_deadline_to_the_client(self):
        seen = {}

        class RecordingClient(FakeCodeforcesClient):
            def fetch_account(self, handle, deadline=None):
                seen["deadline"] = deadline
                return super().fetch_account(handle, deadline)

        worker = AccountSyncWorker(client=RecordingClient(), account_timeout=30, clock=lambda: 500.0)
        worker.sync(_student(1))

        self.assertEqual(seen["deadline"], 530.0)


class SyncLeaseTests(TestCase):
    def test_lease_is_exclusive_until_it_expires(self):
        t0 = timezone.now()
        first = acquire_lease("job", 60, now=t0)

        self.assertIsNotNone(first)
        self.assertIsNone(acquire_lease("job", 60, now=t0 + timedelta(seconds=30)))

        second = acquire_lease("job", 60, now=t0 + timedelta(seconds=61))
        self.assertIsNotNone(second)
        self.assertNotEqual(first, second)
        # The crashed owner can no longer release or renew the lease.
        self.assertFalse(release_lease("job", first))
        self.assertFalse(renew_lease("job", first, 60))
        self.assertEqual(SyncLease.objects.get(name="job").owner, second)

    def test_release_frees_the_lease(self):
        token = acquire_lease("job", 60)

        self.assertTrue(release_lease("job", token))
        self.assertIsNotNone(acquire_lease("job", 60))

    def test_renew_extends_expiry(self):
        t0 = timezone.now()
        token = acquire_lease("job", 60, now=t0)
        renew_lease("job", token, 60, now=t0 + timedelta(seconds=50))

        self.assertIsNone(acquire_lease("job", 60, now=t0 + timedelta(seconds=100)))


class SyncOrchestratorTests(TestCase):
    def setUp(self):
        self.students = [_student(n) for n in range(1, 6)]

    def test_one_failing_account_does_not_affect_the_others(self):
        client = FakeCodeforcesClient(errors={"user3": RemoteUnavailable("HTTP 503")})
        orchestrator = SyncOrchestrator(worker=AccountSyncWorker(client=client), max_workers=2)

        summary = orchestrator.run_all()

        self.assertEqual(summary.total, 5)
        self.assertEqual(summary.succeeded, 4)
        self.assertEqual(summary.failed, 1)
        self.assertEqual(summary.failures[0].handle, "user3")
        self.assertEqual(summary.as_dict()["failures"][0]["error"]["kind"], "remote_unavailable")
        self.assertEqual(sorted(client.calls), ["user1", "user2", "user3", "user4", "user5"])
        for student in self.students:
            student.refresh_from_db()
            if student.handle_codeforces == "user3":
                self.assertIsNone(student.last_synced_at)
                self.assertFalse(ProblemStats.objects.filter(student=student).exists())
            else:
                self.assertIsNotNone(student.last_synced_at)
                self.assertEqual(student.problem_stats.total_solved, 3)

    def test_students_without_handle_are_skipped(self):
        _student(6, handle=None)
        _student(7, handle="")
        client = FakeCodeforcesClient()

        summary = SyncOrchestrator(worker=AccountSyncWorker(client=client)).run_all()

        self.assertEqual(summary.total, 7)
        self.assertEqual(summary.succeeded, 5)
        self.assertEqual(summary.skipped, 2)
        self.assertEqual(summary.failed, 0)
        self.assertEqual(len(client.calls), 5)

    def test_rejects_run_while_lease_is_held(self):
        acquire_lease(SYNC_LEASE_NAME, 600)
        client = FakeCodeforcesClient()

        with patch("core.services.sync.ThreadPoolExecutor") as executor_mock:
            with self.assertRaises(AlreadyRunning):
                SyncOrchestrator(worker=AccountSyncWorker(client=client)).run_all()

        executor_mock.assert_not_called()
        self.assertEqual(client.calls, [])

    def test_second_invocation_during_a_run_is_rejected(self):
        client = FakeCodeforcesClient()
        worker = AccountSyncWorker(client=client)
        orchestrator = SyncOrchestrator(worker=worker, max_workers=2)
        original_commit = worker.commit
        nested = []

        def commit_and_retrigger(prepared, now=None):
            if not nested:
                try:
                    SyncOrchestrator(worker=worker).run_all()
                except AlreadyRunning as exc:
                    nested.append(exc)
            return original_commit(prepared, now)

        with patch("core.services.sync.ThreadPoolExecutor", wraps=ThreadPoolExecutor) as executor_mock:
            with patch.object(worker, "commit", side_effect=commit_and_retrigger):
                summary = orchestrator.run_all()

        self.assertEqual(len(nested), 1)
        self.assertEqual(executor_mock.call_count, 1)
        self.assertEqual(summary.succeeded, 5)
        self.assertEqual(len(client.calls), 5)

    def test_expired_lease_from_crashed_run_is_reclaimed(self):
        SyncLease.objects.create(
            name=SYNC_LEASE_NAME,
            owner="crashed-run",
            acquired_at=timezone.now() - timedelta(hours=3),
            expires_at=timezone.now() - timedelta(hours=2),
        )

        summary = SyncOrchestrator(worker=AccountSyncWorker(client=FakeCodeforcesClient())).run_all()

        self.assertEqual(summary.succeeded, 5)
        self.assertEqual(SyncLease.objects.get(name=SYNC_LEASE_NAME).owner, "")

    def test_lease_released_when_account_listing_fails(self):
        orchestrator = SyncOrchestrator(worker=AccountSyncWorker(client=FakeCodeforcesClient()))

        with patch.object(orchestrator, "_snapshot_accounts", side_effect=DatabaseError("store down")):
            with self.assertRaises(DatabaseError):
                orchestrator.run_all()

        self.assertEqual(SyncLease.objects.get(name=SYNC_LEASE_NAME).owner, "")
        self.assertIsNotNone(acquire_lease(SYNC_LEASE_NAME, 60))

    def test_accounts_added_mid_run_wait_for_the_next_run(self):
        client = FakeCodeforcesClient()
        worker = AccountSyncWorker(client=client)
        original_commit = worker.commit
        added = []

        def commit_and_add(prepared, now=None):
            if not added:
                added.append(_student(99))
            return original_commit(prepared, now)

        with patch.object(worker, "commit", side_effect=commit_and_add):
            summary = SyncOrchestrator(worker=worker).run_all()

        self.assertEqual(summary.total, 5)
        self.assertNotIn("user99", client.calls)
        added[0].refresh_from_db()
        self.assertIsNone(added[0].last_synced_at)

    def test_account_removed_mid_run_is_not_recreated(self):
        client = FakeCodeforcesClient()
        worker = AccountSyncWorker(client=client)
        original_commit = worker.commit
        victim = self.students[0]

        def commit_after_delete(prepared, now=None):
            Student.objects.filter(pk=victim.pk).delete()
            return original_commit(prepared, now)

        with patch.object(worker, "commit", side_effect=commit_after_delete):
            summary = SyncOrchestrator(worker=worker, max_workers=1).run_all()

        self.assertEqual(summary.total, 5)
        self.assertFalse(Student.objects.filter(pk=victim.pk).exists())
        self.assertFalse(ContestResult.objects.filter(student_id=victim.pk).exists())

    def test_rerun_converges_to_same_statistics(self):
        feed = make_feed("user1", submissions=[
            submission(1, 1900, "A", utc(2026, 10, 1, 10), rating=1450),
            submission(2, 1900, "A", utc(2026, 10, 2, 10), rating=1450),
        ])
        client = FakeCodeforcesClient(feeds={"user1": feed})
        orchestrator = SyncOrchestrator(worker=AccountSyncWorker(client=client))

        orchestrator.run_all()
        first = ProblemStats.objects.get(student=self.students[0])
        snapshot = (first.history, first.buckets, first.total_solved)
        orchestrator.run_all()
        first.refresh_from_db()

        self.assertEqual((first.history, first.buckets, first.total_solved), snapshot)
        self.assertEqual(first.buckets, [{"rating": 1400, "count": 1}])

    def test_run_stops_committing_once_its_lease_is_taken_over(self):
        client = FakeCodeforcesClient()
        worker = AccountSyncWorker(client=client)
        original_commit = worker.commit
        thief = []

        def commit_and_lose_lease(prepared, now=None):
            if not thief:
                SyncLease.objects.filter(name=SYNC_LEASE_NAME).update(
                    expires_at=timezone.now() - timedelta(seconds=1),
                )
                thief.append(acquire_lease(SYNC_LEASE_NAME, 600))
            return original_commit(prepared, now)

        with patch.object(worker, "commit", side_effect=commit_and_lose_lease) as commit_mock:
            summary = SyncOrchestrator(worker=worker, max_workers=1).run_all()

        self.assertIsNotNone(thief[0])
        self.assertEqual(commit_mock.call_count, 1)
        self.assertTrue(summary.aborted)
        self.assertEqual(summary.succeeded, 1)
        self.assertEqual(summary.failed, 4)
        self.assertEqual({o.reason for o in summary.failures}, {"lease_lost"})
        self.assertEqual(Student.objects.filter(last_synced_at__isnull=False).count(), 1)
        # The new owner keeps the lease; the old run cannot release it.
        self.assertEqual(SyncLease.objects.get(name=SYNC_LEASE_NAME).owner, thief[0])

    def test_concurrent_fetches_never_exceed_max_workers(self):
        for n in range(6, 11):
            _student(n)

        class InFlightClient(FakeCodeforcesClient):
            def __init__(self, limit):
                super().__init__()
                self.limit = limit
                self.in_flight = 0
                self.peak = 0
                self.saturated = threading.Event()

            def fetch_account(self, handle, deadline=None):
                with self._lock:
                    self.in_flight += 1
                    self.peak = max(self.peak, self.in_flight)
                    if self.in_flight >= self.limit:
                        self.saturated.set()
                try:
                    self.saturated.wait(timeout=2)
                    return super().fetch_account(handle, deadline)
                finally:
                    with self._lock:
                        self.in_flight -= 1

        client = InFlightClient(limit=3)
        summary = SyncOrchestrator(worker=AccountSyncWorker(client=client), max_workers=3).run_all()

        self.assertEqual(summary.succeeded, 10)
        self.assertEqual(len(client.calls), 10)
        self.assertEqual(client.peak, 3)

    def test_finish_time_is_set_even_if_release_fails(self):
        orchestrator = SyncOrchestrator(worker=AccountSyncWorker(client=FakeCodeforcesClient()))
        captured = []
        original_record = SyncRunSummary.record

        def record(summary, outcome):
            captured.append(summary)
            return original_record(summary, outcome)

        with patch.object(SyncRunSummary, "record", record):
            with patch("core.services.sync.release_lease", side_effect=DatabaseError("store down")):
                with self.assertRaises(DatabaseError):
                    orchestrator.run_all()

        self.assertIsNotNone(captured[0].finished_at)
