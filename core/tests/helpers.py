import threading
from datetime import datetime, timezone

from core.services.api_client import RatingEvent, RemoteFeed, RemoteProfile, SubmissionEvent


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def submission(sub_id, contest_id, index, submitted_at, verdict="OK", rating=None, name=None):
    return SubmissionEvent(
        submission_id=sub_id,
        contest_id=str(contest_id),
        problem_index=index,
        problem_name=name or f"Problem {contest_id}{index}",
        problem_rating=rating,
        verdict=verdict,
        submitted_at=submitted_at,
    )


def rating_event(contest_id, rated_at, old, new, rank=100, name=None):
    return RatingEvent(
        contest_id=str(contest_id),
        contest_name=name or f"Codeforces Round {contest_id}",
        rank=rank,
        rated_at=rated_at,
        old_rating=old,
        new_rating=new,
    )


def make_feed(handle, rating=1500, max_rating=1600, submissions=None, rating_events=None):
    if submissions is None:
        submissions = [
            submission(1, 1900, "A", utc(2026, 10, 1, 10), rating=800),
            submission(2, 1900, "B", utc(2026, 10, 1, 11), rating=1200),
            submission(3, 1901, "C", utc(2026, 10, 3, 9)),
        ]
    if rating_events is None:
        rating_events = [
            rating_event(1900, utc(2026, 10, 1, 15), 1400, 1450),
            rating_event(1901, utc(2026, 10, 3, 15), 1450, rating),
        ]
    return RemoteFeed(
        profile=RemoteProfile(
            handle=handle,
            rating=rating,
            max_rating=max_rating,
            rank="specialist",
            avatar=f"https://userpic.codeforces.org/{handle}/avatar.jpg",
            title_photo=f"https://userpic.codeforces.org/{handle}/title.jpg",
        ),
        rating_events=tuple(rating_events),
        submissions=tuple(submissions),
    )


class FakeCodeforcesClient:
    """Stands in for CodeforcesClient; safe to call from pool threads."""

    def __init__(self, feeds=None, errors=None):
        self.feeds = feeds or {}
        self.errors = errors or {}
        self.calls = []
        self._lock = threading.Lock()

    def fetch_account(self, handle, deadline=None):
        with self._lock:
            self.calls.append(handle)
        if handle in self.errors:
            raise self.errors[handle]
        if handle in self.feeds:
            return self.feeds[handle]
        return make_feed(handle)
