import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone

import requests
from django.conf import settings

from .sync_errors import InvalidAccount, RemoteUnavailable

logger = logging.getLogger(__name__)

HANDLE_RE = re.compile(r"^[A-Za-z0-9_.\-]{3,24}$")


@dataclass(frozen=True)
class RemoteProfile:
    handle: str
    rating: int | None
    max_rating: int | None
    rank: str = ""
    avatar: str = ""
    title_photo: str = ""


@dataclass(frozen=True)
class RatingEvent:
    contest_id: str
    contest_name: str
    rank: int | None
    rated_at: datetime
    old_rating: int
    new_rating: int


@dataclass(frozen=True)
class SubmissionEvent:
    submission_id: int
    contest_id: str
    problem_index: str
    problem_name: str
    problem_rating: int | None
    verdict: str | None
    submitted_at: datetime

    @property
    def problem_key(self) -> str:
        return f"{self.contest_id}-{self.problem_index}"


@dataclass(frozen=True)
class RemoteFeed:
    profile: RemoteProfile
    rating_events: tuple[RatingEvent, ...]
    submissions: tuple[SubmissionEvent, ...]


class _TransientError(Exception):
    pass


class RateLimiter:
    """Keeps consecutive requests at least ``min_interval`` seconds apart, across threads."""

    def __init__(self, min_interval: float, clock=time.monotonic, sleep=time.sleep):
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0

    def wait(self) -> float:
        with self._lock:
            now = self._clock()
            delay = self._next_slot - now
            if delay > 0:
                self._sleep(delay)
            self._next_slot = max(now, self._next_slot) + self.min_interval
            return max(0.0, delay)


_shared_rate_limiter = None
_shared_rate_limiter_lock = threading.Lock()


def get_shared_rate_limiter() -> RateLimiter:
    global _shared_rate_limiter
    with _shared_rate_limiter_lock:
        if _shared_rate_limiter is None:
            interval = getattr(settings, "CODEFORCES_MIN_REQUEST_INTERVAL_SECONDS", 2.0)
            _shared_rate_limiter = RateLimiter(interval)
        return _shared_rate_limiter


def validate_handle(handle) -> str:
    value = (handle or "").strip() if isinstance(handle, str) else ""
    if not value or not HANDLE_RE.match(value):
        raise InvalidAccount(f"Invalid Codeforces handle: {handle!r}", handle=value or None)
    return value


def _malformed(what: str, handle: str | None) -> RemoteUnavailable:
    return RemoteUnavailable(f"Malformed Codeforces payload: {what}", handle=handle)


def _field(payload, key, types, handle, required=True, default=None):
    if not isinstance(payload, dict):
        raise _malformed(f"expected object around '{key}'", handle)
    value = payload.get(key)
    if value is None:
        if required:
            raise _malformed(f"missing '{key}'", handle)
        return default
    # bool is an int subclass; never accept it as a number
    if isinstance(value, bool) or not isinstance(value, types):
        raise _malformed(f"unexpected type for '{key}'", handle)
    return value


def _from_epoch(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def parse_profile(result, handle: str) -> RemoteProfile:
    if not isinstance(result, list) or not result:
        raise _malformed("user.info returned no users", handle)
    payload = result[0]
    return RemoteProfile(
        handle=_field(payload, "handle", str, handle),
        rating=_field(payload, "rating", int, handle, required=False),
        max_rating=_field(payload, "maxRating", int, handle, required=False),
        rank=_field(payload, "rank", str, handle, required=False, default=""),
        avatar=_field(payload, "avatar", str, handle, required=False, default=""),
        title_photo=_field(payload, "titlePhoto", str, handle, required=False, default=""),
    )


def parse_rating_events(result, handle: str) -> list[RatingEvent]:
    if not isinstance(result, list):
        raise _malformed("user.rating result is not a list", handle)
    events = []
    for row in result:
        events.append(
            RatingEvent(
                contest_id=str(_field(row, "contestId", int, handle)),
                contest_name=_field(row, "contestName", str, handle, required=False, default=""),
                rank=_field(row, "rank", int, handle, required=False),
                rated_at=_from_epoch(_field(row, "ratingUpdateTimeSeconds", int, handle)),
                old_rating=_field(row, "oldRating", int, handle),
                new_rating=_field(row, "newRating", int, handle),
            )
        )
    return events


def parse_submissions(result, handle: str) -> list[SubmissionEvent]:
    if not isinstance(result, list):
        raise _malformed("user.status result is not a list", handle)
    submissions = []
    for row in result:
        problem = _field(row, "problem", dict, handle)
        contest_id = _field(problem, "contestId", int, handle, required=False)
        if contest_id is None:
            # acm.sgu style problems carry a problemset name instead of a contest id
            contest_id = _field(problem, "problemsetName", str, handle, required=False, default="")
        problem_name = _field(problem, "name", str, handle, required=False, default="")
        if contest_id in (None, ""):
            contest_id = problem_name
        if not contest_id:
            raise _malformed("user.status problem has no contestId, problemsetName or name", handle)
        submissions.append(
            SubmissionEvent(
                submission_id=_field(row, "id", int, handle),
                contest_id=str(contest_id),
                problem_index=_field(problem, "index", str, handle),
                problem_name=problem_name,
                problem_rating=_field(problem, "rating", int, handle, required=False),
                verdict=_field(row, "verdict", str, handle, required=False),
                submitted_at=_from_epoch(_field(row, "creationTimeSeconds", int, handle)),
            )
        )
    return submissions


class CodeforcesClient:
    BASE_URL = "https://codeforces.com/api"

    def __init__(
        self,
        *,
        base_url=None,
        timeout=None,
        max_attempts=None,
        backoff_seconds=None,
        page_size=None,
        max_submissions=None,
        rate_limiter=None,
        sleep=time.sleep,
        clock=time.monotonic,
    ):
        self.base_url = (base_url or getattr(settings, "CODEFORCES_API_URL", self.BASE_URL)).rstrip("/")
        self.timeout = float(timeout or getattr(settings, "CODEFORCES_TIMEOUT_SECONDS", 10))
        self.max_attempts = max(1, int(max_attempts or getattr(settings, "CODEFORCES_MAX_ATTEMPTS", 4)))
        if backoff_seconds is None:
            backoff_seconds = getattr(settings, "CODEFORCES_BACKOFF_SECONDS", 1.0)
        self.backoff_seconds = float(backoff_seconds)
        self.page_size = max(1, int(page_size or getattr(settings, "CODEFORCES_SUBMISSIONS_PAGE_SIZE", 1000)))
        self.max_submissions = max(1, int(max_submissions or getattr(settings, "CODEFORCES_SUBMISSIONS_MAX_COUNT", 5000)))
        self.rate_limiter = rate_limiter or get_shared_rate_limiter()
        self._sleep = sleep
        self._clock = clock

    def fetch_account(self, handle, deadline=None) -> RemoteFeed:
        """
        Fetch profile, rating history and submissions for one handle.

        ``deadline`` is a ``clock()`` value; once it passes, the fetch fails
        with RemoteUnavailable instead of issuing more requests.
        """
        handle = validate_handle(handle)
        profile = self.get_user_info(handle, deadline=deadline)
        rating_events = self.get_rating_changes(handle, deadline=deadline)
        submissions = self.get_submissions(handle, deadline=deadline)
        logger.debug(
            "Fetched Codeforces feed handle=%s contests=%s submissions=%s",
            handle,
            len(rating_events),
            len(submissions),
        )
        return RemoteFeed(
            profile=profile,
            rating_events=tuple(rating_events),
            submissions=tuple(submissions),
        )

    def get_user_info(self, handle, deadline=None) -> RemoteProfile:
        handle = validate_handle(handle)
        result = self._call("user.info", {"handles": handle}, handle, deadline)
        return parse_profile(result, handle)

    def get_rating_changes(self, handle, deadline=None) -> list[RatingEvent]:
        handle = validate_handle(handle)
        result = self._call("user.rating", {"handle": handle}, handle, deadline)
        events = parse_rating_events(result, handle)
        events.sort(key=lambda event: (event.rated_at, event.contest_id))
        return events

    def get_submissions(self, handle, deadline=None) -> list[SubmissionEvent]:
        handle = validate_handle(handle)
        submissions = []
        start = 1
        while len(submissions) < self.max_submissions:
            count = min(self.page_size, self.max_submissions - len(submissions))
            params = {"handle": handle, "from": start, "count": count}
            page = parse_submissions(self._call("user.status", params, handle, deadline), handle)
            submissions.extend(page)
            if len(page) < count:
                break
            start += count
        return submissions

    def _remaining_timeout(self, deadline, handle) -> float:
        if deadline is None:
            return self.timeout
        remaining = deadline - self._clock()
        if remaining <= 0:
            raise RemoteUnavailable("Account sync deadline exceeded", handle=handle)
        return min(self.timeout, remaining)

    def _call(self, method: str, params: dict, handle: str, deadline=None):
        url = f"{self.base_url}/{method}"
        last_error = ""
        for attempt in range(self.max_attempts):
            timeout = self._remaining_timeout(deadline, handle)
            self.rate_limiter.wait()
            try:
                response = requests.get(url, params=params, timeout=timeout)
                return self._parse_response(response, handle)
            except requests.RequestException as exc:
                last_error = f"connection error: {exc}"
            except _TransientError as exc:
                last_error = str(exc)

            if attempt < self.max_attempts - 1:
                delay = self.backoff_seconds * (2 ** attempt)
                if deadline is not None and self._clock() + delay >= deadline:
                    break
                logger.warning(
                    "Codeforces %s failed for %s (attempt %s/%s): %s; retrying in %.1fs",
                    method,
                    handle,
                    attempt + 1,
                    self.max_attempts,
                    last_error,
                    delay,
                )
                self._sleep(delay)

        logger.error("Codeforces %s unavailable for %s: %s", method, handle, last_error)
        raise RemoteUnavailable(f"Codeforces {method} unavailable: {last_error}", handle=handle)

    @staticmethod
    def _parse_response(response, handle: str):
        status_code = response.status_code
        if status_code == 429 or status_code >= 500:
            raise _TransientError(f"HTTP {status_code}")

        try:
            data = response.json()
        except ValueError:
            if 200 <= status_code < 300:
                raise _malformed("response is not JSON", handle)
            raise RemoteUnavailable(f"Codeforces returned HTTP {status_code}", handle=handle)

        if not isinstance(data, dict):
            raise _malformed("response is not an object", handle)

        if data.get("status") != "OK":
            comment = str(data.get("comment") or "")
            lowered = comment.lower()
            if "limit" in lowered:
                raise _TransientError(f"rate limited: {comment}")
            if "handle" in lowered and "not found" in lowered:
                raise InvalidAccount(comment, handle=handle)
            raise RemoteUnavailable(
                f"Codeforces API error (HTTP {status_code}): {comment or 'no comment'}",
                handle=handle,
            )

        if status_code >= 300:
            raise RemoteUnavailable(f"Codeforces returned HTTP {status_code}", handle=handle)
        if "result" not in data:
            raise _malformed("missing 'result'", handle)
        return data["result"]
