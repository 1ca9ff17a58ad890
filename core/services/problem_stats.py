"""
Pure aggregation of a Codeforces feed into derived statistics.

Nothing here touches the network or the database; the same feed always
produces the same output, so a sync can be rerun any number of times.
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

ACCEPTED_VERDICT = "OK"
DEFAULT_DIFFICULTY = 1200
LETTER_BASE_DIFFICULTY = 800
LETTER_STEP = 200
BUCKET_SIZE = 100


@dataclass(frozen=True)
class SolvedProblem:
    key: str
    name: str
    index: str
    rating: int
    solved_at: datetime

    @property
    def solved_on(self) -> date:
        return self.solved_at.astimezone(timezone.utc).date()


@dataclass(frozen=True)
class DailySolves:
    date: date
    solved: int
    avg_rating: int | None = None
    most_difficult_name: str = ""
    most_difficult_rating: int | None = None

    def to_json(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "solved": self.solved,
            "avg_rating": self.avg_rating,
            "most_difficult": {
                "name": self.most_difficult_name,
                "rating": self.most_difficult_rating,
            },
        }

    @classmethod
    def from_json(cls, payload: dict) -> "DailySolves":
        hardest = payload.get("most_difficult") or {}
        return cls(
            date=date.fromisoformat(payload["date"]),
            solved=int(payload.get("solved") or 0),
            avg_rating=payload.get("avg_rating"),
            most_difficult_name=hardest.get("name") or "",
            most_difficult_rating=hardest.get("rating"),
        )


@dataclass(frozen=True)
class ProblemStatistics:
    history: tuple[DailySolves, ...] = ()
    # rounded-down difficulty -> solves, ascending keys, counts always > 0
    buckets: dict[int, int] = field(default_factory=dict)

    @property
    def total_solved(self) -> int:
        return sum(self.buckets.values())

    def history_json(self) -> list[dict]:
        return [entry.to_json() for entry in self.history]

    def buckets_json(self) -> list[dict]:
        return [{"rating": rating, "count": count} for rating, count in sorted(self.buckets.items())]

    @classmethod
    def from_json(cls, history, buckets) -> "ProblemStatistics":
        entries = sorted((DailySolves.from_json(row) for row in history or []), key=lambda e: e.date)
        pairs = sorted((int(row["rating"]), int(row["count"])) for row in buckets or [])
        return cls(
            history=tuple(entries),
            buckets=OrderedDict((rating, count) for rating, count in pairs if count > 0),
        )


@dataclass(frozen=True)
class ContestEntry:
    contest_id: str
    contest_name: str
    date: datetime
    rank: int | None
    old_rating: int
    new_rating: int
    unsolved_problems: int | None = None

    @property
    def rating_change(self) -> int:
        return self.new_rating - self.old_rating


@dataclass(frozen=True)
class AggregatedStats:
    contests: tuple[ContestEntry, ...]
    problem_stats: ProblemStatistics
    solved: tuple[SolvedProblem, ...]


def letter_difficulty(problem_index) -> int | None:
    """Heuristic difficulty from the problem letter: A=800, B=1000, C=1200..."""
    if not problem_index:
        return None
    letter = str(problem_index).strip()[:1].upper()
    if not ("A" <= letter <= "Z"):
        return None
    return max(LETTER_BASE_DIFFICULTY, LETTER_BASE_DIFFICULTY + (ord(letter) - ord("A")) * LETTER_STEP)


def resolve_difficulty(problem_rating, problem_index) -> int:
    if problem_rating is not None:
        return int(problem_rating)
    fallback = letter_difficulty(problem_index)
    if fallback is not None:
        return fallback
    return DEFAULT_DIFFICULTY


def bucket_for(difficulty: int) -> int:
    return (int(difficulty) // BUCKET_SIZE) * BUCKET_SIZE


def first_accepted_solves(submissions) -> list[SolvedProblem]:
    """
    Keep the earliest accepted submission per problem identity.

    Submissions are ordered by time (submission id breaks ties), so later
    accepted submissions for an already solved problem are dropped.
    """
    ordered = sorted(submissions, key=lambda sub: (sub.submitted_at, sub.submission_id))
    solved = OrderedDict()
    for sub in ordered:
        if sub.verdict != ACCEPTED_VERDICT:
            continue
        key = sub.problem_key
        if key in solved:
            continue
        solved[key] = SolvedProblem(
            key=key,
            name=sub.problem_name,
            index=sub.problem_index,
            rating=resolve_difficulty(sub.problem_rating, sub.problem_index),
            solved_at=sub.submitted_at,
        )
    return list(solved.values())


def build_problem_stats(solved) -> ProblemStatistics:
    buckets: dict[int, int] = {}
    by_day: dict[date, list[SolvedProblem]] = {}
    for problem in solved:
        bucket = bucket_for(problem.rating)
        buckets[bucket] = buckets.get(bucket, 0) + 1
        by_day.setdefault(problem.solved_on, []).append(problem)

    history = []
    for day in sorted(by_day):
        problems = by_day[day]
        hardest = max(problems, key=lambda p: p.rating)
        history.append(
            DailySolves(
                date=day,
                solved=len(problems),
                avg_rating=round(sum(p.rating for p in problems) / len(problems)),
                most_difficult_name=hardest.name,
                most_difficult_rating=hardest.rating,
            )
        )

    return ProblemStatistics(
        history=tuple(history),
        buckets=OrderedDict(sorted(buckets.items())),
    )


def normalize_contests(rating_events) -> list[ContestEntry]:
    entries = [
        ContestEntry(
            contest_id=event.contest_id,
            contest_name=event.contest_name,
            date=event.rated_at,
            rank=event.rank,
            old_rating=event.old_rating,
            new_rating=event.new_rating,
            # Codeforces does not report unsolved counts on rating changes.
            unsolved_problems=None,
        )
        for event in rating_events
    ]
    entries.sort(key=lambda entry: (entry.date, entry.contest_id))
    return entries


def aggregate_feed(feed) -> AggregatedStats:
    solved = first_accepted_solves(feed.submissions)
    return AggregatedStats(
        contests=tuple(normalize_contests(feed.rating_events)),
        problem_stats=build_problem_stats(solved),
        solved=tuple(solved),
    )


def window_start(now: datetime, days: int) -> date:
    """First calendar day (UTC) that still counts as inside a trailing window."""
    return (now - timedelta(days=int(days))).astimezone(timezone.utc).date()


def has_activity_since(history, since: date) -> bool:
    return any(entry.date >= since and entry.solved > 0 for entry in history)


def summarize_problem_window(stats: ProblemStatistics, days: int, now: datetime) -> dict:
    since = window_start(now, days)
    entries = [entry for entry in stats.history if entry.date >= since and entry.solved > 0]
    solved = sum(entry.solved for entry in entries)
    if not solved:
        return {
            "days": int(days),
            "solved": 0,
            "active_days": 0,
            "most_difficult": None,
            "average_rating": None,
            "average_per_day": None,
        }

    rated = [entry for entry in entries if entry.avg_rating is not None]
    rated_total = sum(entry.solved for entry in rated)
    average_rating = None
    if rated_total:
        average_rating = round(sum(entry.avg_rating * entry.solved for entry in rated) / rated_total)
    hardest = max(
        (entry for entry in entries if entry.most_difficult_rating is not None),
        key=lambda entry: entry.most_difficult_rating,
        default=None,
    )
    return {
        "days": int(days),
        "solved": solved,
        "active_days": len(entries),
        "most_difficult": (
            {"name": hardest.most_difficult_name, "rating": hardest.most_difficult_rating}
            if hardest
            else None
        ),
        "average_rating": average_rating,
        "average_per_day": round(solved / len(entries), 2),
    }
