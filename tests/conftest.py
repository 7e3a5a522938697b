from collections import defaultdict
from datetime import UTC, datetime, timedelta

import jwt
import pytest

from app.auth.verify import admin_dependency, auth_dependency
from app.config import settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.metrics import FeedbackMetrics
from app.models.domain.analytics_domain import IntentAggregateRow, SentimentAggregateRow
from app.models.domain.feedback_domain import FeedbackResult, ResultStatus
from app.models.domain.user_domain import PlatformRating, UserCounts, UserSummary
from app.repositories.job_status_repository import JobStatusRepository
from app.repositories.user_repository import build_rating_stats
from app.services.feedback_service import FeedbackService
from app.services.queue_service import FeedbackQueue

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123", "role": "member"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app, admin: bool = False):
        app.dependency_overrides[auth_dependency] = auth_override
        if admin:
            app.dependency_overrides[admin_dependency] = lambda: {"sub": "admin-1", "role": "admin"}

    return _apply


@pytest.fixture
def make_token():
    def _make(sub: str = "user-123", role: str = "member", **extra) -> str:
        claims = {
            "sub": sub,
            "role": role,
            "aud": settings.JWT_AUDIENCE,
            "exp": datetime.now(UTC) + timedelta(minutes=5),
            **extra,
        }
        return jwt.encode(claims, settings.JWT_SECRET, algorithm="HS256")

    return _make


class FakeRedis:
    """In-memory stand-in for FastRedisClient (same method contracts)."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.zsets: dict[str, dict[str, float]] = defaultdict(dict)
        self.ttls: dict[str, int | None] = {}
        self.available = True
        self.push_failures = 0

    async def ping(self) -> bool:
        return self.available

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        if not self.available:
            return False
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key) if self.available else None

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def push_to_list(self, key: str, value: str, left: bool = True) -> bool:
        if not self.available:
            return False
        if self.push_failures > 0:
            self.push_failures -= 1
            return False
        if left:
            self.lists[key].insert(0, value)
        else:
            self.lists[key].append(value)
        return True

    async def pop_to_inflight(self, source_key: str, inflight_key: str, timeout: int = 0):
        if not self.available or not self.lists[source_key]:
            return None
        value = self.lists[source_key].pop()
        self.lists[inflight_key].insert(0, value)
        return value

    async def ack_from_inflight(self, inflight_key: str, value: str) -> bool:
        try:
            self.lists[inflight_key].remove(value)
            return True
        except ValueError:
            return False

    async def requeue_from_inflight(self, inflight_key: str, destination_key: str, value: str):
        if not await self.ack_from_inflight(inflight_key, value):
            return False
        self.lists[destination_key].append(value)
        return True

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> list[str]:
        items = self.lists[key]
        return list(items[start:] if end == -1 else items[start : end + 1])

    async def list_length(self, key: str) -> int | None:
        return len(self.lists[key]) if self.available else None

    async def add_delayed(self, key: str, value: str, ready_at: float) -> bool:
        if not self.available:
            return False
        self.zsets[key][value] = ready_at
        return True

    async def sorted_set_add(self, key: str, member: str, score: float) -> bool:
        if not self.available:
            return False
        self.zsets[key][member] = score
        return True

    async def sorted_set_range(
        self, key: str, min_score: float = float("-inf"), max_score: float = float("inf")
    ) -> list[str]:
        if not self.available:
            return []
        members = sorted((score, member) for member, score in self.zsets[key].items())
        return [member for score, member in members if min_score <= score <= max_score]

    async def sorted_set_remove(self, key: str, member: str) -> bool:
        if not self.available:
            return False
        return self.zsets[key].pop(member, None) is not None

    async def promote_due(self, delayed_key: str, destination_key: str, now: float, limit: int = 100):
        due = sorted(
            (score, value) for value, score in self.zsets[delayed_key].items() if score <= now
        )[:limit]
        for _, value in due:
            del self.zsets[delayed_key][value]
            self.lists[destination_key].append(value)
        return len(due)


class FakeResultRepository:
    """Dict-backed result store mirroring ResultRepository's contracts."""

    def __init__(self):
        self.rows: dict[str, FeedbackResult] = {}
        self.fail_with: Exception | None = None

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    async def upsert(self, result: FeedbackResult) -> bool:
        self._maybe_fail()
        inserted = result.job_id not in self.rows
        self.rows[result.job_id] = result
        return inserted

    async def get(self, job_id: str):
        self._maybe_fail()
        return self.rows.get(job_id)

    async def exists(self, job_id: str) -> bool:
        self._maybe_fail()
        return job_id in self.rows

    async def list_results(self, *, user_id=None, sentiment=None, limit=20, offset=0):
        self._maybe_fail()
        rows = [
            r
            for r in self.rows.values()
            if (user_id is None or r.user_id == user_id)
            and (sentiment is None or r.sentiment.value == sentiment)
        ]
        rows.sort(key=lambda r: (-r.processed_at.timestamp(), r.job_id))
        return rows[offset : offset + limit], len(rows)

    async def delete_for_user(self, user_id: str) -> int:
        self._maybe_fail()
        doomed = [job_id for job_id, r in self.rows.items() if r.user_id == user_id]
        for job_id in doomed:
            del self.rows[job_id]
        return len(doomed)

    def _in_scope(self, r: FeedbackResult, scope) -> bool:
        return (
            r.status == ResultStatus.COMPLETED
            and (scope.user_id is None or r.user_id == scope.user_id)
            and (scope.since is None or r.processed_at >= scope.since)
            and (scope.until is None or r.processed_at < scope.until)
        )

    async def sentiment_aggregates(self, scope, current_window_start, previous_window_start):
        self._maybe_fail()
        grouped: dict[str, list[FeedbackResult]] = defaultdict(list)
        for r in self.rows.values():
            if self._in_scope(r, scope):
                grouped[r.sentiment.value].append(r)
        return [
            SentimentAggregateRow(
                sentiment=label,
                count=len(rows),
                avg_confidence=sum(r.confidence for r in rows) / len(rows),
                this_week=sum(1 for r in rows if r.processed_at >= current_window_start),
                last_week=sum(
                    1
                    for r in rows
                    if previous_window_start <= r.processed_at < current_window_start
                ),
            )
            for label, rows in sorted(grouped.items())
        ]

    async def intent_aggregates(self, scope, limit=None):
        self._maybe_fail()
        counts: dict[str, int] = defaultdict(int)
        first_seen: dict[str, datetime] = {}
        for r in self.rows.values():
            if not self._in_scope(r, scope):
                continue
            for intent in r.intents:
                counts[intent] += 1
                if intent not in first_seen or r.processed_at < first_seen[intent]:
                    first_seen[intent] = r.processed_at
        rows = [IntentAggregateRow(i, c, first_seen[i]) for i, c in counts.items()]
        rows.sort(key=lambda r: (-r.count, r.first_seen, r.intent))
        return rows[:limit] if limit else rows

    async def status_counts(self):
        self._maybe_fail()
        counts: dict[str, dict[str, int]] = {}
        for r in self.rows.values():
            bucket = counts.setdefault(r.status.value, {})
            bucket[r.sentiment.value] = bucket.get(r.sentiment.value, 0) + 1
        return counts


class FakeUserRepository:
    """Users keyed by id with presence and rating fields."""

    def __init__(self):
        self.users: dict[str, dict] = {}

    def add_user(self, user_id: str, *, verified=False, role="member", last_active=None, online=False):
        self.users[user_id] = {
            "id": user_id,
            "name": user_id.title(),
            "email": f"{user_id}@example.com",
            "role": role,
            "is_account_verified": verified,
            "last_active": last_active,
            "is_online": online,
            "rating": None,
            "created_at": T0,
        }

    async def touch_presence(self, user_id: str, now: datetime) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        user["last_active"] = now
        user["is_online"] = True
        return True

    async def mark_stale_offline(self, cutoff: datetime) -> int:
        demoted = 0
        for user in self.users.values():
            if user["is_online"] and user["last_active"] is not None and user["last_active"] < cutoff:
                user["is_online"] = False
                demoted += 1
        return demoted

    async def counts(self) -> UserCounts:
        total = len(self.users)
        verified = sum(1 for u in self.users.values() if u["is_account_verified"])
        by_role = {"admin": 0, "manager": 0, "member": 0}
        for u in self.users.values():
            by_role[u["role"]] += 1
        return UserCounts(
            total=total,
            verified=verified,
            unverified=total - verified,
            online=sum(1 for u in self.users.values() if u["is_online"]),
            by_role=by_role,
        )

    async def recent_users(self, limit: int = 10):
        return [
            UserSummary(
                user_id=u["id"],
                name=u["name"],
                email=u["email"],
                role=u["role"],
                is_account_verified=u["is_account_verified"],
                is_online=u["is_online"],
                last_active=u["last_active"],
                created_at=u["created_at"],
            )
            for u in list(self.users.values())[:limit]
        ]

    async def upsert_rating(self, user_id: str, score: int, message: str, now: datetime):
        user = self.users.get(user_id)
        if user is None:
            return None, False
        previous = user["rating"]
        user["rating"] = PlatformRating(
            score=score,
            message=message,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        return user["rating"], previous is None

    async def get_rating(self, user_id: str):
        user = self.users.get(user_id)
        if user is None:
            return False, None
        return True, user["rating"]

    async def rating_distribution(self):
        distribution: dict[int, int] = defaultdict(int)
        for u in self.users.values():
            if u["rating"] is not None:
                distribution[u["rating"].score] += 1
        return dict(distribution)

    async def rating_stats(self):
        return build_rating_stats(await self.rating_distribution())


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def metrics():
    return FeedbackMetrics(process_metrics=False)


@pytest.fixture
def results():
    return FakeResultRepository()


@pytest.fixture
def users():
    return FakeUserRepository()


@pytest.fixture
def queue(fake_redis):
    return FeedbackQueue(
        fake_redis,
        queue_key="test:jobs",
        inflight_key="test:jobs:inflight",
        delayed_key="test:jobs:delayed",
        workers_key="test:workers",
        worker_id="worker-1",
    )


@pytest.fixture
def statuses(fake_redis):
    return JobStatusRepository(fake_redis)


@pytest.fixture
def feedback_service(queue, results, statuses, metrics):
    return FeedbackService(queue, results, statuses, metrics, max_length=200)


@pytest.fixture
def database_error():
    return DatabaseError("connection refused", operation="test", recoverable=True)
