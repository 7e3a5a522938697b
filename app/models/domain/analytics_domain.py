"""Derived analytics shapes. Computed on request, never persisted."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True, frozen=True)
class AnalyticsScope:
    """user_id=None means system-wide (admin)."""

    user_id: str | None = None
    since: datetime | None = None
    until: datetime | None = None

    @property
    def system_wide(self) -> bool:
        return self.user_id is None


@dataclass(slots=True)
class SentimentAggregateRow:
    """One grouped row from the result store."""

    sentiment: str
    count: int
    avg_confidence: float
    this_week: int
    last_week: int


@dataclass(slots=True)
class IntentAggregateRow:
    intent: str
    count: int
    first_seen: datetime | None = None


@dataclass(slots=True)
class SentimentBreakdown:
    count: int = 0
    percentage: float = 0.0
    avg_confidence: float = 0.0
    growth: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "percentage": self.percentage,
            "avg_confidence": self.avg_confidence,
            "growth": self.growth,
        }


@dataclass(slots=True)
class GrowthSummary:
    total: float = 0.0
    this_week: int = 0
    last_week: int = 0


@dataclass(slots=True)
class AnalyticsSummary:
    total: int
    breakdown: dict[str, SentimentBreakdown]
    avg_confidence: float
    top_intents: list[tuple[str, int]]
    growth: GrowthSummary
    scope: str = "user"
    generated_at: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "total": self.total,
            "breakdown": {k: v.to_dict() for k, v in self.breakdown.items()},
            "avg_confidence": self.avg_confidence,
            "top_intents": [{"intent": i, "count": c} for i, c in self.top_intents],
            "growth": {
                "total": self.growth.total,
                "this_week": self.growth.this_week,
                "last_week": self.growth.last_week,
            },
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            **self.extra,
        }
