"""
Prometheus instruments for the feedback pipeline.

Each process builds exactly one FeedbackMetrics at startup and passes it
by reference to the services that record events, the synchronizer that
materializes gauges, and the scrape handler. Nothing here registers on the
prometheus_client global registry.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)
from prometheus_client.openmetrics.exposition import (
    CONTENT_TYPE_LATEST as OPENMETRICS_CONTENT_TYPE,
)
from prometheus_client.openmetrics.exposition import (
    generate_latest as generate_openmetrics,
)

SENTIMENT_LABELS = ("positive", "neutral", "negative")
RATING_SCORES = ("1", "2", "3", "4", "5")

HTTP_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1, 2, 5)


class FeedbackMetrics:
    """Owns a CollectorRegistry and every instrument registered on it."""

    def __init__(self, registry: CollectorRegistry | None = None, process_metrics: bool = True):
        self.registry = registry or CollectorRegistry(auto_describe=True)

        if process_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)

        # Counters: incremented at the moment of the business event
        self.feedback_submitted = Counter(
            "feedback_submitted",
            "Total feedback submissions",
            registry=self.registry,
        )
        self.feedback_by_sentiment = Counter(
            "feedback_by_sentiment",
            "Feedback classified, by sentiment",
            ["sentiment"],
            registry=self.registry,
        )
        self.user_ratings = Counter(
            "user_ratings",
            "Total number of user ratings submitted",
            registry=self.registry,
        )
        self.user_ratings_by_score = Counter(
            "user_ratings_by_score",
            "User ratings submitted, by score (1-5)",
            ["score"],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests",
            "Total number of HTTP requests",
            ["method", "route", "status_code"],
            registry=self.registry,
        )
        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "Duration of HTTP requests in seconds",
            ["method", "route"],
            buckets=HTTP_DURATION_BUCKETS,
            registry=self.registry,
        )

        # Gauges: overwritten on every synchronization tick
        self.users_total = Gauge(
            "users_total",
            "Total number of users in the system",
            registry=self.registry,
        )
        self.users_verified = Gauge(
            "users_verified",
            "Total number of verified users",
            registry=self.registry,
        )
        self.users_online = Gauge(
            "users_online",
            "Number of currently online users",
            registry=self.registry,
        )
        self.feedback_total = Gauge(
            "feedback_total",
            "Completed feedback results",
            registry=self.registry,
        )
        self.feedback_failed = Gauge(
            "feedback_failed",
            "Feedback jobs that failed terminally",
            registry=self.registry,
        )
        self.feedback_sentiment = Gauge(
            "feedback_sentiment",
            "Completed feedback results by sentiment",
            ["sentiment"],
            registry=self.registry,
        )
        self.user_ratings_average = Gauge(
            "user_ratings_average",
            "Average user rating score",
            registry=self.registry,
        )
        self.user_ratings_gauge = Gauge(
            "user_ratings_gauge",
            "Current user ratings by score",
            ["score"],
            registry=self.registry,
        )

        # Pre-create labelled children so every label is exposed from the first scrape
        for sentiment in SENTIMENT_LABELS:
            self.feedback_by_sentiment.labels(sentiment=sentiment)
            self.feedback_sentiment.labels(sentiment=sentiment).set(0)
        for score in RATING_SCORES:
            self.user_ratings_by_score.labels(score=score)
            self.user_ratings_gauge.labels(score=score).set(0)

    # ------------------------------------------------------------------
    # Event recorders
    # ------------------------------------------------------------------

    def record_submission(self) -> None:
        self.feedback_submitted.inc()

    def record_classification(self, sentiment: str) -> None:
        if sentiment in SENTIMENT_LABELS:
            self.feedback_by_sentiment.labels(sentiment=sentiment).inc()

    def record_rating(self, score: int) -> None:
        self.user_ratings.inc()
        self.user_ratings_by_score.labels(score=str(score)).inc()

    def record_http_request(
        self, method: str, route: str, status_code: int, duration_s: float
    ) -> None:
        self.http_requests.labels(method=method, route=route, status_code=str(status_code)).inc()
        self.http_request_duration.labels(method=method, route=route).observe(duration_s)

    # ------------------------------------------------------------------
    # Exposition
    # ------------------------------------------------------------------

    def render(self, accept: str | None = None) -> tuple[bytes, str]:
        """Render the registry; OpenMetrics when the Accept header asks for it."""
        if accept and "application/openmetrics-text" in accept:
            return generate_openmetrics(self.registry), OPENMETRICS_CONTENT_TYPE
        return generate_latest(self.registry), CONTENT_TYPE_LATEST

    def sample(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Read a single sample value (used by health output and tests)."""
        return self.registry.get_sample_value(name, labels or {})
