"""
FastAPI dependency providers.

Services are built once in the application lifespan and stored on
app.state; routes resolve them through these functions so tests can swap
them with app.dependency_overrides.
"""

from fastapi import Request

from app.infrastructure.observability.metrics import FeedbackMetrics
from app.repositories.user_repository import UserRepository
from app.services.analytics_service import AnalyticsService
from app.services.feedback_service import FeedbackService
from app.services.metrics_sync_service import MetricsSynchronizer
from app.services.presence_service import PresenceService
from app.services.rating_service import RatingService


def get_metrics(request: Request) -> FeedbackMetrics:
    return request.app.state.metrics


def get_feedback_service(request: Request) -> FeedbackService:
    return request.app.state.feedback_service


def get_analytics_service(request: Request) -> AnalyticsService:
    return request.app.state.analytics_service


def get_presence_service(request: Request) -> PresenceService:
    return request.app.state.presence_service


def get_rating_service(request: Request) -> RatingService:
    return request.app.state.rating_service


def get_metrics_synchronizer(request: Request) -> MetricsSynchronizer:
    return request.app.state.metrics_synchronizer


def get_user_repository(request: Request) -> UserRepository:
    return request.app.state.user_repository
