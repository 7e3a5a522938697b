"""
user.py
-------
Purpose:
    Presence heartbeat and the caller's platform rating.

Usage:
    1. POST /user/heartbeat - Mark the caller online
    2. POST /user/rating - Create or replace the caller's rating
    3. GET /user/rating - Read the caller's rating
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import auth_dependency
from app.db.helpers import DatabaseError
from app.dependencies import get_presence_service, get_rating_service
from app.infrastructure.observability.logging import get_logger
from app.models.api.user_request import SubmitRatingRequest
from app.models.api.user_response import HeartbeatResponse, RatingResponse
from app.routes.feedback import require_user_id, service_unavailable
from app.services.presence_service import PresenceService, UserNotFoundError
from app.services.rating_service import RatingService, RatingValidationError

router = APIRouter(prefix="/user", tags=["user"])
logger = get_logger(__name__)


@router.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    claims: dict = Depends(auth_dependency),
    presence: PresenceService = Depends(get_presence_service),
):
    user_id = require_user_id(claims)
    try:
        last_active = await presence.heartbeat(user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DatabaseError as e:
        raise service_unavailable("User store unavailable") from e

    return HeartbeatResponse(success=True, last_active=last_active)


@router.post("/rating", response_model=RatingResponse)
async def submit_rating(
    request: SubmitRatingRequest,
    claims: dict = Depends(auth_dependency),
    ratings: RatingService = Depends(get_rating_service),
):
    """
    Create or replace the caller's platform rating.

    Raises:
        400: Rating outside 1-5 or message too long
        404: User not found
    """
    user_id = require_user_id(claims)
    try:
        rating = await ratings.submit_rating(user_id, request.rating, request.message)
    except RatingValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DatabaseError as e:
        raise service_unavailable("User store unavailable") from e

    return RatingResponse(success=True, rating=rating)


@router.get("/rating", response_model=RatingResponse)
async def get_rating(
    claims: dict = Depends(auth_dependency),
    ratings: RatingService = Depends(get_rating_service),
):
    user_id = require_user_id(claims)
    try:
        rating = await ratings.get_rating(user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DatabaseError as e:
        raise service_unavailable("User store unavailable") from e

    return RatingResponse(success=True, rating=rating)
