# app/models/api/user_request.py
from pydantic import BaseModel, Field


class SubmitRatingRequest(BaseModel):
    """Request body for POST /user/rating."""

    rating: int = Field(..., ge=1, le=5, description="Platform rating, 1-5")
    message: str = Field(default="", max_length=1000, description="Optional free-text comment")
