"""
Feedback API request models.
Used by routes for input validation.
"""

from typing import Any

from pydantic import BaseModel, Field


class SubmitFeedbackRequest(BaseModel):
    """Request body for POST /feedback/submit."""

    text: str = Field(..., min_length=1, description="Free-text feedback to classify")
    metadata: dict[str, Any] = Field(
        default_factory=dict, description="Arbitrary metadata echoed on the result"
    )
