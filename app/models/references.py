"""
Structured reference responses and stored WhatsApp messages
"""
from typing import Optional

from pydantic import BaseModel, Field

RATING_FIELDS = (
    "overall",
    "reliability",
    "teamwork",
    "communication",
    "technical_skills",
    "leadership",
    "problem_solving",
    "work_ethic",
)


class ReferenceRating(BaseModel):
    """Sub-scores 0..10, 0 meaning unrated"""
    overall: int = Field(default=0, ge=0, le=10)
    reliability: int = Field(default=0, ge=0, le=10)
    teamwork: int = Field(default=0, ge=0, le=10)
    communication: int = Field(default=0, ge=0, le=10)
    technical_skills: int = Field(default=0, ge=0, le=10)
    leadership: int = Field(default=0, ge=0, le=10)
    problem_solving: int = Field(default=0, ge=0, le=10)
    work_ethic: int = Field(default=0, ge=0, le=10)


class ReferenceResponse(BaseModel):
    id: str
    timestamp: str
    saved_at: Optional[str] = None
    reference_phone: Optional[str] = None
    reference_name: str = "Unknown"
    reference_for: Optional[str] = None
    candidate_name: str = "Unknown"
    candidate_position: str = "Unknown"
    reference_position: str = "Unknown"
    reference_company: str = "Unknown"
    relationship: str = "Unknown"
    duration: str = "Unknown"
    project_context: str = "Unknown"
    rating: ReferenceRating = Field(default_factory=ReferenceRating)
    response_quality: str = "unknown"
    willingness_to_recommend: str = "unknown"
    original_message: str = ""
    additional_comments: str = ""
    status: str = "pending_review"

    class Config:
        extra = "allow"
