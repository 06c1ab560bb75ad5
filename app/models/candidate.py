"""
Candidate directory models
"""
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field

UNKNOWN_CANDIDATE = "Unknown Candidate"
UNKNOWN_POSITION = "Unknown Position"


class CandidateStatus(str, Enum):
    NEW = "new"
    IN_REVIEW = "in_review"
    INTERVIEW_SCHEDULED = "interview_scheduled"
    INTERVIEW_COMPLETED = "interview_completed"
    HIRED = "hired"
    REJECTED = "rejected"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "CandidateStatus":
        """Map an upstream status string onto the enum, defaulting to NEW"""
        if not raw:
            return cls.NEW
        key = str(raw).strip().lower().replace(" ", "_").replace("-", "_")
        for status in cls:
            if status.value == key:
                return status
        return cls.NEW


class ReferenceContact(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None


class Reference(BaseModel):
    """A third party who can vouch for a candidate"""
    name: str = "Unknown"
    position: Optional[str] = None
    company: Optional[str] = None
    contact: ReferenceContact = Field(default_factory=ReferenceContact)
    relationship: str = "unknown"


class EvaluationResult(BaseModel):
    test_type: Optional[str] = None
    score: Any = None
    date: Optional[str] = None
    status: Optional[str] = None


class Candidate(BaseModel):
    """Unified view of one applicant, rebuilt on every directory fetch"""
    id: str
    name: str = UNKNOWN_CANDIDATE
    email: Optional[str] = None
    phone: Optional[str] = None
    position: str = UNKNOWN_POSITION
    status: CandidateStatus = CandidateStatus.NEW
    experience: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    salary_expectation: Optional[str] = "Not specified"
    availability: Optional[str] = None
    references: List[Reference] = Field(default_factory=list)
    results: List[EvaluationResult] = Field(default_factory=list)
    source: str = "users"
    offer_id: Optional[str] = None

    @property
    def has_known_position(self) -> bool:
        return bool(self.position) and self.position != UNKNOWN_POSITION
