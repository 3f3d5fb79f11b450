"""
Transcript Analysis Request/Response Models

This module defines the Pydantic models for the POST /analyze-transcript API.
The request model accepts every field as optional so that missing fields can
be reported in the endpoint's own {"success": false, "error": ...} shape.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from models.analysis_models import AnalysisResult, CamelModel
from models.insight_models import (
    FeatureRequestTrend,
    PainPointTrend,
    RecurringIssueSummary,
    SimilarPainPoint,
)
from services.exceptions import InputValidationError
from utils.date_utils import parse_iso_date

REQUIRED_FIELDS = ("transcript", "meetingDate", "userId", "companyName")


class TranscriptSubmission(CamelModel):
    """A validated transcript submission; the seed for one meeting."""
    transcript: str
    meeting_date: date
    meeting_title: Optional[str] = None
    meeting_purpose: Optional[str] = None
    user_id: str
    company_name: str


class TranscriptAnalysisRequest(CamelModel):
    """
    Request body for the transcript analysis endpoint.

    Attributes:
        transcript: Raw meeting transcript (required)
        meetingDate: ISO date of the meeting (required)
        meetingTitle: Optional meeting title
        meetingPurpose: Optional purpose, passed to the extractor
        userId: Submitting user; default follow-up assignee (required)
        companyName: Customer company name (required)
    """
    transcript: Optional[str] = None
    meeting_date: Optional[str] = None
    meeting_title: Optional[str] = None
    meeting_purpose: Optional[str] = None
    user_id: Optional[str] = None
    company_name: Optional[str] = None

    def to_submission(self) -> TranscriptSubmission:
        """
        Validate required fields and build a TranscriptSubmission.

        Raises:
            InputValidationError: If a required field is missing or blank, or
                meetingDate is not an ISO date
        """
        values = {
            "transcript": self.transcript,
            "meetingDate": self.meeting_date,
            "userId": self.user_id,
            "companyName": self.company_name,
        }
        missing = [name for name in REQUIRED_FIELDS if not (values[name] or "").strip()]
        if missing:
            raise InputValidationError(f"Missing required fields: {', '.join(missing)}")

        meeting_date = parse_iso_date(self.meeting_date)
        if meeting_date is None:
            raise InputValidationError("meetingDate must be an ISO date (YYYY-MM-DD)")

        return TranscriptSubmission(
            transcript=self.transcript,
            meeting_date=meeting_date,
            meeting_title=(self.meeting_title or "").strip() or None,
            meeting_purpose=(self.meeting_purpose or "").strip() or None,
            user_id=self.user_id.strip(),
            company_name=" ".join(self.company_name.split()),
        )


class AnalysisInsights(CamelModel):
    """Cross-meeting insights attached to the analysis."""
    recurring_issues: List[RecurringIssueSummary] = Field(default_factory=list)
    cross_customer_matches: List[SimilarPainPoint] = Field(default_factory=list)
    common_feature_requests: List[FeatureRequestTrend] = Field(default_factory=list)
    common_pain_points: List[PainPointTrend] = Field(default_factory=list)
    pain_points_stored: int = 0
    pain_points_failed: int = 0
    follow_ups_stored: int = 0


class AnalysisResults(AnalysisResult):
    """The validated analysis plus its insights, as returned to the caller."""
    insights: AnalysisInsights = Field(default_factory=AnalysisInsights)


class AnalysisResponseData(CamelModel):
    meeting_id: UUID
    company_id: UUID
    company_name: str
    analysis_results: AnalysisResults


class TranscriptAnalysisResponse(CamelModel):
    """Successful response from the transcript analysis endpoint."""
    success: bool = True
    data: AnalysisResponseData


class ErrorResponse(CamelModel):
    """Failure response from the transcript analysis endpoint."""
    success: bool = False
    error: str
