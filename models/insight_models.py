"""Models for cross-meeting insights: similarity matches, recurring issues and trends."""
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from models.analysis_models import CamelModel


@dataclass
class PainPointCandidate:
    """A stored pain point returned by the store's nearest-neighbour query."""
    pain_point_id: UUID
    description: str
    meeting_id: UUID
    meeting_date: date
    company_id: UUID
    company_name: str
    embedding: Optional[List[float]]


@dataclass
class HistoricalMeeting:
    """The slice of a stored meeting needed for trend aggregation."""
    meeting_id: UUID
    meeting_date: date
    company_name: str
    main_pain: Optional[str]
    feature_requests: List[str] = field(default_factory=list)


class SimilarPainPoint(CamelModel):
    """A prior pain point judged similar to a new one."""
    description: str
    source_meeting_id: UUID
    meeting_date: date
    company_id: UUID
    company_name: Optional[str] = None
    similarity: float = Field(ge=-1, le=1)


class RecurringOccurrence(CamelModel):
    """One sighting of a recurring issue, stored as {"date", "meetingId"}."""
    occurred_on: date = Field(alias="date")
    meeting_id: UUID


class RecurringIssueSummary(CamelModel):
    """Recurring issue state after the current meeting was folded in."""
    description: str
    occurrence_count: int
    priority: float


class FeatureRequestTrend(CamelModel):
    """How often a feature was requested inside the trend window."""
    feature: str
    request_count: int
    companies: List[str] = Field(default_factory=list)


class PainPointTrend(CamelModel):
    """How many meetings in the window share the current main pain."""
    pain: str
    is_common: bool
    frequency: int


class TrendInsights(CamelModel):
    """Result of the trend aggregation."""
    common_feature_requests: List[FeatureRequestTrend] = Field(default_factory=list)
    common_pain_points: List[PainPointTrend] = Field(default_factory=list)


class PersistedPainPoint(CamelModel):
    """A pain point that was stored, with its similarity matches."""
    pain_point_id: UUID
    description: str
    urgency_score: float
    is_main_pain: bool
    has_embedding: bool
    opportunities_stored: int = 0
    company_matches: List[SimilarPainPoint] = Field(default_factory=list)
    global_matches: List[SimilarPainPoint] = Field(default_factory=list)


class PersistenceResult(CamelModel):
    """Identifiers and per-entity outcomes of persisting one analysis."""
    meeting_id: UUID
    company_id: UUID
    company_name: str
    pain_points: List[PersistedPainPoint] = Field(default_factory=list)
    pain_points_failed: int = 0
    follow_ups_stored: int = 0
    recurring_issues: List[RecurringIssueSummary] = Field(default_factory=list)
