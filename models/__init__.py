"""Data models for the transcript analysis service."""
from .analysis_models import (
    AnalysisResult,
    CloudUsage,
    Satisfaction,
    FeatureRequests,
    FollowUpItem,
    AdditionalPainPoint,
    OpportunityCandidate,
    CloudUsageStatusEnum,
    AdoptionApproachEnum,
    FeatureUsageEnum,
)
from .db_models import (
    CompanyModel,
    MeetingModel,
    PainPointModel,
    OpportunityModel,
    FollowUpModel,
    RecurringIssueModel,
    FollowUpStatusEnum,
    IssueStatusEnum,
)

__all__ = [
    # Analysis models
    "AnalysisResult",
    "CloudUsage",
    "Satisfaction",
    "FeatureRequests",
    "FollowUpItem",
    "AdditionalPainPoint",
    "OpportunityCandidate",
    "CloudUsageStatusEnum",
    "AdoptionApproachEnum",
    "FeatureUsageEnum",
    # Database models
    "CompanyModel",
    "MeetingModel",
    "PainPointModel",
    "OpportunityModel",
    "FollowUpModel",
    "RecurringIssueModel",
    "FollowUpStatusEnum",
    "IssueStatusEnum",
]
