"""Pydantic models for the validated transcript analysis.

These models are the fixed internal schema that raw language-model output is
coerced into. Every list field defaults to an empty list and every enum field
falls back to "unknown", so consumers never have to null-check.

Field names are snake_case in Python and camelCase on the wire.
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from datetime import date
from enum import Enum


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting either casing."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CloudUsageStatusEnum(str, Enum):
    """Whether the customer uses the hosted cloud offering."""
    yes = "yes"
    no = "no"
    considering = "considering"
    unknown = "unknown"


class AdoptionApproachEnum(str, Enum):
    """How the workspace was adopted."""
    greenfield = "greenfield"
    retrofit = "retrofit"
    unknown = "unknown"


class FeatureUsageEnum(str, Enum):
    """Usage state of an advanced feature."""
    yes = "yes"
    no = "no"
    unknown = "unknown"


# Advanced features always reported, even when the model omits them
ADVANCED_FEATURES = ("agents", "mfe", "crystal", "atomizer")

# Satisfaction score assumed when the transcript does not state one
DEFAULT_SATISFACTION = 5

# Opportunities below this confidence are not persisted
MIN_OPPORTUNITY_CONFIDENCE = 0.5

UNKNOWN = "unknown"


class CloudUsage(CamelModel):
    """Cloud usage status and the stated reason, if any."""
    status: CloudUsageStatusEnum = Field(
        default=CloudUsageStatusEnum.unknown,
        description="yes, no, considering or unknown"
    )
    reason: Optional[str] = Field(
        default=None,
        description="Reason given for the cloud usage decision"
    )


class Satisfaction(CamelModel):
    """Satisfaction scores on a 0-10 scale."""
    nx: float = Field(default=DEFAULT_SATISFACTION, ge=0, le=10)
    nx_cloud: float = Field(default=DEFAULT_SATISFACTION, ge=0, le=10)


class FeatureRequests(CamelModel):
    """Feature requests split by product."""
    nx: List[str] = Field(default_factory=list)
    nx_cloud: List[str] = Field(default_factory=list)

    def all(self) -> List[str]:
        """Every requested feature across both products, in order."""
        return [*self.nx, *self.nx_cloud]


class FollowUpItem(CamelModel):
    """A follow-up commitment with a resolved deadline."""
    description: str = Field(
        description="What was promised"
    )
    deadline: date = Field(
        description="Concrete deadline; relative tokens are resolved before storage"
    )
    assignee: Optional[str] = Field(
        default=None,
        description="Who owns the follow-up; the submitting user when unset"
    )


class AdditionalPainPoint(CamelModel):
    """A secondary pain point raised during the meeting."""
    description: str
    urgency_score: float = Field(default=5, ge=0, le=10)
    category: str = Field(default=UNKNOWN)


class OpportunityCandidate(CamelModel):
    """A product opportunity tied to one of the meeting's pain points.

    pain_point_index 0 is the main pain; 1..n index additional_pain_points.
    """
    feature: str
    confidence_score: float = Field(default=0.0, ge=0, le=1)
    suggested_approach: str = Field(default=UNKNOWN)
    pain_point_index: int = Field(default=0, ge=0)


class AnalysisResult(CamelModel):
    """Validated, always-complete analysis of one meeting transcript."""
    main_pain: str = UNKNOWN
    why_now: str = UNKNOWN
    call_objective: str = UNKNOWN
    company_domain: str = UNKNOWN
    ci_provider: str = UNKNOWN
    problematic_tasks: List[str] = Field(default_factory=list)
    technologies_used: List[str] = Field(default_factory=list)
    nx_version: str = UNKNOWN
    cloud_usage: CloudUsage = Field(default_factory=CloudUsage)
    years_using: str = UNKNOWN
    workspace_size: str = UNKNOWN
    adoption_approach: AdoptionApproachEnum = AdoptionApproachEnum.unknown
    satisfaction: Satisfaction = Field(default_factory=Satisfaction)
    feature_requests: FeatureRequests = Field(default_factory=FeatureRequests)
    current_benefits: List[str] = Field(default_factory=list)
    favorite_features: List[str] = Field(default_factory=list)
    advanced_feature_usage: Dict[str, FeatureUsageEnum] = Field(
        default_factory=lambda: {name: FeatureUsageEnum.unknown for name in ADVANCED_FEATURES}
    )
    participants: List[str] = Field(default_factory=list)
    follow_ups: List[FollowUpItem] = Field(default_factory=list)
    additional_pain_points: List[AdditionalPainPoint] = Field(default_factory=list)
    opportunities: List[OpportunityCandidate] = Field(default_factory=list)
    executive_summary: str = UNKNOWN

    def meeting_summary(self) -> dict:
        """Structured summary subset stored on the meeting row."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            include={
                "main_pain",
                "why_now",
                "call_objective",
                "problematic_tasks",
                "current_benefits",
                "favorite_features",
                "feature_requests",
                "executive_summary",
            },
        )
