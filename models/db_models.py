"""SQLModel table definitions mirroring the existing Postgres schema.

These models use the Mirror Pattern - they exactly match existing Postgres tables
without running migrations. Pain point embeddings live in a pgvector column.
"""
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Text, Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from pgvector.sqlalchemy import Vector
from typing import Dict, List, Optional
from datetime import date, datetime
from uuid import UUID, uuid4
import enum


# Dimensions of text-embedding-3-small vectors
EMBEDDING_DIMENSIONS = 1536


# --- Enums matching the Postgres schema ---

class FollowUpStatusEnum(str, enum.Enum):
    """Lifecycle of a follow-up commitment."""
    pending = "pending"
    completed = "completed"


class IssueStatusEnum(str, enum.Enum):
    """Lifecycle of pain points and recurring issues."""
    open = "open"
    resolved = "resolved"


def normalize_company_name(name: str) -> str:
    """Case- and whitespace-folded natural key for companies."""
    return " ".join(name.split()).casefold()


# --- Table Models ---

class CompanyModel(SQLModel, table=True):
    """Mirror of companies table.

    Profile columns hold the values extracted from the company's most
    recent meeting (last write wins).
    """
    __tablename__ = "companies"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(sa_column=Column(Text, nullable=False))
    normalized_name: str = Field(sa_column=Column(Text, nullable=False, unique=True))
    domain: Optional[str] = Field(default=None, sa_column=Column(Text))
    ci_provider: Optional[str] = Field(default=None, sa_column=Column(Text))
    technologies: List[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    nx_version: Optional[str] = Field(default=None)
    nx_cloud_usage: Optional[str] = Field(default=None)
    nx_cloud_usage_reason: Optional[str] = Field(default=None, sa_column=Column(Text))
    years_using_nx: Optional[str] = Field(default=None)
    workspace_size: Optional[str] = Field(default=None)
    nx_adoption_approach: Optional[str] = Field(default=None)
    satisfaction_nx: float = Field(default=5)
    satisfaction_nx_cloud: float = Field(default=5)
    agents_usage: Optional[str] = Field(default=None)
    mfe_usage: Optional[str] = Field(default=None)
    crystal_usage: Optional[str] = Field(default=None)
    atomizer_usage: Optional[str] = Field(default=None)
    advanced_feature_usage: Dict[str, str] = Field(
        default_factory=dict, sa_column=Column(JSONB, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"name": "created_at"}
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"name": "updated_at"}
    )


class MeetingModel(SQLModel, table=True):
    """Mirror of meetings table. Written once per submission, never updated."""
    __tablename__ = "meetings"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    company_id: UUID = Field(foreign_key="companies.id")
    meeting_date: date = Field(sa_column_kwargs={"name": "date"})
    title: str = Field(sa_column=Column(Text, nullable=False))
    purpose: Optional[str] = Field(default=None, sa_column=Column(Text))
    participants: List[str] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    transcript_raw: str = Field(sa_column=Column(Text, nullable=False))
    transcript_processed: Dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False))
    created_by: str = Field(sa_column_kwargs={"name": "created_by"})
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"name": "created_at"}
    )


class PainPointModel(SQLModel, table=True):
    """Mirror of pain_points table.

    Exactly one row per meeting has is_main_pain set. The embedding is null
    when it could not be generated.
    """
    __tablename__ = "pain_points"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    meeting_id: UUID = Field(foreign_key="meetings.id")
    description: str = Field(sa_column=Column(Text, nullable=False))
    urgency_score: float = Field(default=5)
    category: str = Field(default="unknown")
    is_main_pain: bool = Field(default=False, sa_column_kwargs={"name": "is_main_pain"})
    status: IssueStatusEnum = Field(
        default=IssueStatusEnum.open,
        sa_column=Column(SAEnum(IssueStatusEnum, name="IssueStatus"))
    )
    embedding: Optional[List[float]] = Field(
        default=None,
        sa_column=Column(Vector(EMBEDDING_DIMENSIONS), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"name": "created_at"}
    )


class OpportunityModel(SQLModel, table=True):
    """Mirror of nx_opportunities table."""
    __tablename__ = "nx_opportunities"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    meeting_id: UUID = Field(foreign_key="meetings.id")
    pain_point_id: UUID = Field(foreign_key="pain_points.id")
    nx_feature: str = Field(sa_column=Column(Text, nullable=False))
    confidence_score: float
    suggested_approach: Optional[str] = Field(default=None, sa_column=Column(Text))


class FollowUpModel(SQLModel, table=True):
    """Mirror of follow_ups table."""
    __tablename__ = "follow_ups"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    meeting_id: UUID = Field(foreign_key="meetings.id")
    description: str = Field(sa_column=Column(Text, nullable=False))
    deadline: date
    assigned_to: str = Field(sa_column_kwargs={"name": "assigned_to"})
    status: FollowUpStatusEnum = Field(
        default=FollowUpStatusEnum.pending,
        sa_column=Column(SAEnum(FollowUpStatusEnum, name="FollowUpStatus"))
    )


class RecurringIssueModel(SQLModel, table=True):
    """Mirror of recurring_issues table.

    occurrences is a JSON list of {"date", "meetingId"} objects that grows as
    new similar pain points are found; priority is urgency x occurrence count.
    """
    __tablename__ = "recurring_issues"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    company_id: UUID = Field(foreign_key="companies.id")
    description: str = Field(sa_column=Column(Text, nullable=False))
    occurrences: List[Dict] = Field(default_factory=list, sa_column=Column(JSONB, nullable=False))
    status: IssueStatusEnum = Field(
        default=IssueStatusEnum.open,
        sa_column=Column(SAEnum(IssueStatusEnum, name="IssueStatus"))
    )
    priority: float = Field(default=0)
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column_kwargs={"name": "updated_at"}
    )
