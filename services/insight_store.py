"""InsightStore: the relational-store operations the analysis pipeline relies on.

Every method opens its own session and commits on its own, so concurrent
pain-point inserts never share a session and one failed insert does not roll
back its siblings.
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlmodel import select

from models.db_models import (
    CompanyModel,
    MeetingModel,
    PainPointModel,
    OpportunityModel,
    FollowUpModel,
    RecurringIssueModel,
    normalize_company_name,
)
from models.insight_models import PainPointCandidate, HistoricalMeeting
from services.database import get_async_session

logger = logging.getLogger(__name__)


class InsightStore:
    """Postgres-backed store for companies, meetings and their insights."""

    def __init__(self, session_factory: Callable = get_async_session):
        """
        Args:
            session_factory: Async context manager factory yielding sessions
        """
        self.session_factory = session_factory

    async def upsert_company(self, name: str, profile: Dict[str, Any]) -> Tuple[UUID, str]:
        """Create or update a company by its normalized name.

        A single INSERT ... ON CONFLICT statement backed by the unique
        normalized_name constraint, so concurrent submissions for the same new
        company resolve to one row. Profile columns are overwritten.

        Args:
            name: Company name as submitted
            profile: Column values extracted from the latest meeting

        Returns:
            Tuple of (company id, stored company name)
        """
        table = CompanyModel.__table__
        now = datetime.utcnow()
        values = {
            "id": uuid4(),
            "name": " ".join(name.split()),
            "normalized_name": normalize_company_name(name),
            "created_at": now,
            "updated_at": now,
            **profile,
        }

        statement = pg_insert(table).values(**values)
        overwrite = {
            key: statement.excluded[key]
            for key in values
            if key not in ("id", "normalized_name", "created_at")
        }
        statement = statement.on_conflict_do_update(
            index_elements=[table.c.normalized_name],
            set_=overwrite,
        ).returning(table.c.id, table.c.name)

        async with self.session_factory() as session:
            result = await session.execute(statement)
            company_id, stored_name = result.one()
            await session.commit()

        logger.info(f"Company upserted: company_id={company_id}, name={stored_name}")
        return company_id, stored_name

    async def insert_meeting(self, meeting: MeetingModel) -> UUID:
        async with self.session_factory() as session:
            session.add(meeting)
            await session.commit()
        return meeting.id

    async def insert_pain_point(self, pain_point: PainPointModel) -> UUID:
        async with self.session_factory() as session:
            session.add(pain_point)
            await session.commit()
        return pain_point.id

    async def insert_opportunities(self, opportunities: List[OpportunityModel]) -> None:
        async with self.session_factory() as session:
            session.add_all(opportunities)
            await session.commit()

    async def insert_follow_ups(self, follow_ups: List[FollowUpModel]) -> None:
        """Insert all follow-ups of a meeting in one transaction."""
        async with self.session_factory() as session:
            session.add_all(follow_ups)
            await session.commit()

    async def find_pain_point_candidates(
        self,
        embedding: List[float],
        limit: int,
        company_id: Optional[UUID] = None,
        since: Optional[date] = None,
        exclude_meeting_id: Optional[UUID] = None,
        until: Optional[date] = None
    ) -> List[PainPointCandidate]:
        """Nearest stored pain points by pgvector cosine distance.

        Args:
            embedding: Query vector
            limit: Maximum candidates to return
            company_id: Restrict to one company's meetings
            since: Restrict to meetings on or after this date
            exclude_meeting_id: Leave out pain points of this meeting
            until: Restrict to meetings on or before this date

        Returns:
            Candidates ordered from nearest to farthest, with their embeddings
        """
        query = (
            select(PainPointModel, MeetingModel.meeting_date, CompanyModel.id, CompanyModel.name)
            .join(MeetingModel, MeetingModel.id == PainPointModel.meeting_id)
            .join(CompanyModel, CompanyModel.id == MeetingModel.company_id)
            .where(PainPointModel.embedding.is_not(None))
        )
        if company_id is not None:
            query = query.where(MeetingModel.company_id == company_id)
        if since is not None:
            query = query.where(MeetingModel.meeting_date >= since)
        if until is not None:
            query = query.where(MeetingModel.meeting_date <= until)
        if exclude_meeting_id is not None:
            query = query.where(PainPointModel.meeting_id != exclude_meeting_id)
        query = query.order_by(PainPointModel.embedding.cosine_distance(embedding)).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = result.all()

        return [
            PainPointCandidate(
                pain_point_id=pain_point.id,
                description=pain_point.description,
                meeting_id=pain_point.meeting_id,
                meeting_date=meeting_date,
                company_id=candidate_company_id,
                company_name=company_name,
                embedding=list(pain_point.embedding) if pain_point.embedding is not None else None,
            )
            for pain_point, meeting_date, candidate_company_id, company_name in rows
        ]

    async def list_recurring_issues(self, company_id: UUID) -> List[RecurringIssueModel]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RecurringIssueModel).where(RecurringIssueModel.company_id == company_id)
            )
            return list(result.scalars().all())

    async def save_recurring_issue(self, issue: RecurringIssueModel) -> None:
        """Insert or update a recurring issue by primary key."""
        async with self.session_factory() as session:
            await session.merge(issue)
            await session.commit()

    async def list_meetings_since(self, since: date, until: Optional[date] = None) -> List[HistoricalMeeting]:
        """Meetings dated from `since` through `until`, with their company names."""
        query = (
            select(MeetingModel, CompanyModel.name)
            .join(CompanyModel, CompanyModel.id == MeetingModel.company_id)
            .where(MeetingModel.meeting_date >= since)
        )
        if until is not None:
            query = query.where(MeetingModel.meeting_date <= until)
        async with self.session_factory() as session:
            result = await session.execute(query)
            rows = result.all()

        return [
            HistoricalMeeting(
                meeting_id=meeting.id,
                meeting_date=meeting.meeting_date,
                company_name=company_name,
                main_pain=(meeting.transcript_processed or {}).get("mainPain"),
                feature_requests=_feature_requests_of(meeting.transcript_processed or {}),
            )
            for meeting, company_name in rows
        ]


def _feature_requests_of(summary: Dict[str, Any]) -> List[str]:
    """Flatten the feature requests stored in a meeting summary."""
    requests = summary.get("featureRequests") or {}
    if isinstance(requests, list):
        return [r for r in requests if isinstance(r, str)]
    if not isinstance(requests, dict):
        return []
    flattened = []
    for values in requests.values():
        if isinstance(values, list):
            flattened.extend(v for v in values if isinstance(v, str))
    return flattened
