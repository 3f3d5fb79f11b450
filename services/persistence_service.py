"""Persistence Service for storing an analysed meeting and its insights.

Writes follow the foreign-key chain: company -> meeting -> pain points ->
opportunities, with follow-ups written alongside the pain points and
recurring issues updated last.

Failure policy:
- company upsert, meeting insert and follow-up inserts are fatal
  (PersistenceError); earlier writes stay committed
- a failed pain point is logged and skipped; its siblings are still stored
- opportunity, similarity and recurring-issue failures are logged only
"""
import asyncio
import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from models.analysis_models import (
    AnalysisResult,
    OpportunityCandidate,
    MIN_OPPORTUNITY_CONFIDENCE,
    UNKNOWN,
)
from models.db_models import (
    MeetingModel,
    PainPointModel,
    OpportunityModel,
    FollowUpModel,
)
from models.insight_models import (
    PersistedPainPoint,
    PersistenceResult,
    RecurringIssueSummary,
    RecurringOccurrence,
)
from models.transcript_request import TranscriptSubmission
from services.exceptions import PersistenceError
from services.trend_service import fold_recurring_issue, DEFAULT_TREND_WINDOW_MONTHS

logger = logging.getLogger(__name__)

# The main pain is always stored with the highest urgency
MAIN_PAIN_URGENCY = 10
MAIN_PAIN_CATEGORY = "main"


@dataclass
class PainPointDraft:
    """A pain point ready to be stored, with the opportunities attached to it."""
    description: str
    urgency_score: float
    category: str
    is_main_pain: bool
    opportunities: List[OpportunityCandidate] = field(default_factory=list)

    @property
    def embedding_text(self) -> str:
        # "unknown" would match every other unknown pain point
        return "" if self.description == UNKNOWN else self.description


def build_pain_point_drafts(analysis: AnalysisResult) -> List[PainPointDraft]:
    """Main pain first, then additional pain points in order, each with its opportunities."""
    drafts = [PainPointDraft(
        description=analysis.main_pain,
        urgency_score=MAIN_PAIN_URGENCY,
        category=MAIN_PAIN_CATEGORY,
        is_main_pain=True,
    )]
    drafts += [
        PainPointDraft(
            description=pain_point.description,
            urgency_score=pain_point.urgency_score,
            category=pain_point.category,
            is_main_pain=False,
        )
        for pain_point in analysis.additional_pain_points
    ]
    for opportunity in analysis.opportunities:
        index = opportunity.pain_point_index if opportunity.pain_point_index < len(drafts) else 0
        drafts[index].opportunities.append(opportunity)
    return drafts


def build_company_profile(analysis: AnalysisResult) -> dict:
    """Company columns overwritten with this meeting's extracted values."""
    usage = {name: state.value for name, state in analysis.advanced_feature_usage.items()}
    return {
        "domain": None if analysis.company_domain == UNKNOWN else analysis.company_domain,
        "ci_provider": analysis.ci_provider,
        "technologies": analysis.technologies_used,
        "nx_version": analysis.nx_version,
        "nx_cloud_usage": analysis.cloud_usage.status.value,
        "nx_cloud_usage_reason": analysis.cloud_usage.reason,
        "years_using_nx": analysis.years_using,
        "workspace_size": analysis.workspace_size,
        "nx_adoption_approach": analysis.adoption_approach.value,
        "satisfaction_nx": analysis.satisfaction.nx,
        "satisfaction_nx_cloud": analysis.satisfaction.nx_cloud,
        "agents_usage": usage.get("agents"),
        "mfe_usage": usage.get("mfe"),
        "crystal_usage": usage.get("crystal"),
        "atomizer_usage": usage.get("atomizer"),
        "advanced_feature_usage": usage,
    }


class PersistenceService:
    """Stores a validated analysis as company, meeting, pain points, opportunities and follow-ups."""

    def __init__(self, store, embedder, matcher, trend_window_months: Optional[int] = None):
        """
        Args:
            store: InsightStore (or compatible)
            embedder: EmbeddingService (or compatible)
            matcher: SimilarityService (or compatible)
            trend_window_months: Window for cross-customer matches
                (default: TREND_WINDOW_MONTHS or 6)
        """
        self.store = store
        self.embedder = embedder
        self.matcher = matcher
        if trend_window_months is None:
            trend_window_months = int(os.getenv("TREND_WINDOW_MONTHS", str(DEFAULT_TREND_WINDOW_MONTHS)))
        self.trend_window_months = trend_window_months

    async def persist(self, analysis: AnalysisResult, submission: TranscriptSubmission) -> PersistenceResult:
        """
        Store the meeting and everything derived from it.

        Args:
            analysis: Validated analysis of the transcript
            submission: Submission metadata

        Returns:
            PersistenceResult with company and meeting ids and per-entity outcomes

        Raises:
            PersistenceError: If the company, meeting or follow-ups cannot be stored
        """
        drafts = build_pain_point_drafts(analysis)

        # Embeddings do not depend on any write, so start them straight away
        embedding_task = asyncio.create_task(
            self.embedder.embed([draft.embedding_text for draft in drafts])
        )
        try:
            company_id, company_name = await self._upsert_company(analysis, submission)
            meeting_id = await self._insert_meeting(analysis, submission, company_id)
        except BaseException:
            embedding_task.cancel()
            raise

        embeddings = await embedding_task

        pain_point_results, follow_up_result = await asyncio.gather(
            self._persist_pain_points(drafts, embeddings, meeting_id, company_id, submission),
            self._persist_follow_ups(analysis, meeting_id, submission),
            return_exceptions=True
        )
        if isinstance(pain_point_results, BaseException):
            raise pain_point_results
        if isinstance(follow_up_result, BaseException):
            logger.error(
                f"Follow-up persistence failed after meeting was stored: meeting_id={meeting_id}, "
                f"error={type(follow_up_result).__name__}: {follow_up_result}",
                exc_info=follow_up_result
            )
            raise PersistenceError(
                f"Failed to store follow-ups; meeting {meeting_id} was partially saved"
            ) from follow_up_result

        stored = [result for result in pain_point_results if result is not None]
        recurring_issues = await self._update_recurring_issues(stored, company_id, meeting_id, submission)

        logger.info(
            f"Persistence complete: meeting_id={meeting_id}, company_id={company_id}, "
            f"pain_points={len(stored)}/{len(drafts)}, follow_ups={follow_up_result}, "
            f"recurring_issues={len(recurring_issues)}"
        )

        return PersistenceResult(
            meeting_id=meeting_id,
            company_id=company_id,
            company_name=company_name,
            pain_points=stored,
            pain_points_failed=len(drafts) - len(stored),
            follow_ups_stored=follow_up_result,
            recurring_issues=recurring_issues,
        )

    async def _upsert_company(self, analysis: AnalysisResult, submission: TranscriptSubmission):
        try:
            return await self.store.upsert_company(submission.company_name, build_company_profile(analysis))
        except Exception as e:
            logger.error(
                f"Company upsert failed: company_name={submission.company_name}, error={e}",
                exc_info=True
            )
            raise PersistenceError("Failed to create or update company") from e

    async def _insert_meeting(
        self,
        analysis: AnalysisResult,
        submission: TranscriptSubmission,
        company_id: UUID
    ) -> UUID:
        meeting = MeetingModel(
            company_id=company_id,
            meeting_date=submission.meeting_date,
            title=submission.meeting_title or f"Meeting with {submission.company_name}",
            purpose=submission.meeting_purpose,
            participants=analysis.participants,
            transcript_raw=submission.transcript,
            transcript_processed=analysis.meeting_summary(),
            created_by=submission.user_id,
        )
        try:
            meeting_id = await self.store.insert_meeting(meeting)
        except Exception as e:
            logger.error(f"Meeting insert failed: company_id={company_id}, error={e}", exc_info=True)
            raise PersistenceError("Failed to create meeting") from e

        logger.info(f"Meeting stored: meeting_id={meeting_id}, company_id={company_id}")
        return meeting_id

    async def _persist_pain_points(
        self,
        drafts: List[PainPointDraft],
        embeddings: List[Optional[List[float]]],
        meeting_id: UUID,
        company_id: UUID,
        submission: TranscriptSubmission
    ) -> List[Optional[PersistedPainPoint]]:
        return await asyncio.gather(*(
            self._persist_pain_point(draft, embedding, meeting_id, company_id, submission)
            for draft, embedding in zip(drafts, embeddings)
        ))

    async def _persist_pain_point(
        self,
        draft: PainPointDraft,
        embedding: Optional[List[float]],
        meeting_id: UUID,
        company_id: UUID,
        submission: TranscriptSubmission
    ) -> Optional[PersistedPainPoint]:
        """Match, store and attach opportunities to one pain point. Returns None on failure."""
        try:
            company_matches, global_matches = await asyncio.gather(
                self.matcher.find_similar(
                    embedding,
                    company_id=company_id,
                    exclude_meeting_id=meeting_id,
                ),
                self.matcher.find_similar(
                    embedding,
                    window_months=self.trend_window_months,
                    exclude_meeting_id=meeting_id,
                    as_of=submission.meeting_date,
                ),
            )

            pain_point_id = await self.store.insert_pain_point(PainPointModel(
                meeting_id=meeting_id,
                description=draft.description,
                urgency_score=draft.urgency_score,
                category=draft.category,
                is_main_pain=draft.is_main_pain,
                embedding=embedding,
            ))
        except Exception as e:
            logger.error(
                f"Pain point insert failed, skipping: meeting_id={meeting_id}, "
                f"is_main_pain={draft.is_main_pain}, error={type(e).__name__}: {e}",
                exc_info=True
            )
            return None

        opportunities_stored = await self._persist_opportunities(draft, pain_point_id, meeting_id)

        return PersistedPainPoint(
            pain_point_id=pain_point_id,
            description=draft.description,
            urgency_score=draft.urgency_score,
            is_main_pain=draft.is_main_pain,
            has_embedding=embedding is not None,
            opportunities_stored=opportunities_stored,
            company_matches=company_matches,
            global_matches=global_matches,
        )

    async def _persist_opportunities(self, draft: PainPointDraft, pain_point_id: UUID, meeting_id: UUID) -> int:
        qualifying = [
            OpportunityModel(
                meeting_id=meeting_id,
                pain_point_id=pain_point_id,
                nx_feature=opportunity.feature,
                confidence_score=opportunity.confidence_score,
                suggested_approach=opportunity.suggested_approach,
            )
            for opportunity in draft.opportunities
            if opportunity.confidence_score >= MIN_OPPORTUNITY_CONFIDENCE
        ]
        if not qualifying:
            return 0

        try:
            await self.store.insert_opportunities(qualifying)
        except Exception as e:
            logger.error(
                f"Opportunity insert failed: pain_point_id={pain_point_id}, "
                f"count={len(qualifying)}, error={e}",
                exc_info=True
            )
            return 0
        return len(qualifying)

    async def _persist_follow_ups(
        self,
        analysis: AnalysisResult,
        meeting_id: UUID,
        submission: TranscriptSubmission
    ) -> int:
        follow_ups = [
            FollowUpModel(
                meeting_id=meeting_id,
                description=item.description,
                deadline=item.deadline,
                assigned_to=item.assignee or submission.user_id,
            )
            for item in analysis.follow_ups
        ]
        if follow_ups:
            await self.store.insert_follow_ups(follow_ups)
        return len(follow_ups)

    async def _update_recurring_issues(
        self,
        pain_points: List[PersistedPainPoint],
        company_id: UUID,
        meeting_id: UUID,
        submission: TranscriptSubmission
    ) -> List[RecurringIssueSummary]:
        """Fold company-scoped matches into recurring issues, one pain point at a time."""
        summaries = []
        occurrence = RecurringOccurrence(occurred_on=submission.meeting_date, meeting_id=meeting_id)

        for pain_point in pain_points:
            if not pain_point.company_matches:
                continue
            try:
                existing = await self.store.list_recurring_issues(company_id)
                issue = fold_recurring_issue(
                    existing,
                    company_id=company_id,
                    description=pain_point.description,
                    urgency=pain_point.urgency_score,
                    matches=pain_point.company_matches,
                    occurrence=occurrence,
                )
                await self.store.save_recurring_issue(issue)
            except Exception as e:
                logger.error(
                    f"Recurring issue update failed: company_id={company_id}, "
                    f"pain_point_id={pain_point.pain_point_id}, error={e}",
                    exc_info=True
                )
                continue

            summaries.append(RecurringIssueSummary(
                description=issue.description,
                occurrence_count=len(issue.occurrences),
                priority=issue.priority,
            ))

        return summaries
