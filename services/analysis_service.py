"""
TranscriptAnalysisService: the end-to-end transcript analysis pipeline.

extract -> validate -> persist -> aggregate trends -> assemble response.

Extraction and validation errors abort before anything is written.
Trend aggregation runs after persistence so the current meeting is counted.
"""
import logging
import time
from typing import List, Optional

from models.insight_models import PersistenceResult, SimilarPainPoint
from models.transcript_request import (
    AnalysisInsights,
    AnalysisResponseData,
    AnalysisResults,
    TranscriptSubmission,
)

logger = logging.getLogger(__name__)


def collect_cross_customer_matches(result: PersistenceResult) -> List[SimilarPainPoint]:
    """Global matches from other companies, best per source meeting, most similar first."""
    best = {}
    for pain_point in result.pain_points:
        for match in pain_point.global_matches:
            if match.company_id == result.company_id:
                continue
            key = (match.source_meeting_id, match.description)
            if key not in best or match.similarity > best[key].similarity:
                best[key] = match
    return sorted(best.values(), key=lambda match: match.similarity, reverse=True)


class TranscriptAnalysisService:
    """Runs one transcript through extraction, validation, persistence and trends."""

    def __init__(
        self,
        extractor,
        validator,
        persistence,
        trends,
        trend_window_months: Optional[int] = None
    ):
        """
        Args:
            extractor: ExtractionService (or compatible)
            validator: SchemaValidator (or compatible)
            persistence: PersistenceService (or compatible)
            trends: TrendService (or compatible)
            trend_window_months: Trend window; None uses the TrendService default
        """
        self.extractor = extractor
        self.validator = validator
        self.persistence = persistence
        self.trends = trends
        self.trend_window_months = trend_window_months

    async def analyze(self, submission: TranscriptSubmission) -> AnalysisResponseData:
        """
        Analyse a transcript and store the results.

        Args:
            submission: Validated submission

        Returns:
            AnalysisResponseData with ids, the validated analysis and insights

        Raises:
            ExtractionUnavailableError: If the language model cannot be reached
            UnrepairableOutputError: If the model output cannot be parsed
            PersistenceError: If the company, meeting or follow-ups cannot be stored
        """
        started = time.monotonic()
        logger.info(
            f"Transcript analysis started: company_name={submission.company_name}, "
            f"meeting_date={submission.meeting_date}, user_id={submission.user_id}, "
            f"transcript_length={len(submission.transcript)}"
        )

        raw_output = await self.extractor.extract(submission.transcript, submission.meeting_purpose)
        analysis = self.validator.validate(raw_output, submitted_on=submission.meeting_date)

        persisted = await self.persistence.persist(analysis, submission)

        trends = await self.trends.aggregate_trends(
            analysis,
            window_months=self.trend_window_months,
            as_of=submission.meeting_date
        )

        insights = AnalysisInsights(
            recurring_issues=persisted.recurring_issues,
            cross_customer_matches=collect_cross_customer_matches(persisted),
            common_feature_requests=trends.common_feature_requests,
            common_pain_points=trends.common_pain_points,
            pain_points_stored=len(persisted.pain_points),
            pain_points_failed=persisted.pain_points_failed,
            follow_ups_stored=persisted.follow_ups_stored,
        )

        logger.info(
            f"Transcript analysis complete: meeting_id={persisted.meeting_id}, "
            f"company_id={persisted.company_id}, "
            f"recurring_issues={len(insights.recurring_issues)}, "
            f"cross_customer_matches={len(insights.cross_customer_matches)}, "
            f"elapsed={time.monotonic() - started:.2f}s"
        )

        return AnalysisResponseData(
            meeting_id=persisted.meeting_id,
            company_id=persisted.company_id,
            company_name=persisted.company_name,
            analysis_results=AnalysisResults(
                **analysis.model_dump(),
                insights=insights,
            ),
        )
