"""TrendService for recurring issues and cross-meeting trends.

Two kinds of aggregation live here:

- Folding a new pain point's company-scoped similarity matches into the
  company's recurring-issue record (occurrence list + priority).
- Scanning every meeting in a trailing window to rank feature requests and
  count how often the current main pain has come up.

Trend aggregation is best effort; read failures produce empty results.
"""
import os
import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from models.analysis_models import AnalysisResult, UNKNOWN
from models.db_models import RecurringIssueModel
from models.insight_models import (
    FeatureRequestTrend,
    HistoricalMeeting,
    PainPointTrend,
    RecurringOccurrence,
    SimilarPainPoint,
    TrendInsights,
)
from utils.date_utils import subtract_months

logger = logging.getLogger(__name__)

DEFAULT_TREND_WINDOW_MONTHS = 6
MAX_FEATURE_REQUESTS = 10


def _fold_key(text: str) -> str:
    return " ".join(text.split()).casefold()


def rank_feature_requests(
    meetings: Iterable[HistoricalMeeting],
    limit: int = MAX_FEATURE_REQUESTS
) -> List[FeatureRequestTrend]:
    """
    Count feature requests case-insensitively across meetings.

    The first spelling seen is reported. Ties are broken alphabetically.

    Args:
        meetings: Meetings to scan
        limit: Number of top requests to keep

    Returns:
        Feature requests by descending request count
    """
    counts: Dict[str, int] = {}
    labels: Dict[str, str] = {}
    companies: Dict[str, List[str]] = {}

    for meeting in meetings:
        for request in meeting.feature_requests:
            key = _fold_key(request)
            if not key:
                continue
            labels.setdefault(key, request.strip())
            counts[key] = counts.get(key, 0) + 1
            requesters = companies.setdefault(key, [])
            if meeting.company_name not in requesters:
                requesters.append(meeting.company_name)

    ranked = sorted(counts, key=lambda key: (-counts[key], key))[:limit]
    return [
        FeatureRequestTrend(feature=labels[key], request_count=counts[key], companies=companies[key])
        for key in ranked
    ]


def tally_main_pain(main_pain: str, meetings: Iterable[HistoricalMeeting]) -> List[PainPointTrend]:
    """
    Count meetings whose main pain matches the given text exactly (ignoring case).

    Returns:
        A single-entry list, flagged common when more than one meeting shares
        the pain; empty when the main pain is unknown
    """
    key = _fold_key(main_pain or "")
    if not key or key == UNKNOWN:
        return []

    frequency = sum(
        1 for meeting in meetings
        if meeting.main_pain and _fold_key(meeting.main_pain) == key
    )
    return [PainPointTrend(pain=main_pain, is_common=frequency > 1, frequency=frequency)]


def fold_recurring_issue(
    existing_issues: List[RecurringIssueModel],
    company_id: UUID,
    description: str,
    urgency: float,
    matches: List[SimilarPainPoint],
    occurrence: RecurringOccurrence
) -> RecurringIssueModel:
    """
    Merge a pain point and its similar prior pain points into a recurring issue.

    The issue to update is one whose description is the new pain point's or
    one of the matched pain points', preferring the one sharing the most
    meetings with the matches; otherwise a new issue is created.
    Occurrences are de-duplicated by meeting and the priority is recomputed
    as urgency x occurrence count.

    Args:
        existing_issues: The company's current recurring issues
        company_id: Company the issue belongs to
        description: Description of the new pain point
        urgency: Urgency score of the new pain point
        matches: Company-scoped similarity matches for the pain point
        occurrence: Occurrence for the meeting being processed

    Returns:
        The new or updated RecurringIssueModel (not yet saved)
    """
    matched_meetings = {str(match.source_meeting_id) for match in matches}
    known_descriptions = {_fold_key(description)} | {_fold_key(match.description) for match in matches}

    issue = None
    best_overlap = -1
    for candidate in existing_issues:
        if _fold_key(candidate.description) not in known_descriptions:
            continue
        overlap = len(matched_meetings & {str(o.get("meetingId")) for o in candidate.occurrences})
        if overlap > best_overlap:
            issue, best_overlap = candidate, overlap
    if issue is None:
        issue = RecurringIssueModel(company_id=company_id, description=description)

    previous_priority = issue.priority or 0
    already_counted = str(occurrence.meeting_id) in {str(o.get("meetingId")) for o in issue.occurrences}

    merged: Dict[str, RecurringOccurrence] = {}
    sightings = [RecurringOccurrence.model_validate(o) for o in issue.occurrences]
    sightings += [
        RecurringOccurrence(occurred_on=match.meeting_date, meeting_id=match.source_meeting_id)
        for match in matches
    ]
    sightings.append(occurrence)
    for sighting in sightings:
        merged.setdefault(str(sighting.meeting_id), sighting)

    ordered = sorted(merged.values(), key=lambda o: o.occurred_on)
    issue.occurrences = [o.model_dump(mode="json", by_alias=True) for o in ordered]
    issue.priority = urgency * len(ordered)
    if already_counted:
        # A second pain point from the same meeting must not lower the priority
        issue.priority = max(issue.priority, previous_priority)
    issue.updated_at = datetime.utcnow()
    return issue


class TrendService:
    """Aggregates feature-request and pain-point trends over recent meetings."""

    def __init__(self, store, max_feature_requests: int = MAX_FEATURE_REQUESTS):
        self.store = store
        self.max_feature_requests = max_feature_requests

    async def aggregate_trends(
        self,
        analysis: AnalysisResult,
        window_months: Optional[int] = None,
        as_of: Optional[date] = None
    ) -> TrendInsights:
        """
        Rank feature requests and count main-pain recurrence in the window.

        Args:
            analysis: The current meeting's analysis
            window_months: Trailing window (default: TREND_WINDOW_MONTHS or 6)
            as_of: End of the window (default: today)

        Returns:
            TrendInsights; empty when the history cannot be read
        """
        if window_months is None:
            window_months = int(os.getenv("TREND_WINDOW_MONTHS", str(DEFAULT_TREND_WINDOW_MONTHS)))
        until = as_of or date.today()
        since = subtract_months(until, window_months)

        try:
            meetings = await self.store.list_meetings_since(since, until)
        except Exception as e:
            logger.warning(
                f"Trend aggregation failed, returning empty trends: since={since}, until={until}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True
            )
            return TrendInsights()

        trends = TrendInsights(
            common_feature_requests=rank_feature_requests(meetings, self.max_feature_requests),
            common_pain_points=tally_main_pain(analysis.main_pain, meetings),
        )
        logger.info(
            f"Trend aggregation complete: since={since}, meetings={len(meetings)}, "
            f"feature_requests={len(trends.common_feature_requests)}"
        )
        return trends
