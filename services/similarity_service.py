"""SimilarityService for matching new pain points against stored ones.

The store returns nearest neighbours by pgvector cosine distance; each
candidate is then rescored exactly and kept only if it clears the threshold.
Similarity search is advisory: any failure yields an empty result.
"""
import os
import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from models.insight_models import SimilarPainPoint
from utils.date_utils import subtract_months
from utils.vector_utils import cosine_similarity

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.85

# Candidates fetched per requested result before exact rescoring
CANDIDATE_POOL_FACTOR = 4


class SimilarityService:
    """Finds prior pain points similar to a new one, per company or globally."""

    def __init__(self, store, threshold: Optional[float] = None, max_results: int = 5):
        """
        Args:
            store: InsightStore (or compatible) providing find_pain_point_candidates
            threshold: Minimum cosine similarity (default: SIMILARITY_THRESHOLD or 0.85)
            max_results: Default cap on returned matches
        """
        self.store = store
        if threshold is None:
            threshold = float(os.getenv("SIMILARITY_THRESHOLD", str(DEFAULT_SIMILARITY_THRESHOLD)))
        self.threshold = threshold
        self.max_results = max_results

    def is_match(self, similarity: float, threshold: Optional[float] = None) -> bool:
        return similarity >= (self.threshold if threshold is None else threshold)

    async def find_similar(
        self,
        embedding: Optional[List[float]],
        company_id: Optional[UUID] = None,
        window_months: Optional[int] = None,
        threshold: Optional[float] = None,
        max_results: Optional[int] = None,
        exclude_meeting_id: Optional[UUID] = None,
        as_of: Optional[date] = None
    ) -> List[SimilarPainPoint]:
        """
        Find stored pain points similar to an embedding.

        Scope is one company when company_id is given, otherwise global. A
        window_months value limits the search to meetings in the months up to
        and including as_of.

        Args:
            embedding: Query vector; None returns no matches
            company_id: Company scope for recurring-issue detection
            window_months: Trailing window for cross-customer search
            threshold: Override of the configured threshold
            max_results: Override of the configured result cap
            exclude_meeting_id: Meeting whose own pain points are ignored
            as_of: End of the trailing window (default: today)

        Returns:
            Matches at or above the threshold, most similar first. Empty on
            any backend error.
        """
        if embedding is None:
            return []

        limit = max_results or self.max_results
        since = until = None
        if window_months:
            until = as_of or date.today()
            since = subtract_months(until, window_months)
        scope = f"company:{company_id}" if company_id else "global"

        try:
            candidates = await self.store.find_pain_point_candidates(
                embedding,
                limit=limit * CANDIDATE_POOL_FACTOR,
                company_id=company_id,
                since=since,
                until=until,
                exclude_meeting_id=exclude_meeting_id,
            )
        except Exception as e:
            logger.warning(
                f"Similarity search failed, continuing without matches: "
                f"scope={scope}, error={type(e).__name__}: {e}",
                exc_info=True
            )
            return []

        matches = []
        for candidate in candidates:
            similarity = cosine_similarity(embedding, candidate.embedding)
            if not self.is_match(similarity, threshold):
                continue
            matches.append(SimilarPainPoint(
                description=candidate.description,
                source_meeting_id=candidate.meeting_id,
                meeting_date=candidate.meeting_date,
                company_id=candidate.company_id,
                company_name=candidate.company_name,
                similarity=similarity,
            ))

        matches.sort(key=lambda match: match.similarity, reverse=True)
        logger.debug(
            f"Similarity search complete: scope={scope}, candidates={len(candidates)}, "
            f"matches={len(matches)}"
        )
        return matches[:limit]
