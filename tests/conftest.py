"""
Shared fixtures: required environment, an in-memory InsightStore and a
deterministic embedder.
"""

import hashlib
import os
import re
from datetime import datetime

import pytest

os.environ.setdefault("DATABASE_URL", "postgresql://tester@localhost:5432/insights_test")
os.environ.setdefault("DATABASE_PASSWORD", "test-password")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")

from models.db_models import CompanyModel, normalize_company_name  # noqa: E402
from models.insight_models import HistoricalMeeting, PainPointCandidate  # noqa: E402
from services.insight_store import _feature_requests_of  # noqa: E402
from utils.vector_utils import cosine_similarity, normalize  # noqa: E402

EMBEDDING_SIZE = 64


class FakeInsightStore:
    """In-memory stand-in for InsightStore with the same async interface."""

    def __init__(self):
        self.companies = {}
        self.meetings = {}
        self.pain_points = {}
        self.opportunities = []
        self.follow_ups = []
        self.recurring_issues = {}

    async def upsert_company(self, name, profile):
        key = normalize_company_name(name)
        company = next((c for c in self.companies.values() if c.normalized_name == key), None)
        if company is None:
            company = CompanyModel(name=" ".join(name.split()), normalized_name=key)
            self.companies[company.id] = company
        company.name = " ".join(name.split())
        for column, value in profile.items():
            setattr(company, column, value)
        company.updated_at = datetime.utcnow()
        return company.id, company.name

    async def insert_meeting(self, meeting):
        self.meetings[meeting.id] = meeting
        return meeting.id

    async def insert_pain_point(self, pain_point):
        self.pain_points[pain_point.id] = pain_point
        return pain_point.id

    async def insert_opportunities(self, opportunities):
        self.opportunities.extend(opportunities)

    async def insert_follow_ups(self, follow_ups):
        self.follow_ups.extend(follow_ups)

    async def find_pain_point_candidates(
        self, embedding, limit, company_id=None, since=None, exclude_meeting_id=None, until=None
    ):
        candidates = []
        for pain_point in self.pain_points.values():
            if pain_point.embedding is None or pain_point.meeting_id == exclude_meeting_id:
                continue
            meeting = self.meetings[pain_point.meeting_id]
            if company_id is not None and meeting.company_id != company_id:
                continue
            if since is not None and meeting.meeting_date < since:
                continue
            if until is not None and meeting.meeting_date > until:
                continue
            candidates.append(PainPointCandidate(
                pain_point_id=pain_point.id,
                description=pain_point.description,
                meeting_id=meeting.id,
                meeting_date=meeting.meeting_date,
                company_id=meeting.company_id,
                company_name=self.companies[meeting.company_id].name,
                embedding=pain_point.embedding,
            ))
        candidates.sort(key=lambda c: cosine_similarity(embedding, c.embedding), reverse=True)
        return candidates[:limit]

    async def list_recurring_issues(self, company_id):
        return [issue for issue in self.recurring_issues.values() if issue.company_id == company_id]

    async def save_recurring_issue(self, issue):
        self.recurring_issues[issue.id] = issue

    async def list_meetings_since(self, since, until=None):
        return [
            HistoricalMeeting(
                meeting_id=meeting.id,
                meeting_date=meeting.meeting_date,
                company_name=self.companies[meeting.company_id].name,
                main_pain=meeting.transcript_processed.get("mainPain"),
                feature_requests=_feature_requests_of(meeting.transcript_processed),
            )
            for meeting in self.meetings.values()
            if meeting.meeting_date >= since and (until is None or meeting.meeting_date <= until)
        ]


def bag_of_words_embedding(text):
    """Hash each word into a fixed-size vector; identical texts embed identically."""
    vector = [0.0] * EMBEDDING_SIZE
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        bucket = int(hashlib.sha256(word.encode()).hexdigest(), 16) % EMBEDDING_SIZE
        vector[bucket] += 1.0
    if not any(vector):
        return None
    return normalize(vector)


class FakeEmbedder:
    """Deterministic embedder with the EmbeddingService interface."""

    def __init__(self):
        self.calls = []

    async def embed(self, texts):
        self.calls.append(list(texts))
        return [await self.embed_one(text) for text in texts]

    async def embed_one(self, text):
        if not text or not text.strip():
            return None
        return bag_of_words_embedding(text)


@pytest.fixture
def store():
    """Empty in-memory insight store."""
    return FakeInsightStore()


@pytest.fixture
def embedder():
    """Deterministic bag-of-words embedder."""
    return FakeEmbedder()
