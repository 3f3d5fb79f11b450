"""
Integration Tests for the POST /analyze-transcript endpoint

Tests the request/response contract with the pipeline wired to the in-memory
store and a mocked extractor.

Tests:
- Valid submission returns success with camelCase analysis and insights
- Missing fields return 400 without contacting the model
- Pipeline errors map to their HTTP status
- CORS preflight is answered
"""

import json
import pytest
from unittest.mock import patch, MagicMock, AsyncMock
from fastapi.testclient import TestClient

from main import app
from services.analysis_service import TranscriptAnalysisService
from services.exceptions import ExtractionUnavailableError
from services.persistence_service import PersistenceService
from services.schema_validator import SchemaValidator
from services.similarity_service import SimilarityService
from services.trend_service import TrendService


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    return TestClient(app)


@pytest.fixture
def valid_body():
    return {
        "transcript": "Rep: What's slowing you down?\nCustomer: CI takes 40 minutes on every PR.",
        "meetingDate": "2024-06-03",
        "meetingTitle": "Discovery with Hooli",
        "userId": "rep-11",
        "companyName": "Hooli",
    }


@pytest.fixture
def extractor():
    extractor = MagicMock()
    extractor.extract = AsyncMock(return_value=json.dumps({
        "mainPain": "CI takes 40 minutes on every PR",
        "followUps": [{"description": "Send case study", "deadline": "asap"}],
        "featureRequests": {"nx": ["Task graph filtering"], "nxCloud": []},
    }))
    return extractor


@pytest.fixture
def pipeline(store, embedder, extractor):
    """Patch the router's factory to build the pipeline on the in-memory store."""
    service = TranscriptAnalysisService(
        extractor=extractor,
        validator=SchemaValidator(),
        persistence=PersistenceService(store, embedder, SimilarityService(store), trend_window_months=6),
        trends=TrendService(store),
        trend_window_months=6,
    )
    with patch("routers.analysis.create_analysis_service", return_value=service) as factory:
        yield factory


# =============================================================================
# Success path
# =============================================================================

def test_valid_submission_returns_analysis(client, valid_body, pipeline, store):
    response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True

    data = payload["data"]
    assert data["companyName"] == "Hooli"
    assert data["meetingId"] in {str(meeting_id) for meeting_id in store.meetings}

    results = data["analysisResults"]
    assert results["mainPain"] == "CI takes 40 minutes on every PR"
    assert results["whyNow"] == "unknown"
    assert results["satisfaction"] == {"nx": 5.0, "nxCloud": 5.0}
    assert results["followUps"][0]["deadline"] == "2024-06-04"
    assert results["insights"]["commonFeatureRequests"][0]["feature"] == "Task graph filtering"
    assert results["insights"]["recurringIssues"] == []

    meeting = next(iter(store.meetings.values()))
    assert meeting.title == "Discovery with Hooli"


# =============================================================================
# Input validation
# =============================================================================

def test_missing_company_name_is_rejected_before_extraction(client, valid_body, pipeline, extractor, store):
    del valid_body["companyName"]

    response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "companyName" in response.json()["error"]
    pipeline.assert_not_called()
    extractor.extract.assert_not_called()
    assert store.meetings == {}


def test_blank_transcript_is_rejected(client, valid_body, pipeline):
    valid_body["transcript"] = "   "

    response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 400
    assert "transcript" in response.json()["error"]


def test_malformed_meeting_date_is_rejected(client, valid_body, pipeline):
    valid_body["meetingDate"] = "June 3rd"

    response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 400
    assert "meetingDate" in response.json()["error"]


def test_non_object_body_is_rejected(client, pipeline):
    response = client.post("/analyze-transcript", content="not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.json()["success"] is False


# =============================================================================
# Pipeline failures
# =============================================================================

def test_extraction_outage_returns_502(client, valid_body, pipeline, extractor):
    extractor.extract.side_effect = ExtractionUnavailableError("Extraction unavailable after 3 attempts: APITimeoutError")

    response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 502
    assert response.json() == {
        "success": False,
        "error": "Extraction unavailable after 3 attempts: APITimeoutError",
    }


def test_unparseable_output_returns_502(client, valid_body, pipeline, extractor):
    extractor.extract.return_value = "no json here"

    response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 502
    assert response.json()["success"] is False


def test_persistence_failure_returns_500(client, valid_body, pipeline, store):
    store.upsert_company = AsyncMock(side_effect=RuntimeError("connection refused"))

    response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Failed to create or update company"}


def test_unexpected_error_returns_500(client, valid_body):
    with patch("routers.analysis.create_analysis_service", side_effect=RuntimeError("boom")):
        response = client.post("/analyze-transcript", json=valid_body)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "boom"}


# =============================================================================
# CORS
# =============================================================================

def test_cors_preflight(client):
    response = client.options(
        "/analyze-transcript",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "POST" in response.headers["access-control-allow-methods"]


def test_cors_header_on_response(client, valid_body, pipeline):
    response = client.post("/analyze-transcript", json=valid_body, headers={"Origin": "https://app.example.com"})

    assert response.headers["access-control-allow-origin"] == "*"
