"""
Transcript analysis router.

This router provides the POST /analyze-transcript endpoint. Every outcome is
returned as {"success": bool, ...}; pipeline failures carry the HTTP status
of their PipelineError subclass.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from models.transcript_request import (
    ErrorResponse,
    TranscriptAnalysisRequest,
    TranscriptAnalysisResponse,
)
from services.analysis_service import TranscriptAnalysisService
from services.embedding_service import EmbeddingService
from services.exceptions import PipelineError
from services.extraction_service import ExtractionService
from services.insight_store import InsightStore
from services.persistence_service import PersistenceService
from services.schema_validator import SchemaValidator
from services.similarity_service import SimilarityService
from services.trend_service import TrendService

logger = logging.getLogger(__name__)

router = APIRouter()


def create_analysis_service() -> TranscriptAnalysisService:
    """Wire the pipeline from environment configuration."""
    store = InsightStore()
    return TranscriptAnalysisService(
        extractor=ExtractionService(),
        validator=SchemaValidator(),
        persistence=PersistenceService(
            store=store,
            embedder=EmbeddingService(),
            matcher=SimilarityService(store),
        ),
        trends=TrendService(store),
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(by_alias=True),
    )


@router.post(
    "/analyze-transcript",
    response_model=TranscriptAnalysisResponse,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def analyze_transcript(body: TranscriptAnalysisRequest):
    """
    Analyse a meeting transcript and store the extracted intelligence.

    Args:
        body: TranscriptAnalysisRequest with transcript, meetingDate, userId,
            companyName and optional meetingTitle / meetingPurpose

    Returns:
        TranscriptAnalysisResponse on success; ErrorResponse with status
        400 (invalid input), 502 (model unavailable or unparseable) or 500
    """
    try:
        # Reject bad input before any external call is made
        submission = body.to_submission()
        service = create_analysis_service()
        data = await service.analyze(submission)
    except PipelineError as e:
        level = logging.WARNING if e.status_code < 500 else logging.ERROR
        logger.log(level, f"Transcript analysis failed: status={e.status_code}, error={e.message}")
        return _error(e.status_code, e.message)
    except Exception as e:
        logger.error(
            f"Transcript analysis failed unexpectedly: error={type(e).__name__}: {e}",
            exc_info=True
        )
        return _error(500, str(e) or "Internal server error")

    return TranscriptAnalysisResponse(data=data)
