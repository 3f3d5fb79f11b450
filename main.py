from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import os
import sys
import logging
from routers import analysis
from services.database import close_engine

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Validate required environment variables
REQUIRED_ENV_VARS = ["DATABASE_URL", "DATABASE_PASSWORD", "OPENAI_API_KEY"]

def validate_environment():
    """Validate that all required environment variables are set."""
    missing = [var for var in REQUIRED_ENV_VARS if not os.getenv(var)]
    if missing:
        logger.error(f"Missing required environment variables: {missing}")
        sys.exit(1)
    logger.info("Environment validation passed")

def log_configuration():
    """Log the tunable pipeline settings in effect."""
    logger.info("=" * 60)
    logger.info("Transcript analysis configuration")
    logger.info(f"  Model: {os.getenv('OPENAI_MODEL', 'gpt-4o')}")
    logger.info(f"  Embedding model: {os.getenv('OPENAI_EMBEDDING_MODEL', 'text-embedding-3-small')}")
    logger.info(f"  Similarity threshold: {os.getenv('SIMILARITY_THRESHOLD', '0.85')}")
    logger.info(f"  Trend window (months): {os.getenv('TREND_WINDOW_MONTHS', '6')}")
    logger.info("=" * 60)

# Call validation at startup
validate_environment()
log_configuration()

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_engine()

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

# Include routers
app.include_router(analysis.router)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies get the same {"success": false} shape as pipeline errors
    logger.warning(f"Rejected malformed request: path={request.url.path}, errors={len(exc.errors())}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Request body must be a JSON object with string fields"}
    )
