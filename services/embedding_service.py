"""EmbeddingService for turning pain-point descriptions into vectors.

Each text is embedded on its own and concurrently. A failure on one text
yields None for that position only; the other texts are still embedded.
"""
import asyncio
import os
import logging
from typing import List, Optional

from openai import AsyncOpenAI

from services.extraction_service import RETRYABLE_ERRORS
from utils.retry_utils import retry_async, exponential_backoff
from utils.vector_utils import normalize

logger = logging.getLogger(__name__)

# Embedding inputs are cut to stay inside the model's token limit
MAX_INPUT_CHARS = 8000


class EmbeddingService:
    """Service for generating OpenAI embeddings with per-item degradation."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        max_attempts: int = 3
    ):
        """
        Initialize the embedding service.

        Args:
            client: Preconfigured OpenAI client; built from OPENAI_API_KEY when omitted
            model: Embedding model (default: OPENAI_EMBEDDING_MODEL or text-embedding-3-small)
            max_attempts: Total attempts per text

        Raises:
            ValueError: If no client is given and OPENAI_API_KEY is not set
        """
        if client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY environment variable is required")
            client = AsyncOpenAI(api_key=api_key, max_retries=0)

        self.client = client
        self.model = model or os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
        self.max_attempts = max_attempts
        self.backoff = exponential_backoff(base=0.5, factor=2.0, max_delay=5.0)
        logger.info(f"EmbeddingService initialized with model={self.model}")

    async def embed(self, texts: List[str]) -> List[Optional[List[float]]]:
        """
        Embed several texts concurrently.

        Args:
            texts: Texts to embed

        Returns:
            One entry per input, in input order; None where embedding failed
        """
        if not texts:
            return []

        embeddings = await asyncio.gather(*(self.embed_one(text) for text in texts))

        failed = sum(1 for embedding in embeddings if embedding is None)
        logger.info(f"Embedding complete: texts={len(texts)}, failed={failed}")
        return list(embeddings)

    async def embed_one(self, text: str) -> Optional[List[float]]:
        """Embed a single text, returning None instead of raising."""
        if not text or not text.strip():
            return None

        try:
            return await retry_async(
                lambda: self._create(text),
                max_attempts=self.max_attempts,
                backoff=self.backoff,
                retry_on=RETRYABLE_ERRORS,
                description="embedding",
            )
        except Exception as e:
            logger.warning(
                f"Embedding failed, continuing without it: "
                f"text_length={len(text)}, error={type(e).__name__}: {e}"
            )
            return None

    async def _create(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text[:MAX_INPUT_CHARS]
        )
        return normalize(response.data[0].embedding)
