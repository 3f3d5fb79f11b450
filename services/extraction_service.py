"""ExtractionService for turning meeting transcripts into raw structured output.

Sends the transcript to OpenAI with a fixed analyst instruction and returns the
model's text untouched. Parsing and repair of that text is left to the
SchemaValidator.
"""
import asyncio
import os
import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from services.exceptions import ExtractionUnavailableError
from utils.retry_utils import retry_async, exponential_backoff

logger = logging.getLogger(__name__)

# Upstream failures worth another attempt
RETRYABLE_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
    asyncio.TimeoutError,
)


class ExtractionService:
    """Service for extracting a structured meeting analysis with OpenAI."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        temperature: float = 0.2,
        max_tokens: int = 4000
    ):
        """
        Initialize the extraction service.

        Args:
            client: Preconfigured OpenAI client; built from OPENAI_API_KEY when omitted
            model: Chat model name (default: OPENAI_MODEL or gpt-4o)
            timeout: Per-attempt timeout in seconds (default: EXTRACTION_TIMEOUT_SECONDS or 180)
            max_attempts: Total attempts per extraction (default: EXTRACTION_MAX_ATTEMPTS or 3)
            temperature: Sampling temperature; kept low for repeatable output
            max_tokens: Completion token limit

        Raises:
            ValueError: If no client is given and OPENAI_API_KEY is not set
        """
        if client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY environment variable is required")
            # Retries are handled by retry_async, not the SDK
            client = AsyncOpenAI(api_key=api_key, max_retries=0)

        self.client = client
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o")
        self.timeout = timeout or float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "180"))
        self.max_attempts = max_attempts or int(os.getenv("EXTRACTION_MAX_ATTEMPTS", "3"))
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.backoff = exponential_backoff(base=2.0, factor=2.0, max_delay=20.0)

        logger.info(
            f"ExtractionService initialized: model={self.model}, "
            f"timeout={self.timeout}s, max_attempts={self.max_attempts}"
        )

    async def extract(self, transcript: str, purpose: Optional[str] = None) -> str:
        """
        Run the analysis prompt over a transcript.

        Args:
            transcript: Raw meeting transcript
            purpose: Optional meeting purpose supplied by the submitter

        Returns:
            The model's raw text, expected to contain a JSON object

        Raises:
            ExtractionUnavailableError: If the model cannot be reached after all
                attempts, or fails with a non-retryable error
        """
        logger.info(
            f"Starting extraction: model={self.model}, transcript_length={len(transcript)} chars"
        )

        try:
            content = await retry_async(
                lambda: self._complete(transcript, purpose),
                max_attempts=self.max_attempts,
                backoff=self.backoff,
                retry_on=RETRYABLE_ERRORS,
                description="transcript extraction",
            )
        except RETRYABLE_ERRORS as e:
            raise ExtractionUnavailableError(
                f"Extraction unavailable after {self.max_attempts} attempts: {type(e).__name__}"
            ) from e
        except openai.OpenAIError as e:
            logger.error(f"Extraction failed with non-retryable error: {e}", exc_info=True)
            raise ExtractionUnavailableError(f"Extraction unavailable: {type(e).__name__}") from e

        logger.info(f"Extraction complete: output_length={len(content)} chars")
        return content

    async def _complete(self, transcript: str, purpose: Optional[str]) -> str:
        """Single chat completion call."""
        completion = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self._get_system_prompt()},
                {"role": "user", "content": self._build_user_message(transcript, purpose)}
            ],
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout
        )

        choice = completion.choices[0]
        if choice.finish_reason == "length":
            logger.warning("Extraction output hit the token limit and is likely truncated")
        return choice.message.content or ""

    def _build_user_message(self, transcript: str, purpose: Optional[str]) -> str:
        if purpose:
            return f"Meeting purpose: {purpose}\n\nAnalyze this transcript:\n\n{transcript}"
        return f"Analyze this transcript:\n\n{transcript}"

    def _get_system_prompt(self) -> str:
        """Nx-focused system prompt describing the exact JSON shape expected."""
        return """You are an expert sales and customer-success analyst for Nx, the monorepo build system, and Nx Cloud.

You review customer meeting transcripts and extract intelligence that helps the team:
- Understand the customer's main pain and why it matters now
- Profile the customer's Nx workspace, CI setup and adoption
- Track follow-up commitments
- Spot Nx and Nx Cloud opportunities

**Return a single JSON object with exactly these keys:**

- mainPain: the single most important problem the customer described
- whyNow: why the problem is pressing now
- callObjective: what the customer wanted from this call
- companyDomain: the customer's web domain if mentioned
- ciProvider: CI provider in use (e.g. "GitHub Actions", "Jenkins")
- problematicTasks: list of tasks that are slow or unreliable, most painful first
- technologiesUsed: list of frameworks, languages and tools mentioned
- nxVersion: Nx version in use
- cloudUsage: {"status": "yes" | "no" | "considering" | "unknown", "reason": string}
- yearsUsing: how long they have used Nx
- workspaceSize: size of the workspace (projects, developers)
- adoptionApproach: "greenfield" | "retrofit" | "unknown"
- satisfaction: {"nx": 0-10, "nxCloud": 0-10}
- featureRequests: {"nx": [string], "nxCloud": [string]}
- currentBenefits: list of benefits they get today
- favoriteFeatures: list of features they like most
- advancedFeatureUsage: {"agents": "yes" | "no" | "unknown", "mfe": ..., "crystal": ..., "atomizer": ...}
- participants: list of participant names
- followUps: list of {"description": string, "deadline": "YYYY-MM-DD" or "ASAP", "assignee": string or null}
- additionalPainPoints: list of {"description": string, "urgencyScore": 0-10, "category": string}
- opportunities: list of {"feature": string, "confidenceScore": 0-1, "suggestedApproach": string, "painPointIndex": integer}
  where painPointIndex 0 is mainPain and 1..n refer to additionalPainPoints in order
- executiveSummary: 2-3 sentence summary of the meeting

**Guidelines:**
1. Only extract information explicitly present in the transcript
2. Use "unknown" for any text or status that is not stated; never guess
3. Leave satisfaction scores out entirely when no score is stated; only use 0 when the customer says 0
4. Use empty lists when there is nothing to report
5. Do not invent deadlines: use "ASAP" for urgent commitments without a date"""
