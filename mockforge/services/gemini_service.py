"""
GeminiService - image generation and JSON completions using Google Gemini.

Handles all Gemini API interactions with optional request pacing and
retries on rate limit errors.
"""

import asyncio
import base64
import logging
import re
import time
from typing import Any, Dict, Optional

from google import genai
from google.genai import errors, types
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import Config

logger = logging.getLogger(__name__)


class RateLimitError(Exception):
    """Gemini kept answering with rate limit / quota errors."""


_RATE_LIMIT_RE = re.compile(r"\b429\b|RESOURCE_EXHAUSTED|quota|\brate.?limit", re.IGNORECASE)


def is_rate_limit_error(error: Exception) -> bool:
    if isinstance(error, errors.APIError) and error.code == 429:
        return True
    return bool(_RATE_LIMIT_RE.search(str(error)))


class GeminiService:
    """
    Service for Gemini AI API calls.

    Features:
    - Optional pacing (Config.GEMINI_REQUESTS_PER_MINUTE, 0 = off)
    - Exponential backoff on rate limit errors (tenacity)
    - Image generation returning base64 + metadata
    - JSON-mode text completions
    """

    def __init__(self, api_key: Optional[str] = None, requests_per_minute: Optional[int] = None):
        """
        Initialize Gemini service.

        Args:
            api_key: Gemini API key (if None, uses Config.GEMINI_API_KEY)
            requests_per_minute: Pacing limit (if None, uses Config.GEMINI_REQUESTS_PER_MINUTE)

        Raises:
            ValueError: If API key not found
        """
        self.api_key = api_key or Config.GEMINI_API_KEY
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY not found in environment")

        self.client = genai.Client(api_key=self.api_key)

        self._last_call_time = 0.0
        self._min_delay = 0.0
        self._pacing_lock: Optional[asyncio.Lock] = None
        rpm = Config.GEMINI_REQUESTS_PER_MINUTE if requests_per_minute is None else requests_per_minute
        if rpm and rpm > 0:
            self.set_rate_limit(rpm)

        logger.info(f"GeminiService initialized (min delay {self._min_delay:.1f}s)")

    def set_rate_limit(self, requests_per_minute: int) -> None:
        """
        Set rate limit for API calls.

        Args:
            requests_per_minute: Maximum requests per minute
        """
        self._min_delay = 60.0 / requests_per_minute
        logger.info(f"Rate limit set to {requests_per_minute} req/min (delay: {self._min_delay:.1f}s)")

    async def _rate_limit(self) -> None:
        """Enforce pacing between API calls"""
        if self._min_delay <= 0:
            return

        # Concurrent callers queue here so each one waits out the previous call
        if self._pacing_lock is None:
            self._pacing_lock = asyncio.Lock()

        async with self._pacing_lock:
            now = time.time()
            elapsed = now - self._last_call_time

            if elapsed < self._min_delay:
                wait_time = self._min_delay - elapsed
                logger.debug(f"Rate limiting: waiting {wait_time:.1f}s")
                await asyncio.sleep(wait_time)

            self._last_call_time = time.time()

    @retry(
        retry=retry_if_exception_type(RateLimitError),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=15, min=15, max=60),
        reraise=True,
    )
    async def _generate_content(self, model: str, contents: Any, config: types.GenerateContentConfig):
        await self._rate_limit()
        try:
            return await self.client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )
        except Exception as e:
            if is_rate_limit_error(e):
                logger.warning(f"Rate limit hit on {model}: {e}")
                raise RateLimitError(str(e)) from e
            raise

    async def generate_image(
        self,
        prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.4,
    ) -> Dict[str, Any]:
        """
        Generate an image from a text prompt.

        Args:
            prompt: Text prompt for image generation
            model: Image model (default: Config.GEMINI_IMAGE_MODEL)
            temperature: Generation temperature (0.0-1.0)

        Returns:
            Dict with:
                - image_base64: The generated image
                - mime_type: e.g. image/png
                - model_used: Model that processed the request
                - description: Any text the model returned alongside the image
                - generation_time_ms: Time taken

        Raises:
            RateLimitError: If rate limited after all retries
            Exception: On any other API error or when no image is returned
        """
        model_name = model or Config.GEMINI_IMAGE_MODEL
        start_time = time.time()

        logger.debug(f"Generating image with {model_name}: {prompt[:50]}...")
        response = await self._generate_content(
            model_name,
            prompt,
            types.GenerateContentConfig(
                temperature=temperature,
                response_modalities=["IMAGE", "TEXT"],
            ),
        )

        model_used = getattr(response, "model_version", None) or model_name
        description_parts = []
        candidates = response.candidates or []
        parts = candidates[0].content.parts if candidates and candidates[0].content else []

        for part in parts or []:
            if getattr(part, "text", None):
                description_parts.append(part.text.strip())
            if getattr(part, "inline_data", None) and part.inline_data.data:
                generation_time_ms = int((time.time() - start_time) * 1000)
                logger.info(f"Image generated ({len(part.inline_data.data)} bytes) "
                            f"model_used={model_used}, time={generation_time_ms}ms")
                return {
                    "image_base64": base64.b64encode(part.inline_data.data).decode("utf-8"),
                    "mime_type": part.inline_data.mime_type or "image/png",
                    "model_used": model_used,
                    "description": " ".join(p for p in description_parts if p) or None,
                    "generation_time_ms": generation_time_ms,
                }

        raise Exception("No image found in Gemini response")

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: float = 0.35,
        top_p: float = 0.9,
        max_output_tokens: int = 2600,
    ) -> str:
        """
        Run a JSON-mode completion and return the raw response text.

        Raises:
            RateLimitError: If rate limited after all retries
            Exception: On any other API error
        """
        model_name = model or Config.GEMINI_TEXT_MODEL

        response = await self._generate_content(
            model_name,
            prompt,
            types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=temperature,
                top_p=top_p,
                max_output_tokens=max_output_tokens,
                response_mime_type="application/json",
            ),
        )
        return response.text or ""
