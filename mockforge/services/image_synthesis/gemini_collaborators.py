"""
Gemini-backed image generator and prompt planner.

Both create their GeminiService on first use, so a missing API key surfaces
as an error from ``generate`` / ``plan_prompts`` (which the pipeline treats
as a soft failure) rather than at construction time.
"""

import asyncio
import json
import logging
import random
import re
from typing import Any, Dict, List, Optional

from ...core.config import Config
from ..gemini_service import GeminiService, RateLimitError
from .collaborators import ImageGenerator, PromptPlanner
from .models import GeneratedImage, PromptPlanRequest, PromptPlanResponse

logger = logging.getLogger(__name__)

# Aliases callers use for "whatever the default image model is"
_DEFAULT_MODEL_ALIASES = {"", "image", "default"}

_TRANSIENT_ERROR_RE = re.compile(
    r'ECONNRESET|ETIMEDOUT|timed out|timeout|connection|network|socket hang up|fetch failed',
    re.IGNORECASE,
)
_FENCED_JSON_RE = re.compile(r'```(?:json)?\s*([\s\S]*?)```', re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r',\s*([}\]])')


def is_transient_error(error: Exception) -> bool:
    if isinstance(error, (ConnectionError, asyncio.TimeoutError)):
        return True
    return bool(_TRANSIENT_ERROR_RE.search(str(error)))


def _extract_first_json_object(text: str) -> Optional[str]:
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def parse_json_lenient(text: str) -> Any:
    """Parse model output that may be fenced, wrapped in prose, or have trailing commas."""
    match = _FENCED_JSON_RE.search(text or "")
    body = match.group(1) if match else (text or "")
    extracted = _extract_first_json_object(body) or body
    return json.loads(_TRAILING_COMMA_RE.sub(r'\1', extracted).strip() or "{}")


class GeminiImageGenerator(ImageGenerator):
    """Image generator returning ``data:`` URIs from Gemini image models."""

    def __init__(self, service: Optional[GeminiService] = None, default_model: Optional[str] = None):
        self._service = service
        self.default_model = default_model or Config.get_model("image")

    @property
    def service(self) -> GeminiService:
        if self._service is None:
            self._service = GeminiService()
        return self._service

    async def _generate_with(self, prompt: str, model: str) -> GeneratedImage:
        result = await self.service.generate_image(prompt, model=model)
        return GeneratedImage(
            src=f"data:{result['mime_type']};base64,{result['image_base64']}",
            model_used=result.get("model_used") or model,
            description=result.get("description"),
        )

    async def generate(self, prompt: str, preferred_model: str) -> GeneratedImage:
        model = self.default_model if (preferred_model or "").strip() in _DEFAULT_MODEL_ALIASES else preferred_model

        try:
            return await self._generate_with(prompt, model)
        except RateLimitError:
            raise
        except Exception as e:
            if model == self.default_model:
                raise
            logger.warning(f"Image model {model} failed ({e}), retrying with {self.default_model}")
            return await self._generate_with(prompt, self.default_model)


IMAGE_PROMPT_PLANNER_SYSTEM_PROMPT = """You write image-generation prompts for photos placed inside UI mockups.
Return JSON only.

Output schema:
{
  "prompts": [
    { "id": "slot-id", "prompt": "high quality image prompt" }
  ]
}

Rules:
- Keep each prompt simple, direct, and standalone.
- Do NOT mention aspect ratios or tokens like 1:1, 4:5, 16:9.
- Do NOT mention app UI terms (screen, app, dashboard, mobile UI).
- Prefer concise natural language in the style of:
  - "Indoor selfie portrait, relaxed pose, warm natural light, minimal background, high-resolution."
  - "A photorealistic close-up portrait of [subject], soft window light, natural mood, high detail, 4k."
- Keep each prompt around 12-28 words.
- Include clear subject + scene + lighting + mood/style when possible.
- Add a short exclusion at the end: "no text, no watermark, no logos."
- Return one prompt per input id."""


def build_planner_user_prompt(request: PromptPlanRequest) -> str:
    intents = "\n\n".join(
        f"{idx}. id={intent.id}\n"
        f"screenName={intent.screen_name}\n"
        f"alt={intent.alt or 'none'}\n"
        f"aspect={intent.aspect or '1:1'}\n"
        f"srcHint={intent.src_hint or 'none'}"
        for idx, intent in enumerate(request.intents, start=1)
    )
    return (
        f"appPrompt={request.app_prompt}\n"
        f"platform={request.platform or 'mobile'}\n"
        f"stylePreset={request.style_preset or 'modern'}\n\n"
        f"imageIntents:\n{intents or 'none'}\n\n"
        f"Return prompts that are production-ready for image generation and consistent across screens."
    )


class GeminiPromptPlanner(PromptPlanner):
    """
    Batch prompt planner on Gemini text models.

    Tries the primary model, then the fallback model. Each model gets one
    extra attempt after a short random pause when the first failure looks
    like a transient network error.
    """

    def __init__(self, service: Optional[GeminiService] = None):
        self._service = service

    @property
    def service(self) -> GeminiService:
        if self._service is None:
            self._service = GeminiService()
        return self._service

    def _models_to_try(self, preferred_model: Optional[str]) -> List[str]:
        preferred = (preferred_model or "").strip()
        if preferred and preferred not in _DEFAULT_MODEL_ALIASES and "image" not in preferred.lower():
            primary = preferred
        else:
            primary = Config.get_model("image_planner")

        fallback = Config.get_model("image_planner_fallback")
        if fallback == primary:
            fallback = Config.GEMINI_TEXT_MODEL
        return [primary] if fallback == primary else [primary, fallback]

    async def plan_prompts(self, request: PromptPlanRequest) -> Dict[str, str]:
        if not request.intents:
            return {}

        user_prompt = build_planner_user_prompt(request)
        raw_text: Optional[str] = None
        last_error: Optional[Exception] = None

        for model in self._models_to_try(request.preferred_model):
            for attempt in range(2):
                try:
                    raw_text = await self.service.generate_json(
                        user_prompt,
                        system_prompt=IMAGE_PROMPT_PLANNER_SYSTEM_PROMPT,
                        model=model,
                    )
                    break
                except Exception as e:
                    last_error = e
                    if attempt == 0 and is_transient_error(e):
                        await asyncio.sleep(random.uniform(0.4, 0.85))
                        continue
                    logger.warning(f"Prompt planner call failed on {model}: {e}")
                    break
            if raw_text is not None:
                break

        if raw_text is None:
            raise last_error or Exception("Image prompt planner request failed")

        parsed = PromptPlanResponse.model_validate(parse_json_lenient(raw_text))
        mapping: Dict[str, str] = {}
        for entry in parsed.prompts:
            key = (entry.id or "").strip()
            prompt = (entry.prompt or "").strip()
            if key and prompt:
                mapping[key] = prompt

        logger.info(f"Prompt planner returned {len(mapping)}/{len(request.intents)} prompts")
        return mapping
