"""
Data models for the image synthesis pipeline.

Pydantic models describe everything that crosses the pipeline boundary
(input screens, options, results, the persisted cache document, collaborator
payloads). Field names are snake_case in Python and camelCase on the wire,
so upstream payloads like ``{"screenId": ..., "appPrompt": ...}`` validate
directly.

Dataclasses hold the per-call working records (slots and intents); they are
created fresh for every synthesis call and never persisted.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_STYLE_PRESET = "modern"
DEFAULT_PLATFORM = "mobile"

MAX_IMAGES_DEFAULT = 12
MAX_IMAGES_RANGE = (1, 30)
CONCURRENCY_DEFAULT = 2
CONCURRENCY_RANGE = (1, 6)

CACHE_VERSION = 1


def clamp(value: Optional[int], low: int, high: int, default: int) -> int:
    """Clamp value into [low, high]; None falls back to default."""
    if value is None:
        return default
    return max(low, min(high, int(value)))


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Pipeline boundary
# ============================================================================

class InputScreen(_CamelModel):
    """A generated screen as supplied by the upstream screen provider. Passed through, not validated."""
    screen_id: Optional[Union[str, int]] = None
    name: str = ""
    html: str = ""
    width: Optional[float] = None
    height: Optional[float] = None

    @field_validator("name", "html", mode="before")
    @classmethod
    def _coerce_text(cls, value):
        return "" if value is None else str(value)


class SynthesisOptions(_CamelModel):
    """Run-level options for a synthesis call. Limits are clamped, never rejected."""
    app_prompt: str = ""
    style_preset: str = DEFAULT_STYLE_PRESET
    platform: str = DEFAULT_PLATFORM
    preferred_model: Optional[str] = None
    max_images: int = MAX_IMAGES_DEFAULT
    concurrency: int = CONCURRENCY_DEFAULT

    @field_validator("style_preset", mode="before")
    @classmethod
    def _default_style(cls, value):
        return value or DEFAULT_STYLE_PRESET

    @field_validator("platform", mode="before")
    @classmethod
    def _default_platform(cls, value):
        return value or DEFAULT_PLATFORM

    @field_validator("max_images", mode="before")
    @classmethod
    def _clamp_max_images(cls, value):
        return clamp(value, *MAX_IMAGES_RANGE, MAX_IMAGES_DEFAULT)

    @field_validator("concurrency", mode="before")
    @classmethod
    def _clamp_concurrency(cls, value):
        return clamp(value, *CONCURRENCY_RANGE, CONCURRENCY_DEFAULT)


class SynthesisStats(_CamelModel):
    """Accounting of what happened to every slot during one call."""
    total_slots: int = 0
    unique_intents: int = 0
    generated: int = 0
    reused_from_cache: int = 0
    reused_within_run: int = 0
    skipped: int = 0


class SynthesisResult(_CamelModel):
    screens: List[InputScreen] = Field(default_factory=list)
    stats: SynthesisStats = Field(default_factory=SynthesisStats)


# ============================================================================
# Persisted cache
# ============================================================================

class CacheEntry(_CamelModel):
    """One generated image, keyed by intent in the cache document."""
    src: str
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    uses: int = 1
    prompt: str = ""


class ImageCacheDocument(_CamelModel):
    version: int = CACHE_VERSION
    items: Dict[str, CacheEntry] = Field(default_factory=dict)


# ============================================================================
# Collaborator payloads
# ============================================================================

class GeneratedImage(_CamelModel):
    """Result of one image generation call."""
    src: str
    model_used: str = ""
    description: Optional[str] = None


class PlannerIntent(_CamelModel):
    id: str
    screen_name: str = "Screen"
    alt: str = ""
    aspect: str = "1:1"
    src_hint: str = ""


class PromptPlanRequest(_CamelModel):
    app_prompt: str
    platform: str = DEFAULT_PLATFORM
    style_preset: str = DEFAULT_STYLE_PRESET
    intents: List[PlannerIntent] = Field(default_factory=list)
    preferred_model: Optional[str] = None


class PlannedPrompt(BaseModel):
    id: str = ""
    prompt: str = ""


class PromptPlanResponse(BaseModel):
    """Schema the planner LLM must answer with."""
    prompts: List[PlannedPrompt] = Field(default_factory=list)


# ============================================================================
# Per-call working records
# ============================================================================

@dataclass
class ImageSlot:
    """One <img> occurrence in one screen."""
    slot_id: str
    screen_index: int
    img_index: int
    screen_name: str
    src: str
    alt: str
    aspect: str
    intent_key: str
    prompt: str
    generate: bool
    tag_fingerprint: str = ""


@dataclass
class Intent:
    """A deduplicated visual need; values come from its first-seen slot."""
    intent_key: str
    prompt: str
    generate: bool
    original_src: str
    screen_name: str = "Screen"
    alt: str = ""
    aspect: str = "1:1"

    def to_planner_intent(self) -> PlannerIntent:
        return PlannerIntent(
            id=self.intent_key,
            screen_name=self.screen_name or "Screen",
            alt=self.alt,
            aspect=self.aspect or "1:1",
            src_hint=self.original_src,
        )


@dataclass
class SlotContext:
    """Run-level signals that feed intent hashing and prompt building."""
    app_prompt: str
    style_preset: str = DEFAULT_STYLE_PRESET
    platform: str = DEFAULT_PLATFORM
