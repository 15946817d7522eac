"""
Image synthesis pipeline.

Extracts <img> slots from generated screens, deduplicates them into intents,
resolves each intent through a persistent cache or an image generator, and
rewrites the screens' HTML with the resolved sources.
"""

from .cache import ImageCache, JsonFileImageCache
from .collaborators import ImageGenerator, PromptPlanner
from .models import (
    CacheEntry,
    GeneratedImage,
    ImageSlot,
    InputScreen,
    Intent,
    PlannerIntent,
    PromptPlanRequest,
    SlotContext,
    SynthesisOptions,
    SynthesisResult,
    SynthesisStats,
)
from .pipeline import ImageSynthesisPipeline, collect_unique_intents, synthesize_images_for_screens
from .scheduler import GenerationScheduler, run_with_concurrency
from .slots import IntentHasher, TextIntentHasher, extract_image_slots

__all__ = [
    'CacheEntry',
    'GeneratedImage',
    'GenerationScheduler',
    'ImageCache',
    'ImageGenerator',
    'ImageSlot',
    'ImageSynthesisPipeline',
    'InputScreen',
    'Intent',
    'IntentHasher',
    'JsonFileImageCache',
    'PlannerIntent',
    'PromptPlanRequest',
    'PromptPlanner',
    'SlotContext',
    'SynthesisOptions',
    'SynthesisResult',
    'SynthesisStats',
    'TextIntentHasher',
    'collect_unique_intents',
    'extract_image_slots',
    'run_with_concurrency',
    'synthesize_images_for_screens',
]
