"""
Generation scheduler.

Resolves each unique intent to an image source. The first ``max_images``
intents are handled by a fixed pool of asyncio workers that pull from one
shared cursor; anything past that limit is resolved from the cache or its
original source without generating.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Sequence, TypeVar

from ...core.observability import get_logfire
from .cache import ImageCache
from .collaborators import ImageGenerator
from .models import CacheEntry, Intent, SynthesisStats

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_concurrency(
    items: Sequence[T],
    concurrency: int,
    fn: Callable[[T], Awaitable[None]],
) -> None:
    """
    Run ``fn`` over ``items`` with at most ``concurrency`` calls in flight.

    Workers claim the next index from a shared cursor, so every item is
    processed exactly once, claimed in list order.
    """
    if not items:
        return

    cursor = 0

    async def _worker() -> None:
        nonlocal cursor
        while True:
            index = cursor
            cursor += 1
            if index >= len(items):
                return
            await fn(items[index])

    worker_count = min(max(1, concurrency), len(items))
    await asyncio.gather(*(_worker() for _ in range(worker_count)))


class GenerationScheduler:
    """
    Resolves intents through cache, generator and fallback policy.

    Each worker owns the intents it claims, so ``intent_to_src``, the
    counters and the cache are mutated without locking.
    """

    def __init__(
        self,
        cache: ImageCache,
        generator: ImageGenerator,
        preferred_model: str,
        concurrency: int,
    ):
        self.cache = cache
        self.generator = generator
        self.preferred_model = preferred_model
        self.concurrency = concurrency

    async def resolve(
        self,
        intents: List[Intent],
        max_images: int,
        stats: SynthesisStats,
    ) -> Dict[str, str]:
        """
        Resolve intents into an ``{intent_key: src}`` map, updating ``stats``.

        Intents that end up with no source are absent from the map.
        """
        intent_to_src: Dict[str, str] = {}
        eligible = intents[:max_images]
        overflow = intents[max_images:]

        async def _resolve_one(intent: Intent) -> None:
            await self._resolve_eligible(intent, intent_to_src, stats)

        await run_with_concurrency(eligible, self.concurrency, _resolve_one)

        if overflow:
            logger.info(f"{len(overflow)} intents over the {max_images}-image limit, resolving passively")
        for intent in overflow:
            self._resolve_passive(intent, intent_to_src, stats)

        return intent_to_src

    async def _resolve_eligible(
        self,
        intent: Intent,
        intent_to_src: Dict[str, str],
        stats: SynthesisStats,
    ) -> None:
        if not intent.generate:
            if intent.original_src:
                intent_to_src[intent.intent_key] = intent.original_src
                stats.skipped += 1
            return

        cached = self.cache.touch(intent.intent_key)
        if cached is not None:
            intent_to_src[intent.intent_key] = cached.src
            stats.reused_from_cache += 1
            logger.debug(f"Cache hit for intent {intent.intent_key[:12]} (uses={cached.uses})")
            return

        lf = get_logfire()
        try:
            with lf.span("generate_image", intent_key=intent.intent_key, model=self.preferred_model):
                image = await self.generator.generate(intent.prompt, self.preferred_model)
        except Exception as e:
            logger.warning(f"Image generation failed for intent {intent.intent_key[:12]}: {e}")
            if intent.original_src:
                intent_to_src[intent.intent_key] = intent.original_src
            stats.skipped += 1
            return

        intent_to_src[intent.intent_key] = image.src
        self.cache.put(
            intent.intent_key,
            CacheEntry(
                src=image.src,
                created_at=datetime.now(timezone.utc).isoformat(),
                uses=1,
                prompt=intent.prompt,
            ),
        )
        stats.generated += 1
        logger.info(f"Generated image for intent {intent.intent_key[:12]} with {image.model_used or self.preferred_model}")

    def _resolve_passive(
        self,
        intent: Intent,
        intent_to_src: Dict[str, str],
        stats: SynthesisStats,
    ) -> None:
        cached = self.cache.touch(intent.intent_key)
        if cached is not None:
            intent_to_src[intent.intent_key] = cached.src
            stats.reused_from_cache += 1
        elif intent.original_src:
            intent_to_src[intent.intent_key] = intent.original_src
            stats.skipped += 1
