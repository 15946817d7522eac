"""
Image synthesis pipeline.

screens -> slots -> unique intents -> (prompt planner) -> scheduler
-> intent->src map -> rewritten screens + stats

Usage:
    result = await synthesize_images_for_screens(
        [{"name": "Home", "html": html}],
        {"appPrompt": "meditation app", "stylePreset": "minimal"},
    )
    print(result.stats)
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ...core.config import Config
from ...core.observability import get_logfire
from .cache import ImageCache, JsonFileImageCache
from .collaborators import ImageGenerator, PromptPlanner
from .models import (
    ImageSlot,
    InputScreen,
    Intent,
    PromptPlanRequest,
    SlotContext,
    SynthesisOptions,
    SynthesisResult,
    SynthesisStats,
)
from .rewriter import rewrite_screen_html
from .scheduler import GenerationScheduler
from .slots import IntentHasher, TextIntentHasher, extract_image_slots

logger = logging.getLogger(__name__)


def collect_unique_intents(slots: List[ImageSlot]) -> List[Intent]:
    """First slot per intent key wins; first-seen order is kept."""
    intents: Dict[str, Intent] = {}
    for slot in slots:
        if slot.intent_key in intents:
            continue
        intents[slot.intent_key] = Intent(
            intent_key=slot.intent_key,
            prompt=slot.prompt,
            generate=slot.generate,
            original_src=slot.src,
            screen_name=slot.screen_name,
            alt=slot.alt,
            aspect=slot.aspect,
        )
    return list(intents.values())


class ImageSynthesisPipeline:
    """
    Wires extraction, planning, scheduling and rewriting together.

    Collaborators are injected; the defaults are the JSON file cache and the
    Gemini-backed generator and planner. Pass ``planner=None`` with
    ``use_planner=False`` to skip prompt planning entirely.
    """

    def __init__(
        self,
        cache: Optional[ImageCache] = None,
        generator: Optional[ImageGenerator] = None,
        planner: Optional[PromptPlanner] = None,
        hasher: Optional[IntentHasher] = None,
        use_planner: bool = True,
    ):
        if generator is None:
            from .gemini_collaborators import GeminiImageGenerator
            generator = GeminiImageGenerator()
        if planner is None and use_planner:
            from .gemini_collaborators import GeminiPromptPlanner
            planner = GeminiPromptPlanner()

        self.cache = cache if cache is not None else JsonFileImageCache()
        self.generator = generator
        self.planner = planner if use_planner else None
        self.hasher = hasher or TextIntentHasher()

    async def synthesize(
        self,
        screens: Iterable[Union[InputScreen, Mapping[str, Any]]],
        options: Union[SynthesisOptions, Mapping[str, Any]],
    ) -> SynthesisResult:
        prepared = [
            s if isinstance(s, InputScreen) else InputScreen.model_validate(s)
            for s in screens
        ]
        opts = options if isinstance(options, SynthesisOptions) else SynthesisOptions.model_validate(options)
        context = SlotContext(
            app_prompt=opts.app_prompt,
            style_preset=opts.style_preset,
            platform=opts.platform,
        )

        lf = get_logfire()
        with lf.span("synthesize_images", screens=len(prepared), max_images=opts.max_images):
            slots = extract_image_slots(prepared, context, self.hasher)
            intents = collect_unique_intents(slots)

            stats = SynthesisStats(
                total_slots=len(slots),
                unique_intents=len(intents),
                reused_within_run=max(0, len(slots) - len(intents)),
            )
            logger.info(
                f"Image synthesis: {stats.total_slots} slots, {stats.unique_intents} unique intents "
                f"across {len(prepared)} screens"
            )

            self.cache.load()

            await self._plan_prompts(intents[:opts.max_images], opts)

            scheduler = GenerationScheduler(
                cache=self.cache,
                generator=self.generator,
                preferred_model=opts.preferred_model or Config.get_model("image"),
                concurrency=opts.concurrency,
            )
            intent_to_src = await scheduler.resolve(intents, opts.max_images, stats)

            next_screens = self._rewrite(prepared, slots, intent_to_src, stats)

            self.cache.flush()

        logger.info(
            f"Image synthesis done: generated={stats.generated} "
            f"reused_from_cache={stats.reused_from_cache} "
            f"reused_within_run={stats.reused_within_run} skipped={stats.skipped}"
        )
        return SynthesisResult(screens=next_screens, stats=stats)

    async def _plan_prompts(self, intents: List[Intent], opts: SynthesisOptions) -> None:
        """Best-effort prompt rewrite; any planner failure keeps the local prompts."""
        if self.planner is None or not intents:
            return

        request = PromptPlanRequest(
            app_prompt=opts.app_prompt,
            platform=opts.platform,
            style_preset=opts.style_preset,
            intents=[intent.to_planner_intent() for intent in intents],
            preferred_model=opts.preferred_model,
        )

        lf = get_logfire()
        try:
            with lf.span("plan_image_prompts", intents=len(intents)):
                planned = await self.planner.plan_prompts(request)
        except Exception as e:
            logger.warning(f"Prompt planner unavailable, using local prompts: {e}")
            return

        if not isinstance(planned, Mapping):
            logger.warning(f"Prompt planner returned {type(planned).__name__}, using local prompts")
            return

        applied = 0
        for intent in intents:
            prompt = planned.get(intent.intent_key)
            if isinstance(prompt, str) and prompt.strip():
                intent.prompt = prompt
                applied += 1
        logger.debug(f"Prompt planner rewrote {applied}/{len(intents)} prompts")

    def _rewrite(
        self,
        screens: List[InputScreen],
        slots: List[ImageSlot],
        intent_to_src: Dict[str, str],
        stats: SynthesisStats,
    ) -> List[InputScreen]:
        replacements: Dict[int, Dict[int, str]] = {}
        slots_by_screen: Dict[int, List[ImageSlot]] = {}

        for slot in slots:
            slots_by_screen.setdefault(slot.screen_index, []).append(slot)
            src = intent_to_src.get(slot.intent_key) or slot.src
            if not src:
                stats.skipped += 1
                continue
            replacements.setdefault(slot.screen_index, {})[slot.img_index] = src

        return [
            screen.model_copy(update={
                "html": rewrite_screen_html(
                    screen.html,
                    replacements.get(index, {}),
                    slots_by_screen.get(index),
                ),
            })
            for index, screen in enumerate(screens)
        ]


async def synthesize_images_for_screens(
    screens: Iterable[Union[InputScreen, Mapping[str, Any]]],
    options: Union[SynthesisOptions, Mapping[str, Any]],
    cache: Optional[ImageCache] = None,
    generator: Optional[ImageGenerator] = None,
    planner: Optional[PromptPlanner] = None,
    use_planner: bool = True,
) -> SynthesisResult:
    """
    Generate images for every placeholder <img> across ``screens``.

    Args:
        screens: ``{name, html, screenId?, width?, height?}`` records
        options: ``{appPrompt, stylePreset?, platform?, preferredModel?,
            maxImages?, concurrency?}`` (snake_case also accepted)
        cache, generator, planner: collaborator overrides

    Returns:
        SynthesisResult with rewritten screens and per-slot stats
    """
    pipeline = ImageSynthesisPipeline(
        cache=cache,
        generator=generator,
        planner=planner,
        use_planner=use_planner,
    )
    return await pipeline.synthesize(screens, options)
