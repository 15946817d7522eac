"""
Image CLI Commands

Commands for synthesizing, inspecting and auditing mockup images.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import click

from ..core.config import Config
from ..services.image_synthesis.cache import JsonFileImageCache
from ..services.image_synthesis.models import InputScreen, SlotContext, SynthesisOptions
from ..services.image_synthesis.pipeline import ImageSynthesisPipeline, collect_unique_intents
from ..services.image_synthesis.slots import extract_image_slots


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)

STYLE_PRESETS = ["modern", "minimal", "vibrant", "luxury", "playful"]
PLATFORMS = ["mobile", "tablet", "desktop"]


def _load_screens(html_files: Tuple[str, ...]) -> List[InputScreen]:
    return [
        InputScreen(name=Path(path).stem, html=Path(path).read_text(encoding="utf-8"))
        for path in html_files
    ]


@click.group(name="images")
def images_group():
    """Generate and reuse images for mockup screens."""
    pass


@images_group.command(name="synthesize")
@click.argument("html_files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--app-prompt", required=True, help="Prompt the screens were generated from")
@click.option("--style", "style_preset", type=click.Choice(STYLE_PRESETS), default="modern", show_default=True)
@click.option("--platform", type=click.Choice(PLATFORMS), default="mobile", show_default=True)
@click.option("--model", "preferred_model", help="Image model (default: configured image model)")
@click.option("--max-images", type=int, default=Config.IMAGE_MAX_IMAGES, show_default=True,
              help="Unique images to generate at most (1-30)")
@click.option("--concurrency", type=int, default=Config.IMAGE_CONCURRENCY, show_default=True,
              help="Parallel generation calls (1-6)")
@click.option("--cache-path", type=click.Path(dir_okay=False), help="Image cache file")
@click.option("--output-dir", type=click.Path(file_okay=False), default="out", show_default=True)
@click.option("--no-planner", is_flag=True, help="Skip the prompt planner and use local prompts")
def synthesize_command(
    html_files: Tuple[str, ...],
    app_prompt: str,
    style_preset: str,
    platform: str,
    preferred_model: Optional[str],
    max_images: int,
    concurrency: int,
    cache_path: Optional[str],
    output_dir: str,
    no_planner: bool,
):
    """
    Fill placeholder images in HTML screens.

    Each file is one screen (named after the file). Rewritten screens are
    written to the output directory under the same file names.

    Example:
        mockforge images synthesize home.html profile.html --app-prompt "pet adoption app"
    """
    screens = _load_screens(html_files)
    options = SynthesisOptions(
        app_prompt=app_prompt,
        style_preset=style_preset,
        platform=platform,
        preferred_model=preferred_model,
        max_images=max_images,
        concurrency=concurrency,
    )

    click.echo(f"🖼️  Synthesizing images for {len(screens)} screen(s)...")

    pipeline = ImageSynthesisPipeline(
        cache=JsonFileImageCache(cache_path) if cache_path else None,
        use_planner=not no_planner,
    )
    result = asyncio.run(pipeline.synthesize(screens, options))

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    for path, screen in zip(html_files, result.screens):
        target = out / Path(path).name
        target.write_text(screen.html, encoding="utf-8")
        click.echo(f"✅ Wrote {target}")

    click.echo(json.dumps(result.stats.model_dump(by_alias=True), indent=2))


@images_group.command(name="inspect")
@click.argument("html_files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--app-prompt", required=True, help="Prompt the screens were generated from")
@click.option("--style", "style_preset", type=click.Choice(STYLE_PRESETS), default="modern", show_default=True)
@click.option("--platform", type=click.Choice(PLATFORMS), default="mobile", show_default=True)
def inspect_command(html_files: Tuple[str, ...], app_prompt: str, style_preset: str, platform: str):
    """
    List the image slots found in HTML screens, without generating anything.

    Example:
        mockforge images inspect home.html --app-prompt "pet adoption app"
    """
    screens = _load_screens(html_files)
    context = SlotContext(app_prompt=app_prompt, style_preset=style_preset, platform=platform)
    slots = extract_image_slots(screens, context)
    intents = collect_unique_intents(slots)

    for slot in slots:
        flag = "gen " if slot.generate else "keep"
        click.echo(
            f"{slot.slot_id:<8} {slot.aspect:<5} {flag} {slot.intent_key[:10]}  "
            f"{slot.screen_name}: {slot.alt or '(no alt)'}"
        )

    click.echo(f"\n📊 {len(slots)} slots, {len(intents)} unique intents")


@images_group.command(name="cache-stats")
@click.option("--cache-path", type=click.Path(dir_okay=False), help="Image cache file")
@click.option("--top", type=int, default=5, show_default=True, help="Most-used entries to show")
def cache_stats_command(cache_path: Optional[str], top: int):
    """
    Show what the image cache holds.

    Example:
        mockforge images cache-stats --top 10
    """
    cache = JsonFileImageCache(cache_path)
    cache.load()

    entries = cache.items
    total_uses = sum(entry.uses for entry in entries.values())
    click.echo(f"📦 {cache.path}")
    click.echo(f"   Entries:    {len(entries)}")
    click.echo(f"   Total uses: {total_uses}")

    if not entries:
        return

    click.echo(f"\nTop {min(top, len(entries))} by uses:")
    ranked = sorted(entries.items(), key=lambda item: item[1].uses, reverse=True)
    for key, entry in ranked[:top]:
        prompt = entry.prompt if len(entry.prompt) <= 60 else entry.prompt[:57] + "..."
        click.echo(f"  {entry.uses:>4}x  {key[:10]}  {entry.created_at[:19]}  {prompt}")
