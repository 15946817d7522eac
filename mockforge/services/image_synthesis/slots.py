"""Image slot extraction, intent hashing and default prompt building.

Every <img> tag in a screen becomes an ImageSlot. Slots that describe the
same visual need (same alt text or source, same aspect bucket, same app
context) share an intent key, which is what the scheduler and the cache
operate on.
"""

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence
from urllib.parse import parse_qs, urlparse

from .models import ImageSlot, InputScreen, SlotContext

logger = logging.getLogger(__name__)

IMG_TAG_RE = re.compile(r'<img\b[^>]*>', re.IGNORECASE)

# name, then an optional double-quoted, single-quoted or bare value
_ATTR_RE = re.compile(
    r'([^\s=/>]+)'
    r'(?:\s*=\s*(?:"([^"]*)"|\'([^\']*)\'|([^\s"\'>]+)))?'
)
_ASPECT_CLASS_RE = re.compile(r'aspect-\[(\d+)/(\d+)\]', re.IGNORECASE)
_PROTOCOL_RE = re.compile(r'https?://')
_NON_ALNUM_RE = re.compile(r'[^a-z0-9]+')
_WHITESPACE_RE = re.compile(r'\s+')

APP_SIGNATURE_WORDS = 10
SRC_BASIS_LIMIT = 80
GENERIC_BASIS = "generic image"

# (minimum ratio, bucket), checked top to bottom
ASPECT_BUCKETS = [
    (1.7, "16:9"),
    (1.3, "4:3"),
    (1.1, "3:2"),
    (0.9, "1:1"),
    (0.72, "4:5"),
]
TALL_ASPECT = "9:16"
DEFAULT_ASPECT = "1:1"

EMBEDDED_SRC_PREFIXES = ("data:image/", "blob:")


def normalize_text(text: Optional[str]) -> str:
    """Lower-case, drop protocols and punctuation, collapse whitespace."""
    lowered = (text or "").lower()
    lowered = _PROTOCOL_RE.sub(" ", lowered)
    lowered = _NON_ALNUM_RE.sub(" ", lowered).strip()
    return _WHITESPACE_RE.sub(" ", lowered)


def get_app_signature(app_prompt: str) -> str:
    """First ten normalized words of the app prompt."""
    normalized = normalize_text(app_prompt)
    if not normalized:
        return ""
    return " ".join(normalized.split(" ")[:APP_SIGNATURE_WORDS])


def parse_tag_attributes(tag: str) -> Dict[str, str]:
    """Parse an <img ...> tag into a lower-cased attribute map.

    Valueless (boolean) attributes are ignored; the last occurrence of a
    repeated attribute wins.
    """
    attrs: Dict[str, str] = {}
    body = re.sub(r'^<img\b', '', tag, flags=re.IGNORECASE)
    for match in _ATTR_RE.finditer(body):
        name = match.group(1).lower()
        if not name or name == "img":
            continue
        if match.group(2) is None and match.group(3) is None and match.group(4) is None:
            continue
        attrs[name] = next(g for g in match.group(2, 3, 4) if g is not None)
    return attrs


def aspect_from_ratio(ratio: float) -> str:
    """Map a width/height ratio to its aspect bucket."""
    if not math.isfinite(ratio) or ratio <= 0:
        return DEFAULT_ASPECT
    for minimum, bucket in ASPECT_BUCKETS:
        if ratio >= minimum:
            return bucket
    return TALL_ASPECT


def _positive_number(raw: Optional[str]) -> Optional[float]:
    try:
        value = float((raw or "").strip())
    except ValueError:
        return None
    if math.isnan(value) or value <= 0:
        return None
    return value


def _ratio(width: Optional[str], height: Optional[str]) -> Optional[float]:
    w = _positive_number(width)
    h = _positive_number(height)
    if w is None or h is None:
        return None
    return w / h


def _ratio_from_src(src: str) -> Optional[float]:
    # placeholder hosts like https://[IMAGE_URL]/x.png do not parse
    try:
        parsed = urlparse(src)
        if not parsed.scheme or not parsed.netloc:
            return None
        query = parse_qs(parsed.query)
    except ValueError:
        return None
    return _ratio(query.get("w", [""])[0], query.get("h", [""])[0])


def parse_aspect(attrs: Dict[str, str]) -> str:
    """Derive the aspect bucket for a tag.

    Precedence: width/height attributes, then w/h query parameters on an
    absolute src URL, then a Tailwind ``aspect-[W/H]`` class, then 1:1.
    """
    ratio = _ratio(attrs.get("width"), attrs.get("height"))
    if ratio is not None:
        return aspect_from_ratio(ratio)

    ratio = _ratio_from_src(attrs.get("src", ""))
    if ratio is not None:
        return aspect_from_ratio(ratio)

    match = _ASPECT_CLASS_RE.search(attrs.get("class", ""))
    if match:
        ratio = _ratio(match.group(1), match.group(2))
        if ratio is not None:
            return aspect_from_ratio(ratio)

    return DEFAULT_ASPECT


def should_generate(src: str) -> bool:
    """False when the tag already embeds real image content."""
    return not (src or "").strip().startswith(EMBEDDED_SRC_PREFIXES)


def build_image_prompt(alt: str, style_preset: str) -> str:
    subject = (alt or "").strip() or "portrait scene"
    style = style_preset or "modern"
    return (
        f"{subject}, {style} visual style, soft natural lighting, clean composition, "
        f"high detail, high-resolution, no text, no watermark, no logos."
    )


def fingerprint_tag(tag: str) -> str:
    return hashlib.sha1(tag.encode("utf-8")).hexdigest()


# ============================================================================
# Intent hashing
# ============================================================================

class IntentHasher(ABC):
    """Reduces a slot to the key used for deduplication and caching."""

    @abstractmethod
    def intent_key(self, slot: ImageSlot, context: SlotContext) -> str:
        pass


class TextIntentHasher(IntentHasher):
    """
    Coarse textual intent: app signature, style, platform, alt-or-src basis
    and aspect bucket, SHA1-hashed.

    Two tags with the same alt text and aspect in the same app context are
    treated as the same visual need even when their placeholder URLs differ.
    """

    def __init__(self):
        self._signatures: Dict[str, str] = {}

    def _app_signature(self, app_prompt: str) -> str:
        if app_prompt not in self._signatures:
            self._signatures[app_prompt] = get_app_signature(app_prompt)
        return self._signatures[app_prompt]

    def intent_key(self, slot: ImageSlot, context: SlotContext) -> str:
        basis = (
            normalize_text(slot.alt)
            or normalize_text(slot.src)[:SRC_BASIS_LIMIT]
            or GENERIC_BASIS
        )
        joined = "|".join([
            self._app_signature(context.app_prompt),
            context.style_preset,
            context.platform,
            basis,
            slot.aspect,
        ])
        return hashlib.sha1(joined.encode("utf-8")).hexdigest()


# ============================================================================
# Extraction
# ============================================================================

def extract_image_slots(
    screens: Sequence[InputScreen],
    context: SlotContext,
    hasher: Optional[IntentHasher] = None,
) -> List[ImageSlot]:
    """Emit one ImageSlot per <img> tag, screens and tags in document order."""
    hasher = hasher or TextIntentHasher()
    slots: List[ImageSlot] = []

    for screen_index, screen in enumerate(screens):
        for img_index, match in enumerate(IMG_TAG_RE.finditer(screen.html)):
            tag = match.group(0)
            attrs = parse_tag_attributes(tag)
            src = attrs.get("src", "")
            alt = attrs.get("alt", "")

            slot = ImageSlot(
                slot_id=f"{screen_index}:{img_index}",
                screen_index=screen_index,
                img_index=img_index,
                screen_name=screen.name,
                src=src,
                alt=alt,
                aspect=parse_aspect(attrs),
                intent_key="",
                prompt=build_image_prompt(alt, context.style_preset),
                generate=should_generate(src),
                tag_fingerprint=fingerprint_tag(tag),
            )
            slot.intent_key = hasher.intent_key(slot, context)
            slots.append(slot)

    logger.debug(f"Extracted {len(slots)} image slots from {len(screens)} screens")
    return slots
