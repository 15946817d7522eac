"""HTML rewrite step: put resolved sources back into the screens' <img> tags."""

import logging
import re
from typing import Dict, List, Optional

from .models import ImageSlot
from .slots import IMG_TAG_RE, fingerprint_tag

logger = logging.getLogger(__name__)

_ATTR_VALUE = r'("[^"]*"|\'[^\']*\'|[^\s>]+)'
_SRCSET_RE = re.compile(r'\s+srcset\s*=\s*' + _ATTR_VALUE, re.IGNORECASE)
# src must not be the tail of another attribute name (data-src, srcset)
_SRC_RE = re.compile(r'(?<![\w-])src\s*=\s*' + _ATTR_VALUE, re.IGNORECASE)
_IMG_OPEN_RE = re.compile(r'<img\b', re.IGNORECASE)


def replace_img_src(tag: str, new_src: str) -> str:
    """Set src on an <img> tag (adding it if absent) and drop srcset."""
    safe = new_src.replace('"', '&quot;')
    updated = _SRCSET_RE.sub('', tag)
    replacement = f'src="{safe}"'
    if _SRC_RE.search(updated):
        return _SRC_RE.sub(lambda _: replacement, updated, count=1)
    return _IMG_OPEN_RE.sub(lambda _: f'<img {replacement}', updated, count=1)


def rewrite_screen_html(
    html: str,
    replacements: Dict[int, str],
    slots: Optional[List[ImageSlot]] = None,
) -> str:
    """
    Rewrite the img_index-th <img> tag of ``html`` with ``replacements[img_index]``.

    Tags are matched by position, so ``html`` must be the same markup the
    slots were extracted from. When ``slots`` is given, each tag's
    fingerprint is compared with its slot first; a mismatching tag is left
    as-is instead of receiving another slot's image.
    """
    by_index = {slot.img_index: slot for slot in slots or []}
    img_index = 0

    def _swap(match: "re.Match[str]") -> str:
        nonlocal img_index
        index = img_index
        img_index += 1

        tag = match.group(0)
        new_src = replacements.get(index)
        if not new_src:
            return tag

        slot = by_index.get(index)
        if slot is not None and slot.tag_fingerprint and slot.tag_fingerprint != fingerprint_tag(tag):
            logger.warning(
                f"<img> #{index} in screen '{slot.screen_name}' no longer matches slot "
                f"{slot.slot_id}, leaving it unchanged"
            )
            return tag

        return replace_img_src(tag, new_src)

    return IMG_TAG_RE.sub(_swap, html)
