"""
Persistent image cache keyed by intent.

The pipeline talks to an ImageCache with an explicit lifecycle: ``load()``
once at the start of a synthesis call, ``get``/``touch``/``put`` while
resolving intents, ``flush()`` once at the end. JsonFileImageCache keeps the
whole cache in one JSON document and rewrites it atomically on flush.

Document shape::

    {"version": 1, "items": {"<intentKey>": {"src", "createdAt", "uses", "prompt"}}}
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import ValidationError

from ...core.config import Config
from .models import CACHE_VERSION, CacheEntry, ImageCacheDocument

logger = logging.getLogger(__name__)


class ImageCache(ABC):
    """Intent key -> generated image store."""

    @abstractmethod
    def load(self) -> None:
        """Read persisted state. Called once per synthesis call."""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def put(self, key: str, entry: CacheEntry) -> None:
        pass

    @abstractmethod
    def flush(self) -> None:
        """Persist state. Called once per synthesis call."""

    def touch(self, key: str) -> Optional[CacheEntry]:
        """Count one more use of an entry and return it (None on miss)."""
        entry = self.get(key)
        if entry is None or not entry.src:
            return None
        entry.uses = (entry.uses or 0) + 1
        return entry


class JsonFileImageCache(ImageCache):
    """
    Single-document JSON cache.

    A missing, empty or malformed file loads as an empty cache. Entries that
    fail validation are dropped individually. Writes go to ``<path>.tmp`` and
    are renamed over the target. Filesystem errors on load or flush are
    logged and never raised. One writer at a time is assumed.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path or Config.IMAGE_CACHE_PATH)
        self._items: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> Dict[str, CacheEntry]:
        return self._items

    def _ensure_dir(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _remove_tmp(self, tmp_path: Path) -> None:
        try:
            if tmp_path.is_file():
                tmp_path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove partial cache file {tmp_path}: {e}")

    def load(self) -> None:
        self._items = {}
        try:
            self._ensure_dir()
        except OSError as e:
            logger.warning(f"Could not create image cache directory for {self.path}: {e}")
            return

        if not self.path.exists():
            logger.debug(f"No image cache at {self.path}, starting empty")
            return

        try:
            raw = self.path.read_text(encoding="utf-8")
            parsed = json.loads(raw) if raw.strip() else {}
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read image cache {self.path}: {e}")
            return

        if not isinstance(parsed, dict) or not isinstance(parsed.get("items"), dict):
            logger.warning(f"Ignoring malformed image cache {self.path}")
            return

        for key, value in parsed["items"].items():
            try:
                entry = CacheEntry.model_validate(value)
            except ValidationError:
                logger.warning(f"Dropping invalid cache entry {key[:12]}")
                continue
            if entry.src:
                self._items[key] = entry

        logger.info(f"Loaded {len(self._items)} cached images from {self.path}")

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._items.get(key)

    def put(self, key: str, entry: CacheEntry) -> None:
        if key in self._items:
            # Entries are written once; later hits only bump `uses`
            logger.debug(f"Cache entry {key[:12]} already present, keeping original")
            return
        self._items[key] = entry

    def flush(self) -> None:
        document = ImageCacheDocument(version=CACHE_VERSION, items=self._items)
        payload = json.dumps(document.model_dump(by_alias=True), indent=2)
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        try:
            self._ensure_dir()
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning(f"Could not write image cache {self.path}: {e}")
            self._remove_tmp(tmp_path)
            return
        logger.debug(f"Flushed {len(self._items)} cached images to {self.path}")
