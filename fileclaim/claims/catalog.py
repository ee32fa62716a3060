"""
Catalog: load(kv, object source, default) -> CatalogLoadResult; pick(items, *requested_ids) -> CatalogItem | None.
decode_catalog never raises: anything that is not an item list (or {"items": [...]}) is "source absent".
"""
from __future__ import annotations

import json
import logging
import random
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError

from fileclaim.claims.models import CatalogItem, CatalogLoadResult
from fileclaim.storage.kv import KeyValueStore, KeyValueStoreError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG: tuple[CatalogItem, ...] = (
    CatalogItem(id="ebook_demo", path="ebooks/demo.pdf", weight=1, active=True, category="general"),
)

WRAPPER_FIELDS = ("items", "catalog")


def decode_catalog(raw: str | bytes | None) -> tuple[CatalogItem, ...] | None:
    """
    Decode a catalog payload. None = source absent (missing, not JSON, wrong shape).
    Malformed entries inside a valid list are skipped.
    """
    if raw is None:
        return None
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None

    entries = _unwrap(parsed)
    if entries is None:
        return None

    items: list[CatalogItem] = []
    for index, entry in enumerate(entries):
        try:
            items.append(CatalogItem.model_validate(entry))
        except ValidationError as e:
            logger.warning(
                "catalog_entry_skipped",
                extra={"count": index, "error": e.errors(include_url=False)[0].get("msg")},
            )
    return tuple(items)


def _unwrap(parsed: Any) -> list | None:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for field in WRAPPER_FIELDS:
            value = parsed.get(field)
            if isinstance(value, list):
                return value
    return None


class CatalogSelector:
    def __init__(
        self,
        kv: KeyValueStore,
        kv_key: str = "CATALOG_JSON",
        catalog_file: str | None = None,
        rng: random.Random | None = None,
        default: Sequence[CatalogItem] = DEFAULT_CATALOG,
    ) -> None:
        self.kv = kv
        self.kv_key = kv_key
        self.catalog_file = catalog_file
        self.rng = rng or random.SystemRandom()
        self.default = tuple(default)

    def load(self) -> CatalogLoadResult:
        """Primary (KV) -> secondary (file) -> built-in default."""
        items = decode_catalog(self._read_kv())
        if items is not None:
            return CatalogLoadResult(items=items, source="kv")

        items = decode_catalog(self._read_file())
        if items is not None:
            return CatalogLoadResult(items=items, source="file")

        logger.info("catalog_default_used")
        return CatalogLoadResult(items=self.default, source="default")

    def _read_kv(self) -> str | None:
        try:
            return self.kv.get(self.kv_key)
        except KeyValueStoreError as e:
            logger.warning("catalog_kv_unavailable", extra={"error": str(e)})
            return None

    def _read_file(self) -> str | None:
        if not self.catalog_file:
            return None
        try:
            return Path(self.catalog_file).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("catalog_file_unreadable", extra={"path": self.catalog_file, "error": str(e)})
            return None

    def pick(self, items: Sequence[CatalogItem], *requested_ids: str | None) -> CatalogItem | None:
        """First active item matching a requested id, in order; else a weighted choice."""
        active = [item for item in items if item.active]
        if not active:
            return None

        by_id = {item.id.strip().lower(): item for item in reversed(active)}
        for requested_id in requested_ids:
            if requested_id and requested_id.strip():
                item = by_id.get(requested_id.strip().lower())
                if item is not None:
                    return item

        return weighted_pick(active, self.rng)


def weighted_pick(active: Sequence[CatalogItem], rng: random.Random) -> CatalogItem:
    """P(item) = weight / total. All-zero weights fall back to the first item."""
    total = sum(item.weight for item in active)
    if total <= 0:
        return active[0]
    remainder = rng.random() * total
    candidates = [item for item in active if item.weight > 0]
    for item in candidates:
        remainder -= item.weight
        if remainder <= 0:
            return item
    # float rounding can leave a tiny positive remainder
    return candidates[-1]
