"""Ordered, deduplicated timeline of feed items.

The timeline keeps its items sorted by ``(createdAt, id)`` and holds at most
one entry per id. An id -> sort key index sits alongside the sorted sequence,
so finding an existing entry is a dict lookup plus a bisect instead of a scan
of the whole sequence.

Items are stored oldest first internally; every public accessor returns them
newest first, which is the display order.
"""
import logging
from bisect import bisect_left
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import ValidationError

from .errors import MalformedItem
from .schemas import Item

logger = logging.getLogger(__name__)

SortKey = Tuple[float, str]


@dataclass
class MergeResult:
    """Counts of what a merge changed.

    Attributes:
        inserted: Items whose id was not present before.
        refreshed: Existing items whose fields changed in place.
        moved: Existing items whose createdAt changed, so they were re-sorted.
    """
    inserted: int = 0
    refreshed: int = 0
    moved: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.inserted or self.refreshed or self.moved)


def to_item(raw: Any) -> Item:
    """Validate one incoming document into an Item.

    Raises:
        MalformedItem: If the document has no usable id or createdAt.
    """
    if isinstance(raw, Item):
        return raw
    try:
        return Item.model_validate(raw)
    except ValidationError as exc:
        fields = sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")})
        raise MalformedItem(f"invalid field(s) {', '.join(fields) or '?'}", raw=raw) from exc


def parse_items(batch: Iterable[Any], source: str = "batch") -> List[Item]:
    """Validate a batch, dropping malformed documents.

    One bad document never discards the rest of the batch.
    """
    items: List[Item] = []
    for raw in batch:
        try:
            items.append(to_item(raw))
        except MalformedItem as exc:
            logger.warning("[Timeline] Dropping item from %s: %s", source, exc.message)
    return items


class Timeline:
    """Sorted, id-unique sequence of feed items."""

    def __init__(self) -> None:
        # Ascending sort keys, parallel to _items
        self._keys: List[SortKey] = []
        self._items: List[Item] = []
        # id -> current sort key
        self._index: Dict[str, SortKey] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._index

    def __iter__(self) -> Iterator[Item]:
        return reversed(self._items)

    def get(self, item_id: str) -> Optional[Item]:
        key = self._index.get(item_id)
        if key is None:
            return None
        return self._items[self._position(key)]

    def items(self) -> List[Item]:
        """Return a copy of the timeline, newest first."""
        return list(reversed(self._items))

    def ids(self) -> List[str]:
        return [item.id for item in reversed(self._items)]

    def oldest(self) -> Optional[Item]:
        return self._items[0] if self._items else None

    def newest(self) -> Optional[Item]:
        return self._items[-1] if self._items else None

    def merge(self, items: Iterable[Item]) -> MergeResult:
        """Merge items by id.

        A new id is inserted at its sort position. A known id has its fields
        replaced in place; it only moves when its createdAt changed, since the
        ordering must hold after every merge. Later copies of an id win.
        """
        result = MergeResult()
        for item in items:
            key = item.sort_key
            existing_key = self._index.get(item.id)

            if existing_key is None:
                self._insert(key, item)
                result.inserted += 1
                continue

            pos = self._position(existing_key)
            if existing_key == key:
                if self._items[pos] != item:
                    self._items[pos] = item
                    result.refreshed += 1
                continue

            del self._keys[pos]
            del self._items[pos]
            self._insert(key, item)
            result.moved += 1
        return result

    def _insert(self, key: SortKey, item: Item) -> None:
        pos = bisect_left(self._keys, key)
        self._keys.insert(pos, key)
        self._items.insert(pos, item)
        self._index[item.id] = key

    def _position(self, key: SortKey) -> int:
        pos = bisect_left(self._keys, key)
        if pos >= len(self._keys) or self._keys[pos] != key:
            raise RuntimeError(f"Timeline index out of sync for key {key!r}")
        return pos
