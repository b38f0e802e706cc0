from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Hashable


@dataclass(frozen=True, order=True)
class PositionKey:
    """
    Ordering key of an item inside its container.

    Compares by `value` first; `tie_break` (the item id) only decides when two
    values are equal, which keeps the order total even if a tie slips through.
    """

    value: float
    tie_break: Hashable


@dataclass(frozen=True)
class StoredKey:
    container_id: Hashable
    key: PositionKey | None  # None while the item is unplaced


@dataclass(frozen=True)
class OrderedItem:
    item_id: Hashable
    container_id: Hashable
    position: PositionKey
