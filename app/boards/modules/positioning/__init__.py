"""
Positioning engine (fractional indexing).

Cards on a board are ordered by a float key plus the card id as a tie-break.
Inserting between two cards only computes the midpoint of their keys; when the
float gap is used up, the whole board is re-keyed with even spacing.
"""
from .allocator import Allocator, between
from .errors import InvalidReference, PositioningError, PrecisionExhausted, StoreUnavailable, TransientConflict
from .keys import OrderedItem, PositionKey, StoredKey
from .rebalancer import Rebalancer
from .service import MoveResult, MoveState, OrderedCollectionService
from .store import InMemoryPositionStore, PositionStore, SqlPositionStore

__all__ = [
    "Allocator",
    "InMemoryPositionStore",
    "InvalidReference",
    "MoveResult",
    "MoveState",
    "OrderedCollectionService",
    "OrderedItem",
    "PositionKey",
    "PositionStore",
    "PositioningError",
    "PrecisionExhausted",
    "Rebalancer",
    "SqlPositionStore",
    "StoreUnavailable",
    "StoredKey",
    "TransientConflict",
    "between",
]
