"""
Ordered collection service.

Implements moves on top of Allocator + Rebalancer + PositionStore:

    Requested -> NeighborsRead -> KeyComputed -> Committed
    Requested -> NeighborsRead -> RebalanceRequired -> Rebalanced -> KeyComputed -> Committed

Any step may end in Failed. A lost race (`TransientConflict`) re-runs the
whole move from a fresh read, with jittered exponential backoff, up to
`max_attempts` times.
"""
from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Hashable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .allocator import Allocator
from .errors import InvalidReference, PositioningError, PrecisionExhausted, TransientConflict
from .keys import OrderedItem, PositionKey
from .rebalancer import DEFAULT_SPACING, Rebalancer
from .store import Direction, PositionStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_BASE = 0.01
DEFAULT_BACKOFF_MAX = 0.5


class MoveState(str, Enum):
    REQUESTED = "requested"
    NEIGHBORS_READ = "neighbors_read"
    REBALANCE_REQUIRED = "rebalance_required"
    REBALANCED = "rebalanced"
    KEY_COMPUTED = "key_computed"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass(frozen=True)
class MoveResult:
    item_id: Hashable
    container_id: Hashable
    value: float
    moved: bool = True
    rebalanced: bool = False
    attempts: int = 1


class OrderedCollectionService:
    def __init__(
        self,
        store: PositionStore,
        *,
        allocator: Allocator | None = None,
        rebalancer: Rebalancer | None = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.store = store
        self.allocator = allocator or Allocator()
        self.rebalancer = rebalancer or Rebalancer(store, DEFAULT_SPACING)
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep

    @classmethod
    def from_config(cls, store: PositionStore, config: Mapping[str, Any], **kwargs: Any) -> "OrderedCollectionService":
        return cls(
            store,
            allocator=Allocator(
                step=float(config.get("POSITION_STEP", 1.0)),
                min_gap=float(config.get("POSITION_MIN_GAP", 0.0)),
            ),
            rebalancer=Rebalancer(store, float(config.get("POSITION_SPACING", DEFAULT_SPACING))),
            max_attempts=int(config.get("MOVE_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)),
            backoff_base=float(config.get("MOVE_BACKOFF_BASE_SECONDS", DEFAULT_BACKOFF_BASE)),
            backoff_max=float(config.get("MOVE_BACKOFF_MAX_SECONDS", DEFAULT_BACKOFF_MAX)),
            **kwargs,
        )

    # -----------------------------
    # Public operations
    # -----------------------------

    def insert_before(self, item_id: Hashable, ref_item_id: Hashable) -> MoveResult:
        if ref_item_id == item_id:
            return self._unchanged(item_id)
        return self._run(item_id, ref_item_id, "before")

    def insert_after(self, item_id: Hashable, ref_item_id: Hashable) -> MoveResult:
        if ref_item_id == item_id:
            return self._unchanged(item_id)
        return self._run(item_id, ref_item_id, "after")

    def move_to_top(self, item_id: Hashable) -> MoveResult:
        return self._run(item_id, None, "before")

    def move_to_bottom(self, item_id: Hashable) -> MoveResult:
        return self._run(item_id, None, "after")

    def move_to_container(
        self,
        item_id: Hashable,
        container_id: Hashable,
        *,
        before: Hashable | None = None,
        after: Hashable | None = None,
    ) -> MoveResult:
        """Reparent an item; lands at the bottom of the target unless `before`/`after` is given."""
        if before is not None and after is not None:
            raise ValueError("Pass at most one of before/after")
        if item_id in (before, after):
            raise InvalidReference("An item cannot be placed relative to itself in another container")
        if before is not None:
            return self._run(item_id, before, "before", container_id)
        return self._run(item_id, after, "after", container_id)

    def ordered_items(self, container_id: Hashable) -> Iterator[OrderedItem]:
        """Lazy snapshot of the container; each call reads afresh."""
        for item_id, key in self.store.read_all_ordered(container_id):
            yield OrderedItem(item_id=item_id, container_id=container_id, position=key)

    # -----------------------------
    # Move state machine
    # -----------------------------

    def _unchanged(self, item_id: Hashable) -> MoveResult:
        stored = self.store.get_key(item_id)
        if stored.key is None:
            raise InvalidReference(f"Item {item_id!r} cannot be placed relative to itself")
        return MoveResult(item_id, stored.container_id, stored.key.value, moved=False, attempts=0)

    def _run(
        self,
        item_id: Hashable,
        ref_item_id: Hashable | None,
        direction: Direction,
        container_id: Hashable | None = None,
    ) -> MoveResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._attempt(item_id, ref_item_id, direction, container_id, attempt)
            except TransientConflict as e:
                if attempt >= self.max_attempts:
                    logger.error("Move item=%s gave up after %d attempts: %s", item_id, attempt, e)
                    raise
                delay = self._backoff(attempt)
                logger.warning("Move item=%s conflicted (attempt %d/%d), retrying in %.3fs: %s",
                               item_id, attempt, self.max_attempts, delay, e)
                self._sleep(delay)

    def _backoff(self, attempt: int) -> float:
        ceiling = min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))
        return random.uniform(ceiling / 2, ceiling)

    def _attempt(
        self,
        item_id: Hashable,
        ref_item_id: Hashable | None,
        direction: Direction,
        container_id: Hashable | None,
        attempt: int,
    ) -> MoveResult:
        state = MoveState.REQUESTED
        try:
            current = self.store.get_key(item_id)
            target = current.container_id if container_id is None else container_id
            if ref_item_id is not None:
                ref = self.store.get_key(ref_item_id)
                if ref.container_id != target or ref.key is None:
                    raise InvalidReference(f"Item {ref_item_id!r} is not placed in container {target!r}")

            lower, upper = self.store.read_neighbors(target, ref_item_id, direction, exclude=item_id)
            state = self._step(item_id, state, MoveState.NEIGHBORS_READ)

            if target == current.container_id and _sits_between(current.key, lower, upper):
                return MoveResult(item_id, target, current.key.value, moved=False, attempts=attempt)

            rebalanced = False
            try:
                value = self.allocator.between(lower, upper)
            except PrecisionExhausted as e:
                state = self._step(item_id, state, MoveState.REBALANCE_REQUIRED)
                logger.info("Precision exhausted in container=%s (%s); rebalancing", target, e)
                self.rebalancer.rebalance(target)
                rebalanced = True
                state = self._step(item_id, state, MoveState.REBALANCED)
                current = self.store.get_key(item_id)
                lower, upper = self.store.read_neighbors(target, ref_item_id, direction, exclude=item_id)
                value = self.allocator.between(lower, upper)
            state = self._step(item_id, state, MoveState.KEY_COMPUTED)

            self.store.write_key(item_id, value, current, container_id=target, lower=lower, upper=upper)
            self._step(item_id, state, MoveState.COMMITTED)
            return MoveResult(item_id, target, value, rebalanced=rebalanced, attempts=attempt)
        except PositioningError:
            self._step(item_id, state, MoveState.FAILED)
            raise

    def _step(self, item_id: Hashable, old: MoveState, new: MoveState) -> MoveState:
        logger.debug("Move item=%s: %s -> %s", item_id, old.value, new.value)
        return new


def _sits_between(key: PositionKey | None, lower: PositionKey | None, upper: PositionKey | None) -> bool:
    if key is None:
        return False
    if lower is not None and not lower.value < key.value:
        return False
    if upper is not None and not key.value < upper.value:
        return False
    return True


def ordered_ids(service: OrderedCollectionService, container_id: Hashable) -> list[Hashable]:
    return [item.item_id for item in service.ordered_items(container_id)]


__all__ = [
    "MoveResult",
    "MoveState",
    "OrderedCollectionService",
    "ordered_ids",
]
