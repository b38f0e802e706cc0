from __future__ import annotations

import logging
import math
from collections.abc import Hashable

from .errors import TransientConflict
from .store import PositionStore

logger = logging.getLogger(__name__)

DEFAULT_SPACING = 1000.0


class Rebalancer:
    """
    Re-key every placed item of a container to 0, spacing, 2*spacing, ...

    Relative order is preserved; only key values change. The rewrite is one
    store transaction conditioned on the keys that were read, so a concurrent
    move makes it fail with `TransientConflict` and leaves the container as it
    was.
    """

    def __init__(self, store: PositionStore, spacing: float = DEFAULT_SPACING) -> None:
        if not (math.isfinite(spacing) and spacing > 0):
            raise ValueError(f"spacing must be a positive finite number, got {spacing!r}")
        self.store = store
        self.spacing = float(spacing)

    def plan(self, ordered: list[tuple[Hashable, object]]) -> dict[Hashable, float]:
        return {item_id: i * self.spacing for i, (item_id, _key) in enumerate(ordered)}

    def rebalance(self, container_id: Hashable) -> dict[Hashable, float]:
        ordered = self.store.read_all_ordered(container_id)
        current = {item_id: key.value for item_id, key in ordered}
        new_keys = self.plan(ordered)
        try:
            self.store.rewrite_container(container_id, new_keys, expected=current)
        except TransientConflict:
            logger.warning("Rebalance of container=%s lost a race; keys left unchanged", container_id)
            raise
        logger.info("Rebalanced container=%s items=%d spacing=%s", container_id, len(new_keys), self.spacing)
        return new_keys
