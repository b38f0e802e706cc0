#!/usr/bin/env python
"""
Board position maintenance.

Reports how much room is left between adjacent card positions and optionally
re-keys a board to even spacing (0, 1000, 2000, ...). Relative order is never
changed.

Usage:
    # Report gaps and ties (dry run)
    python scripts/rebalance_board.py --board=12

    # Re-key the board
    python scripts/rebalance_board.py --board=12 --rebalance

Environment:
    DATABASE_URL: database connection string
    POSITION_SPACING: spacing used by --rebalance (default 1000)
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.boards import create_app
from app.boards.audit import record_event
from app.boards.db import session_scope
from app.boards.modules.cards.service import ordering_service
from app.boards.modules.positioning import PositioningError


def report(app, board_id: int) -> int:
    svc = ordering_service(app)
    items = list(svc.ordered_items(board_id))
    if not items:
        print(f"Board {board_id}: no placed cards.")
        return 0

    ties = 0
    smallest_gap = None
    for prev, cur in zip(items, items[1:]):
        gap = cur.position.value - prev.position.value
        if gap <= 0:
            ties += 1
            print(f"  TIE: card {prev.item_id} and card {cur.item_id} share position {cur.position.value!r}")
        elif smallest_gap is None or gap < smallest_gap:
            smallest_gap = gap

    print(f"Board {board_id}: {len(items)} cards, "
          f"range [{items[0].position.value!r}, {items[-1].position.value!r}], "
          f"smallest gap {smallest_gap!r}, ties {ties}")
    return ties


def rebalance(app, board_id: int) -> None:
    svc = ordering_service(app)
    new_keys = svc.rebalancer.rebalance(board_id)
    with session_scope(app) as s:
        record_event(
            s,
            actor=None,
            action="board.rebalance",
            entity_type="Board",
            entity_id=str(board_id),
            reason="manual rebalance",
            metadata={"cards": len(new_keys), "spacing": svc.rebalancer.spacing},
        )
    print(f"Board {board_id}: re-keyed {len(new_keys)} cards.")


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect or rebalance card positions on a board")
    parser.add_argument("--board", type=int, required=True, help="Board id")
    parser.add_argument("--rebalance", action="store_true", help="Re-key the board with even spacing")
    args = parser.parse_args()

    app = create_app()
    ties = report(app, args.board)
    if args.rebalance:
        try:
            rebalance(app, args.board)
        except PositioningError as e:
            print(f"Rebalance failed: {e}", file=sys.stderr)
            return 1
        report(app, args.board)
        return 0
    return 1 if ties else 0


if __name__ == "__main__":
    sys.exit(main())
