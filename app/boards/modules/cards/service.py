"""
Cards service layer.
Handles board/card CRUD, closure records, and card placement through the ordering engine.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from flask import Flask, current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.boards.audit import record_event
from app.boards.modules.positioning import MoveResult, OrderedCollectionService, SqlPositionStore

from .models import Board, Card, CardClosure

if TYPE_CHECKING:
    from app.boards.models import User

logger = logging.getLogger(__name__)

PLACEMENTS = ("top", "bottom", "before", "after")


def init_ordering(app: Flask) -> OrderedCollectionService:
    store = SqlPositionStore(app.extensions["sqlalchemy_sessionmaker"], Card, container_column="board_id")
    svc = OrderedCollectionService.from_config(store, app.config)
    app.extensions["ordering_service"] = svc
    return svc


def ordering_service(app: Flask | None = None) -> OrderedCollectionService:
    app = app or current_app
    return app.extensions["ordering_service"]


def validate_card_payload(payload: dict) -> list[str]:
    """Validate card creation payload. Returns list of errors."""
    errors = []
    title = (payload.get("title") or "").strip()
    if not title:
        errors.append("Title is required.")
    elif len(title) > 255:
        errors.append("Title must be at most 255 characters.")
    placement = (payload.get("placement") or "bottom").strip()
    if placement not in PLACEMENTS:
        errors.append(f"Invalid placement. Must be one of: {', '.join(PLACEMENTS)}")
    elif placement in ("before", "after") and payload.get("ref_card_id") is None:
        errors.append(f"ref_card_id is required for placement '{placement}'.")
    return errors


def create_board(s: Session, name: str, user: "User | None" = None) -> Board:
    board = Board(name=name.strip())
    s.add(board)
    s.flush()
    record_event(s, actor=user, action="board.create", entity_type="Board", entity_id=str(board.id),
                 metadata={"name": board.name})
    return board


def create_card(
    s: Session,
    board: Board,
    title: str,
    *,
    description: str | None = None,
    user: "User | None" = None,
) -> Card:
    """Create an unplaced card. Commit, then `place_card` to give it a position."""
    now = datetime.utcnow()
    card = Card(
        board_id=board.id,
        title=title.strip(),
        description=(description or "").strip() or None,
        position=None,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id if user else None,
    )
    s.add(card)
    s.flush()
    record_event(s, actor=user, action="card.create", entity_type="Card", entity_id=str(card.id),
                 metadata={"board_id": board.id, "title": card.title})
    return card


def place_card(
    s: Session,
    card: Card,
    ordering: OrderedCollectionService,
    *,
    placement: str,
    ref_card_id: int | None = None,
    user: "User | None" = None,
) -> MoveResult:
    """
    Move (or first place) a card within its board.

    The position write runs in its own store transaction, so the card row must
    already be committed.
    """
    if card.id is None or card in s.new:
        raise ValueError("Card must be committed before it can be placed.")
    if placement == "top":
        result = ordering.move_to_top(card.id)
    elif placement == "bottom":
        result = ordering.move_to_bottom(card.id)
    elif placement == "before":
        result = ordering.insert_before(card.id, ref_card_id)
    elif placement == "after":
        result = ordering.insert_after(card.id, ref_card_id)
    else:
        raise ValueError(f"Unknown placement {placement!r}")

    _record_move(s, card, result, user, placement=placement, ref_card_id=ref_card_id)
    return result


def move_card_to_board(
    s: Session,
    card: Card,
    board: Board,
    ordering: OrderedCollectionService,
    *,
    before: int | None = None,
    after: int | None = None,
    user: "User | None" = None,
) -> MoveResult:
    old_board_id = card.board_id
    if board.id == old_board_id:
        if before is not None:
            return place_card(s, card, ordering, placement="before", ref_card_id=before, user=user)
        if after is not None:
            return place_card(s, card, ordering, placement="after", ref_card_id=after, user=user)
        return place_card(s, card, ordering, placement="bottom", user=user)

    result = ordering.move_to_container(card.id, board.id, before=before, after=after)
    _record_move(s, card, result, user, action="card.reparent", from_board_id=old_board_id)
    return result


def _record_move(s: Session, card: Card, result: MoveResult, user: "User | None", *,
                 action: str = "card.move", **extra) -> None:
    if not result.moved:
        return
    s.refresh(card)
    card.updated_at = datetime.utcnow()
    if result.rebalanced:
        record_event(s, actor=user, action="board.rebalance", entity_type="Board",
                     entity_id=str(result.container_id), metadata={"triggered_by_card_id": card.id})
    record_event(
        s,
        actor=user,
        action=action,
        entity_type="Card",
        entity_id=str(card.id),
        metadata={"board_id": card.board_id, "position": result.value, "attempts": result.attempts, **extra},
    )


def ordered_cards(s: Session, board: Board, ordering: OrderedCollectionService) -> list[Card]:
    ids = [item.item_id for item in ordering.ordered_items(board.id)]
    if not ids:
        return []
    by_id = {c.id: c for c in s.execute(select(Card).where(Card.id.in_(ids))).scalars()}
    # A card destroyed between the two reads is skipped.
    return [by_id[i] for i in ids if i in by_id]


def rename_card(s: Session, card: Card, title: str, user: "User | None" = None) -> Card:
    """Rename a card. Never touches its position."""
    old = card.title
    card.title = title.strip()
    card.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="card.rename", entity_type="Card", entity_id=str(card.id),
                 metadata={"changes": {"title": {"old": old, "new": card.title}}})
    return card


def close_card(s: Session, card: Card, user: "User | None" = None, reason: str | None = None) -> CardClosure:
    if card.closure is not None:
        return card.closure
    closure = CardClosure(card_id=card.id, closed_by_user_id=user.id if user else None, closed_at=datetime.utcnow())
    card.closure = closure
    s.add(closure)
    record_event(s, actor=user, action="card.close", entity_type="Card", entity_id=str(card.id), reason=reason)
    return closure


def reopen_card(s: Session, card: Card, user: "User | None" = None) -> None:
    if card.closure is None:
        return
    card.closure = None
    record_event(s, actor=user, action="card.reopen", entity_type="Card", entity_id=str(card.id))


def destroy_card(s: Session, card: Card, user: "User | None" = None, reason: str | None = None) -> None:
    """Delete a card; sibling positions are left as they are."""
    record_event(
        s,
        actor=user,
        action="card.destroy",
        entity_type="Card",
        entity_id=str(card.id),
        reason=reason,
        metadata={"board_id": card.board_id, "title": card.title, "position": card.position},
    )
    s.delete(card)
    logger.info("Card destroyed id=%s board_id=%s", card.id, card.board_id)
