from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request

from app.boards.db import db_session
from app.boards.models import User
from app.boards.modules.positioning import (
    InvalidReference,
    PositioningError,
    PrecisionExhausted,
    StoreUnavailable,
    TransientConflict,
)

from .models import Board, Card, Closed
from .service import (
    PLACEMENTS,
    close_card,
    create_board,
    create_card,
    destroy_card,
    move_card_to_board,
    ordered_cards,
    ordering_service,
    place_card,
    rename_card,
    reopen_card,
    validate_card_payload,
)

bp = Blueprint("cards", __name__)


def _actor(data: dict) -> User | None:
    raw = data.get("user_id") or request.headers.get("X-User-Id")
    if not raw:
        return None
    try:
        return db_session().get(User, int(raw))
    except (TypeError, ValueError):
        abort(400)


def _id_param(data: dict, key: str) -> int | None:
    """Optional integer id from the JSON body; anything else is a 400."""
    raw = data.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool):
        abort(400)
    try:
        return int(raw)
    except (TypeError, ValueError):
        abort(400)


def _get_or_404(model, ident):
    obj = db_session().get(model, ident)
    if obj is None:
        abort(404)
    return obj


def _card_json(card: Card) -> dict:
    state = card.state
    return {
        "id": card.id,
        "board_id": card.board_id,
        "title": card.title,
        "position": card.position,
        "closed": isinstance(state, Closed),
        "closed_at": state.at.isoformat() if isinstance(state, Closed) else None,
    }


@bp.errorhandler(InvalidReference)
def _invalid_reference(e):
    return jsonify({"error": "invalid_reference", "message": str(e)}), 404


@bp.errorhandler(TransientConflict)
def _conflict(e):
    return jsonify({"error": "conflict", "message": str(e), "retryable": True}), 409


@bp.errorhandler(PrecisionExhausted)
def _exhausted(e):
    return jsonify({"error": "precision_exhausted", "message": str(e), "retryable": True}), 409


@bp.errorhandler(StoreUnavailable)
def _unavailable(e):
    current_app.logger.error("Position store unavailable: %s", e)
    return jsonify({"error": "store_unavailable"}), 503


@bp.post("/boards")
def boards_create():
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name is required"}), 400
    s = db_session()
    board = create_board(s, name, user=_actor(data))
    s.commit()
    return jsonify({"id": board.id, "name": board.name}), 201


@bp.get("/boards/<int:board_id>/cards")
def boards_cards(board_id: int):
    s = db_session()
    board = _get_or_404(Board, board_id)
    cards = ordered_cards(s, board, ordering_service())
    return jsonify({"board_id": board.id, "cards": [_card_json(c) for c in cards]})


@bp.post("/boards/<int:board_id>/cards")
def cards_create(board_id: int):
    data = request.get_json(silent=True) or {}
    errors = validate_card_payload(data)
    if errors:
        return jsonify({"errors": errors}), 400
    ref_card_id = _id_param(data, "ref_card_id")
    s = db_session()
    board = _get_or_404(Board, board_id)
    user = _actor(data)
    card = create_card(s, board, data["title"], description=data.get("description"), user=user)
    s.commit()

    try:
        place_card(
            s,
            card,
            ordering_service(),
            placement=(data.get("placement") or "bottom").strip(),
            ref_card_id=ref_card_id,
            user=user,
        )
    except PositioningError:
        # Do not leave an unplaced card behind.
        s.rollback()
        s.delete(card)
        s.commit()
        raise
    s.commit()
    return jsonify(_card_json(card)), 201


@bp.post("/cards/<int:card_id>/move")
def cards_move(card_id: int):
    data = request.get_json(silent=True) or {}
    placement = (data.get("placement") or "").strip()
    if placement not in PLACEMENTS:
        return jsonify({"error": f"placement must be one of: {', '.join(PLACEMENTS)}"}), 400
    ref_card_id = _id_param(data, "ref_card_id")
    if placement in ("before", "after") and ref_card_id is None:
        return jsonify({"error": "ref_card_id is required"}), 400
    s = db_session()
    card = _get_or_404(Card, card_id)
    result = place_card(s, card, ordering_service(), placement=placement, ref_card_id=ref_card_id, user=_actor(data))
    s.commit()
    return jsonify({**_card_json(card), "moved": result.moved, "rebalanced": result.rebalanced})


@bp.post("/cards/<int:card_id>/board")
def cards_reparent(card_id: int):
    data = request.get_json(silent=True) or {}
    board_id = _id_param(data, "board_id")
    if board_id is None:
        return jsonify({"error": "board_id is required"}), 400
    before, after = _id_param(data, "before"), _id_param(data, "after")
    if before is not None and after is not None:
        return jsonify({"error": "pass at most one of before/after"}), 400
    s = db_session()
    card = _get_or_404(Card, card_id)
    board = _get_or_404(Board, board_id)
    result = move_card_to_board(
        s,
        card,
        board,
        ordering_service(),
        before=before,
        after=after,
        user=_actor(data),
    )
    s.commit()
    return jsonify({**_card_json(card), "moved": result.moved})


@bp.patch("/cards/<int:card_id>")
def cards_rename(card_id: int):
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    if not title:
        return jsonify({"error": "title is required"}), 400
    s = db_session()
    card = _get_or_404(Card, card_id)
    rename_card(s, card, title, user=_actor(data))
    s.commit()
    return jsonify(_card_json(card))


@bp.post("/cards/<int:card_id>/closure")
def cards_close(card_id: int):
    data = request.get_json(silent=True) or {}
    s = db_session()
    card = _get_or_404(Card, card_id)
    close_card(s, card, user=_actor(data), reason=data.get("reason"))
    s.commit()
    return jsonify(_card_json(card))


@bp.delete("/cards/<int:card_id>/closure")
def cards_reopen(card_id: int):
    s = db_session()
    card = _get_or_404(Card, card_id)
    reopen_card(s, card, user=_actor({}))
    s.commit()
    return jsonify(_card_json(card))


@bp.delete("/cards/<int:card_id>")
def cards_destroy(card_id: int):
    s = db_session()
    card = _get_or_404(Card, card_id)
    destroy_card(s, card, user=_actor({}))
    s.commit()
    return "", 204
