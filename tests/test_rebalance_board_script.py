"""Tests for scripts/rebalance_board.py."""
import json
import sys

import pytest
from sqlalchemy import select

from app.boards import create_app
from app.boards.db import session_scope
from app.boards.models import AuditEvent, Base
from app.boards.modules.cards.models import Board, Card
from scripts import rebalance_board


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


def _board_with(app, positions):
    with session_scope(app) as s:
        board = Board(name="ops")
        s.add(board)
        s.flush()
        s.add_all([Card(board_id=board.id, title=f"c{i}", position=p) for i, p in enumerate(positions)])
        return board.id


def _positions(app, board_id):
    with session_scope(app) as s:
        return list(
            s.execute(
                select(Card.position).where(Card.board_id == board_id, Card.position.is_not(None)).order_by(Card.position, Card.id)
            ).scalars()
        )


def test_report_counts_ties(app, capsys):
    board_id = _board_with(app, [1.0, 1.0, 2.5, None])

    ties = rebalance_board.report(app, board_id)

    out = capsys.readouterr().out
    assert ties == 1
    assert "3 cards" in out
    assert "TIE" in out
    assert "smallest gap 1.5" in out


def test_report_on_empty_board(app, capsys):
    board_id = _board_with(app, [])
    assert rebalance_board.report(app, board_id) == 0
    assert "no placed cards" in capsys.readouterr().out


def test_rebalance_rekeys_and_audits(app):
    board_id = _board_with(app, [0.5, 0.5, 0.75])

    rebalance_board.rebalance(app, board_id)

    assert _positions(app, board_id) == [0.0, 1000.0, 2000.0]
    assert rebalance_board.report(app, board_id) == 0
    with session_scope(app) as s:
        ev = s.execute(select(AuditEvent).where(AuditEvent.action == "board.rebalance")).scalar_one()
    assert ev.entity_id == str(board_id)
    assert json.loads(ev.metadata_json) == {"cards": 3, "spacing": 1000.0}


def test_main_exit_codes(app, monkeypatch):
    board_id = _board_with(app, [3.0, 3.0])

    monkeypatch.setattr(sys, "argv", ["rebalance_board.py", f"--board={board_id}"])
    assert rebalance_board.main() == 1  # ties found, nothing changed
    assert _positions(app, board_id) == [3.0, 3.0]

    monkeypatch.setattr(sys, "argv", ["rebalance_board.py", f"--board={board_id}", "--rebalance"])
    assert rebalance_board.main() == 0
    assert _positions(app, board_id) == [0.0, 1000.0]
