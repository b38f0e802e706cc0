import pytest

from app.boards import create_app
from app.boards.db import session_scope
from app.boards.models import Base, User


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    for k in ("POSITION_SPACING", "POSITION_STEP", "POSITION_MIN_GAP", "MOVE_MAX_ATTEMPTS"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(User(email="admin@example.com", name="Admin", is_active=True))

    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_ok(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_unknown_route_is_json_404(client):
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.json["error"] == "not_found"


def test_ordering_service_uses_config(app):
    svc = app.extensions["ordering_service"]
    assert svc.rebalancer.spacing == 1000.0
    assert svc.allocator.step == 1.0
    assert svc.max_attempts == 5


def test_spacing_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'t.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("POSITION_SPACING", "64")
    monkeypatch.setenv("MOVE_MAX_ATTEMPTS", "3")

    app = create_app()

    svc = app.extensions["ordering_service"]
    assert svc.rebalancer.spacing == 64.0
    assert svc.max_attempts == 3


def test_bad_number_in_env_fails_fast(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'t.db'}")
    monkeypatch.setenv("POSITION_STEP", "lots")
    with pytest.raises(RuntimeError):
        create_app()


def test_spacing_must_exceed_min_gap(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'t.db'}")
    monkeypatch.setenv("POSITION_SPACING", "1")
    monkeypatch.setenv("POSITION_MIN_GAP", "1")
    with pytest.raises(RuntimeError):
        create_app()


def test_production_rejects_sqlite(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'t.db'}")
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "strong")
    with pytest.raises(RuntimeError):
        create_app()


def test_schema_health_flags_narrow_position_column(tmp_path, monkeypatch):
    import sqlite3

    db = tmp_path / "old.db"
    con = sqlite3.connect(db)
    con.execute("CREATE TABLE cards (id INTEGER PRIMARY KEY, board_id INTEGER, position INTEGER)")
    con.commit()
    con.close()
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db}")
    monkeypatch.setenv("ENV", "test")

    app = create_app()

    assert app.config["_schema_health_ok"] is False
    assert "cards.position" in app.config["_schema_health_missing"][0]


def test_sqlite_connections_enforce_foreign_keys(app):
    from sqlalchemy import text

    with app.extensions["sqlalchemy_engine"].connect() as conn:
        assert conn.execute(text("PRAGMA foreign_keys")).scalar() == 1
