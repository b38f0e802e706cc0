"""Tests for the release/start scripts."""
import sqlite3

import pytest
from sqlalchemy import create_engine, inspect, text

from app.boards.models import Base
from scripts import release, start


@pytest.fixture()
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path/'release.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.delenv("ENV", raising=False)
    monkeypatch.delenv("SYSTEM_USER_EMAIL", raising=False)
    monkeypatch.delenv("DEMO_BOARD_NAME", raising=False)
    return url


def test_release_upgrades_checks_and_seeds(db_url):
    release.run_release()
    release.run_release()  # second run is a no-op

    engine = create_engine(db_url, future=True)
    insp = inspect(engine)
    assert {"users", "audit_events", "boards", "cards", "card_closures", "alembic_version"} <= set(insp.get_table_names())
    with engine.connect() as conn:
        emails = conn.execute(text("SELECT email FROM users")).scalars().all()
    assert emails == ["system@boards.local"]


def test_release_check_rejects_narrow_position_column(db_url, tmp_path, monkeypatch):
    con = sqlite3.connect(tmp_path / "release.db")
    con.execute("CREATE TABLE cards (id INTEGER PRIMARY KEY, board_id INTEGER, position INTEGER)")
    con.commit()
    con.close()

    with pytest.raises(RuntimeError, match="cards.position"):
        release.run_release(check_only=True)

    monkeypatch.setattr("sys.argv", ["release.py", "--check"])
    assert release.main() == 1


def test_release_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError):
        release.run_release()


def test_release_refuses_sqlite_in_production(db_url, monkeypatch):
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError):
        release.run_release()


def test_start_checks_schema_then_execs_gunicorn(db_url, monkeypatch):
    Base.metadata.create_all(bind=create_engine(db_url, future=True))
    monkeypatch.setenv("SKIP_RELEASE", "1")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("WEB_CONCURRENCY", "3")
    calls = []
    monkeypatch.setattr(start.os, "execvp", lambda prog, argv: calls.append((prog, argv)))

    start.main()

    prog, argv = calls[0]
    assert prog == "gunicorn"
    assert argv[1] == "app.wsgi:app"
    assert argv[argv.index("--bind") + 1] == "0.0.0.0:9000"
    assert argv[argv.index("--workers") + 1] == "3"


def test_start_refuses_bad_port(db_url, monkeypatch):
    monkeypatch.setenv("PORT", "http")
    with pytest.raises(SystemExit):
        start.main()
