import sys
from pathlib import Path
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.boards.models import Base, User
from app.boards.modules.cards.models import Board


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None, create_tables: bool = False) -> None:
    """
    Seed the system user (and an optional demo board) in an idempotent way.
    """
    system_email = (os.environ.get("SYSTEM_USER_EMAIL") or "system@boards.local").strip().lower()
    demo_board = (os.environ.get("DEMO_BOARD_NAME") or "").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///boards.db").strip()

    if create_tables:
        Base.metadata.create_all(bind=create_engine(db_url, future=True))

    with _session_scope(db_url) as s:
        user = s.query(User).filter(User.email == system_email).one_or_none()
        if not user:
            user = User(email=system_email, name="System", is_active=True)
            s.add(user)

        if demo_board and not s.query(Board).filter(Board.name == demo_board).one_or_none():
            s.add(Board(name=demo_board))

    print("Initialized database (seed_only).")
    print(f"System user: {system_email}")


def main() -> None:
    seed_only(database_url=None, create_tables="--create-tables" in sys.argv[1:])


if __name__ == "__main__":
    main()
