import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    # Ordering engine tunables
    position_spacing: float
    position_step: float
    position_min_gap: float
    move_max_attempts: int
    move_backoff_base_seconds: float
    move_backoff_max_seconds: float


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getfloat(name: str, default: float) -> float:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///boards.db"),
        position_spacing=_getfloat("POSITION_SPACING", 1000.0),
        position_step=_getfloat("POSITION_STEP", 1.0),
        position_min_gap=_getfloat("POSITION_MIN_GAP", 0.0),
        move_max_attempts=int(_getfloat("MOVE_MAX_ATTEMPTS", 5)),
        move_backoff_base_seconds=_getfloat("MOVE_BACKOFF_BASE_SECONDS", 0.01),
        move_backoff_max_seconds=_getfloat("MOVE_BACKOFF_MAX_SECONDS", 0.5),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        # spacing between keys after a rebalance; also bounds how many
        # same-gap inserts fit before the next one
        "POSITION_SPACING": s.position_spacing,
        "POSITION_STEP": s.position_step,
        "POSITION_MIN_GAP": s.position_min_gap,
        "MOVE_MAX_ATTEMPTS": s.move_max_attempts,
        "MOVE_BACKOFF_BASE_SECONDS": s.move_backoff_base_seconds,
        "MOVE_BACKOFF_MAX_SECONDS": s.move_backoff_max_seconds,
        "JSON_SORT_KEYS": False,
    }
