from __future__ import annotations

from pathlib import Path

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

SERVER_DIR = Path(__file__).resolve().parents[2]  # server/


def _get_alembic_script_heads() -> set[str]:
    from alembic.config import Config
    from alembic.script import ScriptDirectory

    cfg = Config(str(SERVER_DIR / "alembic.ini"))
    cfg.set_main_option("script_location", str(SERVER_DIR / "alembic"))
    script = ScriptDirectory.from_config(cfg)
    return set(script.get_heads())


def _get_db_revision(engine: Engine) -> str | None:
    if not inspect(engine).has_table("alembic_version"):
        return None
    with engine.connect() as conn:
        row = conn.execute(text("SELECT version_num FROM alembic_version")).first()
        return row[0] if row else None


def assert_db_up_to_date(engine: Engine) -> None:
    """Fail fast if alembic_version is missing or not at head."""

    heads = _get_alembic_script_heads()
    db_rev = _get_db_revision(engine)

    if db_rev is None:
        raise RuntimeError(
            "Database is not stamped with Alembic (missing alembic_version). "
            "Run: alembic upgrade head"
        )

    if db_rev not in heads:
        raise RuntimeError(
            f"Database Alembic revision {db_rev} is not at head {sorted(heads)}. "
            "Run: alembic upgrade head"
        )
