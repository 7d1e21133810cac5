from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Unit of work for one request: commit if the block completes, else roll back.

    Directory writes and the session transition they drive land in the same
    commit, so a failed enrollment never leaves 2FA half-enabled.
    """
    try:
        yield db
        db.commit()
    except Exception:
        if db.in_transaction():
            db.rollback()
        raise
