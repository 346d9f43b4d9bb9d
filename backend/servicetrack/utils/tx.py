from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator
from sqlalchemy.orm import Session


@contextmanager
def transaction(session: Session) -> Iterator[Session]:
    """Commit on success, roll back everything on any exception.

    Compound writes (grant replacement, status event + round update, case + round 1)
    run inside one of these so readers never observe half of them.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
