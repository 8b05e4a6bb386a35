"""
Unit of Work

Groups logically related writes on one SQLAlchemy session into a single commit.
Callbacks registered with on_commit (cache invalidation, logging) run only after
the commit succeeded and are discarded on rollback.

Usage:
    with UnitOfWork(db) as uow:
        db.add(subscription)
        coordinator.on_activated(uow, user_id)
    # commit happens here; after-commit hooks run afterwards
"""

import logging
from typing import Callable

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, db: Session):
        self.db = db
        self._after_commit: list[Callable[[], None]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
            return False

        try:
            self.commit()
        except Exception:
            self.rollback()
            raise
        return False

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run callback after a successful commit"""
        self._after_commit.append(callback)

    def commit(self) -> None:
        self.db.commit()
        callbacks = self._after_commit.copy()
        self._after_commit.clear()

        logger.debug(f"Committed unit of work with {len(callbacks)} after-commit hooks")
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                # The data is already committed; hooks are best-effort
                logger.error(f"❌ After-commit hook failed: {e}", exc_info=True)

    def rollback(self) -> None:
        if self._after_commit:
            logger.warning(
                f"Rolling back unit of work, discarding {len(self._after_commit)} after-commit hooks"
            )
        self._after_commit.clear()
        self.db.rollback()
