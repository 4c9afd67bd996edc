import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

Clock = Callable[[], datetime]


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


class BaseService:
    """Shared session, clock and transaction handling for the scheduling services."""

    def __init__(self, db: Session, clock: Clock | None = None) -> None:
        self.db = db
        self.clock = clock or system_clock
        self.logger = logging.getLogger(self.__class__.__module__)

    def now(self) -> datetime:
        return self.clock()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit on success, roll back and re-raise on any failure.

        Usage:
            with self.transaction():
                self.db.add(entity)
        """
        try:
            yield self.db
            self.db.commit()
        except SQLAlchemyError:
            self.logger.exception('Transaction failed, rolling back')
            self.db.rollback()
            raise
        except Exception:
            self.db.rollback()
            raise
