from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Optional
import logging

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import PersistenceError
from models.usage import UsageRecord

logger = logging.getLogger(__name__)

class UsageCheck(BaseModel):
    """Outcome of a quota check or reservation"""
    can_use: bool
    remaining_interviews: int

class UsageUpdate(BaseModel):
    """Outcome of a usage write. Truthy only when the write succeeded."""
    success: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success

class UsageLedger:
    """
    Per-user interview quota stored in the ``usage`` table.

    Every public method owns its session and never raises: database failures
    are logged and downgraded to a negative result.
    """

    def __init__(self, session_factory: Callable[[], Session], quota: int = 1):
        self.session_factory = session_factory
        self.quota = quota

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            db.close()

    def _ensure_record(self, db: Session, user_id: str) -> tuple:
        """
        Return (record, created). A concurrent insert for the same user is
        resolved by reading the row the other writer created.
        """
        record = db.get(UsageRecord, user_id)
        if record is not None:
            return record, False

        now = datetime.now(timezone.utc)
        record = UsageRecord(user_id=user_id, interviews=0, last_used=now, created_at=now)
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return db.get(UsageRecord, user_id), False

        logger.info(f"Usage record created: user={user_id}")
        return record, True

    def check_user_usage(self, user_id: str) -> UsageCheck:
        """
        Report whether the user may start another interview.

        Creates the record with zero interviews on first contact. Does not
        modify an existing record.
        """
        try:
            with self._session() as db:
                record, created = self._ensure_record(db, user_id)
                if created:
                    return UsageCheck(can_use=True, remaining_interviews=self.quota)

                if record.interviews >= self.quota:
                    return UsageCheck(can_use=False, remaining_interviews=0)

                return UsageCheck(
                    can_use=True,
                    remaining_interviews=self.quota - record.interviews
                )
        except PersistenceError as e:
            logger.error(f"Error checking user usage: {str(e)}")
            return UsageCheck(can_use=False, remaining_interviews=0)

    def increment_user_usage(self, user_id: str) -> UsageUpdate:
        """
        Add one interview to an existing record in a single UPDATE.
        A missing record is reported as a failure, never created here.
        """
        try:
            with self._session() as db:
                result = db.execute(
                    update(UsageRecord)
                    .where(UsageRecord.user_id == user_id)
                    .values(
                        interviews=UsageRecord.interviews + 1,
                        last_used=datetime.now(timezone.utc)
                    )
                )
                db.commit()

                if result.rowcount == 0:
                    logger.warning(f"No usage record to increment: user={user_id}")
                    return UsageUpdate(success=False, error="Usage record not found")

                logger.info(f"Usage incremented: user={user_id}")
                return UsageUpdate(success=True)
        except PersistenceError as e:
            logger.error(f"Error incrementing user usage: {str(e)}")
            return UsageUpdate(success=False, error=str(e))

    def reserve_interview(self, user_id: str) -> UsageCheck:
        """
        Consume one interview if the quota allows it.

        The check and the increment are one conditional UPDATE, so two
        concurrent reservations can never both take the last interview.
        """
        try:
            with self._session() as db:
                self._ensure_record(db, user_id)

                result = db.execute(
                    update(UsageRecord)
                    .where(
                        UsageRecord.user_id == user_id,
                        UsageRecord.interviews < self.quota
                    )
                    .values(
                        interviews=UsageRecord.interviews + 1,
                        last_used=datetime.now(timezone.utc)
                    )
                )
                db.commit()

                if result.rowcount == 0:
                    logger.info(f"Interview reservation refused: user={user_id}")
                    return UsageCheck(can_use=False, remaining_interviews=0)

                record = db.get(UsageRecord, user_id, populate_existing=True)
                logger.info(f"Interview reserved: user={user_id}, used={record.interviews}")
                return UsageCheck(
                    can_use=True,
                    remaining_interviews=max(0, self.quota - record.interviews)
                )
        except PersistenceError as e:
            logger.error(f"Error reserving interview: {str(e)}")
            return UsageCheck(can_use=False, remaining_interviews=0)

    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        try:
            with self._session() as db:
                return db.get(UsageRecord, user_id)
        except PersistenceError as e:
            logger.error(f"Error reading user usage: {str(e)}")
            return None
