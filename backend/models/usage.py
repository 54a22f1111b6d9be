from sqlalchemy import Column, String, DateTime, Integer
from database.db import Base
from datetime import datetime

class UsageRecord(Base):
    """
    Per-user interview usage counter.
    One row per user, created on the first quota check and never deleted.
    """
    __tablename__ = "usage"

    user_id = Column(String, primary_key=True)
    """User ID this counter belongs to"""

    interviews = Column(Integer, nullable=False, default=0)
    """Number of interviews consumed"""

    last_used = Column(DateTime, default=datetime.utcnow)
    """Timestamp of the last check-in or increment"""

    created_at = Column(DateTime, default=datetime.utcnow)
    """Record creation timestamp"""

    def __repr__(self):
        return f"<UsageRecord(user_id={self.user_id}, interviews={self.interviews})>"
