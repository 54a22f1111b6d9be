from sqlalchemy import Column, String, DateTime, JSON, Boolean, Enum
from database.db import Base
from datetime import datetime
import uuid
import enum

class InterviewType(str, enum.Enum):
    """Interview focus enumeration"""
    TECHNICAL = "technical"
    BEHAVIORAL = "behavioral"
    MIXED = "mixed"

class Interview(Base):
    """
    Interview model for storing generated interview question sets.
    Created by the generate workflow, then taken in interview mode.
    """
    __tablename__ = "interviews"

    # Primary key
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    """Unique interview ID (UUID)"""

    user_id = Column(String, nullable=False, index=True)
    """User the interview was generated for"""

    # Interview information
    role = Column(String(100), nullable=False)
    """Job role, e.g. "Frontend Developer" """

    level = Column(String(50), nullable=True)
    """Seniority level, e.g. "Junior" """

    type = Column(Enum(InterviewType), default=InterviewType.MIXED)
    """Interview focus: technical, behavioral or mixed"""

    techstack = Column(JSON, default=list)
    """
    Technologies covered.
    Format: ["react", "typescript", ...]
    """

    questions = Column(JSON, default=list)
    """
    Questions the interviewer asks, in order.
    Format: ["Question 1", "Question 2", ...]
    """

    finalized = Column(Boolean, default=True)
    """Whether the question set is ready to be taken"""

    created_at = Column(DateTime, default=datetime.utcnow)
    """Interview record creation timestamp"""

    def __repr__(self):
        return f"<Interview(id={self.id}, role={self.role}, type={self.type})>"
