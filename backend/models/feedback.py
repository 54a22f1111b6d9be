from sqlalchemy import Column, String, DateTime, Integer, JSON, ForeignKey, Text
from database.db import Base
from datetime import datetime
import uuid

class Feedback(Base):
    """
    Feedback generated from an interview transcript.
    Linked to the interview it grades and the user who took it.
    """
    __tablename__ = "feedback"

    # Primary key
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    """Unique feedback ID (UUID)"""

    interview_id = Column(String, ForeignKey("interviews.id"), nullable=False, index=True)
    """Reference to the graded interview"""

    user_id = Column(String, nullable=False, index=True)
    """User who took the interview"""

    total_score = Column(Integer, nullable=False, default=0)
    """Overall score (0-100)"""

    category_scores = Column(JSON, default=list)
    """
    Per-category scores.
    Format: [
        {"name": "Communication Skills", "score": 80, "comment": "..."},
        ...
    ]
    """

    strengths = Column(JSON, default=list)
    """List of strengths observed in the transcript"""

    areas_for_improvement = Column(JSON, default=list)
    """List of areas the candidate should work on"""

    final_assessment = Column(Text, nullable=True)
    """Free-text summary of the interview"""

    created_at = Column(DateTime, default=datetime.utcnow)
    """Feedback creation timestamp"""

    def __repr__(self):
        return f"<Feedback(id={self.id}, interview={self.interview_id}, score={self.total_score})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "interview_id": self.interview_id,
            "user_id": self.user_id,
            "total_score": self.total_score,
            "category_scores": self.category_scores or [],
            "strengths": self.strengths or [],
            "areas_for_improvement": self.areas_for_improvement or [],
            "final_assessment": self.final_assessment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
