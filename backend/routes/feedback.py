from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from database.db import get_db
from core.dependencies import get_feedback_service
from models.user import User
from services.feedback_service import FeedbackService
from utils.security import get_current_user
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/interview", tags=["feedback"])

@router.get("/{interview_id}/feedback")
async def get_feedback(
    interview_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    feedback_service: FeedbackService = Depends(get_feedback_service)
):
    """
    Get the current user's feedback for an interview.

    Raises:
        HTTPException 404: No feedback stored yet
    """
    feedback = feedback_service.get_feedback(db, interview_id, current_user.id)
    if not feedback:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Feedback not found"
        )
    return feedback.to_dict()
