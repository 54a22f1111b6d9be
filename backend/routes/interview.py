"""Interview routes - question sets created by the generate workflow"""

import logging
from typing import List, Union

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from core.dependencies import get_interview_workflow
from database.db import get_db
from models.interview import InterviewType
from models.user import User
from services.interview_service import InterviewService, InterviewWorkflow
from utils.security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/interview", tags=["interview"])

# ============ MODELS ============

class GenerateInterviewRequest(BaseModel):
    """Payload the generate workflow posts once it has collected the details"""
    role: str
    level: str = "Junior"
    type: InterviewType = InterviewType.MIXED
    techstack: Union[str, List[str]] = []
    amount: int = Field(default=5, ge=1, le=20)
    userid: str

    class Config:
        json_schema_extra = {
            "example": {
                "role": "Frontend Developer",
                "level": "Junior",
                "type": "technical",
                "techstack": "react,typescript",
                "amount": 5,
                "userid": "550e8400-e29b-41d4-a716-446655440000"
            }
        }

# ============ ENDPOINTS ============

@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_interview(
    request: GenerateInterviewRequest,
    workflow: InterviewWorkflow = Depends(get_interview_workflow)
):
    """
    Generate and store an interview for a user.
    The voice workflow reaches the same code through its generate_interview tool.
    """
    try:
        interview = await workflow.generate(
            user_id=request.userid,
            role=request.role,
            level=request.level,
            type=request.type,
            techstack=request.techstack,
            amount=request.amount
        )
    except Exception as e:
        logger.error(f"Failed to save interview: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save interview"
        )

    if interview is None:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate interview questions"
        )

    return {"success": True, "interview_id": interview.id}

@router.get("")
async def list_interviews(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the current user's interviews, newest first"""
    interviews = InterviewService.list_interviews(db, current_user.id)
    return [InterviewService.format_interview_summary(i) for i in interviews]

@router.get("/{interview_id}")
async def get_interview(
    interview_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get one interview"""
    interview = InterviewService.get_interview(db, interview_id)
    if not interview:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Interview not found"
        )
    return InterviewService.format_interview_summary(interview)
