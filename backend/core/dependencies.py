"""Service factories used as FastAPI dependencies"""

from fastapi import Depends

from config.settings import settings
from database.db import SessionLocal
from services.feedback_service import FeedbackService
from services.interview_service import InterviewWorkflow, QuestionGenerator
from services.realtime_voice import RealtimeVoiceClient
from services.usage_ledger import UsageLedger
from services.voice_client import VoiceClient

def get_usage_ledger() -> UsageLedger:
    return UsageLedger(SessionLocal, quota=settings.INTERVIEW_QUOTA)

def get_feedback_service() -> FeedbackService:
    return FeedbackService(
        SessionLocal,
        api_key=settings.OPENAI_API_KEY,
        model=settings.FEEDBACK_MODEL
    )

def get_question_generator() -> QuestionGenerator:
    return QuestionGenerator(api_key=settings.OPENAI_API_KEY, model=settings.QUESTION_MODEL)

def get_interview_workflow(
    generator: QuestionGenerator = Depends(get_question_generator)
) -> InterviewWorkflow:
    return InterviewWorkflow(SessionLocal, generator)

def get_voice_client() -> VoiceClient:
    """A fresh voice client per call connection"""
    return RealtimeVoiceClient(
        api_key=settings.OPENAI_API_KEY,
        url=settings.OPENAI_REALTIME_URL,
        voice=settings.OPENAI_REALTIME_VOICE
    )
