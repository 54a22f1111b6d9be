"""
Interview feedback generation.
Grades a finished transcript with an OpenAI chat model and stores the result.
"""

import json
import logging
from typing import Callable, List, Optional

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.errors import FeedbackError, PersistenceError
from models.feedback import Feedback

logger = logging.getLogger(__name__)

CATEGORIES = [
    "Communication Skills",
    "Technical Knowledge",
    "Problem Solving",
    "Cultural Fit",
    "Confidence and Clarity",
]

class CategoryScore(BaseModel):
    name: str
    score: int = Field(ge=0, le=100)
    comment: str = ""

class FeedbackAssessment(BaseModel):
    """Structured grading returned by the model"""
    total_score: int = Field(ge=0, le=100)
    category_scores: List[CategoryScore]
    strengths: List[str] = []
    areas_for_improvement: List[str] = []
    final_assessment: str = ""

class FeedbackResult(BaseModel):
    success: bool
    feedback_id: Optional[str] = None

def format_transcript(transcript) -> str:
    lines = []
    for message in transcript:
        role = message["role"] if isinstance(message, dict) else message.role
        content = message["content"] if isinstance(message, dict) else message.content
        lines.append(f"- {role}: {content}")
    return "\n".join(lines)

class FeedbackService:
    """Create and read feedback for interviews"""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        client: Optional[AsyncOpenAI] = None,
    ):
        self.session_factory = session_factory
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def assess_transcript(self, transcript) -> FeedbackAssessment:
        """
        Ask the model to grade a transcript.

        Raises:
            FeedbackError: If the API call fails or the reply is not a valid assessment
        """
        categories = "\n".join(f"- {name}" for name in CATEGORIES)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {
                        "role": "system",
                        "content": f"""You are a professional interviewer analyzing a mock interview. Evaluate the candidate thoroughly and be strict: do not be lenient when there are mistakes or room for improvement.

Score the candidate from 0 to 100 in exactly these categories:
{categories}

Response as JSON:
{{
  "total_score": number,
  "category_scores": [{{"name": "category", "score": number, "comment": "text"}}],
  "strengths": [list of strengths],
  "areas_for_improvement": [list of areas],
  "final_assessment": "text"
}}"""
                    },
                    {
                        "role": "user",
                        "content": f"Transcript:\n{format_transcript(transcript)}"
                    }
                ],
                temperature=0.3,
            )
        except OpenAIError as e:
            raise FeedbackError(f"Feedback model request failed: {e}") from e

        result_text = response.choices[0].message.content or ""
        try:
            return FeedbackAssessment.model_validate(json.loads(result_text))
        except (json.JSONDecodeError, ValidationError) as e:
            raise FeedbackError(f"Unusable feedback response: {e}") from e

    def _save(
        self,
        interview_id: str,
        user_id: Optional[str],
        assessment: FeedbackAssessment,
        feedback_id: Optional[str]
    ) -> str:
        db = self.session_factory()
        try:
            feedback = db.get(Feedback, feedback_id) if feedback_id else None
            if feedback is None:
                feedback = Feedback(interview_id=interview_id, user_id=user_id or "")
                if feedback_id:
                    feedback.id = feedback_id

            feedback.total_score = assessment.total_score
            feedback.category_scores = [c.model_dump() for c in assessment.category_scores]
            feedback.strengths = assessment.strengths
            feedback.areas_for_improvement = assessment.areas_for_improvement
            feedback.final_assessment = assessment.final_assessment

            db.add(feedback)
            db.commit()
            db.refresh(feedback)
            return feedback.id
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            db.close()

    async def create_feedback(
        self,
        interview_id: Optional[str],
        user_id: Optional[str],
        transcript,
        feedback_id: Optional[str] = None
    ) -> FeedbackResult:
        """
        Grade a transcript and store the feedback.

        Args:
            interview_id: Interview the transcript belongs to
            user_id: Candidate user ID
            transcript: Ordered SavedMessage list (or dicts with role/content)
            feedback_id: Existing feedback to overwrite (optional)

        Returns:
            FeedbackResult; success is False on any failure
        """
        if not interview_id:
            logger.error("Cannot create feedback without an interview id")
            return FeedbackResult(success=False)

        try:
            assessment = await self.assess_transcript(transcript)
            saved_id = await run_in_threadpool(self._save, interview_id, user_id, assessment, feedback_id)
        except (FeedbackError, PersistenceError) as e:
            logger.error(f"Error saving feedback: {str(e)}")
            return FeedbackResult(success=False)

        logger.info(f"Feedback saved: {saved_id} for interview {interview_id}")
        return FeedbackResult(success=True, feedback_id=saved_id)

    def get_feedback(self, db: Session, interview_id: str, user_id: str) -> Optional[Feedback]:
        return (
            db.query(Feedback)
            .filter(Feedback.interview_id == interview_id, Feedback.user_id == user_id)
            .order_by(Feedback.created_at.desc())
            .first()
        )
