from sqlalchemy.orm import Session
from openai import AsyncOpenAI, OpenAIError
from starlette.concurrency import run_in_threadpool
from models.interview import Interview, InterviewType
from typing import List, Optional, Union
import json
import logging

logger = logging.getLogger(__name__)

class InterviewService:
    """
    Business logic for interview question sets.
    Handles creation, lookup and formatting.
    """

    @staticmethod
    def create_interview(
        db: Session,
        user_id: str,
        role: str,
        questions: List[str],
        level: str = None,
        type: InterviewType = InterviewType.MIXED,
        techstack: List[str] = None
    ) -> Interview:
        """
        Create a new interview record.

        Args:
            db: Database session
            user_id: User the interview is generated for
            role: Job role
            questions: Questions to ask, in order
            level: Seniority level (optional)
            type: Interview focus
            techstack: Technologies covered (optional)

        Returns:
            Created Interview object
        """
        try:
            interview = Interview(
                user_id=user_id,
                role=role,
                level=level,
                type=type,
                techstack=techstack or [],
                questions=questions,
                finalized=True
            )

            db.add(interview)
            db.commit()
            db.refresh(interview)

            logger.info(f"Interview created: {interview.id} for user {user_id} ({len(questions)} questions)")

            return interview

        except Exception as e:
            logger.error(f"Failed to create interview: {str(e)}")
            db.rollback()
            raise

    @staticmethod
    def get_interview(db: Session, interview_id: str) -> Optional[Interview]:
        return db.query(Interview).filter(Interview.id == interview_id).first()

    @staticmethod
    def list_interviews(db: Session, user_id: str) -> List[Interview]:
        return (
            db.query(Interview)
            .filter(Interview.user_id == user_id)
            .order_by(Interview.created_at.desc())
            .all()
        )

    @staticmethod
    def format_interview_summary(interview: Interview) -> dict:
        """
        Format interview data for display.

        Args:
            interview: Interview object

        Returns:
            Formatted interview summary
        """
        return {
            "id": interview.id,
            "role": interview.role,
            "level": interview.level,
            "type": interview.type.value if interview.type else None,
            "techstack": interview.techstack or [],
            "questions": interview.questions or [],
            "finalized": interview.finalized,
            "created_at": interview.created_at.isoformat() if interview.created_at else None,
        }

class QuestionGenerator:
    """OpenAI wrapper that writes interview questions for a role"""

    def __init__(self, api_key: Optional[str] = None, model: str = "gpt-4o-mini", client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def generate_questions(
        self,
        role: str,
        level: str,
        techstack: List[str],
        focus: str,
        amount: int
    ) -> List[str]:
        """
        Generate interview questions.

        Args:
            role: Job role
            level: Seniority level
            techstack: Technologies to cover
            focus: "technical", "behavioral" or "mixed"
            amount: Number of questions

        Returns:
            List of questions (empty if generation failed)
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": """You prepare questions for a job interview that will be read aloud by a voice assistant.
Do not use "/" or "*" or any other special characters which might break the voice assistant.

IMPORTANT: Respond with ONLY a JSON array of strings, nothing else:
["question1", "question2", "question3"]"""
                    },
                    {
                        "role": "user",
                        "content": f"""The job role is {role}.
The job experience level is {level}.
The tech stack used in the job is: {", ".join(techstack)}.
The focus between behavioural and technical questions should lean towards: {focus}.
The amount of questions required is: {amount}."""
                    }
                ],
                temperature=0.7,
            )

            result_text = (response.choices[0].message.content or "").strip()

            # Try to extract JSON if there's extra text
            if not result_text.startswith('['):
                start = result_text.find('[')
                end = result_text.rfind(']') + 1
                if start >= 0 and end > start:
                    result_text = result_text[start:end]

            questions = json.loads(result_text)
            if not isinstance(questions, list):
                questions = [questions]
            return [str(q) for q in questions][:amount]

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse questions response: {e}")
            return []
        except OpenAIError as e:
            logger.error(f"Error generating questions: {e}")
            return []

# Function the generate workflow's voice assistant calls once it has
# collected the interview details
GENERATE_INTERVIEW_TOOL = {
    "type": "function",
    "name": "generate_interview",
    "description": "Create a mock interview for the candidate once role, level, "
                   "tech stack, focus and number of questions are known.",
    "parameters": {
        "type": "object",
        "properties": {
            "role": {"type": "string", "description": "Job role"},
            "level": {"type": "string", "description": "Seniority level, e.g. Junior"},
            "type": {"type": "string", "enum": [t.value for t in InterviewType]},
            "techstack": {"type": "string", "description": "Comma separated technologies"},
            "amount": {"type": "integer", "minimum": 1, "maximum": 20}
        },
        "required": ["role"]
    }
}

def parse_techstack(techstack: Union[str, List[str], None]) -> List[str]:
    if not techstack:
        return []
    if isinstance(techstack, str):
        return [t.strip() for t in techstack.split(",") if t.strip()]
    return [str(t) for t in techstack]

class InterviewWorkflow:
    """Generate questions for a role and store them as a new interview"""

    def __init__(self, session_factory, generator: QuestionGenerator):
        self.session_factory = session_factory
        self.generator = generator

    async def generate(
        self,
        user_id: str,
        role: str,
        level: str = "Junior",
        type: Union[InterviewType, str] = InterviewType.MIXED,
        techstack: Union[str, List[str], None] = None,
        amount: int = 5
    ) -> Optional[Interview]:
        """
        Returns:
            The stored Interview, or None when no questions came back
        """
        focus = InterviewType(type)
        stack = parse_techstack(techstack)
        amount = max(1, min(int(amount), 20))
        questions = await self.generator.generate_questions(
            role=role,
            level=level,
            techstack=stack,
            focus=focus.value,
            amount=amount
        )
        if not questions:
            logger.warning(f"No questions generated for {role} ({level})")
            return None

        return await run_in_threadpool(
            self._store, user_id, role, questions, level, focus, stack
        )

    def _store(self, user_id, role, questions, level, focus, stack) -> Interview:
        db = self.session_factory()
        try:
            return InterviewService.create_interview(
                db,
                user_id=user_id,
                role=role,
                questions=questions,
                level=level,
                type=focus,
                techstack=stack
            )
        finally:
            db.close()
