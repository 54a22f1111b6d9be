from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    """
    Application settings and configuration management.
    Loads environment variables from .env file.
    """

    # ============ API Configuration ============
    API_TITLE: str = "Mock Interview Voice API"
    API_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # ============ Server Configuration ============
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ============ Database Configuration ============
    DATABASE_URL: str = "sqlite:///./mock_interview.db"
    """SQLAlchemy database connection string"""

    # ============ AI Services Configuration ============
    OPENAI_API_KEY: str = ""
    """OpenAI API key for the Realtime voice session and feedback grading"""

    OPENAI_REALTIME_URL: str = "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview"
    """Realtime API endpoint used by the voice client"""

    OPENAI_REALTIME_VOICE: str = "alloy"

    FEEDBACK_MODEL: str = "gpt-4o-mini"
    """Chat model used to grade interview transcripts"""

    QUESTION_MODEL: str = "gpt-4o-mini"
    """Chat model used to generate interview questions"""

    # ============ Voice Session Configuration ============
    WORKFLOW_ID: Optional[str] = None
    """Prompt id of the interview-generation workflow (generate mode)"""

    ASSISTANT_ID: Optional[str] = None
    """Prompt id of the interviewer assistant (interview mode)"""

    # ============ Usage Policy ============
    INTERVIEW_QUOTA: int = 1
    """Number of interviews each user may take"""

    RESERVE_USAGE_ON_START: bool = False
    """Consume quota atomically when a call starts instead of after it ends"""

    # ============ JWT Authentication Configuration ============
    SECRET_KEY: str = "your-secret-key-change-in-production"
    """Secret key for JWT token signing - change in production"""

    ALGORITHM: str = "HS256"
    """JWT algorithm for token encoding"""

    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480
    """JWT token expiration time in minutes (8 hours)"""

    # ============ CORS Configuration ============
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",  # Next.js dev server
        "http://localhost:5173",  # Vite dev server
        "http://localhost:8000",  # Same origin
    ]
    """Allowed origins for CORS requests"""

    class Config:
        env_file = ".env"
        """Load environment variables from .env file"""

        env_file_encoding = "utf-8"
        case_sensitive = False

# Create global settings instance
settings = Settings()
