from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from config.settings import settings
import logging

logger = logging.getLogger(__name__)

def _engine_options(url: str) -> dict:
    """Pool options for the configured backend (SQLite has no pool sizing)."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 20,
        "max_overflow": 0,
        "pool_pre_ping": True,  # Test connections before using
    }

# Create database engine
engine = create_engine(
    settings.DATABASE_URL,
    echo=False,  # Set to True for SQL query logging
    **_engine_options(settings.DATABASE_URL),
)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)

# Base class for all database models
Base = declarative_base()

def get_db() -> Session:
    """
    Dependency function to get database session.
    Used in FastAPI route handlers.

    Example:
        @app.get("/api/usage/me")
        def read_usage(db: Session = Depends(get_db)):
            return db.get(UsageRecord, user_id)
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

def init_db(bind=None):
    """
    Initialize database tables.
    Call this once at application startup.

    Creates all tables defined in models using SQLAlchemy ORM.
    """
    try:
        # Import all models to register them with Base
        from models.user import User
        from models.interview import Interview
        from models.feedback import Feedback
        from models.usage import UsageRecord

        # Create all tables
        Base.metadata.create_all(bind=bind or engine)
        logger.info("✅ Database tables initialized successfully")
    except Exception as e:
        logger.error(f"❌ Failed to initialize database: {str(e)}")
        raise
