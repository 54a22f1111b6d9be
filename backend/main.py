from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config.settings import settings
from database.db import init_db
from routes import auth, call, feedback, interview, usage

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============ Lifespan ============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Initialize application on startup.
    - Create database tables
    - Log startup info
    """
    try:
        init_db()
        logger.info("✅ Application started successfully")
        logger.info(f"📊 API docs available at: http://localhost:{settings.PORT}/docs")
    except Exception as e:
        logger.error(f"❌ Failed to start application: {str(e)}")
        raise

    if not settings.WORKFLOW_ID:
        logger.warning("WORKFLOW_ID is not set; generate calls will fail")
    if not settings.ASSISTANT_ID:
        logger.warning("ASSISTANT_ID is not set; interview calls will fail")

    yield

    logger.info("❌ Application shutdown")

# Create FastAPI app
app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    description="Mock Interview Voice API",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# ============ CORS Middleware ============

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info(f"CORS enabled for origins: {settings.ALLOWED_ORIGINS}")

# ============ Health Check ============

@app.get("/health", tags=["health"])
async def health_check():
    """
    Health check endpoint.
    Returns application status.
    """
    return {
        "status": "healthy",
        "service": settings.API_TITLE,
        "version": settings.API_VERSION
    }

# ============ Include Routers ============

app.include_router(auth.router)
app.include_router(interview.router)
app.include_router(feedback.router)
app.include_router(usage.router)
app.include_router(call.router)

logger.info("✅ All routers registered")

# ============ Root Endpoint ============

@app.get("/", tags=["root"])
async def root():
    """
    Root endpoint.
    Returns API information.
    """
    return {
        "message": "Mock Interview Voice API",
        "version": settings.API_VERSION,
        "docs": "/docs",
        "health": "/health"
    }

# ============ Run Application ============

if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.HOST}:{settings.PORT}")

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level="info"
    )
