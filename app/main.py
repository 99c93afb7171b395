"""
Job Board API - Main Application

FastAPI backend with:
- MongoDB for users, companies, jobs and applications
- JWT access tokens + rotating refresh tokens (httpOnly cookie)
- Email OTP verification and password reset
- Cloudinary media uploads
- Per-IP rate limiting, security headers, markup stripped from text input

Run: uvicorn app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import PyMongoError

from app.api import api_router
from app.core.config import get_settings
from app.core.errors import register_exception_handlers
from app.core.logging import setup_logging
from app.core.middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from app.db.mongodb import init_mongo_indexes

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create MongoDB indexes on startup."""
    setup_logging()
    try:
        init_mongo_indexes()
    except PyMongoError as e:
        logger.error("MongoDB index initialization failed: %s", e)
    logger.info("Job Board API started (%s)", settings.environment)
    yield


# Create FastAPI app
app = FastAPI(
    title="Job Board API",
    description="""
    REST API for a job board.

    ## Features
    - **Users**: Registration with email OTP, sessions, profiles with avatar/resume
    - **Companies**: Company profiles owned by employers, admin verification
    - **Jobs**: Posting, search and filtering
    - **Applications**: Apply, track, and move candidates through the hiring flow
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Added innermost first; CORS ends up outermost
app.add_middleware(RateLimitMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# CORS middleware (credentials needed for the refresh cookie)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/api/health", tags=["Health"])
async def health_check():
    """Liveness check."""
    return {"status": "OK"}
