import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from contextlib import asynccontextmanager

from .config import LOG_LEVEL
from .database import SessionLocal, init_db
from .models import MessageStatus, SpamRule  # Import all models before init_db()
from .routes import spam_router, settings_router
from .services.rules import seed_default_rules
from .services.review import status_counts

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def seed_rules(db: Session):
    """Pre-populate the rules table with the default rule set if it is empty."""
    if not seed_default_rules(db):
        existing = db.query(SpamRule).count()
        logger.info(f"Found {existing} existing spam rules")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting up spam engine API...")
    init_db()
    db = SessionLocal()
    try:
        seed_rules(db)
    finally:
        db.close()
    logger.info("Database initialized and ready")

    yield

    logger.info("Shutting down spam engine API...")


# Create FastAPI app
app = FastAPI(
    title="Spam Guard API",
    description="Inbound message spam classification with continuous learning",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],  # Dashboard frontend
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(spam_router)
app.include_router(settings_router)


# Health check endpoint
@app.get("/api/health")
async def health_check():
    """Health check endpoint with rule and backlog counts."""
    db = SessionLocal()
    try:
        rule_count = db.query(SpamRule).filter(SpamRule.enabled == True).count()
        counts = status_counts(db)
        return {
            "status": "ok",
            "enabled_rules": rule_count,
            "pending": counts[MessageStatus.PENDING],
            "review": counts[MessageStatus.REVIEW],
        }
    finally:
        db.close()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Spam Guard API",
        "version": "1.0.0",
        "docs": "/docs"
    }
