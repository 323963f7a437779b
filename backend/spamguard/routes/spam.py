import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import List, Optional
from pydantic import BaseModel

from ..database import get_db
from ..models import LearningSource
from ..services.batch_processor import process_batch, run_backlog
from ..services.errors import SpamValidationError, StoreUnavailableError
from ..services.learning_store import get_improved_spam_score, get_learning_insights, learn_from_spam_decision
from ..services.review import count_restorable, preview_matches, restore_before, restore_messages, status_counts
from ..services.settings import get_engine_settings

router = APIRouter(prefix="/api/spam", tags=["spam"])
logger = logging.getLogger(__name__)


def _store_failure(db: Session, action: str, error: Exception) -> JSONResponse:
    """Roll back and report a store failure as a structured 500."""
    db.rollback()
    logger.error(f"{action} failed: {error}")
    return JSONResponse(status_code=500, content={"success": False, "error": f"{action} failed: {error}"})


def _recommendation(score: float) -> str:
    if score > 70:
        return "likely_spam"
    if score > 40:
        return "suspicious"
    return "likely_legitimate"


class ProcessRequest(BaseModel):
    skip: int = 0
    take: Optional[int] = None


class RestoreRequest(BaseModel):
    before_date: str
    dry_run: bool = True


class RestoreIdsRequest(BaseModel):
    ids: List[int]
    disable_phrases: bool = False


class AnalyzeRequest(BaseModel):
    text: str
    brand: Optional[str] = None


class LearnRequest(BaseModel):
    text: str
    is_spam: bool
    brand: Optional[str] = None
    source: str = LearningSource.AGENT


@router.get("/preview")
async def preview(
    limit: Optional[int] = Query(default=None, ge=1, le=5000, description="Pending messages to scan"),
    db: Session = Depends(get_db)
):
    """
    Show what the classifier would flag right now, without changing anything.

    Args:
        limit: Number of newest pending messages to scan (defaults to settings)
        db: Database session

    Returns:
        dict: Per-message matches and scores, plus pending/matched/errored counts
    """
    try:
        return await preview_matches(db, limit=limit)
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (SQLAlchemyError, StoreUnavailableError) as e:
        return _store_failure(db, "Preview", e)


@router.post("/process")
async def process(request: ProcessRequest, db: Session = Depends(get_db)):
    """
    Classify one page of pending messages.

    Call again with next_skip until complete is true.
    """
    try:
        result = await process_batch(db, skip=request.skip, take=request.take)
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.success:
        return JSONResponse(status_code=500, content=result.to_dict())
    return result.to_dict()


@router.post("/run")
async def run(request: ProcessRequest, db: Session = Depends(get_db)):
    """Process pages until the backlog is empty or the time budget is used up."""
    try:
        settings = get_engine_settings(db)
        result = await run_backlog(db, settings=settings, skip=request.skip, take=request.take)
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result.success:
        return JSONResponse(status_code=500, content=result.to_dict())
    return result.to_dict()


@router.get("/restore")
async def restore_preview(
    before_date: str = Query(..., description="Cutoff date, YYYY-MM-DD"),
    db: Session = Depends(get_db)
):
    """Count review messages older than the cutoff."""
    try:
        return {"success": True, **count_restorable(db, before_date)}
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (SQLAlchemyError, StoreUnavailableError) as e:
        return _store_failure(db, "Restore preview", e)


@router.post("/restore")
async def restore(request: RestoreRequest, db: Session = Depends(get_db)):
    """
    Move review messages created before a cutoff back to pending.

    dry_run defaults to true; send dry_run=false to actually restore.
    """
    try:
        return restore_before(db, request.before_date, dry_run=request.dry_run)
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (SQLAlchemyError, StoreUnavailableError) as e:
        return _store_failure(db, "Restore", e)


@router.post("/restore-ids")
async def restore_ids(request: RestoreIdsRequest, db: Session = Depends(get_db)):
    """Restore specific messages, optionally disabling the rules that flagged them."""
    try:
        return restore_messages(db, request.ids, disable_phrases=request.disable_phrases)
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (SQLAlchemyError, StoreUnavailableError) as e:
        return _store_failure(db, "Restore by id", e)


@router.post("/learn")
async def learn(request: LearnRequest, db: Session = Depends(get_db)):
    """Record an agent's spam / not-spam decision."""
    try:
        record = learn_from_spam_decision(
            db,
            request.text,
            request.is_spam,
            brand=request.brand,
            source=request.source,
        )
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        return _store_failure(db, "Learning", e)

    return {
        "success": True,
        "id": record.id,
        "is_spam": record.is_spam,
        "score": record.score,
        "pattern_tag": record.pattern_tag,
    }


def _analyze(db: Session, text: Optional[str], brand: Optional[str]):
    if not text or not text.strip():
        raise HTTPException(status_code=400, detail="Text is required")
    try:
        outcome = get_improved_spam_score(db, text, brand)
    except SQLAlchemyError as e:
        return _store_failure(db, "Analysis", e)

    return {
        "success": True,
        "analysis": {**outcome.to_dict(), "recommendation": _recommendation(outcome.score)},
    }


@router.get("/analyze")
async def analyze_get(
    text: Optional[str] = Query(default=None, description="Message text to score"),
    brand: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """
    Score one text with pattern analysis blended with learning history.

    Args:
        text: Message text
        brand: Optional brand whose decisions (plus global ones) apply
        db: Database session

    Returns:
        dict: score, reasons, historical_confidence, record_count,
        pattern_score and a recommendation
    """
    return _analyze(db, text, brand)


@router.post("/analyze")
async def analyze_post(request: AnalyzeRequest, db: Session = Depends(get_db)):
    """Same as GET /analyze with a JSON body."""
    return _analyze(db, request.text, request.brand)


@router.get("/insights")
async def insights(brand: Optional[str] = None, db: Session = Depends(get_db)):
    """Learning statistics, optionally for one brand."""
    return get_learning_insights(db, brand=brand)


@router.get("/counts")
async def counts(db: Session = Depends(get_db)):
    """Message counts by status."""
    return status_counts(db)
