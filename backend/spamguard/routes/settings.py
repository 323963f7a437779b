from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from ..database import get_db
from ..services.errors import SpamValidationError
from ..services.settings import get_engine_settings, update_engine_settings

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/")
async def get_settings(db: Session = Depends(get_db)):
    """
    Get the effective engine settings.

    Args:
        db: Database session

    Returns:
        dict: Environment defaults with any persisted overrides applied
    """
    return asdict(get_engine_settings(db))


@router.put("/")
async def update_settings(
    pattern_threshold: int = None,
    learning_threshold: int = None,
    batch_size: int = None,
    time_budget_seconds: float = None,
    annotation_concurrency: int = None,
    db: Session = Depends(get_db)
):
    """
    Update engine settings.

    Args:
        pattern_threshold: Minimum pattern score (0-100) to flag on heuristics alone
        learning_threshold: Minimum blended score (0-100) to flag from learning history
        batch_size: Default page size for batch processing
        time_budget_seconds: Wall-clock budget for one backlog run
        annotation_concurrency: Annotation rows written per round-trip
        db: Database session

    Returns:
        dict: Updated settings object
    """
    try:
        settings = update_engine_settings(
            db,
            pattern_threshold=pattern_threshold,
            learning_threshold=learning_threshold,
            batch_size=batch_size,
            time_budget_seconds=time_budget_seconds,
            annotation_concurrency=annotation_concurrency,
        )
    except SpamValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"message": "Settings updated successfully", **asdict(settings)}
