"""
Health check endpoint for monitoring and diagnostics.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portfolio_guard.core.config import settings
from portfolio_guard.core.database import get_db
from portfolio_guard.services.verification import get_verification_provider

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(db: Session = Depends(get_db)):
    """
    Health check that verifies the API is running and the database answers SELECT 1.

    Returns:
        {"ok": true, "db": true, "environment": ..., "verification": "real" | "simulated"}
    """
    try:
        db.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database connection failed",
        )

    return {
        "ok": True,
        "db": True,
        "environment": settings.APP_ENV,
        "verification": get_verification_provider().name,
    }
