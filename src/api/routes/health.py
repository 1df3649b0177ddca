"""Health check routes."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.deps import get_readonly_db
from core.config import get_settings
from core.db import missing_tables
from core.logging_config import get_logger
from core.utils import utcnow

router = APIRouter()
LOGGER = get_logger(__name__)
SETTINGS = get_settings()


@router.get("")
async def health_check() -> Dict[str, Any]:
    """Basic health check - always returns OK."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "dry_run": SETTINGS.dry_run,
        "environment": SETTINGS.environment,
    }


@router.get("/detailed")
async def detailed_health_check(
    db: Session = Depends(get_readonly_db),
) -> Dict[str, Any]:
    """Detailed health check including database tables and email settings."""
    status = "healthy"
    checks: Dict[str, Any] = {}

    try:
        db.execute(text("SELECT 1"))
        missing = missing_tables(db.get_bind())
        checks["database"] = {
            "status": "healthy" if not missing else "degraded",
            "connected": True,
            "tables_missing": missing,
        }
        if missing:
            status = "degraded"
    except SQLAlchemyError as e:
        LOGGER.error(f"Database health check failed: {e}")
        status = "unhealthy"
        checks["database"] = {"status": "unhealthy", "error": str(e)}

    checks["email"] = {
        "configured": SETTINGS.is_email_enabled(),
        "recipients": len(SETTINGS.admin_recipients),
        "mode": "SIMULATED" if SETTINGS.dry_run else "LIVE",
    }

    return {
        "status": status,
        "timestamp": utcnow().isoformat(),
        "checks": checks,
    }
