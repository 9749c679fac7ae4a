"""
Health Check Endpoints

- /health - simple status
- /health/live - liveness (is the process running)
- /health/ready - readiness (database reachable)
- /health/detailed - component checks plus sync scheduler state
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import text
from datetime import datetime, timezone
import time

from ..database import get_db
from ..config import settings
from ..models.feed_source import FeedSource
from ..services.sync_scheduler import get_scheduler_status

router = APIRouter(prefix="/health", tags=["Health"])

API_VERSION = "1.0.0"


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": "postgresql" if "postgresql" in str(db.bind.url) else "sqlite"
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


def get_sync_health() -> dict:
    """Scheduler state; a failed last run marks the sync as degraded"""
    scheduler = get_scheduler_status()
    if not scheduler["enabled"]:
        return {"status": "disabled", **scheduler}
    last = scheduler.get("last_sync_result")
    if last is not None and not last.get("success", False):
        return {"status": "degraded", **scheduler}
    return {"status": "up", **scheduler}


@router.get("/live")
async def liveness_check():
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
async def readiness_check(db: Session = Depends(get_db)):
    db_health = get_db_health(db)

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "not_ready",
            "reason": "database_unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


@router.get("/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """Detailed health check with all component statuses"""
    db_health = get_db_health(db)
    sync_health = get_sync_health()

    checks = {
        "database": db_health,
        "sync": sync_health
    }

    if db_health["status"] == "down":
        overall_status = "unhealthy"
    elif any(c.get("status") == "degraded" for c in checks.values()):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    feed_count = db.query(FeedSource).count() if db_health["status"] == "up" else None

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION,
        "environment": settings.environment,
        "checks": checks,
        "config": {
            "sync_enabled": settings.sync_enabled,
            "sync_cron": settings.sync_cron,
            "feed_sources": feed_count
        }
    }


@router.get("")
@router.get("/")
async def simple_health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION
    }
