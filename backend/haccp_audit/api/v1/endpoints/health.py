"""
Health Check Endpoints

- /health/live  - Basic liveness (app is running)
- /health/ready - Readiness check (database and blob store reachable)
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Dict, Any
from sqlalchemy import text
import asyncio
import time

from haccp_audit.core.config import settings
from haccp_audit.core.database import get_session_local
from haccp_audit.core.logging_config import logger
from haccp_audit.services.blob_store import BlobStore, get_blob_store


router = APIRouter(prefix="/health", tags=["Health Checks"])


async def check_database() -> Dict[str, Any]:
    """Check database connectivity"""
    start = time.time()
    try:
        session_factory = get_session_local()
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
            "message": "Database connection successful"
        }
    except Exception as e:
        logger.error(f"[HealthCheck] Database check failed: {e}")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
            "error": str(e),
            "message": "Database connection failed - forms cannot be saved"
        }


async def check_blob_store(blob_store: BlobStore) -> Dict[str, Any]:
    """Check the PDF/evidence storage backend"""
    start = time.time()
    try:
        reachable = await blob_store.ping()
    except Exception as e:
        logger.error(f"[HealthCheck] Blob store check failed: {e}")
        reachable = False
    return {
        "status": "healthy" if reachable else "unhealthy",
        "latency_ms": round((time.time() - start) * 1000, 2),
        "mode": settings.STORAGE_MODE,
        "message": "Blob store reachable" if reachable else "Blob store unreachable - PDFs cannot be published"
    }


@router.get("/live")
async def liveness_check():
    """Liveness probe - returns 200 while the process is alive"""
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat(),
        "app": settings.APP_NAME,
        "version": "1.0.0"
    }


@router.get("/ready")
async def readiness_check(blob_store: BlobStore = Depends(get_blob_store)):
    """
    Readiness probe - 200 only when the database and blob store both respond.

    Load balancers should use this endpoint rather than /health.
    """
    db_check, storage_check = await asyncio.gather(
        check_database(),
        check_blob_store(blob_store),
    )
    healthy = db_check["status"] == "healthy" and storage_check["status"] == "healthy"

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ready" if healthy else "not_ready",
            "timestamp": datetime.utcnow().isoformat(),
            "checks": {
                "database": db_check,
                "blob_store": storage_check,
            }
        }
    )
