"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from typing import Dict, Any

from caracol.core.config import settings
from caracol.core.database import Database
from caracol.core.metrics import sample_value

router = APIRouter()


def get_database(request: Request) -> Database:
    return request.app.state.db


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/detailed")
async def detailed_health_check(
    db: Database = Depends(get_database)
) -> Dict[str, Any]:
    """
    Detailed health check including database connectivity and collector gauges.
    """
    health_status = {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {
            "database": "unknown",
        },
        "collector": {
            "active_queries": int(sample_value("active_queries")),
            "monitored_queries": int(sample_value("monitored_queries")),
        },
    }

    # Check database connection
    try:
        async with db.session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"

    return health_status
