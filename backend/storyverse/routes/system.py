from __future__ import annotations
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
from storyverse.config import settings
from storyverse.db import get_session

router = APIRouter(tags=["system"])
log = structlog.get_logger()

@router.get("/health")
async def health(request: Request, session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
        db = "ok"
    except SQLAlchemyError as e:
        log.warning("health_db_unavailable", error=str(e))
        db = "unavailable"
    return {
        "status": "ok" if db == "ok" else "degraded",
        "db": db,
        "env": settings.environment,
        "time": datetime.now(timezone.utc).isoformat(),
        "request_id": request.state.request_id,
    }

@router.get("/version")
async def version():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "git_sha": settings.git_sha,
        "coin_day_timezone": settings.coin_day_timezone,
    }
