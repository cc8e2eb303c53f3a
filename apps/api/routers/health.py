"""
Liveness, readiness and dependency status probes.
"""

from typing import Dict, List

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings
from database import engine

router = APIRouter()

PAYMENT_SETTINGS = ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET")


async def _probe_database() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        return f"down: {exc}"
    return "up"


async def _probe_redis() -> str:
    client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
    try:
        await client.ping()
    except Exception as exc:
        return f"down: {exc}"
    finally:
        await client.aclose()
    return "up"


def _missing_payment_settings() -> List[str]:
    return [name for name in PAYMENT_SETTINGS if not getattr(settings, name)]


@router.get("/health")
async def health_check():
    """
    Dependency status for operators.

    Redis only backs rate limiting, so an outage there does not degrade
    the service; the database and payment credentials do.
    """
    database = await _probe_database()
    missing = _missing_payment_settings()
    components: Dict[str, str] = {
        "api": "up",
        "database": database,
        "redis": await _probe_redis(),
        "payment_gateway": "missing" if {"RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET"} & set(missing) else "configured",
        "webhook_secret": "missing" if "RAZORPAY_WEBHOOK_SECRET" in missing else "configured",
    }
    healthy = database == "up" and not missing
    return {"status": "healthy" if healthy else "degraded", **components}


@router.get("/health/ready")
async def readiness_check():
    """Ready once the database answers and payment credentials are present."""
    missing = _missing_payment_settings()
    database = await _probe_database()
    if missing or database != "up":
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": missing, "database": database},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
