"""
Fleet Bot - Main FastAPI Application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware
from app.api.routes import router as api_router
from app.db.database import engine, Base
# רישום כל המודלים ב-metadata לפני create_all
from app.db import models  # noqa: F401

# Setup logging before anything else
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


_OPENAPI_TAGS = [
    {"name": "Webhooks", "description": "Webhook לקבלת הודעות מ-WhatsApp Cloud API."},
    {
        "name": "conversations",
        "description": "כלי דיאגנוסטיקה לאדמין: סטטיסטיקת שיחות, שיחות פעילות, איפוס וניקוי.",
    },
    {"name": "Health", "description": "בדיקות חיוּת ומוכנות."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="בוט WhatsApp לניהול צי אופנועים: דיווח קילומטראז' ותזכורות תחזוקה לשליחים.",
    openapi_tags=_OPENAPI_TAGS,
)

setup_middleware(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Correlation-ID", "X-Admin-API-Key"],
    )

app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def startup() -> None:
    """Initialize database tables on startup"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


@app.on_event("shutdown")
async def shutdown() -> None:
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("Database connections disposed")


@app.get(
    "/health",
    summary="בדיקת חיוּת (Liveness Probe)",
    description="התהליך חי ומגיב. לא בודק תלויות חיצוניות.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="בדיקת מוכנות (Readiness Probe)",
    description=(
        "בדיקה של התלויות: DB, Celery broker ו-WhatsApp Gateway. "
        "מחזיר 200 עם status=healthy, או 503 עם status=degraded ופירוט."
    ),
    responses={
        200: {"description": "כל התלויות תקינות"},
        503: {"description": "לפחות תלות אחת לא זמינה"},
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from app.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
