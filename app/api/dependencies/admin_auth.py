"""
אימות מפתח API עבור endpoints של אדמין: דיאגנוסטיקת שיחות וניהול הצי.

שימוש:
    @router.get("/stats")
    async def stats(_: None = Depends(require_admin_api_key)):
        ...
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    401 כשהמפתח חסר, 403 כשאינו תואם.

    כש-ADMIN_API_KEY לא מוגדר בסביבה הגישה חסומה לגמרי.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("גישת אדמין נדחתה: ADMIN_API_KEY לא מוגדר")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY לא מוגדר בסביבה",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="חסר מפתח API (header: X-Admin-API-Key)",
        )

    if not hmac.compare_digest(api_key, settings.ADMIN_API_KEY):
        logger.warning("גישת אדמין נדחתה: מפתח API שגוי")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="מפתח API לא תקין",
        )
