"""
Provider Factory: יצירת ספק WhatsApp לפי הגדרות.

get_whatsapp_provider() מחזיר singleton עצלן לפי WHATSAPP_PROVIDER.
"""
from __future__ import annotations

import threading

from app.core.circuit_breaker import get_whatsapp_circuit_breaker
from app.core.config import settings
from app.core.logging import get_logger
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider

logger = get_logger(__name__)

_provider: BaseWhatsAppProvider | None = None
_lock = threading.Lock()


def _create_provider(provider_type: str) -> BaseWhatsAppProvider:
    if provider_type == "wppconnect":
        from app.domain.services.whatsapp.wppconnect_provider import WPPConnectProvider

        return WPPConnectProvider(circuit_breaker=get_whatsapp_circuit_breaker())

    if provider_type == "pywa":
        from app.domain.services.whatsapp.pywa_provider import PyWaProvider

        return PyWaProvider(circuit_breaker=get_whatsapp_circuit_breaker())

    raise ValueError(f"סוג ספק WhatsApp לא מוכר: {provider_type}")


def get_whatsapp_provider() -> BaseWhatsAppProvider:
    global _provider
    if _provider is None:
        with _lock:
            if _provider is None:
                _provider = _create_provider(settings.WHATSAPP_PROVIDER)
                logger.info(
                    "ספק WhatsApp אותחל",
                    extra_data={"provider": _provider.provider_name},
                )
    return _provider


def reset_providers() -> None:
    """איפוס ספקים: לשימוש בבדיקות בלבד."""
    global _provider
    with _lock:
        _provider = None
