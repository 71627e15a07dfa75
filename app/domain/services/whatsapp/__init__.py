"""
WhatsApp Provider Abstraction Layer

שכבת הפשטה לשליחת הודעות WhatsApp.
מאפשרת מעבר בין ספקים (WPPConnect / Cloud API) ללא שינוי בבוט.
"""
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider
from app.domain.services.whatsapp.provider_factory import (
    get_whatsapp_provider,
    reset_providers,
)

__all__ = [
    "BaseWhatsAppProvider",
    "get_whatsapp_provider",
    "reset_providers",
]
