"""
ממשק בסיסי לספק WhatsApp.

כל ספק (WPPConnect, Cloud API/pywa) מממש את הממשק הזה; הבוט תלוי רק בו.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

# מגבלת אורך גוף הודעת טקסט ב-WhatsApp
MAX_TEXT_LENGTH = 4096


def prepare_text(text: str) -> str:
    """שורות בפורמט \\n בלבד וחיתוך למגבלת האורך"""
    normalized = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    if len(normalized) > MAX_TEXT_LENGTH:
        return normalized[:MAX_TEXT_LENGTH - 1] + "…"
    return normalized


class BaseWhatsAppProvider(ABC):
    """
    ממשק אחיד לשליחת הודעות WhatsApp.

    כל מימוש אחראי על:
    - שליחת HTTP / SDK
    - retry + circuit breaker
    - נרמול טלפון לפורמט הנדרש ע"י הספק
    """

    @abstractmethod
    async def send_text(self, to: str, text: str) -> Optional[str]:
        """
        שליחת הודעת טקסט.

        Args:
            to: מספר טלפון בפורמט כלשהו; מנורמל לפורמט הספק.
            text: טקסט ההודעה, עובר דרך format_text().

        Returns:
            מזהה ההודעה אצל הספק, או None אם הספק לא החזיר מזהה.

        Raises:
            WhatsAppError: בכשלון שליחה אחרי כל הניסיונות.
            CircuitBreakerOpenError: כשה-circuit breaker פתוח.
        """

    @abstractmethod
    def format_text(self, text: str) -> str:
        """התאמת טקסט התשובה לפורמט הספק"""

    @abstractmethod
    def normalize_phone(self, phone: str) -> str:
        """
        נרמול מספר טלפון לפורמט הנדרש ע"י הספק.

        לדוגמה:
        - "0501234567" → "+972501234567" (WPPConnect)
        - "0501234567" → "972501234567" (Cloud API)
        """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """שם הספק לשימוש בלוגים ודיאגנוסטיקה."""
