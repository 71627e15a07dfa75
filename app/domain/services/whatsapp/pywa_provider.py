"""
PyWa Provider: מימוש BaseWhatsAppProvider מעל Cloud API (Meta).

משתמש בספריית pywa לשליחת הודעות דרך WhatsApp Cloud API, עם retry
ו-circuit breaker כמו WPPConnectProvider.
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import WhatsAppError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, prepare_text

logger = get_logger(__name__)


class PyWaProvider(BaseWhatsAppProvider):

    def __init__(self, circuit_breaker: CircuitBreaker, client=None) -> None:
        self._circuit_breaker = circuit_breaker
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        # אתחול עצלן: נטען רק כשנדרש
        self._client = client

    def _get_client(self):
        if self._client is None:
            from pywa_async import WhatsApp as PyWaClient

            self._client = PyWaClient(
                phone_id=settings.WHATSAPP_CLOUD_API_PHONE_ID,
                token=settings.WHATSAPP_CLOUD_API_TOKEN,
            )
        return self._client

    @property
    def provider_name(self) -> str:
        return "pywa"

    def normalize_phone(self, phone: str) -> str:
        """Cloud API רוצה 972501234567 ולא +972501234567"""
        if PhoneNumberValidator.validate(phone):
            return PhoneNumberValidator.normalize(phone).lstrip("+")
        return phone

    def format_text(self, text: str) -> str:
        return prepare_text(text)

    async def _execute_with_retry(
        self,
        operation: str,
        phone_masked: str,
        func: Callable[[], Awaitable[Optional[str]]],
    ) -> Optional[str]:
        """הרצה עם retry ו-exponential backoff; WhatsAppError אחרי הניסיון האחרון"""
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                return await func()
            except Exception as exc:
                last_error = exc
                if attempt < self._max_retries - 1:
                    backoff = 2 ** attempt
                    logger.warning(
                        f"שגיאה ב-{operation}, מנסה שוב",
                        extra_data={
                            "phone": phone_masked,
                            "error": str(exc),
                            "attempt": attempt + 1,
                            "max_retries": self._max_retries,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)

        raise WhatsAppError(
            message=f"Cloud API {operation} נכשל אחרי {self._max_retries} ניסיונות",
            details={
                "phone": phone_masked,
                "error": str(last_error),
                "attempts": self._max_retries,
            },
        )

    async def send_text(self, to: str, text: str) -> Optional[str]:
        to = self.normalize_phone(to)
        phone_masked = PhoneNumberValidator.mask(to)
        final_text = self.format_text(text)
        client = self._get_client()

        async def _send_single() -> Optional[str]:
            sent = await client.send_message(to=to, text=final_text)
            message_id = getattr(sent, "id", None)
            return str(message_id) if message_id else None

        async def _send_with_retry() -> Optional[str]:
            return await self._execute_with_retry("send_text", phone_masked, _send_single)

        return await self._circuit_breaker.execute(_send_with_retry)
