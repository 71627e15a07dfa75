"""
WPPConnect Provider: מימוש BaseWhatsAppProvider מעל WPPConnect Gateway.

הגטוויי רץ כ-Node.js service וחושף POST /send. העטיפה כוללת retry
עם exponential backoff ו-circuit breaker.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import settings
from app.core.exceptions import WhatsAppError
from app.core.logging import get_logger
from app.core.validation import PhoneNumberValidator
from app.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, prepare_text

logger = get_logger(__name__)


class WPPConnectProvider(BaseWhatsAppProvider):

    def __init__(self, circuit_breaker: CircuitBreaker) -> None:
        self._circuit_breaker = circuit_breaker
        self._gateway_url = settings.WHATSAPP_GATEWAY_URL
        self._max_retries = settings.WHATSAPP_MAX_RETRIES
        self._transient_status_codes = {
            int(code.strip())
            for code in settings.WHATSAPP_TRANSIENT_STATUS_CODES.split(",")
            if code.strip()
        }

    @property
    def provider_name(self) -> str:
        return "wppconnect"

    @staticmethod
    def _message_id(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        message_id = body.get("messageId") or body.get("id")
        return str(message_id) if message_id else None

    async def _request_with_retry(self, endpoint: str, payload: dict) -> Optional[str]:
        """שליחת בקשה לגטוויי עם retry ו-exponential backoff.

        זורק WhatsAppError אם כל הניסיונות נכשלו.
        """
        phone_masked = PhoneNumberValidator.mask(payload.get("phone", ""))

        async with httpx.AsyncClient(timeout=30.0) as client:
            for attempt in range(self._max_retries):
                is_last_attempt = attempt >= self._max_retries - 1
                backoff = 2 ** attempt
                try:
                    response = await client.post(f"{self._gateway_url}/{endpoint}", json=payload)
                except httpx.TimeoutException:
                    if is_last_attempt:
                        raise WhatsAppError(
                            message=f"gateway /{endpoint} timeout after retries",
                            details={"timeout": True, "attempts": self._max_retries},
                        )
                    logger.warning(
                        "WhatsApp send timeout, מנסה שוב",
                        extra_data={"phone": phone_masked, "attempt": attempt + 1, "backoff_seconds": backoff},
                    )
                    await asyncio.sleep(backoff)
                    continue
                except httpx.RequestError as exc:
                    if is_last_attempt:
                        raise WhatsAppError(
                            message=f"gateway /{endpoint} network error: {exc}",
                            details={"network_error": True, "attempts": self._max_retries},
                        )
                    logger.warning(
                        "שגיאת רשת בשליחת WhatsApp, מנסה שוב",
                        extra_data={
                            "phone": phone_masked,
                            "error": str(exc),
                            "attempt": attempt + 1,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)
                    continue

                if response.status_code == 200:
                    return self._message_id(response)

                if response.status_code in self._transient_status_codes and not is_last_attempt:
                    logger.warning(
                        "שגיאה זמנית בשליחת WhatsApp, מנסה שוב",
                        extra_data={
                            "phone": phone_masked,
                            "status_code": response.status_code,
                            "attempt": attempt + 1,
                            "max_retries": self._max_retries,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise WhatsAppError.from_response(
                    endpoint,
                    response,
                    message=f"gateway /{endpoint} returned status {response.status_code}",
                )

        return None

    async def send_text(self, to: str, text: str) -> Optional[str]:
        payload = {
            "phone": self.normalize_phone(to),
            "message": self.format_text(text),
        }
        return await self._circuit_breaker.execute(self._request_with_retry, "send", payload)

    def format_text(self, text: str) -> str:
        return prepare_text(text)

    def normalize_phone(self, phone: str) -> str:
        """E.164 עם +; מזהים שאינם טלפון (קבוצות, LID) עוברים כמו שהם"""
        if not phone or "@" in phone:
            return phone
        if PhoneNumberValidator.validate(phone):
            return PhoneNumberValidator.normalize(phone)
        return phone
