"""
בדיקות לשכבת ההפשטה של ספק WhatsApp.

מכסה:
- BaseWhatsAppProvider: ממשק אבסטרקטי
- WPPConnectProvider: שליחת טקסט, retry, timeout, circuit breaker
- PyWaProvider: שליחה דרך Cloud API עם client מוזרק
- Provider Factory: singleton ובחירה לפי הגדרות
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from httpx import Response

from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from app.core.config import settings
from app.core.exceptions import CircuitBreakerOpenError, WhatsAppError
from app.domain.services.whatsapp.base_provider import (
    MAX_TEXT_LENGTH,
    BaseWhatsAppProvider,
    prepare_text,
)
from app.domain.services.whatsapp.provider_factory import get_whatsapp_provider, reset_providers
from app.domain.services.whatsapp.pywa_provider import PyWaProvider
from app.domain.services.whatsapp.wppconnect_provider import WPPConnectProvider


def _response(status_code: int, body=None) -> MagicMock:
    response = MagicMock(spec=Response)
    response.status_code = status_code
    response.text = ""
    if body is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


def _mock_async_client(mock_client, post) -> AsyncMock:
    mock_instance = AsyncMock()
    mock_instance.post = post
    mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
    mock_instance.__aexit__ = AsyncMock(return_value=None)
    mock_client.return_value = mock_instance
    return mock_instance


# ============================================================================
# BaseWhatsAppProvider
# ============================================================================


class TestBaseProviderInterface:

    @pytest.mark.unit
    def test_cannot_instantiate_abstract_provider(self) -> None:
        with pytest.raises(TypeError):
            BaseWhatsAppProvider()  # type: ignore[abstract]

    @pytest.mark.unit
    def test_prepare_text_normalizes_newlines(self) -> None:
        assert prepare_text("a\r\nb\rc") == "a\nb\nc"

    @pytest.mark.unit
    def test_prepare_text_truncates(self) -> None:
        text = prepare_text("א" * (MAX_TEXT_LENGTH + 50))

        assert len(text) == MAX_TEXT_LENGTH
        assert text.endswith("…")


# ============================================================================
# WPPConnectProvider
# ============================================================================


class TestWPPConnectSendText:

    def _make_provider(self, threshold: int = 5) -> tuple[WPPConnectProvider, CircuitBreaker]:
        cb = CircuitBreaker("test_wa", CircuitBreakerConfig(failure_threshold=threshold))
        return WPPConnectProvider(circuit_breaker=cb), cb

    @pytest.mark.unit
    async def test_send_text_success(self) -> None:
        provider, _ = self._make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            client = _mock_async_client(
                mock_client, AsyncMock(return_value=_response(200, {"messageId": "true_972@c.us_ABC"}))
            )

            message_id = await provider.send_text(to="0501234567", text="שלום עולם")

        assert message_id == "true_972@c.us_ABC"
        call = client.post.call_args
        assert call.args[0].endswith("/send")
        assert call.kwargs["json"] == {"phone": "+972501234567", "message": "שלום עולם"}

    @pytest.mark.unit
    async def test_send_text_without_message_id(self) -> None:
        provider, _ = self._make_provider()

        with patch("httpx.AsyncClient") as mock_client:
            _mock_async_client(mock_client, AsyncMock(return_value=_response(200)))

            assert await provider.send_text(to="+972501234567", text="היי") is None

    @pytest.mark.unit
    async def test_send_text_retry_on_transient_error(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "WHATSAPP_MAX_RETRIES", 3)
        provider, _ = self._make_provider()

        post = AsyncMock(side_effect=[_response(503), _response(200, {"id": "m-1"})])
        with patch("httpx.AsyncClient") as mock_client, \
                patch("app.domain.services.whatsapp.wppconnect_provider.asyncio.sleep", new=AsyncMock()) as sleep:
            _mock_async_client(mock_client, post)

            message_id = await provider.send_text(to="+972501234567", text="x")

        assert message_id == "m-1"
        assert post.call_count == 2
        sleep.assert_awaited_once_with(1)

    @pytest.mark.unit
    async def test_permanent_error_is_not_retried(self) -> None:
        provider, _ = self._make_provider()

        post = AsyncMock(return_value=_response(400))
        with patch("httpx.AsyncClient") as mock_client:
            _mock_async_client(mock_client, post)

            with pytest.raises(WhatsAppError):
                await provider.send_text(to="+972501234567", text="x")

        assert post.call_count == 1

    @pytest.mark.unit
    async def test_timeout_exhausts_retries(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "WHATSAPP_MAX_RETRIES", 2)
        provider, _ = self._make_provider()

        post = AsyncMock(side_effect=httpx.TimeoutException("slow"))
        with patch("httpx.AsyncClient") as mock_client, \
                patch("app.domain.services.whatsapp.wppconnect_provider.asyncio.sleep", new=AsyncMock()):
            _mock_async_client(mock_client, post)

            with pytest.raises(WhatsAppError) as exc_info:
                await provider.send_text(to="+972501234567", text="x")

        assert exc_info.value.details["timeout"] is True
        assert post.call_count == 2

    @pytest.mark.unit
    async def test_circuit_breaker_opens_on_failures(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "WHATSAPP_MAX_RETRIES", 1)
        provider, cb = self._make_provider(threshold=2)

        post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with patch("httpx.AsyncClient") as mock_client:
            _mock_async_client(mock_client, post)

            for _ in range(2):
                with pytest.raises(WhatsAppError):
                    await provider.send_text(to="+972501234567", text="x")

            assert cb.state == CircuitState.OPEN
            with pytest.raises(CircuitBreakerOpenError):
                await provider.send_text(to="+972501234567", text="x")

        assert post.call_count == 2


class TestWPPConnectHelpers:

    def _make_provider(self) -> WPPConnectProvider:
        return WPPConnectProvider(circuit_breaker=CircuitBreaker("test_helpers"))

    @pytest.mark.unit
    def test_normalize_phone_israeli(self) -> None:
        assert self._make_provider().normalize_phone("050-123-4567") == "+972501234567"

    @pytest.mark.unit
    def test_normalize_phone_keeps_chat_ids(self) -> None:
        assert self._make_provider().normalize_phone("120363@g.us") == "120363@g.us"

    @pytest.mark.unit
    def test_provider_name(self) -> None:
        assert self._make_provider().provider_name == "wppconnect"


# ============================================================================
# PyWaProvider
# ============================================================================


class TestPyWaProvider:

    def _make_provider(self, client) -> PyWaProvider:
        return PyWaProvider(circuit_breaker=CircuitBreaker("test_pywa"), client=client)

    @pytest.mark.unit
    async def test_send_text_success(self) -> None:
        client = MagicMock()
        client.send_message = AsyncMock(return_value=SimpleNamespace(id="wamid.XYZ"))
        provider = self._make_provider(client)

        message_id = await provider.send_text(to="+972501234567", text="שלום")

        assert message_id == "wamid.XYZ"
        client.send_message.assert_awaited_once_with(to="972501234567", text="שלום")

    @pytest.mark.unit
    async def test_send_text_retry_then_fail(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "WHATSAPP_MAX_RETRIES", 2)
        client = MagicMock()
        client.send_message = AsyncMock(side_effect=RuntimeError("graph error"))
        provider = self._make_provider(client)

        with patch("app.domain.services.whatsapp.pywa_provider.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(WhatsAppError) as exc_info:
                await provider.send_text(to="0501234567", text="x")

        assert exc_info.value.details["attempts"] == 2
        assert client.send_message.await_count == 2

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        ("0501234567", "972501234567"),
        ("+972501234567", "972501234567"),
        ("972501234567", "972501234567"),
    ])
    def test_normalize_phone(self, phone, expected) -> None:
        assert self._make_provider(MagicMock()).normalize_phone(phone) == expected


# ============================================================================
# Provider Factory
# ============================================================================


class TestProviderFactory:

    @pytest.mark.unit
    def test_default_is_wppconnect_singleton(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "WHATSAPP_PROVIDER", "wppconnect")

        provider = get_whatsapp_provider()

        assert isinstance(provider, WPPConnectProvider)
        assert get_whatsapp_provider() is provider

    @pytest.mark.unit
    def test_pywa_selected_by_settings(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "WHATSAPP_PROVIDER", "pywa")

        assert isinstance(get_whatsapp_provider(), PyWaProvider)

    @pytest.mark.unit
    def test_reset_providers_clears_singleton(self) -> None:
        first = get_whatsapp_provider()
        reset_providers()

        assert get_whatsapp_provider() is not first

    @pytest.mark.unit
    def test_invalid_provider_type_raises(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "WHATSAPP_PROVIDER", "carrier-pigeon")

        with pytest.raises(ValueError):
            get_whatsapp_provider()
