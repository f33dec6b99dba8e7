from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from salesbot.services.alert_service import alert_error, send_alert


class TestSendAlert:
    @pytest.mark.asyncio
    @patch("salesbot.services.alert_service.settings")
    async def test_returns_false_when_not_configured(self, mock_settings):
        mock_settings.alert_bot_token = None
        mock_settings.alert_chat_id = None

        assert await send_alert("ERROR", "Test message") is False

    @pytest.mark.asyncio
    @patch("salesbot.services.alert_service.httpx.AsyncClient")
    @patch("salesbot.services.alert_service.settings")
    async def test_sends_alert_to_telegram(self, mock_settings, mock_client_class):
        mock_settings.alert_bot_token = "test-token"
        mock_settings.alert_chat_id = "test-chat"
        mock_client = MagicMock()
        mock_client.post = AsyncMock(return_value=MagicMock(status_code=200))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        result = await alert_error("WhatsApp send failed", {"to": "919876543210@s.whatsapp.net"})

        assert result is True
        call_args = mock_client.post.call_args
        assert "api.telegram.org/bottest-token" in call_args[0][0]
        json_data = call_args[1]["json"]
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]
        assert "919876543210" in json_data["text"]

    @pytest.mark.asyncio
    @patch("salesbot.services.alert_service.httpx.AsyncClient")
    @patch("salesbot.services.alert_service.settings")
    async def test_network_error_returns_false(self, mock_settings, mock_client_class):
        mock_settings.alert_bot_token = "test-token"
        mock_settings.alert_chat_id = "test-chat"
        mock_client = MagicMock()
        mock_client.post = AsyncMock(side_effect=Exception("network down"))
        mock_client_class.return_value.__aenter__.return_value = mock_client

        assert await send_alert("WARNING", "Test") is False
