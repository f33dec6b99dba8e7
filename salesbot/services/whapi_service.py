from typing import Optional

import httpx

from salesbot.logging_config import get_logger
from salesbot.services.alert_service import alert_error

logger = get_logger("whapi_service")


def participant_from_address(address: Optional[str]) -> Optional[str]:
    """``919876543210@s.whatsapp.net`` -> ``919876543210``."""
    if not address:
        return None
    participant = address.strip().split("@", 1)[0]
    return participant or None


class WhapiClient:
    """Outbound text delivery through Whapi Cloud."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://gate.whapi.cloud",
        timeout_seconds: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send_text(self, to_address: str, text: str) -> bool:
        """Send a text message. Never raises; returns False on any failure."""
        if not to_address or not text:
            logger.warning(f"send_text: missing recipient={to_address!r} or text")
            return False

        try:
            response = await self._client.post(
                f"{self.api_url}/messages/text",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"to": to_address, "body": text},
            )
        except httpx.HTTPError as e:
            logger.error(f"Error sending WhatsApp message: {e!r}", extra={"context": {"to": to_address}})
            await alert_error("WhatsApp send failed", {"to": to_address, "error": repr(e)})
            return False

        if response.status_code >= 300:
            logger.error(
                f"Whapi response: status={response.status_code}, body={response.text[:200]}",
                extra={"context": {"to": to_address}},
            )
            await alert_error("WhatsApp send failed", {"to": to_address, "status": response.status_code})
            return False

        logger.info(f"Delivered via Whapi: to={to_address}")
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
