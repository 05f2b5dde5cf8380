"""
WhatsApp messaging through the Evolution API.
"""
import logging
import re
from typing import Any, Dict, Optional

import httpx

from crm.config import IntegrationConfig, get_integration_config
from crm.errors import ValidationError, ExternalServiceError

logger = logging.getLogger(__name__)

BRAZIL_COUNTRY_CODE = "55"


def format_phone_for_whatsapp(phone: str) -> str:
    """Digits only, with the Brazilian country code for local numbers."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith(BRAZIL_COUNTRY_CODE):
        return digits
    if len(digits) in (10, 11):
        return BRAZIL_COUNTRY_CODE + digits
    return digits


class WhatsAppSender:
    """Sends text messages via Evolution API"""

    def __init__(self, config: Optional[IntegrationConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_integration_config()
        self.transport = transport

    async def send_text(self, phone: str, text: str) -> Dict[str, Any]:
        """
        Send a text message.

        Raises:
            ValidationError: Empty phone or text
            ExternalServiceError: Not configured, timeout or non-2xx
        """
        number = format_phone_for_whatsapp(phone)
        if not number:
            raise ValidationError("Phone number is required")
        if not text or not text.strip():
            raise ValidationError("Message text is required")
        if not self.config.whatsapp_enabled:
            raise ExternalServiceError("whatsapp", "Evolution API is not configured")

        url = f"{self.config.evolution_api_url.rstrip('/')}/message/sendText/{self.config.evolution_instance}"
        try:
            async with httpx.AsyncClient(timeout=self.config.http_timeout, transport=self.transport) as client:
                response = await client.post(
                    url,
                    json={"number": number, "text": text.strip()},
                    headers={"apikey": self.config.evolution_api_key},
                )
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp send failed: {e}")
            raise ExternalServiceError("whatsapp", f"send failed: {e}") from e

        if not response.is_success:
            logger.error(f"Evolution API error {response.status_code}: {response.text}")
            raise ExternalServiceError(
                "whatsapp", f"Evolution API returned status {response.status_code}",
                {"body": response.text},
            )

        logger.info(f"WhatsApp message sent to {number}")
        return response.json()


# Singleton instance
_whatsapp_sender: Optional[WhatsAppSender] = None


def get_whatsapp_sender() -> WhatsAppSender:
    """Get or create WhatsApp sender instance"""
    global _whatsapp_sender
    if _whatsapp_sender is None:
        _whatsapp_sender = WhatsAppSender()
    return _whatsapp_sender
