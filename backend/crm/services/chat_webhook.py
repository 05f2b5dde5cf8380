"""
AI chat webhook client.

The webhook answers in several shapes depending on how its workflow was
built; parse_chat_reply normalizes them to a single string.
"""
import json
import logging
from typing import Any, Optional

import httpx

from crm.config import IntegrationConfig, get_integration_config
from crm.errors import ValidationError, ExternalServiceError
from crm.i18n import translate, DEFAULT_LANGUAGE

logger = logging.getLogger(__name__)


def extract_output(data: Any) -> Optional[str]:
    """
    Pull the reply text out of a decoded JSON body.

    Accepted shapes: [{"output": ...}], {"output": ...}, {"message": ...}, "..."
    """
    if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get("output"):
        return data[0]["output"]
    if isinstance(data, dict):
        if data.get("output"):
            return data["output"]
        if data.get("message"):
            return data["message"]
    if isinstance(data, str) and data:
        return data
    return None


def parse_chat_reply(body: str, language: str = DEFAULT_LANGUAGE) -> str:
    """Normalize a raw webhook body into the assistant's reply."""
    if not body or not body.strip():
        return translate("chat_processing", language)

    try:
        data = json.loads(body)
    except ValueError:
        # Plain-text replies are shown as-is
        return body

    reply = extract_output(data)
    if reply is None:
        logger.warning(f"Unexpected chat webhook response format: {type(data).__name__}")
        return translate("chat_bad_format", language)
    return reply


class ChatWebhookClient:
    """Posts user messages to the chat workflow webhook"""

    def __init__(self, config: Optional[IntegrationConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_integration_config()
        self.transport = transport

    async def send_message(self, message: str, session_id: str, language: str = DEFAULT_LANGUAGE) -> str:
        """
        Send a message and return the assistant's reply.

        Raises:
            ValidationError: Empty message
            ExternalServiceError: Not configured, timeout or non-2xx
        """
        if not message or not message.strip():
            raise ValidationError("Message is required")
        if not self.config.chat_webhook_url:
            raise ExternalServiceError("chat", "CHAT_WEBHOOK_URL is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.config.http_timeout, transport=self.transport) as client:
                response = await client.post(
                    self.config.chat_webhook_url,
                    json={"message": message.strip(), "sessionId": session_id},
                )
        except httpx.HTTPError as e:
            logger.error(f"Chat webhook call failed: {e}")
            raise ExternalServiceError("chat", f"webhook call failed: {e}") from e

        if not response.is_success:
            logger.error(f"Chat webhook error {response.status_code}: {response.text}")
            raise ExternalServiceError("chat", f"webhook returned status {response.status_code}")

        return parse_chat_reply(response.text, language)


# Singleton instance
_chat_client: Optional[ChatWebhookClient] = None


def get_chat_client() -> ChatWebhookClient:
    """Get or create chat webhook client instance"""
    global _chat_client
    if _chat_client is None:
        _chat_client = ChatWebhookClient()
    return _chat_client
