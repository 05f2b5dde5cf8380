"""
Settings for outbound integrations (CNPJ registry, WhatsApp, chat webhook).
"""
import os
from functools import lru_cache
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

DEFAULT_CNPJ_API_URL = "https://www.receitaws.com.br/v1/cnpj"
DEFAULT_HTTP_TIMEOUT = 30.0


class IntegrationConfig:
    """Configuration for outbound HTTP integrations."""

    def __init__(self):
        self.cnpj_api_url = os.getenv("CNPJ_API_URL", DEFAULT_CNPJ_API_URL).rstrip("/")
        self.evolution_api_url: Optional[str] = os.getenv("EVOLUTION_API_URL")
        self.evolution_api_key: Optional[str] = os.getenv("EVOLUTION_API_KEY")
        self.evolution_instance: Optional[str] = os.getenv("EVOLUTION_INSTANCE")
        self.chat_webhook_url: Optional[str] = os.getenv("CHAT_WEBHOOK_URL")
        self.http_timeout = float(os.getenv("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT))
        self.default_language = os.getenv("DEFAULT_LANGUAGE", "pt")

    @property
    def whatsapp_enabled(self) -> bool:
        """WhatsApp sending needs the Evolution URL, key and instance."""
        return bool(self.evolution_api_url and self.evolution_api_key and self.evolution_instance)


@lru_cache(maxsize=1)
def get_integration_config() -> IntegrationConfig:
    """Get the integration configuration singleton."""
    return IntegrationConfig()
