"""
i18n utility functions for server-generated CRM text.

Only strings the backend writes itself live here: timeline entries,
dashboard labels and chat fallbacks. Screen copy belongs to the frontend.
"""

from typing import Optional
from .config import DEFAULT_LANGUAGE, is_supported_language


MESSAGES = {
    "pt": {
        "unknown_stage": "Desconhecido",
        "stage_change_title": "Mudança de Estágio",
        "stage_change_description": 'Negócio movido de "{previous}" para "{new}"',
        "field_change_title": "Dados Atualizados",
        "field_change_description": "Informações do negócio foram atualizadas",
        "whatsapp_sent_title": "WhatsApp Enviado",
        "chat_processing": "Recebi sua mensagem e estou processando. Por favor, aguarde um momento.",
        "chat_bad_format": "Recebi sua mensagem, mas houve um problema no formato da resposta.",
    },
    "en": {
        "unknown_stage": "Unknown",
        "stage_change_title": "Stage Change",
        "stage_change_description": 'Deal moved from "{previous}" to "{new}"',
        "field_change_title": "Details Updated",
        "field_change_description": "Deal information was updated",
        "whatsapp_sent_title": "WhatsApp Sent",
        "chat_processing": "I received your message and I'm processing it. Please wait a moment.",
        "chat_bad_format": "I received your message, but the response came back in an unexpected format.",
    },
}


def resolve_language(request_language: Optional[str] = None, default: str = DEFAULT_LANGUAGE) -> str:
    """
    Resolve the language for generated text.

    Priority: explicit request parameter, then the configured default,
    then the system default.
    """
    if is_supported_language(request_language):
        return request_language
    if is_supported_language(default):
        return default
    return DEFAULT_LANGUAGE


def translate(key: str, language: str = DEFAULT_LANGUAGE, **kwargs) -> str:
    """
    Look up a message, falling back to the default language.

    Args:
        key: Message key from MESSAGES
        language: ISO 639-1 language code
        **kwargs: Values for str.format placeholders
    """
    table = MESSAGES.get(language, MESSAGES[DEFAULT_LANGUAGE])
    template = table.get(key, MESSAGES[DEFAULT_LANGUAGE][key])
    return template.format(**kwargs) if kwargs else template
