"""
Internationalization for the few strings the backend writes itself.
"""

from .config import (
    SUPPORTED_LANGUAGES,
    DEFAULT_LANGUAGE,
    is_supported_language,
)

from .utils import (
    MESSAGES,
    resolve_language,
    translate,
)

__all__ = [
    "SUPPORTED_LANGUAGES",
    "DEFAULT_LANGUAGE",
    "is_supported_language",
    "MESSAGES",
    "resolve_language",
    "translate",
]
