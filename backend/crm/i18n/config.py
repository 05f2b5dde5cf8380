"""
Languages for server-generated CRM text.
"""

from typing import List, Optional

SUPPORTED_LANGUAGES: List[str] = ["pt", "en"]

# Brazilian Portuguese first
DEFAULT_LANGUAGE: str = "pt"


def is_supported_language(language: Optional[str]) -> bool:
    return bool(language) and language in SUPPORTED_LANGUAGES
