"""Input validation and credential handling helpers."""

import re
from typing import Optional, Tuple

from linguacache.core.exceptions import ValidationError

LOCALE_PATTERN = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

MAX_TEXT_LENGTH = 10_000
MIN_API_KEY_LENGTH = 10
MAX_API_KEY_LENGTH = 200


def validate_locale(locale: str) -> Tuple[bool, Optional[str]]:
    """Check a locale code such as ``en`` or ``pt-BR``."""
    if not locale or not isinstance(locale, str):
        return False, "Locale is required"
    if not LOCALE_PATTERN.match(locale):
        return False, f"Invalid locale format '{locale}' (expected: en, en-US, etc.)"
    return True, None


def require_locale(locale: str, field: str = "locale") -> str:
    valid, error = validate_locale(locale)
    if not valid:
        raise ValidationError(error, field=field, value=locale)
    return locale


def validate_api_key(api_key: str) -> Tuple[bool, Optional[str]]:
    """
    Check the shape of an API key.

    Returns:
        (is_valid, error message or None)
    """
    if not api_key or not isinstance(api_key, str):
        return False, "API key is required"
    if not api_key.strip():
        return False, "API key cannot be empty"
    if len(api_key) < MIN_API_KEY_LENGTH:
        return False, f"API key too short (minimum {MIN_API_KEY_LENGTH} characters)"
    if len(api_key) > MAX_API_KEY_LENGTH:
        return False, f"API key too long (maximum {MAX_API_KEY_LENGTH} characters)"
    if any(ch.isspace() for ch in api_key):
        return False, "API key contains invalid characters"
    return True, None


def sanitize_text_input(text: str, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Strip control characters (newlines and tabs are kept) and enforce a length cap."""
    if not isinstance(text, str):
        raise ValidationError("Input must be a string", field="text")
    if len(text) > max_length:
        raise ValidationError(
            f"Input text too long (max {max_length} characters)",
            field="text",
            value=len(text)
        )
    return _CONTROL_CHARS.sub("", text)


def obfuscate_api_key(api_key: Optional[str]) -> str:
    """Show only the first and last four characters of a key."""
    if not api_key or len(api_key) < 8:
        return "****"
    return f"{api_key[:4]}{'*' * (len(api_key) - 8)}{api_key[-4:]}"
