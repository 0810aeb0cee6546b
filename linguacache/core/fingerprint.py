"""
Content fingerprinting.

Fingerprints key translations by normalized content rather than by
position, so the same sentence maps to the same cache entry wherever it
appears. The hash is a 32-bit rolling hash over UTF-16 code units and must
stay bit-compatible with the extraction tool that produces locale bundles,
so do not swap it for a stronger digest.
"""

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+")
_CONSTANT_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")

FINGERPRINT_LENGTH = 12


def normalize_text(text: str) -> str:
    """Trim, lowercase and collapse whitespace runs to a single space."""
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def display_normalize(text: str) -> str:
    """Trim and collapse whitespace, preserving case."""
    return _WHITESPACE_RE.sub(" ", text.strip())


def _utf16_units(text: str):
    data = text.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        yield data[i] | (data[i + 1] << 8)


def _rolling_hash(text: str) -> int:
    h = 0
    for unit in _utf16_units(text):
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    # reinterpret as signed 32-bit
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def fingerprint(text: str) -> str:
    """
    Generate a content fingerprint for text.

    Identical normalized text always yields the identical fingerprint.
    Different text may collide; callers treat a collision as the same
    equivalence class.

    Args:
        text: Raw source text

    Returns:
        Lowercase hex string, zero padded to 8 characters
    """
    value = abs(_rolling_hash(normalize_text(text)))
    return format(value, "x").zfill(8)[:FINGERPRINT_LENGTH]


def content_hash(text: str) -> str:
    """Hash used to detect that the source text behind a fingerprint changed."""
    return fingerprint(text)


def _is_symbolic(ch: str) -> bool:
    if ch.isspace() or ch.isdigit():
        return True
    return unicodedata.category(ch)[0] in ("P", "S")


def is_translatable(text: str) -> bool:
    """
    Decide whether text is worth sending for translation.

    Rejects very short strings, numbers and punctuation, ALL_CAPS
    identifiers, URLs and template placeholders.
    """
    trimmed = text.strip()

    if len(trimmed) < 2:
        return False
    if all(_is_symbolic(ch) for ch in trimmed):
        return False
    if _CONSTANT_RE.match(trimmed):
        return False
    if trimmed.startswith("http"):
        return False
    if "{{" in trimmed or "${" in trimmed:
        return False

    return True
