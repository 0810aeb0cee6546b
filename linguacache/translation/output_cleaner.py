"""
Output cleaning for translations returned by the API.

The remote model sometimes wraps its answer:
- <think>...</think> reasoning blocks
- "Translation:" style prefixes and preambles, in several languages
- surrounding quotes, guillemets and backticks
- markdown emphasis, code fences and small JSON wrappers

``clean_translation`` is idempotent: cleaning an already clean string
returns it unchanged.
"""

import re
from typing import Dict, List

QUOTE_CHARS = "\"'`„“”‘’«»‹›"

_QUOTE_EDGES = re.compile(f"^[{re.escape(QUOTE_CHARS)}]+|[{re.escape(QUOTE_CHARS)}]+$")

_REASONING = re.compile(r"<(think|thinking)>.*?</\1>", re.DOTALL | re.IGNORECASE)
_CODE_FENCE = re.compile(r"^```(?:\w+)?\s*\n(.*?)\n```$", re.DOTALL)

_PREFIX = re.compile(
    r"^(Translation|Traducción|Traduction|Übersetzung|Traduzione|Tradução|"
    r"翻译|翻譯|번역|翻訳|Перевод|ترجمة|Translated text|Output|Result)\s*[:：]\s*",
    re.IGNORECASE
)
_PREAMBLES = [
    re.compile(r"^(Here is the translation|The translation is|Translated text)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Voici la traduction|La traduction est|Texte traduit)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Hier ist die Übersetzung|Die Übersetzung ist|Übersetzter Text)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Ecco la traduzione|La traduzione è|Testo tradotto)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Aquí está la traducción|La traducción es|Texto traducido)\s*:\s*", re.IGNORECASE),
    re.compile(r"^(Aqui está a tradução|A tradução é|Texto traduzido)\s*:\s*", re.IGNORECASE),
]
_MARKDOWN = [
    re.compile(r"^\*\*(.+)\*\*$", re.DOTALL),
    re.compile(r"^\*(.+)\*$", re.DOTALL),
    re.compile(r"^`(.+)`$", re.DOTALL),
    re.compile(r"^_(.+?)_$", re.DOTALL),
]
_JSON_WRAPPER = re.compile(r"""^\{\s*["']?(?:text|translation)["']?\s*:\s*["'](.*)["']\s*\}$""", re.IGNORECASE | re.DOTALL)
_WHITESPACE = re.compile(r"\s+")

_MAX_PASSES = 10


def _clean_once(text: str) -> str:
    text = _REASONING.sub("", text).strip()

    match = _CODE_FENCE.match(text)
    if match:
        text = match.group(1).strip()

    text = _QUOTE_EDGES.sub("", text).strip()

    text = _PREFIX.sub("", text)
    for pattern in _PREAMBLES:
        text = pattern.sub("", text)

    for pattern in _MARKDOWN:
        text = pattern.sub(r"\1", text)

    text = _JSON_WRAPPER.sub(r"\1", text)

    return _WHITESPACE.sub(" ", text).strip()


def clean_translation(text: str) -> str:
    """
    Strip wrapper artifacts from a translated string.

    Passes are repeated until the text stops changing. If cleaning would
    leave nothing, the input is returned as is.

    Args:
        text: Raw translation from the API

    Returns:
        Cleaned translation text
    """
    if not text or not isinstance(text, str):
        return text

    current = text
    for _ in range(_MAX_PASSES):
        cleaned = _clean_once(current)
        if not cleaned:
            return current
        if cleaned == current:
            break
        current = cleaned

    return current


def clean_batch_translations(translations: Dict[str, str]) -> Dict[str, str]:
    """Clean every value of an id -> translation map."""
    return {key: clean_translation(value) for key, value in translations.items()}


def needs_cleaning(text: str) -> bool:
    if not text or not isinstance(text, str):
        return False
    return clean_translation(text) != text


def normalize_for_translation(text: str) -> str:
    """Normalize exotic spaces and line separators before sending text out."""
    if not text:
        return text
    text = text.replace("\u00a0", " ")
    text = re.sub("[\u2000-\u200b]", " ", text)
    text = re.sub("[\u2028\u2029]", "\n", text)
    return _WHITESPACE.sub(" ", text).strip()


_ERROR_PATTERNS: List[re.Pattern] = [
    re.compile(r"^(I cannot|I can't|Unable to|Error|Failed)", re.IGNORECASE),
    re.compile(r"^(Sorry|Apologies|I apologize)", re.IGNORECASE),
    re.compile(r"^(Please|Could you|Can you)", re.IGNORECASE),
    re.compile(r"\[.*\]"),
    re.compile(r"\{.*\}"),
]


def is_valid_translation(translation: str, original: str) -> bool:
    """
    Heuristic check that a translation is usable.

    Rejects empty output, output identical to the source, output whose
    length is far off the source's, and typical refusal messages.
    """
    if not translation or not isinstance(translation, str):
        return False

    cleaned = clean_translation(translation)
    if cleaned.lower() == original.lower():
        return False

    if original:
        ratio = len(cleaned) / len(original)
        if ratio < 0.3 or ratio > 3:
            return False

    return not any(p.search(cleaned) for p in _ERROR_PATTERNS)


def has_reasoning_wrapper(text: str) -> bool:
    """Check if text contains a reasoning block."""
    if not text:
        return False
    return bool(_REASONING.search(text))
