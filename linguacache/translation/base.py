"""
Base translation backend interface.
Anything that can translate a batch of entries inherits from TranslationBackend.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field


@dataclass
class BatchEntry:
    """One text to translate, addressed by a caller-chosen id."""
    id: str
    text: str
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"id": self.id, "text": self.text}
        if self.context:
            data["context"] = self.context
        return data


@dataclass
class TranslationRequest:
    """Request for a batch translation."""
    entries: List[BatchEntry]
    source_language: str
    target_language: str
    model: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire format expected by ``POST /translate/batch``."""
        payload = {
            "entries": [entry.to_dict() for entry in self.entries],
            "sourceLanguage": self.source_language,
            "targetLanguage": self.target_language,
        }
        if self.model:
            payload["model"] = self.model
        return payload


@dataclass
class TranslationResponse:
    """Response from a translation backend."""
    success: bool
    translations: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "TranslationResponse":
        translations = data.get("translations") or {}
        return cls(
            success=bool(data.get("success", False)),
            translations={str(k): v for k, v in translations.items() if isinstance(v, str)},
            error=data.get("error"),
            metadata={k: v for k, v in data.items() if k not in ("success", "translations", "error")},
        )


class TranslationBackend(ABC):
    """Abstract base class for translation backends."""

    # Hard server-side limit on entries per batch
    max_batch_size = 100

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key
        self.model = model
        self.name = self.__class__.__name__

    @abstractmethod
    async def translate_batch(
        self,
        request: TranslationRequest,
        request_key: Optional[str] = None
    ) -> TranslationResponse:
        """
        Translate a batch of entries asynchronously.

        Args:
            request: Entries plus source/target languages
            request_key: Optional key; a later call with the same key
                cancels this one

        Returns:
            TranslationResponse mapping entry ids to translations
        """
        pass

    def cancel_request(self, request_key: str) -> bool:
        """Cancel the in-flight call registered under ``request_key``."""
        return False

    def cancel_all_requests(self) -> int:
        return 0

    def is_available(self) -> bool:
        """Check if backend is available and configured."""
        return self.api_key is not None

    def get_info(self) -> Dict:
        """Get backend information."""
        return {
            "name": self.name,
            "model": self.model,
            "available": self.is_available()
        }
