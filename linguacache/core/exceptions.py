"""
Exception hierarchy for LinguaCache.

Every error carries a human-readable message, structured details, a
recoverability flag and an optional suggestion, so callers (the engine's
fallback logic, the CLI, notification sinks) can decide how to react
without string matching.
"""

from __future__ import annotations
from typing import Optional, Dict, Any


class LinguaCacheError(Exception):
    """Base exception for all LinguaCache errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        suggestion: Optional[str] = None
    ):
        """
        Initialize error.

        Args:
            message: Human-readable error message
            details: Additional error details
            recoverable: Whether a retry may succeed
            suggestion: Suggested fix or workaround
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.suggestion = suggestion

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "suggestion": self.suggestion
        }

    def __str__(self) -> str:
        """String representation with suggestion if available."""
        result = self.message
        if self.suggestion:
            result += f"\nSuggestion: {self.suggestion}"
        return result


class ValidationError(LinguaCacheError):
    """Raised for malformed input: bad locale codes, batch size, oversize text."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value
        super().__init__(message, details, recoverable=False)
        self.field = field
        self.value = value


class NetworkError(LinguaCacheError):
    """Raised when the translation API cannot be reached."""

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize network error.

        Args:
            message: Error message
            original_error: Underlying transport exception
            details: Additional error details
        """
        details = dict(details or {})
        if original_error is not None:
            details["original_error"] = str(original_error)
            details["error_type"] = type(original_error).__name__
        super().__init__(
            message,
            details,
            recoverable=True,
            suggestion="Check your network connection and the API base URL"
        )
        self.original_error = original_error


class RequestTimeoutError(NetworkError):
    """Raised when a request exceeds its timeout."""

    def __init__(self, timeout: float, original_error: Optional[Exception] = None):
        super().__init__(
            f"Request timed out after {timeout:g}s",
            original_error=original_error,
            details={"timeout": timeout}
        )
        self.timeout = timeout


class OfflineError(NetworkError):
    """Raised when a translation is needed while the engine is offline."""

    def __init__(self, text: str, target_locale: str):
        super().__init__(
            f"Offline: no cached translation for target '{target_locale}'",
            details={"text": text, "target_locale": target_locale}
        )
        self.suggestion = "Enable fallback or preload locale bundles for offline use"


class APIError(LinguaCacheError):
    """Raised when the translation API answers with a failure."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        suggestion: Optional[str] = None
    ):
        """
        Initialize API error.

        Args:
            message: Error message reported by the server (or synthesized)
            status: HTTP status code, if any
            code: Machine-readable error code from the response body
            details: Additional error details
            recoverable: Whether a retry may succeed
            suggestion: Suggested fix or workaround
        """
        details = dict(details or {})
        details.setdefault("status", status)
        details.setdefault("code", code)
        super().__init__(message, details, recoverable=recoverable, suggestion=suggestion)
        self.status = status
        self.code = code


class QuotaExceededError(APIError):
    """Raised when the API account quota or rate limit is exhausted."""

    def __init__(
        self,
        message: str = "Translation quota exceeded",
        status: Optional[int] = 429,
        code: str = "QUOTA_EXCEEDED",
        quota: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize quota error.

        Args:
            message: Error message
            status: HTTP status code
            code: Error code (QUOTA_EXCEEDED or RATE_LIMIT_EXCEEDED)
            quota: Quota details reported by the server (limit, used, resetDate)
        """
        super().__init__(
            message,
            status=status,
            code=code,
            details={"quota": quota or {}},
            recoverable=False,
            suggestion="Wait for the quota to reset or upgrade your plan"
        )
        self.quota = quota or {}


class RateLimitExceededError(QuotaExceededError):
    """Raised when the client-side rate limiter rejects a request."""

    def __init__(self, limit: int, window_ms: int, reset_in_ms: int):
        super().__init__(
            f"Rate limit exceeded: {limit} requests per {window_ms} ms",
            status=None,
            code="RATE_LIMIT_EXCEEDED",
            quota={"limit": limit, "windowMs": window_ms, "resetInMs": reset_in_ms}
        )
        self.suggestion = f"Retry in {reset_in_ms} ms"
        self.reset_in_ms = reset_in_ms


class TranslationCancelledError(LinguaCacheError):
    """Raised when a request was invalidated by a locale switch or an explicit cancel."""

    def __init__(self, reason: str = "Translation cancelled", key: Optional[str] = None):
        super().__init__(reason, {"key": key} if key else {}, recoverable=False)
        self.key = key


class CacheError(LinguaCacheError):
    """Raised when cache operations fail."""

    def __init__(
        self,
        message: str,
        cache_type: Optional[str] = None,
        operation: Optional[str] = None
    ):
        """
        Initialize cache error.

        Args:
            message: Error message
            cache_type: Storage backend (memory, disk)
            operation: Operation that failed (get, set, import, ...)
        """
        details = {}
        if cache_type:
            details["cache_type"] = cache_type
        if operation:
            details["operation"] = operation

        super().__init__(
            message,
            details,
            recoverable=True,
            suggestion="Clear the cache or continue without it; translations still work"
        )


class ConfigurationError(LinguaCacheError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, config_key: Optional[str] = None, valid_values: Optional[list] = None):
        details = {}
        if config_key:
            details["config_key"] = config_key
        if valid_values:
            details["valid_values"] = valid_values

        suggestion = None
        if valid_values:
            suggestion = f"Valid values: {', '.join(map(str, valid_values))}"

        super().__init__(message, details, recoverable=False, suggestion=suggestion)
