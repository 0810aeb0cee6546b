"""
HTTP client for the remote batch translation API.

Requests are validated and rate limited locally before anything goes on
the wire. Each call runs as its own task registered under a request key,
so it can be cancelled explicitly or superseded by a newer call with the
same key.
"""

import asyncio
import logging
import os
import uuid
from typing import Any, Dict, List, Optional, Set

import httpx

from linguacache.core.exceptions import (
    APIError,
    ConfigurationError,
    NetworkError,
    QuotaExceededError,
    RateLimitExceededError,
    RequestTimeoutError,
    TranslationCancelledError,
    ValidationError,
)
from linguacache.translation.base import (
    BatchEntry,
    TranslationBackend,
    TranslationRequest,
    TranslationResponse,
)
from linguacache.translation.notifications import NotificationSystem
from linguacache.translation.output_cleaner import clean_batch_translations, clean_translation
from linguacache.utils.rate_limiter import RateLimiter
from linguacache.utils.security import (
    obfuscate_api_key,
    require_locale,
    sanitize_text_input,
    validate_api_key,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.linguacache.dev/v1"
DEFAULT_TIMEOUT = 30.0
QUOTA_ERROR_CODES = ("QUOTA_EXCEEDED", "RATE_LIMIT_EXCEEDED")


def get_api_base_url(explicit: Optional[str] = None) -> str:
    """Resolve the API base URL: explicit value, then LINGUACACHE_API_URL, then the default."""
    return explicit or os.getenv("LINGUACACHE_API_URL") or DEFAULT_API_URL


def _validate_base_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigurationError(f"Invalid API URL: {e}", config_key="api_url") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigurationError(
            f"Invalid API URL '{url}'",
            config_key="api_url",
            valid_values=["http://...", "https://..."]
        )
    if parsed.scheme == "http" and parsed.host not in ("localhost", "127.0.0.1"):
        logger.warning("API calls should be made over HTTPS in production")


class APIClient(TranslationBackend):
    """Async client for ``POST {base_url}/translate/batch``."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        model: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        notifier: Optional[NotificationSystem] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize API client.

        Args:
            api_key: Bearer credential; also the rate limiter identity
            base_url: API root (see ``get_api_base_url``)
            timeout: Per-request timeout in seconds
            model: Default model name sent with each batch
            rate_limiter: Shared limiter (default: 100 requests / 60 s)
            notifier: Sink for quota and API error notices
            transport: Custom httpx transport, e.g. ``httpx.MockTransport`` in tests

        Raises:
            ConfigurationError: If the API key or base URL is malformed
        """
        valid, error = validate_api_key(api_key)
        if not valid:
            raise ConfigurationError(f"Invalid API key: {error}", config_key="api_key")

        super().__init__(api_key=api_key, model=model)
        self.base_url = get_api_base_url(base_url)
        _validate_base_url(self.base_url)

        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self.notifier = notifier or NotificationSystem()
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._active_requests: Dict[str, asyncio.Task] = {}
        self._cancelled: Set[asyncio.Task] = set()
        self.stats = {"requests": 0, "errors": 0, "cancelled": 0, "rate_limited": 0}

        logger.debug(f"API client initialized for {self.base_url} with key {obfuscate_api_key(api_key)}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self) -> None:
        self.cancel_all_requests()
        await self._client.aclose()

    # Cancellation

    def cancel_request(self, request_key: str) -> bool:
        task = self._active_requests.pop(request_key, None)
        if task is None or task.done():
            return False
        self._cancelled.add(task)
        task.cancel()
        return True

    def cancel_all_requests(self) -> int:
        keys = list(self._active_requests.keys())
        return sum(1 for key in keys if self.cancel_request(key))

    @property
    def active_requests(self) -> List[str]:
        return [k for k, t in self._active_requests.items() if not t.done()]

    # Transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        request_key: Optional[str] = None
    ) -> Any:
        # request keys may carry source text, so the wire id is always opaque
        request_id = uuid.uuid4().hex
        tracking_key = request_key or request_id

        if not self.rate_limiter.try_acquire(self.api_key):
            self.stats["rate_limited"] += 1
            raise RateLimitExceededError(
                self.rate_limiter.max_requests,
                self.rate_limiter.window_ms,
                self.rate_limiter.reset_in_ms(self.api_key)
            )

        if request_key:
            self.cancel_request(request_key)

        task = asyncio.ensure_future(self._send(method, endpoint, payload, request_id))
        self._active_requests[tracking_key] = task
        self.stats["requests"] += 1

        try:
            return await task
        except asyncio.CancelledError:
            if task in self._cancelled:
                self.stats["cancelled"] += 1
                raise TranslationCancelledError(f"Request {request_id} was cancelled", key=request_key) from None
            raise
        finally:
            self._cancelled.discard(task)
            if self._active_requests.get(tracking_key) is task:
                del self._active_requests[tracking_key]

    async def _send(self, method: str, endpoint: str, payload: Optional[Dict[str, Any]], request_id: str) -> Any:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-Request-Id": request_id,
        }
        try:
            response = await self._client.request(method, endpoint, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            self.stats["errors"] += 1
            raise RequestTimeoutError(self.timeout, e) from e
        except httpx.HTTPError as e:
            self.stats["errors"] += 1
            raise NetworkError(f"Network error: {e}", original_error=e) from e

        if response.is_error:
            self.stats["errors"] += 1
            raise self._classify_error(response, endpoint)

        try:
            return response.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON in response from {endpoint}", status=response.status_code) from e

    def _classify_error(self, response: httpx.Response, endpoint: str) -> APIError:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        status = response.status_code
        code = data.get("code")
        message = data.get("message") or data.get("error") or f"HTTP {status}: {response.reason_phrase}"

        if status == 429 or code in QUOTA_ERROR_CODES:
            error = QuotaExceededError(message, status=status, code=code or "QUOTA_EXCEEDED", quota=data.get("quota"))
            self.notifier.notify_quota_exceeded(error)
            return error

        error = APIError(message, status=status, code=code)
        self.notifier.notify_api_error(error, endpoint)
        return error

    # Endpoints

    def _validate_request(self, request: TranslationRequest) -> TranslationRequest:
        if not request.entries:
            raise ValidationError("No entries provided for translation", field="entries", value=0)
        if len(request.entries) > self.max_batch_size:
            raise ValidationError(
                f"Too many entries (max {self.max_batch_size} per batch)",
                field="entries",
                value=len(request.entries)
            )
        require_locale(request.source_language, field="source_language")
        require_locale(request.target_language, field="target_language")

        return TranslationRequest(
            entries=[
                BatchEntry(id=entry.id, text=sanitize_text_input(entry.text), context=entry.context)
                for entry in request.entries
            ],
            source_language=request.source_language,
            target_language=request.target_language,
            model=request.model or self.model,
        )

    async def translate_batch(
        self,
        request: TranslationRequest,
        request_key: Optional[str] = None
    ) -> TranslationResponse:
        """
        Translate a batch of 1 to 100 entries.

        Raises:
            ValidationError: Bad locale, empty or oversize batch, oversize text
            RateLimitExceededError: Local limiter rejected the call
            QuotaExceededError: Server reported quota exhaustion
            APIError: Any other server-side failure
            NetworkError: Transport failure or timeout
            TranslationCancelledError: Call was cancelled by key
        """
        sanitized = self._validate_request(request)
        data = await self._request("POST", "/translate/batch", sanitized.to_payload(), request_key)
        if not isinstance(data, dict):
            raise APIError("Unexpected response shape from /translate/batch")

        response = TranslationResponse.from_payload(data)
        if response.success:
            response.translations = clean_batch_translations(response.translations)
        return response

    async def translate_single(
        self,
        text: str,
        source_language: str,
        target_language: str,
        model: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> str:
        """Translate one string through the batch endpoint (entry id ``single``)."""
        request = TranslationRequest(
            entries=[BatchEntry(id="single", text=text, context=context)],
            source_language=source_language,
            target_language=target_language,
            model=model,
        )
        response = await self.translate_batch(request)
        if not response.success:
            raise APIError(response.error or "Translation failed")

        translation = response.translations.get("single")
        if not translation:
            raise APIError("No translation returned")
        return clean_translation(translation)

    async def health_check(self) -> Dict[str, Any]:
        return await self._request("GET", "/health")

    async def get_supported_models(self) -> Dict[str, Any]:
        """Models and languages the API supports."""
        return await self._request("GET", "/models")

    def get_info(self) -> Dict:
        info = super().get_info()
        info.update({
            "base_url": self.base_url,
            "api_key": obfuscate_api_key(self.api_key),
            "timeout": self.timeout,
            "active_requests": len(self.active_requests),
        })
        return info
