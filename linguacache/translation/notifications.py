"""
User-facing notices for quota and API failures.

Notices are deduplicated so a burst of failing requests produces one
message. Under CI the message is emitted as an error block (plus a GitHub
Actions annotation) and a quota notice flips ``exit_code`` to 1 so the
command line can fail the job.
"""

import logging
import os
import sys
from typing import Mapping, Optional, Set

from linguacache.core.exceptions import APIError, QuotaExceededError

logger = logging.getLogger(__name__)

CI_ENV_VARS = (
    "CI",
    "GITHUB_ACTIONS",
    "GITLAB_CI",
    "JENKINS_URL",
    "TRAVIS",
    "CIRCLECI",
    "BUILDKITE",
    "DRONE",
)


def detect_ci(environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return any(env.get(name) for name in CI_ENV_VARS)


class NotificationSystem:
    """Deduplicating sink for quota and API error notices."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None, stream=None):
        env = os.environ if environ is None else environ
        self.is_ci = detect_ci(env)
        self.is_github_actions = bool(env.get("GITHUB_ACTIONS"))
        self.stream = stream
        self.exit_code = 0
        self._history: Set[str] = set()

    def notify_quota_exceeded(self, error: QuotaExceededError) -> bool:
        """
        Report a quota failure once per quota limit.

        Returns:
            True if a notice was emitted, False if it was suppressed
        """
        key = f"quota-exceeded-{error.quota.get('limit') or 'unknown'}"
        if key in self._history:
            return False
        self._history.add(key)

        self._emit(self._format_quota_message(error), quota=True)
        return True

    def notify_api_error(self, error: APIError, context: Optional[str] = None) -> bool:
        key = f"api-error-{error.code or error.status}-{context or 'general'}"
        if key in self._history:
            return False
        self._history.add(key)

        self._emit(self._format_api_error_message(error, context), quota=False)
        return True

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def sent(self) -> Set[str]:
        return set(self._history)

    def _format_quota_message(self, error: QuotaExceededError) -> str:
        quota = error.quota
        lines = ["TRANSLATION QUOTA EXCEEDED", ""]
        if quota:
            lines.append(f"  Quota limit: {quota.get('limit', 'unknown')}")
            lines.append(f"  Used: {quota.get('used', 'unknown')}")
            if quota.get("resetDate"):
                lines.append(f"  Resets: {quota['resetDate']}")
        lines.append("")
        lines.append("Check your usage on the provider dashboard or upgrade your plan.")
        return "\n".join(lines)

    def _format_api_error_message(self, error: APIError, context: Optional[str]) -> str:
        lines = ["TRANSLATION API ERROR", ""]
        if context:
            lines.append(f"  Context: {context}")
        lines.append(f"  Error: {error.message}")
        if error.code:
            lines.append(f"  Code: {error.code}")
        if error.status:
            lines.append(f"  Status: {error.status}")
        lines.append("")
        lines.append("Check your API key, network connection and the service status.")
        return "\n".join(lines)

    def _emit(self, message: str, quota: bool) -> None:
        if not self.is_ci:
            logger.warning(message)
            return

        stream = self.stream or sys.stdout
        if self.is_github_actions:
            encoded = message.replace("\n", "%0A")
            stream.write(f"::error title=Translation API Error::{encoded}\n")
            stream.flush()

        rule = "=" * 80
        logger.error(f"\n{rule}\n{message}\n{rule}")
        if quota:
            self.exit_code = 1
