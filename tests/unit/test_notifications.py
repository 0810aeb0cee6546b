"""Unit tests for quota and API error notices."""

import io

from linguacache.core.exceptions import APIError, QuotaExceededError
from linguacache.translation.notifications import NotificationSystem, detect_ci


def test_detect_ci():
    assert detect_ci({"CI": "true"})
    assert detect_ci({"GITLAB_CI": "1"})
    assert not detect_ci({})
    assert not detect_ci({"CI": ""})


class TestNotificationSystem:
    """Test deduplication and CI behaviour."""

    def test_quota_notice_is_deduplicated(self):
        notifier = NotificationSystem(environ={})
        error = QuotaExceededError(quota={"limit": 1000, "used": 1000})

        assert notifier.notify_quota_exceeded(error)
        assert not notifier.notify_quota_exceeded(error)
        assert notifier.sent == {"quota-exceeded-1000"}

    def test_quota_without_limit(self):
        notifier = NotificationSystem(environ={})

        notifier.notify_quota_exceeded(QuotaExceededError())

        assert notifier.sent == {"quota-exceeded-unknown"}

    def test_api_error_keys(self):
        notifier = NotificationSystem(environ={})

        assert notifier.notify_api_error(APIError("boom", status=500), "/translate/batch")
        assert notifier.notify_api_error(APIError("boom", status=500))
        assert not notifier.notify_api_error(APIError("again", status=500))
        assert notifier.notify_api_error(APIError("bad", status=400, code="BAD_REQUEST"))

        assert notifier.sent == {
            "api-error-500-/translate/batch",
            "api-error-500-general",
            "api-error-BAD_REQUEST-general",
        }

    def test_clear_history(self):
        notifier = NotificationSystem(environ={})
        error = QuotaExceededError()
        notifier.notify_quota_exceeded(error)

        notifier.clear_history()

        assert notifier.notify_quota_exceeded(error)

    def test_outside_ci_exit_code_unchanged(self):
        stream = io.StringIO()
        notifier = NotificationSystem(environ={}, stream=stream)

        notifier.notify_quota_exceeded(QuotaExceededError())

        assert notifier.exit_code == 0
        assert stream.getvalue() == ""

    def test_github_actions_annotation(self):
        stream = io.StringIO()
        notifier = NotificationSystem(environ={"CI": "true", "GITHUB_ACTIONS": "true"}, stream=stream)

        notifier.notify_quota_exceeded(QuotaExceededError(quota={"limit": 50, "used": 50}))

        output = stream.getvalue()
        assert output.startswith("::error title=Translation API Error::")
        assert "%0A" in output
        assert notifier.exit_code == 1

    def test_api_error_in_ci_does_not_fail_job(self):
        stream = io.StringIO()
        notifier = NotificationSystem(environ={"CI": "true"}, stream=stream)

        notifier.notify_api_error(APIError("boom", status=500))

        assert notifier.exit_code == 0
        assert stream.getvalue() == ""
