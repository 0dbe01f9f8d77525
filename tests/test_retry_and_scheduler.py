"""
Tests for retry classification and scheduler wiring.

Guards against:
  - Auth failures classified as retryable
  - Quota errors not recognised from status or message
  - The daily sync job missing or duplicated on restart
"""
from types import SimpleNamespace

import pytest

from gsc_sync.utils.retry import RetryStats, calculate_backoff, http_status, is_quota_error, is_retryable_error


def http_error(status, message="error"):
    error = Exception(message)
    error.resp = SimpleNamespace(status=status)
    return error


# ────────────────────────────────────────────
# RETRY CLASSIFICATION
# ────────────────────────────────────────────


class TestRetryClassification:

    @pytest.mark.parametrize("status", [429, 500, 502, 503, 504])
    def test_transient_statuses_retry(self, status):
        assert is_retryable_error(http_error(status))

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    def test_client_errors_do_not_retry(self, status):
        assert not is_retryable_error(http_error(status, "connection reset"))

    def test_network_errors_retry(self):
        assert is_retryable_error(ConnectionError("reset by peer"))
        assert is_retryable_error(TimeoutError())
        assert not is_retryable_error(ValueError("bad dimension"))

    def test_quota_detection(self):
        assert is_quota_error(http_error(429))
        assert is_quota_error(http_error(403, "rateLimitExceeded"))
        assert not is_quota_error(http_error(403, "forbidden"))
        assert is_quota_error(Exception("Daily quota exceeded"))

    def test_http_status_of_plain_error(self):
        assert http_status(ValueError("x")) is None
        assert http_status(http_error("503")) == 503

    def test_backoff_is_capped(self):
        assert calculate_backoff(1, base_delay=2.0, jitter=False) == 2.0
        assert calculate_backoff(3, base_delay=2.0, jitter=False) == 8.0
        assert calculate_backoff(20, base_delay=2.0, max_delay=60.0, jitter=False) == 60.0

    def test_retry_stats(self):
        stats = RetryStats()
        stats.record_attempt(error=RuntimeError("boom"), delay=1.5)
        stats.record_attempt()
        stats.mark_success()
        assert stats.to_dict() == {
            "attempts": 2,
            "total_delay_seconds": 1.5,
            "success": True,
            "last_error": "RuntimeError: boom",
            "errors": ["RuntimeError: boom"],
        }


# ────────────────────────────────────────────
# SCHEDULER
# ────────────────────────────────────────────


class TestScheduler:

    def test_daily_job_registered(self):
        from gsc_sync import scheduler

        try:
            scheduler.setup_scheduler()
            jobs = scheduler.get_scheduled_jobs()
            assert [job["id"] for job in jobs] == ["campaign_sync"]
            assert "cron" in jobs[0]["trigger"]
        finally:
            scheduler.scheduler.remove_all_jobs()
