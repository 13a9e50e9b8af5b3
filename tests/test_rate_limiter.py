"""Tests for the sliding-window rate limiter."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException

from app.core.rate_limiter import (
    SlidingWindowRateLimiter,
    check_api_key_rate_limit,
    get_limiter_for_operation,
    get_rate_limit_identifier,
    letters_limiter,
    general_limiter,
)


@pytest.fixture
def limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(limit=3, window_seconds=60, prefix="test")


class TestSlidingWindow:
    def test_allows_up_to_limit(self, limiter) -> None:
        results = [limiter.check("user:1") for _ in range(3)]

        assert all(r.success for r in results)
        assert [r.remaining for r in results] == [2, 1, 0]

    def test_rejects_over_limit(self, limiter) -> None:
        for _ in range(3):
            limiter.check("user:1")

        result = limiter.check("user:1")

        assert result.success is False
        assert result.remaining == 0

    def test_keys_are_independent(self, limiter) -> None:
        for _ in range(3):
            limiter.check("user:1")

        assert limiter.check("user:2").success is True

    def test_window_slides(self, limiter) -> None:
        with patch("app.core.rate_limiter.time.time", return_value=1000.0):
            for _ in range(3):
                limiter.check("user:1")
            assert limiter.check("user:1").success is False

        with patch("app.core.rate_limiter.time.time", return_value=1060.5):
            assert limiter.check("user:1").success is True

    def test_idle_keys_are_dropped(self, limiter) -> None:
        with patch("app.core.rate_limiter.time.time", return_value=1000.0):
            limiter.check("user:1")
            limiter.check("user:2")

        assert limiter.purge_expired(now=1030.0) == 0
        assert limiter.purge_expired(now=1060.5) == 2
        assert limiter._hits == {}

    def test_expired_key_is_replaced_on_next_check(self, limiter) -> None:
        with patch("app.core.rate_limiter.time.time", return_value=1000.0):
            limiter.check("user:1")

        with patch("app.core.rate_limiter.time.time", return_value=1100.0):
            result = limiter.check("user:1")

        assert result.remaining == 2
        assert list(limiter._hits) == ["test:user:1"]

    def test_sweep_runs_when_key_count_is_high(self, limiter) -> None:
        with patch("app.core.rate_limiter.time.time", return_value=1000.0):
            for n in range(5):
                limiter.check(f"user:{n}")

        with patch("app.core.rate_limiter.PURGE_THRESHOLD", 5):
            with patch("app.core.rate_limiter.time.time", return_value=1100.0):
                limiter.check("user:new")

        assert list(limiter._hits) == ["test:user:new"]

    def test_reset(self, limiter) -> None:
        for _ in range(3):
            limiter.check("user:1")

        limiter.reset("user:1")

        assert limiter.check("user:1").success is True

    def test_enforce_raises_429_with_headers(self, limiter) -> None:
        for _ in range(3):
            limiter.enforce("user:1")

        with pytest.raises(HTTPException) as exc_info:
            limiter.enforce("user:1")

        assert exc_info.value.status_code == 429
        headers = exc_info.value.headers
        assert int(headers["Retry-After"]) >= 1
        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == "0"

    def test_disabled_always_allows(self, limiter) -> None:
        settings = MagicMock(RATE_LIMIT_ENABLED=False)
        with patch("app.core.rate_limiter.get_settings", return_value=settings):
            results = [limiter.check("user:1") for _ in range(10)]

        assert all(r.success for r in results)


class TestIdentifiers:
    def test_user_id_preferred(self) -> None:
        assert get_rate_limit_identifier("abc") == "user:abc"

    def test_forwarded_for_first_hop(self) -> None:
        request = MagicMock()
        request.headers = {"x-forwarded-for": "1.2.3.4, 10.0.0.1"}

        assert get_rate_limit_identifier(None, request) == "ip:1.2.3.4"

    def test_real_ip_then_peer(self) -> None:
        request = MagicMock()
        request.headers = {"x-real-ip": "5.6.7.8"}
        assert get_rate_limit_identifier(None, request) == "ip:5.6.7.8"

        request.headers = {}
        request.client.host = "9.9.9.9"
        assert get_rate_limit_identifier(None, request) == "ip:9.9.9.9"

    def test_unknown_without_request(self) -> None:
        assert get_rate_limit_identifier(None) == "ip:unknown"


def test_operation_mapping() -> None:
    assert get_limiter_for_operation("letters.generate") is letters_limiter
    assert get_limiter_for_operation("something.else") is general_limiter


def test_api_key_tiers() -> None:
    assert check_api_key_rate_limit("key-1", "unlimited").success is True

    for _ in range(100):
        check_api_key_rate_limit("key-free", "free")
    with pytest.raises(HTTPException):
        check_api_key_rate_limit("key-free", "free")

    with pytest.raises(ValueError):
        check_api_key_rate_limit("key-1", "platinum")
