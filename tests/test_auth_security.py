"""Tests for auth security features (revocation ledger, rate limiting)."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from authvault.auth.blacklist import RevocationLedger
from authvault.auth.rate_limit import RateLimitConfig, RateLimiter
from authvault.testing.utils import make_context


class TestRevocationLedger:
    """Tests for RevocationLedger."""

    @pytest.fixture
    def ledger(self, mock_s3):
        """Create a ledger instance."""
        return RevocationLedger(mock_s3, "test-bucket", "test/")

    @pytest.mark.asyncio
    async def test_add_and_check_blacklisted(self, ledger):
        """A blacklisted token is reported as blacklisted."""
        expires_at = datetime.now(timezone.utc) + timedelta(hours=1)

        await ledger.blacklist("token-abc", uuid.uuid4(), "logout", expires_at)

        assert await ledger.is_blacklisted("token-abc") is True

    @pytest.mark.asyncio
    async def test_non_blacklisted_token(self, ledger):
        """An unknown token is not blacklisted."""
        assert await ledger.is_blacklisted("unknown-token") is False

    @pytest.mark.asyncio
    async def test_raw_token_is_not_stored(self, ledger, mock_s3):
        """Only the token hash reaches the store."""
        await ledger.blacklist("very-secret-token", None, "logout")

        assert "very-secret-token" not in str(mock_s3.get_bucket_data("test-bucket"))

    @pytest.mark.asyncio
    async def test_blacklisting_twice_keeps_first_entry(self, ledger):
        """A second blacklist call keeps the original entry."""
        account_id = uuid.uuid4()
        first = await ledger.blacklist("token-abc", account_id, "logout")
        second = await ledger.blacklist("token-abc", account_id, "password_change")

        assert second.id == first.id
        assert second.reason == "logout"

    @pytest.mark.asyncio
    async def test_visible_to_other_instances(self, ledger, mock_s3):
        """Entries written by one ledger are seen by another."""
        await ledger.blacklist("token-abc", None, "logout")

        other = RevocationLedger(mock_s3, "test-bucket", "test/")
        assert await other.is_blacklisted("token-abc") is True

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_entries(self, ledger):
        """Cleanup deletes entries past their expiry."""
        now = datetime.now(timezone.utc)
        await ledger.blacklist("old", None, "logout", now - timedelta(seconds=1))
        await ledger.blacklist("fresh", None, "logout", now + timedelta(hours=1))

        assert await ledger.cleanup() == 1
        assert await ledger.is_blacklisted("old") is False
        assert await ledger.is_blacklisted("fresh") is True


class TestRateLimiter:
    """Tests for RateLimiter."""

    @pytest.fixture
    def rate_limiter(self):
        """Create a rate limiter with a small test rule."""
        return RateLimiter(
            limits={
                "test": RateLimitConfig(requests=3, window_seconds=60),
                "blocking": RateLimitConfig(requests=2, window_seconds=60, block_duration=600),
                "skippable": RateLimitConfig(
                    requests=2, window_seconds=60, skip_successful_requests=True
                ),
            }
        )

    @pytest.mark.asyncio
    async def test_allows_within_limit(self, rate_limiter):
        """Requests under the limit are allowed."""
        context = make_context()
        results = [await rate_limiter.check_rate_limit(context, "test") for _ in range(3)]

        assert all(result.allowed for result in results)
        assert [result.remaining for result in results] == [2, 1, 0]

    @pytest.mark.asyncio
    async def test_blocks_over_limit(self, rate_limiter):
        """The request past the limit is rejected."""
        context = make_context()
        for _ in range(3):
            await rate_limiter.check_rate_limit(context, "test")

        result = await rate_limiter.check_rate_limit(context, "test")

        assert result.allowed is False
        assert 0 < result.retry_after <= 60

    @pytest.mark.asyncio
    async def test_block_duration(self, rate_limiter):
        """A block outlasts the window."""
        context = make_context()
        for _ in range(2):
            await rate_limiter.check_rate_limit(context, "blocking")

        result = await rate_limiter.check_rate_limit(context, "blocking")

        assert result.allowed is False
        assert result.retry_after > 60

    @pytest.mark.asyncio
    async def test_keys_are_per_ip_and_action(self, rate_limiter):
        """Limits are tracked per IP and action."""
        for _ in range(3):
            await rate_limiter.check_rate_limit(make_context(ip_address="10.0.0.1"), "test")

        assert (await rate_limiter.check_rate_limit(make_context(ip_address="10.0.0.2"), "test")).allowed
        assert (await rate_limiter.check_rate_limit(make_context(ip_address="10.0.0.1"), "blocking")).allowed

    @pytest.mark.asyncio
    async def test_successful_requests_are_given_back(self, rate_limiter):
        """Recorded successes do not use up the budget."""
        context = make_context()
        for _ in range(5):
            result = await rate_limiter.check_rate_limit(context, "skippable")
            assert result.allowed
            await rate_limiter.record_success(context, "skippable")

    @pytest.mark.asyncio
    async def test_disabled_limiter_allows_everything(self):
        """A disabled limiter allows every request."""
        limiter = RateLimiter(enabled=False)
        context = make_context()

        results = [await limiter.check_rate_limit(context, "auth_register") for _ in range(10)]

        assert all(result.allowed for result in results)

    @pytest.mark.asyncio
    async def test_concurrent_checks_never_exceed_limit(self, rate_limiter):
        """Concurrent checks never allow more than the limit."""
        context = make_context()

        results = await asyncio.gather(
            *(rate_limiter.check_rate_limit(context, "test") for _ in range(10))
        )

        assert sum(1 for result in results if result.allowed) == 3

    @pytest.mark.asyncio
    async def test_headers(self, rate_limiter):
        """Results render the X-RateLimit headers."""
        result = await rate_limiter.check_rate_limit(make_context(), "test")

        headers = result.headers()
        assert headers["X-RateLimit-Limit"] == "3"
        assert headers["X-RateLimit-Remaining"] == "2"

    def test_unknown_action_uses_default(self, rate_limiter):
        """Unknown actions fall back to the default rule."""
        assert rate_limiter.config_for("nope") == RateLimiter.DEFAULT_LIMITS["default"]

    def test_reset(self, rate_limiter):
        """Resetting a key drops its entry."""
        rate_limiter._storage["test:127.0.0.1"]
        rate_limiter.reset("test:127.0.0.1")
        assert "test:127.0.0.1" not in rate_limiter._storage

    @pytest.mark.asyncio
    async def test_reset_all(self, rate_limiter):
        """Resetting everything restores the full budget."""
        context = make_context()
        for _ in range(3):
            await rate_limiter.check_rate_limit(context, "test")

        rate_limiter.reset_all()

        assert (await rate_limiter.check_rate_limit(context, "test")).allowed
