import anyio
import pytest

from rbicache.domain.exceptions import RateLimitExceededError
from rbicache.application.rate_limiter import (
    RATE_LIMIT_RULES,
    RateLimiter,
    RateLimitRule,
    client_identifier,
)


@pytest.fixture
def rate_limiter(clock) -> RateLimiter:
    rules = dict(RATE_LIMIT_RULES)
    rules["tiny"] = RateLimitRule(max_requests=3, window_seconds=60)
    rules["forgiving"] = RateLimitRule(
        max_requests=2, window_seconds=60, skip_successful_requests=True
    )
    rules["lenient"] = RateLimitRule(
        max_requests=2, window_seconds=60, skip_failed_requests=True
    )
    return RateLimiter(rules=rules, cleanup_interval_seconds=0.01, clock=clock)


class TestRules:
    def test_default_rules(self):
        assert RATE_LIMIT_RULES["login"] == RateLimitRule(5, 15 * 60)
        assert RATE_LIMIT_RULES["api"].max_requests == 100
        assert RATE_LIMIT_RULES["upload"].max_requests == 10
        assert RATE_LIMIT_RULES["search_residents"].max_requests == 50
        assert RATE_LIMIT_RULES["resident_create"].max_requests == 20

    def test_unknown_rule(self, rate_limiter):
        with pytest.raises(KeyError):
            rate_limiter.get_rule("nope")


class TestRateLimiter:
    @pytest.mark.anyio
    async def test_blocks_after_max_requests(self, rate_limiter):
        results = [await rate_limiter.check("ip:1.2.3.4", "tiny") for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results] == [2, 1, 0, 0]
        assert results[0].retry_after is None
        assert results[3].retry_after == 60

    @pytest.mark.anyio
    async def test_window_resets(self, rate_limiter, clock):
        for _ in range(3):
            await rate_limiter.check("ip:1", "tiny")
        clock.advance(30)
        blocked = await rate_limiter.check("ip:1", "tiny")
        assert blocked.allowed is False
        assert blocked.retry_after == 30

        clock.advance(31)
        result = await rate_limiter.check("ip:1", "tiny")

        assert result.allowed is True
        assert result.remaining == 2

    @pytest.mark.anyio
    async def test_identifiers_and_rules_are_independent(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.check("ip:1", "tiny")

        assert (await rate_limiter.check("ip:2", "tiny")).allowed
        assert (await rate_limiter.check("ip:1", "api")).allowed

    @pytest.mark.anyio
    async def test_enforce_raises_when_refused(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.enforce("ip:1", "tiny")

        with pytest.raises(RateLimitExceededError) as exc_info:
            await rate_limiter.enforce("ip:1", "tiny")

        assert exc_info.value.rule_key == "tiny"
        assert exc_info.value.retry_after == 60
        assert "60 seconds" in exc_info.value.message

    @pytest.mark.anyio
    async def test_record_success_refunds_when_rule_skips_successes(
        self, rate_limiter
    ):
        await rate_limiter.check("user:1", "forgiving")
        await rate_limiter.check("user:1", "forgiving")
        assert not (await rate_limiter.check("user:1", "forgiving")).allowed

        assert await rate_limiter.record_success("user:1", "forgiving") is True

        assert (await rate_limiter.check("user:1", "forgiving")).allowed

    @pytest.mark.anyio
    async def test_record_success_is_noop_for_counting_rules(self, rate_limiter):
        await rate_limiter.check("user:1", "tiny")
        assert await rate_limiter.record_success("user:1", "tiny") is False
        assert (await rate_limiter.get_status("user:1", "tiny")).count == 1

    @pytest.mark.anyio
    async def test_record_failure_refunds_when_rule_skips_failures(self, rate_limiter):
        await rate_limiter.check("user:1", "lenient")
        assert await rate_limiter.record_failure("user:1", "lenient") is True
        assert (await rate_limiter.get_status("user:1", "lenient")).count == 0
        assert await rate_limiter.record_failure("user:1", "lenient") is False

    @pytest.mark.anyio
    async def test_reset(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.check("ip:1", "tiny")

        assert await rate_limiter.reset("ip:1", "tiny") is True
        assert await rate_limiter.reset("ip:1", "tiny") is False
        assert (await rate_limiter.check("ip:1", "tiny")).allowed

    @pytest.mark.anyio
    async def test_get_status(self, rate_limiter, clock):
        assert await rate_limiter.get_status("ip:1", "tiny") is None
        for _ in range(3):
            await rate_limiter.check("ip:1", "tiny")

        status = await rate_limiter.get_status("ip:1", "tiny")

        assert status.count == 3
        assert status.blocked is True
        assert status.reset_time == clock.now + 60

    @pytest.mark.anyio
    async def test_cleanup_expired(self, rate_limiter, clock):
        await rate_limiter.check("ip:1", "tiny")
        await rate_limiter.check("ip:2", "login")
        clock.advance(61)

        assert await rate_limiter.cleanup_expired() == 1
        assert await rate_limiter.get_status("ip:1", "tiny") is None
        assert await rate_limiter.get_status("ip:2", "login") is not None

    @pytest.mark.anyio
    async def test_cleanup_task_runs_until_stopped(self, rate_limiter, clock):
        await rate_limiter.check("ip:1", "tiny")
        clock.advance(61)

        rate_limiter.start_cleanup_task()
        with anyio.fail_after(2):
            while await rate_limiter.get_status("ip:1", "tiny") is not None:
                await anyio.sleep(0.01)
        await rate_limiter.stop_cleanup_task()

        assert rate_limiter._cleanup_task is None


class TestClientIdentifier:
    def test_user_id_wins(self, request_factory):
        request = request_factory(headers={"X-Forwarded-For": "10.0.0.1"})
        assert client_identifier(request, user_id="42") == "user:42"

    def test_first_forwarded_address(self, request_factory):
        request = request_factory(
            headers={"X-Forwarded-For": "203.0.113.1, 198.51.100.2"}
        )
        assert client_identifier(request) == "ip:203.0.113.1"

    def test_real_ip_then_remote_addr(self, request_factory):
        assert (
            client_identifier(request_factory(headers={"X-Real-IP": "10.1.1.1"}))
            == "ip:10.1.1.1"
        )
        assert (
            client_identifier(request_factory(headers={"Remote-Addr": "10.2.2.2"}))
            == "ip:10.2.2.2"
        )

    def test_falls_back_to_socket_peer(self, request_factory):
        assert client_identifier(request_factory()) == "ip:127.0.0.1"
