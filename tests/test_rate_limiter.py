"""
Tests for the reservation throttle and the keyed lock registry.

Run with: pytest tests/test_rate_limiter.py -v
"""

import asyncio
from datetime import date

from starlette.requests import Request

from booking_core.locks import KeyedLocks, booking_key, staff_day_key
from booking_core.rate_limiter import RateLimiter

from conftest import make_token


def make_request(headers: dict, client=("10.0.0.1", 5555)) -> Request:
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/bookings",
            "query_string": b"",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
            "client": client,
        }
    )


class TestRateLimiter:
    """Sliding-window counting."""

    def test_blocks_after_limit_within_window(self):
        limiter = RateLimiter()
        for i in range(3):
            allowed, meta = limiter.check_rate_limit("ip:1", "POST /bookings", 3, 60, now=1000.0 + i)
            assert allowed
        assert meta["remaining"] == 0

        allowed, meta = limiter.check_rate_limit("ip:1", "POST /bookings", 3, 60, now=1010.0)
        assert not allowed
        assert meta["reset_time"] == 1060

    def test_window_slides(self):
        limiter = RateLimiter()
        for i in range(3):
            limiter.check_rate_limit("ip:1", "POST /bookings", 3, 60, now=1000.0 + i)

        allowed, _ = limiter.check_rate_limit("ip:1", "POST /bookings", 3, 60, now=1061.0)
        assert allowed

    def test_clients_and_endpoints_counted_separately(self):
        limiter = RateLimiter()
        limiter.check_rate_limit("ip:1", "POST /bookings", 1, 60, now=1000.0)

        assert limiter.check_rate_limit("ip:2", "POST /bookings", 1, 60, now=1001.0)[0]
        assert limiter.check_rate_limit("ip:1", "PATCH /bookings", 1, 60, now=1001.0)[0]
        assert not limiter.check_rate_limit("ip:1", "POST /bookings", 1, 60, now=1001.0)[0]

    def test_client_key_prefers_actor(self):
        limiter = RateLimiter()
        with_token = make_request({"Authorization": f"Bearer {make_token('customer-7')}"})
        assert limiter.client_key(with_token) == "user:customer-7"

    def test_client_key_falls_back_to_ip(self):
        limiter = RateLimiter()
        assert limiter.client_key(make_request({})) == "ip:10.0.0.1"
        assert limiter.client_key(make_request({"Authorization": "Bearer junk"})) == "ip:10.0.0.1"
        forwarded = make_request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert limiter.client_key(forwarded) == "ip:203.0.113.9"


class TestKeyedLocks:
    """Same key runs one at a time; different keys interleave."""

    async def test_same_key_is_exclusive(self):
        locks = KeyedLocks()
        inside = 0
        peak = 0

        async def worker():
            nonlocal inside, peak
            async with locks.hold("reserve:t:1:2030-01-07"):
                inside += 1
                peak = max(peak, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*[worker() for _ in range(5)])
        assert peak == 1
        assert len(locks) == 0

    async def test_different_keys_run_concurrently(self):
        locks = KeyedLocks()
        started = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("a"):
                started.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await started.wait()
        async with locks.hold("b"):
            assert len(locks) == 2
        release.set()
        await task
        assert len(locks) == 0

    def test_keys(self):
        assert staff_day_key("t", 4, date(2030, 1, 7)) == "reserve:t:4:2030-01-07"
        assert booking_key("t", "bkg-abc") == "booking:t:BKG-ABC"
        assert booking_key("t", "  bkg-abc ") == booking_key("t", "BKG-ABC")
