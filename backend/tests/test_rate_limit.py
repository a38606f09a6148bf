"""
CareNote Backend — Rate Limiter Tests
=======================================

What we test:
    ✅ Requests under the limit pass
    ✅ Old hits slide out of the window
    ✅ Cleanup drops idle keys
    ✅ Credential paths count against the auth and general buckets
    ✅ A request rejected by the general bucket spends no auth hit
    ❌ Request over the limit → seconds to wait
"""

from carenote.middleware.rate_limit import RateLimitMiddleware, SlidingWindow


class TestSlidingWindow:

    def test_allows_up_to_limit(self):
        window = SlidingWindow(limit=3, window=60)
        assert [window.hit("1.2.3.4", 100.0 + i) for i in range(3)] == [None, None, None]

    def test_blocks_over_limit(self):
        window = SlidingWindow(limit=2, window=60)
        window.hit("1.2.3.4", 100.0)
        window.hit("1.2.3.4", 110.0)
        assert window.hit("1.2.3.4", 120.0) == 41

    def test_keys_are_independent(self):
        window = SlidingWindow(limit=1, window=60)
        assert window.hit("1.2.3.4", 100.0) is None
        assert window.hit("5.6.7.8", 100.0) is None

    def test_window_slides(self):
        window = SlidingWindow(limit=1, window=60)
        window.hit("1.2.3.4", 100.0)
        assert window.hit("1.2.3.4", 161.0) is None

    def test_cleanup(self):
        window = SlidingWindow(limit=5, window=60)
        window.hit("old", 100.0)
        window.hit("new", 190.0)
        assert window.cleanup(200.0) == 1
        assert window.hit("new", 200.0) is None

    def test_wait_time_records_nothing(self):
        window = SlidingWindow(limit=1, window=60)
        assert window.wait_time("1.2.3.4", 100.0) is None
        assert window.wait_time("1.2.3.4", 100.0) is None
        window.record("1.2.3.4", 100.0)
        assert window.wait_time("1.2.3.4", 130.0) == 31


class TestRateLimitBuckets:
    """Bucket order for credential endpoints."""

    def _middleware(self, general_limit: int, auth_limit: int) -> RateLimitMiddleware:
        middleware = RateLimitMiddleware(app=None)
        middleware.general = SlidingWindow(general_limit, 60)
        middleware.auth = SlidingWindow(auth_limit, 60)
        return middleware

    def test_credential_path_counts_against_both_buckets(self):
        middleware = self._middleware(general_limit=10, auth_limit=1)
        assert middleware._check("1.2.3.4", "/api/contact", 100.0) is None
        assert middleware._check("1.2.3.4", "/api/contact", 101.0) == ("auth", 60)
        assert middleware._check("1.2.3.4", "/api/pricing", 101.0) is None

    def test_general_rejection_spends_no_auth_hit(self):
        middleware = self._middleware(general_limit=1, auth_limit=2)
        assert middleware._check("1.2.3.4", "/api/pricing", 100.0) is None

        for second in range(5):
            limited = middleware._check("1.2.3.4", "/api/auth/login", 101.0 + second)
            assert limited is not None
            assert limited[0] == "general"

        assert middleware.auth.wait_time("1.2.3.4", 110.0) is None
        assert middleware.general.wait_time("1.2.3.4", 161.0) is None
        assert middleware._check("1.2.3.4", "/api/auth/login", 161.0) is None
        assert middleware.auth.wait_time("1.2.3.4", 161.0) is None
