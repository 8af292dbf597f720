"""Tests for the CAS reputation cache."""

import httpx
import pytest

from groupadmin.errors import ConfigurationError
from groupadmin.moderation.reputation import ReputationCheckCache, ReputationConfig

CONFIG = ReputationConfig(enabled=True, api_url="https://cas.test", timeout_sec=2.0)


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def _cache(handler, clock=None, ttl=3600):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ReputationCheckCache(ttl_sec=ttl, client=client, clock=clock or Clock())


def _counting_handler(payload, status=200):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, json=payload)

    return handler, calls


class TestReputationCheckCache:
    @pytest.mark.asyncio
    async def test_banned_user(self):
        handler, calls = _counting_handler({"ok": True, "result": {"offenses": 3}})
        result = await _cache(handler).check_user(42, CONFIG)
        assert result.is_banned is True
        assert result.reason == "CAS banned (3 offense(s))"
        assert calls[0].url.path == "/check"
        assert calls[0].url.params["user_id"] == "42"

    @pytest.mark.asyncio
    async def test_clean_user(self):
        handler, _ = _counting_handler({"ok": False, "description": "Record not found."})
        result = await _cache(handler).check_user(42, CONFIG)
        assert result.is_banned is False
        assert result.reason is None

    @pytest.mark.asyncio
    async def test_single_lookup_within_ttl(self):
        handler, calls = _counting_handler({"ok": True, "result": {"offenses": 1}})
        clock = Clock()
        cache = _cache(handler, clock)
        first = await cache.check_user(42, CONFIG)
        clock.now += 3599
        second = await cache.check_user(42, CONFIG)
        assert first == second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_fresh_lookup_after_expiry(self):
        handler, calls = _counting_handler({"ok": False})
        clock = Clock()
        cache = _cache(handler, clock)
        await cache.check_user(42, CONFIG)
        clock.now += 3600
        await cache.check_user(42, CONFIG)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_server_error_fails_open_and_is_not_cached(self):
        handler, calls = _counting_handler({"error": "boom"}, status=503)
        cache = _cache(handler)
        result = await cache.check_user(42, CONFIG)
        assert result.is_banned is False
        await cache.check_user(42, CONFIG)
        assert len(calls) == 2
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_timeout_fails_open(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        result = await _cache(handler).check_user(42, CONFIG)
        assert result.is_banned is False

    @pytest.mark.asyncio
    async def test_malformed_body_fails_open(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>not json</html>")

        result = await _cache(handler).check_user(42, CONFIG)
        assert result.is_banned is False

    @pytest.mark.asyncio
    async def test_disabled_makes_no_request(self):
        handler, calls = _counting_handler({"ok": True})
        result = await _cache(handler).check_user(42, ReputationConfig(enabled=False, api_url=None))
        assert result.is_banned is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_enabled_without_url_is_configuration_error(self):
        handler, calls = _counting_handler({"ok": True})
        with pytest.raises(ConfigurationError):
            await _cache(handler).check_user(42, ReputationConfig(enabled=True, api_url=None))
        assert calls == []

    @pytest.mark.asyncio
    async def test_cleanup_expired(self):
        handler, _ = _counting_handler({"ok": False})
        clock = Clock()
        cache = _cache(handler, clock, ttl=10)
        await cache.check_user(1, CONFIG)
        clock.now += 5
        await cache.check_user(2, CONFIG)
        clock.now += 6
        assert cache.cleanup_expired() == 1
        assert len(cache) == 1


def test_config_from_env(monkeypatch):
    monkeypatch.setattr("groupadmin.config.REPUTATION_ENABLED", True)
    monkeypatch.setattr("groupadmin.config.REPUTATION_API_URL", "")
    monkeypatch.setattr("groupadmin.config.REPUTATION_TIMEOUT_SEC", 3.0)
    reputation_config = ReputationConfig.from_env()
    assert reputation_config.api_url is None
    assert reputation_config.timeout_sec == 3.0
    with pytest.raises(ConfigurationError):
        reputation_config.validate()
