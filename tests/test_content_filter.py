"""Tests for critical content scanners."""

import pytest

from groupadmin.errors import CriticalScanError
from groupadmin.moderation.content_filter import (
    CriticalContentScanner,
    FileTypeScanner,
    StopWordScanner,
    UrlFilterScanner,
    extract_domains,
)


class ExplodingScanner:
    name = "url_filter"

    async def scan(self, event, settings):
        raise RuntimeError("regex engine exploded")


class RecordingScanner:
    def __init__(self, name, result):
        self.name = name
        self.result = result
        self.calls = 0

    async def scan(self, event, settings):
        self.calls += 1
        return list(self.result)


class TestExtractDomains:
    def test_extracts_hosts(self):
        text = "see https://www.Example.com/page and t.me/channel, again example.com"
        assert extract_domains(text) == ["example.com", "t.me"]

    def test_empty_text(self):
        assert extract_domains("") == []


class TestUrlFilterScanner:
    @pytest.mark.asyncio
    async def test_builtin_scam_domain(self, make_event, settings):
        violations = await UrlFilterScanner().scan(make_event("claim at https://binance-gift.com now"), settings)
        assert violations == ["url_filter: binance-gift.com"]

    @pytest.mark.asyncio
    async def test_chat_blocklist_matches_subdomains(self, make_event, settings):
        settings.blocked_domains = ["spam.example"]
        violations = await UrlFilterScanner().scan(make_event("go to promo.spam.example/x"), settings)
        assert violations == ["url_filter: promo.spam.example"]

    @pytest.mark.asyncio
    async def test_whitelist_wins(self, make_event, settings):
        settings.blocked_domains = ["example.org"]
        settings.link_whitelist = ["docs.example.org"]
        violations = await UrlFilterScanner().scan(make_event("https://docs.example.org/guide"), settings)
        assert violations == []

    @pytest.mark.asyncio
    async def test_regular_link_allowed(self, make_event, settings):
        assert await UrlFilterScanner().scan(make_event("https://python.org"), settings) == []

    @pytest.mark.asyncio
    async def test_hidden_link_scanned(self, make_event, settings):
        event = make_event("click here", urls=("https://binance-claim.com/bonus",))
        assert await UrlFilterScanner().scan(event, settings) == ["url_filter: binance-claim.com"]

    @pytest.mark.asyncio
    async def test_hidden_link_not_duplicated(self, make_event, settings):
        event = make_event("earn-btc.com", urls=("https://earn-btc.com",))
        assert await UrlFilterScanner().scan(event, settings) == ["url_filter: earn-btc.com"]


class TestFileTypeScanner:
    @pytest.mark.asyncio
    async def test_blocks_executable(self, make_event, settings):
        event = make_event("", file_name="Invoice.PDF.EXE")
        assert await FileTypeScanner().scan(event, settings) == ["file_type: .exe"]

    @pytest.mark.asyncio
    async def test_allows_documents(self, make_event, settings):
        assert await FileTypeScanner().scan(make_event("", file_name="report.pdf"), settings) == []

    @pytest.mark.asyncio
    async def test_no_attachment(self, make_event, settings):
        assert await FileTypeScanner().scan(make_event("text"), settings) == []


class TestStopWordScanner:
    @pytest.mark.asyncio
    async def test_word_boundaries(self, make_event, settings):
        settings.filter_words = ["казино"]
        scanner = StopWordScanner()
        assert await scanner.scan(make_event("Лучшее КАЗИНО города"), settings) == ["stop_words: казино"]
        assert await scanner.scan(make_event("онлайнказиноплюс"), settings) == []

    @pytest.mark.asyncio
    async def test_recompiles_when_words_change(self, make_event, settings):
        scanner = StopWordScanner()
        settings.filter_words = ["foo"]
        assert await scanner.scan(make_event("foo bar"), settings) == ["stop_words: foo"]
        settings.filter_words = ["bar"]
        assert await scanner.scan(make_event("foo bar"), settings) == ["stop_words: bar"]


class TestCriticalContentScanner:
    @pytest.mark.asyncio
    async def test_concatenates_in_registration_order(self, make_event, settings):
        first = RecordingScanner("url_filter", ["url_filter: a.com"])
        second = RecordingScanner("stop_words", ["stop_words: x"])
        scanner = CriticalContentScanner([first, second])
        assert await scanner.scan(make_event(), settings) == ["url_filter: a.com", "stop_words: x"]

    @pytest.mark.asyncio
    async def test_disabled_checks_not_run(self, make_event, settings):
        settings.critical_checks = ["stop_words"]
        url = RecordingScanner("url_filter", ["url_filter: a.com"])
        scanner = CriticalContentScanner([url])
        assert await scanner.scan(make_event(), settings) == []
        assert url.calls == 0

    @pytest.mark.asyncio
    async def test_failure_propagates(self, make_event, settings):
        scanner = CriticalContentScanner([ExplodingScanner()])
        with pytest.raises(CriticalScanError) as exc_info:
            await scanner.scan(make_event(), settings)
        assert exc_info.value.scanner == "url_filter"

    @pytest.mark.asyncio
    async def test_default_scanners_combined(self, make_event, settings):
        settings.filter_words = ["scam"]
        event = make_event("scam link https://onlyfans.com/x", file_name="setup.bat")
        violations = await CriticalContentScanner().scan(event, settings)
        assert violations == ["url_filter: onlyfans.com", "file_type: .bat", "stop_words: scam"]
