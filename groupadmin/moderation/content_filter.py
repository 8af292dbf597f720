# Copyright (c) 2025 sprowii
"""Критичные проверки контента.

Выполняются для каждого сообщения независимо от доверия и статуса админа.
Сканеры независимы: запускаются все включённые в чате, результаты
склеиваются в порядке регистрации. Ошибка сканера не глотается.
"""
import re
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple
from urllib.parse import urlsplit

from groupadmin.errors import CriticalScanError
from groupadmin.logging_config import log
from groupadmin.moderation.models import ChatModSettings, ContentEvent


# ============================================================================
# PATTERNS
# ============================================================================

# Известные скам-домены для крипто
CRYPTO_SCAM_DOMAINS = [
    r"binance-?\w*\.(?:com|org|net|io)",
    r"coinbase-?\w*\.(?:com|org|net|io)",
    r"metamask-?\w*\.(?:com|org|net|io)",
    r"trustwallet-?\w*\.(?:com|org|net|io)",
    r"airdrop-?\w*\.(?:com|org|net|io)",
    r"claim-?\w*\.(?:com|org|net|io)",
    r"free-?crypto\.(?:com|org|net|io)",
    r"earn-?btc\.(?:com|org|net|io)",
]

# Adult-домены
ADULT_DOMAINS = [
    r"onlyfans\.com",
    r"pornhub\.com",
    r"xvideos\.com",
    r"chaturbate\.com",
    r"livejasmin\.com",
    r"stripchat\.com",
]

BLOCKED_DOMAIN_REGEX = re.compile(
    r"^(?:[\w-]+\.)*(?:" + "|".join(CRYPTO_SCAM_DOMAINS + ADULT_DOMAINS) + r")$",
    re.IGNORECASE
)

# Регулярка для извлечения ссылок
URL_REGEX = re.compile(
    r"https?://[^\s<>\"']+|"
    r"(?:www\.)?[a-zA-Z0-9][-a-zA-Z0-9]*(?:\.[a-zA-Z0-9][-a-zA-Z0-9]*)*\.[a-zA-Z]{2,}(?:/[^\s<>\"']*)?",
    re.IGNORECASE
)


def extract_domains(text: str) -> List[str]:
    """Домены всех ссылок в тексте, в нижнем регистре, без www и дублей."""
    domains: List[str] = []
    for match in URL_REGEX.findall(text or ""):
        candidate = match if "://" in match else f"http://{match}"
        host = urlsplit(candidate).hostname
        if not host:
            continue
        host = host.lower()
        if host.startswith("www."):
            host = host[4:]
        if host not in domains:
            domains.append(host)
    return domains


def event_domains(event: ContentEvent) -> List[str]:
    """Домены из текста и из адресов скрытых ссылок."""
    domains = extract_domains(event.text)
    for url in event.urls:
        for host in extract_domains(url):
            if host not in domains:
                domains.append(host)
    return domains


def _matches_domain(host: str, domain: str) -> bool:
    domain = domain.lower().strip()
    if domain.startswith("www."):
        domain = domain[4:]
    return bool(domain) and (host == domain or host.endswith("." + domain))


# ============================================================================
# SCANNERS
# ============================================================================

class CriticalScanner(Protocol):
    name: str

    async def scan(self, event: ContentEvent, settings: ChatModSettings) -> List[str]:
        ...


class UrlFilterScanner:
    """Ссылки на скам/adult домены и домены из чёрного списка чата."""
    name = "url_filter"

    async def scan(self, event: ContentEvent, settings: ChatModSettings) -> List[str]:
        violations = []
        for host in event_domains(event):
            if any(_matches_domain(host, allowed) for allowed in settings.link_whitelist):
                continue
            if BLOCKED_DOMAIN_REGEX.match(host) or any(
                _matches_domain(host, blocked) for blocked in settings.blocked_domains
            ):
                violations.append(f"url_filter: {host}")
        return violations


class FileTypeScanner:
    """Вложения с исполняемыми и скриптовыми расширениями."""
    name = "file_type"

    async def scan(self, event: ContentEvent, settings: ChatModSettings) -> List[str]:
        if not event.file_name or "." not in event.file_name:
            return []
        extension = event.file_name.rsplit(".", 1)[-1].lower().strip()
        blocked = {ext.lower().lstrip(".") for ext in settings.blocked_file_extensions}
        if extension in blocked:
            return [f"file_type: .{extension}"]
        return []


class StopWordScanner:
    """Запрещённые слова чата, без учёта регистра, по границам слов."""
    name = "stop_words"

    def __init__(self):
        self._compiled: Optional[Tuple[Tuple[str, ...], List[Tuple[str, re.Pattern]]]] = None

    def _patterns(self, words: Sequence[str]) -> List[Tuple[str, re.Pattern]]:
        key = tuple(words)
        if self._compiled is not None and self._compiled[0] == key:
            return self._compiled[1]

        patterns = []
        for word in words:
            if not word:
                continue
            escaped = re.escape(word)
            # \b не работает для кириллицы, поэтому явные lookaround
            patterns.append((word, re.compile(rf"(?<![а-яёa-z0-9])({escaped})(?![а-яёa-z0-9])", re.IGNORECASE)))
        self._compiled = (key, patterns)
        return patterns

    async def scan(self, event: ContentEvent, settings: ChatModSettings) -> List[str]:
        if not event.text or not settings.filter_words:
            return []
        return [
            f"stop_words: {word}"
            for word, pattern in self._patterns(settings.filter_words)
            if pattern.search(event.text)
        ]


def default_scanners() -> List[CriticalScanner]:
    return [UrlFilterScanner(), FileTypeScanner(), StopWordScanner()]


CRITICAL_SCANNER_NAMES = frozenset(scanner.name for scanner in default_scanners())


class CriticalContentScanner:
    """Запускает все включённые критичные сканеры и склеивает нарушения."""

    def __init__(self, scanners: Optional[Iterable[CriticalScanner]] = None):
        self.scanners: List[CriticalScanner] = list(scanners) if scanners is not None else default_scanners()

    async def scan(self, event: ContentEvent, settings: ChatModSettings) -> List[str]:
        """Вернуть все нарушения (пустой список - сообщение чистое).

        Raises:
            CriticalScanError: если любой из сканеров упал
        """
        enabled = set(settings.critical_checks)
        violations: List[str] = []
        for scanner in self.scanners:
            if scanner.name not in enabled:
                continue
            try:
                found = await scanner.scan(event, settings)
            except Exception as exc:
                log.error(f"Critical scanner {scanner.name} failed: {exc!r}")
                raise CriticalScanError(scanner.name, repr(exc)) from exc
            violations.extend(found)
        return violations
