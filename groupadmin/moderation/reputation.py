# Copyright (c) 2025 sprowii
"""Проверка репутации пользователя во внешней базе банов (CAS).

GET {api_url}/check?user_id=<id>
- {"ok": true, "result": {"offenses": N, ...}} - пользователь забанен
- {"ok": false, ...} - пользователь не найден

Успешные ответы кэшируются на час по user_id (абсолютный срок от вставки).
Любой сбой API трактуется как "не забанен" и не кэшируется.
"""
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import httpx

from groupadmin import config
from groupadmin.errors import ConfigurationError
from groupadmin.logging_config import log
from groupadmin.moderation.models import ReputationCheckResult
from groupadmin.security.data_protection import pseudonymize_id

NOT_BANNED = ReputationCheckResult(is_banned=False)


@dataclass(frozen=True)
class ReputationConfig:
    enabled: bool
    api_url: Optional[str]
    timeout_sec: float = 5.0
    user_agent: str = "groupadmin-bot/1.0"

    def validate(self) -> None:
        if self.enabled and not self.api_url:
            raise ConfigurationError("Проверка репутации включена, но api_url не задан")

    @classmethod
    def from_env(cls) -> "ReputationConfig":
        return cls(
            enabled=config.REPUTATION_ENABLED,
            api_url=config.REPUTATION_API_URL or None,
            timeout_sec=config.REPUTATION_TIMEOUT_SEC,
            user_agent=config.REPUTATION_USER_AGENT,
        )


def _parse_response(payload: object) -> ReputationCheckResult:
    if not isinstance(payload, dict):
        raise ValueError(f"unexpected payload type {type(payload).__name__}")
    if not payload.get("ok"):
        return NOT_BANNED
    result = payload.get("result") or {}
    offenses = result.get("offenses", 0) if isinstance(result, dict) else 0
    return ReputationCheckResult(is_banned=True, reason=f"CAS banned ({offenses} offense(s))")


class ReputationCheckCache:
    """Кэш проверок репутации с TTL.

    Общий для всех событий: вставка и чтение словаря атомарны в рамках
    event loop, блокировка на время HTTP-запроса не держится.
    """

    def __init__(
        self,
        ttl_sec: int = config.REPUTATION_CACHE_TTL_SEC,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_sec = ttl_sec
        self._client = client
        self._clock = clock
        # {user_id: (result, expires_at)}
        self._cache: Dict[int, Tuple[ReputationCheckResult, float]] = {}

    def _get_cached(self, user_id: int) -> Optional[ReputationCheckResult]:
        cached = self._cache.get(user_id)
        if cached is None:
            return None
        result, expires_at = cached
        if self._clock() >= expires_at:
            self._cache.pop(user_id, None)
            return None
        return result

    async def check_user(self, user_id: int, reputation_config: ReputationConfig) -> ReputationCheckResult:
        """Проверить пользователя.

        Raises:
            ConfigurationError: проверка включена, но не задан api_url
        """
        if not reputation_config.enabled:
            return NOT_BANNED
        reputation_config.validate()

        cached = self._get_cached(user_id)
        if cached is not None:
            log.debug(f"Reputation cache hit for {pseudonymize_id(user_id)}")
            return cached

        result = await self._fetch(user_id, reputation_config)
        if result is None:
            return NOT_BANNED

        self._cache[user_id] = (result, self._clock() + self.ttl_sec)
        if result.is_banned:
            log.info(f"User {pseudonymize_id(user_id)} found in CAS: {result.reason}")
        return result

    async def _fetch(self, user_id: int, reputation_config: ReputationConfig) -> Optional[ReputationCheckResult]:
        url = f"{reputation_config.api_url.rstrip('/')}/check"
        headers = {"User-Agent": reputation_config.user_agent}
        params = {"user_id": str(user_id)}
        try:
            if self._client is not None:
                response = await self._client.get(
                    url, params=params, headers=headers, timeout=reputation_config.timeout_sec
                )
            else:
                async with httpx.AsyncClient(timeout=reputation_config.timeout_sec) as client:
                    response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            return _parse_response(response.json())
        except httpx.TimeoutException:
            log.warning(f"CAS check timed out for {pseudonymize_id(user_id)}, treating as not banned")
        except httpx.HTTPStatusError as exc:
            log.warning(f"CAS API returned {exc.response.status_code}, treating as not banned")
        except httpx.HTTPError as exc:
            log.warning(f"CAS API unavailable: {exc!r}, treating as not banned")
        except (ValueError, AttributeError) as exc:
            log.warning(f"Malformed CAS response: {exc!r}, treating as not banned")
        return None

    def cleanup_expired(self) -> int:
        """Удалить истёкшие записи. Возвращает количество удалённых."""
        now = self._clock()
        expired = [user_id for user_id, (_, expires_at) in self._cache.items() if now >= expires_at]
        for user_id in expired:
            self._cache.pop(user_id, None)
        return len(expired)

    def __len__(self) -> int:
        return len(self._cache)
