# Copyright (c) 2025 sprowii
"""Координатор решений модерации.

Порядок для сообщения:
1. Критичные сканеры (всегда, для всех; ошибка пробрасывается)
2. Доверие / статус админа
3. Спам-проверка (пропускается для доверенных и админов; сбой -> пропуск с причиной "error")
4. Объединение в ModerationVerdict

Порядок для вступления: репутация (CAS), затем имперсонация.
Координатор только решает, действия выполняет ModerationActionExecutor.
"""
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

from groupadmin.logging_config import log
from groupadmin.moderation.content_filter import CriticalContentScanner
from groupadmin.moderation.impersonation import ImpersonationDetector
from groupadmin.moderation.models import (
    SKIP_REASON_DISABLED,
    SKIP_REASON_ERROR,
    ChatModSettings,
    ContentEvent,
    ImpersonationVerdict,
    JoinVerdict,
    ModerationVerdict,
    SpamCheckRequest,
)
from groupadmin.moderation.reputation import ReputationCheckCache, ReputationConfig
from groupadmin.moderation.spam import SpamDetectionCoordinator
from groupadmin.moderation.storage import load_settings_async, save_settings_async
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id

SETTINGS_CACHE_TTL = 60

PhotoLoader = Callable[[], Awaitable[Optional[str]]]


class ModerationDecisionCoordinator:
    """Единая точка принятия решений по сообщениям и вступлениям."""

    def __init__(
        self,
        critical_scanner: CriticalContentScanner,
        spam_coordinator: SpamDetectionCoordinator,
        reputation_cache: ReputationCheckCache,
        impersonation: ImpersonationDetector,
        reputation_config: Optional[ReputationConfig] = None,
    ):
        self.critical_scanner = critical_scanner
        self.spam_coordinator = spam_coordinator
        self.reputation_cache = reputation_cache
        self.impersonation = impersonation
        self.reputation_config = reputation_config or ReputationConfig.from_env()
        self._settings_cache: Dict[int, Tuple[ChatModSettings, float]] = {}

    # ========================================================================
    # SETTINGS
    # ========================================================================

    async def get_settings_async(self, chat_id: int) -> ChatModSettings:
        cached = self._settings_cache.get(chat_id)
        if cached is not None and time.time() - cached[1] < SETTINGS_CACHE_TTL:
            return cached[0]
        settings = await load_settings_async(chat_id)
        self._settings_cache[chat_id] = (settings, time.time())
        return settings

    def invalidate_settings_cache(self, chat_id: int) -> None:
        self._settings_cache.pop(chat_id, None)

    async def update_settings(self, settings: ChatModSettings) -> None:
        """Сохранить настройки и сразу обновить кэш."""
        await save_settings_async(settings)
        self._settings_cache[settings.chat_id] = (settings, time.time())

    # ========================================================================
    # CONTENT
    # ========================================================================

    async def evaluate(self, event: ContentEvent, settings: Optional[ChatModSettings] = None) -> ModerationVerdict:
        """Принять решение по сообщению.

        Raises:
            CriticalScanError: критичный сканер упал, сообщение нельзя пропускать
        """
        if settings is None:
            settings = await self.get_settings_async(event.chat_id)

        violations = tuple(await self.critical_scanner.scan(event, settings))
        is_trusted, is_admin = await self.spam_coordinator.resolve_trust(event.user_id, event.chat_id)

        if not settings.spam_enabled and not (is_trusted or is_admin):
            return ModerationVerdict(
                is_user_trusted=False,
                is_user_admin=False,
                spam_check_skipped=True,
                skip_reason=SKIP_REASON_DISABLED,
                critical_violations=violations,
            )

        try:
            outcome = await self.spam_coordinator.check(
                SpamCheckRequest.from_event(event), trust=(is_trusted, is_admin)
            )
        except Exception as exc:
            log.warning(
                f"Spam check failed for {pseudonymize_id(event.user_id)} "
                f"in chat {pseudonymize_chat_id(event.chat_id)}, skipping: {exc!r}"
            )
            return ModerationVerdict(
                is_user_trusted=is_trusted,
                is_user_admin=is_admin,
                spam_check_skipped=True,
                skip_reason=SKIP_REASON_ERROR,
                critical_violations=violations,
            )

        return ModerationVerdict(
            is_user_trusted=is_trusted,
            is_user_admin=is_admin,
            spam_check_skipped=outcome.spam_check_skipped,
            skip_reason=outcome.skip_reason,
            critical_violations=violations,
            spam_result=outcome.spam_result,
        )

    # ========================================================================
    # JOIN / EARLY MESSAGES
    # ========================================================================

    async def evaluate_impersonation(
        self,
        user,
        chat_id: int,
        photo_path: Optional[str] = None,
        photo_loader: Optional[PhotoLoader] = None,
    ) -> Optional[ImpersonationVerdict]:
        """Проверка на имперсонацию для новичка.

        photo_loader вызывается только если проверка действительно нужна,
        чтобы не скачивать аватарки постоянных участников.
        """
        if not await self.impersonation.should_check(user.id, chat_id):
            return None
        if photo_path is None and photo_loader is not None:
            photo_path = await photo_loader()
        return await self.impersonation.check(user, chat_id, photo_path)

    async def evaluate_join(
        self,
        user,
        chat_id: int,
        photo_path: Optional[str] = None,
        photo_loader: Optional[PhotoLoader] = None,
    ) -> JoinVerdict:
        """Проверить вступившего участника: CAS, затем имперсонация.

        Raises:
            ConfigurationError: проверка репутации включена без api_url
        """
        settings = await self.get_settings_async(chat_id)
        reputation_config = self.reputation_config
        if not settings.reputation_enabled:
            reputation_config = ReputationConfig(enabled=False, api_url=reputation_config.api_url)

        reputation = await self.reputation_cache.check_user(user.id, reputation_config)
        if reputation.is_banned:
            return JoinVerdict(user_id=user.id, chat_id=chat_id, reputation=reputation)

        impersonation = await self.evaluate_impersonation(user, chat_id, photo_path, photo_loader)
        return JoinVerdict(user_id=user.id, chat_id=chat_id, reputation=reputation, impersonation=impersonation)
