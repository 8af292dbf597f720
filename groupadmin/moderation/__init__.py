# Copyright (c) 2025 sprowii
"""Ядро принятия решений модерации.

Компоненты:
- ModerationDecisionCoordinator: Единая точка принятия решений
- CriticalContentScanner: Критичные проверки контента (всегда выполняются)
- SpamDetectionCoordinator: Спам-проверка с учётом доверия
- ReputationCheckCache: Проверка репутации через CAS с кэшем
- ImpersonationDetector: Выявление имперсонации администраторов
- DeliveryEngine: Доставка уведомлений пользователям
- ModerationActionExecutor: Исполнение вердиктов
- ModLogger: Логирование действий модерации
"""

from groupadmin.moderation.actions import ModerationActionExecutor
from groupadmin.moderation.content_filter import (
    CriticalContentScanner,
    FileTypeScanner,
    StopWordScanner,
    UrlFilterScanner,
)
from groupadmin.moderation.controller import ModerationDecisionCoordinator
from groupadmin.moderation.impersonation import ImpersonationDetector, ImpersonationSettings
from groupadmin.moderation.logger import ModLogger
from groupadmin.moderation.models import (
    AdminInfo,
    ChatModSettings,
    ContentEvent,
    DeliveryResult,
    DeliveryStatus,
    ImpersonationRiskLevel,
    ImpersonationVerdict,
    JoinVerdict,
    ModAction,
    ModerationVerdict,
    PendingNotification,
    ReputationCheckResult,
    SpamCheckOutcome,
    SpamCheckRequest,
    SpamResult,
)
from groupadmin.moderation.notifications import DeliveryEngine
from groupadmin.moderation.permissions import ChatTrustSource
from groupadmin.moderation.reputation import ReputationCheckCache, ReputationConfig
from groupadmin.moderation.spam import PatternSpamClassifier, SpamDetectionCoordinator

__all__ = [
    # Coordinator
    "ModerationDecisionCoordinator",
    # Critical content
    "CriticalContentScanner",
    "UrlFilterScanner",
    "FileTypeScanner",
    "StopWordScanner",
    # Spam
    "SpamDetectionCoordinator",
    "PatternSpamClassifier",
    "ChatTrustSource",
    # Reputation
    "ReputationCheckCache",
    "ReputationConfig",
    # Impersonation
    "ImpersonationDetector",
    "ImpersonationSettings",
    # Delivery / actions
    "DeliveryEngine",
    "ModerationActionExecutor",
    "ModLogger",
    # Models
    "AdminInfo",
    "ChatModSettings",
    "ContentEvent",
    "DeliveryResult",
    "DeliveryStatus",
    "ImpersonationRiskLevel",
    "ImpersonationVerdict",
    "JoinVerdict",
    "ModAction",
    "ModerationVerdict",
    "PendingNotification",
    "ReputationCheckResult",
    "SpamCheckOutcome",
    "SpamCheckRequest",
    "SpamResult",
]
