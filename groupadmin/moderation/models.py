# Copyright (c) 2025 sprowii
"""Модели данных для системы модерации.

Вердикты неизменяемы (frozen): производные поля вычисляются,
а не хранятся, поэтому одинаковые входы дают равные вердикты.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
import time
import uuid

from groupadmin import config


# Пороги скоринга имперсонации фиксированы, настраиваются только веса
IMPERSONATION_REVIEW_SCORE = 50
IMPERSONATION_AUTO_BAN_SCORE = 100

SKIP_REASON_TRUSTED = "trusted"
SKIP_REASON_ADMIN = "admin"
SKIP_REASON_ERROR = "error"
SKIP_REASON_DISABLED = "disabled"

DEFAULT_BLOCKED_EXTENSIONS = [
    "exe", "scr", "bat", "cmd", "com", "msi", "vbs", "js", "jar", "ps1", "apk", "lnk",
]


@dataclass
class ChatModSettings:
    """Настройки модерации для конкретного чата."""
    chat_id: int

    # Критичные проверки выполняются для всех, включая доверенных и админов
    critical_checks: List[str] = field(
        default_factory=lambda: ["url_filter", "file_type", "stop_words"]
    )
    blocked_domains: List[str] = field(default_factory=list)
    link_whitelist: List[str] = field(default_factory=list)
    blocked_file_extensions: List[str] = field(
        default_factory=lambda: list(DEFAULT_BLOCKED_EXTENSIONS)
    )
    filter_words: List[str] = field(default_factory=list)

    # Spam
    spam_enabled: bool = True

    # Impersonation
    impersonation_enabled: bool = True
    first_messages_count: int = field(default_factory=lambda: config.IMPERSONATION_FIRST_MESSAGES)

    # Reputation (CAS)
    reputation_enabled: bool = True

    # Уведомления
    notify_user: bool = True
    fallback_auto_delete_sec: int = field(default_factory=lambda: config.FALLBACK_AUTO_DELETE_SEC)

    # Logging
    log_channel_id: Optional[int] = None

    def validate(self) -> List[str]:
        """Валидация настроек. Возвращает список ошибок."""
        from groupadmin.moderation.content_filter import CRITICAL_SCANNER_NAMES

        errors = []

        unknown = [name for name in self.critical_checks if name not in CRITICAL_SCANNER_NAMES]
        if unknown:
            errors.append(f"Неизвестные критичные проверки: {', '.join(unknown)}")
        if not (0 <= self.first_messages_count <= 100):
            errors.append(f"first_messages_count должен быть от 0 до 100, получено: {self.first_messages_count}")
        if not (0 <= self.fallback_auto_delete_sec <= 3600):
            errors.append(
                f"fallback_auto_delete_sec должен быть от 0 до 3600, получено: {self.fallback_auto_delete_sec}"
            )
        return errors


# ============================================================================
# CONTENT EVENTS
# ============================================================================

@dataclass(frozen=True)
class ContentEvent:
    """Новое или отредактированное сообщение, приведённое к одному виду."""
    kind: str  # message, edited_message
    chat_id: int
    user_id: int
    message_id: int
    text: str = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    photo_path: Optional[str] = None
    chat_title: Optional[str] = None
    # Адреса скрытых ссылок (text_link), которых нет в самом тексте
    urls: Tuple[str, ...] = ()

    @property
    def is_edit(self) -> bool:
        return self.kind == "edited_message"


@dataclass(frozen=True)
class SpamCheckRequest:
    user_id: int
    chat_id: int
    text: str
    photo_path: Optional[str] = None

    @classmethod
    def from_event(cls, event: ContentEvent) -> "SpamCheckRequest":
        return cls(
            user_id=event.user_id,
            chat_id=event.chat_id,
            text=event.text,
            photo_path=event.photo_path,
        )


@dataclass(frozen=True)
class SpamResult:
    """Ответ классификатора спама."""
    is_spam: bool
    confidence: float = 0.0
    details: str = ""


@dataclass(frozen=True)
class SpamCheckOutcome:
    """Результат координатора спама: либо пропуск, либо ответ классификатора."""
    is_user_trusted: bool
    is_user_admin: bool
    spam_check_skipped: bool
    skip_reason: Optional[str] = None
    spam_result: Optional[SpamResult] = None

    @property
    def is_spam(self) -> bool:
        return not self.spam_check_skipped and self.spam_result is not None and self.spam_result.is_spam

    @property
    def should_allow(self) -> bool:
        return not self.is_spam


@dataclass(frozen=True)
class ModerationVerdict:
    """Итоговое решение по одному сообщению.

    Критичные нарушения проверяются независимо от доверия и статуса админа,
    статус влияет только на ветку спама.
    """
    is_user_trusted: bool
    is_user_admin: bool
    spam_check_skipped: bool
    skip_reason: Optional[str] = None
    critical_violations: Tuple[str, ...] = ()
    spam_result: Optional[SpamResult] = None

    @property
    def has_critical_violations(self) -> bool:
        return len(self.critical_violations) > 0

    @property
    def is_spam(self) -> bool:
        return not self.spam_check_skipped and self.spam_result is not None and self.spam_result.is_spam

    @property
    def should_allow(self) -> bool:
        return not self.has_critical_violations and not self.is_spam


# ============================================================================
# IMPERSONATION
# ============================================================================

class ImpersonationRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    CRITICAL = "critical"

    @classmethod
    def from_score(cls, score: int) -> "ImpersonationRiskLevel":
        if score >= IMPERSONATION_AUTO_BAN_SCORE:
            return cls.CRITICAL
        if score >= IMPERSONATION_REVIEW_SCORE:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class ImpersonationVerdict:
    """Подозрение, что пользователь выдаёт себя за администратора чата."""
    total_score: int
    risk_level: ImpersonationRiskLevel
    suspected_user_id: int
    target_user_id: int
    chat_id: int
    name_match: bool
    photo_match: bool
    photo_similarity_score: Optional[float] = None
    target_name: str = ""
    suspect_photo_path: Optional[str] = None

    @property
    def should_take_action(self) -> bool:
        return self.total_score >= IMPERSONATION_REVIEW_SCORE

    @property
    def should_auto_ban(self) -> bool:
        return self.total_score >= IMPERSONATION_AUTO_BAN_SCORE


@dataclass(frozen=True)
class AdminInfo:
    """Администратор чата для сравнения с новичками."""
    user_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo_path: Optional[str] = None

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or str(self.user_id)


# ============================================================================
# REPUTATION
# ============================================================================

@dataclass(frozen=True)
class ReputationCheckResult:
    is_banned: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class JoinVerdict:
    """Решение по вступлению участника: сначала репутация, затем имперсонация."""
    user_id: int
    chat_id: int
    reputation: ReputationCheckResult
    impersonation: Optional[ImpersonationVerdict] = None

    @property
    def should_ban(self) -> bool:
        if self.reputation.is_banned:
            return True
        return self.impersonation is not None and self.impersonation.should_auto_ban


# ============================================================================
# DELIVERY
# ============================================================================

class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    DELIVERED_VIA_FALLBACK = "delivered_via_fallback"
    QUEUED = "queued"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryResult:
    status: DeliveryStatus
    message_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.DELIVERED_VIA_FALLBACK)

    @property
    def fallback_used(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED_VIA_FALLBACK


@dataclass
class PendingNotification:
    """Уведомление, ожидающее доставки в личку."""
    id: str
    user_id: int
    notification_type: str
    text: str
    created_at: float

    @classmethod
    def create(cls, user_id: int, notification_type: str, text: str) -> "PendingNotification":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            notification_type=notification_type,
            text=text,
            created_at=time.time(),
        )


# ============================================================================
# AUDIT
# ============================================================================

@dataclass
class ModAction:
    """Действие модерации для аудита и лог-канала."""
    id: str
    chat_id: int
    action_type: str  # delete, ban, spam, critical, impersonation, reputation
    target_user_id: int
    admin_id: Optional[int]  # None для автоматических действий
    reason: str
    timestamp: float
    auto: bool = False

    @classmethod
    def create(
        cls,
        chat_id: int,
        action_type: str,
        target_user_id: int,
        reason: str,
        admin_id: Optional[int] = None,
        auto: bool = False
    ) -> "ModAction":
        """Создать новое действие модерации с автоматическим ID и timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            action_type=action_type,
            target_user_id=target_user_id,
            admin_id=admin_id,
            reason=reason,
            timestamp=time.time(),
            auto=auto
        )
