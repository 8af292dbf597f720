# Copyright (c) 2025 sprowii
"""Обнаружение пользователей, выдающих себя за администраторов чата.

Скоринг по лучшему совпадению среди админов:
- имя похоже (>= name_threshold)  -> +name_weight
- аватарка похожа (>= photo_threshold) -> +photo_weight

>= 50 - алерт админам, >= 100 - автобан.
"""
import asyncio
import html
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol, Union

import redis
from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from groupadmin import config
from groupadmin.logging_config import log
from groupadmin.moderation.actions import ModerationActionExecutor
from groupadmin.moderation.logger import ModLogger
from groupadmin.moderation.models import (
    AdminInfo,
    ChatModSettings,
    DeliveryStatus,
    ImpersonationRiskLevel,
    ImpersonationVerdict,
)
from groupadmin.moderation.photos import perceptual_similarity
from groupadmin.moderation.spam import TrustSource
from groupadmin.moderation.storage import (
    create_impersonation_alert_async,
    get_message_count_async,
    has_pending_alert_async,
    load_settings_async,
    resolve_impersonation_alert_async,
)
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from groupadmin.utils.text import calculate_name_similarity, full_name

PhotoSimilarity = Callable[[str, str], Union[float, Awaitable[float]]]

CALLBACK_PREFIX = "imp"


@dataclass(frozen=True)
class ImpersonationSettings:
    name_threshold: float = config.IMPERSONATION_NAME_THRESHOLD
    photo_threshold: float = config.IMPERSONATION_PHOTO_THRESHOLD
    name_weight: int = config.IMPERSONATION_NAME_WEIGHT
    photo_weight: int = config.IMPERSONATION_PHOTO_WEIGHT


class AdminRoster(Protocol):
    async def list_admins(self, chat_id: int) -> List[AdminInfo]:
        ...


def review_keyboard(verdict: ImpersonationVerdict) -> InlineKeyboardMarkup:
    suffix = f"{verdict.suspected_user_id}:{verdict.chat_id}"
    return InlineKeyboardMarkup([[
        InlineKeyboardButton("🚫 Забанить", callback_data=f"{CALLBACK_PREFIX}:ban:{suffix}"),
        InlineKeyboardButton("✅ Доверять", callback_data=f"{CALLBACK_PREFIX}:trust:{suffix}"),
        InlineKeyboardButton("❌ Ложная тревога", callback_data=f"{CALLBACK_PREFIX}:dismiss:{suffix}"),
    ]])


def _alert_text(verdict: ImpersonationVerdict, suspect_name: str, ban_failed: bool = False) -> str:
    photo = (
        f"{verdict.photo_similarity_score:.0%}" if verdict.photo_similarity_score is not None else "нет данных"
    )
    lines = [
        "🎭 <b>Возможная имперсонация администратора</b>",
        "",
        f"👤 Подозреваемый: {html.escape(suspect_name)} (<code>{verdict.suspected_user_id}</code>)",
        f"👮 Похож на: {html.escape(verdict.target_name)} (<code>{verdict.target_user_id}</code>)",
        f"📊 Score: {verdict.total_score} ({verdict.risk_level.value})",
        f"🔤 Совпадение имени: {'да' if verdict.name_match else 'нет'}",
        f"🖼 Похожесть аватарки: {photo}",
    ]
    if ban_failed:
        lines.extend(["", "⚠️ Автобан не удался, нужно решение администратора"])
    return "\n".join(lines)


class ImpersonationDetector:
    """Сравнивает новичков с администраторами чата."""

    def __init__(
        self,
        trust_source: TrustSource,
        roster: AdminRoster,
        executor: ModerationActionExecutor,
        mod_logger: ModLogger,
        settings: Optional[ImpersonationSettings] = None,
        photo_similarity: PhotoSimilarity = perceptual_similarity,
        settings_loader: Callable[[int], Awaitable[ChatModSettings]] = load_settings_async,
    ):
        self.trust_source = trust_source
        self.roster = roster
        self.executor = executor
        self.mod_logger = mod_logger
        self.settings = settings or ImpersonationSettings()
        self.photo_similarity = photo_similarity
        self._load_settings = settings_loader

    async def should_check(self, user_id: int, chat_id: int) -> bool:
        """Нужна ли проверка: только первые N сообщений недоверенного пользователя без открытого алерта."""
        chat_settings = await self._load_settings(chat_id)
        if not chat_settings.impersonation_enabled:
            return False
        if await self.trust_source.is_trusted(user_id, chat_id):
            return False
        try:
            if await has_pending_alert_async(chat_id, user_id):
                return False
            message_count = await get_message_count_async(chat_id, user_id)
        except redis.RedisError as exc:
            log.warning(f"Impersonation pre-check unavailable: {exc}")
            return False
        return message_count < chat_settings.first_messages_count

    async def _photo_score(self, photo_path: str, admin_photo_path: str) -> Optional[float]:
        try:
            if asyncio.iscoroutinefunction(self.photo_similarity):
                score = await self.photo_similarity(photo_path, admin_photo_path)
            else:
                loop = asyncio.get_running_loop()
                score = await loop.run_in_executor(None, self.photo_similarity, photo_path, admin_photo_path)
        except Exception as exc:
            log.warning(f"Photo comparison failed, ignoring photo signal: {exc!r}")
            return None
        return float(score)

    async def _score_against(
        self,
        user_id: int,
        first_name: Optional[str],
        last_name: Optional[str],
        chat_id: int,
        photo_path: Optional[str],
        admin: AdminInfo,
    ) -> ImpersonationVerdict:
        name_similarity = calculate_name_similarity(first_name, last_name, admin.first_name, admin.last_name)
        name_match = name_similarity >= self.settings.name_threshold

        photo_score = None
        if photo_path and admin.photo_path:
            photo_score = await self._photo_score(photo_path, admin.photo_path)
        photo_match = photo_score is not None and photo_score >= self.settings.photo_threshold

        total = 0
        if name_match:
            total += self.settings.name_weight
        if photo_match:
            total += self.settings.photo_weight

        return ImpersonationVerdict(
            total_score=total,
            risk_level=ImpersonationRiskLevel.from_score(total),
            suspected_user_id=user_id,
            target_user_id=admin.user_id,
            chat_id=chat_id,
            name_match=name_match,
            photo_match=photo_match,
            photo_similarity_score=photo_score,
            target_name=admin.display_name,
            suspect_photo_path=photo_path,
        )

    async def check(self, user, chat_id: int, photo_path: Optional[str] = None) -> Optional[ImpersonationVerdict]:
        """Сравнить пользователя со всеми админами чата.

        Args:
            user: telegram.User (или объект с id, first_name, last_name)
            chat_id: ID чата
            photo_path: Аватарка пользователя, если есть

        Returns:
            Вердикт по самому похожему админу или None, если совпадений нет
        """
        admins = await self.roster.list_admins(chat_id)
        best: Optional[ImpersonationVerdict] = None
        for admin in admins:
            if admin.user_id == user.id:
                continue
            verdict = await self._score_against(
                user.id, user.first_name, user.last_name, chat_id, photo_path, admin
            )
            if best is None or verdict.total_score > best.total_score:
                best = verdict

        if best is None or best.total_score == 0:
            return None

        log.info(
            f"Impersonation score {best.total_score} for {pseudonymize_id(user.id)} "
            f"in chat {pseudonymize_chat_id(chat_id)} (name={best.name_match}, photo={best.photo_match})"
        )
        return best

    async def _alert_admins(self, verdict: ImpersonationVerdict, text: str) -> bool:
        """Алерт в канал логов, а без него - в личку каждому админу."""
        markup = review_keyboard(verdict)
        if await self.mod_logger.send_alert(verdict.chat_id, text, reply_markup=markup):
            return True

        notified = False
        for admin in await self.roster.list_admins(verdict.chat_id):
            result = await self.executor.delivery.send_with_media(
                admin.user_id,
                "impersonation_alert",
                text,
                photo_path=verdict.suspect_photo_path,
                reply_markup=markup,
            )
            if result.status != DeliveryStatus.FAILED:
                notified = True
        return notified

    async def _release_alert(self, verdict: ImpersonationVerdict) -> None:
        try:
            await resolve_impersonation_alert_async(verdict.chat_id, verdict.suspected_user_id)
        except redis.RedisError as exc:
            log.warning(f"Не удалось снять алерт имперсонации: {exc}")

    async def execute_action(self, verdict: ImpersonationVerdict, suspect_name: str = "") -> bool:
        """Автобан при score >= 100, иначе алерт админам.

        Повторный алерт по тому же пользователю не создаётся. Если ни бан,
        ни алерт не прошли, запись снимается, чтобы следующая проверка
        могла попробовать снова.

        Returns:
            True если действие выполнено
        """
        if not verdict.should_take_action:
            return False

        try:
            created = await create_impersonation_alert_async(verdict)
        except redis.RedisError as exc:
            log.warning(f"Не удалось записать алерт имперсонации: {exc}")
            created = True
        if not created:
            log.debug(f"Алерт по {pseudonymize_id(verdict.suspected_user_id)} уже есть, пропускаем")
            return False

        suspect_name = suspect_name or str(verdict.suspected_user_id)
        ban_failed = False
        if verdict.should_auto_ban:
            reason = f"Имперсонация администратора {verdict.target_name} (score {verdict.total_score})"
            if await self.executor.ban_user(
                verdict.chat_id, verdict.suspected_user_id, reason=reason, action_type="impersonation"
            ):
                await self.executor.notify_banned_user(verdict.suspected_user_id, reason)
                return True
            log.warning(
                f"Автобан {pseudonymize_id(verdict.suspected_user_id)} не удался, отправляем алерт админам"
            )
            ban_failed = True

        if await self._alert_admins(verdict, _alert_text(verdict, suspect_name, ban_failed)):
            return True

        log.error(
            f"Алерт имперсонации в чате {pseudonymize_chat_id(verdict.chat_id)} никому не доставлен"
        )
        await self._release_alert(verdict)
        return False



def suspect_display_name(user) -> str:
    return full_name(user.first_name, user.last_name) or str(user.id)
