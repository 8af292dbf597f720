# Copyright (c) 2025 sprowii
"""Исполнение вердиктов: удаление, бан, уведомление пользователя.

Действия выполняются только по положительному вердикту.
"""
from typing import Optional

from telegram import Bot
from telegram.error import TelegramError

from groupadmin.logging_config import log
from groupadmin.moderation.logger import ModLogger
from groupadmin.moderation.models import (
    ChatModSettings,
    ContentEvent,
    DeliveryResult,
    JoinVerdict,
    ModAction,
    ModerationVerdict,
)
from groupadmin.moderation.notifications import DeliveryEngine
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from groupadmin.utils.text import escape


def _violation_notice(event: ContentEvent, reason: str) -> str:
    chat_title = escape(event.chat_title or "чат")
    return (
        f"⚠️ Ваше сообщение в чате «{chat_title}» было удалено.\n\n"
        f"Причина: {escape(reason)}\n\n"
        f"Пожалуйста, соблюдайте правила чата."
    )


def _ban_notice(reason: str) -> str:
    return (
        "⛔ Вы были заблокированы в чате.\n\n"
        f"Причина: {escape(reason)}\n\n"
        "Если это ошибка, свяжитесь с администраторами чата."
    )


class ModerationActionExecutor:
    """Выполняет решения координатора через Telegram API."""

    def __init__(self, bot: Bot, delivery: DeliveryEngine, mod_logger: ModLogger):
        self.bot = bot
        self.delivery = delivery
        self.mod_logger = mod_logger

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
            return True
        except TelegramError as exc:
            log.error(f"Не удалось удалить сообщение в чате {pseudonymize_chat_id(chat_id)}: {exc}")
            return False

    async def ban_user(
        self,
        chat_id: int,
        user_id: int,
        reason: str,
        action_type: str = "ban",
        admin_id: Optional[int] = None,
    ) -> bool:
        """Забанить пользователя и записать действие в лог модерации.

        Args:
            admin_id: Админ, принявший решение (None - автоматическое действие)
        """
        try:
            await self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id)
        except TelegramError as exc:
            log.error(f"Не удалось забанить пользователя {pseudonymize_id(user_id)}: {exc}")
            return False

        await self.mod_logger.log_action(ModAction.create(
            chat_id=chat_id,
            action_type=action_type,
            target_user_id=user_id,
            reason=reason,
            admin_id=admin_id,
            auto=admin_id is None,
        ))
        return True

    async def execute_content_verdict(
        self,
        event: ContentEvent,
        verdict: ModerationVerdict,
        settings: ChatModSettings,
    ) -> bool:
        """Удалить сообщение с нарушением и уведомить автора.

        Returns:
            True если было выполнено действие
        """
        if verdict.should_allow:
            return False

        if verdict.has_critical_violations:
            reason = "; ".join(verdict.critical_violations)
            notice_reason = "сообщение содержит запрещённый контент"
        else:
            reason = f"spam: {verdict.spam_result.details or 'classifier'}"
            notice_reason = "сообщение похоже на спам"

        deleted = await self.delete_message(event.chat_id, event.message_id)
        await self.mod_logger.log_action(ModAction.create(
            chat_id=event.chat_id,
            action_type="delete",
            target_user_id=event.user_id,
            reason=reason if deleted else f"{reason} (удалить не удалось)",
            auto=True,
        ))

        if settings.notify_user:
            await self.delivery.send_direct(
                event.user_id,
                _violation_notice(event, notice_reason),
                fallback_chat_id=event.chat_id,
                auto_delete_seconds=settings.fallback_auto_delete_sec or None,
            )
        return True

    async def notify_banned_user(self, user_id: int, reason: str) -> DeliveryResult:
        """Сообщить забаненному о причине; если личка закрыта - уведомление ждёт в очереди."""
        return await self.delivery.send_with_queue(user_id, "ban", _ban_notice(reason))

    async def execute_reputation_ban(self, verdict: JoinVerdict) -> bool:
        if not verdict.reputation.is_banned:
            return False
        reason = verdict.reputation.reason or "CAS banned"
        banned = await self.ban_user(verdict.chat_id, verdict.user_id, reason, action_type="reputation")
        if banned:
            await self.notify_banned_user(verdict.user_id, reason)
        return banned
