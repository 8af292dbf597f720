# Copyright (c) 2025 sprouee
"""Логирование действий модерации и аудит вердиктов.

- В Redis сохраняется ModAction (лог модерации чата)
- В лог-канал отправляются реальные ID (для работы модераторов)
- В application logs используются псевдонимы
"""
import asyncio
import html
from datetime import datetime
from typing import Optional

import redis
from telegram import Bot, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import TelegramError

from groupadmin.logging_config import log
from groupadmin.moderation.models import SKIP_REASON_ERROR, ContentEvent, JoinVerdict, ModAction, ModerationVerdict
from groupadmin.moderation.storage import load_settings_async, save_mod_action_async
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id, safe_log_action
from groupadmin.utils.text import split_long_message

ACTION_ICONS = {
    "delete": "🗑",
    "ban": "🚫",
    "spam": "🛡",
    "critical": "⛔",
    "impersonation": "🎭",
    "reputation": "📛",
    "spam_check_error": "⚠️",
}

ACTION_NAMES = {
    "delete": "Удаление",
    "ban": "Бан",
    "spam": "Антиспам",
    "critical": "Запрещённый контент",
    "impersonation": "Имперсонация",
    "reputation": "CAS бан",
    "spam_check_error": "Спам-проверка недоступна",
}


class ModLogger:
    """Логгер действий модерации с записью в Redis и пересылкой в лог-канал."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def log_action(self, action: ModAction) -> None:
        """Записать действие модерации в лог и отправить в лог-канал."""
        try:
            await save_mod_action_async(action)
        except redis.RedisError as exc:
            log.error(f"Failed to save mod action to Redis: {exc}")
        log.info(safe_log_action(
            action.action_type,
            action.target_user_id,
            action.chat_id,
            action.admin_id if not action.auto else None,
            action.reason
        ))
        await self.send_alert(action.chat_id, self._format_log_message(action))

    async def log_verdict(self, event: ContentEvent, verdict: ModerationVerdict) -> None:
        """Аудит вердикта. В Redis пишутся только вердикты с нарушениями или сбоями."""
        user = pseudonymize_id(event.user_id)
        chat = pseudonymize_chat_id(event.chat_id)
        if verdict.should_allow and verdict.skip_reason != SKIP_REASON_ERROR:
            log.debug(f"Verdict allow: user={user} chat={chat} skip={verdict.skip_reason}")
            return

        if verdict.has_critical_violations:
            action_type, reason = "critical", "; ".join(verdict.critical_violations)
        elif verdict.is_spam:
            action_type, reason = "spam", verdict.spam_result.details or "spam"
        else:
            action_type, reason = "spam_check_error", "классификатор спама недоступен"

        action = ModAction.create(
            chat_id=event.chat_id,
            action_type=action_type,
            target_user_id=event.user_id,
            reason=reason,
            auto=True,
        )
        try:
            await save_mod_action_async(action)
        except redis.RedisError as exc:
            log.error(f"Failed to save verdict audit entry: {exc}")
        log.info(f"Verdict {action_type}: user={user} chat={chat} allow={verdict.should_allow}")

    async def log_join_verdict(self, verdict: JoinVerdict) -> None:
        user = pseudonymize_id(verdict.user_id)
        chat = pseudonymize_chat_id(verdict.chat_id)
        score = verdict.impersonation.total_score if verdict.impersonation else 0
        log.info(
            f"Join verdict: user={user} chat={chat} "
            f"cas_banned={verdict.reputation.is_banned} impersonation_score={score}"
        )

    async def send_alert(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        """Отправить HTML-сообщение в лог-канал чата. В сам чат не пишем никогда.

        Args:
            chat_id: Чат, к которому относится событие
            text: HTML-текст
            reply_markup: Кнопки для админов

        Returns:
            True если сообщение отправлено; False если лог-канал не настроен
        """
        settings = await load_settings_async(chat_id)
        target = settings.log_channel_id
        if not target:
            return False

        chunks = split_long_message(text)
        try:
            for idx, chunk in enumerate(chunks):
                await self.bot.send_message(
                    chat_id=target,
                    text=chunk,
                    parse_mode=ParseMode.HTML,
                    reply_markup=reply_markup if idx == len(chunks) - 1 else None,
                )
            return True
        except TelegramError as exc:
            log.warning(f"Failed to forward to log channel: {exc}")
            return False

    async def consume_verdicts(self, queue: "asyncio.Queue") -> None:
        """Писать аудит из подписки на шину событий. Работает до отмены задачи."""
        while True:
            event = await queue.get()
            try:
                if event.kind == "content_verdict":
                    content_event, verdict = event.payload
                    await self.log_verdict(content_event, verdict)
                elif event.kind == "join_verdict":
                    await self.log_join_verdict(event.payload)
            except Exception as exc:
                log.error(f"Audit consumer failed on {event.kind}: {exc!r}")
            finally:
                queue.task_done()

    def _format_log_message(self, action: ModAction) -> str:
        icon = ACTION_ICONS.get(action.action_type, "📋")
        action_name = ACTION_NAMES.get(action.action_type, action.action_type)
        time_str = datetime.fromtimestamp(action.timestamp).strftime("%d.%m.%Y %H:%M:%S")

        lines = [
            f"{icon} <b>{action_name}</b>",
            "",
            f"👤 Пользователь: <code>{action.target_user_id}</code>",
        ]
        if action.auto:
            lines.append("🤖 Автоматическое действие")
        elif action.admin_id:
            lines.append(f"👮 Админ: <code>{action.admin_id}</code>")

        safe_reason = html.escape(action.reason) if action.reason else "Не указана"
        lines.extend([
            f"📝 Причина: {safe_reason}",
            f"🕐 Время: {time_str}",
            f"💬 Чат: <code>{action.chat_id}</code>",
        ])
        return "\n".join(lines)
