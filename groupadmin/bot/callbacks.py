# Copyright (c) 2025 sprowii
"""Обработчики inline-кнопок."""
from typing import Protocol

import redis
from telegram import CallbackQuery
from telegram.error import TelegramError

from groupadmin.logging_config import log
from groupadmin.moderation.actions import ModerationActionExecutor
from groupadmin.moderation.impersonation import CALLBACK_PREFIX
from groupadmin.moderation.permissions import trust_user
from groupadmin.moderation.spam import TrustSource
from groupadmin.moderation.storage import resolve_impersonation_alert_async
from groupadmin.security.data_protection import pseudonymize_id


class CallbackHandler(Protocol):
    def can_handle(self, data: str) -> bool:
        ...

    async def handle(self, query: CallbackQuery) -> str:
        """Обработать нажатие. Возвращает текст для answer()."""
        ...


class ImpersonationReviewCallback:
    """Кнопки под алертом об имперсонации: imp:<ban|trust|dismiss>:<user_id>:<chat_id>."""

    def __init__(self, trust_source: TrustSource, executor: ModerationActionExecutor):
        self.trust_source = trust_source
        self.executor = executor

    def can_handle(self, data: str) -> bool:
        return data.startswith(f"{CALLBACK_PREFIX}:")

    async def handle(self, query: CallbackQuery) -> str:
        parts = (query.data or "").split(":")
        if len(parts) != 4:
            return "⚠️ Некорректные данные кнопки"
        _, action, raw_user_id, raw_chat_id = parts
        try:
            user_id, chat_id = int(raw_user_id), int(raw_chat_id)
        except ValueError:
            return "⚠️ Некорректные данные кнопки"

        admin_id = query.from_user.id
        if not await self.trust_source.is_admin(admin_id, chat_id):
            return "⚠️ Только для администраторов чата"

        if action == "ban":
            banned = await self.executor.ban_user(
                chat_id, user_id, reason="Имперсонация (решение админа)",
                action_type="impersonation", admin_id=admin_id,
            )
            answer = "🚫 Пользователь забанен" if banned else "⚠️ Не удалось забанить"
        elif action == "trust":
            try:
                await trust_user(user_id, chat_id)
                await resolve_impersonation_alert_async(chat_id, user_id)
            except redis.RedisError as exc:
                log.error(f"Не удалось отметить {pseudonymize_id(user_id)} доверенным: {exc}")
                return "⚠️ Хранилище недоступно, попробуйте позже"
            answer = "✅ Пользователь отмечен доверенным"
        elif action == "dismiss":
            # Алерт остаётся открытым до истечения TTL, повторно не проверяем
            answer = "👌 Отмечено как ложная тревога"
        else:
            return "⚠️ Неизвестное действие"

        try:
            await query.edit_message_reply_markup(reply_markup=None)
        except TelegramError as exc:
            log.debug(f"Could not remove review buttons: {exc}")
        log.info(f"Impersonation review '{action}' for {pseudonymize_id(user_id)} by {pseudonymize_id(admin_id)}")
        return answer
