# Copyright (c) 2025 sprowii
"""Маршрутизация входящих обновлений Telegram по конвейерам.

- message / edited_message в группе -> проверка контента
- вступление участника -> репутация, затем имперсонация
- callback_query -> обработчики кнопок
- личное сообщение -> доставка отложенных уведомлений

Каждое обновление обрабатывается изолированно: ошибка одного не влияет на другие.
"""
import time
from functools import partial
from typing import Dict, Iterable, List, Optional, Tuple

import redis
from telegram import CallbackQuery, ChatMember, Message, MessageEntity, Update, User
from telegram.constants import ChatType
from telegram.error import TelegramError
from telegram.ext import Application, CallbackContext, TypeHandler

from groupadmin.bot.callbacks import CallbackHandler
from groupadmin.bot.events import EventBus
from groupadmin.errors import CriticalScanError
from groupadmin.logging_config import log
from groupadmin.moderation.actions import ModerationActionExecutor
from groupadmin.moderation.controller import ModerationDecisionCoordinator
from groupadmin.moderation.impersonation import suspect_display_name
from groupadmin.moderation.models import ContentEvent
from groupadmin.moderation.notifications import DeliveryEngine
from groupadmin.moderation.photos import fetch_user_photo
from groupadmin.moderation.storage import increment_message_count_async
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id

PIPELINE_CONTENT = "content"
PIPELINE_JOIN = "join"
PIPELINE_CALLBACK = "callback"
PIPELINE_PRIVATE = "private"

GROUP_CHAT_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP)
JOINED_STATUSES = (ChatMember.MEMBER, ChatMember.RESTRICTED)
LEFT_STATUSES = (ChatMember.LEFT, ChatMember.BANNED)

# Одно вступление приходит и как chat_member, и как сервисное сообщение
JOIN_DEDUP_WINDOW_SEC = 60


def hidden_link_urls(message: Message) -> Tuple[str, ...]:
    """URL из text_link сущностей: текст ссылки не совпадает с адресом."""
    urls: List[str] = []
    for entity in tuple(message.entities or ()) + tuple(message.caption_entities or ()):
        if entity.type == MessageEntity.TEXT_LINK and entity.url and entity.url not in urls:
            urls.append(entity.url)
    return tuple(urls)


def content_event_from_message(message: Message, kind: str) -> ContentEvent:
    user = message.from_user
    document = message.document
    return ContentEvent(
        kind=kind,
        chat_id=message.chat.id,
        user_id=user.id,
        message_id=message.message_id,
        text=message.text or message.caption or "",
        first_name=user.first_name,
        last_name=user.last_name,
        username=user.username,
        file_name=document.file_name if document else None,
        mime_type=document.mime_type if document else None,
        chat_title=message.chat.title,
        urls=hidden_link_urls(message),
    )


class UpdateRouter:
    """Точка входа для всех обновлений."""

    def __init__(
        self,
        coordinator: ModerationDecisionCoordinator,
        executor: ModerationActionExecutor,
        delivery: DeliveryEngine,
        callback_handlers: Iterable[CallbackHandler] = (),
        events: Optional[EventBus] = None,
    ):
        self.coordinator = coordinator
        self.executor = executor
        self.delivery = delivery
        self.callback_handlers: List[CallbackHandler] = list(callback_handlers)
        self.events = events or EventBus()
        self._recent_joins: Dict[Tuple[int, int], float] = {}

    @property
    def bot(self):
        return self.executor.bot

    def register(self, application: Application) -> None:
        application.add_handler(TypeHandler(Update, self.handle))

    async def handle(self, update: Update, context: CallbackContext) -> None:
        await self.route_update(update)

    async def route_update(self, update: Update) -> Optional[str]:
        """Определить конвейер и выполнить его.

        Returns:
            Имя конвейера или None, если обновление проигнорировано
        """
        pipeline = None
        try:
            if update.callback_query is not None:
                pipeline = PIPELINE_CALLBACK
                await self._handle_callback(update.callback_query)
            elif update.chat_member is not None:
                member_update = update.chat_member
                old_status = member_update.old_chat_member.status
                new_status = member_update.new_chat_member.status
                if old_status in LEFT_STATUSES and new_status in JOINED_STATUSES:
                    pipeline = PIPELINE_JOIN
                    await self._handle_join(member_update.new_chat_member.user, member_update.chat.id)
            else:
                message = update.message or update.edited_message
                if message is None or message.from_user is None:
                    return None
                if message.new_chat_members:
                    pipeline = PIPELINE_JOIN
                    for user in message.new_chat_members:
                        await self._handle_join(user, message.chat.id)
                elif message.chat.type in GROUP_CHAT_TYPES:
                    pipeline = PIPELINE_CONTENT
                    kind = "message" if update.message is not None else "edited_message"
                    await self._handle_content(message, kind)
                elif message.chat.type == ChatType.PRIVATE and update.message is not None:
                    pipeline = PIPELINE_PRIVATE
                    await self.delivery.deliver_pending(message.from_user.id)
        except CriticalScanError as exc:
            log.error(f"Update {update.update_id}: critical scanner {exc.scanner} failed, message not allowed: {exc}")
        except Exception as exc:
            log.exception(f"Update {update.update_id} failed in {pipeline or 'routing'} pipeline: {exc!r}")
        return pipeline

    # ========================================================================
    # PIPELINES
    # ========================================================================

    async def _handle_content(self, message: Message, kind: str) -> None:
        event = content_event_from_message(message, kind)
        settings = await self.coordinator.get_settings_async(event.chat_id)

        verdict = await self.coordinator.evaluate(event, settings)
        self.events.publish("content_verdict", (event, verdict))
        if await self.executor.execute_content_verdict(event, verdict, settings):
            return

        if event.is_edit:
            return

        user = message.from_user
        impersonation = await self.coordinator.evaluate_impersonation(
            user, event.chat_id, photo_loader=partial(fetch_user_photo, self.bot, user.id)
        )
        if impersonation is not None:
            await self.coordinator.impersonation.execute_action(impersonation, suspect_display_name(user))

        try:
            await increment_message_count_async(event.chat_id, event.user_id)
        except redis.RedisError as exc:
            log.warning(f"Message counter unavailable for chat {pseudonymize_chat_id(event.chat_id)}: {exc}")

    def _claim_join(self, chat_id: int, user_id: int) -> bool:
        """False если это вступление уже обрабатывается из другого источника."""
        now = time.time()
        expired = [key for key, seen in self._recent_joins.items() if now - seen >= JOIN_DEDUP_WINDOW_SEC]
        for key in expired:
            self._recent_joins.pop(key, None)
        key = (chat_id, user_id)
        if key in self._recent_joins:
            return False
        self._recent_joins[key] = now
        return True

    async def _handle_join(self, user: User, chat_id: int) -> None:
        if user.is_bot:
            return
        if not self._claim_join(chat_id, user.id):
            log.debug(f"Join of {pseudonymize_id(user.id)} already handled")
            return
        verdict = await self.coordinator.evaluate_join(
            user, chat_id, photo_loader=partial(fetch_user_photo, self.bot, user.id)
        )
        self.events.publish("join_verdict", verdict)

        if verdict.reputation.is_banned:
            await self.executor.execute_reputation_ban(verdict)
        elif verdict.impersonation is not None:
            await self.coordinator.impersonation.execute_action(verdict.impersonation, suspect_display_name(user))
        else:
            log.debug(f"Join of {pseudonymize_id(user.id)} in chat {pseudonymize_chat_id(chat_id)} allowed")

    async def _handle_callback(self, query: CallbackQuery) -> None:
        answer = None
        try:
            data = query.data or ""
            for handler in self.callback_handlers:
                if handler.can_handle(data):
                    answer = await handler.handle(query)
                    break
            else:
                log.debug(f"No handler for callback data {data[:32]!r}")
        finally:
            try:
                await query.answer(answer)
            except TelegramError as exc:
                log.debug(f"Callback answer failed: {exc}")
