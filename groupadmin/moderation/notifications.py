# Copyright (c) 2025 sprowii
"""Доставка уведомлений пользователям.

Порядок: личное сообщение -> (если бот заблокирован) пост в чате
с автоудалением или очередь до следующего взаимодействия.

"Заблокирован" = telegram.error.Forbidden: пользователь заблокировал бота
или никогда не начинал с ним диалог.
"""
import os
from functools import partial
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import redis
from telegram import Bot, InlineKeyboardMarkup, Message
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, NetworkError, TelegramError

from groupadmin import config
from groupadmin.logging_config import log
from groupadmin.moderation.models import DeliveryResult, DeliveryStatus, PendingNotification
from groupadmin.moderation.storage import (
    get_dm_enabled_async,
    pop_pending_notifications_async,
    push_pending_notification_async,
    requeue_pending_notifications_async,
    set_dm_enabled_async,
)
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id

ERROR_BLOCKED = "blocked"
ERROR_NETWORK = "network"
ERROR_TELEGRAM = "telegram"
ERROR_STORAGE = "storage"

MAX_CAPTION_LENGTH = 1024

Sender = Callable[[], Awaitable[Message]]


class DeliveryEngine:
    """Отправка уведомлений с fallback в чат и очередью."""

    def __init__(self, bot: Bot, scheduler, redelivery_delay_sec: int = config.PENDING_REDELIVERY_DELAY_SEC):
        """
        Args:
            bot: Telegram Bot instance
            scheduler: JobScheduler для автоудаления и повторной доставки
            redelivery_delay_sec: Через сколько повторить доставку очереди
        """
        self.bot = bot
        self.scheduler = scheduler
        self.redelivery_delay_sec = redelivery_delay_sec

    # ========================================================================
    # LOW LEVEL
    # ========================================================================

    async def _send_text(
        self, chat_id: int, text: str, reply_markup: Optional[InlineKeyboardMarkup] = None
    ) -> Message:
        try:
            return await self.bot.send_message(
                chat_id=chat_id, text=text, parse_mode=ParseMode.HTML, reply_markup=reply_markup
            )
        except BadRequest as exc:
            if "parse" not in str(exc).lower():
                raise
            return await self.bot.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup)

    async def _known_blocked(self, user_id: int) -> bool:
        """Личка уже отказывала (dm_enabled=0), повторная попытка бессмысленна."""
        try:
            return await get_dm_enabled_async(user_id) is False
        except redis.RedisError as exc:
            log.debug(f"DM flag unavailable for {pseudonymize_id(user_id)}: {exc}")
            return False

    async def _attempt(self, user_id: int, send: Sender) -> DeliveryResult:
        """Одна попытка доставки в личку с обновлением флага dm_enabled."""
        user = pseudonymize_id(user_id)
        try:
            message = await send()
        except Forbidden as exc:
            log.info(f"DM to {user} blocked: {exc}")
            await set_dm_enabled_async(user_id, False)
            return DeliveryResult(status=DeliveryStatus.FAILED, error=ERROR_BLOCKED)
        except NetworkError as exc:
            log.warning(f"Network error delivering DM to {user}: {exc}")
            return DeliveryResult(status=DeliveryStatus.FAILED, error=ERROR_NETWORK)
        except TelegramError as exc:
            log.error(f"Failed to deliver DM to {user}: {exc}")
            return DeliveryResult(status=DeliveryStatus.FAILED, error=ERROR_TELEGRAM)

        await set_dm_enabled_async(user_id, True)
        return DeliveryResult(status=DeliveryStatus.DELIVERED, message_id=message.message_id)

    async def _send_fallback(
        self,
        user_id: int,
        text: str,
        chat_id: int,
        auto_delete_seconds: Optional[int],
    ) -> DeliveryResult:
        try:
            message = await self._send_text(chat_id, text)
        except TelegramError as exc:
            log.warning(f"Fallback delivery to chat {pseudonymize_chat_id(chat_id)} failed: {exc}")
            return DeliveryResult(status=DeliveryStatus.FAILED, error=ERROR_TELEGRAM)

        if auto_delete_seconds:
            self.scheduler.schedule_delete_message(
                chat_id, message.message_id, auto_delete_seconds, reason="dm_fallback"
            )
        log.info(f"Notification for {pseudonymize_id(user_id)} posted to chat instead of DM")
        return DeliveryResult(status=DeliveryStatus.DELIVERED_VIA_FALLBACK, message_id=message.message_id)

    async def _enqueue(self, user_id: int, notification_type: str, text: str) -> DeliveryResult:
        notification = PendingNotification.create(user_id, notification_type, text)
        try:
            await push_pending_notification_async(notification)
        except redis.RedisError as exc:
            log.error(f"Failed to queue notification for {pseudonymize_id(user_id)}: {exc}")
            return DeliveryResult(status=DeliveryStatus.FAILED, error=ERROR_STORAGE)
        self.scheduler.schedule_redelivery(user_id, self.redelivery_delay_sec)
        log.info(f"Notification {notification_type} queued for {pseudonymize_id(user_id)}")
        return DeliveryResult(status=DeliveryStatus.QUEUED)

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def send_direct(
        self,
        user_id: int,
        text: str,
        fallback_chat_id: Optional[int] = None,
        auto_delete_seconds: Optional[int] = None,
    ) -> DeliveryResult:
        """Отправить в личку; если бот заблокирован - в чат fallback_chat_id.

        Args:
            user_id: Получатель
            text: HTML-текст уведомления
            fallback_chat_id: Чат для поста, если личка недоступна
            auto_delete_seconds: Через сколько удалить пост в чате (None - не удалять)
        """
        if fallback_chat_id is not None and await self._known_blocked(user_id):
            return await self._send_fallback(user_id, text, fallback_chat_id, auto_delete_seconds)
        result = await self._attempt(user_id, partial(self._send_text, user_id, text))
        if result.error != ERROR_BLOCKED or fallback_chat_id is None:
            return result
        return await self._send_fallback(user_id, text, fallback_chat_id, auto_delete_seconds)

    async def send_with_queue(self, user_id: int, notification_type: str, text: str) -> DeliveryResult:
        """Отправить в личку; если бот заблокирован - поставить в очередь."""
        if await self._known_blocked(user_id):
            return await self._enqueue(user_id, notification_type, text)
        result = await self._attempt(user_id, partial(self._send_text, user_id, text))
        if result.error != ERROR_BLOCKED:
            return result
        return await self._enqueue(user_id, notification_type, text)

    async def send_with_media(
        self,
        user_id: int,
        notification_type: str,
        text: str,
        photo_path: Optional[str] = None,
        video_path: Optional[str] = None,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> DeliveryResult:
        """Отправить фото или видео с подписью; без файла - только текст.

        Если бот заблокирован, текст ставится в очередь (кнопки не сохраняются).
        """
        if await self._known_blocked(user_id):
            return await self._enqueue(user_id, notification_type, text)

        if photo_path and os.path.isfile(photo_path):
            send = self._media_sender(user_id, text, reply_markup, photo=Path(photo_path))
        elif video_path and os.path.isfile(video_path):
            send = self._media_sender(user_id, text, reply_markup, video=Path(video_path))
        else:
            if photo_path or video_path:
                log.warning(f"Media for {notification_type} not found, sending text only")
            send = partial(self._send_text, user_id, text, reply_markup)

        result = await self._attempt(user_id, send)
        if result.error != ERROR_BLOCKED:
            return result
        return await self._enqueue(user_id, notification_type, text)

    def _media_sender(
        self,
        user_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        photo: Optional[Path] = None,
        video: Optional[Path] = None,
    ) -> Sender:
        async def send() -> Message:
            caption = text if len(text) <= MAX_CAPTION_LENGTH else None
            # Длинный текст уходит отдельным сообщением, кнопки - под ним
            media_markup = reply_markup if caption is not None else None
            if photo is not None:
                message = await self.bot.send_photo(
                    chat_id=user_id, photo=photo, caption=caption, parse_mode=ParseMode.HTML,
                    reply_markup=media_markup,
                )
            else:
                message = await self.bot.send_video(
                    chat_id=user_id, video=video, caption=caption, parse_mode=ParseMode.HTML,
                    reply_markup=media_markup,
                )
            if caption is None:
                return await self._send_text(user_id, text, reply_markup)
            return message

        return send

    async def deliver_pending(self, user_id: int) -> int:
        """Повторно доставить очередь пользователя в порядке постановки.

        Останавливается на первой неудаче; недоставленное возвращается в очередь.

        Returns:
            Количество доставленных уведомлений
        """
        try:
            pending: List[PendingNotification] = await pop_pending_notifications_async(user_id)
        except redis.RedisError as exc:
            log.error(f"Failed to load pending notifications for {pseudonymize_id(user_id)}: {exc}")
            return 0
        if not pending:
            return 0

        delivered = 0
        for idx, notification in enumerate(pending):
            result = await self._attempt(user_id, partial(self._send_text, user_id, notification.text))
            if result.delivered:
                delivered += 1
                continue
            remaining = pending[idx:]
            try:
                await requeue_pending_notifications_async(user_id, remaining)
            except redis.RedisError as exc:
                log.error(f"Lost {len(remaining)} pending notifications for {pseudonymize_id(user_id)}: {exc}")
            if result.error != ERROR_BLOCKED:
                self.scheduler.schedule_redelivery(user_id, self.redelivery_delay_sec)
            break

        log.info(f"Delivered {delivered}/{len(pending)} pending notifications to {pseudonymize_id(user_id)}")
        return delivered
