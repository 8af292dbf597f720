# Copyright (c) 2025 sprowii
"""Доверие, статус админа и список администраторов чата.

Кэширование статуса админа и списка админов на 5 минут.
"""
import asyncio
import secrets
import time
from typing import Dict, List, Optional, Tuple

import redis
from telegram import Bot, ChatMember
from telegram.error import TelegramError

from groupadmin import config
from groupadmin.logging_config import log
from groupadmin.moderation.models import AdminInfo
from groupadmin.moderation.photos import fetch_user_photo
from groupadmin.moderation.storage import add_trusted_user_async, is_trusted_user_async
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id


# Служебные аккаунты Telegram: пересылки из каналов, анонимные админы, боты-помощники
TELEGRAM_SYSTEM_ACCOUNTS = frozenset({
    777000,       # Telegram (пересылки из привязанного канала)
    1087968824,   # GroupAnonymousBot
    136817688,    # Channel_Bot
    1271266957,   # replies
    5434988373,   # Telegram antispam
})

ADMIN_CACHE_TTL = 300

# {(chat_id, user_id): (is_admin, timestamp)}
_admin_cache: Dict[Tuple[int, int], Tuple[bool, float]] = {}
# {chat_id: (admins, timestamp)}
_roster_cache: Dict[int, Tuple[List[AdminInfo], float]] = {}


def _is_cache_valid(timestamp: float) -> bool:
    return time.time() - timestamp < ADMIN_CACHE_TTL


def is_system_account(user_id: int) -> bool:
    return user_id in TELEGRAM_SYSTEM_ACCOUNTS


def is_global_admin(user_id: int) -> bool:
    return bool(config.ADMIN_ID) and secrets.compare_digest(str(user_id), str(config.ADMIN_ID))


def get_cached_admin_status(chat_id: int, user_id: int) -> Optional[bool]:
    """True/False если есть валидный кэш, None если кэш отсутствует или истёк."""
    key = (chat_id, user_id)
    cached = _admin_cache.get(key)
    if cached is None:
        return None
    is_admin, timestamp = cached
    if not _is_cache_valid(timestamp):
        _admin_cache.pop(key, None)
        return None
    return is_admin


def set_cached_admin_status(chat_id: int, user_id: int, is_admin: bool) -> None:
    _admin_cache[(chat_id, user_id)] = (is_admin, time.time())


def clear_admin_cache(chat_id: Optional[int] = None) -> int:
    """Очистить кэш статуса админа и список админов (для чата или целиком)."""
    if chat_id is None:
        count = len(_admin_cache)
        _admin_cache.clear()
        _roster_cache.clear()
        return count
    keys = [key for key in _admin_cache if key[0] == chat_id]
    for key in keys:
        del _admin_cache[key]
    _roster_cache.pop(chat_id, None)
    return len(keys)


def cleanup_expired_cache() -> int:
    """Очистить истёкшие записи из кэшей.

    Returns:
        Количество удалённых записей
    """
    current_time = time.time()
    stale_admins = [
        key for key, (_, timestamp) in _admin_cache.items()
        if current_time - timestamp >= ADMIN_CACHE_TTL
    ]
    for key in stale_admins:
        _admin_cache.pop(key, None)

    stale_rosters = [
        chat_id for chat_id, (_, timestamp) in _roster_cache.items()
        if current_time - timestamp >= ADMIN_CACHE_TTL
    ]
    for chat_id in stale_rosters:
        _roster_cache.pop(chat_id, None)

    return len(stale_admins) + len(stale_rosters)


class ChatTrustSource:
    """Источник доверия и админского статуса для координаторов модерации."""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def is_trusted(self, user_id: int, chat_id: int) -> bool:
        """Доверенный пользователь: служебный аккаунт, владелец бота или из списка trusted."""
        if is_system_account(user_id) or is_global_admin(user_id):
            return True
        try:
            return await is_trusted_user_async(user_id, chat_id)
        except redis.RedisError as exc:
            log.warning(f"Не удалось проверить доверие {pseudonymize_id(user_id)}: {exc}")
            return False

    async def is_admin(self, user_id: int, chat_id: int) -> bool:
        """Проверить, является ли пользователь админом чата."""
        if is_global_admin(user_id):
            return True

        cached_status = get_cached_admin_status(chat_id, user_id)
        if cached_status is not None:
            return cached_status

        try:
            member = await self.bot.get_chat_member(chat_id, user_id)
        except TelegramError as exc:
            log.error(
                f"Ошибка проверки статуса админа для {pseudonymize_id(user_id)} "
                f"в чате {pseudonymize_chat_id(chat_id)}: {exc}"
            )
            return False

        is_admin = member.status in (ChatMember.ADMINISTRATOR, ChatMember.OWNER)
        set_cached_admin_status(chat_id, user_id, is_admin)
        return is_admin

    async def list_admins(self, chat_id: int) -> List[AdminInfo]:
        """Текущие администраторы чата (без ботов) с путями к аватаркам."""
        cached = _roster_cache.get(chat_id)
        if cached is not None and _is_cache_valid(cached[1]):
            return cached[0]

        try:
            members = await self.bot.get_chat_administrators(chat_id)
        except TelegramError as exc:
            log.warning(f"Не удалось получить админов чата {pseudonymize_chat_id(chat_id)}: {exc}")
            return []

        humans = [member.user for member in members if not member.user.is_bot]
        photos = await asyncio.gather(*(fetch_user_photo(self.bot, user.id) for user in humans))

        admins = []
        for user, photo_path in zip(humans, photos):
            set_cached_admin_status(chat_id, user.id, True)
            admins.append(AdminInfo(
                user_id=user.id,
                first_name=user.first_name,
                last_name=user.last_name,
                photo_path=photo_path,
            ))

        _roster_cache[chat_id] = (admins, time.time())
        return admins


async def trust_user(user_id: int, chat_id: Optional[int] = None) -> bool:
    """Пометить пользователя доверенным: спам-проверка для него пропускается."""
    added = await add_trusted_user_async(user_id, chat_id)
    log.info(f"User {pseudonymize_id(user_id)} trusted (chat={chat_id is not None})")
    return added