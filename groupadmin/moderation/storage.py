# Copyright (c) 2025 sprouee
"""Хранилище модерации в Redis.

Ключи:
- mod_settings:{chat_id} - настройки модерации чата
- modlog:{chat_id} - лог действий модерации и аудит вердиктов
- pending_dm:{user_id} - очередь уведомлений, ожидающих доставки в личку
- dm_enabled:{user_id} - можно ли писать пользователю в личку ("1"/"0")
- trusted:{chat_id} / trusted:global - доверенные пользователи
- msg_count:{chat_id} - счётчик сообщений участников (HASH)
- imp_alert:{chat_id}:{user_id} - открытый алерт об имперсонации
- user_photo:{user_id} - путь к скачанной аватарке
"""
import asyncio
import json
from dataclasses import asdict
from typing import Any, Callable, List, Optional

from groupadmin.config import MAX_PENDING_NOTIFICATIONS, REDIS_URL
from groupadmin.logging_config import log
from groupadmin.moderation.models import ChatModSettings, ImpersonationVerdict, ModAction, PendingNotification
from groupadmin.security.data_protection import decrypt_text, encrypt_text, pseudonymize_id

import redis

redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True)

# Префиксы ключей
MOD_SETTINGS_PREFIX = "mod_settings:"
MODLOG_PREFIX = "modlog:"
PENDING_DM_PREFIX = "pending_dm:"
DM_ENABLED_PREFIX = "dm_enabled:"
TRUSTED_PREFIX = "trusted:"
TRUSTED_GLOBAL_KEY = "trusted:global"
MSG_COUNT_PREFIX = "msg_count:"
IMP_ALERT_PREFIX = "imp_alert:"
USER_PHOTO_PREFIX = "user_photo:"

MAX_MODLOG_ENTRIES = 1000
IMP_ALERT_TTL_SEC = 7 * 24 * 3600
USER_PHOTO_TTL_SEC = 24 * 3600


async def _run_sync(fn: Callable[..., Any], *args: Any) -> Any:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, fn, *args)


# ============================================================================
# SETTINGS OPERATIONS
# ============================================================================

def save_settings(settings: ChatModSettings) -> None:
    """Сохранить настройки модерации в Redis."""
    key = f"{MOD_SETTINGS_PREFIX}{settings.chat_id}"
    try:
        redis_client.set(key, json.dumps(asdict(settings), ensure_ascii=False))
    except redis.RedisError as exc:
        log.error(f"Не удалось сохранить настройки модерации для чата {settings.chat_id}: {exc}")
        raise


async def save_settings_async(settings: ChatModSettings) -> None:
    await _run_sync(save_settings, settings)


def load_settings(chat_id: int) -> ChatModSettings:
    """Загрузить настройки модерации из Redis.

    Если настройки не найдены или повреждены, возвращает настройки по умолчанию.
    """
    key = f"{MOD_SETTINGS_PREFIX}{chat_id}"
    try:
        raw_value = redis_client.get(key)
    except redis.RedisError as exc:
        log.error(f"Ошибка загрузки настроек для чата {chat_id}: {exc}")
        return ChatModSettings(chat_id=chat_id)

    if not raw_value:
        return ChatModSettings(chat_id=chat_id)

    try:
        data = json.loads(raw_value)
        data["chat_id"] = chat_id
        return ChatModSettings(**data)
    except json.JSONDecodeError as exc:
        log.warning(f"Некорректный JSON настроек для чата {chat_id}: {exc}")
    except TypeError as exc:
        log.warning(f"Некорректные данные настроек для чата {chat_id}: {exc}")
    return ChatModSettings(chat_id=chat_id)


async def load_settings_async(chat_id: int) -> ChatModSettings:
    return await _run_sync(load_settings, chat_id)


# ============================================================================
# MODLOG OPERATIONS
# ============================================================================

def save_mod_action(action: ModAction) -> None:
    """Сохранить действие модерации в лог."""
    key = f"{MODLOG_PREFIX}{action.chat_id}"
    try:
        with redis_client.pipeline() as pipe:
            pipe.lpush(key, json.dumps(asdict(action), ensure_ascii=False))
            pipe.ltrim(key, 0, MAX_MODLOG_ENTRIES - 1)
            pipe.execute()
    except redis.RedisError as exc:
        log.error(f"Не удалось сохранить действие модерации: {exc}")
        raise


async def save_mod_action_async(action: ModAction) -> None:
    await _run_sync(save_mod_action, action)


# ============================================================================
# PENDING NOTIFICATIONS
# ============================================================================

def _serialize_notification(notification: PendingNotification) -> str:
    data = asdict(notification)
    data["text"] = encrypt_text(notification.text)
    return json.dumps(data, ensure_ascii=False)


def _deserialize_notification(raw: str) -> Optional[PendingNotification]:
    try:
        data = json.loads(raw)
        notification = PendingNotification(**data)
    except (json.JSONDecodeError, TypeError) as exc:
        log.warning(f"Некорректные данные отложенного уведомления: {exc}")
        return None
    text = decrypt_text(notification.text)
    if text is None:
        return None
    notification.text = text
    return notification


def push_pending_notification(notification: PendingNotification) -> None:
    """Поставить уведомление в очередь пользователя (хранятся последние N)."""
    key = f"{PENDING_DM_PREFIX}{notification.user_id}"
    with redis_client.pipeline() as pipe:
        pipe.rpush(key, _serialize_notification(notification))
        pipe.ltrim(key, -MAX_PENDING_NOTIFICATIONS, -1)
        pipe.execute()


async def push_pending_notification_async(notification: PendingNotification) -> None:
    await _run_sync(push_pending_notification, notification)


def pop_pending_notifications(user_id: int) -> List[PendingNotification]:
    """Атомарно забрать всю очередь пользователя (в порядке постановки)."""
    key = f"{PENDING_DM_PREFIX}{user_id}"
    with redis_client.pipeline() as pipe:
        pipe.lrange(key, 0, -1)
        pipe.delete(key)
        raw_values, _ = pipe.execute()

    notifications = []
    for raw in raw_values:
        notification = _deserialize_notification(raw)
        if notification is not None:
            notifications.append(notification)
    return notifications


async def pop_pending_notifications_async(user_id: int) -> List[PendingNotification]:
    return await _run_sync(pop_pending_notifications, user_id)


def requeue_pending_notifications(user_id: int, notifications: List[PendingNotification]) -> None:
    """Вернуть недоставленные уведомления в начало очереди, сохраняя порядок."""
    if not notifications:
        return
    key = f"{PENDING_DM_PREFIX}{user_id}"
    payload = [_serialize_notification(n) for n in reversed(notifications)]
    redis_client.lpush(key, *payload)


async def requeue_pending_notifications_async(user_id: int, notifications: List[PendingNotification]) -> None:
    await _run_sync(requeue_pending_notifications, user_id, notifications)


# ============================================================================
# DM FLAG
# ============================================================================

def set_dm_enabled(user_id: int, enabled: bool) -> None:
    redis_client.set(f"{DM_ENABLED_PREFIX}{user_id}", "1" if enabled else "0")


async def set_dm_enabled_async(user_id: int, enabled: bool) -> None:
    try:
        await _run_sync(set_dm_enabled, user_id, enabled)
    except redis.RedisError as exc:
        log.warning(f"Не удалось обновить флаг DM для {pseudonymize_id(user_id)}: {exc}")


def get_dm_enabled(user_id: int) -> Optional[bool]:
    """True/False если флаг известен, None если бот ещё не писал пользователю."""
    raw = redis_client.get(f"{DM_ENABLED_PREFIX}{user_id}")
    if raw is None:
        return None
    return raw == "1"


async def get_dm_enabled_async(user_id: int) -> Optional[bool]:
    return await _run_sync(get_dm_enabled, user_id)


# ============================================================================
# TRUSTED USERS
# ============================================================================

def _trusted_key(chat_id: Optional[int]) -> str:
    return TRUSTED_GLOBAL_KEY if chat_id is None else f"{TRUSTED_PREFIX}{chat_id}"


def add_trusted_user(user_id: int, chat_id: Optional[int] = None) -> bool:
    """Добавить доверенного пользователя (chat_id=None - во всех чатах)."""
    return redis_client.sadd(_trusted_key(chat_id), str(user_id)) > 0


async def add_trusted_user_async(user_id: int, chat_id: Optional[int] = None) -> bool:
    return await _run_sync(add_trusted_user, user_id, chat_id)


def is_trusted_user(user_id: int, chat_id: int) -> bool:
    with redis_client.pipeline() as pipe:
        pipe.sismember(_trusted_key(chat_id), str(user_id))
        pipe.sismember(TRUSTED_GLOBAL_KEY, str(user_id))
        in_chat, in_global = pipe.execute()
    return bool(in_chat or in_global)


async def is_trusted_user_async(user_id: int, chat_id: int) -> bool:
    return await _run_sync(is_trusted_user, user_id, chat_id)


# ============================================================================
# MESSAGE COUNTERS
# ============================================================================

def increment_message_count(chat_id: int, user_id: int) -> int:
    return int(redis_client.hincrby(f"{MSG_COUNT_PREFIX}{chat_id}", str(user_id), 1))


async def increment_message_count_async(chat_id: int, user_id: int) -> int:
    return await _run_sync(increment_message_count, chat_id, user_id)


def get_message_count(chat_id: int, user_id: int) -> int:
    raw = redis_client.hget(f"{MSG_COUNT_PREFIX}{chat_id}", str(user_id))
    return int(raw) if raw else 0


async def get_message_count_async(chat_id: int, user_id: int) -> int:
    return await _run_sync(get_message_count, chat_id, user_id)


# ============================================================================
# IMPERSONATION ALERTS
# ============================================================================

def _alert_key(chat_id: int, user_id: int) -> str:
    return f"{IMP_ALERT_PREFIX}{chat_id}:{user_id}"


def create_impersonation_alert(verdict: ImpersonationVerdict) -> bool:
    """Создать алерт. False если алерт по этому пользователю уже открыт."""
    data = asdict(verdict)
    data["risk_level"] = verdict.risk_level.value
    created = redis_client.set(
        _alert_key(verdict.chat_id, verdict.suspected_user_id),
        json.dumps(data, ensure_ascii=False),
        nx=True,
        ex=IMP_ALERT_TTL_SEC,
    )
    return bool(created)


async def create_impersonation_alert_async(verdict: ImpersonationVerdict) -> bool:
    return await _run_sync(create_impersonation_alert, verdict)


def has_pending_alert(chat_id: int, user_id: int) -> bool:
    return redis_client.exists(_alert_key(chat_id, user_id)) > 0


async def has_pending_alert_async(chat_id: int, user_id: int) -> bool:
    return await _run_sync(has_pending_alert, chat_id, user_id)


def resolve_impersonation_alert(chat_id: int, user_id: int) -> bool:
    return redis_client.delete(_alert_key(chat_id, user_id)) > 0


async def resolve_impersonation_alert_async(chat_id: int, user_id: int) -> bool:
    return await _run_sync(resolve_impersonation_alert, chat_id, user_id)


# ============================================================================
# PROFILE PHOTOS
# ============================================================================

def save_user_photo_path(user_id: int, path: str) -> None:
    redis_client.set(f"{USER_PHOTO_PREFIX}{user_id}", path, ex=USER_PHOTO_TTL_SEC)


async def save_user_photo_path_async(user_id: int, path: str) -> None:
    await _run_sync(save_user_photo_path, user_id, path)


def get_user_photo_path(user_id: int) -> Optional[str]:
    return redis_client.get(f"{USER_PHOTO_PREFIX}{user_id}")


async def get_user_photo_path_async(user_id: int) -> Optional[str]:
    return await _run_sync(get_user_photo_path, user_id)
