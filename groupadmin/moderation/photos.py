# Copyright (c) 2025 sprowii
"""Аватарки пользователей для проверки имперсонации.

Скачанные файлы кэшируются по user_id в Redis (user_photo:{user_id}).
"""
import os
from typing import Optional

import redis
from PIL import Image
from telegram import Bot
from telegram.error import TelegramError

from groupadmin import config
from groupadmin.logging_config import log
from groupadmin.moderation.storage import get_user_photo_path_async, save_user_photo_path_async
from groupadmin.security.data_protection import pseudonymize_id


async def fetch_user_photo(bot: Bot, user_id: int) -> Optional[str]:
    """Скачать текущую аватарку пользователя.

    Returns:
        Путь к файлу или None, если аватарки нет или Telegram недоступен
    """
    try:
        cached = await get_user_photo_path_async(user_id)
    except redis.RedisError as exc:
        log.warning(f"Кэш аватарок недоступен: {exc}")
        cached = None
    if cached and os.path.exists(cached):
        return cached

    try:
        photos = await bot.get_user_profile_photos(user_id, limit=1)
        if not photos.photos:
            return None
        # Последний размер - самый большой
        largest = photos.photos[0][-1]
        path = os.path.join(config.PHOTO_DIR, f"{user_id}_{largest.file_unique_id}.jpg")
        if not os.path.exists(path):
            os.makedirs(config.PHOTO_DIR, exist_ok=True)
            tg_file = await bot.get_file(largest.file_id)
            await tg_file.download_to_drive(path)
    except (TelegramError, OSError) as exc:
        log.warning(f"Не удалось скачать аватарку {pseudonymize_id(user_id)}: {exc}")
        return None

    try:
        await save_user_photo_path_async(user_id, path)
    except redis.RedisError as exc:
        log.warning(f"Не удалось закэшировать путь аватарки: {exc}")
    return path


HASH_SIZE = 8


def average_hash(path: str, hash_size: int = HASH_SIZE) -> int:
    """Перцептивный average hash: hash_size*hash_size бит.

    Картинка уменьшается до hash_size x hash_size в оттенках серого,
    бит = 1 если пиксель ярче среднего. Пережатие JPEG и ресайз
    почти не меняют хэш, в отличие от хэша файла.
    """
    with Image.open(path) as image:
        small = image.convert("L").resize((hash_size, hash_size), Image.Resampling.LANCZOS)
        pixels = list(small.getdata())
    mean = sum(pixels) / len(pixels)
    bits = 0
    for value in pixels:
        bits = (bits << 1) | (1 if value > mean else 0)
    return bits


def perceptual_similarity(path_a: str, path_b: str) -> float:
    """Похожесть аватарок от 0.0 до 1.0: 1 - hamming / 64."""
    distance = bin(average_hash(path_a) ^ average_hash(path_b)).count("1")
    return 1.0 - distance / (HASH_SIZE * HASH_SIZE)
