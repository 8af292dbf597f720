# Copyright (c) 2025 sprowii
"""Защита персональных данных.

Модуль обеспечивает:
- Псевдонимизацию user_id/chat_id в логах приложения (HMAC с солью)
- Шифрование текста уведомлений, ожидающих доставки в Redis

Реальные ID уходят только в Telegram API и в лог-канал чата.
"""
import base64
import hashlib
import hmac
import os
import re
import secrets
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from groupadmin.logging_config import log


# ============================================================================
# КОНФИГУРАЦИЯ
# ============================================================================

_HASH_SALT = os.getenv("DATA_HASH_SALT")
if not _HASH_SALT:
    log.warning(
        "DATA_HASH_SALT не задан! Генерирую временную соль. "
        "Псевдонимы в логах будут меняться после рестарта."
    )
    _HASH_SALT = secrets.token_hex(32)

ENCRYPTED_PREFIX = "enc:"


def _build_fernet(raw_key: Optional[str]) -> Optional[Fernet]:
    if not raw_key:
        return None
    try:
        return Fernet(raw_key.encode())
    except ValueError:
        # Обычный пароль - деривируем ключ
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_HASH_SALT.encode()[:16],
            iterations=100000,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(raw_key.encode())))


_fernet: Optional[Fernet] = _build_fernet(os.getenv("DATA_ENCRYPTION_KEY"))
if _fernet is None:
    log.warning("DATA_ENCRYPTION_KEY не задан! Очередь уведомлений хранится без шифрования.")


# ============================================================================
# ПСЕВДОНИМИЗАЦИЯ
# ============================================================================

def pseudonymize_id(user_id: int, context: str = "default") -> str:
    """Псевдонимизирует ID через HMAC-SHA256.

    Args:
        user_id: Реальный Telegram ID
        context: Контекст использования (разные контексты дают разные псевдонимы)

    Returns:
        Псевдоним вида "u_<hash[:16]>"
    """
    message = f"{context}:{user_id}".encode()
    h = hmac.new(_HASH_SALT.encode(), message, hashlib.sha256)
    return f"u_{h.hexdigest()[:16]}"


def pseudonymize_chat_id(chat_id: int) -> str:
    """Псевдонимизирует chat_id."""
    return pseudonymize_id(chat_id, context="chat")


def safe_log_action(
    action_type: str,
    target_user_id: int,
    chat_id: int,
    admin_id: Optional[int] = None,
    reason: Optional[str] = None
) -> str:
    """Формирует безопасную строку для лога действия модерации."""
    target = pseudonymize_id(target_user_id)
    chat = pseudonymize_chat_id(chat_id)
    admin = pseudonymize_id(admin_id) if admin_id else "auto"

    safe_reason = ""
    if reason:
        safe_reason = re.sub(r"@\w+", "@***", reason)[:80]

    return f"[{action_type}] target={target} chat={chat} by={admin} reason={safe_reason}"


# ============================================================================
# ШИФРОВАНИЕ
# ============================================================================

def encrypt_text(data: str) -> str:
    """Шифрует строку для хранения в Redis.

    Returns:
        Строка с префиксом "enc:" или исходная, если шифрование отключено
    """
    if not _fernet:
        return data
    return ENCRYPTED_PREFIX + _fernet.encrypt(data.encode()).decode()


def decrypt_text(stored: str) -> Optional[str]:
    """Расшифровывает строку, сохранённую через encrypt_text.

    Returns:
        Исходный текст или None, если расшифровать не удалось
    """
    if not stored or not stored.startswith(ENCRYPTED_PREFIX):
        return stored

    if not _fernet:
        log.warning("Попытка расшифровать данные без ключа шифрования")
        return None

    try:
        return _fernet.decrypt(stored[len(ENCRYPTED_PREFIX):].encode()).decode()
    except InvalidToken as exc:
        log.error(f"Ошибка расшифровки: {exc!r}")
        return None


def generate_encryption_key() -> str:
    """Генерирует новый ключ Fernet для DATA_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()


def check_security_config() -> Dict[str, Any]:
    """Проверяет конфигурацию безопасности."""
    issues = []
    if not os.getenv("DATA_HASH_SALT"):
        issues.append("DATA_HASH_SALT не задан - используется временная соль")
    if not os.getenv("DATA_ENCRYPTION_KEY"):
        issues.append("DATA_ENCRYPTION_KEY не задан - шифрование отключено")
    return {
        "encryption_enabled": _fernet is not None,
        "hash_salt_configured": bool(os.getenv("DATA_HASH_SALT")),
        "issues": issues,
        "secure": len(issues) == 0,
    }
