# Copyright (c) 2025 sprouee
"""Security-related helpers.

Модули:
- data_protection: Шифрование очереди уведомлений и псевдонимизация ID в логах
"""
from groupadmin.security.data_protection import (
    check_security_config,
    decrypt_text,
    encrypt_text,
    generate_encryption_key,
    pseudonymize_chat_id,
    pseudonymize_id,
    safe_log_action,
)

__all__ = [
    "check_security_config",
    "decrypt_text",
    "encrypt_text",
    "generate_encryption_key",
    "pseudonymize_chat_id",
    "pseudonymize_id",
    "safe_log_action",
]
