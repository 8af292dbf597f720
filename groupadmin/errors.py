# Copyright (c) 2025 sprowii
"""Исключения модерации.

- CriticalScanError: критичная проверка контента упала, событие не пропускается
- ConfigurationError: не хватает обязательной конфигурации, бот не должен стартовать
"""


class ModerationError(Exception):
    """Базовое исключение модерации."""


class CriticalScanError(ModerationError):
    """Сбой критичного сканера контента.

    Никогда не превращается в "разрешить": пропускается наверх
    и обрабатывается как фатальная ошибка события.
    """

    def __init__(self, scanner: str, message: str):
        super().__init__(f"{scanner}: {message}")
        self.scanner = scanner


class ConfigurationError(ModerationError):
    """Отсутствует обязательная конфигурация."""
