# Copyright (c) 2025 sprouee
import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _resolve_redis_url(raw_url: str) -> str:
    if ".upstash.io" in raw_url and raw_url.startswith("redis://"):
        return "rediss" + raw_url[len("redis") :]
    return raw_url


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Переменная окружения {name} должна быть целым числом, получено: {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Переменная окружения {name} должна быть числом, получено: {raw!r}")


REDIS_URL = os.getenv("REDIS_URL")
if not REDIS_URL:
    raise RuntimeError("Переменная окружения REDIS_URL должна быть установлена")
REDIS_URL = _resolve_redis_url(REDIS_URL)

TG_TOKEN = os.getenv("TG_TOKEN")
ADMIN_ID = os.getenv("ADMIN_ID")


def _load_api_keys() -> List[str]:
    keys: List[str] = []
    for idx in (1, 2):
        key = os.getenv(f"GEMINI_API_KEY_{idx}")
        if key:
            keys.append(key)
    return keys


# Без ключей используется регулярный классификатор спама
API_KEYS = _load_api_keys()

SPAM_MODELS: List[str] = [
    m.strip()
    for m in os.getenv("SPAM_MODELS", "gemini-2.5-flash,gemini-2.5-flash-lite").split(",")
    if m.strip()
]

# ============================================================================
# REPUTATION (CAS)
# ============================================================================

REPUTATION_ENABLED = _env_bool("REPUTATION_ENABLED", True)
REPUTATION_API_URL = os.getenv("REPUTATION_API_URL", "https://api.cas.chat").rstrip("/")
REPUTATION_TIMEOUT_SEC = _env_float("REPUTATION_TIMEOUT_SEC", 5.0)
REPUTATION_USER_AGENT = os.getenv("REPUTATION_USER_AGENT", "groupadmin-bot/1.0")
REPUTATION_CACHE_TTL_SEC = 3600

# ============================================================================
# IMPERSONATION
# ============================================================================

IMPERSONATION_FIRST_MESSAGES = _env_int("IMPERSONATION_FIRST_MESSAGES", 3)
IMPERSONATION_NAME_THRESHOLD = _env_float("IMPERSONATION_NAME_THRESHOLD", 0.8)
IMPERSONATION_PHOTO_THRESHOLD = _env_float("IMPERSONATION_PHOTO_THRESHOLD", 0.9)
IMPERSONATION_NAME_WEIGHT = _env_int("IMPERSONATION_NAME_WEIGHT", 50)
IMPERSONATION_PHOTO_WEIGHT = _env_int("IMPERSONATION_PHOTO_WEIGHT", 50)

# ============================================================================
# DELIVERY
# ============================================================================

FALLBACK_AUTO_DELETE_SEC = _env_int("FALLBACK_AUTO_DELETE_SEC", 30)
PENDING_REDELIVERY_DELAY_SEC = _env_int("PENDING_REDELIVERY_DELAY_SEC", 6 * 3600)
MAX_PENDING_NOTIFICATIONS = 50
PHOTO_DIR = os.getenv("PHOTO_DIR", "data/photos")

CACHE_CLEANUP_INTERVAL_SEC = _env_int("CACHE_CLEANUP_INTERVAL_SEC", 600)


def validate_config() -> List[str]:
    """Проверить конфигурацию при старте.

    Returns:
        Список предупреждений (некритичные проблемы)

    Raises:
        ConfigurationError: если конфигурация не позволяет запустить бота
    """
    from groupadmin.errors import ConfigurationError

    if not TG_TOKEN:
        raise ConfigurationError("Переменная окружения TG_TOKEN должна быть установлена")
    if REPUTATION_ENABLED and not REPUTATION_API_URL:
        raise ConfigurationError("REPUTATION_ENABLED=true, но REPUTATION_API_URL не задан")
    if REPUTATION_TIMEOUT_SEC <= 0:
        raise ConfigurationError("REPUTATION_TIMEOUT_SEC должен быть больше 0")

    warnings: List[str] = []
    if not API_KEYS:
        warnings.append("GEMINI_API_KEY_* не заданы - используется регулярный классификатор спама")
    if not ADMIN_ID:
        warnings.append("ADMIN_ID не задан - глобальный администратор бота отключён")
    return warnings
