"""
Pytest configuration and fixtures for groupadmin tests.
"""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

# Config reads the environment at import time
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("TG_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("DATA_HASH_SALT", "test-salt")
os.environ.setdefault("REPUTATION_API_URL", "https://cas.test")

from groupadmin.moderation.models import AdminInfo, ChatModSettings, ContentEvent  # noqa: E402
from groupadmin.moderation.permissions import clear_admin_cache  # noqa: E402

from tests.fakes import ADMIN_USER_ID, CHAT_ID, USER_ID  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_admin_cache():
    clear_admin_cache()
    yield
    clear_admin_cache()


@pytest.fixture
def settings():
    return ChatModSettings(chat_id=CHAT_ID)


@pytest.fixture
def make_event():
    def _make(text="hello", user_id=USER_ID, kind="message", **kwargs):
        return ContentEvent(
            kind=kind,
            chat_id=kwargs.pop("chat_id", CHAT_ID),
            user_id=user_id,
            message_id=kwargs.pop("message_id", 77),
            text=text,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_user():
    def _make(user_id=USER_ID, first_name="Ivan", last_name=None, is_bot=False):
        return SimpleNamespace(id=user_id, first_name=first_name, last_name=last_name, is_bot=is_bot, username=None)
    return _make


@pytest.fixture
def admin_info():
    return AdminInfo(user_id=ADMIN_USER_ID, first_name="Alexander", last_name="Petrov", photo_path="/tmp/admin.jpg")


@pytest.fixture
def bot():
    """Telegram Bot mock with async API methods."""
    mock = MagicMock()
    for name in (
        "send_message",
        "send_photo",
        "send_video",
        "delete_message",
        "ban_chat_member",
        "get_chat_member",
        "get_chat_administrators",
        "get_user_profile_photos",
        "get_file",
    ):
        setattr(mock, name, AsyncMock())
    mock.send_message.return_value = SimpleNamespace(message_id=555)
    mock.send_photo.return_value = SimpleNamespace(message_id=556)
    mock.send_video.return_value = SimpleNamespace(message_id=557)
    return mock


@pytest.fixture
def scheduler():
    mock = MagicMock()
    mock.schedule_delete_message = MagicMock()
    mock.schedule_redelivery = MagicMock()
    return mock
