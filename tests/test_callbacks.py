"""Tests for impersonation review buttons."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import redis

from groupadmin.bot.callbacks import ImpersonationReviewCallback

from tests.fakes import ADMIN_USER_ID, CHAT_ID, USER_ID, FakeTrustSource

MODULE = "groupadmin.bot.callbacks"


def _query(action, from_id=ADMIN_USER_ID):
    return SimpleNamespace(
        data=f"imp:{action}:{USER_ID}:{CHAT_ID}",
        from_user=SimpleNamespace(id=from_id),
        edit_message_reply_markup=AsyncMock(),
    )


@pytest.fixture
def handler():
    executor = MagicMock()
    executor.ban_user = AsyncMock(return_value=True)
    return ImpersonationReviewCallback(FakeTrustSource(admins={ADMIN_USER_ID}), executor)


class TestImpersonationReviewCallback:
    def test_can_handle(self, handler):
        assert handler.can_handle("imp:ban:1:2") is True
        assert handler.can_handle("captcha:1") is False

    @pytest.mark.asyncio
    async def test_ban(self, handler):
        query = _query("ban")
        answer = await handler.handle(query)
        assert "забанен" in answer
        handler.executor.ban_user.assert_awaited_once()
        assert handler.executor.ban_user.await_args.kwargs["admin_id"] == ADMIN_USER_ID
        query.edit_message_reply_markup.assert_awaited_once_with(reply_markup=None)

    @pytest.mark.asyncio
    async def test_trust_resolves_alert(self, handler):
        with patch(f"{MODULE}.trust_user", AsyncMock(return_value=True)) as trust, \
                patch(f"{MODULE}.resolve_impersonation_alert_async", AsyncMock(return_value=True)) as resolve:
            answer = await handler.handle(_query("trust"))
        assert "доверенным" in answer
        trust.assert_awaited_once_with(USER_ID, CHAT_ID)
        resolve.assert_awaited_once_with(CHAT_ID, USER_ID)

    @pytest.mark.asyncio
    async def test_trust_storage_failure(self, handler):
        with patch(f"{MODULE}.trust_user", AsyncMock(side_effect=redis.ConnectionError("down"))):
            answer = await handler.handle(_query("trust"))
        assert "Хранилище недоступно" in answer

    @pytest.mark.asyncio
    async def test_dismiss_changes_nothing(self, handler):
        query = _query("dismiss")
        await handler.handle(query)
        handler.executor.ban_user.assert_not_awaited()
        query.edit_message_reply_markup.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_admin_rejected(self, handler):
        query = _query("ban", from_id=USER_ID)
        answer = await handler.handle(query)
        assert "администраторов" in answer
        handler.executor.ban_user.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_data(self, handler):
        query = _query("ban")
        query.data = "imp:ban:notanumber:1"
        assert "Некорректные" in await handler.handle(query)
