"""Tests for ImpersonationDetector."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from groupadmin.moderation.impersonation import ImpersonationDetector, ImpersonationSettings, review_keyboard
from groupadmin.moderation.models import (
    AdminInfo,
    ChatModSettings,
    DeliveryResult,
    DeliveryStatus,
    ImpersonationRiskLevel,
)

from tests.fakes import ADMIN_USER_ID, CHAT_ID, USER_ID, FakeRoster, FakeTrustSource

MODULE = "groupadmin.moderation.impersonation"


@pytest.fixture
def storage():
    with patch(f"{MODULE}.create_impersonation_alert_async", AsyncMock(return_value=True)) as create, \
            patch(f"{MODULE}.has_pending_alert_async", AsyncMock(return_value=False)) as pending, \
            patch(f"{MODULE}.get_message_count_async", AsyncMock(return_value=0)) as count, \
            patch(f"{MODULE}.resolve_impersonation_alert_async", AsyncMock(return_value=True)) as resolve:
        yield MagicMock(create=create, pending=pending, count=count, resolve=resolve)


def _detector(admins, trust=None, settings=None, photo_score=1.0, chat_settings=None):
    executor = MagicMock()
    executor.ban_user = AsyncMock(return_value=True)
    executor.notify_banned_user = AsyncMock()
    executor.delivery.send_with_media = AsyncMock(return_value=DeliveryResult(DeliveryStatus.DELIVERED, message_id=5))
    mod_logger = MagicMock()
    mod_logger.send_alert = AsyncMock(return_value=True)
    return ImpersonationDetector(
        trust or FakeTrustSource(),
        FakeRoster(admins),
        executor,
        mod_logger,
        settings=settings or ImpersonationSettings(
            name_threshold=0.8, photo_threshold=0.9, name_weight=50, photo_weight=50
        ),
        photo_similarity=lambda a, b: photo_score,
        settings_loader=AsyncMock(return_value=chat_settings or ChatModSettings(chat_id=CHAT_ID)),
    )


class TestCheck:
    @pytest.mark.asyncio
    async def test_name_and_photo_match_is_critical(self, admin_info, make_user):
        detector = _detector([admin_info])
        suspect = make_user(first_name="Alexander", last_name="Petr0v")
        verdict = await detector.check(suspect, CHAT_ID, photo_path="/tmp/suspect.jpg")
        assert verdict.total_score == 100
        assert verdict.risk_level is ImpersonationRiskLevel.CRITICAL
        assert verdict.target_user_id == ADMIN_USER_ID
        assert verdict.name_match is True
        assert verdict.photo_match is True
        assert verdict.photo_similarity_score == 1.0

    @pytest.mark.asyncio
    async def test_name_only_is_medium(self, admin_info, make_user):
        detector = _detector([admin_info])
        verdict = await detector.check(make_user(first_name="alexander", last_name="petrov"), CHAT_ID)
        assert verdict.total_score == 50
        assert verdict.risk_level is ImpersonationRiskLevel.MEDIUM
        assert verdict.photo_similarity_score is None

    @pytest.mark.asyncio
    async def test_no_similarity_returns_none(self, admin_info, make_user):
        detector = _detector([admin_info], photo_score=0.1)
        assert await detector.check(make_user(first_name="Olga"), CHAT_ID, "/tmp/suspect.jpg") is None

    @pytest.mark.asyncio
    async def test_user_not_compared_with_self(self, admin_info, make_user):
        detector = _detector([admin_info])
        admin_as_user = make_user(user_id=ADMIN_USER_ID, first_name="Alexander", last_name="Petrov")
        assert await detector.check(admin_as_user, CHAT_ID, "/tmp/admin.jpg") is None

    @pytest.mark.asyncio
    async def test_photo_comparison_failure_ignored(self, admin_info, make_user):
        def broken(a, b):
            raise OSError("file vanished")

        detector = _detector([admin_info])
        detector.photo_similarity = broken
        verdict = await detector.check(make_user(first_name="Alexander", last_name="Petrov"), CHAT_ID, "/tmp/s.jpg")
        assert verdict.total_score == 50
        assert verdict.photo_similarity_score is None


class TestShouldCheck:
    @pytest.mark.asyncio
    async def test_new_user_checked(self, storage):
        assert await _detector([]).should_check(USER_ID, CHAT_ID) is True

    @pytest.mark.asyncio
    async def test_after_first_messages_not_checked(self, storage):
        storage.count.return_value = 3
        assert await _detector([]).should_check(USER_ID, CHAT_ID) is False

    @pytest.mark.asyncio
    async def test_trusted_not_checked(self, storage):
        detector = _detector([], trust=FakeTrustSource(trusted={USER_ID}))
        assert await detector.should_check(USER_ID, CHAT_ID) is False

    @pytest.mark.asyncio
    async def test_pending_alert_not_checked(self, storage):
        storage.pending.return_value = True
        assert await _detector([]).should_check(USER_ID, CHAT_ID) is False

    @pytest.mark.asyncio
    async def test_disabled_in_chat(self, storage):
        detector = _detector([], chat_settings=ChatModSettings(chat_id=CHAT_ID, impersonation_enabled=False))
        assert await detector.should_check(USER_ID, CHAT_ID) is False


class TestExecuteAction:
    async def _verdict(self, detector, make_user, **user_kwargs):
        return await detector.check(make_user(**user_kwargs), CHAT_ID, "/tmp/suspect.jpg")

    @pytest.mark.asyncio
    async def test_below_threshold_no_action(self, storage, admin_info, make_user):
        detector = _detector([admin_info], settings=ImpersonationSettings(name_weight=49, photo_weight=0))
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert verdict.total_score == 49
        assert await detector.execute_action(verdict) is False
        storage.create.assert_not_awaited()
        detector.executor.ban_user.assert_not_awaited()
        detector.mod_logger.send_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_medium_sends_alert_with_buttons(self, storage, admin_info, make_user):
        detector = _detector([admin_info], photo_score=0.0)
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert await detector.execute_action(verdict, "Alexander Petrov") is True
        detector.executor.ban_user.assert_not_awaited()
        call = detector.mod_logger.send_alert.await_args
        assert call.args[0] == CHAT_ID
        buttons = call.kwargs["reply_markup"].inline_keyboard[0]
        assert buttons[0].callback_data == f"imp:ban:{USER_ID}:{CHAT_ID}"
        assert "Alexander Petrov" in call.args[1]

    @pytest.mark.asyncio
    async def test_critical_auto_bans(self, storage, admin_info, make_user):
        detector = _detector([admin_info])
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert await detector.execute_action(verdict) is True
        detector.executor.ban_user.assert_awaited_once()
        assert detector.executor.ban_user.await_args.kwargs["action_type"] == "impersonation"
        detector.executor.notify_banned_user.assert_awaited_once()
        assert detector.executor.notify_banned_user.await_args.args[0] == USER_ID
        detector.mod_logger.send_alert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_repeated_action_is_idempotent(self, storage, admin_info, make_user):
        detector = _detector([admin_info])
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert await detector.execute_action(verdict) is True
        storage.create.return_value = False
        assert await detector.execute_action(verdict) is False
        assert detector.executor.ban_user.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_ban_falls_back_to_alert(self, storage, admin_info, make_user):
        detector = _detector([admin_info])
        detector.executor.ban_user.return_value = False
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert await detector.execute_action(verdict) is True
        detector.executor.notify_banned_user.assert_not_awaited()
        call = detector.mod_logger.send_alert.await_args
        assert "Автобан не удался" in call.args[1]
        assert call.kwargs["reply_markup"] is not None
        storage.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_alert_released_when_nothing_delivered(self, storage, admin_info, make_user):
        detector = _detector([admin_info])
        detector.executor.ban_user.return_value = False
        detector.mod_logger.send_alert.return_value = False
        detector.executor.delivery.send_with_media.return_value = DeliveryResult(DeliveryStatus.FAILED, error="timeout")
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert await detector.execute_action(verdict) is False
        storage.resolve.assert_awaited_once_with(CHAT_ID, USER_ID)

        # Запись снята - следующая проверка снова пробует
        detector.executor.ban_user.return_value = True
        assert await detector.execute_action(verdict) is True
        assert storage.create.await_count == 2

    @pytest.mark.asyncio
    async def test_without_log_channel_admins_get_dm(self, storage, admin_info, make_user):
        second = AdminInfo(user_id=ADMIN_USER_ID + 1, first_name="Olga")
        detector = _detector([admin_info, second], photo_score=0.0)
        detector.mod_logger.send_alert.return_value = False
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert await detector.execute_action(verdict, "Alexander Petrov") is True

        calls = detector.executor.delivery.send_with_media.await_args_list
        assert [c.args[0] for c in calls] == [ADMIN_USER_ID, ADMIN_USER_ID + 1]
        for c in calls:
            assert c.args[1] == "impersonation_alert"
            assert "Alexander Petrov" in c.args[2]
            assert c.kwargs["photo_path"] == "/tmp/suspect.jpg"
            assert c.kwargs["reply_markup"].inline_keyboard[0][1].callback_data == f"imp:trust:{USER_ID}:{CHAT_ID}"
        storage.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queued_admin_dm_counts_as_sent(self, storage, admin_info, make_user):
        detector = _detector([admin_info], photo_score=0.0)
        detector.mod_logger.send_alert.return_value = False
        detector.executor.delivery.send_with_media.return_value = DeliveryResult(DeliveryStatus.QUEUED)
        verdict = await self._verdict(detector, make_user, first_name="Alexander", last_name="Petrov")
        assert await detector.execute_action(verdict) is True
        storage.resolve.assert_not_awaited()


def test_review_keyboard_callback_data():
    from groupadmin.moderation.models import ImpersonationVerdict

    verdict = ImpersonationVerdict(
        total_score=50,
        risk_level=ImpersonationRiskLevel.MEDIUM,
        suspected_user_id=USER_ID,
        target_user_id=ADMIN_USER_ID,
        chat_id=CHAT_ID,
        name_match=True,
        photo_match=False,
    )
    buttons = review_keyboard(verdict).inline_keyboard[0]
    assert [b.callback_data for b in buttons] == [
        f"imp:ban:{USER_ID}:{CHAT_ID}",
        f"imp:trust:{USER_ID}:{CHAT_ID}",
        f"imp:dismiss:{USER_ID}:{CHAT_ID}",
    ]
