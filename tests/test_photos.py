"""Tests for profile photo download and comparison."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from PIL import Image
from telegram.error import TelegramError

from groupadmin.moderation.photos import average_hash, fetch_user_photo, perceptual_similarity

from tests.fakes import USER_ID

MODULE = "groupadmin.moderation.photos"


@pytest.fixture
def photo_cache():
    with patch(f"{MODULE}.get_user_photo_path_async", AsyncMock(return_value=None)) as get, \
            patch(f"{MODULE}.save_user_photo_path_async", AsyncMock()) as save:
        yield SimpleNamespace(get=get, save=save)


class TestFetchUserPhoto:
    @pytest.mark.asyncio
    async def test_downloads_largest_size(self, bot, photo_cache, tmp_path, monkeypatch):
        monkeypatch.setattr("groupadmin.config.PHOTO_DIR", str(tmp_path))
        small = SimpleNamespace(file_id="small", file_unique_id="s")
        large = SimpleNamespace(file_id="large", file_unique_id="l")
        bot.get_user_profile_photos.return_value = SimpleNamespace(photos=[[small, large]])
        tg_file = SimpleNamespace(download_to_drive=AsyncMock())
        bot.get_file.return_value = tg_file

        path = await fetch_user_photo(bot, USER_ID)

        assert path == str(tmp_path / f"{USER_ID}_l.jpg")
        bot.get_file.assert_awaited_once_with("large")
        tg_file.download_to_drive.assert_awaited_once_with(path)
        photo_cache.save.assert_awaited_once_with(USER_ID, path)

    @pytest.mark.asyncio
    async def test_cached_path_reused(self, bot, photo_cache, tmp_path):
        cached = tmp_path / "cached.jpg"
        cached.write_bytes(b"img")
        photo_cache.get.return_value = str(cached)
        assert await fetch_user_photo(bot, USER_ID) == str(cached)
        bot.get_user_profile_photos.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_photo(self, bot, photo_cache):
        bot.get_user_profile_photos.return_value = SimpleNamespace(photos=[])
        assert await fetch_user_photo(bot, USER_ID) is None

    @pytest.mark.asyncio
    async def test_api_error(self, bot, photo_cache):
        bot.get_user_profile_photos.side_effect = TelegramError("flood")
        assert await fetch_user_photo(bot, USER_ID) is None


def _split_image(path, vertical=True, dark=40, light=210, quality=None):
    image = Image.new("L", (64, 64), dark)
    box = (32, 0, 64, 64) if vertical else (0, 32, 64, 64)
    image.paste(light, box)
    if quality is None:
        image.save(path, format="PNG")
    else:
        image.save(path, format="JPEG", quality=quality)
    return str(path)


class TestPerceptualSimilarity:
    def test_recompressed_copy_matches(self, tmp_path):
        original = _split_image(tmp_path / "admin.png")
        for quality in (90, 50, 10):
            copy = _split_image(tmp_path / f"copy_{quality}.jpg", quality=quality)
            assert perceptual_similarity(original, copy) >= 0.9

    def test_brightness_shift_matches(self, tmp_path):
        original = _split_image(tmp_path / "admin.png")
        brighter = _split_image(tmp_path / "brighter.png", dark=80, light=240)
        assert perceptual_similarity(original, brighter) == 1.0

    def test_different_layout_is_not_similar(self, tmp_path):
        vertical = _split_image(tmp_path / "vertical.png")
        horizontal = _split_image(tmp_path / "horizontal.png", vertical=False)
        assert perceptual_similarity(vertical, horizontal) == 0.5

    def test_inverted_image_scores_zero(self, tmp_path):
        original = _split_image(tmp_path / "admin.png")
        inverted = _split_image(tmp_path / "inverted.png", dark=210, light=40)
        assert perceptual_similarity(original, inverted) == 0.0

    def test_hash_is_64_bits(self, tmp_path):
        assert average_hash(_split_image(tmp_path / "admin.png")).bit_length() <= 64
