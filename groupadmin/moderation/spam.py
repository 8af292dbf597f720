# Copyright (c) 2025 sprowii
"""Антиспам: координатор и регулярный классификатор.

Доверенные пользователи и админы чата спам-проверку не проходят.
Ответ классификатора передаётся без изменений.
"""
import asyncio
import re
from typing import Awaitable, Optional, Protocol, Tuple

from groupadmin.logging_config import log
from groupadmin.moderation.models import (
    SKIP_REASON_ADMIN,
    SKIP_REASON_TRUSTED,
    SpamCheckOutcome,
    SpamCheckRequest,
    SpamResult,
)
from groupadmin.security.data_protection import pseudonymize_id


# ============================================================================
# SPAM PATTERNS
# ============================================================================

SPAM_PATTERNS = [
    r"(?:заработ|зароб)[а-яё]*\s*(?:от|до)?\s*\d+",   # "заработок от 1000"
    r"(?:пассивн|легк)[а-яё]*\s*(?:доход|заработ)",    # "пассивный доход"
    r"(?:работа|вакансия)\s*(?:на\s*дому|удалённ)",    # "работа на дому"
    r"(?:инвест|вложи)[а-яё]*\s*(?:от)?\s*\d+",        # "инвестируй от 100"
    r"(?:казино|casino|slots?|рулетк)",                # казино
    r"(?:ставки|betting|1xbet|fonbet)",                # ставки
    r"(?:пиши|напиши)\s+в\s+(?:лс|личку)",             # "пиши в лс"
]

SPAM_REGEX = re.compile("|".join(SPAM_PATTERNS), re.IGNORECASE)


class TrustSource(Protocol):
    async def is_trusted(self, user_id: int, chat_id: int) -> bool:
        ...

    async def is_admin(self, user_id: int, chat_id: int) -> bool:
        ...


class SpamClassifier(Protocol):
    async def classify(self, request: SpamCheckRequest) -> SpamResult:
        ...


class PatternSpamClassifier:
    """Классификатор на регулярках. Без состояния."""

    def __init__(self, confidence_per_match: float = 0.6):
        self.confidence_per_match = confidence_per_match

    async def classify(self, request: SpamCheckRequest) -> SpamResult:
        matches = {m.group(0).lower() for m in SPAM_REGEX.finditer(request.text or "")}
        if not matches:
            return SpamResult(is_spam=False, confidence=0.0, details="")
        confidence = min(1.0, self.confidence_per_match * len(matches))
        return SpamResult(
            is_spam=True,
            confidence=confidence,
            details="patterns: " + ", ".join(sorted(matches)),
        )


class SpamDetectionCoordinator:
    """Решает, нужна ли спам-проверка, и вызывает классификатор."""

    def __init__(self, trust_source: TrustSource, classifier: SpamClassifier):
        self.trust_source = trust_source
        self.classifier = classifier

    async def resolve_trust(self, user_id: int, chat_id: int) -> Tuple[bool, bool]:
        """Доверие и статус админа запрашиваются независимо; сбой - False."""
        async def lookup(kind: str, coro: Awaitable[bool]) -> bool:
            try:
                return bool(await coro)
            except Exception as exc:
                log.warning(f"{kind} lookup failed for {pseudonymize_id(user_id)}: {exc!r}")
                return False

        trusted, admin = await asyncio.gather(
            lookup("Trust", self.trust_source.is_trusted(user_id, chat_id)),
            lookup("Admin", self.trust_source.is_admin(user_id, chat_id)),
        )
        return trusted, admin

    async def check(
        self,
        request: SpamCheckRequest,
        trust: Optional[Tuple[bool, bool]] = None,
    ) -> SpamCheckOutcome:
        """Проверить сообщение на спам.

        Args:
            request: Сообщение для проверки
            trust: Уже известные (is_trusted, is_admin), чтобы не запрашивать повторно

        Returns:
            SpamCheckOutcome с пропуском ("trusted"/"admin") или ответом классификатора
        """
        is_trusted, is_admin = trust if trust is not None else await self.resolve_trust(
            request.user_id, request.chat_id
        )

        if is_trusted or is_admin:
            reason = SKIP_REASON_TRUSTED if is_trusted else SKIP_REASON_ADMIN
            log.debug(f"Spam check skipped for {pseudonymize_id(request.user_id)}: {reason}")
            return SpamCheckOutcome(
                is_user_trusted=is_trusted,
                is_user_admin=is_admin,
                spam_check_skipped=True,
                skip_reason=reason,
            )

        result = await self.classifier.classify(request)
        return SpamCheckOutcome(
            is_user_trusted=False,
            is_user_admin=False,
            spam_check_skipped=False,
            spam_result=result,
        )
