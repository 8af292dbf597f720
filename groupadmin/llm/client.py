# Copyright (c) 2025 sprowii
import asyncio
import json
from typing import Any, Dict, List, Optional

from google import genai

from groupadmin.config import API_KEYS, SPAM_MODELS
from groupadmin.logging_config import log
from groupadmin.moderation.models import SpamCheckRequest, SpamResult

SPAM_SYSTEM_PROMPT = """
Ты - модератор Telegram-группы. Определи, является ли сообщение спамом:
реклама, заработок, казино и ставки, крипто-скам, массовые приглашения в личку.
Обычные вопросы, шутки и споры спамом не являются.
Ответь строго JSON: {"is_spam": true|false, "confidence": число от 0 до 1, "reason": "кратко"}.
""".strip()

MAX_TEXT_CHARS = 4000


def _request_config() -> Dict[str, Any]:
    return {
        "system_instruction": {"parts": [{"text": SPAM_SYSTEM_PROMPT}]},
        "response_mime_type": "application/json",
        "temperature": 0,
    }


def _parse_verdict(raw_text: Optional[str]) -> SpamResult:
    if not raw_text:
        raise ValueError("Empty classifier response")
    data = json.loads(raw_text)
    confidence = float(data.get("confidence", 0.0))
    return SpamResult(
        is_spam=bool(data.get("is_spam", False)),
        confidence=max(0.0, min(1.0, confidence)),
        details=str(data.get("reason", ""))[:200],
    )


class GeminiSpamClassifier:
    """Классификатор спама на Gemini.

    Перебирает ключи и модели как обычный запрос к LLM; если все
    комбинации упали, бросает исключение (координатор решений пропустит
    спам-проверку с причиной "error").
    """

    def __init__(self, api_keys: Optional[List[str]] = None, models: Optional[List[str]] = None):
        self.api_keys = list(api_keys if api_keys is not None else API_KEYS)
        self.models = list(models if models is not None else SPAM_MODELS)
        if not self.api_keys:
            raise RuntimeError("Не заданы API ключи для Gemini")
        if not self.models:
            raise RuntimeError("Не заданы модели для классификатора спама")
        self._clients: Dict[int, genai.Client] = {}
        self._key_idx = 0
        self._model_idx = 0

    def _get_client(self, idx: int) -> genai.Client:
        idx = idx % len(self.api_keys)
        client = self._clients.get(idx)
        if client is None:
            client = genai.Client(api_key=self.api_keys[idx])
            self._clients[idx] = client
        return client

    def _classify_sync(self, text: str) -> SpamResult:
        contents = [{"role": "user", "parts": [{"text": text[:MAX_TEXT_CHARS]}]}]
        for model_offset in range(len(self.models)):
            model_idx = (self._model_idx + model_offset) % len(self.models)
            model_name = self.models[model_idx]
            for key_attempt in range(len(self.api_keys)):
                key_idx = (self._key_idx + key_attempt) % len(self.api_keys)
                try:
                    response = self._get_client(key_idx).models.generate_content(
                        model=model_name,
                        contents=contents,
                        config=_request_config(),
                    )
                    result = _parse_verdict(response.text)
                    self._key_idx, self._model_idx = key_idx, model_idx
                    return result
                except Exception as exc:
                    error_text = str(exc).lower()
                    if "rate limit" in error_text or "quota" in error_text:
                        log.info(f"Rate limit on key {key_idx + 1}, model {model_name}. Trying next...")
                    else:
                        log.warning(f"Spam classification failed: key {key_idx + 1}, model {model_name}: {exc}")
        raise RuntimeError("All API keys/models failed")

    async def classify(self, request: SpamCheckRequest) -> SpamResult:
        if not request.text or not request.text.strip():
            return SpamResult(is_spam=False, confidence=0.0, details="empty")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._classify_sync, request.text)
