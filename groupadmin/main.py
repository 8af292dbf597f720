# Copyright (c) 2025 sprowii
"""Точка входа: сборка компонентов модерации и запуск polling."""
import asyncio

import httpx
from telegram import Update
from telegram.ext import Application

from groupadmin import config
from groupadmin.bot.callbacks import ImpersonationReviewCallback
from groupadmin.bot.events import EventBus
from groupadmin.bot.jobs import DELIVERY_KEY, REPUTATION_CACHE_KEY, JobScheduler, cleanup_caches_job
from groupadmin.bot.router import UpdateRouter
from groupadmin.logging_config import log
from groupadmin.moderation.actions import ModerationActionExecutor
from groupadmin.moderation.content_filter import CriticalContentScanner
from groupadmin.moderation.controller import ModerationDecisionCoordinator
from groupadmin.moderation.impersonation import ImpersonationDetector
from groupadmin.moderation.logger import ModLogger
from groupadmin.moderation.notifications import DeliveryEngine
from groupadmin.moderation.permissions import ChatTrustSource
from groupadmin.moderation.reputation import ReputationCheckCache, ReputationConfig
from groupadmin.moderation.spam import PatternSpamClassifier, SpamDetectionCoordinator
from groupadmin.security.data_protection import check_security_config

AUDIT_TASK_KEY = "audit_task"
HTTP_CLIENT_KEY = "http_client"


def _build_classifier():
    if config.API_KEYS:
        from groupadmin.llm.client import GeminiSpamClassifier

        log.info(f"Spam classifier: Gemini ({', '.join(config.SPAM_MODELS)})")
        return GeminiSpamClassifier(config.API_KEYS, config.SPAM_MODELS)
    log.info("Spam classifier: regex patterns")
    return PatternSpamClassifier()


def build_application() -> Application:
    """Собрать Application со всеми компонентами модерации."""
    for warning in config.validate_config():
        log.warning(warning)
    for issue in check_security_config()["issues"]:
        log.warning(issue)

    application = (
        Application.builder()
        .token(config.TG_TOKEN)
        .concurrent_updates(True)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    bot = application.bot

    http_client = httpx.AsyncClient()
    reputation_config = ReputationConfig.from_env()
    reputation_config.validate()
    reputation_cache = ReputationCheckCache(config.REPUTATION_CACHE_TTL_SEC, client=http_client)

    scheduler = JobScheduler(application.job_queue)
    delivery = DeliveryEngine(bot, scheduler, config.PENDING_REDELIVERY_DELAY_SEC)
    mod_logger = ModLogger(bot)
    executor = ModerationActionExecutor(bot, delivery, mod_logger)

    trust_source = ChatTrustSource(bot)
    detector = ImpersonationDetector(trust_source, trust_source, executor, mod_logger)
    coordinator = ModerationDecisionCoordinator(
        critical_scanner=CriticalContentScanner(),
        spam_coordinator=SpamDetectionCoordinator(trust_source, _build_classifier()),
        reputation_cache=reputation_cache,
        impersonation=detector,
        reputation_config=reputation_config,
    )

    events = EventBus()
    router = UpdateRouter(
        coordinator,
        executor,
        delivery,
        callback_handlers=[ImpersonationReviewCallback(trust_source, executor)],
        events=events,
    )
    router.register(application)

    application.bot_data[DELIVERY_KEY] = delivery
    application.bot_data[REPUTATION_CACHE_KEY] = reputation_cache
    application.bot_data[HTTP_CLIENT_KEY] = http_client
    application.bot_data["audit_queue"] = events.subscribe("content_verdict", "join_verdict")
    application.bot_data["mod_logger"] = mod_logger

    application.job_queue.run_repeating(
        cleanup_caches_job,
        interval=config.CACHE_CLEANUP_INTERVAL_SEC,
        first=config.CACHE_CLEANUP_INTERVAL_SEC,
        name="cleanup_caches",
    )
    return application


async def _post_init(application: Application) -> None:
    mod_logger: ModLogger = application.bot_data["mod_logger"]
    queue = application.bot_data["audit_queue"]
    application.bot_data[AUDIT_TASK_KEY] = asyncio.create_task(mod_logger.consume_verdicts(queue))
    log.info("Audit consumer started")


async def _post_shutdown(application: Application) -> None:
    task = application.bot_data.pop(AUDIT_TASK_KEY, None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    client = application.bot_data.pop(HTTP_CLIENT_KEY, None)
    if client is not None:
        await client.aclose()
    log.info("Moderation bot stopped")


def main() -> None:
    application = build_application()
    log.info("Moderation bot starting")
    application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
