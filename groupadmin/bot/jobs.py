# Copyright (c) 2025 sprouee
from telegram.error import BadRequest, TelegramError
from telegram.ext import CallbackContext, JobQueue

from groupadmin.logging_config import log
from groupadmin.moderation.permissions import cleanup_expired_cache
from groupadmin.security.data_protection import pseudonymize_chat_id, pseudonymize_id

# Ключи в application.bot_data
DELIVERY_KEY = "delivery"
REPUTATION_CACHE_KEY = "reputation_cache"


class JobScheduler:
    """Одноразовые отложенные задачи поверх JobQueue."""

    def __init__(self, job_queue: JobQueue):
        self.job_queue = job_queue

    def schedule_delete_message(self, chat_id: int, message_id: int, delay_sec: int, reason: str = "") -> None:
        self.job_queue.run_once(
            delete_message_job,
            when=delay_sec,
            data={"chat_id": chat_id, "message_id": message_id, "reason": reason},
            name=f"delete:{chat_id}:{message_id}",
        )

    def schedule_redelivery(self, user_id: int, delay_sec: int) -> None:
        """Повторная доставка очереди. Одна задача на пользователя: новая заменяет старую."""
        name = f"redeliver:{user_id}"
        for job in self.job_queue.get_jobs_by_name(name):
            job.schedule_removal()
        self.job_queue.run_once(
            redeliver_notifications_job,
            when=delay_sec,
            data={"user_id": user_id},
            name=name,
        )


async def delete_message_job(context: CallbackContext):
    data = context.job.data
    chat_id, message_id = data["chat_id"], data["message_id"]
    try:
        await context.bot.delete_message(chat_id=chat_id, message_id=message_id)
    except BadRequest as exc:
        # Сообщение уже удалено вручную
        log.debug(f"Scheduled delete skipped in chat {pseudonymize_chat_id(chat_id)}: {exc}")
    except TelegramError as exc:
        log.warning(f"Scheduled delete ({data.get('reason')}) failed in chat {pseudonymize_chat_id(chat_id)}: {exc}")


async def redeliver_notifications_job(context: CallbackContext):
    user_id = context.job.data["user_id"]
    delivery = context.bot_data.get(DELIVERY_KEY)
    if delivery is None:
        log.error("Redelivery job fired without DeliveryEngine in bot_data")
        return
    delivered = await delivery.deliver_pending(user_id)
    if delivered:
        log.info(f"Redelivery job: {delivered} notifications delivered to {pseudonymize_id(user_id)}")


async def cleanup_caches_job(context: CallbackContext):
    removed = cleanup_expired_cache()
    reputation_cache = context.bot_data.get(REPUTATION_CACHE_KEY)
    if reputation_cache is not None:
        removed += reputation_cache.cleanup_expired()
    if removed:
        log.info(f"Cache cleanup: {removed} expired entries removed")
