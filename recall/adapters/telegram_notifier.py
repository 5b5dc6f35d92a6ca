"""Telegram notification adapter — implements NotificationPort.

Each scheduled notification is a one-shot job on the python-telegram-bot
JobQueue; when it fires, the message is sent to the owner chat.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import uuid4

from telegram import Bot
from telegram.ext import ContextTypes, JobQueue

from recall.data.models import ScheduledNotification
from recall.ports.notification_port import NotificationError

logger = logging.getLogger(__name__)

_JOB_PREFIX = "notif:"


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot, job_queue: JobQueue, chat_id: int) -> None:
        self._bot = bot
        self._job_queue = job_queue
        self._chat_id = chat_id

    async def send_message(self, user_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=user_id, text=text)

    async def request_permissions(self) -> bool:
        # The owner chat is always reachable once the bot is running.
        return True

    async def schedule(
        self,
        title: str,
        body: str,
        trigger_at: datetime,
        data: dict | None = None,
    ) -> str:
        notification_id = uuid4().hex
        when = trigger_at if trigger_at.tzinfo is not None else trigger_at.astimezone()
        notification = ScheduledNotification(
            id=notification_id,
            title=title,
            body=body,
            trigger_at=trigger_at,
            slot_key=(data or {}).get("slot"),
            data=dict(data or {}),
        )
        try:
            self._job_queue.run_once(
                self._deliver,
                when=when,
                name=f"{_JOB_PREFIX}{notification_id}",
                data=notification,
                chat_id=self._chat_id,
            )
        except Exception as exc:
            raise NotificationError(f"Failed to queue notification '{title}': {exc}") from exc
        return notification_id

    async def cancel(self, notification_id: str) -> None:
        for job in self._job_queue.get_jobs_by_name(f"{_JOB_PREFIX}{notification_id}"):
            job.schedule_removal()

    async def cancel_all(self) -> None:
        for job in self._own_jobs():
            job.schedule_removal()

    async def list_scheduled(self) -> list[ScheduledNotification]:
        return [job.data for job in self._own_jobs()]

    def _own_jobs(self) -> list:
        return [
            job for job in self._job_queue.jobs()
            if job.name and job.name.startswith(_JOB_PREFIX) and not job.removed
        ]

    async def _deliver(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        notification: ScheduledNotification = context.job.data
        text = f"{notification.title}\n{notification.body}" if notification.body else notification.title
        try:
            await self.send_message(self._chat_id, text)
            logger.info("Notification %s delivered", notification.id)
        except Exception as exc:
            logger.error("Failed to deliver notification %s: %s", notification.id, exc)
