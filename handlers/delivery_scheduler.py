#handlers/delivery_scheduler.py
from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from telegram.ext import ContextTypes, Job, JobQueue

from modules.logger_config import log_quiz_event
from modules.quiz_types import DataQualityError, DeliveryState, Subscriber
from modules.subscriber_registry import SubscriberNotFoundError
from modules.telegram_utils import TransportError
from storage.database import PersistenceError
from utils import get_current_utc_time

if TYPE_CHECKING:
    from app_config import AppConfig
    from modules.quiz_dispatcher import QuizDispatcher
    from modules.subscriber_registry import SubscriberRegistry

logger = logging.getLogger(__name__)

SCAN_JOB_NAME = "interval_quiz_delivery_scan"

class DeliveryScheduler:
    """
    Периодический обход подписчиков и запуск доставки для тех, у кого наступил срок.

    Срок переносится сразу (now + interval), до того как станет известен исход
    доставки: медленная или упавшая отправка не задерживает обход остальных и
    не сдвигает расписание. Неудачная доставка не повторяется до следующего срока.
    """

    def __init__(
        self,
        app_config: AppConfig,
        registry: SubscriberRegistry,
        dispatcher: QuizDispatcher,
        clock: Callable[[], datetime] = get_current_utc_time
    ):
        self.app_config = app_config
        self.registry = registry
        self.dispatcher = dispatcher
        self._clock = clock
        self._job: Optional[Job] = None
        self._in_flight: Dict[int, asyncio.Task] = {}

    def start(self, job_queue: JobQueue) -> Job:
        current_jobs = job_queue.get_jobs_by_name(SCAN_JOB_NAME)
        for job in current_jobs:
            job.schedule_removal()
        if current_jobs:
            logger.info(f"Удалена существующая задача обхода '{SCAN_JOB_NAME}'.")

        period = self.app_config.scan_interval_seconds
        self._job = job_queue.run_repeating(
            callback=self._scan_job,
            interval=period,
            first=period,
            name=SCAN_JOB_NAME
        )
        logger.info(f"Планировщик доставки запущен: обход каждые {period} с.")
        return self._job

    def stop(self) -> None:
        if self._job is not None:
            self._job.schedule_removal()
            self._job = None
            logger.info("Планировщик доставки остановлен.")

    async def _scan_job(self, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self.tick()

    def delivery_state(self, subscriber_id: int, now: Optional[datetime] = None) -> DeliveryState:
        task = self._in_flight.get(subscriber_id)
        if task is not None and not task.done():
            return DeliveryState.DELIVERING
        subscriber = self.registry.find(subscriber_id)
        if subscriber is not None and (now or self._clock()) >= subscriber.next_delivery_at:
            return DeliveryState.DUE
        return DeliveryState.IDLE

    @property
    def in_flight_count(self) -> int:
        return sum(1 for task in self._in_flight.values() if not task.done())

    async def tick(self, now: Optional[datetime] = None) -> List[int]:
        """Один обход. Возвращает id подписчиков, которым запущена доставка."""
        now = now or self._clock()
        launched: List[int] = []

        for subscriber in self.registry.snapshot():
            if now < subscriber.next_delivery_at:
                continue
            if self._reschedule_if_due(subscriber.subscriber_id, now) is None:
                continue

            previous = self._in_flight.get(subscriber.subscriber_id)
            if previous is not None and not previous.done():
                logger.warning(f"Доставка для чата {subscriber.subscriber_id} еще выполняется, новая не запускается.")
                continue

            task = asyncio.create_task(self._deliver(subscriber.subscriber_id))
            self._in_flight[subscriber.subscriber_id] = task
            task.add_done_callback(lambda t, sid=subscriber.subscriber_id: self._forget(sid, t))
            launched.append(subscriber.subscriber_id)

        if launched:
            logger.info(f"Обход подписчиков: запущено доставок - {len(launched)}.")
        return launched

    def _reschedule_if_due(self, subscriber_id: int, now: datetime) -> Optional[Subscriber]:
        """Переносит срок вперед, если подписчик все еще должен получить вопрос"""
        was_due = False

        def _advance(s: Subscriber) -> None:
            nonlocal was_due
            if now < s.next_delivery_at:
                return
            was_due = True
            s.next_delivery_at = now + s.question_interval

        try:
            updated = self.registry.update(subscriber_id, _advance)
        except SubscriberNotFoundError:
            return None
        if not was_due:
            return None
        log_quiz_event(
            logger, "scheduled",
            f"Следующий вопрос для чата {subscriber_id}: {updated.next_delivery_at.isoformat()}",
            chat_id=subscriber_id, level='debug'
        )
        return updated

    async def _deliver(self, subscriber_id: int) -> Optional[str]:
        try:
            return await self.dispatcher.send_question(subscriber_id)
        except (TransportError, DataQualityError, PersistenceError, SubscriberNotFoundError) as e:
            log_quiz_event(
                logger, "failed",
                f"Доставка в чат {subscriber_id} не удалась, следующая попытка в срок по расписанию: {e}",
                chat_id=subscriber_id, level='warning'
            )
        except Exception:
            logger.exception(f"Непредвиденная ошибка доставки в чат {subscriber_id}")
        return None

    def _forget(self, subscriber_id: int, task: asyncio.Task) -> None:
        if self._in_flight.get(subscriber_id) is task:
            del self._in_flight[subscriber_id]

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Ожидает незавершенные доставки (при остановке бота), не дольше timeout"""
        pending = [task for task in self._in_flight.values() if not task.done()]
        if not pending:
            return
        logger.info(f"Ожидание завершения {len(pending)} доставок...")
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            logger.warning(f"{len(still_running)} доставок не завершились за {timeout} с.")
