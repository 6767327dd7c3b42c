# modules/subscriber_registry.py
import copy
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from modules.quiz_types import Subscriber
from storage.database import PersistenceError
from storage.subscriber_repository import SubscriberRepository
from utils import get_current_utc_time

logger = logging.getLogger(__name__)


class SubscriberNotFoundError(LookupError):
    """Чат не зарегистрирован (не отправлял /start)"""
    pass


class SubscriberRegistry:
    """
    Состояние подписчиков в памяти с зеркалированием в БД.

    Память - источник истины: если запись в БД не удалась, ошибка логируется,
    а следующий успешный update перезапишет строку целиком. Все изменения идут
    через update() под одной блокировкой; наружу отдаются только копии.
    """

    def __init__(
        self,
        repository: SubscriberRepository,
        default_interval: timedelta,
        default_section: str,
        clock: Callable[[], datetime] = get_current_utc_time
    ):
        self.repository = repository
        self.default_interval = default_interval
        self.default_section = default_section
        self._clock = clock
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Subscriber] = {}

    def load(self) -> int:
        """Заполняет реестр из БД при запуске"""
        subscribers = self.repository.load_all()
        with self._lock:
            self._subscribers = {s.subscriber_id: s for s in subscribers}
        logger.info(f"Загружено {len(subscribers)} подписчиков из БД.")
        return len(subscribers)

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber_id: int) -> bool:
        return subscriber_id in self._subscribers

    def _persist(self, subscriber: Subscriber) -> None:
        try:
            self.repository.upsert(subscriber)
        except PersistenceError as e:
            logger.error(f"❌ Не удалось сохранить подписчика {subscriber.subscriber_id}, состояние сохранено в памяти: {e}")

    def register(self, subscriber_id: int) -> Tuple[Subscriber, bool]:
        """Возвращает (подписчик, создан_ли_сейчас). Повторная регистрация ничего не меняет."""
        with self._lock:
            existing = self._subscribers.get(subscriber_id)
            if existing is not None:
                return copy.deepcopy(existing), False

            now = self._clock()
            subscriber = Subscriber(
                subscriber_id=subscriber_id,
                question_interval=self.default_interval,
                next_delivery_at=now + self.default_interval,
                section=self.default_section,
            )
            self._subscribers[subscriber_id] = subscriber
            self._persist(subscriber)
            logger.info(f"Зарегистрирован новый подписчик {subscriber_id} (раздел: {self.default_section}).")
            return copy.deepcopy(subscriber), True

    def find(self, subscriber_id: int) -> Optional[Subscriber]:
        with self._lock:
            subscriber = self._subscribers.get(subscriber_id)
            return copy.deepcopy(subscriber) if subscriber is not None else None

    def get(self, subscriber_id: int) -> Subscriber:
        subscriber = self.find(subscriber_id)
        if subscriber is None:
            raise SubscriberNotFoundError(f"Подписчик {subscriber_id} не найден")
        return subscriber

    def update(self, subscriber_id: int, mutator: Callable[[Subscriber], None]) -> Subscriber:
        """
        Применяет mutator к копии подписчика, проверяет инварианты и сохраняет.

        Raises:
            SubscriberNotFoundError: подписчик не зарегистрирован
            ValueError: изменение нарушает инварианты (счетчики, интервал)
        """
        with self._lock:
            current = self._subscribers.get(subscriber_id)
            if current is None:
                raise SubscriberNotFoundError(f"Подписчик {subscriber_id} не найден")

            candidate = copy.deepcopy(current)
            mutator(candidate)
            candidate.subscriber_id = current.subscriber_id
            candidate.validate()
            if (candidate.questions_sent < current.questions_sent
                    or candidate.questions_asked < current.questions_asked
                    or candidate.questions_correct < current.questions_correct):
                raise ValueError(f"Счетчики подписчика {subscriber_id} не могут уменьшаться")

            self._subscribers[subscriber_id] = candidate
            self._persist(candidate)
            return copy.deepcopy(candidate)

    def snapshot(self) -> List[Subscriber]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._subscribers.values()]

    def for_each(self, visitor: Callable[[Subscriber], None]) -> None:
        # Обход по снимку: visitor может вызывать update() без порчи итерации
        for subscriber in self.snapshot():
            visitor(subscriber)
