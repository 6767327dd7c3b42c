# storage/subscriber_repository.py
import logging
from datetime import timedelta
from typing import Any, Dict, List

from sqlalchemy import select, update
from sqlalchemy.engine import Engine, RowMapping
from sqlalchemy.exc import SQLAlchemyError

from modules.quiz_types import Subscriber
from storage.database import PersistenceError, subscribers_table
from utils import ensure_utc

logger = logging.getLogger(__name__)


class SubscriberRepository:
    """Строки таблицы connected_users: upsert и полное чтение"""

    def __init__(self, engine: Engine):
        self.engine = engine

    @staticmethod
    def _to_row(subscriber: Subscriber) -> Dict[str, Any]:
        return {
            "question_interval_seconds": int(subscriber.question_interval.total_seconds()),
            "next_question_time": subscriber.next_delivery_at,
            "last_answered_time": subscriber.last_answered_at,
            "questions_sent": subscriber.questions_sent,
            "questions_asked": subscriber.questions_asked,
            "questions_correct": subscriber.questions_correct,
            "quiz_section": subscriber.section,
            "username": subscriber.display_name,
        }

    @staticmethod
    def _from_row(row: RowMapping) -> Subscriber:
        return Subscriber(
            subscriber_id=int(row["chat_id"]),
            question_interval=timedelta(seconds=row["question_interval_seconds"]),
            next_delivery_at=ensure_utc(row["next_question_time"]),
            last_answered_at=ensure_utc(row["last_answered_time"]),
            section=row["quiz_section"],
            questions_sent=row["questions_sent"],
            questions_asked=row["questions_asked"],
            questions_correct=row["questions_correct"],
            display_name=row["username"] or "unknown",
        )

    def upsert(self, subscriber: Subscriber) -> None:
        values = self._to_row(subscriber)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(subscribers_table)
                    .where(subscribers_table.c.chat_id == subscriber.subscriber_id)
                    .values(**values)
                )
                if result.rowcount == 0:
                    conn.execute(subscribers_table.insert().values(chat_id=subscriber.subscriber_id, **values))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось сохранить подписчика {subscriber.subscriber_id}: {e}") from e

    def load_all(self) -> List[Subscriber]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(select(subscribers_table)).mappings().all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось прочитать подписчиков: {e}") from e

        subscribers: List[Subscriber] = []
        for row in rows:
            try:
                subscribers.append(self._from_row(row))
            except (ValueError, TypeError) as e:
                logger.warning(f"Строка подписчика {row['chat_id']} пропущена: {e}")
        return subscribers
