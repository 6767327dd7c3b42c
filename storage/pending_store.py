# storage/pending_store.py
"""
Хранилище ожидающих ответа опросов: poll_id (token) -> вопрос.

Записи живут вне процесса (Redis или таблица pending_polls), поэтому ответ,
пришедший после перезапуска бота, все равно сопоставляется с вопросом.
take() - атомарное "прочитать и удалить": из двух одновременных ответов
на один и тот же опрос запись получит только один.
"""

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from modules.quiz_types import PendingRequest
from storage.database import PersistenceError, pending_polls_table
from utils import ensure_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PendingRequestStore(ABC):
    @abstractmethod
    async def put(self, request: PendingRequest) -> None:
        ...

    @abstractmethod
    async def get(self, token: str) -> Optional[PendingRequest]:
        ...

    @abstractmethod
    async def delete(self, token: str) -> bool:
        ...

    @abstractmethod
    async def take(self, token: str) -> Optional[PendingRequest]:
        """Атомарно возвращает и удаляет запись; None, если ее нет"""
        ...

    async def close(self) -> None:
        pass


class RedisPendingRequestStore(PendingRequestStore):
    KEY_PREFIX = "pending_poll:"

    def __init__(self, client: "redis.Redis"):
        self.redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisPendingRequestStore":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    def _make_key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[PendingRequest]:
        if raw is None:
            return None
        try:
            return PendingRequest.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Некорректная запись ожидающего опроса в Redis: {raw!r} ({e})")
            return None

    async def put(self, request: PendingRequest) -> None:
        try:
            # Без TTL: ответ может прийти через сколько угодно времени
            await self.redis.set(self._make_key(request.token), json.dumps(request.to_dict()))
        except RedisError as e:
            raise PersistenceError(f"Redis: не удалось сохранить опрос {request.token}: {e}") from e

    async def get(self, token: str) -> Optional[PendingRequest]:
        try:
            raw = await self.redis.get(self._make_key(token))
        except RedisError as e:
            raise PersistenceError(f"Redis: не удалось прочитать опрос {token}: {e}") from e
        return self._decode(raw)

    async def delete(self, token: str) -> bool:
        try:
            return bool(await self.redis.delete(self._make_key(token)))
        except RedisError as e:
            raise PersistenceError(f"Redis: не удалось удалить опрос {token}: {e}") from e

    async def take(self, token: str) -> Optional[PendingRequest]:
        try:
            raw = await self.redis.getdel(self._make_key(token))
        except RedisError as e:
            raise PersistenceError(f"Redis: не удалось забрать опрос {token}: {e}") from e
        return self._decode(raw)

    async def close(self) -> None:
        await self.redis.aclose()


class SqlPendingRequestStore(PendingRequestStore):
    """
    Таблица pending_polls. Запросы к базе синхронные, поэтому выполняются в
    рабочем потоке (asyncio.to_thread) и не останавливают цикл событий.
    Исключение - SQLite в памяти: одно общее соединение (StaticPool) остается
    в потоке цикла событий, где с ним работают реестр и корпус вопросов.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._write_lock = threading.Lock()
        self._offload = not isinstance(engine.pool, StaticPool)

    async def _run(self, func: Callable[..., T], *args) -> T:
        if self._offload:
            return await asyncio.to_thread(func, *args)
        return func(*args)

    @staticmethod
    def _from_row(row) -> PendingRequest:
        return PendingRequest(
            token=row["token"],
            question_id=row["question_id"],
            subscriber_id=row["chat_id"],
            sent_at=ensure_utc(row["sent_at"]),
        )

    def _put_sync(self, request: PendingRequest) -> None:
        with self._write_lock, self.engine.begin() as conn:
            conn.execute(delete(pending_polls_table).where(pending_polls_table.c.token == request.token))
            conn.execute(pending_polls_table.insert().values(
                token=request.token,
                question_id=request.question_id,
                chat_id=request.subscriber_id,
                sent_at=request.sent_at,
            ))

    def _get_sync(self, token: str) -> Optional[PendingRequest]:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(pending_polls_table).where(pending_polls_table.c.token == token)
            ).mappings().first()
        return self._from_row(row) if row else None

    def _delete_sync(self, token: str) -> bool:
        with self._write_lock, self.engine.begin() as conn:
            result = conn.execute(delete(pending_polls_table).where(pending_polls_table.c.token == token))
        return result.rowcount > 0

    def _take_sync(self, token: str) -> Optional[PendingRequest]:
        with self._write_lock, self.engine.begin() as conn:
            row = conn.execute(
                select(pending_polls_table).where(pending_polls_table.c.token == token)
            ).mappings().first()
            if row is None:
                return None
            result = conn.execute(delete(pending_polls_table).where(pending_polls_table.c.token == token))
            if result.rowcount != 1:
                # Запись успел забрать другой процесс
                return None
        return self._from_row(row)

    async def put(self, request: PendingRequest) -> None:
        try:
            await self._run(self._put_sync, request)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось сохранить опрос {request.token}: {e}") from e

    async def get(self, token: str) -> Optional[PendingRequest]:
        try:
            return await self._run(self._get_sync, token)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось прочитать опрос {token}: {e}") from e

    async def delete(self, token: str) -> bool:
        try:
            return await self._run(self._delete_sync, token)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось удалить опрос {token}: {e}") from e

    async def take(self, token: str) -> Optional[PendingRequest]:
        try:
            return await self._run(self._take_sync, token)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось забрать опрос {token}: {e}") from e

    async def close(self) -> None:
        pass
