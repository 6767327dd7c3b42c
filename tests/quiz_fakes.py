#!/usr/bin/env python3
"""
Общие заготовки для тестов: подменный транспорт, управляемые часы и сборка окружения
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app_config import AppConfig
from data_manager import DataManager
from modules.quiz_types import Question
from modules.subscriber_registry import SubscriberRegistry
from modules.telegram_utils import PollReceipt, SubscriberBlockedError
from storage.database import create_db_engine, init_db
from storage.pending_store import SqlPendingRequestStore
from storage.subscriber_repository import SubscriberRepository

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeTransport:
    """Записывает отправленное; fail_on_poll/fail_on_message имитируют ошибку Telegram"""

    def __init__(self, fail_on_poll: bool = False, fail_on_message: bool = False):
        self.fail_on_poll = fail_on_poll
        self.fail_on_message = fail_on_message
        self.events: List[tuple] = []
        self.polls: List[dict] = []
        self._counter = 0
        self.gate: Optional[asyncio.Event] = None

    @property
    def messages(self) -> List[tuple]:
        return [(chat_id, text) for kind, chat_id, text in self.events if kind == "message"]

    async def send_message(self, chat_id, text):
        if self.fail_on_message:
            raise SubscriberBlockedError("blocked")
        self.events.append(("message", chat_id, text))

    async def send_poll(self, chat_id, prompt, options, allows_multiple_answers, correct_option_id=None):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_poll:
            raise SubscriberBlockedError("blocked")
        self._counter += 1
        token = f"poll-{self._counter}"
        self.events.append(("poll", chat_id, prompt))
        self.polls.append({
            "chat_id": chat_id,
            "prompt": prompt,
            "options": list(options),
            "allows_multiple_answers": allows_multiple_answers,
            "correct_option_id": correct_option_id,
            "token": token,
        })
        return PollReceipt(token=token, display_name="tester")


def sample_questions() -> List[Question]:
    return [
        Question.create("q-single", "Which port does HTTPS use?", ["A", "B", "C"], [1], tags=["network+"]),
        Question.create("q-multi", "Pick the routing protocols", ["OSPF", "HTTP", "BGP", "FTP"], [0, 2], tags=["network+"]),
        Question.create("q-sec", "What does CIA stand for?", ["Confidentiality, Integrity, Availability", "Other"], [0], tags=["security+"]),
    ]


def make_app_config(tmp_dir: str) -> AppConfig:
    app_config = AppConfig(project_root=Path(tmp_dir))
    app_config.bot_token = "123:test"
    return app_config


class QuizEnvironment:
    """Реестр, корпус и хранилище опросов поверх SQLite в памяти"""

    def __init__(self, tmp_dir: str, questions: Optional[List[Question]] = None, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.app_config = make_app_config(tmp_dir)
        self.engine = create_db_engine("sqlite://")
        init_db(self.engine)
        self.data_manager = DataManager(app_config=self.app_config, engine=self.engine)
        self.data_manager.upload_questions(sample_questions() if questions is None else questions)
        self.repository = SubscriberRepository(self.engine)
        self.registry = SubscriberRegistry(
            repository=self.repository,
            default_interval=timedelta(hours=1),
            default_section="network+",
            clock=self.clock
        )
        self.pending_store = SqlPendingRequestStore(self.engine)
        self.transport = FakeTransport()

    def close(self) -> None:
        self.engine.dispose()
