"""
Типы данных Interval Quiz Bot
Подписчики, вопросы, наборы вопросов (разделы) и ожидающие ответа опросы
"""

from __future__ import annotations
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple


class DataQualityError(Exception):
    """Раздел пуст или выбранный вопрос некорректен (меньше двух вариантов)"""
    pass


class DeliveryState(Enum):
    """Состояние доставки вопроса подписчику"""
    IDLE = "idle"
    DUE = "due"
    DELIVERING = "delivering"


@dataclass
class Subscriber:
    """Подписчик: один чат, получающий вопросы по расписанию"""
    subscriber_id: int
    question_interval: timedelta
    next_delivery_at: datetime
    section: str
    last_answered_at: Optional[datetime] = None
    questions_sent: int = 0
    questions_asked: int = 0
    questions_correct: int = 0
    display_name: str = "unknown"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if self.question_interval <= timedelta(0):
            raise ValueError("Интервал между вопросами должен быть положительным")
        if self.questions_correct < 0:
            raise ValueError("Счетчики не могут быть отрицательными")
        if self.questions_correct > self.questions_asked:
            raise ValueError("questions_correct не может превышать questions_asked")
        if self.questions_asked > self.questions_sent:
            raise ValueError("questions_asked не может превышать questions_sent")

    @property
    def accuracy_percent(self) -> int:
        if self.questions_asked == 0:
            return 0
        return int(self.questions_correct / self.questions_asked * 100)


@dataclass(frozen=True)
class Question:
    """Вопрос из корпуса. Порядок choices значим: оценка сравнивает индексы."""
    question_id: str
    text: str
    choices: Tuple[str, ...]
    correct_indices: FrozenSet[int]
    tags: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if not self.correct_indices:
            raise ValueError(f"Вопрос {self.question_id}: нет правильных ответов")
        for index in self.correct_indices:
            if index < 0 or index >= len(self.choices):
                raise ValueError(f"Вопрос {self.question_id}: индекс правильного ответа {index} вне диапазона вариантов")

    @classmethod
    def create(
        cls,
        question_id: str,
        text: str,
        choices: Iterable[str],
        correct_indices: Iterable[int],
        tags: Iterable[str] = (),
    ) -> "Question":
        return cls(
            question_id=question_id,
            text=text,
            choices=tuple(choices),
            correct_indices=frozenset(int(i) for i in correct_indices),
            tags=frozenset(tags),
        )

    @property
    def is_multi_select(self) -> bool:
        return len(self.correct_indices) > 1

    @property
    def single_correct_index(self) -> Optional[int]:
        if self.is_multi_select:
            return None
        return next(iter(self.correct_indices))

    def is_correct(self, picked_indices: Iterable[int]) -> bool:
        """Ответ верен, если выбран ровно набор правильных индексов (порядок не важен)"""
        picked = list(picked_indices)
        return len(picked) == len(self.correct_indices) and set(picked) == self.correct_indices

    def correct_choices(self) -> List[str]:
        return [self.choices[i] for i in sorted(self.correct_indices)]


@dataclass
class Quiz:
    """Набор вопросов одного раздела"""
    section: str
    questions: List[Question] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.questions)

    def random_question(self, rng: Optional[random.Random] = None) -> Question:
        # Вопрос с одним вариантом (или без вариантов) - ошибка данных: пробуем еще раз
        rng = rng or random
        if not self.questions:
            raise DataQualityError(f"Раздел '{self.section}' не содержит вопросов")

        question = rng.choice(self.questions)
        if len(question.choices) <= 1:
            question = rng.choice(self.questions)
        if len(question.choices) < 2:
            raise DataQualityError(
                f"Вопрос {question.question_id} в разделе '{self.section}' содержит меньше двух вариантов ответа"
            )
        return question


@dataclass(frozen=True)
class PendingRequest:
    """Отправленный опрос, ожидающий ответа. token - poll_id, выданный Telegram."""
    token: str
    question_id: str
    subscriber_id: Optional[int] = None
    sent_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "question_id": self.question_id,
            "subscriber_id": self.subscriber_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingRequest":
        sent_at_raw = data.get("sent_at")
        return cls(
            token=str(data["token"]),
            question_id=str(data["question_id"]),
            subscriber_id=data.get("subscriber_id"),
            sent_at=datetime.fromisoformat(sent_at_raw) if sent_at_raw else None,
        )


@dataclass(frozen=True)
class AnswerOutcome:
    """Результат сопоставления ответа с опросом"""
    token: str
    subscriber_id: int
    question_id: str
    is_correct: bool
    feedback: str
