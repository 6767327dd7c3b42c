#poll_answer_handler.py
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence, TYPE_CHECKING

from telegram import Update, PollAnswer, User as TelegramUser
from telegram.ext import ContextTypes, PollAnswerHandler as PTBPollAnswerHandler

from data_manager import QuestionNotFoundError
from modules.logger_config import log_quiz_event
from modules.quiz_types import AnswerOutcome, Question, Subscriber
from modules.subscriber_registry import SubscriberNotFoundError
from modules.telegram_utils import TransportError
from storage.database import PersistenceError
from utils import get_current_utc_time

if TYPE_CHECKING:
    from app_config import AppConfig
    from data_manager import DataManager
    from modules.subscriber_registry import SubscriberRegistry
    from modules.telegram_utils import TelegramTransport
    from storage.pending_store import PendingRequestStore

logger = logging.getLogger(__name__)

CORRECT_FEEDBACK = "You got it!! ✔️"
INCORRECT_FEEDBACK = "Sorry. You got it wrong ❌ ...\nThe correct answers are:"

def compose_feedback(question: Question, is_correct: bool) -> str:
    if is_correct:
        return CORRECT_FEEDBACK
    lines = [INCORRECT_FEEDBACK]
    lines.extend(f"• {choice}" for choice in question.correct_choices())
    return "\n".join(lines)

class CustomPollAnswerHandler:
    """
    Сопоставляет ответ на опрос с отправленным вопросом и обновляет статистику.

    Ожидающий опрос забирается из хранилища атомарно (take), поэтому
    повторное событие для того же poll_id ничего не меняет.
    """

    def __init__(
        self,
        app_config: 'AppConfig',
        registry: 'SubscriberRegistry',
        data_manager: 'DataManager',
        pending_store: 'PendingRequestStore',
        transport: 'TelegramTransport',
        clock: Callable[[], datetime] = get_current_utc_time
    ):
        self.app_config = app_config
        self.registry = registry
        self.data_manager = data_manager
        self.pending_store = pending_store
        self.transport = transport
        self._clock = clock

    async def handle_poll_answer(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.poll_answer:
            logger.debug("handle_poll_answer: update.poll_answer is None, игнорируется.")
            return

        poll_answer: PollAnswer = update.poll_answer
        user: Optional[TelegramUser] = poll_answer.user
        await self.correlate(
            token=poll_answer.poll_id,
            picked_indices=list(poll_answer.option_ids),
            responder_id=user.id if user else None
        )

    async def correlate(
        self,
        token: str,
        picked_indices: Sequence[int],
        responder_id: Optional[int] = None
    ) -> Optional[AnswerOutcome]:
        if not picked_indices:
            # Отзыв голоса: опрос остается ожидающим
            logger.debug(f"Пустой ответ на опрос {token} (отзыв голоса), игнорируется.")
            return None

        try:
            pending = await self.pending_store.take(token)
        except PersistenceError as e:
            logger.error(f"❌ Не удалось получить ожидающий опрос {token}: {e}")
            return None

        if pending is None:
            logger.debug(f"Опрос {token} не найден среди ожидающих (уже обработан или чужой). Ответ проигнорирован.")
            return None

        try:
            question = self.data_manager.get_question_by_id(pending.question_id)
        except (QuestionNotFoundError, PersistenceError) as e:
            logger.warning(f"Вопрос {pending.question_id} для опроса {token} недоступен, ответ не засчитан: {e}")
            return None

        subscriber_id = pending.subscriber_id if pending.subscriber_id is not None else responder_id
        if subscriber_id is None:
            logger.warning(f"Опрос {token}: не удалось определить подписчика, ответ не засчитан.")
            return None

        is_correct = question.is_correct(picked_indices)
        now = self._clock()

        def _record_answer(s: Subscriber) -> None:
            s.questions_asked += 1
            if is_correct:
                s.questions_correct += 1
            s.last_answered_at = now

        try:
            self.registry.update(subscriber_id, _record_answer)
        except SubscriberNotFoundError:
            logger.warning(f"Ответ на опрос {token} от незарегистрированного чата {subscriber_id} проигнорирован.")
            return None
        except ValueError as e:
            logger.error(f"Ответ на опрос {token} нарушает счетчики подписчика {subscriber_id}: {e}")
            return None

        feedback = compose_feedback(question, is_correct)
        if question.is_multi_select:
            try:
                await self.transport.send_message(subscriber_id, feedback)
            except TransportError as e:
                logger.warning(f"Не удалось отправить результат ответа в чат {subscriber_id}: {e}")

        log_quiz_event(
            logger, "answered",
            f"Ответ {'верный' if is_correct else 'неверный'} (выбрано: {sorted(picked_indices)}).",
            chat_id=subscriber_id, poll_id=token, question_id=question.question_id
        )
        return AnswerOutcome(
            token=token,
            subscriber_id=subscriber_id,
            question_id=question.question_id,
            is_correct=is_correct,
            feedback=feedback
        )

    def get_handler(self) -> PTBPollAnswerHandler:
        return PTBPollAnswerHandler(self.handle_poll_answer)
