# modules/quiz_dispatcher.py
import logging
import random
from typing import Optional, TYPE_CHECKING

from modules.logger_config import log_quiz_event
from modules.quiz_types import PendingRequest, Question, Subscriber
from storage.database import PersistenceError
from utils import get_current_utc_time, split_long_prompt, truncate_text

if TYPE_CHECKING:
    from app_config import AppConfig
    from data_manager import DataManager
    from modules.subscriber_registry import SubscriberRegistry
    from modules.telegram_utils import TelegramTransport
    from storage.pending_store import PendingRequestStore

logger = logging.getLogger(__name__)

class QuizDispatcher:
    """
    Отправка вопроса подписчику в виде опроса Telegram.

    Если отправка не удалась (TransportError), ожидающий опрос не создается и
    счетчики не меняются; исключение уходит вызывающему.
    """

    def __init__(
        self,
        app_config: 'AppConfig',
        registry: 'SubscriberRegistry',
        data_manager: 'DataManager',
        pending_store: 'PendingRequestStore',
        transport: 'TelegramTransport',
        rng: Optional[random.Random] = None
    ):
        self.app_config = app_config
        self.registry = registry
        self.data_manager = data_manager
        self.pending_store = pending_store
        self.transport = transport
        self.rng = rng

    async def send_question(self, subscriber_id: int) -> str:
        """Выбирает случайный вопрос из раздела подписчика и отправляет его. Возвращает poll_id."""
        subscriber = self.registry.get(subscriber_id)
        quiz = self.data_manager.load_quiz(subscriber.section)
        question = quiz.random_question(self.rng)
        return await self.deliver(subscriber, question)

    async def deliver(self, subscriber: Subscriber, question: Question) -> str:
        chat_id = subscriber.subscriber_id

        # Telegram ограничивает длину вопроса в опросе: начало уходит обычными сообщениями
        leading_chunks, prompt = split_long_prompt(
            question.text,
            self.app_config.long_prompt_threshold,
            self.app_config.prompt_chunk_length
        )
        for chunk in leading_chunks:
            await self.transport.send_message(chat_id, chunk)

        options = [truncate_text(choice, self.app_config.max_poll_option_length) for choice in question.choices]
        receipt = await self.transport.send_poll(
            chat_id,
            prompt,
            options,
            allows_multiple_answers=question.is_multi_select,
            correct_option_id=question.single_correct_index
        )

        # Счетчик отправленных растет до записи ожидающего опроса: ответ не может быть засчитан раньше отправки
        def _mark_sent(s: Subscriber) -> None:
            s.questions_sent += 1
            if receipt.display_name:
                s.display_name = receipt.display_name

        self.registry.update(chat_id, _mark_sent)

        pending = PendingRequest(
            token=receipt.token,
            question_id=question.question_id,
            subscriber_id=chat_id,
            sent_at=get_current_utc_time()
        )
        try:
            await self.pending_store.put(pending)
        except PersistenceError as e:
            logger.error(f"❌ Опрос {receipt.token} отправлен в чат {chat_id}, но не сохранен в хранилище: {e}")

        log_quiz_event(
            logger, "sent",
            f"Отправлен {'мульти' if question.is_multi_select else 'одиночный'} опрос в чат {chat_id} "
            f"(частей до опроса: {len(leading_chunks)}).",
            chat_id=chat_id, poll_id=receipt.token, question_id=question.question_id
        )
        return receipt.token
