#handlers/common_handlers.py
import logging
import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Union

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError
from telegram.ext import BaseHandler, CallbackQueryHandler, CommandHandler, ContextTypes

from app_config import AppConfig
from modules.quiz_dispatcher import QuizDispatcher
from modules.quiz_types import DataQualityError, Subscriber
from modules.subscriber_registry import SubscriberNotFoundError, SubscriberRegistry
from modules.telegram_utils import TransportError
from storage.database import PersistenceError
from utils import format_interval, format_timestamp, get_current_utc_time

logger = logging.getLogger(__name__)

CB_SET_INTERVAL = "set_interval"
CB_SEND_QUESTION = "send_question"

NOT_REGISTERED_TEXT = "I don't know you yet. Send /start first!"
INVALID_INTERVAL_TEXT = "The interval must be a positive number of hours."

class CommonHandlers:
    """Команды оператора: каждая сводится к одному вызову реестра или диспетчера"""

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

    async def _reply(self, update: Update, context: ContextTypes.DEFAULT_TYPE, text: str,
                     reply_markup: Optional[InlineKeyboardMarkup] = None) -> None:
        if not update.effective_chat:
            return
        try:
            await context.bot.send_message(chat_id=update.effective_chat.id, text=text, reply_markup=reply_markup)
        except TelegramError as e:
            logger.error(f"Ошибка при отправке ответа в чат {update.effective_chat.id}: {e}")

    def _interval_keyboard(self) -> InlineKeyboardMarkup:
        interval_row = [
            InlineKeyboardButton(
                f"{hours} Hour" if hours == 1 else f"{hours} Hours",
                callback_data=f"{CB_SET_INTERVAL}:{hours}"
            )
            for hours in self.app_config.interval_choices_hours
        ]
        return InlineKeyboardMarkup([
            interval_row,
            [InlineKeyboardButton("Send me a question!", callback_data=CB_SEND_QUESTION)],
        ])

    async def _send_question_now(self, update: Update, context: ContextTypes.DEFAULT_TYPE, chat_id: int) -> bool:
        try:
            await self.dispatcher.send_question(chat_id)
            return True
        except SubscriberNotFoundError:
            await self._reply(update, context, NOT_REGISTERED_TEXT)
        except DataQualityError as e:
            logger.warning(f"Нет подходящего вопроса для чата {chat_id}: {e}")
            await self._reply(update, context, "There are no questions in your section yet. Try another one with /section.")
        except (TransportError, PersistenceError) as e:
            logger.error(f"Не удалось отправить вопрос по запросу чата {chat_id}: {e}")
        return False

    async def start_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_chat:
            return
        chat_id = update.effective_chat.id

        _, created = self.registry.register(chat_id)
        if created:
            logger.info(f"Новый подписчик {chat_id}: отправляется первый вопрос.")
            await self._reply(update, context, "Let's start off with a single question :)")
            await self._send_question_now(update, context, chat_id)
            await self._reply(update, context, "You'll receive your next question in the time span you selected!")

        await self._reply(update, context, "Hello! How often would you like a new question?", reply_markup=self._interval_keyboard())

    async def help_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        commands = self.app_config.commands
        lines = [
            "I send you a quiz question every few hours.",
            "",
            f"/{commands.start} - subscribe and choose how often to get questions",
            f"/{commands.quiz} - send me a question right now",
            f"/{commands.stats} - your answer statistics",
            f"/{commands.interval} <hours> - set the time between questions",
            f"/{commands.next} - when the next question arrives",
            f"/{commands.section} <name> - switch the question section",
        ]
        for command, tag in self.app_config.section_shortcuts().items():
            lines.append(f"/{command} - switch to {self.app_config.section_title(tag)} questions")
        lines.append(f"/{commands.help} - show this help")
        await self._reply(update, context, "\n".join(lines))

    def _registered(self, chat_id: int) -> Optional[Subscriber]:
        return self.registry.find(chat_id)

    async def quiz_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_chat:
            return
        chat_id = update.effective_chat.id
        if self._registered(chat_id) is None:
            await self._reply(update, context, NOT_REGISTERED_TEXT)
            return
        await self._send_question_now(update, context, chat_id)

    @staticmethod
    def format_stats(subscriber: Subscriber) -> str:
        if subscriber.questions_asked == 0:
            return "You haven't answered any questions yet 🥺🥺🥺🥺"
        return (
            f"You have answered {subscriber.questions_asked} questions. "
            f"With an accuracy of {subscriber.questions_correct}/{subscriber.questions_asked} "
            f"({subscriber.accuracy_percent}%) \n I have sent you {subscriber.questions_sent} questions."
        )

    async def stats_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_chat:
            return
        subscriber = self._registered(update.effective_chat.id)
        if subscriber is None:
            await self._reply(update, context, NOT_REGISTERED_TEXT)
            return
        await self._reply(update, context, self.format_stats(subscriber))

    async def set_interval(self, update: Update, context: ContextTypes.DEFAULT_TYPE, chat_id: int, hours: Union[int, float]) -> None:
        if not math.isfinite(hours) or hours <= 0:
            await self._reply(update, context, INVALID_INTERVAL_TEXT)
            return
        try:
            interval = timedelta(hours=hours)
        except (ValueError, OverflowError):
            interval = timedelta(0)
        if interval <= timedelta(0):
            await self._reply(update, context, INVALID_INTERVAL_TEXT)
            return
        now = self._clock()

        def _apply(s: Subscriber) -> None:
            s.question_interval = interval
            s.next_delivery_at = now + interval

        try:
            self.registry.update(chat_id, _apply)
        except SubscriberNotFoundError:
            await self._reply(update, context, NOT_REGISTERED_TEXT)
            return
        except (ValueError, OverflowError) as e:
            logger.warning(f"Чат {chat_id}: интервал {hours} ч отклонен: {e}")
            await self._reply(update, context, INVALID_INTERVAL_TEXT)
            return
        logger.info(f"Чат {chat_id}: интервал изменен на {interval}.")
        await self._reply(update, context, f"Quiz interval set to {format_interval(interval)}!")

    async def interval_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_chat:
            return
        args = context.args or []
        try:
            hours = float(args[0].replace(",", "."))
        except (IndexError, ValueError):
            await self._reply(update, context, f"Usage: /{self.app_config.commands.interval} <hours>, for example /{self.app_config.commands.interval} 3")
            return
        await self.set_interval(update, context, update.effective_chat.id, hours)

    async def set_section(self, update: Update, context: ContextTypes.DEFAULT_TYPE, chat_id: int, section: str) -> None:
        if section not in self.app_config.sections:
            available = ", ".join(self.app_config.sections.keys())
            await self._reply(update, context, f"Unknown section '{section}'. Available: {available}")
            return

        def _apply(s: Subscriber) -> None:
            s.section = section

        try:
            self.registry.update(chat_id, _apply)
        except SubscriberNotFoundError:
            await self._reply(update, context, NOT_REGISTERED_TEXT)
            return
        logger.info(f"Чат {chat_id}: раздел изменен на '{section}'.")
        await self._reply(update, context, f"Quiz section set to {self.app_config.section_title(section)}")

    async def section_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_chat:
            return
        args = context.args or []
        if not args:
            available = ", ".join(self.app_config.sections.keys())
            await self._reply(update, context, f"Usage: /{self.app_config.commands.section} <name>. Available: {available}")
            return
        await self.set_section(update, context, update.effective_chat.id, args[0].strip().lower())

    def _make_shortcut(self, section: str):
        async def _shortcut(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
            if update.effective_chat:
                await self.set_section(update, context, update.effective_chat.id, section)
        return _shortcut

    async def next_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if not update.effective_chat:
            return
        subscriber = self._registered(update.effective_chat.id)
        if subscriber is None:
            await self._reply(update, context, NOT_REGISTERED_TEXT)
            return
        await self._reply(
            update, context,
            f"Your next question arrives around {format_timestamp(subscriber.next_delivery_at)} "
            f"(every {format_interval(subscriber.question_interval)})."
        )

    async def button_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        query = update.callback_query
        if not query or not update.effective_chat:
            return
        try:
            await query.answer()
        except TelegramError as e:
            logger.debug(f"Не удалось ответить на callback query: {e}")

        chat_id = update.effective_chat.id
        data = query.data or ""
        if data == CB_SEND_QUESTION:
            if self._registered(chat_id) is None:
                await self._reply(update, context, NOT_REGISTERED_TEXT)
                return
            await self._send_question_now(update, context, chat_id)
        elif data.startswith(f"{CB_SET_INTERVAL}:"):
            try:
                hours = float(data.split(":", 1)[1])
            except ValueError:
                logger.warning(f"Некорректные данные кнопки интервала: '{data}'")
                return
            await self.set_interval(update, context, chat_id, hours)
        else:
            logger.debug(f"Неизвестные данные callback: '{data}'")

    def get_handlers(self) -> List[BaseHandler]:
        commands = self.app_config.commands
        handlers_list: List[BaseHandler] = [
            CommandHandler(commands.start, self.start_command),
            CommandHandler(commands.help, self.help_command),
            CommandHandler(commands.quiz, self.quiz_command),
            CommandHandler(commands.stats, self.stats_command),
            CommandHandler(commands.interval, self.interval_command),
            CommandHandler(commands.section, self.section_command),
            CommandHandler(commands.next, self.next_command),
            CallbackQueryHandler(self.button_callback, pattern=f"^({CB_SEND_QUESTION}|{CB_SET_INTERVAL}:.*)$"),
        ]
        for command, tag in self.app_config.section_shortcuts().items():
            handlers_list.append(CommandHandler(command, self._make_shortcut(tag)))
        return handlers_list
