#!/usr/bin/env python3
"""
Транспорт поверх Telegram Bot API

Включает:
- Декоратор для безопасного вызова API с retry
- Единообразное преобразование ошибок Telegram в TransportError
- TelegramTransport: отправка сообщений и опросов
"""

import logging
import asyncio
from dataclasses import dataclass
from datetime import timedelta
from functools import wraps
from typing import Optional, Union, Sequence, Callable, Any

from telegram import Bot, Message, Poll
from telegram.error import (
    BadRequest, Forbidden, NetworkError, RetryAfter,
    TimedOut, TelegramError
)

from utils import get_chat_display_name

logger = logging.getLogger(__name__)

class TransportError(Exception):
    """Базовое исключение для ошибок отправки через Telegram"""
    pass

class MessageTooLongError(TransportError):
    """Сообщение слишком длинное для Telegram"""
    pass

class SubscriberBlockedError(TransportError):
    """Пользователь заблокировал бота"""
    pass

class ChatNotFoundError(TransportError):
    """Чат не найден"""
    pass

def _retry_after_seconds(error: RetryAfter) -> float:
    wait = error.retry_after
    if isinstance(wait, timedelta):
        return wait.total_seconds()
    return float(wait)

def safe_telegram_call(
    max_retries: int = 1,
    base_delay: float = 0.1,
    max_delay: float = 0.5,
    exponential_base: float = 1.5,
    retry_on_timeout: bool = True
):
    """
    Декоратор для безопасного вызова Telegram API с retry

    Args:
        max_retries: Максимальное количество повторных попыток
        base_delay: Базовая задержка между попытками (секунды)
        max_delay: Максимальная задержка между попытками (секунды)
        exponential_base: База для экспоненциального backoff
        retry_on_timeout: Повторять ли вызов после TimedOut. Для отправки сообщений False:
            запрос мог дойти до Telegram, повтор создаст дубликат
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            last_exception: Optional[Exception] = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except RetryAfter as e:
                    wait_time = _retry_after_seconds(e)
                    logger.warning(f"Telegram API просит подождать {wait_time} секунд (попытка {attempt + 1}/{max_retries + 1})")
                    await asyncio.sleep(wait_time)
                    last_exception = e

                except BadRequest as e:
                    # BadRequest наследует NetworkError, поэтому проверяется раньше; не повторяем
                    error_message = str(e).lower()
                    if "chat not found" in error_message:
                        logger.warning(f"Чат не найден: {e}")
                        raise ChatNotFoundError(f"Чат не найден: {e}") from e
                    if "too long" in error_message:
                        logger.warning(f"Сообщение слишком длинное: {e}")
                        raise MessageTooLongError(f"Сообщение слишком длинное для Telegram: {e}") from e
                    logger.error(f"Ошибка запроса Telegram API: {e}")
                    raise TransportError(f"Ошибка запроса: {e}") from e

                except Forbidden as e:
                    logger.info(f"Бот заблокирован пользователем или исключен из чата: {e}")
                    raise SubscriberBlockedError(f"Бот заблокирован: {e}") from e

                except TimedOut as e:
                    if retry_on_timeout and attempt < max_retries:
                        delay = min(base_delay * (exponential_base ** attempt), max_delay)
                        logger.warning(f"Таймаут запроса, повтор через {delay:.1f}с (попытка {attempt + 1}/{max_retries + 1}): {e}")
                        await asyncio.sleep(delay)
                        last_exception = e
                    else:
                        logger.error(f"Таймаут запроса к Telegram API, исход неизвестен: {e}")
                        raise TransportError(f"Таймаут запроса к Telegram API: {e}") from e

                except NetworkError as e:
                    if attempt < max_retries:
                        delay = min(base_delay * (exponential_base ** attempt), max_delay)
                        logger.warning(f"Сетевая ошибка, повтор через {delay:.1f}с (попытка {attempt + 1}/{max_retries + 1}): {e}")
                        await asyncio.sleep(delay)
                        last_exception = e
                    else:
                        logger.error(f"Исчерпаны попытки после сетевых ошибок: {e}")
                        raise TransportError(f"Не удалось выполнить операцию после {max_retries + 1} попыток: {e}") from e

                except TelegramError as e:
                    logger.error(f"Ошибка Telegram API: {e}")
                    raise TransportError(f"Ошибка Telegram API: {e}") from e

            raise TransportError(f"Операция не удалась после {max_retries + 1} попыток. Последняя ошибка: {last_exception}")

        return wrapper
    return decorator

@dataclass(frozen=True)
class PollReceipt:
    """Подтверждение отправки опроса: token - poll_id, по которому придет ответ"""
    token: str
    display_name: Optional[str] = None

class TelegramTransport:
    def __init__(self, bot: Bot):
        self.bot = bot

    @safe_telegram_call(max_retries=2, base_delay=0.1, retry_on_timeout=False)
    async def send_message(self, chat_id: Union[int, str], text: str) -> Message:
        return await self.bot.send_message(chat_id=chat_id, text=text)

    @safe_telegram_call(max_retries=2, base_delay=0.1, retry_on_timeout=False)
    async def send_poll(
        self,
        chat_id: Union[int, str],
        prompt: str,
        options: Sequence[str],
        allows_multiple_answers: bool,
        correct_option_id: Optional[int] = None
    ) -> PollReceipt:
        if allows_multiple_answers:
            message = await self.bot.send_poll(
                chat_id=chat_id,
                question=prompt,
                options=list(options),
                type=Poll.REGULAR,
                allows_multiple_answers=True,
                is_anonymous=False
            )
        else:
            message = await self.bot.send_poll(
                chat_id=chat_id,
                question=prompt,
                options=list(options),
                type=Poll.QUIZ,
                correct_option_id=correct_option_id,
                is_anonymous=False
            )

        if not message or not message.poll:
            raise TransportError(f"Сообщение с опросом не содержит опрос (чат: {chat_id})")

        return PollReceipt(
            token=message.poll.id,
            display_name=get_chat_display_name(message.chat)
        )

__all__ = [
    'safe_telegram_call',
    'TelegramTransport',
    'PollReceipt',
    'TransportError',
    'MessageTooLongError',
    'SubscriberBlockedError',
    'ChatNotFoundError'
]
