#!/usr/bin/env python3
"""
Централизованная конфигурация логирования

Включает:
- Цветной вывод в консоль
- Ротацию файлов логов по дням
- Отдельный лог ошибок
- Контекстные поля событий викторины (chat_id, poll_id, question_id)
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union
from datetime import datetime

CONTEXT_FIELDS = ('chat_id', 'user_id', 'poll_id', 'question_id', 'event_type')

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)-22s | %(lineno)-3d | %(message)s'

class ColoredFormatter(logging.Formatter):
    """Форматтер с цветным выводом для консоли"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        # Копия, чтобы цвет не попал в файловые обработчики
        colored = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname)
        if color:
            colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)

class StructuredFormatter(logging.Formatter):
    """Форматтер для файлов: добавляет контекст события в конец строки"""

    def format(self, record):
        line = super().format(record)
        context_parts = [
            f"{name}={getattr(record, name)}" for name in CONTEXT_FIELDS if hasattr(record, name)
        ]
        if context_parts:
            line = f"{line} | {' '.join(context_parts)}"
        return line

def setup_logging(
    log_level: str = "INFO",
    log_dir: Union[str, Path] = "logs",
    backup_count: int = 3,
    console_output: bool = True,
    file_output: bool = True
) -> None:
    """
    Настраивает логирование для всего процесса

    Args:
        log_level: Уровень логирования (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Директория для логов
        backup_count: Сколько суточных файлов хранить
        console_output: Включить вывод в консоль
        file_output: Включить вывод в файл
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt='%H:%M:%S'))
        root_logger.addHandler(console_handler)

    if file_output:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_formatter = StructuredFormatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
        date_suffix = datetime.now().strftime('%d.%m.%y')

        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_path / f"bot_{date_suffix}.log",
            when='midnight',
            interval=1,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.TimedRotatingFileHandler(
            log_path / f"errors_{date_suffix}.log",
            when='midnight',
            interval=1,
            backupCount=backup_count,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        root_logger.addHandler(error_handler)

        if level == logging.DEBUG:
            debug_handler = logging.handlers.TimedRotatingFileHandler(
                log_path / f"debug_{date_suffix}.log",
                when='midnight',
                interval=1,
                backupCount=backup_count,
                encoding='utf-8'
            )
            debug_handler.setLevel(logging.DEBUG)
            debug_handler.setFormatter(file_formatter)
            root_logger.addHandler(debug_handler)

    # Сторонние библиотеки слишком разговорчивы
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('telegram').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Логирование настроено: уровень={log_level}, консоль={console_output}, файл={file_output}"
    )

def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    chat_id: Optional[int] = None,
    user_id: Optional[int] = None,
    poll_id: Optional[str] = None,
    question_id: Optional[str] = None,
    **kwargs
) -> None:
    """Логирует сообщение с полями контекста в LogRecord"""
    extra = {}
    if chat_id is not None:
        extra['chat_id'] = chat_id
    if user_id is not None:
        extra['user_id'] = user_id
    if poll_id is not None:
        extra['poll_id'] = poll_id
    if question_id is not None:
        extra['question_id'] = question_id
    extra.update(kwargs)

    log_method = getattr(logger, level.lower())
    log_method(message, extra=extra or None)

def log_quiz_event(
    logger: logging.Logger,
    event_type: str,
    message: str,
    chat_id: int,
    poll_id: Optional[str] = None,
    question_id: Optional[str] = None,
    level: str = 'info',
    **kwargs
) -> None:
    """
    Логирование событий доставки и ответа

    Args:
        event_type: Тип события (sent, answered, scheduled, failed)
    """
    log_with_context(
        logger=logger,
        level=level,
        message=f"[QUIZ:{event_type.upper()}] {message}",
        chat_id=chat_id,
        poll_id=poll_id,
        question_id=question_id,
        event_type=event_type,
        **kwargs
    )

__all__ = [
    'setup_logging',
    'log_with_context',
    'log_quiz_event',
    'ColoredFormatter',
    'StructuredFormatter'
]
