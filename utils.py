#utils.py
import logging
from typing import List, Optional, Tuple
from datetime import datetime, timedelta, timezone

from telegram import Chat

logger = logging.getLogger(__name__)

def get_current_utc_time() -> datetime:
    return datetime.now(timezone.utc)

def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite возвращает наивные datetime: считаем их UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def chunk_split(body: str, limit: int) -> List[str]:
    """Режет текст на куски длиной limit (последний может быть короче), без потерь символов"""
    if limit <= 0:
        raise ValueError("limit должен быть положительным")
    return [body[i:i + limit] for i in range(0, len(body), limit)]

def split_long_prompt(text: str, threshold: int, chunk_length: int) -> Tuple[List[str], str]:
    """
    Делит длинный текст вопроса для отправки перед опросом.

    Returns:
        (куски для отправки обычными сообщениями, текст для самого опроса)
    """
    if len(text) < threshold:
        return [], text
    chunks = chunk_split(text, chunk_length)
    return chunks[:-1], chunks[-1]

def truncate_text(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."

def get_chat_display_name(chat: Optional[Chat]) -> Optional[str]:
    if chat is None:
        return None
    if chat.username:
        return chat.username
    if chat.first_name:
        return chat.first_name
    if chat.title:
        return chat.title
    return None

def format_interval(interval: timedelta) -> str:
    total_seconds = int(interval.total_seconds())
    hours, remainder = divmod(total_seconds, 3600)
    minutes = remainder // 60
    parts = []
    if hours:
        parts.append(f"{hours} hour" if hours == 1 else f"{hours} hours")
    if minutes:
        parts.append(f"{minutes} minute" if minutes == 1 else f"{minutes} minutes")
    if not parts:
        return f"{total_seconds} seconds"
    return " ".join(parts)

def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
