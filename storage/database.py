# storage/database.py
"""
Схема базы данных и создание движка SQLAlchemy
Одна база хранит подписчиков, вопросы и (без Redis) ожидающие ответа опросы
"""

import logging

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Ошибка записи/чтения долговременного хранилища"""
    pass


metadata = sa.MetaData()

subscribers_table = sa.Table(
    "connected_users",
    metadata,
    sa.Column("chat_id", sa.BigInteger, primary_key=True, autoincrement=False),
    sa.Column("question_interval_seconds", sa.Integer, nullable=False),
    sa.Column("next_question_time", sa.DateTime(timezone=True), nullable=False),
    sa.Column("last_answered_time", sa.DateTime(timezone=True), nullable=True),
    sa.Column("questions_sent", sa.Integer, nullable=False, default=0),
    sa.Column("questions_asked", sa.Integer, nullable=False, default=0),
    sa.Column("questions_correct", sa.Integer, nullable=False, default=0),
    sa.Column("quiz_section", sa.String(64), nullable=False),
    sa.Column("username", sa.String(255), nullable=False, default="unknown"),
)

questions_table = sa.Table(
    "questions",
    metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("question_text", sa.Text, nullable=False),
    sa.Column("choices", sa.JSON, nullable=False),
    sa.Column("answers", sa.JSON, nullable=False),
)

question_tags_table = sa.Table(
    "question_tags",
    metadata,
    sa.Column("question_id", sa.String(64), sa.ForeignKey("questions.id", ondelete="CASCADE"), primary_key=True),
    sa.Column("tag", sa.String(64), primary_key=True, index=True),
)

pending_polls_table = sa.Table(
    "pending_polls",
    metadata,
    sa.Column("token", sa.String(128), primary_key=True),
    sa.Column("question_id", sa.String(64), nullable=False),
    sa.Column("chat_id", sa.BigInteger, nullable=True),
    sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
)


def create_db_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # Одно соединение на весь процесс, иначе у каждого соединения своя пустая база
            return sa.create_engine(database_url, connect_args=connect_args, poolclass=StaticPool)
        return sa.create_engine(database_url, connect_args=connect_args)
    return sa.create_engine(database_url, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    try:
        metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise PersistenceError(f"Не удалось создать таблицы: {e}") from e
    logger.info(f"✅ База данных готова ({engine.url.render_as_string(hide_password=True)})")
