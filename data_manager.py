#data_manager.py
import json
import logging
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from modules.quiz_types import Question, Quiz
from storage.database import PersistenceError, question_tags_table, questions_table

if TYPE_CHECKING:
    from app_config import AppConfig

logger = logging.getLogger(__name__)


class QuestionNotFoundError(LookupError):
    pass


class DataManager:
    """
    Корпус вопросов: таблицы questions/question_tags.

    Набор вопросов раздела читается из БД один раз и дальше берется из кэша.
    Импорт из JSON сбрасывает кэш затронутых разделов.
    """

    def __init__(self, app_config: 'AppConfig', engine: Engine):
        self.app_config = app_config
        self.engine = engine
        self._quiz_cache: Dict[str, Quiz] = {}

    def known_sections(self) -> List[str]:
        return list(self.app_config.sections.keys())

    # ----- чтение -----

    def _fetch_questions(self, conn: Connection, id_filter) -> List[Question]:
        rows = conn.execute(select(questions_table).where(questions_table.c.id.in_(id_filter))).mappings().all()
        tag_rows = conn.execute(
            select(question_tags_table).where(question_tags_table.c.question_id.in_(id_filter))
        ).mappings().all()

        tags_by_question: Dict[str, Set[str]] = defaultdict(set)
        for tag_row in tag_rows:
            tags_by_question[tag_row["question_id"]].add(tag_row["tag"])

        questions: List[Question] = []
        for row in rows:
            try:
                questions.append(Question.create(
                    question_id=row["id"],
                    text=row["question_text"],
                    choices=row["choices"] or [],
                    correct_indices=row["answers"] or [],
                    tags=tags_by_question.get(row["id"], set()),
                ))
            except (ValueError, TypeError) as e:
                logger.warning(f"Вопрос {row['id']} пропущен при загрузке: {e}")
        return questions

    def load_quiz(self, section: str) -> Quiz:
        cached = self._quiz_cache.get(section)
        if cached is not None:
            return cached

        section_ids = select(question_tags_table.c.question_id).where(question_tags_table.c.tag == section)
        try:
            with self.engine.connect() as conn:
                questions = self._fetch_questions(conn, section_ids)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось загрузить вопросы раздела '{section}': {e}") from e

        questions.sort(key=lambda q: q.question_id)
        quiz = Quiz(section=section, questions=questions)
        self._quiz_cache[section] = quiz
        logger.info(f"Раздел '{section}': загружено {len(questions)} вопросов.")
        return quiz

    def load_all_quizzes(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for section in self.known_sections():
            counts[section] = len(self.load_quiz(section))
            if counts[section] == 0:
                logger.warning(f"Раздел '{section}' пуст. Импортируйте вопросы скриптом scripts/import_questions.py.")
        return counts

    def get_question_by_id(self, question_id: str) -> Question:
        for quiz in self._quiz_cache.values():
            for question in quiz.questions:
                if question.question_id == question_id:
                    return question

        try:
            with self.engine.connect() as conn:
                found = self._fetch_questions(conn, [question_id])
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось прочитать вопрос {question_id}: {e}") from e
        if not found:
            raise QuestionNotFoundError(f"Вопрос {question_id} не найден")
        return found[0]

    # ----- импорт -----

    @staticmethod
    def _resolve_correct_indices(entry: Dict[str, Any], options: List[str]) -> Optional[List[int]]:
        if "correct_indices" in entry:
            indices = entry["correct_indices"]
            if not isinstance(indices, list) or not all(isinstance(i, int) for i in indices):
                return None
            return sorted(set(indices))

        correct = entry.get("correct")
        correct_texts = [correct] if isinstance(correct, str) else correct
        if not isinstance(correct_texts, list) or not correct_texts:
            return None
        indices = []
        for text in correct_texts:
            if not isinstance(text, str) or text not in options:
                return None
            indices.append(options.index(text))
        return sorted(set(indices))

    def read_questions_file(self, path: Path, section: Optional[str] = None) -> Tuple[List[Question], List[Dict[str, Any]]]:
        """
        Читает файл вопросов. Форматы:
          {"<раздел>": [ {...}, ... ], ...}  или  [ {...}, ... ] вместе с section.
        Элемент: {"id"?, "question", "options", "correct": str | [str]} или "correct_indices": [int].

        Returns:
            (корректные вопросы, некорректные записи с причиной)
        """
        with open(path, 'r', encoding='utf-8') as f:
            raw_data = json.load(f)

        if isinstance(raw_data, list):
            if not section:
                raise ValueError(f"{path}: для файла-списка нужно указать раздел")
            grouped = {section: raw_data}
        elif isinstance(raw_data, dict):
            grouped = raw_data
        else:
            raise ValueError(f"{path} должен содержать JSON объект или список")

        questions: List[Question] = []
        malformed: List[Dict[str, Any]] = []
        for tag, entries in grouped.items():
            if not isinstance(entries, list):
                malformed.append({"error_type": "section_not_list", "section": tag, "data": entries})
                continue
            for i, entry in enumerate(entries):
                if not isinstance(entry, dict):
                    malformed.append({"error_type": "entry_not_object", "section": tag, "question_index": i, "data": entry})
                    continue
                text = entry.get("question")
                options = entry.get("options")
                if not isinstance(text, str) or not text.strip():
                    malformed.append({"error_type": "empty_question", "section": tag, "question_index": i, "data": entry})
                    continue
                if not isinstance(options, list) or len(options) < 2 or not all(isinstance(o, str) and o.strip() for o in options):
                    malformed.append({"error_type": "insufficient_options", "section": tag, "question_index": i, "data": entry})
                    continue
                correct_indices = self._resolve_correct_indices(entry, options)
                if not correct_indices:
                    malformed.append({"error_type": "invalid_correct_answer", "section": tag, "question_index": i, "data": entry})
                    continue

                extra_tags = entry.get("tags") if isinstance(entry.get("tags"), list) else []
                try:
                    questions.append(Question.create(
                        question_id=str(entry.get("id") or uuid.uuid4().hex[:12]),
                        text=text.strip(),
                        choices=options,
                        correct_indices=correct_indices,
                        tags={tag, *extra_tags},
                    ))
                except ValueError as e:
                    malformed.append({"error_type": "invalid_question", "section": tag, "question_index": i, "data": entry, "reason": str(e)})
        return questions, malformed

    def upload_questions(self, questions: Iterable[Question]) -> int:
        """Записывает вопросы одной транзакцией (существующие id перезаписываются)"""
        questions = list(questions)
        try:
            with self.engine.begin() as conn:
                for question in questions:
                    conn.execute(delete(question_tags_table).where(question_tags_table.c.question_id == question.question_id))
                    conn.execute(delete(questions_table).where(questions_table.c.id == question.question_id))
                    conn.execute(questions_table.insert().values(
                        id=question.question_id,
                        question_text=question.text,
                        choices=list(question.choices),
                        answers=sorted(question.correct_indices),
                    ))
                    for tag in sorted(question.tags):
                        conn.execute(question_tags_table.insert().values(question_id=question.question_id, tag=tag))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Не удалось записать вопросы: {e}") from e

        for question in questions:
            for tag in question.tags:
                self._quiz_cache.pop(tag, None)
        return len(questions)

    def import_questions_file(self, path: Path, section: Optional[str] = None) -> int:
        questions, malformed = self.read_questions_file(path, section)
        uploaded = self.upload_questions(questions)
        logger.info(f"Импортировано {uploaded} вопросов из {path}.")

        if malformed:
            malformed_file = self.app_config.paths.malformed_questions_file
            logger.warning(f"Обнаружено {len(malformed)} некорректных записей в {path}. Они записаны в {malformed_file}")
            try:
                with open(malformed_file, 'w', encoding='utf-8') as mf:
                    json.dump(malformed, mf, ensure_ascii=False, indent=4)
            except OSError as e:
                logger.error(f"Не удалось записать некорректные записи: {e}")
        return uploaded
