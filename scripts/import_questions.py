#!/usr/bin/env python3
"""
Импорт вопросов из JSON файла в базу данных бота

Примеры:
    python scripts/import_questions.py questions.json
    python scripts/import_questions.py network_plus.json --section network+
"""

import argparse
import logging
import sys
from pathlib import Path

# Добавляем корень проекта в sys.path для корректных импортов
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from app_config import AppConfig
from data_manager import DataManager
from modules.logger_config import setup_logging
from storage.database import PersistenceError, create_db_engine, init_db

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Импорт вопросов викторины в базу данных")
    parser.add_argument("file", type=Path, help="JSON файл с вопросами")
    parser.add_argument(
        "--section",
        help="Раздел (тег) для файла-списка; для файла вида {раздел: [...]} не нужен"
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    app_config = AppConfig()
    setup_logging(log_level=app_config.log_level_str, file_output=False)

    if not args.file.exists():
        logger.error(f"Файл {args.file} не найден")
        return 1
    if args.section and args.section not in app_config.sections:
        logger.warning(f"Раздел '{args.section}' не описан в config/quiz_config.json: команды бота его не покажут")

    engine = create_db_engine(app_config.database_url)
    try:
        init_db(engine)
        data_manager = DataManager(app_config=app_config, engine=engine)
        imported = data_manager.import_questions_file(args.file, section=args.section)
    except (OSError, ValueError, PersistenceError) as e:
        logger.error(f"❌ Импорт не выполнен: {e}")
        return 1
    finally:
        engine.dispose()

    logger.info(f"✅ Готово: {imported} вопросов")
    return 0


if __name__ == "__main__":
    sys.exit(main())
