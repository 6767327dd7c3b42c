#app_config.py
import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

CURRENT_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CURRENT_FILE_DIR # app_config.py лежит в корне проекта

dotenv_path = PROJECT_ROOT / '.env'
load_dotenv(dotenv_path=dotenv_path)

DEFAULT_SECTIONS: Dict[str, Dict[str, Any]] = {
    "network+": {"title": "Network+", "command": "networkquiz"},
    "security+": {"title": "Security+", "command": "securityquiz"},
}


class ConfigurationError(Exception):
    """Отсутствует обязательный параметр запуска или параметр некорректен"""
    pass


class CommandConfig:
    def __init__(self, commands_data: Dict[str, str]):
        self.start: str = commands_data.get("start", "start")
        self.help: str = commands_data.get("help", "help")
        self.quiz: str = commands_data.get("quiz", "quiz")
        self.stats: str = commands_data.get("stats", "stats")
        self.next: str = commands_data.get("next", "next")
        self.interval: str = commands_data.get("interval", "interval")
        self.section: str = commands_data.get("section", "section")


class PathConfig:
    def __init__(self, project_root_path: Path, data_dir_name: str = "data", config_dir_name: str = "config"):
        self.project_root: Path = project_root_path
        self.data_dir: Path = self.project_root / data_dir_name
        self.config_dir: Path = self.project_root / config_dir_name
        self.logs_dir: Path = self.project_root / "logs"

        self.database_file: Path = self.data_dir / "quiz_bot.db"
        self.malformed_questions_file: Path = self.data_dir / "malformed_questions.json"
        self.quiz_config_file: Path = self.config_dir / "quiz_config.json"

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"PathConfig: Ошибка при создании директории данных {self.data_dir}: {e}")


class AppConfig:
    def __init__(self, project_root: Optional[Path] = None):
        logger.debug("AppConfig.__init__ НАЧАТ.")

        self.bot_token: Optional[str] = os.getenv("BOT_TOKEN") or os.getenv("TELEGRAM_TOKEN")
        logger.debug(f"AppConfig: BOT_TOKEN считан: {'Да' if self.bot_token else 'Нет'}")

        self.log_level_str: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.debug_mode: bool = os.getenv("DEBUG_MODE", "False").lower() == "true"

        self.paths = PathConfig(project_root or PROJECT_ROOT)

        self.database_url: str = os.getenv("DATABASE_URL") or f"sqlite:///{self.paths.database_file}"
        self.redis_url: Optional[str] = os.getenv("REDIS_URL") or None

        self._raw_quiz_config: Dict[str, Any] = self._load_json_config(self.paths.quiz_config_file)
        self.global_settings: Dict[str, Any] = self._raw_quiz_config.get("global_settings", {})
        self.sections: Dict[str, Dict[str, Any]] = self._raw_quiz_config.get("sections") or dict(DEFAULT_SECTIONS)

        self.commands = CommandConfig(self.global_settings.get("commands", {}))

        self.default_interval_seconds: int = self.global_settings.get("default_interval_seconds", 3600)
        self.scan_interval_seconds: int = self.global_settings.get("scan_interval_seconds", 300)
        self.default_section: str = self.global_settings.get("default_section", "network+")
        self.interval_choices_hours: List[int] = self.global_settings.get("interval_choices_hours", [1, 3, 5])
        self.long_prompt_threshold: int = self.global_settings.get("long_prompt_threshold", 255)
        self.prompt_chunk_length: int = self.global_settings.get("prompt_chunk_length", 125)
        self.max_poll_option_length: int = self.global_settings.get("max_poll_option_length", 100)
        self.delivery_drain_timeout_seconds: float = self.global_settings.get("delivery_drain_timeout_seconds", 10)
        logger.debug("AppConfig.__init__ ЗАВЕРШЕН.")

    def _load_json_config(self, file_path: Path) -> Dict[str, Any]:
        if not file_path.exists():
            logger.warning(f"Файл конфигурации {file_path} не найден. Используются значения по умолчанию.")
            return {}
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Ошибка декодирования JSON в {file_path}: {e}. Используются значения по умолчанию.")
            return {}
        except OSError as e:
            logger.error(f"Не удалось прочитать {file_path}: {e}. Используются значения по умолчанию.")
            return {}
        if not isinstance(data, dict):
            logger.error(f"{file_path} должен содержать JSON объект. Используются значения по умолчанию.")
            return {}
        return data

    def section_title(self, section: str) -> str:
        return self.sections.get(section, {}).get("title", section)

    def section_shortcuts(self) -> Dict[str, str]:
        """Команда-ярлык -> тег раздела, например networkquiz -> network+"""
        return {cfg["command"]: tag for tag, cfg in self.sections.items() if cfg.get("command")}

    def validate(self) -> None:
        if not self.bot_token:
            raise ConfigurationError("Токен бота не найден. Укажите BOT_TOKEN (или TELEGRAM_TOKEN) в .env или окружении.")
        if self.default_interval_seconds <= 0:
            raise ConfigurationError("default_interval_seconds должен быть положительным")
        if self.scan_interval_seconds <= 0:
            raise ConfigurationError("scan_interval_seconds должен быть положительным")
        if self.prompt_chunk_length <= 0 or self.long_prompt_threshold <= 0:
            raise ConfigurationError("long_prompt_threshold и prompt_chunk_length должны быть положительными")
        if self.default_section not in self.sections:
            raise ConfigurationError(f"Раздел по умолчанию '{self.default_section}' отсутствует в списке разделов")
