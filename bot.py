#bot.py
import asyncio
import logging
import sys
from datetime import timedelta
from typing import Optional

import pytz
from telegram import Update
from telegram.ext import Application, ContextTypes, Defaults
from sqlalchemy.engine import Engine

# Модули приложения
from app_config import AppConfig, ConfigurationError
from data_manager import DataManager
from modules.logger_config import setup_logging
from modules.bot_commands_setup import setup_bot_commands
from modules.quiz_dispatcher import QuizDispatcher
from modules.subscriber_registry import SubscriberRegistry
from modules.telegram_utils import TelegramTransport
from storage.database import PersistenceError, create_db_engine, init_db
from storage.pending_store import PendingRequestStore, RedisPendingRequestStore, SqlPendingRequestStore
from storage.subscriber_repository import SubscriberRepository

# Обработчики команд, ответов и планировщик
from handlers.common_handlers import CommonHandlers
from handlers.delivery_scheduler import DeliveryScheduler
from handlers.poll_answer_handler import CustomPollAnswerHandler

logger = logging.getLogger(__name__)


def create_pending_store(app_config: AppConfig, engine: Engine) -> PendingRequestStore:
    if app_config.redis_url:
        logger.info("Ожидающие опросы хранятся в Redis.")
        return RedisPendingRequestStore.from_url(app_config.redis_url)
    logger.info("REDIS_URL не задан: ожидающие опросы хранятся в таблице pending_polls.")
    return SqlPendingRequestStore(engine)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Исключение при обработке обновления:", exc_info=context.error)


async def main() -> None:
    """Main entry point for the Interval Quiz Bot"""
    app_config = AppConfig()
    setup_logging(log_level=app_config.log_level_str, log_dir=app_config.paths.logs_dir)
    app_config.validate()
    logger.info(f"Запуск бота... (режим отладки: {app_config.debug_mode})")

    application_instance: Optional[Application] = None
    delivery_scheduler: Optional[DeliveryScheduler] = None
    pending_store: Optional[PendingRequestStore] = None

    engine = create_db_engine(app_config.database_url)
    try:
        init_db(engine)

        data_manager = DataManager(app_config=app_config, engine=engine)
        data_manager.load_all_quizzes()

        registry = SubscriberRegistry(
            repository=SubscriberRepository(engine),
            default_interval=timedelta(seconds=app_config.default_interval_seconds),
            default_section=app_config.default_section
        )
        registry.load()

        pending_store = create_pending_store(app_config, engine)

        application_instance = (
            Application.builder()
            .token(app_config.bot_token)
            .defaults(Defaults(tzinfo=pytz.utc))
            .concurrent_updates(False)
            .read_timeout(30)
            .connect_timeout(30)
            .write_timeout(30)
            .pool_timeout(20)
            .build()
        )
        logger.info("Объект Application создан.")

        transport = TelegramTransport(application_instance.bot)
        dispatcher = QuizDispatcher(
            app_config=app_config, registry=registry, data_manager=data_manager,
            pending_store=pending_store, transport=transport
        )
        poll_answer_handler_instance = CustomPollAnswerHandler(
            app_config=app_config, registry=registry, data_manager=data_manager,
            pending_store=pending_store, transport=transport
        )
        common_handlers_instance = CommonHandlers(app_config=app_config, registry=registry, dispatcher=dispatcher)
        delivery_scheduler = DeliveryScheduler(app_config=app_config, registry=registry, dispatcher=dispatcher)

        logger.debug("Регистрация обработчиков PTB...")
        application_instance.add_handlers(common_handlers_instance.get_handlers())
        application_instance.add_handler(poll_answer_handler_instance.get_handler())
        application_instance.add_error_handler(error_handler)

        await application_instance.initialize()
        await setup_bot_commands(application_instance, app_config)
        delivery_scheduler.start(application_instance.job_queue)

        if not application_instance.updater:
            logger.error("Updater не был создан. Бот не может быть запущен.")
            return

        logger.info(f"Запуск бота (polling) с уровнем логирования: {app_config.log_level_str}")
        await application_instance.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        await application_instance.start()
        logger.info(f"Бот запущен и готов принимать обновления. Подписчиков: {len(registry)}.")
        while application_instance.updater.running:
            await asyncio.sleep(1)
        logger.info("Updater остановлен (внутри main).")

    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Программа прервана (KeyboardInterrupt/SystemExit в main).")
    except PersistenceError as e:
        logger.critical(f"Хранилище недоступно: {e}", exc_info=True)
    finally:
        logger.info("Блок finally в main() начал выполнение.")
        if delivery_scheduler:
            delivery_scheduler.stop()
            await delivery_scheduler.drain(timeout=app_config.delivery_drain_timeout_seconds)

        if application_instance:
            if application_instance.updater and application_instance.updater.running:
                await application_instance.updater.stop()
                logger.info("Updater остановлен в main().finally.")
            if application_instance.running:
                await application_instance.stop()
                logger.info("Application остановлен в main().finally.")
            await application_instance.shutdown()
            logger.info("Application.shutdown() завершен в main().finally.")

        if pending_store:
            await pending_store.close()
        engine.dispose()
        logger.info("Блок finally в main() завершил выполнение.")


def run() -> None:
    try:
        asyncio.run(main())
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.critical(f"Ошибка конфигурации: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Программа прервана (KeyboardInterrupt на уровне __main__).")
    finally:
        logger.info("Программа завершена.")


if __name__ == "__main__":
    run()
