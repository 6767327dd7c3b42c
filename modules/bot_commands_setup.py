"""
Модуль для установки команд бота в Telegram Bot API.
Отвечает за регистрацию меню команд для личных и групповых чатов.
"""

import logging
from typing import List, TYPE_CHECKING

from telegram import (
    BotCommand,
    BotCommandScopeAllPrivateChats,
    BotCommandScopeAllGroupChats,
)
from telegram.error import TelegramError

if TYPE_CHECKING:
    from telegram.ext import Application
    from app_config import AppConfig

logger = logging.getLogger(__name__)


def build_bot_commands(app_config: "AppConfig") -> List[BotCommand]:
    commands = app_config.commands
    bot_commands = [
        BotCommand(commands.start, "🚀 Subscribe and pick an interval"),
        BotCommand(commands.quiz, "🏁 Send me a question now"),
        BotCommand(commands.stats, "📊 My answer statistics"),
        BotCommand(commands.interval, "⏱ Set hours between questions"),
        BotCommand(commands.next, "📅 When is the next question"),
        BotCommand(commands.section, "📚 Switch question section"),
    ]
    for command, tag in app_config.section_shortcuts().items():
        bot_commands.append(BotCommand(command, f"🎯 {app_config.section_title(tag)} questions"))
    bot_commands.append(BotCommand(commands.help, "ℹ️ Help"))
    return bot_commands


async def setup_bot_commands(application: "Application", app_config: "AppConfig") -> None:
    """
    Устанавливает команды бота для всех скоупов.
    Должна вызываться после регистрации всех обработчиков, но до запуска бота.
    """
    bot_commands = build_bot_commands(app_config)
    try:
        await application.bot.set_my_commands(bot_commands)
        await application.bot.set_my_commands(
            bot_commands,
            scope=BotCommandScopeAllPrivateChats()
        )
        await application.bot.set_my_commands(
            bot_commands,
            scope=BotCommandScopeAllGroupChats()
        )
        logger.info(f"✅ Команды бота успешно установлены ({len(bot_commands)} команд).")
    except TelegramError as e_set_cmd:
        logger.error(f"❌ Не удалось установить команды бота: {e_set_cmd}", exc_info=True)
