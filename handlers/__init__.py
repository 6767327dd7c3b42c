"""
Handlers package for Interval Quiz Bot

This package contains the bot's command handlers, the poll answer handler
and the periodic delivery scheduler.
"""

from .common_handlers import CommonHandlers
from .delivery_scheduler import DeliveryScheduler
from .poll_answer_handler import CustomPollAnswerHandler

__all__ = [
    'CommonHandlers',
    'DeliveryScheduler',
    'CustomPollAnswerHandler',
]
