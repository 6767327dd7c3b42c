#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Тесты отправки вопроса: порядок частей, тип опроса, поведение при ошибке отправки
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from quiz_fakes import QuizEnvironment
from modules.quiz_dispatcher import QuizDispatcher
from modules.quiz_types import DataQualityError, Question
from modules.telegram_utils import TransportError
from storage.database import PersistenceError


class TestQuizDispatcher(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.env = QuizEnvironment(self.test_dir)
        self.env.registry.register(100)
        self.dispatcher = QuizDispatcher(
            app_config=self.env.app_config,
            registry=self.env.registry,
            data_manager=self.env.data_manager,
            pending_store=self.env.pending_store,
            transport=self.env.transport
        )

    def tearDown(self):
        self.env.close()
        shutil.rmtree(self.test_dir)

    async def test_single_answer_is_quiz_poll(self):
        question = self.env.data_manager.get_question_by_id("q-single")
        token = await self.dispatcher.deliver(self.env.registry.get(100), question)

        poll = self.env.transport.polls[0]
        self.assertFalse(poll["allows_multiple_answers"])
        self.assertEqual(poll["correct_option_id"], 1)
        self.assertEqual(poll["options"], ["A", "B", "C"])

        pending = await self.env.pending_store.get(token)
        self.assertEqual(pending.question_id, "q-single")
        self.assertEqual(pending.subscriber_id, 100)

        subscriber = self.env.registry.get(100)
        self.assertEqual(subscriber.questions_sent, 1)
        self.assertEqual(subscriber.display_name, "tester")

    async def test_multi_answer_is_regular_poll(self):
        question = self.env.data_manager.get_question_by_id("q-multi")
        await self.dispatcher.deliver(self.env.registry.get(100), question)

        poll = self.env.transport.polls[0]
        self.assertTrue(poll["allows_multiple_answers"])
        self.assertIsNone(poll["correct_option_id"])

    async def test_long_prompt_sent_in_order(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(260))
        question = Question.create("q-long", text, ["A", "B"], [0], tags=["network+"])

        await self.dispatcher.deliver(self.env.registry.get(100), question)

        events = self.env.transport.events
        self.assertEqual([kind for kind, _, _ in events], ["message", "message", "poll"])
        self.assertEqual(events[0][2], text[:125])
        self.assertEqual(events[1][2], text[125:250])
        self.assertEqual(events[2][2], text[250:])

    async def test_long_option_truncated(self):
        question = Question.create("q-opt", "Options", ["x" * 150, "B"], [1], tags=["network+"])
        await self.dispatcher.deliver(self.env.registry.get(100), question)
        self.assertEqual(len(self.env.transport.polls[0]["options"][0]), 100)

    async def test_send_failure_changes_nothing(self):
        self.env.transport.fail_on_poll = True
        question = self.env.data_manager.get_question_by_id("q-single")

        with self.assertRaises(TransportError):
            await self.dispatcher.deliver(self.env.registry.get(100), question)

        self.assertEqual(self.env.registry.get(100).questions_sent, 0)
        self.assertIsNone(await self.env.pending_store.get("poll-1"))

    async def test_pending_store_failure_after_send(self):
        self.dispatcher.pending_store = AsyncMock()
        self.dispatcher.pending_store.put.side_effect = PersistenceError("redis down")
        question = self.env.data_manager.get_question_by_id("q-single")

        token = await self.dispatcher.deliver(self.env.registry.get(100), question)

        self.assertEqual(token, "poll-1")
        self.assertEqual(self.env.registry.get(100).questions_sent, 1)

    async def test_send_question_uses_subscriber_section(self):
        self.env.registry.update(100, lambda s: setattr(s, "section", "security+"))
        await self.dispatcher.send_question(100)
        self.assertEqual(self.env.transport.polls[0]["prompt"], "What does CIA stand for?")

    async def test_empty_section(self):
        self.env.app_config.sections["a+"] = {"title": "A+"}
        self.env.registry.update(100, lambda s: setattr(s, "section", "a+"))
        with self.assertRaises(DataQualityError):
            await self.dispatcher.send_question(100)
        self.assertEqual(self.env.transport.polls, [])


if __name__ == '__main__':
    unittest.main()
