#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Тесты планировщика доставки: перенос срока, независимость от задержки отправки,
ошибки доставки, параллельные доставки одному чату
"""

import asyncio
import shutil
import sys
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock, Mock

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from quiz_fakes import T0, QuizEnvironment
from handlers.delivery_scheduler import DeliveryScheduler
from modules.quiz_dispatcher import QuizDispatcher
from modules.quiz_types import DeliveryState

HOUR = timedelta(hours=1)


class TestDeliveryScheduler(unittest.IsolatedAsyncioTestCase):

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
        self.scheduler = DeliveryScheduler(
            app_config=self.env.app_config,
            registry=self.env.registry,
            dispatcher=self.dispatcher,
            clock=self.env.clock
        )

    def tearDown(self):
        self.env.close()
        shutil.rmtree(self.test_dir)

    async def test_due_subscriber_gets_question(self):
        launched = await self.scheduler.tick(now=T0 + timedelta(hours=1, minutes=5))
        await self.scheduler.drain()

        self.assertEqual(launched, [100])
        subscriber = self.env.registry.get(100)
        self.assertEqual(subscriber.next_delivery_at, T0 + timedelta(hours=2, minutes=5))
        self.assertEqual(subscriber.questions_sent, 1)
        self.assertEqual(len(self.env.transport.polls), 1)

    async def test_not_due_yet(self):
        launched = await self.scheduler.tick(now=T0 + timedelta(minutes=30))

        self.assertEqual(launched, [])
        self.assertEqual(self.env.registry.get(100).next_delivery_at, T0 + HOUR)
        self.assertEqual(self.scheduler.delivery_state(100, now=T0 + timedelta(minutes=30)), DeliveryState.IDLE)
        self.assertEqual(self.scheduler.delivery_state(100, now=T0 + HOUR), DeliveryState.DUE)

    async def test_deadline_independent_of_delivery_latency(self):
        self.env.transport.gate = asyncio.Event()
        deadline = T0 + HOUR

        for k in range(3):
            await self.scheduler.tick(now=deadline + k * HOUR)
            self.assertEqual(self.env.registry.get(100).next_delivery_at, deadline + (k + 1) * HOUR)

        self.env.transport.gate.set()
        await self.scheduler.drain()

    async def test_no_second_delivery_while_in_flight(self):
        self.env.transport.gate = asyncio.Event()

        first = await self.scheduler.tick(now=T0 + HOUR)
        await asyncio.sleep(0)
        self.assertEqual(self.scheduler.delivery_state(100), DeliveryState.DELIVERING)

        second = await self.scheduler.tick(now=T0 + 2 * HOUR)
        self.assertEqual(first, [100])
        self.assertEqual(second, [])
        self.assertEqual(self.env.registry.get(100).next_delivery_at, T0 + 3 * HOUR)

        self.env.transport.gate.set()
        await self.scheduler.drain()
        self.assertEqual(self.env.registry.get(100).questions_sent, 1)
        self.assertEqual(self.scheduler.in_flight_count, 0)

    async def test_failed_delivery_is_not_retried_early(self):
        self.env.transport.fail_on_poll = True

        await self.scheduler.tick(now=T0 + HOUR)
        await self.scheduler.drain()

        subscriber = self.env.registry.get(100)
        self.assertEqual(subscriber.questions_sent, 0)
        self.assertEqual(subscriber.next_delivery_at, T0 + 2 * HOUR)

        self.assertEqual(await self.scheduler.tick(now=T0 + HOUR + timedelta(minutes=5)), [])

        self.env.transport.fail_on_poll = False
        self.assertEqual(await self.scheduler.tick(now=T0 + 2 * HOUR), [100])
        await self.scheduler.drain()
        self.assertEqual(self.env.registry.get(100).questions_sent, 1)

    async def test_unexpected_error_does_not_stop_other_deliveries(self):
        self.env.registry.register(200)
        dispatcher = Mock()
        dispatcher.send_question = AsyncMock(side_effect=[RuntimeError("boom"), "poll-2"])
        scheduler = DeliveryScheduler(self.env.app_config, self.env.registry, dispatcher, clock=self.env.clock)

        launched = await scheduler.tick(now=T0 + HOUR)
        await scheduler.drain()

        self.assertEqual(sorted(launched), [100, 200])
        self.assertEqual(dispatcher.send_question.await_count, 2)

    async def test_empty_section_is_logged(self):
        self.env.app_config.sections["a+"] = {"title": "A+"}
        self.env.registry.update(100, lambda s: setattr(s, "section", "a+"))

        await self.scheduler.tick(now=T0 + HOUR)
        await self.scheduler.drain()

        self.assertEqual(self.env.transport.polls, [])
        self.assertEqual(self.env.registry.get(100).next_delivery_at, T0 + 2 * HOUR)

    def test_start_and_stop_job(self):
        job_queue = Mock()
        stale_job = Mock()
        job_queue.get_jobs_by_name.return_value = (stale_job,)
        job = job_queue.run_repeating.return_value

        self.scheduler.start(job_queue)
        self.scheduler.stop()

        kwargs = job_queue.run_repeating.call_args.kwargs
        self.assertEqual(kwargs["interval"], 300)
        self.assertEqual(kwargs["first"], 300)
        stale_job.schedule_removal.assert_called_once()
        job.schedule_removal.assert_called_once()


if __name__ == '__main__':
    unittest.main()
