#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Тесты типов данных: оценка ответа, выбор случайного вопроса, инварианты подписчика
"""

import random
import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from modules.quiz_types import DataQualityError, PendingRequest, Question, Quiz, Subscriber


class TestQuestionGrading(unittest.TestCase):
    """Оценка ответа по набору индексов"""

    def setUp(self):
        self.single = Question.create("q1", "Pick B", ["A", "B", "C"], [1])
        self.multi = Question.create("q2", "Pick A and C", ["A", "B", "C"], [2, 0])

    def test_single_correct(self):
        self.assertTrue(self.single.is_correct([1]))
        self.assertFalse(self.single.is_correct([0]))
        self.assertEqual(self.single.correct_choices(), ["B"])

    def test_order_does_not_matter(self):
        self.assertTrue(self.multi.is_correct([0, 2]))
        self.assertTrue(self.multi.is_correct([2, 0]))

    def test_cardinality_must_match(self):
        self.assertFalse(self.multi.is_correct([0]))
        self.assertFalse(self.multi.is_correct([0, 1, 2]))
        self.assertFalse(self.multi.is_correct([0, 0]))

    def test_poll_kind(self):
        self.assertFalse(self.single.is_multi_select)
        self.assertEqual(self.single.single_correct_index, 1)
        self.assertTrue(self.multi.is_multi_select)
        self.assertIsNone(self.multi.single_correct_index)
        self.assertEqual(self.multi.correct_choices(), ["A", "C"])

    def test_invalid_questions_rejected(self):
        with self.assertRaises(ValueError):
            Question.create("bad", "No answers", ["A", "B"], [])
        with self.assertRaises(ValueError):
            Question.create("bad", "Out of range", ["A", "B"], [2])


class TestRandomQuestion(unittest.TestCase):
    """Выбор случайного вопроса раздела"""

    def test_empty_quiz(self):
        with self.assertRaises(DataQualityError):
            Quiz(section="network+").random_question()

    def test_retry_once_after_bad_question(self):
        bad = Question.create("bad", "One choice", ["only"], [0])
        good = Question.create("good", "Two choices", ["A", "B"], [0])
        rng = Mock()
        rng.choice.side_effect = [bad, good]

        picked = Quiz(section="network+", questions=[bad, good]).random_question(rng)

        self.assertEqual(picked.question_id, "good")
        self.assertEqual(rng.choice.call_count, 2)

    def test_bad_question_twice(self):
        bad = Question.create("bad", "One choice", ["only"], [0])
        with self.assertRaises(DataQualityError):
            Quiz(section="network+", questions=[bad]).random_question(random.Random(1))

    def test_pick_from_section(self):
        questions = [Question.create(f"q{i}", f"Q{i}", ["A", "B"], [0]) for i in range(5)]
        quiz = Quiz(section="network+", questions=questions)
        self.assertEqual(len(quiz), 5)
        self.assertIn(quiz.random_question(random.Random(7)), questions)


class TestSubscriber(unittest.TestCase):
    """Инварианты подписчика"""

    def _make(self, **kwargs):
        defaults = dict(
            subscriber_id=1,
            question_interval=timedelta(hours=1),
            next_delivery_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            section="network+",
        )
        defaults.update(kwargs)
        return Subscriber(**defaults)

    def test_counters_ordering(self):
        self._make(questions_sent=3, questions_asked=2, questions_correct=1)
        with self.assertRaises(ValueError):
            self._make(questions_sent=1, questions_asked=2)
        with self.assertRaises(ValueError):
            self._make(questions_sent=2, questions_asked=1, questions_correct=2)

    def test_interval_positive(self):
        with self.assertRaises(ValueError):
            self._make(question_interval=timedelta(0))

    def test_accuracy(self):
        self.assertEqual(self._make().accuracy_percent, 0)
        self.assertEqual(self._make(questions_sent=3, questions_asked=3, questions_correct=2).accuracy_percent, 66)


class TestPendingRequest(unittest.TestCase):

    def test_dict_form_keeps_sent_time(self):
        sent_at = datetime(2024, 3, 1, 10, 30, tzinfo=timezone.utc)
        request = PendingRequest(token="p1", question_id="q1", subscriber_id=42, sent_at=sent_at)
        restored = PendingRequest.from_dict(request.to_dict())
        self.assertEqual(restored, request)
        self.assertIsNone(PendingRequest.from_dict({"token": "p2", "question_id": "q2"}).sent_at)


if __name__ == '__main__':
    unittest.main()
