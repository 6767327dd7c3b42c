#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Тесты корпуса вопросов: импорт JSON, некорректные записи, загрузка разделов
"""

import json
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from quiz_fakes import QuizEnvironment
from data_manager import QuestionNotFoundError


class TestDataManager(unittest.TestCase):

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.env = QuizEnvironment(self.test_dir, questions=[])
        self.data_manager = self.env.data_manager

    def tearDown(self):
        self.env.close()
        shutil.rmtree(self.test_dir)

    def _write(self, name: str, payload) -> Path:
        path = Path(self.test_dir) / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_import_grouped_file(self):
        path = self._write("questions.json", {
            "network+": [
                {"id": "n1", "question": "Default HTTPS port?", "options": ["80", "443", "21"], "correct": "443"},
                {"id": "n2", "question": "Routing protocols?", "options": ["OSPF", "HTTP", "BGP"], "correct": ["OSPF", "BGP"]},
            ],
            "security+": [
                {"id": "s1", "question": "Symmetric cipher?", "options": ["AES", "RSA"], "correct_indices": [0]},
            ],
        })

        self.assertEqual(self.data_manager.import_questions_file(path), 3)

        network = self.data_manager.load_quiz("network+")
        self.assertEqual([q.question_id for q in network.questions], ["n1", "n2"])
        self.assertEqual(network.questions[0].correct_indices, frozenset({1}))
        self.assertEqual(network.questions[1].correct_indices, frozenset({0, 2}))
        self.assertEqual(len(self.data_manager.load_quiz("security+")), 1)

    def test_list_file_needs_section(self):
        path = self._write("list.json", [{"question": "Q?", "options": ["A", "B"], "correct": "A"}])
        with self.assertRaises(ValueError):
            self.data_manager.import_questions_file(path)

        self.assertEqual(self.data_manager.import_questions_file(path, section="network+"), 1)
        question = self.data_manager.load_quiz("network+").questions[0]
        self.assertTrue(question.question_id)
        self.assertIn("network+", question.tags)

    def test_malformed_entries_are_reported(self):
        path = self._write("mixed.json", {"network+": [
            {"question": "Good?", "options": ["A", "B"], "correct": "B"},
            {"question": "", "options": ["A", "B"], "correct": "A"},
            {"question": "One option", "options": ["A"], "correct": "A"},
            {"question": "Wrong answer", "options": ["A", "B"], "correct": "C"},
            "not an object",
        ]})

        self.assertEqual(self.data_manager.import_questions_file(path), 1)

        malformed_file = self.env.app_config.paths.malformed_questions_file
        malformed = json.loads(malformed_file.read_text(encoding="utf-8"))
        self.assertEqual(
            [m["error_type"] for m in malformed],
            ["empty_question", "insufficient_options", "invalid_correct_answer", "entry_not_object"]
        )

    def test_reimport_replaces_question(self):
        self.data_manager.import_questions_file(self._write("v1.json", {"network+": [
            {"id": "n1", "question": "Old text", "options": ["A", "B"], "correct": "A"},
        ]}))
        self.assertEqual(self.data_manager.load_quiz("network+").questions[0].text, "Old text")

        self.data_manager.import_questions_file(self._write("v2.json", {"network+": [
            {"id": "n1", "question": "New text", "options": ["A", "B"], "correct": "B"},
        ]}))

        quiz = self.data_manager.load_quiz("network+")
        self.assertEqual(len(quiz), 1)
        self.assertEqual(quiz.questions[0].text, "New text")

    def test_get_question_by_id(self):
        self.data_manager.import_questions_file(self._write("q.json", {"security+": [
            {"id": "s1", "question": "Symmetric cipher?", "options": ["AES", "RSA"], "correct": "AES"},
        ]}))

        self.assertEqual(self.data_manager.get_question_by_id("s1").choices, ("AES", "RSA"))
        self.data_manager.load_quiz("security+")
        self.assertEqual(self.data_manager.get_question_by_id("s1").text, "Symmetric cipher?")
        with self.assertRaises(QuestionNotFoundError):
            self.data_manager.get_question_by_id("missing")

    def test_load_all_quizzes_counts_sections(self):
        counts = self.data_manager.load_all_quizzes()
        self.assertEqual(counts, {"network+": 0, "security+": 0})


if __name__ == '__main__':
    unittest.main()
