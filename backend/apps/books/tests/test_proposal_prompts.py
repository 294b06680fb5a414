from __future__ import annotations

import json

from django.test import SimpleTestCase

from apps.books.services.proposal_prompts import (
    PROPOSAL_HINTS,
    SEED_ANSWER_KEY,
    UNKNOWN_QUESTION_LABEL,
    build_planner_prompt,
    build_question_message,
    build_summary_prompt,
    encode_answer,
    extract_qa_pairs,
    parse_question_message,
)


def _answers() -> dict:
    return {
        SEED_ANSWER_KEY: "忙しい人向けの本",
        "q1": encode_answer("想定読者は？", "30代の会社員"),
        "q2": encode_answer("コアメッセージは？", "10分で始める習慣"),
    }


class ExtractQAPairsTests(SimpleTestCase):
    def test_well_formed_records_are_extracted_and_seed_is_skipped(self):
        pairs = extract_qa_pairs(_answers())

        self.assertEqual(
            pairs,
            [
                {"question": "想定読者は？", "answer": "30代の会社員"},
                {"question": "コアメッセージは？", "answer": "10分で始める習慣"},
            ],
        )

    def test_malformed_values_degrade_to_unknown_question(self):
        answers = {
            "q1": "not json at all",
            "q2": json.dumps({"question": "missing answer"}),
            "q3": json.dumps(["a", "list"]),
            "q4": "{broken",
        }

        pairs = extract_qa_pairs(answers)

        self.assertEqual(len(pairs), 4)
        for pair, key in zip(pairs, ["q1", "q2", "q3", "q4"]):
            self.assertEqual(pair["question"], UNKNOWN_QUESTION_LABEL)
            self.assertEqual(pair["answer"], answers[key])

    def test_non_dict_input_yields_no_pairs(self):
        self.assertEqual(extract_qa_pairs(None), [])


class QuestionMessageTests(SimpleTestCase):
    def test_question_only(self):
        self.assertEqual(build_question_message("想定読者は？", []), "【質問】想定読者は？")

    def test_followups_are_capped_at_two(self):
        message = build_question_message("想定読者は？", ["a", "b", "c", "d", "e"])

        lines = message.split("\n")
        self.assertEqual(lines[0], "【質問】想定読者は？")
        self.assertEqual(lines[1:], ["・a", "・b"])

    def test_parse_question_message_reads_first_line(self):
        self.assertEqual(parse_question_message("【質問】想定読者は？\n・読むシーンは？"), "想定読者は？")
        self.assertIsNone(parse_question_message("企画書ドラフト — 忙しい人の本"))
        self.assertIsNone(parse_question_message(""))


class PlannerPromptTests(SimpleTestCase):
    def test_prompt_embeds_persona_transcript_hints_and_limits(self):
        prompt = build_planner_prompt("ミカ", _answers(), 2, 12)

        self.assertIn("「ミカ」", prompt)
        self.assertIn("忙しい人向けの本", prompt)
        self.assertIn("Q1: 想定読者は？\nA1: 30代の会社員", prompt)
        self.assertIn("Q2: コアメッセージは？", prompt)
        for hint in PROPOSAL_HINTS:
            self.assertIn(hint, prompt)
        self.assertIn("JSON のみ", prompt)
        self.assertIn("最大2つ", prompt)
        self.assertIn("2 件", prompt)
        self.assertIn("12 ラウンド", prompt)

    def test_placeholders_when_nothing_collected(self):
        prompt = build_planner_prompt("ミカ", {}, 0)

        self.assertIn("(未入力)", prompt)
        self.assertIn("(なし)", prompt)

    def test_prompt_builders_are_pure(self):
        answers = _answers()
        self.assertEqual(build_planner_prompt("ミカ", answers, 2), build_planner_prompt("ミカ", answers, 2))
        self.assertEqual(build_summary_prompt("ミカ", answers), build_summary_prompt("ミカ", answers))
        self.assertEqual(answers, _answers())


class SummaryPromptTests(SimpleTestCase):
    def test_lists_required_sections_and_forbids_invention(self):
        prompt = build_summary_prompt("ミカ", _answers())

        for heading in ("企画の背景", "セールスポイント", "対象読者", "章立ての骨子", "著者について", "補足事項"):
            self.assertIn(heading, prompt)
        self.assertIn("事実の創作", prompt)
        self.assertIn("（未記入）", prompt)
        self.assertIn("- Seed: 忙しい人向けの本", prompt)

    def test_truncates_seed_and_answers(self):
        answers = {
            SEED_ANSWER_KEY: "い" * 900,
            "q1": encode_answer("長い回答は？", "あ" * 1500),
        }

        prompt = build_summary_prompt("ミカ", answers)

        self.assertIn("い" * 800, prompt)
        self.assertNotIn("い" * 801, prompt)
        self.assertIn("あ" * 1000, prompt)
        self.assertNotIn("あ" * 1001, prompt)

    def test_empty_material_placeholder(self):
        prompt = build_summary_prompt("ミカ", {})

        self.assertIn("(Q&Aなし)", prompt)
        self.assertNotIn("- Seed:", prompt)
