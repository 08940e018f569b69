"""Tests for grading prompt construction."""

import json

from core.models import Batch, QuestionRecord, StudentInfo
from core.requester import (QUESTIONS_HEADER, STUDENT_SHEET_HEADER, SYSTEM_PROMPT, EvaluationRequester,
                            build_user_prompt)


def make_batch():
    questions = (
        QuestionRecord(number=1, section="Section A", text="What is 2 + 2?", expected_answer="4", max_marks=1),
        QuestionRecord(number=21, section="Section B", text="Prove it.", expected_answer="Proof", max_marks=2),
    )
    return Batch(index=3, questions=questions, student_answer_text="1. 4\n21. Proof",
                 estimated_input_tokens=10, max_output_tokens=4096)


def test_user_prompt_embeds_questions_sheet_and_student():
    prompt = build_user_prompt(make_batch(), StudentInfo(name="Asha", roll_number="7", class_name="9B", subject="Maths"))

    block = prompt[prompt.index(QUESTIONS_HEADER) + len(QUESTIONS_HEADER):prompt.index(STUDENT_SHEET_HEADER)]
    questions = json.loads(block)
    assert questions[1] == {
        "question_no": 21, "section": "Section B", "question": "Prove it.",
        "expected_answer": "Proof", "max_marks": 2.0,
    }
    assert "1. 4\n21. Proof" in prompt
    assert "- Name: Asha" in prompt
    assert "- Class: 9B" in prompt
    assert "exactly 2 entries" in prompt
    assert prompt.startswith("Grade ONLY these 2 questions: Q1 (Section A), Q21 (Section B)")


def test_system_prompt_describes_answer_schema():
    for key in ("question_no", "score", "confidence", "answer_matches", "alignment_notes"):
        assert f'"{key}"' in SYSTEM_PROMPT


def test_requester_passes_batch_limits_to_client():
    class RecordingClient:
        def generate_json(self, system_prompt, user_prompt, max_output_tokens=8192, timeout=120):
            self.args = (system_prompt, user_prompt, max_output_tokens, timeout)
            return '{"answers": []}'

    client = RecordingClient()
    raw = EvaluationRequester(client, timeout=45).evaluate(make_batch())

    assert raw.batch_index == 3
    assert raw.text == '{"answers": []}'
    assert client.args[0] == SYSTEM_PROMPT
    assert client.args[2:] == (4096, 45)
    assert "- Name: Unknown Student" in client.args[1]
