"""
Test configuration and fixtures for the GradeLab test suite.
"""

import json
import re
import threading
from pathlib import Path

import pytest

from core.models import StudentInfo
from core.requester import QUESTIONS_HEADER, STUDENT_INFO_HEADER, STUDENT_SHEET_HEADER

FIXTURES_DIR = Path(__file__).parent / "fixtures"

# "154 cm² (πr² = 22/7 × 7²)" is graded on "154 cm²"
_TRAILING_NOTE = re.compile(r"\s+\([^()]*\)$")


def _normalize(text):
    return " ".join(text.replace("✓", "").split())


def find_student_answer(sheet, number):
    match = re.search(rf"^\s*{number}\.\s+(.*)$", sheet, re.MULTILINE)
    return match.group(1).strip() if match else ""


def grade_question(question, sheet):
    """Deterministic stand-in for the model: exact match earns full marks, any other answer half."""
    raw = find_student_answer(sheet, question["question_no"])
    answer = _normalize(raw)
    expected = _normalize(_TRAILING_NOTE.sub("", question["expected_answer"]))
    max_marks = question["max_marks"]

    if answer and answer == expected:
        earned, remarks, matches = max_marks, "Correct answer.", True
    elif answer:
        earned, remarks, matches = max_marks / 2, "Partially correct.", False
    else:
        earned, remarks, matches = 0, "Question not attempted", False

    return {
        "question_no": question["question_no"],
        "section": question["section"],
        "question": question["question"],
        "expected_answer": question["expected_answer"],
        "answer": answer,
        "raw_extracted_text": raw,
        "score": [earned, max_marks],
        "remarks": remarks,
        "confidence": 0.9,
        "concepts": [f"Concept {question['question_no']}"],
        "missing_elements": [] if matches else ["Complete answer"],
        "answer_matches": matches,
        "personalized_feedback": "Keep practising.",
        "alignment_notes": "Question properly aligned",
    }


def _between(text, start, end):
    begin = text.index(start) + len(start)
    return text[begin:text.rindex(end)]


class FakeLLMClient:
    """Grades prompts built by EvaluationRequester without any network access.

    ``respond(first_question_no, attempt, answers)`` may rewrite the reply for a
    batch (identified by its first question number); ``delays`` maps a first
    question number to seconds to wait before replying.
    """

    def __init__(self, respond=None, delays=None):
        self.respond = respond
        self.delays = delays or {}
        self.calls = []
        self.attempts = {}
        self._lock = threading.Lock()

    def generate_json(self, system_prompt, user_prompt, max_output_tokens=8192, timeout=120):
        questions = json.loads(_between(user_prompt, QUESTIONS_HEADER, STUDENT_SHEET_HEADER))
        sheet = _between(user_prompt, STUDENT_SHEET_HEADER, STUDENT_INFO_HEADER)
        first = questions[0]["question_no"]
        with self._lock:
            self.calls.append({"questions": questions, "max_output_tokens": max_output_tokens, "timeout": timeout})
            attempt = self.attempts[first] = self.attempts.get(first, 0) + 1

        delay = self.delays.get(first)
        if delay:
            threading.Event().wait(delay)

        answers = [grade_question(q, sheet) for q in questions]
        if self.respond is not None:
            return self.respond(first, attempt, answers)
        return json.dumps({"answers": answers}, ensure_ascii=False)


class FakeStore:
    """Records upserts the way the grading status table would receive them."""

    def __init__(self):
        self.rows = []

    def upsert_status(self, test_id, student_id, status, score=None, feedback=None,
                      evaluation_result=None, answer_sheet_id=None):
        self.rows.append({
            "test_id": test_id,
            "student_id": student_id,
            "status": status.value,
            "score": score,
            "feedback": feedback,
            "evaluation_result": evaluation_result,
            "answer_sheet_id": answer_sheet_id,
        })

    @property
    def statuses(self):
        return [row["status"] for row in self.rows]


# --- Document generators ---

def generate_question_paper(question_count, sections=None):
    """``sections`` is a list of (label, count); numbering runs on across sections."""
    paper = f"Question Paper\nSubject: Mathematics\nTime: 3 Hours\nTotal Marks: {question_count * 5}\n\n"
    for label, start, count in _section_ranges(question_count, sections):
        if label:
            paper += f"SECTION {label} ({count} Questions - 1 mark each)\n\n"
        for i in range(start, start + count):
            paper += (f"{i}. Solve the following equation: {i}x + {i * 2} = {i * 3 + 5}. "
                      f"Show all your work and provide the complete solution.\n\n")
    return paper


def generate_answer_key(question_count, sections=None):
    key = "Answer Key\nSubject: Mathematics\n\n"
    for label, start, count in _section_ranges(question_count, sections):
        if label:
            key += f"SECTION {label} ({count} Questions)\n\n"
        for i in range(start, start + count):
            key += f"{i}. x = {(i + 5) / i:.2f}\n"
    return key


def generate_student_answer(question_count, wrong_every=3):
    sheet = "Student Answer Sheet\nStudent: Test Student\nRoll No: TEST001\n\n"
    for i in range(1, question_count + 1):
        if i % wrong_every == 0:
            sheet += f"{i}. I think the answer is {i % 10}.\n"
        else:
            sheet += f"{i}. x = {(i + 5) / i:.2f}\n"
    return sheet


def _section_ranges(question_count, sections):
    if not sections:
        return [(None, 1, question_count)]
    ranges, start = [], 1
    for label, count in sections:
        ranges.append((label, start, count))
        start += count
    return ranges


# --- Fixtures ---

@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    """Retry backoff sleeps are skipped in tests."""
    sleeps = []
    monkeypatch.setattr("utils.retry.time.sleep", sleeps.append)
    return sleeps


@pytest.fixture
def math_documents():
    """The 45-question (20 + 15 + 10) mathematics paper, its key and John Doe's sheet."""
    return tuple(
        (FIXTURES_DIR / name).read_text(encoding="utf-8")
        for name in ("math_question_paper.txt", "math_answer_key.txt", "math_student_sheet.txt")
    )


@pytest.fixture
def john_doe():
    return StudentInfo(name="John Doe", roll_number="101", class_name="10", subject="Mathematics")


@pytest.fixture
def fake_llm():
    return FakeLLMClient()


@pytest.fixture
def fake_store():
    return FakeStore()
