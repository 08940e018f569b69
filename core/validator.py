"""Parses, validates, repairs and merges the model's graded answers."""

import json
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from core.models import (EvaluationResult, GradedAnswer, OverallPerformance, QuestionRecord,
                         RawModelResponse, StudentInfo)
from utils.error_handler import CoverageError, SchemaError
from utils.logger import get_logger

logger = get_logger()

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_OBJECT = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY = re.compile(r"\[.*\]", re.DOTALL)

STUDY_RECOMMENDATIONS = [
    "Review questions with low scores",
    "Practice similar question types",
    "Focus on weak concepts identified",
]


def _section_key(section: Optional[str]) -> str:
    return " ".join((section or "").split()).casefold()


def parse_payload(text: str) -> List[Any]:
    """Extracts the list of answer objects from the model's reply.

    Accepts a bare JSON array or an object with an ``answers`` key, optionally
    wrapped in a markdown code fence or surrounded by prose.

    Raises:
        SchemaError: If no JSON can be recovered or it has no answer list.
    """
    if not text or not text.strip():
        raise SchemaError("Model response was empty.")

    candidates = [text.strip()]
    fence = _CODE_FENCE.search(text)
    if fence:
        candidates.append(fence.group(1))
    for pattern in (_OBJECT, _ARRAY):
        match = pattern.search(text)
        if match:
            candidates.append(match.group(0))

    payload: Any = None
    for candidate in candidates:
        try:
            payload = json.loads(candidate)
            break
        except json.JSONDecodeError:
            continue
    else:
        raise SchemaError(f"Model response is not valid JSON (first 200 chars): {text[:200]!r}")

    if isinstance(payload, dict):
        payload = payload.get("answers")
    if not isinstance(payload, list):
        raise SchemaError("Model response JSON has no 'answers' array.")
    return payload


def _repair(answer: GradedAnswer, question: QuestionRecord, realigned: bool = False) -> GradedAnswer:
    """Applies the clamping/backfill rules and pins the answer to its question.

    A re-aligned answer always takes the question text and expected answer from
    the paper, since the model's copies describe a different question.
    """
    earned, possible = answer.score
    notes = [answer.alignment_notes] if answer.alignment_notes else []
    if realigned:
        notes.append(f"Re-aligned from answer labelled Q{answer.question_no} ({answer.section}).")
    if question.marks_declared and possible != question.max_marks:
        notes.append(f"Possible marks set to {question.max_marks:g} from the question paper (model reported {possible:g}).")
        logger.warning(f"{question.label}: model reported {possible} possible marks, paper says {question.max_marks}.")
        possible = question.max_marks
    if earned > possible:
        notes.append(f"Score clamped: model awarded {earned} of {possible}.")
        logger.warning(f"{question.label}: awarded {earned} > possible {possible}; clamping.")
        earned = possible
    if earned < 0:
        notes.append(f"Score clamped: model awarded negative marks ({earned}).")
        logger.warning(f"{question.label}: negative score {earned}; clamping to 0.")
        earned = 0.0
    if realigned:
        question_text, expected_answer = question.text, question.expected_answer
    else:
        question_text = answer.question or question.text
        expected_answer = answer.expected_answer or question.expected_answer
    return answer.model_copy(update={
        "question_no": question.number,
        "section": question.section,
        "question": question_text,
        "expected_answer": expected_answer,
        "score": (earned, possible),
        "alignment_notes": " ".join(notes),
    })


def validate(raw_response: RawModelResponse, expected_questions: Sequence[QuestionRecord]) -> List[GradedAnswer]:
    """Turns one raw batch reply into exactly one GradedAnswer per expected question.

    Answers are matched by (section, number). A second answer for a question
    that is already matched is dropped. Answers labelled with a question that
    is not in the batch at all fill the remaining questions in order; any left
    over are dropped.

    Raises:
        SchemaError: If the reply is not JSON or an entry does not fit the schema.
        CoverageError: If some expected question is left without an answer.
    """
    entries = parse_payload(raw_response.text)
    answers: List[GradedAnswer] = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise SchemaError(f"Answer #{position + 1} is not a JSON object.")
        try:
            answer = GradedAnswer.model_validate(entry)
        except ValidationError as e:
            raise SchemaError(f"Answer #{position + 1} does not match the answer schema: {e}") from e
        if answer.possible < 0:
            raise SchemaError(f"Answer #{position + 1} has a negative possible score.")
        answers.append(answer)

    numbers_in_batch: Dict[int, int] = {}
    for q in expected_questions:
        numbers_in_batch[q.number] = numbers_in_batch.get(q.number, 0) + 1

    matched: Dict[Tuple[str, int], GradedAnswer] = {}
    strays: List[GradedAnswer] = []
    dropped: List[GradedAnswer] = []
    expected_keys = {(_section_key(q.section), q.number): q for q in expected_questions}
    for answer in answers:
        key = (_section_key(answer.section), answer.question_no)
        if key not in expected_keys and numbers_in_batch.get(answer.question_no) == 1:
            # Model renamed or dropped the section; the number alone is unambiguous here
            key = next(k for k in expected_keys if k[1] == answer.question_no)
        if key in matched:
            dropped.append(answer)
        elif key in expected_keys:
            matched[key] = answer
        elif answer.question_no in numbers_in_batch:
            # Ambiguous section for a number that is in the batch; not a stray
            dropped.append(answer)
        else:
            strays.append(answer)

    unanswered = [q for q in expected_questions if (_section_key(q.section), q.number) not in matched]
    if len(unanswered) > len(strays):
        raise CoverageError(len(expected_questions), len(matched) + len(strays))

    results: List[GradedAnswer] = []
    for q in expected_questions:
        key = (_section_key(q.section), q.number)
        if key in matched:
            results.append(_repair(matched[key], q))
            continue
        stray = strays.pop(0)
        logger.warning(
            f"Batch {raw_response.batch_index + 1}: no answer labelled {q.label}; "
            f"using unmatched answer labelled Q{stray.question_no} ({stray.section})."
        )
        results.append(_repair(stray, q, realigned=True))

    dropped.extend(strays)
    if dropped:
        logger.warning(
            f"Batch {raw_response.batch_index + 1}: dropping {len(dropped)} extra answers "
            f"({', '.join(f'Q{a.question_no}' for a in dropped)})."
        )
    return results


def _format_marks(value: float) -> str:
    return f"{value:g}"


def summarize_performance(answers: Sequence[GradedAnswer], student_name: str) -> OverallPerformance:
    """Derives the overall performance block from the per-question scores."""
    earned = sum(a.earned for a in answers)
    possible = sum(a.possible for a in answers)
    percentage = (earned / possible * 100) if possible > 0 else 0.0

    strengths = [
        f"Strong performance in {a.concepts[0] if a.concepts else f'question {a.question_no}'}"
        for a in answers if a.possible > 0 and a.earned > a.possible * 0.7
    ][:3]
    areas = [
        f"Improve {a.concepts[0] if a.concepts else f'understanding in question {a.question_no}'}"
        for a in answers if a.possible > 0 and a.earned < a.possible * 0.5
    ][:3]

    verdict = "Good performance overall." if percentage >= 70 else "Areas for improvement identified."
    return OverallPerformance(
        strengths=strengths or ["Continue working on core concepts"],
        areas_for_improvement=areas or ["Review all topics covered"],
        study_recommendations=list(STUDY_RECOMMENDATIONS),
        personalized_summary=(
            f"{student_name} scored {_format_marks(earned)}/{_format_marks(possible)} "
            f"({percentage:.1f}%). {verdict}"
        ),
    )


def merge(batch_answers: Mapping[int, Sequence[GradedAnswer]], student_info: Optional[StudentInfo] = None) -> EvaluationResult:
    """Concatenates per-batch answers by batch index and builds the EvaluationResult.

    The order is the planner's batch order, independent of completion order.
    """
    student_info = student_info or StudentInfo()
    answers: List[GradedAnswer] = []
    for index in sorted(batch_answers):
        answers.extend(batch_answers[index])

    questions_by_section: Dict[str, int] = {}
    for answer in answers:
        questions_by_section[answer.section] = questions_by_section.get(answer.section, 0) + 1

    return EvaluationResult(
        student_name=student_info.name,
        roll_no=student_info.roll_number,
        class_name=student_info.class_name,
        subject=student_info.subject,
        total_questions_detected=len(answers),
        questions_by_section=questions_by_section,
        answers=answers,
        overall_performance=summarize_performance(answers, student_info.name),
    )
