"""Splits aligned questions into LLM-sized evaluation batches."""

import math
from typing import List, Optional, Sequence

import config
from core.models import Batch, PlanningLimits, QuestionRecord
from utils.error_handler import OversizedQuestionError
from utils.logger import get_logger
from utils.tokens import estimate_output_tokens, estimate_tokens

logger = get_logger()


def _question_chars(question: QuestionRecord) -> int:
    return len(question.text) + len(question.expected_answer)


def _tokens_for(chars: int, ratio: float) -> int:
    return math.ceil(chars * ratio) if chars else 0


def _section_run_length(questions: Sequence[QuestionRecord], start: int) -> int:
    """Number of consecutive questions from ``start`` that share its section."""
    section = questions[start].section
    end = start
    while end < len(questions) and questions[end].section == section:
        end += 1
    return end - start


def plan(
    questions: Sequence[QuestionRecord],
    student_answer_text: str,
    limits: Optional[PlanningLimits] = None,
    ratio: float = config.TOKENS_PER_CHARACTER,
    output_tokens_per_question: int = config.OUTPUT_TOKENS_PER_QUESTION,
) -> List[Batch]:
    """Plans the evaluation batches for one student.

    A single batch is used when the whole document set fits the input budget
    and the question count fits ``max_questions_per_batch``. Otherwise the
    questions are cut into contiguous chunks; every chunk carries the full
    student text, since answer positions are unknown before grading.

    Raises:
        OversizedQuestionError: If one question plus its expected answer alone
            exceeds ``max_input_tokens``.
    """
    limits = limits or PlanningLimits()
    if not questions:
        return []

    for q in questions:
        own_tokens = _tokens_for(_question_chars(q), ratio)
        if own_tokens > limits.max_input_tokens:
            raise OversizedQuestionError(q.number, q.section, own_tokens, limits.max_input_tokens)

    student_chars = len(student_answer_text)
    total_chars = sum(_question_chars(q) for q in questions) + student_chars
    estimated_total = _tokens_for(total_chars, ratio)

    if estimated_total <= limits.max_input_tokens and len(questions) <= limits.max_questions_per_batch:
        logger.info(f"Planning a single batch: {len(questions)} questions, ~{estimated_total} input tokens.")
        return [Batch(
            index=0,
            questions=tuple(questions),
            student_answer_text=student_answer_text,
            estimated_input_tokens=estimated_total,
            max_output_tokens=min(limits.max_output_tokens, estimate_output_tokens(len(questions))),
        )]

    per_batch_cap = limits.max_questions_per_batch
    if output_tokens_per_question > 0:
        per_batch_cap = max(1, min(per_batch_cap, limits.max_output_tokens // output_tokens_per_question))
    min_batches = math.ceil(len(questions) / per_batch_cap)

    chunks: List[List[QuestionRecord]] = []
    current: List[QuestionRecord] = []
    current_chars = student_chars

    for i, q in enumerate(questions):
        q_chars = _question_chars(q)
        if current:
            full = len(current) >= per_batch_cap
            over_budget = _tokens_for(current_chars + q_chars, ratio) > limits.max_input_tokens
            new_section = q.section != current[-1].section
            keep_section_whole = False
            if new_section and not full:
                run = _section_run_length(questions, i)
                room = per_batch_cap - len(current)
                remaining = len(questions) - i
                batches_left = min_batches - len(chunks) - 1
                keep_section_whole = (
                    room < run <= per_batch_cap
                    and math.ceil(remaining / per_batch_cap) <= batches_left
                )
            if full or over_budget or keep_section_whole:
                chunks.append(current)
                current, current_chars = [], student_chars
        if not current and _tokens_for(student_chars + q_chars, ratio) > limits.max_input_tokens:
            logger.warning(
                f"Question {q.number} ({q.section}) together with the student text exceeds the input budget; "
                f"it will be sent in its own batch."
            )
        current.append(q)
        current_chars += q_chars
    if current:
        chunks.append(current)

    batches = [
        Batch(
            index=idx,
            questions=tuple(chunk),
            student_answer_text=student_answer_text,
            estimated_input_tokens=_tokens_for(student_chars + sum(_question_chars(q) for q in chunk), ratio),
            max_output_tokens=min(limits.max_output_tokens, estimate_output_tokens(len(chunk))),
        )
        for idx, chunk in enumerate(chunks)
    ]
    logger.info(
        f"Planned {len(batches)} batches for {len(questions)} questions "
        f"(~{estimated_total} input tokens, limit {limits.max_input_tokens}, "
        f"max {per_batch_cap} questions per batch)."
    )
    return batches
