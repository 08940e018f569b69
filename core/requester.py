"""Builds grading prompts for a batch and sends them to the LLM."""

import json
import textwrap
from typing import Optional, Protocol

import config
from core.models import Batch, RawModelResponse, StudentInfo
from utils.logger import get_logger

logger = get_logger()

QUESTIONS_HEADER = "QUESTIONS TO GRADE (JSON):"
STUDENT_SHEET_HEADER = "STUDENT ANSWER SHEET (raw extracted text):"
STUDENT_INFO_HEADER = "STUDENT INFORMATION:"

SYSTEM_PROMPT = textwrap.dedent("""\
    You are an AI evaluator grading a student's answer sheet and giving detailed, personalized feedback.

    You receive a list of questions (number, section, question text, expected answer from the answer key,
    maximum marks) and the full raw text extracted from the student's answer sheet. For EACH listed question:
    1. Find the student's answer in the answer sheet by question number and section.
    2. Compare it with the expected answer and award marks between 0 and max_marks.
       - MCQs: full marks for the correct option, 0 otherwise.
       - Objective questions: partial marks for the key points covered.
       - Subjective questions: marks for depth and accuracy.
       - Blank, missing or unrelated answers: 0 marks, remarks "Question not attempted" when missing.
    3. Grade ONLY the listed questions, exactly once each, keeping their question_no and section.

    Respond with a JSON object of the form {"answers": [...]} and nothing else: no prose, no markdown,
    no HTML. Each element must have exactly these keys:
      "question_no": integer question number as given,
      "section": section name as given,
      "question": question text,
      "expected_answer": expected answer from the answer key,
      "answer": the student's answer as you interpreted it,
      "raw_extracted_text": the student's answer exactly as it appears in the extracted text,
      "score": [marks_awarded, max_marks],
      "remarks": why the marks were awarded or deducted, naming specific errors,
      "confidence": number between 0 and 1,
      "concepts": 3-5 key concepts covered by the answer,
      "missing_elements": what the answer is missing (e.g. "Formula", "Negative root"),
      "answer_matches": true if the answer contains the key elements of the expected answer,
      "personalized_feedback": specific, actionable advice for this question,
      "alignment_notes": how the student's answer was located and how well it aligns
    Keep feedback concise but informative.""")


class JSONGenerationClient(Protocol):
    """Anything that can turn a system + user prompt into raw JSON text (GeminiClient in production)."""

    def generate_json(self, system_prompt: str, user_prompt: str, max_output_tokens: int = ...,
                      timeout: float = ...) -> str:
        ...


def build_user_prompt(batch: Batch, student_info: Optional[StudentInfo] = None) -> str:
    """Embeds the batch's questions, the full student text and the student's details."""
    student_info = student_info or StudentInfo()
    question_list = [
        {
            "question_no": q.number,
            "section": q.section,
            "question": q.text,
            "expected_answer": q.expected_answer,
            "max_marks": q.max_marks,
        }
        for q in batch.questions
    ]
    numbers = ", ".join(q.label for q in batch.questions)
    return "\n".join([
        f"Grade ONLY these {len(batch.questions)} questions: {numbers}",
        "",
        QUESTIONS_HEADER,
        json.dumps(question_list, ensure_ascii=False, indent=2),
        "",
        STUDENT_SHEET_HEADER,
        batch.student_answer_text,
        "",
        STUDENT_INFO_HEADER,
        f"- Name: {student_info.name}",
        f"- Roll Number: {student_info.roll_number}",
        f"- Class: {student_info.class_name}",
        f"- Subject: {student_info.subject}",
        "",
        f'Return {{"answers": [...]}} with exactly {len(batch.questions)} entries, in the order listed above.',
    ])


class EvaluationRequester:
    """Sends one batch to the LLM. Performs no clamping or validation of the reply."""

    def __init__(self, client: JSONGenerationClient, timeout: float = config.REQUEST_TIMEOUT_SECONDS):
        self.client = client
        self.timeout = timeout

    def evaluate(self, batch: Batch, student_info: Optional[StudentInfo] = None) -> RawModelResponse:
        logger.info(
            f"Evaluating batch {batch.index + 1} ({len(batch.questions)} questions, "
            f"~{batch.estimated_input_tokens} input tokens)."
        )
        text = self.client.generate_json(
            SYSTEM_PROMPT,
            build_user_prompt(batch, student_info),
            max_output_tokens=batch.max_output_tokens,
            timeout=self.timeout,
        )
        return RawModelResponse(batch_index=batch.index, text=text)
