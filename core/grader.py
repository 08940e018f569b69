"""Core logic orchestrating alignment, batching, LLM grading and persistence for one student."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional, Protocol

import config
from core.aligner import QuestionAligner
from core.models import (Batch, EvaluationResult, GradedAnswer, GradingStatus, PlanningLimits,
                         ProgressEvent, ProgressKind, StudentInfo)
from core.planner import plan
from core.requester import EvaluationRequester
from core.validator import merge, validate
from utils.error_handler import (APIError, ConfigError, CoverageError, EvaluationError,
                                 ExtractionError, SchemaError)
from utils.logger import get_logger

logger = get_logger()

ProgressCallback = Callable[[ProgressEvent], None]


class EvaluationStore(Protocol):
    """Persistence boundary: an idempotent upsert keyed by (test_id, student_id)."""

    def upsert_status(self, test_id: str, student_id: str, status: GradingStatus, score=None,
                      feedback=None, evaluation_result=None, answer_sheet_id=None) -> None:
        ...


class AnswerSheetGrader:
    """Grades one student's answer sheet against a question paper and answer key.

    Batches run concurrently (bounded by ``max_concurrency``) and are merged by
    their planned index. The result is all-or-nothing: if any batch exhausts
    its retries the evaluation fails, after the other in-flight batches finish.
    """

    def __init__(
        self,
        requester: EvaluationRequester,
        store: Optional[EvaluationStore] = None,
        limits: Optional[PlanningLimits] = None,
        max_concurrency: int = config.MAX_CONCURRENT_BATCHES,
        schema_retries: int = config.SCHEMA_RETRIES,
        coverage_retries: int = config.COVERAGE_RETRIES,
        aligner: Optional[QuestionAligner] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.requester = requester
        self.store = store
        self.limits = limits or PlanningLimits()
        self.max_concurrency = max(1, max_concurrency)
        self.schema_retries = schema_retries
        self.coverage_retries = coverage_retries
        self.aligner = aligner or QuestionAligner()
        self.on_progress = on_progress
        logger.info(
            "AnswerSheetGrader initialized (concurrency=%s, persistence=%s)",
            self.max_concurrency, bool(store)
        )

    def _emit(self, kind: ProgressKind, batch: Batch, total: int, message: Optional[str] = None) -> None:
        if self.on_progress is None:
            return
        # Called from worker threads; subscribers must not block for long
        event = ProgressEvent(kind=kind, batch_index=batch.index, total_batches=total, message=message)
        try:
            self.on_progress(event)
        except Exception as e:
            logger.error(f"Progress callback failed on {kind.value} for batch {batch.index + 1}: {e}", exc_info=config.DEBUG)

    def _evaluate_batch(self, batch: Batch, total: int, student_info: StudentInfo) -> List[GradedAnswer]:
        """Requests and validates one batch, retrying schema and coverage failures."""
        schema_failures = 0
        coverage_failures = 0
        self._emit(ProgressKind.BATCH_STARTED, batch, total)
        while True:
            try:
                raw = self.requester.evaluate(batch, student_info)
                return validate(raw, batch.questions)
            except SchemaError as e:
                schema_failures += 1
                if schema_failures > self.schema_retries:
                    raise EvaluationError(
                        f"Batch {batch.index + 1} returned malformed JSON {schema_failures} times: {e}",
                        batch_index=batch.index,
                    ) from e
                logger.warning(f"Batch {batch.index + 1}: invalid response ({e}); retrying.")
                self._emit(ProgressKind.BATCH_RETRY, batch, total, str(e))
            except CoverageError as e:
                coverage_failures += 1
                if coverage_failures > self.coverage_retries:
                    raise EvaluationError(
                        f"Batch {batch.index + 1} did not grade every question: {e}",
                        batch_index=batch.index,
                    ) from e
                logger.warning(f"Batch {batch.index + 1}: incomplete response ({e}); retrying.")
                self._emit(ProgressKind.BATCH_RETRY, batch, total, str(e))
            except APIError as e:
                # Transient failures were already retried with backoff by the client
                raise EvaluationError(f"Batch {batch.index + 1} failed: {e}", batch_index=batch.index) from e

    def evaluate(
        self,
        question_paper: str,
        answer_key: str,
        student_sheet: str,
        student_info: Optional[StudentInfo] = None,
    ) -> EvaluationResult:
        """Runs the full pipeline and returns the merged EvaluationResult.

        Raises:
            ExtractionError: If a document has no extracted text.
            AlignmentError: If no question is detected.
            OversizedQuestionError: If a question cannot fit the token budget.
            EvaluationError: If any batch exhausts its retry budget.
        """
        student_info = student_info or StudentInfo()
        if not (answer_key or "").strip():
            raise ExtractionError("Answer key not found or text extraction failed")
        if not (student_sheet or "").strip():
            raise ExtractionError("Text extraction failed for the answer sheet")

        logger.info(f"Starting evaluation for student: {student_info.name}")
        logger.debug(
            f"Input lengths - question paper: {len(question_paper or '')}, "
            f"answer key: {len(answer_key)}, student sheet: {len(student_sheet)}"
        )
        questions = self.aligner.align(question_paper, answer_key)
        batches = plan(questions, student_sheet, self.limits)
        total = len(batches)

        results: Dict[int, List[GradedAnswer]] = {}
        failures: Dict[int, EvaluationError] = {}
        with ThreadPoolExecutor(max_workers=min(self.max_concurrency, total)) as pool:
            futures = {pool.submit(self._evaluate_batch, batch, total, student_info): batch for batch in batches}
            for future in as_completed(futures):
                batch = futures[future]
                try:
                    results[batch.index] = future.result()
                except EvaluationError as e:
                    logger.error(str(e), exc_info=config.DEBUG)
                    failures[batch.index] = e
                    self._emit(ProgressKind.BATCH_FAILED, batch, total, str(e))
                    continue
                logger.info(f"Batch {batch.index + 1}/{total} completed ({len(results[batch.index])} answers).")
                self._emit(ProgressKind.BATCH_COMPLETED, batch, total)

        if failures:
            logger.error(
                f"Evaluation for {student_info.name} failed: {len(failures)} of {total} batches failed; "
                f"discarding {len(results)} completed batches."
            )
            raise failures[min(failures)]

        result = merge(results, student_info)
        earned, possible = result.total_score()
        logger.info(
            f"Evaluation complete for {student_info.name}: {result.total_questions_detected} questions, "
            f"score {earned:g}/{possible:g}."
        )
        return result

    def grade_student(
        self,
        test_id: str,
        student_id: str,
        question_paper: str,
        answer_key: str,
        student_sheet: str,
        student_info: Optional[StudentInfo] = None,
        answer_sheet_id: Optional[str] = None,
    ) -> EvaluationResult:
        """Evaluates one student and persists either the complete result or an explicit failure."""
        if self.store is None:
            raise ConfigError("No evaluation store configured; cannot persist grading status.")

        self.store.upsert_status(test_id, student_id, GradingStatus.PROCESSING, answer_sheet_id=answer_sheet_id)
        try:
            result = self.evaluate(question_paper, answer_key, student_sheet, student_info)
        except Exception as e:
            logger.error(f"Evaluation failed for student {student_id} on test {test_id}: {e}", exc_info=config.DEBUG)
            self.store.upsert_status(
                test_id, student_id, GradingStatus.FAILED,
                feedback=str(e) or type(e).__name__, answer_sheet_id=answer_sheet_id,
            )
            raise

        earned, possible = result.total_score()
        self.store.upsert_status(
            test_id, student_id, GradingStatus.COMPLETED,
            score=earned,
            feedback=f"Scored {earned:g} out of {possible:g}",
            evaluation_result=result.to_json_dict(),
            answer_sheet_id=answer_sheet_id,
        )
        return result
