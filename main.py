"""Main execution script for the GradeLab answer sheet evaluator."""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

# Load variables from .env before config reads the environment
load_dotenv()

import config
from utils.logger import set_console_level, setup_logger
from utils.error_handler import (AlignmentError, APIError, BaseGraderException, ConfigError,
                                 EvaluationError, ExtractionError, OversizedQuestionError,
                                 PersistenceError)
from services.gemini_ai import GeminiClient
from services.supabase_store import SupabaseEvaluationStore
from core.aligner import QuestionAligner
from core.extraction import DOCUMENT_TYPES, TextExtractor
from core.grader import AnswerSheetGrader
from core.models import PlanningLimits, StudentInfo
from core.planner import plan
from core.requester import EvaluationRequester
import ui.cli as cli

# Initialize logger as early as possible after config is loaded
logger = setup_logger()


def read_text_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def load_page_source(value: str):
    """A local path is read as bytes; anything else (URL, data URL, base64) is passed through."""
    if os.path.isfile(value):
        with open(value, "rb") as f:
            return f.read()
    return value


def limits_from_args(args: argparse.Namespace) -> PlanningLimits:
    return PlanningLimits(
        max_input_tokens=args.max_input_tokens,
        max_output_tokens=args.max_output_tokens,
        max_questions_per_batch=args.max_questions_per_batch,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gradelab",
        description="Evaluate student answer sheets against a question paper and answer key with Gemini AI.",
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show debug logs on the terminal.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only show warnings and errors on the terminal.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extract = subparsers.add_parser("extract", help="Extract page-tagged text from page images.")
    extract.add_argument("--type", dest="document_type", choices=DOCUMENT_TYPES, required=True,
                         help="Kind of document the pages belong to.")
    extract.add_argument("pages", nargs="+", help="Image files, http(s) URLs, data URLs or base64 strings, in page order.")
    extract.add_argument("--output", help="Write the extracted text to this file instead of the terminal.")

    planning = argparse.ArgumentParser(add_help=False)
    planning.add_argument("paper", help="Extracted question paper text file.")
    planning.add_argument("key", help="Extracted answer key text file.")
    planning.add_argument("sheet", help="Extracted student answer sheet text file.")
    planning.add_argument("--max-input-tokens", type=int, default=config.MAX_INPUT_TOKENS)
    planning.add_argument("--max-output-tokens", type=int, default=config.MAX_OUTPUT_TOKENS)
    planning.add_argument("--max-questions-per-batch", type=int, default=config.MAX_QUESTIONS_PER_BATCH)

    subparsers.add_parser("plan", parents=[planning],
                          help="Show the question alignment and batch plan without calling the LLM.")

    evaluate = subparsers.add_parser("evaluate", parents=[planning], help="Grade one student's answer sheet.")
    evaluate.add_argument("--name", default="Unknown Student", help="Student name.")
    evaluate.add_argument("--roll", default="N/A", help="Student roll number.")
    evaluate.add_argument("--class", dest="class_name", default="N/A", help="Student class.")
    evaluate.add_argument("--subject", default="N/A", help="Subject of the test.")
    evaluate.add_argument("--test-id", help="Test ID; with --student-id, persists the result to Supabase.")
    evaluate.add_argument("--student-id", help="Student ID; with --test-id, persists the result to Supabase.")
    evaluate.add_argument("--answer-sheet-id", help="Answer sheet ID stored alongside the result.")
    evaluate.add_argument("--output", help="Write the evaluation result JSON to this file.")
    evaluate.add_argument("--force", action="store_true", help="Overwrite --output without asking.")
    return parser


def run_extract(args: argparse.Namespace) -> None:
    cli.display_step(1, f"Extracting text from {len(args.pages)} {args.document_type} page(s)...")
    extractor = TextExtractor(GeminiClient())
    text = extractor.extract([load_page_source(p) for p in args.pages], args.document_type)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        cli.display_success(f"Extracted text written to {args.output}")
    else:
        cli.display_text(text)


def run_plan(args: argparse.Namespace) -> None:
    cli.display_step(1, "Aligning questions with the answer key...")
    questions = QuestionAligner().align(read_text_file(args.paper), read_text_file(args.key))
    cli.display_alignment(questions)

    cli.display_step(2, "Planning evaluation batches...")
    batches = plan(questions, read_text_file(args.sheet), limits_from_args(args))
    cli.display_plan(batches)


def run_evaluate(args: argparse.Namespace) -> None:
    if bool(args.test_id) != bool(args.student_id):
        raise ConfigError("--test-id and --student-id must be given together.")
    if args.output and os.path.exists(args.output) and not args.force:
        if not cli.confirm_action(f"{args.output} exists. Overwrite?", default=False):
            cli.display_warning("Evaluation skipped; output file left unchanged.")
            return

    question_paper = read_text_file(args.paper)
    answer_key = read_text_file(args.key)
    student_sheet = read_text_file(args.sheet)
    student_info = StudentInfo(
        name=args.name, roll_number=args.roll, class_name=args.class_name, subject=args.subject
    )

    cli.display_step(1, "Initializing services...")
    requester = EvaluationRequester(GeminiClient())
    store = SupabaseEvaluationStore() if args.test_id else None
    if store is None:
        cli.display_warning("No --test-id/--student-id given; the result will not be persisted.")
    grader = AnswerSheetGrader(
        requester,
        store=store,
        limits=limits_from_args(args),
        on_progress=cli.display_progress_event,
    )

    cli.display_step(2, f"Evaluating answer sheet for {student_info.name}...")
    if store is not None:
        result = grader.grade_student(
            args.test_id, args.student_id, question_paper, answer_key, student_sheet,
            student_info, answer_sheet_id=args.answer_sheet_id,
        )
        cli.display_success(f"Result saved for student {args.student_id} on test {args.test_id}.")
    else:
        result = grader.evaluate(question_paper, answer_key, student_sheet, student_info)

    cli.display_step(3, "Evaluation summary")
    cli.display_evaluation_summary(result)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(result.to_json_dict(), f, ensure_ascii=False, indent=2)
        cli.display_success(f"Evaluation result written to {args.output}")


COMMANDS = {
    "extract": run_extract,
    "plan": run_plan,
    "evaluate": run_evaluate,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Parses arguments and runs the selected command. Returns the process exit code."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_console_level(logging.DEBUG)
    elif args.quiet:
        set_console_level(logging.WARNING)
    logger.info(f"Starting GradeLab command: {args.command}")
    cli.display_welcome()

    exit_code = 1
    try:
        COMMANDS[args.command](args)
        exit_code = 0
    except FileNotFoundError as e:
        logger.critical(f"Input file not found: {e}")
        cli.display_error(f"Missing input file: {e}")
    except ConfigError as e:
        logger.critical(f"Configuration Error: {e}", exc_info=config.DEBUG)
        cli.display_error(f"Setup Error: {e}")
    except (ExtractionError, AlignmentError, OversizedQuestionError) as e:
        logger.error(f"Input could not be processed: {e}", exc_info=config.DEBUG)
        cli.display_error(str(e))
    except EvaluationError as e:
        logger.error(f"Evaluation failed: {e}", exc_info=config.DEBUG)
        cli.display_error(f"Evaluation failed: {e}")
    except PersistenceError as e:
        logger.error(f"Persistence Error: {e}", exc_info=config.DEBUG)
        cli.display_error(f"Could not save the result: {e}")
    except APIError as e:
        logger.error(f"API Error: {e}", exc_info=config.DEBUG)
        cli.display_error(f"API Error ({e.service or 'Unknown'}): {e}")
    except BaseGraderException as e:
        logger.error(f"Grading Error: {e}", exc_info=config.DEBUG)
        cli.display_error(str(e))
    except KeyboardInterrupt:
        logger.info("Operation interrupted by user (Ctrl+C).")
        cli.display_warning("Operation interrupted.")
    except Exception as e:
        # Catch-all for unexpected errors
        logger.critical(f"An unexpected error occurred: {e}", exc_info=True)
        cli.display_error(f"An unexpected error occurred: {e}. Check logs for details.")
    finally:
        cli.display_farewell()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
