"""Configuration settings for the GradeLab answer-sheet evaluator."""

import os
import logging
from typing import Final

# Debug flag: 1 = debug mode (verbose logging), 0 = production mode
DEBUG: Final[int] = int(os.environ.get("GRADER_DEBUG", "0"))

# --- File Paths ---
LOG_DIR: Final[str] = os.environ.get("GRADELAB_LOG_DIR", "logs")
LOG_FILE: Final[str] = os.path.join(LOG_DIR, "gradelab.log")

# --- Gemini AI Settings ---

GEMINI_API_KEY: Final[str | None] = os.environ.get("GEMINI_API_KEY")
GEMINI_MODEL: Final[str] = os.environ.get("GEMINI_MODEL", "gemini-1.5-flash-latest")

if not GEMINI_API_KEY:
    # Planning and offline commands work without a key; GeminiClient enforces it.
    logging.warning("GEMINI_API_KEY environment variable not set. LLM calls will be unavailable.")

# Bounded wait per LLM request (seconds)
REQUEST_TIMEOUT_SECONDS: Final[float] = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "120"))

# --- Token Budget Settings ---

# Rough heuristic, not a calibrated tokenizer ratio
TOKENS_PER_CHARACTER: Final[float] = float(os.environ.get("TOKENS_PER_CHARACTER", "0.25"))
MAX_INPUT_TOKENS: Final[int] = int(os.environ.get("MAX_INPUT_TOKENS", "100000"))
MAX_OUTPUT_TOKENS: Final[int] = int(os.environ.get("MAX_OUTPUT_TOKENS", "28000"))
MAX_QUESTIONS_PER_BATCH: Final[int] = int(os.environ.get("MAX_QUESTIONS_PER_BATCH", "20"))
OUTPUT_TOKENS_PER_QUESTION: Final[int] = int(os.environ.get("OUTPUT_TOKENS_PER_QUESTION", "200"))

# Marks assumed for a question when neither its section nor its text declares any
DEFAULT_MAX_MARKS: Final[float] = float(os.environ.get("DEFAULT_MAX_MARKS", "1"))

# --- Concurrency & Retry Settings ---

MAX_CONCURRENT_BATCHES: Final[int] = int(os.environ.get("MAX_CONCURRENT_BATCHES", "3"))
EXTRACTION_MAX_CONCURRENCY: Final[int] = int(os.environ.get("EXTRACTION_MAX_CONCURRENCY", "3"))

# Extra attempts per batch after the first one
SCHEMA_RETRIES: Final[int] = int(os.environ.get("SCHEMA_RETRIES", "2"))
COVERAGE_RETRIES: Final[int] = int(os.environ.get("COVERAGE_RETRIES", "1"))

# Total attempts (including the first) for network calls
NETWORK_MAX_ATTEMPTS: Final[int] = int(os.environ.get("NETWORK_MAX_ATTEMPTS", "3"))
PERSISTENCE_MAX_ATTEMPTS: Final[int] = int(os.environ.get("PERSISTENCE_MAX_ATTEMPTS", "5"))
RETRY_INITIAL_DELAY: Final[float] = 1.0
RETRY_BACKOFF_FACTOR: Final[float] = 2.0

# Timeout for downloading page images given as URLs (seconds)
IMAGE_DOWNLOAD_TIMEOUT: Final[float] = 60.0

# --- Persistence Settings ---

SUPABASE_URL: Final[str | None] = os.environ.get("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY: Final[str | None] = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
EVALUATION_TABLE: Final[str] = os.environ.get("EVALUATION_TABLE", "auto_grade_status")
PERSISTENCE_TIMEOUT_SECONDS: Final[float] = 30.0

# --- Logging Configuration ---
LOG_LEVEL = logging.DEBUG if DEBUG else logging.INFO
# Structured log format: timestamp, level, logger, module.function:line, message
LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(module)s.%(funcName)s:%(lineno)d | %(message)s'

# Basic check
if __name__ == "__main__":
    print(f"Debug Mode: {'On' if DEBUG else 'Off'}")
    print(f"Log Level: {logging.getLevelName(LOG_LEVEL)}")
    print(f"Log File: {LOG_FILE}")
    print(f"Gemini API Key Loaded: {'Yes' if GEMINI_API_KEY else 'No'}")
    print(f"Gemini Model: {GEMINI_MODEL}")
    print(f"Token Ratio: {TOKENS_PER_CHARACTER}")
    print(f"Limits: input={MAX_INPUT_TOKENS} output={MAX_OUTPUT_TOKENS} questions/batch={MAX_QUESTIONS_PER_BATCH}")
    print(f"Concurrent Batches: {MAX_CONCURRENT_BATCHES}")
    print(f"Supabase URL: {SUPABASE_URL or 'Not set'}")
