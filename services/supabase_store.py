"""Wrapper for the hosted Postgres (Supabase PostgREST) grading-status table."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

import config
from core.models import GradingStatus
from utils.logger import get_logger
from utils.error_handler import ConfigError, PersistenceError, TransientAPIError
from utils.retry import retry_on_exception

logger = get_logger()

RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class SupabaseEvaluationStore:
    """Upserts one row per (test, student) into the auto-grade status table.

    Writes are idempotent: a retry or a re-run replaces the row (last write wins).
    """

    SERVICE_NAME = "Supabase"
    CONFLICT_TARGET = "student_id,test_id"

    def __init__(
        self,
        url: Optional[str] = config.SUPABASE_URL,
        api_key: Optional[str] = config.SUPABASE_SERVICE_ROLE_KEY,
        table: str = config.EVALUATION_TABLE,
        timeout: float = config.PERSISTENCE_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        if not url or not api_key:
            raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for persistence.")
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{table}"
        self.table = table
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        })
        logger.debug(f"SupabaseEvaluationStore initialized for table '{table}'.")

    @retry_on_exception(exceptions=(TransientAPIError,), max_attempts=config.PERSISTENCE_MAX_ATTEMPTS)
    def upsert_status(
        self,
        test_id: str,
        student_id: str,
        status: GradingStatus,
        score: Optional[float] = None,
        feedback: Optional[str] = None,
        evaluation_result: Optional[Dict[str, Any]] = None,
        answer_sheet_id: Optional[str] = None,
    ) -> None:
        """Writes the status row keyed by (test_id, student_id).

        Raises:
            TransientAPIError: Network failure or 408/429/5xx, after retries.
            PersistenceError: Any other rejected write.
        """
        row: Dict[str, Any] = {
            "test_id": test_id,
            "student_id": student_id,
            "status": GradingStatus(status).value,
            "score": score,
            "feedback": feedback,
            "evaluation_result": evaluation_result,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        # The result columns are always written (null included) so a row is replaced wholesale
        if answer_sheet_id is not None:
            row["answer_sheet_id"] = answer_sheet_id

        logger.info(f"Saving status '{row['status']}' for student {student_id} on test {test_id}...")
        try:
            response = self.session.post(
                self.endpoint,
                params={"on_conflict": self.CONFLICT_TARGET},
                json=row,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientAPIError(f"Could not reach {self.table}: {e}", service=self.SERVICE_NAME) from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientAPIError(
                f"Upsert into {self.table} failed temporarily: {response.text[:200]}",
                status_code=response.status_code,
                service=self.SERVICE_NAME,
            )
        if not response.ok:
            logger.error(f"Upsert into {self.table} rejected: {response.status_code} {response.text[:500]}")
            raise PersistenceError(
                f"Failed to save grading status ({response.status_code}): {response.text[:200]}"
            )
        logger.debug(f"Saved status '{row['status']}' for student {student_id}.")
