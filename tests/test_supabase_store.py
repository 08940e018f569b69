"""Unit tests for the Supabase grading-status store."""

import unittest
from unittest.mock import Mock

import requests

from core.models import GradingStatus
from services.supabase_store import SupabaseEvaluationStore
from utils.error_handler import ConfigError, PersistenceError, TransientAPIError


def response(status_code, text=""):
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_response.ok = status_code < 400
    mock_response.text = text
    return mock_response


class TestSupabaseEvaluationStore(unittest.TestCase):
    """Test cases for SupabaseEvaluationStore."""

    def setUp(self):
        self.session = Mock()
        self.session.headers = {}
        self.session.post.return_value = response(201)
        self.store = SupabaseEvaluationStore(
            url="https://example.supabase.co/",
            api_key="service-key",
            session=self.session,
        )

    def test_initialization_sets_headers_and_endpoint(self):
        self.assertEqual(self.store.endpoint, "https://example.supabase.co/rest/v1/auto_grade_status")
        self.assertEqual(self.session.headers["apikey"], "service-key")
        self.assertEqual(self.session.headers["Authorization"], "Bearer service-key")
        self.assertIn("resolution=merge-duplicates", self.session.headers["Prefer"])

    def test_initialization_without_credentials_fails(self):
        with self.assertRaises(ConfigError):
            SupabaseEvaluationStore(url=None, api_key="key", session=self.session)
        with self.assertRaises(ConfigError):
            SupabaseEvaluationStore(url="https://example.supabase.co", api_key="", session=self.session)

    def test_upsert_completed_row(self):
        self.store.upsert_status(
            "test-1", "student-1", GradingStatus.COMPLETED,
            score=44.5, feedback="Scored 44.5 out of 45", evaluation_result={"answers": []},
            answer_sheet_id="sheet-1",
        )

        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], self.store.endpoint)
        self.assertEqual(kwargs["params"], {"on_conflict": "student_id,test_id"})
        row = kwargs["json"]
        self.assertEqual(row["status"], "completed")
        self.assertEqual(row["score"], 44.5)
        self.assertEqual(row["feedback"], "Scored 44.5 out of 45")
        self.assertEqual(row["evaluation_result"], {"answers": []})
        self.assertEqual(row["answer_sheet_id"], "sheet-1")
        self.assertIn("updated_at", row)

    def test_processing_row_clears_previous_result(self):
        self.store.upsert_status("test-1", "student-1", GradingStatus.PROCESSING)

        row = self.session.post.call_args.kwargs["json"]
        self.assertEqual(row["status"], "processing")
        self.assertIsNone(row["evaluation_result"])
        self.assertIsNone(row["score"])
        self.assertNotIn("answer_sheet_id", row)

    def test_status_accepts_plain_string(self):
        self.store.upsert_status("test-1", "student-1", "failed", feedback="boom")
        self.assertEqual(self.session.post.call_args.kwargs["json"]["status"], "failed")

    def test_server_error_is_retried(self):
        self.session.post.side_effect = [response(503, "busy"), response(429, "slow down"), response(201)]

        self.store.upsert_status("test-1", "student-1", GradingStatus.COMPLETED)

        self.assertEqual(self.session.post.call_count, 3)

    def test_connection_errors_exhaust_retries(self):
        self.session.post.side_effect = requests.ConnectionError("unreachable")

        with self.assertRaises(TransientAPIError):
            self.store.upsert_status("test-1", "student-1", GradingStatus.COMPLETED)

        self.assertEqual(self.session.post.call_count, 5)

    def test_client_error_is_not_retried(self):
        self.session.post.return_value = response(400, '{"message": "column does not exist"}')

        with self.assertRaises(PersistenceError):
            self.store.upsert_status("test-1", "student-1", GradingStatus.COMPLETED)

        self.assertEqual(self.session.post.call_count, 1)


if __name__ == "__main__":
    unittest.main()
