"""Tests for page-image text extraction."""

import base64
import threading
from unittest.mock import Mock

import pytest
import requests

from core.extraction import TextExtractor, build_prompts, guess_mime_type, looks_like_refusal
from utils.error_handler import APIError, ExtractionError

PNG = b"\x89PNG\r\n\x1a\nfake-png"
JPEG = b"\xff\xd8\xff\xe0fake-jpeg"


class FakeVisionClient:
    """Returns a canned transcription per image payload."""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []
        self._lock = threading.Lock()

    def extract_page_text(self, image_bytes, mime_type, system_prompt, prompt, timeout=120):
        with self._lock:
            self.calls.append({"data": image_bytes, "mime_type": mime_type, "system_prompt": system_prompt})
        result = self.pages[image_bytes]
        if isinstance(result, Exception):
            raise result
        return result


def test_pages_are_tagged_in_order():
    client = FakeVisionClient({b"p1": "1. What is 2 + 2?", b"p2": "2. What is 3 + 3?", b"p3": "3. Define force."})
    text = TextExtractor(client, max_concurrency=3).extract([b"p1", b"p2", b"p3"], "question")

    assert text == (
        "=== PAGE 1 ===\n\n1. What is 2 + 2?\n\n"
        "=== PAGE 2 ===\n\n2. What is 3 + 3?\n\n"
        "=== PAGE 3 ===\n\n3. Define force."
    )


def test_failed_page_is_embedded_inline():
    client = FakeVisionClient({b"p1": "1. Answer", b"p2": APIError("Gemini response blocked by safety settings.")})
    text = TextExtractor(client).extract([b"p1", b"p2"], "student-sheet")

    assert "=== PAGE 1 ===\n\n1. Answer" in text
    assert "=== PAGE 2 ===\n\n[Error processing page 2: Gemini response blocked by safety settings.]" in text


def test_refusal_is_treated_as_page_failure():
    client = FakeVisionClient({b"p1": "I'm unable to read this image.", b"p2": "2. x = 4"})
    text = TextExtractor(client).extract([b"p1", b"p2"], "answer")

    assert "[Error processing page 1: Model returned no usable text" in text
    assert text.endswith("2. x = 4")


def test_all_pages_failing_raises():
    client = FakeVisionClient({b"p1": "", b"p2": "I cannot help with that."})

    with pytest.raises(ExtractionError, match="Text extraction failed"):
        TextExtractor(client).extract([b"p1", b"p2"], "question")


def test_no_pages_raises():
    with pytest.raises(ExtractionError):
        TextExtractor(FakeVisionClient({})).extract([], "question")


def test_unknown_document_type_is_rejected():
    with pytest.raises(ValueError):
        build_prompts("essay")


def test_prompts_follow_document_type():
    student_prompt, _ = build_prompts("student-sheet")
    key_prompt, _ = build_prompts("answer")

    assert "MCQ" in student_prompt
    assert "step-by-step" in key_prompt


class TestLoadPage:
    def setup_method(self):
        self.session = Mock()
        self.extractor = TextExtractor(FakeVisionClient({}), session=self.session)

    def test_raw_bytes(self):
        assert self.extractor.load_page(JPEG) == (JPEG, "image/jpeg")

    def test_data_url(self):
        data_url = "data:image/webp;base64," + base64.b64encode(b"webp-bytes").decode()
        assert self.extractor.load_page(data_url) == (b"webp-bytes", "image/webp")

    def test_bare_base64(self):
        assert self.extractor.load_page(base64.b64encode(PNG).decode()) == (PNG, "image/png")

    def test_invalid_base64(self):
        with pytest.raises(ExtractionError):
            self.extractor.load_page("not base64 !!")

    def test_http_url(self):
        self.session.get.return_value = Mock(content=JPEG, headers={"Content-Type": "image/jpeg; charset=binary"})

        assert self.extractor.load_page("https://cdn.example.com/page1.jpg") == (JPEG, "image/jpeg")
        self.session.get.assert_called_once_with("https://cdn.example.com/page1.jpg", timeout=self.extractor.download_timeout)

    def test_http_url_without_image_content_type(self):
        self.session.get.return_value = Mock(content=PNG, headers={"Content-Type": "application/octet-stream"})
        assert self.extractor.load_page("https://cdn.example.com/page1") == (PNG, "image/png")

    def test_download_failure(self):
        self.session.get.side_effect = requests.ConnectionError("unreachable")

        with pytest.raises(ExtractionError, match="Failed to download"):
            self.extractor.load_page("https://cdn.example.com/page1.jpg")

    def test_download_failure_becomes_page_error(self):
        self.session.get.side_effect = requests.Timeout("slow")
        self.extractor.client = FakeVisionClient({PNG: "1. Text"})

        text = self.extractor.extract(["https://cdn.example.com/p1.png", PNG], "question")

        assert "[Error processing page 1: Failed to download" in text
        assert "=== PAGE 2 ===\n\n1. Text" in text


@pytest.mark.parametrize("data, mime_type", [
    (PNG, "image/png"),
    (JPEG, "image/jpeg"),
    (b"GIF89a...", "image/gif"),
    (b"RIFF\x00\x00\x00\x00WEBPVP8 ", "image/webp"),
])
def test_guess_mime_type(data, mime_type):
    assert guess_mime_type(data) == mime_type


@pytest.mark.parametrize("text, refused", [
    ("", True),
    ("I'm sorry, but I can't transcribe this.", True),
    ("Unfortunately, I cannot read handwriting.", True),
    ("1. I cannot remember the formula", False),
    ("SECTION A\n1. 3.14", False),
])
def test_looks_like_refusal(text, refused):
    assert looks_like_refusal(text) is refused
