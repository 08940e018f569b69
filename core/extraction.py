"""Turns page images into page-tagged text with a vision-capable LLM."""

import base64
import binascii
import re
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Protocol, Sequence, Tuple, Union

import requests

import config
from utils.logger import get_logger
from utils.error_handler import BaseGraderException, ExtractionError

logger = get_logger()

PageSource = Union[bytes, str]

DOCUMENT_TYPES = ("question", "answer", "student-sheet")

_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)

BASE_SYSTEM_PROMPT = (
    "You are an expert at extracting text from educational documents with perfect accuracy. "
    "Extract every detail visible in the page exactly as it appears, keeping question numbers, "
    "section headings and marks allocation on their own lines."
)

DOCUMENT_INSTRUCTIONS = {
    "student-sheet": (
        " For student answer sheets, extract MCQ selections exactly as marked (circles, ovals or "
        "checkmarks around options A, B, C, D), handwritten content, crossed-out and partial "
        "answers, question numbers and any annotations."
    ),
    "answer": (
        " For answer keys, extract every question number, all answer options, the correct answers, "
        "step-by-step solutions, marking schemes and point distributions."
    ),
    "question": (
        " For question papers, extract every question with its complete structure, all answer "
        "options, instructions, section headings and marks allocation."
    ),
}

FORMAT_INSTRUCTIONS = (
    " Convert mathematical expressions to LaTeX using $$ delimiters. Describe diagrams in text or "
    "as ```mermaid blocks when their structure is fully visible. Mark anything illegible as "
    "[UNCLEAR] but still attempt to extract it. Return only the extracted text."
)

# Responses that mean the model did not transcribe the page
REFUSAL_PREFIXES = (
    "i'm unable to",
    "i am unable to",
    "i cannot",
    "i can't",
    "i'm sorry",
    "i am sorry",
    "sorry, i",
    "unfortunately, i",
    "as an ai",
)


class VisionClient(Protocol):
    def extract_page_text(self, image_bytes: bytes, mime_type: str, system_prompt: str, prompt: str,
                          timeout: float = ...) -> str:
        ...


def page_header(page_number: int) -> str:
    return f"=== PAGE {page_number} ==="


def guess_mime_type(data: bytes) -> str:
    """Sniffs the image type from its magic bytes, defaulting to PNG."""
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def looks_like_refusal(text: str) -> bool:
    """True when the model answered with an apology or placeholder instead of page text."""
    lowered = text.strip().lower()
    if not lowered:
        return True
    return lowered.startswith(REFUSAL_PREFIXES)


def build_prompts(document_type: str) -> Tuple[str, str]:
    """Returns (system_prompt, user_prompt) for the given document type."""
    if document_type not in DOCUMENT_INSTRUCTIONS:
        raise ValueError(f"Unknown document type '{document_type}'. Expected one of: {', '.join(DOCUMENT_TYPES)}")
    system_prompt = BASE_SYSTEM_PROMPT + DOCUMENT_INSTRUCTIONS[document_type] + FORMAT_INSTRUCTIONS
    user_prompt = (
        f"Extract ALL text and details from this {document_type} image exactly as they appear, "
        "including question numbers, marks and any student responses."
    )
    return system_prompt, user_prompt


class TextExtractor:
    """Extracts text from ordered page images, one LLM call per page."""

    def __init__(
        self,
        client: VisionClient,
        max_concurrency: int = config.EXTRACTION_MAX_CONCURRENCY,
        download_timeout: float = config.IMAGE_DOWNLOAD_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.client = client
        self.max_concurrency = max(1, max_concurrency)
        self.download_timeout = download_timeout
        self.session = session or requests.Session()

    def load_page(self, source: PageSource) -> Tuple[bytes, str]:
        """Resolves one page source to (image bytes, mime type).

        Accepts raw bytes, a ``data:image/...;base64,`` URL, an http(s) URL or a
        bare base64 string.

        Raises:
            ExtractionError: If the page cannot be downloaded or decoded.
        """
        if isinstance(source, (bytes, bytearray)):
            data = bytes(source)
            return data, guess_mime_type(data)

        source = source.strip()
        match = _DATA_URL.match(source)
        if match:
            return self._decode_base64(match.group(2)), match.group(1)

        if source.startswith(("http://", "https://")):
            try:
                response = self.session.get(source, timeout=self.download_timeout)
                response.raise_for_status()
            except requests.RequestException as e:
                raise ExtractionError(f"Failed to download image {source}: {e}") from e
            content_type = response.headers.get("Content-Type", "").split(";")[0].strip()
            data = response.content
            return data, content_type if content_type.startswith("image/") else guess_mime_type(data)

        data = self._decode_base64(source)
        return data, guess_mime_type(data)

    @staticmethod
    def _decode_base64(value: str) -> bytes:
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ExtractionError(f"Page is not valid base64 image data: {e}") from e

    def _extract_page(self, page_number: int, source: PageSource, system_prompt: str, prompt: str) -> Tuple[str, bool]:
        """Returns the tagged page block and whether it holds extracted text."""
        header = page_header(page_number)
        try:
            image_bytes, mime_type = self.load_page(source)
            text = self.client.extract_page_text(image_bytes, mime_type, system_prompt, prompt)
            if looks_like_refusal(text):
                raise ExtractionError(f"Model returned no usable text: {text.strip()[:100]!r}")
        except BaseGraderException as e:
            logger.error(f"Error processing page {page_number}: {e}", exc_info=config.DEBUG)
            return f"{header}\n\n[Error processing page {page_number}: {e}]", False
        logger.debug(f"Page {page_number}: extracted {len(text)} characters.")
        return f"{header}\n\n{text}", True

    def extract(self, pages: Sequence[PageSource], document_type: str) -> str:
        """Extracts all pages concurrently and joins them in page order.

        Raises:
            ExtractionError: If no pages are given or no page yields any text.
        """
        if not pages:
            raise ExtractionError("Text extraction failed: no pages provided.")
        system_prompt, prompt = build_prompts(document_type)
        logger.info(f"Extracting text from {len(pages)} {document_type} page(s)...")

        with ThreadPoolExecutor(max_workers=min(self.max_concurrency, len(pages))) as pool:
            blocks: List[Tuple[str, bool]] = list(pool.map(
                lambda item: self._extract_page(item[0] + 1, item[1], system_prompt, prompt),
                enumerate(pages),
            ))

        succeeded = sum(1 for _, ok in blocks if ok)
        if succeeded == 0:
            raise ExtractionError(f"Text extraction failed: none of the {len(pages)} page(s) yielded any text.")
        if succeeded < len(pages):
            logger.warning(f"Extracted {succeeded} of {len(pages)} {document_type} pages; failed pages are marked inline.")
        else:
            logger.info(f"Extracted text from all {len(pages)} {document_type} pages.")
        return "\n\n".join(block for block, _ in blocks)
