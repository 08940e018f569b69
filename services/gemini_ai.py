"""Wrapper for Google Gemini API interactions."""

from typing import Optional

# Use the official Google Generative AI library
import google.generativeai as genai
from google.api_core import exceptions as google_api_exceptions

import config
from utils.logger import get_logger
from utils.error_handler import APIError, ConfigError, TransientAPIError
from utils.retry import retry_on_exception

logger = get_logger()

SERVICE_NAME = "Gemini"

# Failures worth another attempt: timeouts, rate limits and server-side errors
RETRYABLE_GEMINI_ERRORS = (
    google_api_exceptions.DeadlineExceeded,
    google_api_exceptions.ResourceExhausted,
    google_api_exceptions.ServiceUnavailable,
    google_api_exceptions.InternalServerError,
)

SAFETY_SETTINGS = {
    genai.types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: genai.types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    genai.types.HarmCategory.HARM_CATEGORY_HATE_SPEECH: genai.types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    genai.types.HarmCategory.HARM_CATEGORY_HARASSMENT: genai.types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
    genai.types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: genai.types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
}


def _translate_error(e: Exception, action: str) -> APIError:
    """Maps SDK and transport exceptions onto the application's API error types."""
    if isinstance(e, RETRYABLE_GEMINI_ERRORS):
        code = getattr(e, "code", None)
        return TransientAPIError(f"Gemini {action} failed temporarily: {e}", status_code=code, service=SERVICE_NAME)
    if isinstance(e, (TimeoutError, ConnectionError)):
        return TransientAPIError(f"Gemini {action} failed: {e}", service=SERVICE_NAME)
    if isinstance(e, google_api_exceptions.PermissionDenied):
        return APIError("Permission denied calling Gemini API. Check API key/permissions.", status_code=403, service=SERVICE_NAME)
    if isinstance(e, google_api_exceptions.InvalidArgument):
        return APIError(f"Invalid request sent to Gemini API: {e}", status_code=400, service=SERVICE_NAME)
    if isinstance(e, google_api_exceptions.GoogleAPIError):
        return APIError(f"Gemini API error during {action}: {e}", service=SERVICE_NAME)
    return APIError(f"Unexpected error during Gemini {action}: {e}", service=SERVICE_NAME)


class GeminiClient:
    """Provides JSON grading and page OCR calls against the Gemini API."""

    def __init__(self, api_key: Optional[str] = config.GEMINI_API_KEY, model_name: str = config.GEMINI_MODEL):
        """Initializes the GeminiClient.

        Args:
            api_key: The Gemini API key. Defaults to the value from config.
            model_name: Gemini model used for both grading and extraction.

        Raises:
            ConfigError: If the API key is not provided or found.
        """
        logger.debug("Initializing GeminiClient...")
        if not api_key:
            logger.critical("Gemini API Key is missing. Check config.py and environment variables.")
            raise ConfigError("GEMINI_API_KEY not found or provided.")
        try:
            genai.configure(api_key=api_key)
            self.model_name = model_name
            logger.info(f"GeminiClient initialized successfully with model: {model_name}")
        except Exception as e:
            logger.critical(f"Failed to configure Gemini API: {e}", exc_info=config.DEBUG)
            raise ConfigError(f"Failed to configure Gemini API: {e}") from e

    @staticmethod
    def _response_text(response) -> str:
        """Returns the first candidate's text, or raises APIError for blocked/empty responses."""
        if not response.candidates:
            try:
                logger.error(f"Gemini response missing candidates. Prompt Feedback: {response.prompt_feedback}")
            except ValueError:
                logger.error("Gemini response missing candidates; prompt feedback unavailable.")
            raise APIError("Gemini response was empty or blocked (no candidates).", service=SERVICE_NAME)

        candidate = response.candidates[0]
        if not (candidate.content and candidate.content.parts):
            if getattr(candidate.finish_reason, "name", candidate.finish_reason) == "SAFETY":
                logger.error(f"Generation stopped due to safety. Ratings: {candidate.safety_ratings}")
                raise APIError("Gemini response blocked by safety settings.", service=SERVICE_NAME)
            raise APIError(f"Gemini returned no content (finish reason: {candidate.finish_reason}).", service=SERVICE_NAME)

        return "".join(part.text for part in candidate.content.parts if getattr(part, "text", None))

    @retry_on_exception(exceptions=(TransientAPIError,), max_attempts=config.NETWORK_MAX_ATTEMPTS)
    def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        max_output_tokens: int = 8192,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
    ) -> str:
        """Runs one JSON-mode generation and returns the raw response text.

        The text is not parsed here; the validator owns JSON parsing and repair.

        Raises:
            TransientAPIError: On timeouts, rate limits or server errors (after retries).
            APIError: On permission, request or safety failures.
        """
        logger.info(f"Requesting JSON generation from {self.model_name} (max {max_output_tokens} output tokens)...")
        if config.DEBUG:
            logger.debug(f"User prompt (first 500 chars):\n{user_prompt[:500]}...")
        try:
            model = genai.GenerativeModel(self.model_name, system_instruction=system_prompt)
            response = model.generate_content(
                user_prompt,
                generation_config=genai.types.GenerationConfig(
                    temperature=0.1,
                    max_output_tokens=max_output_tokens,
                    response_mime_type="application/json",
                ),
                safety_settings=SAFETY_SETTINGS,
                request_options={"timeout": timeout},
            )
        except Exception as e:
            error = _translate_error(e, "grading request")
            logger.error(str(error), exc_info=config.DEBUG)
            raise error from e

        text = self._response_text(response)
        logger.info(f"Received Gemini response ({len(text)} chars).")
        return text

    @retry_on_exception(exceptions=(TransientAPIError,), max_attempts=config.NETWORK_MAX_ATTEMPTS)
    def extract_page_text(
        self,
        image_bytes: bytes,
        mime_type: str,
        system_prompt: str,
        prompt: str,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
    ) -> str:
        """Transcribes one page image with the vision model."""
        try:
            model = genai.GenerativeModel(self.model_name, system_instruction=system_prompt)
            response = model.generate_content(
                [prompt, {"mime_type": mime_type, "data": image_bytes}],
                generation_config=genai.types.GenerationConfig(temperature=0.1),
                safety_settings=SAFETY_SETTINGS,
                request_options={"timeout": timeout},
            )
        except Exception as e:
            error = _translate_error(e, "page extraction")
            logger.error(str(error), exc_info=config.DEBUG)
            raise error from e
        return self._response_text(response).strip()
