"""Custom exception classes for the application."""

class BaseGraderException(Exception):
    """Base exception for all application-specific errors."""
    pass

class ConfigError(BaseGraderException):
    """Error related to configuration loading or values."""
    pass

class APIError(BaseGraderException):
    """Error interacting with an external API (Gemini, Supabase, image hosts)."""
    def __init__(self, message: str, status_code: int | None = None, service: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.service = service

    def __str__(self) -> str:
        base = super().__str__()
        details = []
        if self.service:
            details.append(f"Service: {self.service}")
        if self.status_code:
            details.append(f"Status Code: {self.status_code}")
        if details:
            return f"{base} ({', '.join(details)})"
        return base

class TransientAPIError(APIError):
    """Timeout, rate limit or server-side failure that is safe to retry."""
    pass

class ExtractionError(BaseGraderException):
    """No usable text could be extracted from the page images."""
    pass

class AlignmentError(BaseGraderException):
    """No question could be detected in the source documents."""
    pass

class OversizedQuestionError(BaseGraderException):
    """A single question does not fit in the input token budget."""
    def __init__(self, question_number: int, section: str, estimated_tokens: int, max_input_tokens: int):
        super().__init__(
            f"Question {question_number} ({section}) needs ~{estimated_tokens} input tokens, "
            f"over the limit of {max_input_tokens}."
        )
        self.question_number = question_number
        self.section = section
        self.estimated_tokens = estimated_tokens
        self.max_input_tokens = max_input_tokens

class SchemaError(BaseGraderException):
    """The model response is not parseable JSON or does not match the answer schema."""
    pass

class CoverageError(BaseGraderException):
    """The model graded fewer questions than the batch asked for."""
    def __init__(self, expected: int, received: int):
        super().__init__(f"Expected {expected} graded answers, received {received}.")
        self.expected = expected
        self.received = received

class EvaluationError(BaseGraderException):
    """A batch exhausted its retry budget, so the student's evaluation failed."""
    def __init__(self, message: str, batch_index: int | None = None):
        super().__init__(message)
        self.batch_index = batch_index

class PersistenceError(BaseGraderException):
    """The evaluation status could not be written to the database."""
    pass
