from __future__ import annotations


class QuizError(Exception):
    """Base class for errors surfaced to the user as a short message."""

    status_code: int = 500
    error_code: str = "quiz_error"
    default_message: str = "quiz request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(QuizError):
    status_code = 500
    error_code = "configuration_error"
    default_message = "LLM_API_KEY is not configured"


class RateLimited(QuizError):
    status_code = 429
    error_code = "rate_limited"
    default_message = "Rate limit exceeded. Please try again later."


class PaymentRequired(QuizError):
    status_code = 402
    error_code = "payment_required"
    default_message = "Payment required. Please add credits to your workspace."


class UpstreamError(QuizError):
    status_code = 502
    error_code = "upstream_error"
    default_message = "Failed to generate quiz. Please try again."

    def __init__(self, message: str | None = None, *, http_status: int | None = None):
        self.http_status = http_status
        super().__init__(message)


class PersistenceError(QuizError):
    status_code = 500
    error_code = "persistence_error"
    default_message = "Failed to save quiz data. Please try again."

    def __init__(self, message: str | None = None, *, stage: str):
        self.stage = stage
        super().__init__(message)


class SelectionIncomplete(QuizError):
    status_code = 400
    error_code = "selection_incomplete"
    default_message = "Please select a skill level, at least one subject and a number of questions"


class InvalidAnswer(QuizError):
    status_code = 400
    error_code = "invalid_answer"
    default_message = "answer must be one of A, B, C, D"


class InvalidSessionState(QuizError):
    status_code = 409
    error_code = "invalid_session_state"
    default_message = "operation not allowed in the current quiz state"


class SessionNotFound(QuizError):
    status_code = 404
    error_code = "session_not_found"
    default_message = "quiz session not found or expired"


class AttemptNotFound(QuizError):
    status_code = 404
    error_code = "attempt_not_found"
    default_message = "quiz attempt not found"


class AttemptAlreadySubmitted(QuizError):
    status_code = 409
    error_code = "attempt_already_submitted"
    default_message = "quiz attempt was already submitted"
