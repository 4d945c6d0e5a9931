"""
User-facing error taxonomy for the exam service.

Every error carries a machine readable ``kind`` and the HTTP status the API
layer renders it with. None of them is fatal to the process.
"""
from fastapi import status


class ExamServiceError(Exception):
    kind = "exam_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Exam request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(ExamServiceError):
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ForbiddenError(ExamServiceError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Submission belongs to another user"


class AttemptLimitError(ExamServiceError):
    kind = "attempt_limit"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Maximum number of attempts reached"


class AlreadyInProgressError(ExamServiceError):
    kind = "already_in_progress"
    status_code = status.HTTP_409_CONFLICT
    default_message = "An attempt for this exam is already in progress"


class AlreadyGradedError(ExamServiceError):
    kind = "already_graded"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This attempt has already been submitted"


class RateLimitedError(ExamServiceError):
    kind = "rate_limited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests, try again later"
