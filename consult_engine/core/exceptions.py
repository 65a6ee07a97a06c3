"""
Consult engine exception hierarchy.

All application-specific exceptions inherit from ConsultEngineError so a
caller can render any failure from one place. Every error carries the HTTP
status and backend body when one exists.
"""

from datetime import UTC, datetime


class ConsultEngineError(Exception):
    """Base exception for all consult engine errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred",
        code: str = "CONSULT_ENGINE_ERROR",
        status_code: int | None = None,
        body: str = "",
    ) -> None:
        self.detail = detail
        self.code = code
        self.status_code = status_code
        self.body = body
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)


class ValidationError(ConsultEngineError):
    """Raised when a submission input is unusable (missing name, empty audio)."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail=detail, code="VALIDATION_ERROR")


class UnauthorizedError(ConsultEngineError):
    """Raised on HTTP 401 or when no bearer credential is available.

    The caller is expected to force re-authentication.
    """

    def __init__(
        self, detail: str = "Session expired, please log in again", body: str = ""
    ) -> None:
        super().__init__(detail=detail, code="UNAUTHORIZED", status_code=401, body=body)


class NetworkError(ConsultEngineError):
    """Raised when the backend cannot be reached at all.

    Categories: "connection", "timeout", "network".
    """

    def __init__(self, detail: str, category: str = "network") -> None:
        self.category = category
        super().__init__(detail=detail, code="NETWORK_ERROR")


class TransferError(ConsultEngineError):
    """Raised when the audio upload is rejected."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(
            detail=f"Audio upload failed ({status_code}): {body or 'no details'}",
            code="TRANSFER_ERROR",
            status_code=status_code,
            body=body,
        )


class RegistrationError(ConsultEngineError):
    """Raised when the backend refuses to create the consultation record."""

    def __init__(self, status_code: int | None, body: str = "") -> None:
        super().__init__(
            detail=f"Consultation could not be created ({status_code}): {body or 'no details'}",
            code="REGISTRATION_ERROR",
            status_code=status_code,
            body=body,
        )


class FinalizeError(ConsultEngineError):
    """Base class for terminal finalize failures."""


class FinalizeBackendError(FinalizeError):
    """Raised when finalize answers with a non-pending, non-success status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(
            detail=f"Finalize error {status_code}: {body}",
            code="FINALIZE_BACKEND_ERROR",
            status_code=status_code,
            body=body,
        )


class FinalizeTimeoutError(FinalizeError):
    """Raised when the backend is still processing once the deadline passes.

    Also raised for a cancelled attempt; the backend job state is unknown in
    both cases. ``job_id`` is None when the attempt was cancelled before
    registration.
    """

    def __init__(
        self, job_id: str | None, deadline: float, elapsed: float, cancelled: bool = False
    ) -> None:
        self.job_id = job_id
        self.deadline = deadline
        self.elapsed = elapsed
        self.cancelled = cancelled
        if cancelled and job_id is None:
            detail = f"Submission was cancelled after {elapsed:.1f}s, before processing began"
        elif cancelled:
            detail = f"Processing of consultation {job_id} was cancelled after {elapsed:.1f}s"
        else:
            detail = f"Consultation {job_id} was not processed within {deadline:g}s"
        super().__init__(detail=detail, code="FINALIZE_TIMEOUT")


class FinalizeMalformedBodyError(FinalizeError):
    """Raised in strict mode when a successful finalize body cannot be parsed."""

    def __init__(self, job_id: str, status_code: int, body: str = "") -> None:
        self.job_id = job_id
        super().__init__(
            detail=f"Finalize response for consultation {job_id} is not valid JSON",
            code="FINALIZE_MALFORMED_BODY",
            status_code=status_code,
            body=body,
        )


class APIRequestError(ConsultEngineError):
    """Raised when a collaborator endpoint (list, delete, pdf...) fails."""

    def __init__(self, operation: str, status_code: int, body: str = "") -> None:
        self.operation = operation
        super().__init__(
            detail=f"{operation} failed ({status_code}): {body or 'no details'}",
            code="API_REQUEST_ERROR",
            status_code=status_code,
            body=body,
        )


class ConsultationNotFoundError(ConsultEngineError):
    """Raised when a consultation ID does not exist."""

    def __init__(self, consult_id: str, body: str = "") -> None:
        super().__init__(
            detail=f"Consultation not found: {consult_id}",
            code="CONSULTATION_NOT_FOUND",
            status_code=404,
            body=body,
        )


class SubmissionInProgressError(ConsultEngineError):
    """Raised when trying to submit while another submission is still running."""

    def __init__(self) -> None:
        super().__init__(
            detail="A submission is already in progress",
            code="SUBMISSION_IN_PROGRESS",
        )


class RecordingAlreadyActiveError(ConsultEngineError):
    """Raised when trying to start a recording while one is already active."""

    def __init__(self) -> None:
        super().__init__(
            detail="A recording is already active",
            code="RECORDING_ALREADY_ACTIVE",
        )


class MicrophoneUnavailableError(ConsultEngineError):
    """Raised when the microphone cannot be opened (no device, no permission)."""

    def __init__(self, detail: str = "Could not access the microphone") -> None:
        super().__init__(detail=detail, code="MICROPHONE_UNAVAILABLE")
