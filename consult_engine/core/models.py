"""
Domain models shared by the submission pipeline.

Backend payloads (consultation details, list entries) are Pydantic v2
models so field aliases and lenient coercion live in one place. Internal
value objects that never cross the wire are plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from consult_engine.core.exceptions import ConsultEngineError, ValidationError

StorageReference = str
JobIdentifier = str


def _coerce_id(value: Any) -> Any:
    # The backend returns numeric or string ids depending on the endpoint
    if isinstance(value, int | float) and not isinstance(value, bool):
        return str(int(value))
    return value


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------


class AudioOrigin(StrEnum):
    """Where an audio blob came from."""

    upload = "upload"
    microphone = "microphone"


@dataclass(frozen=True)
class AudioBlob:
    """Immutable audio payload handed from an audio source to the uploader."""

    data: bytes
    content_type: str
    origin: AudioOrigin
    filename: str = "audio"

    def __post_init__(self) -> None:
        if not self.data:
            raise ValidationError("Audio is empty")
        if not self.content_type:
            raise ValidationError("Audio content type is missing")

    @property
    def size(self) -> int:
        return len(self.data)


# ---------------------------------------------------------------------------
# Consultations (backend payloads)
# ---------------------------------------------------------------------------


class ConsultationDetails(BaseModel):
    """Finished transcript and summary of one consultation.

    Empty ``transcript`` / ``summary`` are a valid terminal state: the
    backend may finish without producing them.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: JobIdentifier = Field(validation_alias=AliasChoices("id", "Id", "consultaId"))
    display_name: str = Field(
        default="", validation_alias=AliasChoices("display_name", "nombre", "name")
    )
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "fechaCreacion", "createdAt")
    )
    transcript: str = Field(
        default="", validation_alias=AliasChoices("transcript", "transcription")
    )
    summary: str = ""

    normalize_id = field_validator("id", mode="before")(_coerce_id)

    @field_validator("display_name", "transcript", "summary", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("created_at", mode="before")
    @classmethod
    def blank_date_to_none(cls, value: Any) -> Any:
        return None if value == "" else value

    @classmethod
    def empty(cls, consult_id: JobIdentifier, display_name: str = "") -> "ConsultationDetails":
        """Details record with no transcript or summary."""
        return cls(id=consult_id, display_name=display_name)


class ConsultationSummary(BaseModel):
    """One row of the consultations list."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: JobIdentifier = Field(validation_alias=AliasChoices("id", "Id", "consultaId"))
    display_name: str = Field(
        default="", validation_alias=AliasChoices("display_name", "nombre", "name")
    )
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "fechaCreacion", "createdAt")
    )

    normalize_id = field_validator("id", mode="before")(_coerce_id)

    @field_validator("display_name", mode="before")
    @classmethod
    def none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("created_at", mode="before")
    @classmethod
    def blank_date_to_none(cls, value: Any) -> Any:
        return None if value == "" else value


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------


class FinalizeStatus(StrEnum):
    """Disjoint outcomes of a single finalize request."""

    pending = "pending"
    ready = "ready"
    failed = "failed"


@dataclass(frozen=True)
class FinalizeOutcome:
    """Result of one finalize attempt.

    ``pending`` always leads to another attempt or a timeout; ``ready`` and
    ``failed`` are terminal.
    """

    status: FinalizeStatus
    details: ConsultationDetails | None = None
    status_code: int | None = None
    body: str = ""

    @classmethod
    def pending(cls, status_code: int = 202) -> "FinalizeOutcome":
        return cls(FinalizeStatus.pending, status_code=status_code)

    @classmethod
    def ready(cls, details: ConsultationDetails, status_code: int = 200) -> "FinalizeOutcome":
        return cls(FinalizeStatus.ready, details=details, status_code=status_code)

    @classmethod
    def failed(cls, status_code: int, body: str = "") -> "FinalizeOutcome":
        return cls(FinalizeStatus.failed, status_code=status_code, body=body)

    @property
    def is_pending(self) -> bool:
        return self.status is FinalizeStatus.pending


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class SubmissionState(StrEnum):
    """What the engine is doing; the UI projects this and nothing else."""

    idle = "idle"
    uploading = "uploading"
    registering = "registering"
    polling = "polling"
    done = "done"
    failed = "failed"


class StateChange(BaseModel):
    """Notification sent to the engine's ``notify`` callback."""

    state: SubmissionState
    job_id: JobIdentifier | None = None
    detail: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass
class SubmissionAttempt:
    """One upload -> register -> finalize cycle for a single audio capture."""

    display_name: str
    deadline_seconds: float
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    storage_ref: StorageReference | None = None
    job_id: JobIdentifier | None = None


@dataclass
class MaterializedResult:
    """Details shown to the user plus a fresh snapshot of recent consultations.

    ``recent`` is None when the refresh failed; ``refresh_error`` then holds
    the cause. ``details_error`` holds the cause of a failed details fetch,
    in which case ``details`` is the finalize response. The details stay
    valid either way.
    """

    details: ConsultationDetails
    recent: list[ConsultationSummary] | None = None
    refresh_error: ConsultEngineError | None = None
    details_error: ConsultEngineError | None = None


@dataclass
class SubmissionResult:
    """Terminal success of a submission attempt."""

    attempt: SubmissionAttempt
    details: ConsultationDetails
    recent: list[ConsultationSummary] | None = None
    refresh_error: ConsultEngineError | None = None
    details_error: ConsultEngineError | None = None
