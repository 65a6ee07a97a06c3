"""End-to-end submission scenarios against the scripted backend."""

import pytest

from consult_engine.core.exceptions import (
    FinalizeTimeoutError,
    RegistrationError,
    ValidationError,
)
from consult_engine.core.models import SubmissionState
from consult_engine.services.audio import RecordingSession
from consult_engine.services.finalize import FinalizePolicy
from consult_engine.services.orchestrator import SubmissionEngine

PENDING = (202, {"status": "processing"})


def _engine(api, clock, **policy):
    return SubmissionEngine(
        api, policy=FinalizePolicy(**policy), recent_limit=5, clock=clock, sleep=clock.sleep
    )


async def test_upload_then_slow_processing(api, backend, clock, webm_blob):
    """2 MB upload, three pending polls, then the finished consultation."""
    backend.finalize = [
        PENDING,
        PENDING,
        PENDING,
        (200, {"id": "c1", "transcription": "t", "summary": "s"}),
    ]
    engine = _engine(api, clock)

    result = await engine.submit(webm_blob, "job1")

    assert (result.details.id, result.details.transcript, result.details.summary) == (
        "c1",
        "t",
        "s",
    )
    assert len(backend.calls("POST", "/consults/upload")) == 1
    assert len(backend.calls("POST", "/consults")) == 1
    assert len(backend.calls("POST", "/consults/finalize")) == 4
    assert len(backend.calls("GET", "/consults/c1/details")) == 1
    assert clock.sleeps == [4.0, 4.0, 4.0]
    assert result.recent[0].id == "c1"
    assert engine.state is SubmissionState.done


async def test_blank_recording_name_never_opens_microphone(api, backend):
    class Mic:
        sample_rate, channels = 16000, 1
        started = False

        def start(self):
            self.started = True

        def stop(self):
            return b""

    mic = Mic()
    session = RecordingSession(mic)

    with pytest.raises(ValidationError):
        session.start("")

    assert mic.started is False
    assert backend.requests == []


async def test_deadline_exceeded(api, backend, clock, webm_blob):
    backend.finalize = [PENDING]
    engine = _engine(api, clock, deadline=8, interval=4)

    with pytest.raises(FinalizeTimeoutError):
        await engine.submit(webm_blob, "job1")

    assert len(backend.calls("POST", "/consults/finalize")) == 2
    assert engine.state is SubmissionState.failed


async def test_registration_failure_never_finalizes(api, backend, clock, webm_blob):
    backend.create = (500, "db down")
    engine = _engine(api, clock)

    with pytest.raises(RegistrationError) as exc_info:
        await engine.submit(webm_blob, "job1")

    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "db down"
    assert backend.calls("POST", "/consults/finalize") == []
    assert engine.state is SubmissionState.failed


async def test_every_stage_uses_the_registered_id(api, backend, clock, webm_blob):
    import json

    backend.create = (201, {"id": 77})
    backend.finalize = [PENDING, (200, {"transcription": "t", "summary": "s"})]
    engine = _engine(api, clock)

    result = await engine.submit(webm_blob, "job1")

    finalize_ids = {
        json.loads(r.content)["consultaId"] for r in backend.calls("POST", "/consults/finalize")
    }
    assert finalize_ids == {"77"}
    assert result.details.id == "77"
    assert len(backend.calls("GET", "/consults/77/details")) == 1
