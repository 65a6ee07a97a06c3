"""Unit tests for the finalize poller."""

import asyncio
import json
import math

import httpx
import pytest

from consult_engine.core.exceptions import (
    FinalizeBackendError,
    FinalizeMalformedBodyError,
    FinalizeTimeoutError,
    NetworkError,
    UnauthorizedError,
)
from consult_engine.services.finalize import FinalizePolicy, FinalizePoller

PENDING = (202, {"status": "processing"})
DONE = (200, {"id": "job1", "transcription": "hello doctor", "summary": "checkup"})


def _poller(api, clock, **policy):
    return FinalizePoller(api, FinalizePolicy(**policy), clock=clock, sleep=clock.sleep)


# ---------------------------------------------------------------------------
# Terminal success
# ---------------------------------------------------------------------------


class TestReady:
    async def test_immediate_success(self, api, backend, clock):
        backend.finalize = [DONE]

        details = await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        assert details.id == "job1"
        assert details.transcript == "hello doctor"
        assert details.summary == "checkup"
        assert len(backend.calls("POST", "/consults/finalize")) == 1
        assert clock.sleeps == []

    async def test_pending_then_success(self, api, backend, clock):
        backend.finalize = [PENDING, PENDING, PENDING, DONE]

        details = await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        assert details.summary == "checkup"
        assert len(backend.calls("POST", "/consults/finalize")) == 4
        assert clock.sleeps == [4.0, 4.0, 4.0]

    async def test_request_carries_job_reference_and_name(self, api, backend, clock):
        await _poller(api, clock).finalize("job1", "audio 1.webm", "Consulta 12/03")

        (request,) = backend.calls("POST", "/consults/finalize")
        assert json.loads(request.content) == {
            "consultaId": "job1",
            "baseFileName": "audio 1.webm",
            "name": "Consulta 12/03",
        }
        assert request.headers["Authorization"] == "Bearer test-token"

    async def test_every_poll_reuses_the_same_job(self, api, backend, clock):
        backend.finalize = [PENDING, PENDING, DONE]

        await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        bodies = [json.loads(r.content) for r in backend.calls("POST", "/consults/finalize")]
        assert {b["consultaId"] for b in bodies} == {"job1"}

    async def test_missing_id_defaults_to_job_id(self, api, backend, clock):
        backend.finalize = [(200, {"transcription": "t", "summary": "s"})]

        details = await _poller(api, clock).finalize("job9", "audio-1.webm", "Consulta")

        assert details.id == "job9"
        assert details.display_name == "Consulta"

    async def test_empty_transcript_is_a_valid_result(self, api, backend, clock):
        backend.finalize = [(200, {"id": "job1", "transcription": None, "summary": ""})]

        details = await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        assert details.transcript == ""
        assert details.summary == ""


# ---------------------------------------------------------------------------
# Terminal failure
# ---------------------------------------------------------------------------


class TestBackendFailure:
    async def test_failure_stops_immediately(self, api, backend, clock):
        backend.finalize = [(500, "transcription engine crashed"), DONE]

        with pytest.raises(FinalizeBackendError) as exc_info:
            await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == "transcription engine crashed"
        assert len(backend.calls("POST", "/consults/finalize")) == 1
        assert clock.sleeps == []

    async def test_failure_after_pending_is_not_retried(self, api, backend, clock):
        backend.finalize = [PENDING, (409, "already finalized"), DONE]

        with pytest.raises(FinalizeBackendError) as exc_info:
            await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        assert exc_info.value.status_code == 409
        assert len(backend.calls("POST", "/consults/finalize")) == 2

    async def test_unauthorized_is_surfaced(self, api, backend, clock):
        backend.finalize = [PENDING, (401, "token expired")]

        with pytest.raises(UnauthorizedError):
            await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

    async def test_network_error_is_not_retried(self, api, backend, clock):
        backend.raise_on["POST /consults/finalize"] = httpx.ConnectError("refused")

        with pytest.raises(NetworkError):
            await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")
        assert len(backend.calls("POST", "/consults/finalize")) == 1


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------


class TestDeadline:
    async def test_two_polls_for_eight_second_deadline(self, api, backend, clock):
        backend.finalize = [PENDING]

        with pytest.raises(FinalizeTimeoutError) as exc_info:
            await _poller(api, clock, deadline=8, interval=4).finalize(
                "job1", "audio-1.webm", "Consulta"
            )

        assert len(backend.calls("POST", "/consults/finalize")) == 2
        assert exc_info.value.job_id == "job1"
        assert exc_info.value.cancelled is False

    @pytest.mark.parametrize(
        "deadline,interval",
        [(8, 4), (10, 4), (12, 4), (180, 4), (240, 4), (5, 2.5), (3, 4)],
    )
    async def test_poll_count_tracks_deadline_over_interval(
        self, api, backend, clock, deadline, interval
    ):
        backend.finalize = [PENDING]

        with pytest.raises(FinalizeTimeoutError):
            await _poller(api, clock, deadline=deadline, interval=interval).finalize(
                "job1", "audio-1.webm", "Consulta"
            )

        polls = len(backend.calls("POST", "/consults/finalize"))
        assert abs(polls - math.floor(deadline / interval)) <= 1

    async def test_per_call_deadline_overrides_policy(self, api, backend, clock):
        backend.finalize = [PENDING]

        with pytest.raises(FinalizeTimeoutError):
            await _poller(api, clock, deadline=180, interval=4).finalize(
                "job1", "audio-1.webm", "Consulta", deadline=12
            )

        assert len(backend.calls("POST", "/consults/finalize")) == 3

    async def test_success_just_before_deadline(self, api, backend, clock):
        backend.finalize = [PENDING, DONE]

        details = await _poller(api, clock, deadline=8, interval=4).finalize(
            "job1", "audio-1.webm", "Consulta"
        )

        assert details.id == "job1"

    async def test_exponential_backoff_is_capped(self, api, backend, clock):
        backend.finalize = [PENDING, PENDING, PENDING, PENDING, DONE]

        await _poller(
            api, clock, deadline=120, interval=4, backoff="exponential", max_interval=16
        ).finalize("job1", "audio-1.webm", "Consulta")

        assert clock.sleeps == [4, 8, 16, 16]

    async def test_exponential_backoff_respects_deadline(self, api, backend, clock):
        backend.finalize = [PENDING]

        with pytest.raises(FinalizeTimeoutError):
            await _poller(
                api, clock, deadline=30, interval=4, backoff="exponential", max_interval=16
            ).finalize("job1", "audio-1.webm", "Consulta")

        # Polls at t=0, 4, 12 and 28; another 16s sleep would pass the deadline
        assert len(backend.calls("POST", "/consults/finalize")) == 4
        assert clock.now < 30


# ---------------------------------------------------------------------------
# Malformed body
# ---------------------------------------------------------------------------


class TestMalformedBody:
    async def test_lenient_by_default(self, api, backend, clock):
        backend.finalize = [(200, "<html>gateway</html>")]

        details = await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        assert details.id == "job1"
        assert details.transcript == ""
        assert details.summary == ""

    async def test_json_array_is_malformed(self, api, backend, clock):
        backend.finalize = [(200, ["unexpected"])]

        details = await _poller(api, clock).finalize("job1", "audio-1.webm", "Consulta")

        assert details.transcript == ""

    async def test_strict_mode_raises(self, api, backend, clock):
        backend.finalize = [PENDING, (200, "not json")]

        with pytest.raises(FinalizeMalformedBodyError) as exc_info:
            await _poller(api, clock, strict_body=True).finalize(
                "job1", "audio-1.webm", "Consulta"
            )

        assert exc_info.value.body == "not json"
        assert len(backend.calls("POST", "/consults/finalize")) == 2


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancel:
    async def test_cancel_during_sleep_ends_as_timeout(self, api, backend):
        backend.finalize = [PENDING]
        poller = FinalizePoller(api, FinalizePolicy(deadline=60, interval=30))

        task = asyncio.create_task(poller.finalize("job1", "audio-1.webm", "Consulta"))
        for _ in range(1000):
            if backend.calls("POST", "/consults/finalize"):
                break
            await asyncio.sleep(0)
        poller.cancel()

        with pytest.raises(FinalizeTimeoutError) as exc_info:
            await asyncio.wait_for(task, timeout=5)

        assert exc_info.value.cancelled is True
        assert len(backend.calls("POST", "/consults/finalize")) == 1


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


def test_policy_from_settings():
    from consult_engine.core.config import Settings

    settings = Settings(
        finalize_deadline_seconds=240,
        finalize_interval_seconds=2,
        finalize_backoff="exponential",
        strict_finalize_body=True,
    )

    policy = FinalizePolicy.from_settings(settings)

    assert policy.deadline == 240
    assert policy.interval == 2
    assert policy.backoff == "exponential"
    assert policy.strict_body is True
