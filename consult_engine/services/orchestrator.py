"""
Submission engine.

Runs one submission attempt end to end: upload the audio, register the
consultation, poll finalize, then materialize the result. The stages are
strictly sequential because each needs the previous one's output. Only one
attempt may be in flight per engine.

The UI is a projector of ``engine.state`` and the ``StateChange``
notifications; it owns no control flow of its own.

Usage::

    async with ConsultsAPIClient() as api:
        engine = SubmissionEngine(api, notify=show_state)
        result = await engine.submit(load_audio_file("visit.m4a"), "Consulta 12/03")
        print(result.details.summary)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from consult_engine.core.exceptions import (
    ConsultEngineError,
    FinalizeTimeoutError,
    SubmissionInProgressError,
    ValidationError,
)
from consult_engine.core.models import (
    AudioBlob,
    ConsultationSummary,
    JobIdentifier,
    StateChange,
    SubmissionAttempt,
    SubmissionResult,
    SubmissionState,
)
from consult_engine.services.api_client import ConsultsAPIClient
from consult_engine.services.finalize import FinalizePolicy, FinalizePoller
from consult_engine.services.materializer import ResultMaterializer
from consult_engine.services.registrar import JobRegistrar
from consult_engine.services.transfer import TransferClient

logger = logging.getLogger(__name__)

DELETE_PROMPT = "Delete this consultation? This cannot be undone."


class SubmissionEngine:
    """Upload -> register -> finalize -> materialize, one attempt at a time.

    Args:
        api: Backend client shared by every stage.
        policy: Finalize polling policy (defaults to settings).
        notify: Async callback receiving every state transition.
        recent_limit: Size of the recent-consultations view.
        clock: Monotonic clock used for the finalize deadline.
        sleep: Sleep coroutine used between finalize polls.
    """

    def __init__(
        self,
        api: ConsultsAPIClient,
        policy: FinalizePolicy | None = None,
        notify: Callable[[StateChange], Awaitable[None]] | None = None,
        recent_limit: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._api = api
        self._transfer = TransferClient(api)
        self._registrar = JobRegistrar(api)
        self._poller = FinalizePoller(api, policy, clock=clock, sleep=sleep)
        self._materializer = ResultMaterializer(api, recent_limit)
        self._notify = notify
        self._state = SubmissionState.idle
        self._attempt: SubmissionAttempt | None = None
        self._last_error: ConsultEngineError | None = None
        self._busy = False
        self._clock = clock
        self._cancel_requested = False

    @property
    def state(self) -> SubmissionState:
        return self._state

    @property
    def attempt(self) -> SubmissionAttempt | None:
        """The running attempt, or the last one once it has ended."""
        return self._attempt

    @property
    def last_error(self) -> ConsultEngineError | None:
        return self._last_error

    @property
    def is_busy(self) -> bool:
        return self._busy

    async def submit(
        self, blob: AudioBlob, display_name: str, deadline: float | None = None
    ) -> SubmissionResult:
        """Run a complete submission attempt for ``blob``.

        Every failure is terminal: a new attempt means a new upload and a
        new registration.

        Raises:
            SubmissionInProgressError: Another attempt is still running.
            ValidationError: ``display_name`` is blank.
            TransferError, RegistrationError, FinalizeError, UnauthorizedError,
            NetworkError: The stage that failed, with status and body.
        """
        if self._busy:
            raise SubmissionInProgressError()
        if not display_name or not display_name.strip():
            raise ValidationError("Enter a name for the consultation first")

        self._busy = True
        attempt = SubmissionAttempt(
            display_name=display_name.strip(),
            deadline_seconds=self._poller.policy.deadline if deadline is None else deadline,
        )
        self._attempt = attempt
        self._last_error = None
        self._cancel_requested = False
        started = self._clock()

        try:
            await self._set_state(SubmissionState.uploading)
            self._raise_if_cancelled(attempt, started)
            attempt.storage_ref = await self._transfer.upload(blob)
            del blob  # Not retained once uploaded

            await self._set_state(SubmissionState.registering)
            self._raise_if_cancelled(attempt, started)
            attempt.job_id = await self._registrar.register(
                attempt.storage_ref, attempt.display_name
            )

            await self._set_state(SubmissionState.polling, attempt.job_id)
            self._raise_if_cancelled(attempt, started)
            details = await self._poller.finalize(
                attempt.job_id,
                attempt.storage_ref,
                attempt.display_name,
                deadline=attempt.deadline_seconds,
            )

            materialized = await self._materializer.after_success(details)
            await self._set_state(SubmissionState.done, attempt.job_id)
        except ConsultEngineError as exc:
            self._last_error = exc
            logger.error("Submission '%s' failed: %s", attempt.display_name, exc.detail)
            await self._set_state(SubmissionState.failed, attempt.job_id, exc.detail)
            raise
        except asyncio.CancelledError:
            self._state = SubmissionState.failed
            raise
        finally:
            self._busy = False

        return SubmissionResult(
            attempt=attempt,
            details=materialized.details,
            recent=materialized.recent,
            refresh_error=materialized.refresh_error,
            details_error=materialized.details_error,
        )

    def cancel(self) -> None:
        """Abandon the running attempt; it fails as a cancelled timeout.

        Takes effect before the next stage's request, or immediately while
        the poller is sleeping between finalize requests.
        """
        if self._busy:
            logger.info("Cancelling submission '%s'", self._attempt.display_name)
            self._cancel_requested = True
            self._poller.cancel()

    def reset(self) -> None:
        """Return to idle after a finished attempt."""
        if self._busy:
            raise SubmissionInProgressError()
        self._state = SubmissionState.idle
        self._attempt = None
        self._last_error = None

    async def recent_consultations(self) -> list[ConsultationSummary]:
        return await self._materializer.refresh_recent()

    async def delete_consultation(
        self, consult_id: JobIdentifier, confirm: Callable[[str], bool]
    ) -> list[ConsultationSummary] | None:
        """Delete a consultation after the user confirms.

        Returns:
            A fresh recent-consultations snapshot, or None when the user
            declined and nothing was deleted.
        """
        if not confirm(DELETE_PROMPT):
            logger.debug("Deletion of consultation %s declined", consult_id)
            return None
        await self._api.delete_consultation(consult_id)
        logger.info("Deleted consultation %s", consult_id)
        return await self._materializer.refresh_recent()

    def _raise_if_cancelled(self, attempt: SubmissionAttempt, started: float) -> None:
        # The poller resets its own flag when finalize starts
        if self._cancel_requested:
            raise FinalizeTimeoutError(
                attempt.job_id,
                attempt.deadline_seconds,
                self._clock() - started,
                cancelled=True,
            )

    async def _set_state(
        self, state: SubmissionState, job_id: JobIdentifier | None = None, detail: str = ""
    ) -> None:
        self._state = state
        logger.debug("Submission state -> %s", state)
        if self._notify is None:
            return
        try:
            await self._notify(StateChange(state=state, job_id=job_id, detail=detail))
        except Exception:
            logger.warning("Notify callback failed for state %s (non-fatal)", state)
