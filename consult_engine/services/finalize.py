"""
Finalize poller.

Repeatedly asks the backend to finalize a registered consultation until it
reports completion, reports a failure, or the client-side deadline runs out.
Each response is classified into exactly one ``FinalizeOutcome``:

* HTTP 202 -> ``pending``: sleep, then ask again (the only retried case)
* other non-2xx -> ``failed``: stop immediately, no further requests
* 2xx -> ``ready``: parse the consultation details and return them

The loop is a ``tenacity.AsyncRetrying`` that retries on the pending result
only. The deadline is measured against an injectable monotonic clock and
checked before each sleep, so a poll is never started once
``elapsed + next_sleep`` reaches the deadline.

Usage::

    poller = FinalizePoller(api, FinalizePolicy(deadline=240))
    details = await poller.finalize(job_id, storage_ref, "Consulta 12/03")
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

import httpx
from pydantic import ValidationError as PydanticValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_result,
    wait_exponential,
    wait_fixed,
)
from tenacity.wait import wait_base

from consult_engine.core.config import Settings, get_settings
from consult_engine.core.exceptions import (
    FinalizeBackendError,
    FinalizeMalformedBodyError,
    FinalizeTimeoutError,
)
from consult_engine.core.models import (
    ConsultationDetails,
    FinalizeOutcome,
    FinalizeStatus,
    JobIdentifier,
    StorageReference,
)
from consult_engine.core.utils import parse_json_or_none
from consult_engine.services.api_client import ConsultsAPIClient

logger = logging.getLogger(__name__)

PENDING_STATUS = 202


@dataclass(frozen=True)
class FinalizePolicy:
    """Tunable polling policy.

    Attributes:
        deadline: Seconds the client waits for the backend before giving up.
        interval: Sleep after a pending response (first sleep when exponential).
        backoff: "fixed" sleeps ``interval`` every time; "exponential" doubles
            it after each pending response, capped at ``max_interval``.
        max_interval: Upper bound for exponential backoff.
        strict_body: Raise ``FinalizeMalformedBodyError`` for an unreadable
            success body instead of returning empty details.
    """

    deadline: float = 180.0
    interval: float = 4.0
    backoff: Literal["fixed", "exponential"] = "fixed"
    max_interval: float = 16.0
    strict_body: bool = False

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "FinalizePolicy":
        settings = settings or get_settings()
        return cls(
            deadline=settings.finalize_deadline_seconds,
            interval=settings.finalize_interval_seconds,
            backoff=settings.finalize_backoff,
            max_interval=settings.finalize_max_interval_seconds,
            strict_body=settings.strict_finalize_body,
        )

    def wait_strategy(self) -> wait_base:
        if self.backoff == "exponential":
            return wait_exponential(
                multiplier=self.interval, min=self.interval, max=self.max_interval
            )
        return wait_fixed(self.interval)


class _PollCancelled(Exception):
    """Internal signal: ``cancel()`` was called while polling."""


class FinalizePoller:
    """Drives the finalize request until a terminal outcome or the deadline.

    Args:
        api: Backend client.
        policy: Polling policy (defaults to the settings-derived one).
        clock: Monotonic time source in seconds.
        sleep: Coroutine used between attempts. Defaults to a sleep that
            wakes up early when ``cancel()`` is called.
    """

    def __init__(
        self,
        api: ConsultsAPIClient,
        policy: FinalizePolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._api = api
        self._policy = policy or FinalizePolicy.from_settings()
        self._clock = clock
        self._sleep = sleep or self._interruptible_sleep
        self._cancelled = asyncio.Event()

    @property
    def policy(self) -> FinalizePolicy:
        return self._policy

    def cancel(self) -> None:
        """Abandon the current poll; it ends as a cancelled timeout."""
        self._cancelled.set()

    async def finalize(
        self,
        job_id: JobIdentifier,
        storage_ref: StorageReference,
        display_name: str,
        deadline: float | None = None,
    ) -> ConsultationDetails:
        """Poll until the consultation is processed.

        Args:
            job_id: Identifier returned by the registrar; reused for every poll.
            storage_ref: Base file name returned by the upload.
            display_name: Name of the consultation.
            deadline: Overrides ``policy.deadline`` for this call.

        Returns:
            The finished consultation. Transcript and summary may be empty.

        Raises:
            FinalizeBackendError: A non-pending failure status; no further
                request is sent after it.
            FinalizeTimeoutError: Still pending at the deadline, or cancelled.
            FinalizeMalformedBodyError: Unreadable success body in strict mode.
        """
        deadline = self._policy.deadline if deadline is None else deadline
        wait = self._policy.wait_strategy()
        self._cancelled.clear()
        started = self._clock()

        def out_of_time(retry_state: RetryCallState) -> bool:
            if self._cancelled.is_set():
                return True
            elapsed = self._clock() - started
            return elapsed + wait(retry_state) >= deadline

        def log_pending(retry_state: RetryCallState) -> None:
            logger.debug(
                "Consultation %s still processing (poll %d, %.1fs elapsed)",
                job_id,
                retry_state.attempt_number,
                self._clock() - started,
            )

        retrying = AsyncRetrying(
            retry=retry_if_result(lambda outcome: outcome.is_pending),
            wait=wait,
            stop=out_of_time,
            sleep=self._sleep,
            before_sleep=log_pending,
        )

        logger.info("Finalizing consultation %s (deadline %gs)", job_id, deadline)
        try:
            outcome = await retrying(self._attempt, job_id, storage_ref, display_name)
        except (RetryError, _PollCancelled):
            elapsed = self._clock() - started
            cancelled = self._cancelled.is_set()
            logger.error(
                "Finalize of consultation %s %s after %.1fs",
                job_id,
                "cancelled" if cancelled else "timed out",
                elapsed,
            )
            raise FinalizeTimeoutError(job_id, deadline, elapsed, cancelled=cancelled) from None

        polls = retrying.statistics.get("attempt_number", 1)
        if outcome.status is FinalizeStatus.failed:
            logger.error(
                "Finalize of consultation %s failed with %s: %s",
                job_id,
                outcome.status_code,
                outcome.body,
            )
            raise FinalizeBackendError(outcome.status_code, outcome.body)

        logger.info("Consultation %s finalized after %d poll(s)", job_id, polls)
        return outcome.details

    async def _attempt(
        self, job_id: JobIdentifier, storage_ref: StorageReference, display_name: str
    ) -> FinalizeOutcome:
        if self._cancelled.is_set():
            raise _PollCancelled()
        resp = await self._api.finalize_consultation(job_id, storage_ref, display_name)
        return self._classify(resp, job_id, display_name)

    def _classify(
        self, resp: httpx.Response, job_id: JobIdentifier, display_name: str
    ) -> FinalizeOutcome:
        if resp.status_code == PENDING_STATUS:
            return FinalizeOutcome.pending(resp.status_code)
        if not resp.is_success:
            return FinalizeOutcome.failed(resp.status_code, resp.text)
        return FinalizeOutcome.ready(
            self._parse_details(resp, job_id, display_name), resp.status_code
        )

    def _parse_details(
        self, resp: httpx.Response, job_id: JobIdentifier, display_name: str
    ) -> ConsultationDetails:
        data = parse_json_or_none(resp.text)
        if isinstance(data, dict):
            try:
                return ConsultationDetails.model_validate(
                    {"id": job_id, "name": display_name, **data}
                )
            except PydanticValidationError:
                pass

        if self._policy.strict_body:
            raise FinalizeMalformedBodyError(job_id, resp.status_code, resp.text)
        logger.warning(
            "Finalize body for consultation %s is unreadable; continuing with empty details",
            job_id,
        )
        return ConsultationDetails.empty(job_id, display_name)

    async def _interruptible_sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except TimeoutError:
            pass  # Interval elapsed without a cancel
