"""Result materializer: final details plus a fresh recent-consultations view."""

import logging

from consult_engine.core.config import get_settings
from consult_engine.core.exceptions import ConsultEngineError
from consult_engine.core.models import ConsultationDetails, ConsultationSummary, MaterializedResult
from consult_engine.services.api_client import ConsultsAPIClient

logger = logging.getLogger(__name__)


class ResultMaterializer:
    """Turns a finalized consultation into what the user is shown.

    Both steps are best-effort: a failed details fetch falls back to the
    details returned inline by finalize with the cause in ``details_error``,
    and a failed list refresh leaves ``recent`` unset with the cause in
    ``refresh_error``. Neither invalidates the finished submission, but an
    ``UnauthorizedError`` in either field still means the session is gone.

    Args:
        api: Backend client.
        recent_limit: How many consultations the recent view keeps.
    """

    def __init__(self, api: ConsultsAPIClient, recent_limit: int | None = None) -> None:
        self._api = api
        self._recent_limit = (
            recent_limit if recent_limit is not None else get_settings().recent_consultations_limit
        )

    async def after_success(self, details: ConsultationDetails) -> MaterializedResult:
        final, details_error = await self._fetch_details(details)
        recent: list[ConsultationSummary] | None = None
        refresh_error: ConsultEngineError | None = None
        try:
            recent = await self.refresh_recent()
        except ConsultEngineError as exc:
            logger.warning("Could not refresh recent consultations: %s", exc.detail)
            refresh_error = exc
        return MaterializedResult(
            details=final,
            recent=recent,
            refresh_error=refresh_error,
            details_error=details_error,
        )

    async def refresh_recent(self) -> list[ConsultationSummary]:
        """Re-read the consultation list; never patched in place."""
        consultations = await self._api.list_consultations()
        return consultations[: self._recent_limit]

    async def _fetch_details(
        self, inline: ConsultationDetails
    ) -> tuple[ConsultationDetails, ConsultEngineError | None]:
        try:
            fetched = await self._api.get_details(inline.id)
        except ConsultEngineError as exc:
            logger.warning(
                "Could not fetch details for consultation %s, using finalize result: %s",
                inline.id,
                exc.detail,
            )
            return inline, exc

        # The details endpoint omits fields finalize already returned
        merged = fetched.model_copy(
            update={
                "display_name": fetched.display_name or inline.display_name,
                "created_at": fetched.created_at or inline.created_at,
                "transcript": fetched.transcript or inline.transcript,
                "summary": fetched.summary or inline.summary,
            }
        )
        return merged, None
