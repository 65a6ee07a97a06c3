"""Job registrar: creates the consultation record for an uploaded file."""

import logging

from consult_engine.core.exceptions import RegistrationError, ValidationError
from consult_engine.core.models import JobIdentifier, StorageReference
from consult_engine.core.utils import parse_json_or_none
from consult_engine.services.api_client import ConsultsAPIClient

logger = logging.getLogger(__name__)


class JobRegistrar:
    """Registers a consultation via ``POST /consults``; one call, one job id."""

    def __init__(self, api: ConsultsAPIClient) -> None:
        self._api = api

    async def register(self, storage_ref: StorageReference, display_name: str) -> JobIdentifier:
        """Create the consultation and return its backend id.

        Raises:
            ValidationError: Empty display name or storage reference.
            RegistrationError: Non-success status or a body without an id.
                Terminal for the submission attempt.
        """
        if not display_name or not display_name.strip():
            raise ValidationError("Enter a name for the consultation first")
        if not storage_ref:
            raise ValidationError("Nothing has been uploaded for this consultation")

        resp = await self._api.create_consultation(display_name, storage_ref)
        if not resp.is_success:
            logger.error("Consultation creation failed with %s: %s", resp.status_code, resp.text)
            raise RegistrationError(resp.status_code, resp.text)

        data = parse_json_or_none(resp.text)
        job_id = None
        if isinstance(data, dict):
            job_id = data.get("id", data.get("Id"))
        if job_id is None or job_id == "":
            logger.error("Creation response did not return an id: %s", resp.text)
            raise RegistrationError(resp.status_code, "creation response did not return an id")

        logger.info("Registered consultation %s for '%s'", job_id, display_name)
        return str(job_id)
