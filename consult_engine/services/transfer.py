"""Transfer client: uploads an audio blob and returns its storage reference."""

import logging

from consult_engine.core.exceptions import TransferError
from consult_engine.core.models import AudioBlob, StorageReference
from consult_engine.core.utils import parse_json_or_none, storage_ref_from_upload
from consult_engine.services.api_client import ConsultsAPIClient
from consult_engine.services.audio.source import check_content_type

logger = logging.getLogger(__name__)


class TransferClient:
    """Sends audio bytes to ``POST /consults/upload``.

    No retry at this layer: a rejected upload is surfaced immediately and
    the caller must not register a consultation for it.
    """

    def __init__(self, api: ConsultsAPIClient) -> None:
        self._api = api

    async def upload(self, blob: AudioBlob) -> StorageReference:
        """Upload ``blob`` and return the backend's base file name for it.

        Raises:
            ValidationError: The blob is not audio or video; nothing is sent.
            TransferError: Non-success status, or a success body from which
                no storage reference can be derived.
        """
        check_content_type(blob.content_type)
        logger.info(
            "Uploading %s audio '%s' (%d bytes, %s)",
            blob.origin,
            blob.filename,
            blob.size,
            blob.content_type,
        )
        resp = await self._api.upload_audio(blob)
        if not resp.is_success:
            logger.error("Upload rejected with %s: %s", resp.status_code, resp.text)
            raise TransferError(resp.status_code, resp.text)

        storage_ref = storage_ref_from_upload(parse_json_or_none(resp.text))
        if not storage_ref:
            logger.error("Upload response carries no file name: %s", resp.text)
            raise TransferError(resp.status_code, "could not determine the uploaded file name")

        logger.info("Uploaded audio stored as %s", storage_ref)
        return storage_ref
