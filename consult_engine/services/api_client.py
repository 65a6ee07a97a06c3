"""
Asynchronous HTTP client for the consultations backend.

Uses ``httpx.AsyncClient`` so the finalize loop can sleep cooperatively
between requests. Every request carries the bearer token from the injected
``CredentialProvider``.

Transport failures become ``NetworkError`` and HTTP 401 becomes
``UnauthorizedError`` for every endpoint. The three pipeline endpoints
(upload, create, finalize) return the raw response so each stage can
classify the status itself; the collaborator endpoints parse their own
responses.
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from consult_engine.core.config import get_settings
from consult_engine.core.exceptions import (
    APIRequestError,
    ConsultationNotFoundError,
    NetworkError,
    UnauthorizedError,
)
from consult_engine.core.models import (
    AudioBlob,
    ConsultationDetails,
    ConsultationSummary,
    JobIdentifier,
    StorageReference,
)
from consult_engine.core.utils import parse_json_or_none
from consult_engine.services.auth import CredentialProvider, SessionCredentials, StaticCredentials

logger = logging.getLogger(__name__)


class ConsultsAPIClient:
    """Thin async wrapper around httpx for calling the consultations backend.

    Args:
        base_url: Backend root URL (falls back to settings if not provided).
        credentials: Bearer token source. Defaults to ``Settings.api_token``.
        timeout: Per-request timeout in seconds.
        upload_timeout: Timeout used for the audio upload only.
        http_client: Pre-built ``httpx.AsyncClient`` (tests inject a
            ``MockTransport`` here).
    """

    def __init__(
        self,
        base_url: str | None = None,
        credentials: CredentialProvider | None = None,
        timeout: float | None = None,
        upload_timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = (base_url or settings.api_base_url).rstrip("/")
        self._credentials = credentials or StaticCredentials(settings.api_token)
        self._upload_timeout = upload_timeout or settings.upload_timeout
        self._client = http_client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout or settings.request_timeout,
        )

    @property
    def credentials(self) -> CredentialProvider:
        return self._credentials

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ConsultsAPIClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self, method: str, path: str, *, authenticated: bool = True, **kwargs: Any
    ) -> httpx.Response:
        """Execute an HTTP request with auth and transport error handling.

        Args:
            method: HTTP method name ("GET", "POST", "DELETE").
            path: API endpoint path (e.g. "/consults").
            authenticated: Attach the bearer token (login/register do not).
            **kwargs: Passed through to httpx (json, files, timeout, etc.).

        Returns:
            The httpx Response object. Only 401 is turned into an exception;
            other statuses are left for the caller to classify.

        Raises:
            UnauthorizedError: No token is available or the backend said 401.
            NetworkError: On connection, timeout, or other transport errors.
        """
        headers = dict(kwargs.pop("headers", None) or {})
        if authenticated:
            token = self._credentials.get_token()
            if not token:
                raise UnauthorizedError("Not logged in")
            headers["Authorization"] = f"Bearer {token}"

        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.ConnectError:
            raise NetworkError(
                f"Backend at {self._base_url} is not reachable.",
                category="connection",
            ) from None
        except httpx.TimeoutException:
            raise NetworkError(
                f"{method} {path} timed out. The server may be overloaded.",
                category="timeout",
            ) from None
        except httpx.HTTPError as exc:
            raise NetworkError(f"Network error: {exc}", category="network") from None

        if resp.status_code == 401 and authenticated:
            logger.warning("%s %s rejected the session token", method, path)
            self._credentials.invalidate()
            raise UnauthorizedError(body=resp.text)
        return resp

    @staticmethod
    def _checked_json(resp: httpx.Response, operation: str) -> Any:
        if not resp.is_success:
            raise APIRequestError(operation, resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError:
            raise APIRequestError(operation, resp.status_code, "response is not JSON") from None

    # -- pipeline endpoints --

    async def upload_audio(self, blob: AudioBlob) -> httpx.Response:
        files = {"audioFile": (blob.filename, blob.data, blob.content_type)}
        return await self._request(
            "POST", "/consults/upload", files=files, timeout=self._upload_timeout
        )

    async def create_consultation(
        self, display_name: str, storage_ref: StorageReference
    ) -> httpx.Response:
        return await self._request(
            "POST",
            "/consults",
            json={"name": display_name, "baseFileName": storage_ref},
        )

    async def finalize_consultation(
        self, job_id: JobIdentifier, storage_ref: StorageReference, display_name: str
    ) -> httpx.Response:
        return await self._request(
            "POST",
            "/consults/finalize",
            json={"consultaId": job_id, "baseFileName": storage_ref, "name": display_name or ""},
        )

    # -- consultations --

    async def list_consultations(self) -> list[ConsultationSummary]:
        resp = await self._request("GET", "/consults")
        data = self._checked_json(resp, "List consultations")
        if not isinstance(data, list):
            raise APIRequestError("List consultations", resp.status_code, "expected a JSON array")
        try:
            return [ConsultationSummary.model_validate(item) for item in data]
        except PydanticValidationError as exc:
            raise APIRequestError("List consultations", resp.status_code, str(exc)) from None

    async def get_details(self, consult_id: JobIdentifier) -> ConsultationDetails:
        """Fetch transcript and summary of a finished consultation.

        A body that is not a JSON object is read as "no details yet" rather
        than an error.

        Raises:
            ConsultationNotFoundError: The backend answered 404.
            APIRequestError: Any other non-success status.
        """
        resp = await self._request("GET", f"/consults/{consult_id}/details")
        if resp.status_code == 404:
            raise ConsultationNotFoundError(consult_id, body=resp.text)
        if not resp.is_success:
            raise APIRequestError("Fetch details", resp.status_code, resp.text)

        data = parse_json_or_none(resp.text)
        if not isinstance(data, dict):
            logger.warning("Details for consultation %s are not a JSON object", consult_id)
            return ConsultationDetails.empty(consult_id)
        try:
            return ConsultationDetails.model_validate({**data, "id": consult_id})
        except PydanticValidationError:
            logger.warning("Details for consultation %s have unexpected fields", consult_id)
            return ConsultationDetails.empty(consult_id)

    async def get_consultation(self, consult_id: JobIdentifier) -> ConsultationDetails:
        resp = await self._request("GET", f"/consults/{consult_id}")
        if resp.status_code == 404:
            raise ConsultationNotFoundError(consult_id, body=resp.text)
        data = self._checked_json(resp, "Get consultation")
        return ConsultationDetails.model_validate({**data, "id": consult_id})

    async def delete_consultation(self, consult_id: JobIdentifier) -> None:
        resp = await self._request("DELETE", f"/consults/{consult_id}")
        if resp.status_code == 404:
            raise ConsultationNotFoundError(consult_id, body=resp.text)
        if not resp.is_success:
            raise APIRequestError("Delete consultation", resp.status_code, resp.text)

    async def download_pdf(self, consult_id: JobIdentifier) -> bytes:
        resp = await self._request("GET", f"/consults/{consult_id}/pdf")
        if resp.status_code == 404:
            raise ConsultationNotFoundError(consult_id, body=resp.text)
        if not resp.is_success:
            raise APIRequestError("Download PDF", resp.status_code, resp.text)
        return resp.content

    # -- user --

    async def login(self, email: str, password: str) -> str:
        """Exchange credentials for a bearer token.

        The token is stored in the client's ``SessionCredentials`` when it
        has one, so later requests are authenticated.
        """
        resp = await self._request(
            "POST",
            "/auth/login",
            authenticated=False,
            json={"correo": email, "contrasenia": password},
        )
        data = self._checked_json(resp, "Login")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise APIRequestError("Login", resp.status_code, "response has no token")
        if isinstance(self._credentials, SessionCredentials):
            self._credentials.set_token(token)
        logger.info("Logged in as %s", email)
        return token

    async def register_user(self, user: dict) -> dict:
        """Create an account. The backend answers with JSON or plain text."""
        resp = await self._request("POST", "/auth/register", authenticated=False, json=user)
        if not resp.is_success:
            raise APIRequestError("Register", resp.status_code, resp.text)
        data = parse_json_or_none(resp.text)
        if not isinstance(data, dict):
            return {"message": resp.text, "require_login": True}
        token = data.get("token")
        if token and isinstance(self._credentials, SessionCredentials):
            self._credentials.set_token(token)
        return {**data, "require_login": not token}

    def logout(self) -> None:
        if isinstance(self._credentials, SessionCredentials):
            self._credentials.clear()

    async def get_profile(self) -> dict:
        return self._checked_json(await self._request("GET", "/user/profile"), "Load profile")

    async def get_stats(self) -> dict:
        return self._checked_json(await self._request("GET", "/user/stats"), "Load stats")
