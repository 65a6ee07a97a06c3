"""Shared pytest fixtures for the consult engine test suite.

Provides a scripted fake backend served through ``httpx.MockTransport``,
a fake monotonic clock whose ``sleep`` advances time instantly, and
ready-made audio blobs.
"""

import json

import httpx
import pytest

from consult_engine.core.models import AudioBlob, AudioOrigin
from consult_engine.services.api_client import ConsultsAPIClient
from consult_engine.services.auth import SessionCredentials

BASE_URL = "http://backend.test"

# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------


class FakeBackend:
    """Scripted consultations backend.

    Each route answers with a ``(status, body)`` reply; ``body`` is JSON
    unless it is ``str`` or ``bytes``. ``finalize`` is a queue: responses are
    consumed in order and the last one repeats forever.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.upload = (200, {"baseFileName": "audio-1.webm"})
        self.create = (201, {"id": "c1"})
        self.finalize: list[tuple[int, object]] = [
            (200, {"id": "c1", "transcription": "t", "summary": "s"})
        ]
        self.details = (
            200,
            {
                "transcription": "t",
                "summary": "s",
                "nombre": "job1",
                "fechaCreacion": "2026-03-12T10:30:00",
            },
        )
        self.consults = (200, [{"id": "c1", "nombre": "job1"}, {"id": "c0", "nombre": "older"}])
        self.delete = (204, "")
        self.pdf = (200, b"%PDF-1.4 fake")
        self.raise_on: dict[str, Exception] = {}

    @staticmethod
    def _respond(reply: tuple[int, object]) -> httpx.Response:
        status, body = reply
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, content=json.dumps(body).encode(),
                              headers={"content-type": "application/json"})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = f"{request.method} {request.url.path}"
        if key in self.raise_on:
            raise self.raise_on[key]

        method, path = request.method, request.url.path
        if method == "POST" and path == "/consults/upload":
            return self._respond(self.upload)
        if method == "POST" and path == "/consults/finalize":
            reply = self.finalize.pop(0) if len(self.finalize) > 1 else self.finalize[0]
            return self._respond(reply)
        if method == "POST" and path == "/consults":
            return self._respond(self.create)
        if method == "GET" and path == "/consults":
            return self._respond(self.consults)
        if method == "GET" and path.endswith("/details"):
            return self._respond(self.details)
        if method == "GET" and path.endswith("/pdf"):
            return self._respond(self.pdf)
        if method == "DELETE" and path.startswith("/consults/"):
            return self._respond(self.delete)
        return httpx.Response(404, text="not found")

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


@pytest.fixture
def backend():
    """A fresh scripted backend whose defaults complete one submission."""
    return FakeBackend()


@pytest.fixture
def credentials():
    return SessionCredentials("test-token")


@pytest.fixture
async def api(backend, credentials):
    """ConsultsAPIClient wired to the fake backend."""
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(backend.handler), base_url=BASE_URL
    )
    client = ConsultsAPIClient(
        base_url=BASE_URL, credentials=credentials, http_client=http_client
    )
    yield client
    await client.aclose()


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------


@pytest.fixture
def webm_blob():
    """2 MB of opaque bytes posing as a browser recording."""
    return AudioBlob(
        data=b"\x1a\x45\xdf\xa3" + b"\x00" * (2 * 1024 * 1024),
        content_type="audio/webm",
        origin=AudioOrigin.upload,
        filename="consulta.webm",
    )


@pytest.fixture
def sample_pcm_bytes():
    """Half a second of a 16-bit ramp at 16 kHz mono."""
    import struct

    return b"".join(struct.pack("<h", (i * 37) % 32000) for i in range(8000))
