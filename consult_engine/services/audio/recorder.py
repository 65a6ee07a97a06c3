"""
Microphone recording session.

States: idle -> recording -> stopped(blob) -> idle

``RecordingSession`` owns the state machine; the hardware sits behind the
``MicrophoneCapture`` interface so the session can be driven without a
sound card.
"""

import logging
import threading
from abc import ABC, abstractmethod
from enum import StrEnum
from typing import Any

import numpy as np

from consult_engine.core.config import get_settings
from consult_engine.core.exceptions import (
    MicrophoneUnavailableError,
    RecordingAlreadyActiveError,
    ValidationError,
)
from consult_engine.core.models import AudioBlob
from consult_engine.services.audio.source import blob_from_pcm

logger = logging.getLogger(__name__)


class MicrophoneCapture(ABC):
    """Interface for a source of 16-bit PCM microphone audio."""

    sample_rate: int = 16000
    channels: int = 1

    @abstractmethod
    def start(self) -> None:
        """Open the device and begin buffering audio.

        Raises:
            MicrophoneUnavailableError: No device or access denied.
        """

    @abstractmethod
    def stop(self) -> bytes:
        """Stop capture and return every chunk buffered up to this instant."""


class SoundDeviceMicrophone(MicrophoneCapture):
    """``sounddevice.InputStream`` capture buffering int16 chunks in memory."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1, chunk_ms: int = 100) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self._stream: Any = None
        self._chunks: list[bytes] = []
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            if self._stream is not None:
                return
            self._chunks = []

        try:
            import sounddevice as sd
        except OSError as exc:  # PortAudio library missing
            raise MicrophoneUnavailableError(f"Audio backend unavailable: {exc}") from exc

        blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise MicrophoneUnavailableError(f"Could not access the microphone: {exc}") from exc

        with self._lock:
            self._stream = stream
        logger.info("Microphone capture started (%d Hz, %d ch)", self.sample_rate, self.channels)

    def stop(self) -> bytes:
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return b""

        # stop() waits for the last callback, so nothing buffered is lost
        stream.stop()
        stream.close()
        with self._lock:
            data = b"".join(self._chunks)
            self._chunks = []
        logger.info("Microphone capture stopped (%d bytes)", len(data))
        return data

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        with self._lock:
            self._chunks.append(payload)


class RecordingState(StrEnum):
    """Possible states for a microphone recording session."""

    idle = "idle"
    recording = "recording"
    stopped = "stopped"


class RecordingSession:
    """Records one consultation at a time from a ``MicrophoneCapture``.

    At most one unsubmitted recording is kept: starting a new recording
    discards the previous blob.
    """

    def __init__(self, capture: MicrophoneCapture | None = None) -> None:
        if capture is None:
            settings = get_settings()
            capture = SoundDeviceMicrophone(
                sample_rate=settings.microphone_sample_rate,
                channels=settings.microphone_channels,
            )
        self._capture = capture
        self._state = RecordingState.idle
        self._blob: AudioBlob | None = None
        self.display_name = ""

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def pending_blob(self) -> AudioBlob | None:
        return self._blob

    @property
    def is_recording(self) -> bool:
        return self._state is RecordingState.recording

    def start(self, display_name: str) -> None:
        """Begin capturing audio for the named consultation.

        The name is checked before the microphone is touched so no
        permission prompt is shown for a recording that cannot be submitted.

        Raises:
            ValidationError: ``display_name`` is blank.
            RecordingAlreadyActiveError: A capture is already running.
            MicrophoneUnavailableError: The device could not be opened. Any
                pending recording is kept.
        """
        if not display_name or not display_name.strip():
            raise ValidationError("Enter a name for the consultation first")
        if self._state is RecordingState.recording:
            raise RecordingAlreadyActiveError()

        self._capture.start()
        if self._blob is not None:
            logger.info("Discarding unsubmitted recording '%s'", self.display_name)
        self._blob = None
        self.display_name = display_name.strip()
        self._state = RecordingState.recording
        logger.info("Recording started for '%s'", self.display_name)

    def stop(self) -> AudioBlob | None:
        """Stop capturing. A no-op returning None when not recording."""
        if self._state is not RecordingState.recording:
            return None

        pcm = self._capture.stop()
        if not pcm:
            logger.warning("Recording for '%s' captured no audio", self.display_name)
            self._state = RecordingState.idle
            return None

        self._blob = blob_from_pcm(
            pcm,
            sample_rate=self._capture.sample_rate,
            channels=self._capture.channels,
        )
        self._state = RecordingState.stopped
        logger.info("Recording stopped for '%s' (%d bytes)", self.display_name, self._blob.size)
        return self._blob

    def take_blob(self) -> AudioBlob:
        """Hand the finished recording over for submission.

        Raises:
            ValidationError: There is no finished recording.
        """
        if self._blob is None:
            raise ValidationError("Record some audio first")
        blob, self._blob = self._blob, None
        self._state = RecordingState.idle
        return blob

    def discard(self) -> None:
        """Drop the pending recording, stopping capture if still running."""
        if self._state is RecordingState.recording:
            self._capture.stop()
        self._blob = None
        self._state = RecordingState.idle
