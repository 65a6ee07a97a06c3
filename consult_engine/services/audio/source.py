"""Audio source adapter: builds ``AudioBlob`` objects from files or PCM.

Uploaded files are accepted by extension against the configured allow-list;
microphone PCM is wrapped into a WAV container.
"""

import io
import wave
from datetime import datetime
from pathlib import Path

from consult_engine.core.config import get_settings
from consult_engine.core.exceptions import ValidationError
from consult_engine.core.models import AudioBlob, AudioOrigin


def content_type_for(path: str | Path, allowed: dict[str, str] | None = None) -> str:
    """Resolve the content type of an audio/video file from its extension.

    Raises:
        ValidationError: The extension is not in the allow-list or maps to
            something other than an audio/video type.
    """
    allowed = allowed if allowed is not None else get_settings().allowed_audio_extensions
    suffix = Path(path).suffix.lower()
    content_type = allowed.get(suffix, "")
    if not content_type.startswith(("audio/", "video/")):
        supported = ", ".join(sorted(allowed))
        raise ValidationError(
            f"Unsupported audio format '{suffix or path}'. Use one of: {supported}"
        )
    return content_type


def check_content_type(content_type: str, allowed: dict[str, str] | None = None) -> None:
    """Reject a blob whose content type is not audio or video.

    Accepted: any ``audio/*`` or ``video/*`` type, or one of the types the
    extension allow-list maps to.

    Raises:
        ValidationError: Any other content type.
    """
    allowed = allowed if allowed is not None else get_settings().allowed_audio_extensions
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type.startswith(("audio/", "video/")) or media_type in allowed.values():
        return
    raise ValidationError(f"Unsupported audio content type '{content_type}'")


def load_audio_file(path: str | Path, allowed: dict[str, str] | None = None) -> AudioBlob:
    """Read an audio file chosen by the user into an upload blob.

    Raises:
        ValidationError: Missing file, unsupported format, or empty file.
    """
    path = Path(path)
    content_type = content_type_for(path, allowed)
    if not path.is_file():
        raise ValidationError(f"Audio file not found: {path}")
    data = path.read_bytes()
    if not data:
        raise ValidationError(f"Audio file is empty: {path}")
    return AudioBlob(
        data=data,
        content_type=content_type,
        origin=AudioOrigin.upload,
        filename=path.name,
    )


def pcm_to_wav(pcm_data: bytes, sample_rate: int, channels: int, sample_width: int = 2) -> bytes:
    """Wrap raw 16-bit PCM into an in-memory WAV file."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_data)
    return buf.getvalue()


def blob_from_pcm(
    pcm_data: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> AudioBlob:
    """Package microphone PCM as a WAV upload blob.

    Raises:
        ValidationError: No audio was captured or the data is not aligned
            to whole frames.
    """
    if not pcm_data:
        raise ValidationError("No audio was captured")
    frame_size = sample_width * channels
    if len(pcm_data) % frame_size != 0:
        raise ValidationError(
            f"PCM data length ({len(pcm_data)}) is not aligned to frame size ({frame_size})"
        )
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return AudioBlob(
        data=pcm_to_wav(pcm_data, sample_rate, channels, sample_width),
        content_type="audio/wav",
        origin=AudioOrigin.microphone,
        filename=f"recording-{stamp}.wav",
    )
