"""
Audio module - Audio sources feeding the submission pipeline.
"""

from .recorder import MicrophoneCapture, RecordingSession, RecordingState, SoundDeviceMicrophone
from .source import blob_from_pcm, check_content_type, load_audio_file

__all__ = [
    "MicrophoneCapture",
    "RecordingSession",
    "RecordingState",
    "SoundDeviceMicrophone",
    "blob_from_pcm",
    "check_content_type",
    "load_audio_file",
]
