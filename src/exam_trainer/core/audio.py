"""Listening audio decoding.

The generation service returns speech as base64 text wrapping headerless
PCM: signed 16-bit little-endian samples, mono, 24 kHz. Nothing in the
payload describes the format; it is fixed by contract.
"""

from __future__ import annotations

import base64
import binascii
import io
import threading
import wave
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

import numpy as np
import structlog

logger = structlog.get_logger(__name__)

SAMPLE_RATE = 24000
CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes, int16
PCM_SCALE = 32768.0


class AudioDecodeError(Exception):
    """Malformed audio payload (bad base64 or odd byte count)."""

    pass


class PlaybackInProgressError(Exception):
    """A playback was started while another is still active."""

    pass


@dataclass(frozen=True, eq=False)
class DecodedAudio:
    """Normalized float samples in [-1.0, 1.0), read-only."""

    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE
    channels: int = CHANNELS

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_seconds(self) -> float:
        return len(self) / (self.sample_rate * self.channels)


def decode_pcm_base64(payload: str) -> DecodedAudio:
    """Decode a base64 PCM payload into normalized samples.

    Each little-endian byte pair is read as a signed 16-bit integer and
    divided by 32768.

    Raises:
        AudioDecodeError: If the payload is not valid base64 or decodes to
            an odd number of bytes.
    """
    if not isinstance(payload, str):
        raise AudioDecodeError(f"Audio payload must be text, got {type(payload).__name__}")

    compact = "".join(payload.split())
    try:
        raw = base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioDecodeError(f"Invalid base64 audio payload: {e}") from e

    if len(raw) % SAMPLE_WIDTH != 0:
        raise AudioDecodeError(f"PCM byte count must be even, got {len(raw)}")

    pcm = np.frombuffer(raw, dtype="<i2")
    samples = pcm.astype(np.float32) / PCM_SCALE
    samples.flags.writeable = False

    logger.debug("audio_decoded", samples=len(samples), seconds=round(len(samples) / SAMPLE_RATE, 2))
    return DecodedAudio(samples=samples)


def encode_pcm_base64(pcm: bytes) -> str:
    """Base64-encode raw PCM bytes for the wire."""
    return base64.b64encode(pcm).decode("ascii")


def to_wav_bytes(audio: DecodedAudio) -> bytes:
    """Wrap decoded samples in a RIFF/WAV container for a platform player."""
    pcm = np.clip(np.round(audio.samples * PCM_SCALE), -32768, 32767).astype("<i2")
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(audio.channels)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(audio.sample_rate)
        wf.writeframes(pcm.tobytes())
    return buf.getvalue()


class PlaybackGuard:
    """Allows a single active playback at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active = False

    @property
    def is_playing(self) -> bool:
        return self._active

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Hold the playback slot for the duration of the block.

        Raises:
            PlaybackInProgressError: If another playback holds the slot.
        """
        with self._lock:
            if self._active:
                raise PlaybackInProgressError("Audio is already playing")
            self._active = True
        try:
            yield
        finally:
            with self._lock:
                self._active = False

    def play(self, audio: DecodedAudio, sink: Callable[[DecodedAudio], None]) -> None:
        """Hand audio to an output sink while holding the playback slot."""
        with self.hold():
            logger.info("playback_started", seconds=round(audio.duration_seconds, 1))
            sink(audio)
            logger.info("playback_finished")
