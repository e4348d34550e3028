"""Tests for listening audio decoding and playback guard."""

import io
import threading
import wave

import numpy as np
import pytest

from exam_trainer.core.audio import (
    AudioDecodeError,
    DecodedAudio,
    PlaybackGuard,
    PlaybackInProgressError,
    SAMPLE_RATE,
    decode_pcm_base64,
    encode_pcm_base64,
    to_wav_bytes,
)

from conftest import pcm_payload


class TestDecodePcm:
    """Tests for decode_pcm_base64."""

    def test_samples_are_scaled_by_32768(self):
        """Each int16 sample decodes to sample / 32768 within 1e-6."""
        samples = [0, 1, -1, 16384, -16384, 32767, -32768, 12345, -4321]
        audio = decode_pcm_base64(pcm_payload(samples))

        assert len(audio) == len(samples)
        expected = np.array(samples, dtype=np.float64) / 32768.0
        assert np.allclose(audio.samples, expected, atol=1e-6, rtol=0)

    def test_full_int16_range_round_trip(self):
        """Every representable sample survives encode/decode."""
        pcm = np.arange(-32768, 32768).astype("<i2")
        audio = decode_pcm_base64(encode_pcm_base64(pcm.tobytes()))

        assert len(audio) == pcm.size
        assert np.max(np.abs(audio.samples - pcm / 32768.0)) < 1e-6

    def test_format_is_fixed(self):
        audio = decode_pcm_base64(pcm_payload([1, 2]))
        assert audio.sample_rate == SAMPLE_RATE == 24000
        assert audio.channels == 1

    def test_duration(self):
        audio = decode_pcm_base64(pcm_payload([0] * 48000))
        assert audio.duration_seconds == pytest.approx(2.0)

    def test_samples_are_read_only(self):
        audio = decode_pcm_base64(pcm_payload([1, 2, 3]))
        with pytest.raises(ValueError):
            audio.samples[0] = 0.5

    def test_empty_payload_decodes_to_no_samples(self):
        assert len(decode_pcm_base64("")) == 0

    def test_whitespace_in_payload_is_ignored(self):
        payload = pcm_payload([100, -100, 200, -200])
        wrapped = payload[:4] + "\n" + payload[4:]
        assert len(decode_pcm_base64(wrapped)) == 4

    def test_odd_byte_count_rejected(self):
        """A trailing half sample is malformed."""
        with pytest.raises(AudioDecodeError, match="even"):
            decode_pcm_base64(encode_pcm_base64(b"\x01\x02\x03"))

    def test_invalid_base64_rejected(self):
        with pytest.raises(AudioDecodeError):
            decode_pcm_base64("not base64 at all!!")

    def test_non_text_payload_rejected(self):
        with pytest.raises(AudioDecodeError):
            decode_pcm_base64(b"AAAA")


class TestWav:
    """Tests for to_wav_bytes."""

    def test_wav_header_matches_pcm_format(self):
        audio = decode_pcm_base64(pcm_payload([0, 1000, -1000, 32767]))
        with wave.open(io.BytesIO(to_wav_bytes(audio)), "rb") as wf:
            assert wf.getnchannels() == 1
            assert wf.getsampwidth() == 2
            assert wf.getframerate() == 24000
            assert wf.getnframes() == 4
            frames = wf.readframes(4)

        assert np.frombuffer(frames, dtype="<i2").tolist() == [0, 1000, -1000, 32767]


class TestPlaybackGuard:
    """Only one playback may be active at a time."""

    def _audio(self) -> DecodedAudio:
        return decode_pcm_base64(pcm_payload([0, 1, 2]))

    def test_play_hands_audio_to_sink(self):
        guard = PlaybackGuard()
        received = []

        guard.play(self._audio(), received.append)

        assert len(received) == 1
        assert not guard.is_playing

    def test_overlapping_start_rejected(self):
        guard = PlaybackGuard()

        with guard.hold():
            assert guard.is_playing
            with pytest.raises(PlaybackInProgressError):
                guard.play(self._audio(), lambda audio: None)

        assert not guard.is_playing

    def test_slot_released_when_sink_fails(self):
        guard = PlaybackGuard()

        def broken_sink(audio):
            raise RuntimeError("device busy")

        with pytest.raises(RuntimeError):
            guard.play(self._audio(), broken_sink)

        assert not guard.is_playing
        guard.play(self._audio(), lambda audio: None)

    def test_second_thread_cannot_start_while_playing(self):
        guard = PlaybackGuard()
        started = threading.Event()
        release = threading.Event()
        errors = []

        def slow_sink(audio):
            started.set()
            release.wait(timeout=5)

        worker = threading.Thread(target=guard.play, args=(self._audio(), slow_sink))
        worker.start()
        started.wait(timeout=5)
        try:
            guard.play(self._audio(), lambda audio: None)
        except PlaybackInProgressError as e:
            errors.append(e)
        finally:
            release.set()
            worker.join(timeout=5)

        assert len(errors) == 1
