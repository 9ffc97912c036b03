#!/usr/bin/env python3
"""
Duplex capture module for RoomAcoustic.

Plays the measurement sweep and records the microphone at the same time,
producing two WAV files (played and recorded signal) and the level of the
recording. Audio hardware is reached through a backend object so that the
capture loop itself does not depend on ALSA.
"""

import os
import time
import logging
import threading
from dataclasses import dataclass, asdict
from typing import Callable, Optional, Sequence
import numpy as np

from .analysis import level_dbfs
from .microphone import MicrophoneDetector, has_microphone_access
from .signal_generator import MeasurementConfig, generate_log_sweep
from .wavfile import float_to_pcm16, write_mono16_wav

logger = logging.getLogger(__name__)

# Least processed first
INPUT_SOURCES = ("unprocessed", "mic", "voice_recognition")

CHUNK_BYTES = 2048
READ_FRAMES = 1024
PERIOD_FRAMES = 1024
TAIL_READ_SECONDS = 0.25
MAX_STALLED_WRITES = 1000


class PermissionDenied(PermissionError):
    """Microphone access has not been granted."""


class HardwareAcquisitionError(RuntimeError):
    """No usable audio output or input could be opened."""


class CaptureCancelled(RuntimeError):
    """The capture was cancelled before it completed."""


@dataclass(frozen=True)
class CaptureResult:
    recorded_path: str
    played_path: str
    peak_dbfs: float
    rms_dbfs: float
    duration_sec: float

    def to_dict(self) -> dict:
        return asdict(self)


class AlsaPlaybackStream:
    """Blocking S16_LE mono playback handle."""

    def __init__(self, pcm):
        self.pcm = pcm

    def write(self, data: bytes) -> int:
        """Write PCM bytes, returning the number of bytes accepted (negative on error)."""
        frames = self.pcm.write(data)
        return frames * 2 if frames > 0 else frames

    def stop(self):
        self.pcm.drain()

    def close(self):
        self.pcm.close()


class AlsaCaptureStream:
    """Blocking S16_LE mono capture handle returning int16 arrays."""

    def __init__(self, pcm):
        self.pcm = pcm
        self._pending = np.zeros(0, dtype=np.int16)

    def read(self, max_frames: int) -> np.ndarray:
        if self._pending.size == 0:
            length, data = self.pcm.read()
            if length < 0:
                logger.warning(f"Capture overrun (code {length})")
                return np.zeros(0, dtype=np.int16)
            self._pending = np.frombuffer(data, dtype='<i2').astype(np.int16)
        out = self._pending[:max_frames]
        self._pending = self._pending[max_frames:]
        return out

    def stop(self):
        self.pcm.drop()

    def close(self):
        self.pcm.close()


class AlsaAudioBackend:
    """
    ALSA audio backend.

    Input sources map to ALSA devices on the capture card:
        unprocessed       -> hw:<card>,0      (raw hardware, no conversion)
        mic               -> plughw:<card>,0  (ALSA plug conversion)
        voice_recognition -> default          (sound server processing chain)
    """

    def __init__(self, playback_device: str = "default", capture_card: Optional[int] = None):
        self.playback_device = playback_device
        self.capture_card = capture_card

    def _capture_device(self, source: str) -> str:
        if source == "voice_recognition":
            return "default"
        if self.capture_card is None:
            self.capture_card = MicrophoneDetector().first_capture_card()
            if self.capture_card is None:
                raise HardwareAcquisitionError("No ALSA capture card detected")
        if source == "unprocessed":
            return f"hw:{self.capture_card},0"
        if source == "mic":
            return f"plughw:{self.capture_card},0"
        raise ValueError(f"Unknown input source '{source}'")

    def open_playback(self, sample_rate: int) -> AlsaPlaybackStream:
        import alsaaudio
        pcm = alsaaudio.PCM(type=alsaaudio.PCM_PLAYBACK, mode=alsaaudio.PCM_NORMAL,
                            rate=sample_rate, channels=1, format=alsaaudio.PCM_FORMAT_S16_LE,
                            periodsize=PERIOD_FRAMES, device=self.playback_device)
        logger.debug(f"Opened playback device {self.playback_device} @ {sample_rate} Hz")
        return AlsaPlaybackStream(pcm)

    def open_capture(self, source: str, sample_rate: int) -> AlsaCaptureStream:
        import alsaaudio
        device = self._capture_device(source)
        pcm = alsaaudio.PCM(type=alsaaudio.PCM_CAPTURE, mode=alsaaudio.PCM_NORMAL,
                            rate=sample_rate, channels=1, format=alsaaudio.PCM_FORMAT_S16_LE,
                            periodsize=PERIOD_FRAMES, device=device)
        logger.debug(f"Opened capture device {device} ({source}) @ {sample_rate} Hz")
        return AlsaCaptureStream(pcm)


def release_stream(stream, label: str) -> bool:
    """
    Stop and close an audio stream, logging failures instead of raising.

    Returns:
        True if both stop and close succeeded
    """
    ok = True
    for action in ("stop", "close"):
        try:
            getattr(stream, action)()
        except Exception as e:
            logger.warning(f"Failed to {action} {label} stream: {e}")
            ok = False
    return ok


class DuplexMeasurer:
    """Plays a sweep and records the room response simultaneously."""

    def __init__(self, backend=None, permission_check: Callable[[], bool] = has_microphone_access,
                 sources: Sequence[str] = INPUT_SOURCES):
        self.backend = backend or AlsaAudioBackend()
        self.permission_check = permission_check
        self.sources = tuple(sources)

    def _open_capture(self, sample_rate: int):
        last_error = None
        for source in self.sources:
            try:
                stream = self.backend.open_capture(source, sample_rate)
                logger.info(f"Recording from input source '{source}'")
                return stream
            except Exception as e:
                logger.warning(f"Input source '{source}' unavailable: {e}")
                last_error = e
        raise HardwareAcquisitionError(f"No input source could be opened: {last_error}")

    @staticmethod
    def _read_into(capture, buffer: np.ndarray, offset: int, max_frames: int) -> int:
        if max_frames <= 0:
            return 0
        samples = capture.read(max_frames)
        count = min(len(samples), max_frames)
        if count > 0:
            buffer[offset:offset + count] = samples[:count]
        return count

    def run_once(self, config: MeasurementConfig, output_dir: str,
                 cancel_event: Optional[threading.Event] = None) -> CaptureResult:
        """
        Play the sweep for config and record the response.

        Args:
            config: Measurement configuration
            output_dir: Directory receiving played_sweep_*.wav and recorded_*.wav
            cancel_event: Optional event; when set the capture stops and
                CaptureCancelled is raised

        Returns:
            CaptureResult with file paths and recording levels

        Raises:
            PermissionDenied: Microphone access not granted (no device touched)
            HardwareAcquisitionError: Output or every input source failed to open
            CaptureCancelled: cancel_event was set during capture
        """
        if not self.permission_check():
            raise PermissionDenied("Microphone access not granted")

        sr = config.sample_rate
        os.makedirs(output_dir, exist_ok=True)

        sweep_pcm = float_to_pcm16(generate_log_sweep(config))
        sweep_bytes = sweep_pcm.astype('<i2').tobytes()

        try:
            playback = self.backend.open_playback(sr)
        except Exception as e:
            raise HardwareAcquisitionError(f"Failed to open playback device: {e}") from e
        try:
            capture = self._open_capture(sr)
        except HardwareAcquisitionError:
            release_stream(playback, "playback")
            raise

        capacity = sweep_pcm.size + sr
        rec_buf = np.zeros(capacity, dtype=np.int16)
        rec_offset = 0
        play_offset = 0

        logger.info(f"Starting duplex capture: {sweep_pcm.size} samples @ {sr} Hz")
        try:
            played_path = os.path.join(output_dir, f"played_sweep_{int(time.time() * 1000)}.wav")
            write_mono16_wav(played_path, sweep_pcm, sr)

            # Priming read absorbs input start-up latency
            rec_offset += self._read_into(capture, rec_buf, rec_offset, min(capacity, READ_FRAMES))

            stalled = 0
            while play_offset < len(sweep_bytes):
                if cancel_event is not None and cancel_event.is_set():
                    raise CaptureCancelled("Capture cancelled during playback")

                chunk = min(CHUNK_BYTES, len(sweep_bytes) - play_offset)
                chunk -= chunk & 1
                if chunk <= 0:
                    break

                written = playback.write(sweep_bytes[play_offset:play_offset + chunk])
                if written > 0:
                    play_offset += written
                    stalled = 0
                elif written < 0:
                    logger.warning(f"Playback write failed (code {written}), stopping playback")
                    break
                else:
                    stalled += 1
                    if stalled >= MAX_STALLED_WRITES:
                        logger.warning("Playback stalled, stopping playback")
                        break

                rec_offset += self._read_into(capture, rec_buf, rec_offset,
                                              min(capacity - rec_offset, READ_FRAMES))

            # Tail captures the reverberant decay after playback ends
            tail_frames = int(TAIL_READ_SECONDS * sr)
            target = min(rec_offset + tail_frames, capacity)
            for _ in range(tail_frames):
                if rec_offset >= target:
                    break
                if cancel_event is not None and cancel_event.is_set():
                    raise CaptureCancelled("Capture cancelled during tail recording")
                rec_offset += self._read_into(capture, rec_buf, rec_offset,
                                              min(target - rec_offset, READ_FRAMES))
        except CaptureCancelled:
            logger.info("Duplex capture cancelled")
            try:
                os.unlink(played_path)
            except OSError as e:
                logger.warning(f"Could not remove {played_path}: {e}")
            raise
        finally:
            release_stream(playback, "playback")
            release_stream(capture, "capture")

        recorded = rec_buf[:rec_offset]
        if recorded.size == 0:
            logger.warning("No samples were recorded")
        recorded_path = os.path.join(output_dir, f"recorded_{int(time.time() * 1000)}.wav")
        write_mono16_wav(recorded_path, recorded, sr)

        peak_dbfs, rms_dbfs = level_dbfs(recorded)
        duration = recorded.size / sr
        logger.info(f"Capture complete: {recorded.size} samples ({duration:.2f}s), "
                    f"peak {peak_dbfs:.1f} dBFS, RMS {rms_dbfs:.1f} dBFS")

        return CaptureResult(
            recorded_path=recorded_path,
            played_path=played_path,
            peak_dbfs=peak_dbfs,
            rms_dbfs=rms_dbfs,
            duration_sec=duration,
        )


def run_once(config: MeasurementConfig, output_dir: str, backend=None,
             cancel_event: Optional[threading.Event] = None,
             permission_check: Callable[[], bool] = has_microphone_access) -> CaptureResult:
    """Convenience wrapper: one duplex capture, by default through ALSA."""
    measurer = DuplexMeasurer(backend=backend, permission_check=permission_check)
    return measurer.run_once(config, output_dir, cancel_event)
