"""
WAV file handling for RoomAcoustic.

Only canonical PCM RIFF/WAVE, mono, 16-bit little-endian is produced and
accepted. Reading uses the standard wave module.
"""

import os
import wave
import logging
from typing import Tuple
import numpy as np

logger = logging.getLogger(__name__)


class WavFormatError(ValueError):
    """Raised when a WAV file is not mono 16-bit PCM."""


def float_to_pcm16(samples) -> np.ndarray:
    """Convert float samples in [-1, 1] to int16, clamping out-of-range values."""
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    return (clipped * 32767).astype(np.int16)


def pcm16_to_float(pcm) -> np.ndarray:
    """Convert int16 samples to float64 in [-1, 1)."""
    return np.asarray(pcm, dtype=np.int16).astype(np.float64) / 32768.0


def write_mono16_wav(filepath: str, pcm, sample_rate: int) -> str:
    """
    Write int16 samples as a mono 16-bit PCM WAV file.

    Args:
        filepath: Destination path
        pcm: int16 samples
        sample_rate: Sample rate in Hz

    Returns:
        The path written
    """
    data = np.asarray(pcm, dtype=np.int16).astype('<i2', copy=False)
    with wave.open(filepath, 'wb') as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(int(sample_rate))
        wav_file.writeframes(data.tobytes())

    logger.debug(f"Wrote {data.size} samples @ {sample_rate} Hz to {os.path.basename(filepath)}")
    return filepath


def read_mono16_wav(filepath: str) -> Tuple[np.ndarray, int]:
    """
    Read a mono 16-bit PCM WAV file.

    Returns:
        Tuple of (int16 samples, sample rate)

    Raises:
        WavFormatError: If the file is not PCM, not mono or not 16-bit
        FileNotFoundError: If the file does not exist
    """
    try:
        with wave.open(filepath, 'rb') as wav_file:
            channels = wav_file.getnchannels()
            sample_width = wav_file.getsampwidth()
            sample_rate = wav_file.getframerate()
            frames = wav_file.getnframes()

            if channels != 1:
                raise WavFormatError(f"Expected mono WAV, got {channels} channels")
            if sample_width != 2:
                raise WavFormatError(f"Expected 16-bit WAV, got {sample_width * 8}-bit")

            raw = wav_file.readframes(frames)
    except (wave.Error, EOFError) as e:
        raise WavFormatError(f"Unsupported or corrupt WAV file {os.path.basename(filepath)}: {e}")

    samples = np.frombuffer(raw, dtype='<i2').astype(np.int16)
    return samples, sample_rate
