#!/usr/bin/env python3
"""
Signal generator module for RoomAcoustic.

Generates the exponential (logarithmic) sine sweep played into the room and
the matched inverse filter used to deconvolve the recorded response.

For an exponential sweep from f0 to f1 over T seconds the instantaneous
frequency is f(t) = f0 * exp(k*t) with k = ln(f1/f0) / T, and the phase is

    phi(t) = 2*pi * f0 * (exp(k*t) - 1) / k
"""

import os
import sys
import time
import logging
from dataclasses import dataclass, asdict, replace
from typing import Optional
import numpy as np

from .wavfile import float_to_pcm16, write_mono16_wav

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MeasurementConfig:
    """Parameters of one sweep measurement. Fully determines sweep and inverse sweep."""

    sample_rate: int = 48000
    sweep_duration: float = 6.0
    start_freq: float = 20.0
    end_freq: float = 20000.0
    head_silence: float = 0.5
    tail_silence: float = 0.5
    amplitude: float = 0.9

    def __post_init__(self):
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be > 0, got {self.sample_rate}")
        if self.sweep_duration <= 0:
            raise ValueError(f"sweep_duration must be > 0, got {self.sweep_duration}")
        if not 0 < self.start_freq < self.end_freq:
            raise ValueError(f"Require 0 < start_freq < end_freq, got {self.start_freq} / {self.end_freq}")
        if self.head_silence < 0 or self.tail_silence < 0:
            raise ValueError("Silence durations must be >= 0")
        if not 0.0 <= self.amplitude <= 1.0:
            raise ValueError(f"amplitude must be within [0, 1], got {self.amplitude}")

    @property
    def sweep_rate(self) -> float:
        """The exponential rate k = ln(end/start) / T."""
        return np.log(self.end_freq / self.start_freq) / self.sweep_duration

    @property
    def head_samples(self) -> int:
        return int(self.head_silence * self.sample_rate)

    @property
    def sweep_samples(self) -> int:
        return int(self.sweep_duration * self.sample_rate)

    @property
    def tail_samples(self) -> int:
        return int(self.tail_silence * self.sample_rate)

    @property
    def total_samples(self) -> int:
        return self.head_samples + self.sweep_samples + self.tail_samples

    def with_sample_rate(self, sample_rate: int) -> "MeasurementConfig":
        return replace(self, sample_rate=int(sample_rate))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "MeasurementConfig":
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        if "sample_rate" in known:
            known["sample_rate"] = int(known["sample_rate"])
        return cls(**known)


def generate_log_sweep(config: MeasurementConfig) -> np.ndarray:
    """
    Build head silence + exponential sweep + tail silence.

    Args:
        config: Measurement configuration

    Returns:
        float64 array in [-amplitude, amplitude] of config.total_samples samples
    """
    sr = config.sample_rate
    k = config.sweep_rate
    t = np.arange(config.sweep_samples, dtype=np.float64) / sr
    phase = 2.0 * np.pi * config.start_freq * (np.exp(k * t) - 1.0) / k
    sweep = np.sin(phase) * config.amplitude

    signal = np.zeros(config.total_samples, dtype=np.float64)
    signal[config.head_samples:config.head_samples + sweep.size] = sweep
    return signal


def generate_inverse_sweep(config: MeasurementConfig) -> np.ndarray:
    """
    Build the inverse filter for exponential sweep deconvolution.

    Every sample of the full head+sweep+tail buffer is weighted by exp(k*t),
    t being its time in the forward buffer, and the buffer is then reversed.
    Read in filter order the envelope falls from the high-frequency end to
    the low-frequency end, which flattens the sweep's pink energy density.
    """
    forward = generate_log_sweep(config)
    t = np.arange(forward.size, dtype=np.float64) / config.sample_rate
    weighted = forward * np.exp(config.sweep_rate * t)
    return weighted[::-1].copy()


def generate_sweep_file(config: MeasurementConfig, output_dir: Optional[str] = None,
                        filename: Optional[str] = None) -> str:
    """
    Write the forward sweep for a configuration to a mono 16-bit WAV file.

    Returns:
        Path to the written file
    """
    output_dir = output_dir or os.getcwd()
    if filename is None:
        filename = (f"sweep_{int(config.start_freq)}_{int(config.end_freq)}_"
                    f"{config.sweep_duration:g}s_{int(time.time() * 1000)}.wav")
    filepath = os.path.join(output_dir, filename)

    pcm = float_to_pcm16(generate_log_sweep(config))
    write_mono16_wav(filepath, pcm, config.sample_rate)
    logger.info(f"Generated sweep file {filename}: {config.start_freq} Hz -> {config.end_freq} Hz, "
                f"{config.sweep_duration}s, {pcm.size} samples")
    return filepath


def main():
    """Command-line interface for sweep generation."""
    import argparse

    defaults = MeasurementConfig()
    parser = argparse.ArgumentParser(description='Exponential sine sweep generator')
    parser.add_argument('-o', '--output-dir', type=str, default=None,
                        help='Output directory (default: current directory)')
    parser.add_argument('-r', '--rate', type=int, default=defaults.sample_rate,
                        help=f'Sample rate in Hz (default: {defaults.sample_rate})')
    parser.add_argument('-s', '--start', type=float, default=defaults.start_freq,
                        help=f'Start frequency in Hz (default: {defaults.start_freq:g})')
    parser.add_argument('-e', '--end', type=float, default=defaults.end_freq,
                        help=f'End frequency in Hz (default: {defaults.end_freq:g})')
    parser.add_argument('-t', '--time', type=float, default=defaults.sweep_duration,
                        help=f'Sweep duration in seconds (default: {defaults.sweep_duration:g})')
    parser.add_argument('--head', type=float, default=defaults.head_silence,
                        help=f'Leading silence in seconds (default: {defaults.head_silence:g})')
    parser.add_argument('--tail', type=float, default=defaults.tail_silence,
                        help=f'Trailing silence in seconds (default: {defaults.tail_silence:g})')
    parser.add_argument('-a', '--amplitude', type=float, default=defaults.amplitude,
                        help=f'Amplitude 0.0-1.0 (default: {defaults.amplitude:g})')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=level, format='%(levelname)s:%(name)s:%(message)s')

    try:
        config = MeasurementConfig(
            sample_rate=args.rate,
            sweep_duration=args.time,
            start_freq=args.start,
            end_freq=args.end,
            head_silence=args.head,
            tail_silence=args.tail,
            amplitude=args.amplitude,
        )
        path = generate_sweep_file(config, args.output_dir)
    except (ValueError, OSError) as e:
        print(f"ERROR: {e}")
        return 1

    print(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
