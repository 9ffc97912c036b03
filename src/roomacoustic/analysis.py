#!/usr/bin/env python3
"""
Acoustic analysis module for RoomAcoustic.

Computes RT60 (from the Schroeder energy decay curve) and the clarity
indices C50/C80 from a recorded sweep response. Estimation failures are
reported as None values, never as exceptions.
"""

import sys
import logging
from dataclasses import dataclass, asdict
from typing import Optional, Tuple
import numpy as np

from .fft import fft
from .impulse_response import estimate_impulse_response
from .signal_generator import MeasurementConfig
from .wavfile import pcm16_to_float, read_mono16_wav

logger = logging.getLogger(__name__)

SILENCE_FLOOR_DB = -120.0
EDC_EPSILON = 1e-20
T30_RANGE_DB = (-5.0, -35.0)
T20_RANGE_DB = (-5.0, -25.0)


@dataclass(frozen=True)
class AcousticMetrics:
    rt60_sec: Optional[float]
    rt60_method: Optional[str]
    c50_db: Optional[float]
    c80_db: Optional[float]

    def to_dict(self) -> dict:
        return asdict(self)


def level_dbfs(pcm) -> Tuple[float, float]:
    """
    Peak and RMS level of int16 samples in dBFS.

    Both values floor at -120 dB for silent (or empty) input.
    """
    samples = np.asarray(pcm, dtype=np.int16).astype(np.float64)
    if samples.size == 0:
        return SILENCE_FLOOR_DB, SILENCE_FLOOR_DB

    peak = float(np.max(np.abs(samples)))
    rms = float(np.sqrt(np.mean((samples / 32768.0) ** 2)))

    peak_db = 20.0 * np.log10(peak / 32768.0) if peak > 0 else SILENCE_FLOOR_DB
    rms_db = 20.0 * np.log10(rms) if rms > 0 else SILENCE_FLOOR_DB
    return float(peak_db), float(rms_db)


def schroeder_edc(ir) -> np.ndarray:
    """
    Schroeder backward-integrated energy decay curve in dB.

    The curve is normalised to its zero-lag value, so edc[0] == 0 and all
    values are <= 0. Only the reference energy is floored at EDC_EPSILON;
    samples after the last non-zero one are -inf. A silent input gives a
    flat 0 dB curve.
    """
    ir = np.asarray(ir, dtype=np.float64)
    energy = ir * ir
    edc_lin = np.cumsum(energy[::-1])[::-1]
    if edc_lin.size == 0 or edc_lin[0] <= 0.0:
        return np.zeros(edc_lin.size)
    reference = max(edc_lin[0], EDC_EPSILON)
    with np.errstate(divide="ignore"):
        return 10.0 * np.log10(edc_lin / reference)


def rt60_from_edc(edc_db, sample_rate: int, db_start: float, db_end: float) -> Optional[float]:
    """
    Fit a line to the EDC between the samples closest to db_start and db_end
    and extrapolate to a 60 dB decay.

    Args:
        edc_db: Energy decay curve in dB
        sample_rate: Sample rate in Hz
        db_start: Upper level of the fit range (e.g. -5)
        db_end: Lower level of the fit range (e.g. -35 for T30)

    Returns:
        RT60 in seconds, or None if no decay could be fitted
    """
    edc_db = np.asarray(edc_db, dtype=np.float64)
    if edc_db.size == 0:
        return None

    def nearest_index(level_db: float) -> Optional[int]:
        err = np.abs(edc_db - level_db)
        if not np.any(np.isfinite(err)):
            return None
        return int(np.nanargmin(err))

    i1 = nearest_index(db_start)
    i2 = nearest_index(db_end)
    if i1 is None or i2 is None or i2 <= i1:
        return None

    x = np.arange(i1, i2 + 1, dtype=np.float64) / sample_rate
    y = edc_db[i1:i2 + 1]
    n = x.size
    sum_x = np.sum(x)
    sum_y = np.sum(y)
    sum_xy = np.sum(x * y)
    sum_x2 = np.sum(x * x)

    denom = n * sum_x2 - sum_x * sum_x
    if abs(denom) < 1e-12:
        return None

    slope = (n * sum_xy - sum_x * sum_y) / denom  # dB per second
    if not np.isfinite(slope) or slope >= 0:
        return None
    return float(-60.0 / slope)


def estimate_rt60(edc_db, sample_rate: int) -> Tuple[Optional[float], Optional[str]]:
    """Try T30 first, then T20. Returns (rt60, method) or (None, None)."""
    for method, (db_start, db_end) in (("T30", T30_RANGE_DB), ("T20", T20_RANGE_DB)):
        rt60 = rt60_from_edc(edc_db, sample_rate, db_start, db_end)
        if rt60 is not None:
            return rt60, method
        logger.debug(f"RT60 {method} estimation failed")
    return None, None


def clarity(ir, sample_rate: int, split_ms: float) -> Optional[float]:
    """
    Clarity index Cx = 10*log10(E_early / E_late) with the split at split_ms.

    Returns None if there is no late energy.
    """
    ir = np.asarray(ir, dtype=np.float64)
    split = int(np.floor(split_ms / 1000.0 * sample_rate + 0.5))
    split = min(max(split, 0), ir.size)

    energy = ir * ir
    early = float(np.sum(energy[:split]))
    late = float(np.sum(energy[split:]))
    if late <= 0.0:
        return None
    return float(10.0 * np.log10((early + 1e-20) / (late + 1e-20)))


def compute_acoustic_metrics(pcm, sample_rate: int,
                             config: Optional[MeasurementConfig] = None) -> AcousticMetrics:
    """
    Compute RT60, C50 and C80 from a recorded sweep response.

    Args:
        pcm: Recorded int16 samples
        sample_rate: Sample rate of the recording in Hz
        config: Configuration used to generate the sweep. If None, the default
            configuration at sample_rate is assumed.

    Returns:
        AcousticMetrics with None for any metric that could not be estimated

    Raises:
        ValueError: If config.sample_rate does not match sample_rate
    """
    if config is None:
        config = MeasurementConfig(sample_rate=int(sample_rate))
    elif config.sample_rate != sample_rate:
        raise ValueError(f"Config sample rate {config.sample_rate} Hz does not match "
                         f"recording sample rate {sample_rate} Hz")

    recorded = pcm16_to_float(pcm)
    if recorded.size == 0:
        logger.warning("Empty recording, no metrics available")
        return AcousticMetrics(None, None, None, None)

    ir = estimate_impulse_response(recorded, config)
    edc = schroeder_edc(ir)

    rt60, method = estimate_rt60(edc, sample_rate)
    c50 = clarity(ir, sample_rate, 50)
    c80 = clarity(ir, sample_rate, 80)

    if rt60 is None:
        logger.info("RT60 could not be estimated (no usable decay)")
    logger.info(f"Acoustic metrics: RT60={rt60} ({method}), C50={c50}, C80={c80}")
    return AcousticMetrics(rt60_sec=rt60, rt60_method=method, c50_db=c50, c80_db=c80)


def analyze_wav_file(filepath: str, config: Optional[MeasurementConfig] = None) -> AcousticMetrics:
    """
    Load a mono 16-bit recording and compute its acoustic metrics.

    Without a config, the default sweep parameters at the file's sample rate
    are assumed.
    """
    pcm, sample_rate = read_mono16_wav(filepath)
    if config is not None and config.sample_rate != sample_rate:
        logger.warning(f"Stored config sample rate {config.sample_rate} Hz differs from "
                       f"file sample rate {sample_rate} Hz, using file rate")
        config = config.with_sample_rate(sample_rate)
    return compute_acoustic_metrics(pcm, sample_rate, config)


def compute_spectrogram(pcm, sample_rate: int, window_size: int = 2048, hop: int = 512) -> np.ndarray:
    """
    Short-time magnitude spectrum in dB (frames x window_size // 2 + 1).

    Hann-windowed frames; samples past the end are zero. Magnitudes are
    floored at 1e-8 before conversion.
    """
    if window_size & (window_size - 1):
        raise ValueError(f"window_size must be a power of two, got {window_size}")
    samples = pcm16_to_float(pcm)
    window = 0.5 - 0.5 * np.cos(2.0 * np.pi * np.arange(window_size) / (window_size - 1))
    frames = max((samples.size - window_size) // hop, 1)

    frames_db = np.empty((frames, window_size // 2 + 1), dtype=np.float64)
    for f in range(frames):
        segment = samples[f * hop:f * hop + window_size]
        re = np.zeros(window_size)
        re[:segment.size] = segment * window[:segment.size]
        im = np.zeros(window_size)
        fft(re, im)
        mag = np.maximum(np.hypot(re[:window_size // 2 + 1], im[:window_size // 2 + 1]), 1e-8)
        frames_db[f] = 20.0 * np.log10(mag)

    logger.debug(f"Spectrogram: {frames} frames @ {sample_rate} Hz, window {window_size}, hop {hop}")
    return frames_db


def _fmt(value: Optional[float], unit: str) -> str:
    return f"{value:.2f} {unit}" if value is not None else "n/a"


def main():
    import argparse
    parser = argparse.ArgumentParser(description='Room acoustic analyzer (RT60, C50, C80)')
    parser.add_argument('wav', help='Recorded sweep response (mono 16-bit WAV)')
    parser.add_argument('-t', '--time', type=float, default=None, help='Sweep duration in seconds')
    parser.add_argument('-s', '--start', type=float, default=None, help='Sweep start frequency in Hz')
    parser.add_argument('-e', '--end', type=float, default=None, help='Sweep end frequency in Hz')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s:%(name)s:%(message)s')

    try:
        config = None
        if args.time is not None or args.start is not None or args.end is not None:
            _, sample_rate = read_mono16_wav(args.wav)
            defaults = MeasurementConfig(sample_rate=sample_rate)
            config = MeasurementConfig(
                sample_rate=sample_rate,
                sweep_duration=args.time if args.time is not None else defaults.sweep_duration,
                start_freq=args.start if args.start is not None else defaults.start_freq,
                end_freq=args.end if args.end is not None else defaults.end_freq,
            )
        metrics = analyze_wav_file(args.wav, config)
    except (ValueError, OSError) as e:
        print(f"ERROR: {e}")
        return 1

    rt60 = _fmt(metrics.rt60_sec, "s")
    if metrics.rt60_method:
        rt60 += f" ({metrics.rt60_method})"
    print(f"RT60: {rt60}")
    print(f"C50:  {_fmt(metrics.c50_db, 'dB')}")
    print(f"C80:  {_fmt(metrics.c80_db, 'dB')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
