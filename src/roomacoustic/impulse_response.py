"""
Impulse response estimation for RoomAcoustic.

Deconvolves a recorded sweep response by convolving it with the inverse
sweep regenerated from the measurement configuration, then windows the
result around the direct-sound peak.
"""

import logging
import numpy as np

from .fft import fft_convolve
from .signal_generator import MeasurementConfig, generate_inverse_sweep

logger = logging.getLogger(__name__)

PRE_PEAK_SECONDS = 0.02
POST_PEAK_SECONDS = 3.0


def estimate_impulse_response(recorded, config: MeasurementConfig,
                              pre_peak: float = PRE_PEAK_SECONDS,
                              post_peak: float = POST_PEAK_SECONDS) -> np.ndarray:
    """
    Recover the room impulse response from a recorded sweep response.

    Args:
        recorded: Recorded signal as floats in [-1, 1]
        config: The configuration the sweep was generated with
        pre_peak: Seconds kept before the direct-sound peak
        post_peak: Maximum seconds kept after the peak

    Returns:
        float64 impulse response starting up to pre_peak seconds before the peak

    Raises:
        ValueError: If the recording is empty
    """
    recorded = np.asarray(recorded, dtype=np.float64).ravel()
    if recorded.size == 0:
        raise ValueError("Cannot estimate an impulse response from an empty recording")
    if recorded.size < config.total_samples:
        logger.warning(f"Recording ({recorded.size} samples) is shorter than the sweep "
                       f"({config.total_samples} samples); estimate will be unreliable")

    inverse = generate_inverse_sweep(config)
    full = fft_convolve(recorded, inverse)

    peak_idx = int(np.argmax(np.abs(full)))
    sr = config.sample_rate
    pre = int(pre_peak * sr)
    post = min(int(post_peak * sr), full.size - peak_idx)
    start = max(peak_idx - pre, 0)
    end = min(peak_idx + post, full.size)

    logger.debug(f"Impulse response: peak at sample {peak_idx} of {full.size}, "
                 f"window [{start}, {end})")
    return full[start:end].copy()
