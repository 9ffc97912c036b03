import numpy as np
import pytest

from roomacoustic.impulse_response import estimate_impulse_response
from roomacoustic.signal_generator import MeasurementConfig, generate_log_sweep

CONFIG = MeasurementConfig(sample_rate=8000, sweep_duration=1.0, start_freq=50.0, end_freq=3000.0,
                           head_silence=0.1, tail_silence=0.1)


def test_loopback_gives_single_peak():
    recorded = np.concatenate([np.zeros(100), generate_log_sweep(CONFIG)])
    ir = estimate_impulse_response(recorded, CONFIG)

    pre = int(0.02 * CONFIG.sample_rate)
    peak = int(np.argmax(np.abs(ir)))
    assert peak == pre
    assert ir.size <= pre + int(3.0 * CONFIG.sample_rate)
    assert np.abs(ir[peak]) > 20 * np.median(np.abs(ir[pre + 400:]))


def test_window_limits():
    recorded = generate_log_sweep(CONFIG)
    ir = estimate_impulse_response(recorded, CONFIG, pre_peak=0.01, post_peak=0.1)
    assert int(np.argmax(np.abs(ir))) == 80
    assert ir.size <= 80 + 800


def test_empty_recording():
    with pytest.raises(ValueError):
        estimate_impulse_response(np.zeros(0), CONFIG)


def test_short_recording_still_estimates():
    recorded = generate_log_sweep(CONFIG)[:2000]
    ir = estimate_impulse_response(recorded, CONFIG)
    assert ir.size > 0
