import numpy as np
import pytest

from roomacoustic.signal_generator import (
    MeasurementConfig, generate_inverse_sweep, generate_log_sweep, generate_sweep_file,
)
from roomacoustic.wavfile import read_mono16_wav


def test_default_buffer_layout():
    config = MeasurementConfig()
    sweep = generate_log_sweep(config)

    assert sweep.size == 336000
    assert sweep.dtype == np.float64
    assert np.all(sweep[:24000] == 0.0)
    assert np.all(sweep[-24000:] == 0.0)
    assert sweep[24000] == 0.0  # phase starts at zero
    assert np.max(np.abs(sweep)) <= 0.9
    assert np.max(np.abs(sweep)) > 0.89


def test_sweep_is_deterministic():
    config = MeasurementConfig(sample_rate=16000, sweep_duration=1.0)
    np.testing.assert_array_equal(generate_log_sweep(config), generate_log_sweep(config))
    np.testing.assert_array_equal(generate_inverse_sweep(config), generate_inverse_sweep(config))


def test_sweep_frequency_rises():
    config = MeasurementConfig(sample_rate=16000, sweep_duration=2.0, start_freq=50.0, end_freq=5000.0,
                               head_silence=0.0, tail_silence=0.0)
    sweep = generate_log_sweep(config)
    first = sweep[:1600]
    last = sweep[-1600:]
    crossings_first = np.count_nonzero(np.diff(np.signbit(first)))
    crossings_last = np.count_nonzero(np.diff(np.signbit(last)))
    assert crossings_last > 10 * crossings_first


def test_inverse_sweep_shape():
    config = MeasurementConfig(sample_rate=8000, sweep_duration=1.0, start_freq=50.0, end_freq=3000.0,
                               head_silence=0.1, tail_silence=0.1)
    inverse = generate_inverse_sweep(config)

    assert inverse.size == config.total_samples
    assert np.all(inverse[:800] == 0.0)
    assert np.all(inverse[-800:] == 0.0)
    # Reversed: the high frequency end comes first and carries the larger weight
    early = np.max(np.abs(inverse[800:1600]))
    late = np.max(np.abs(inverse[-1600:-800]))
    assert early > 10 * late


def test_inverse_is_weighted_reverse():
    config = MeasurementConfig(sample_rate=8000, sweep_duration=0.5)
    forward = generate_log_sweep(config)
    t = np.arange(forward.size) / config.sample_rate
    expected = (forward * np.exp(config.sweep_rate * t))[::-1]
    np.testing.assert_allclose(generate_inverse_sweep(config), expected)


@pytest.mark.parametrize("kwargs", [
    {"sample_rate": 0},
    {"sweep_duration": 0.0},
    {"start_freq": 1000.0, "end_freq": 100.0},
    {"start_freq": 0.0},
    {"head_silence": -0.1},
    {"amplitude": 1.5},
])
def test_config_validation(kwargs):
    with pytest.raises(ValueError):
        MeasurementConfig(**kwargs)


def test_config_dict_round_trip():
    config = MeasurementConfig(sample_rate=44100, sweep_duration=3.0, start_freq=30.0)
    assert MeasurementConfig.from_dict(config.to_dict()) == config
    assert MeasurementConfig.from_dict({"sample_rate": 44100.0, "unknown": 1}).sample_rate == 44100


def test_generate_sweep_file(tmp_path):
    config = MeasurementConfig(sample_rate=8000, sweep_duration=0.5)
    path = generate_sweep_file(config, str(tmp_path), "sweep.wav")

    samples, sample_rate = read_mono16_wav(path)
    assert sample_rate == 8000
    assert samples.size == config.total_samples
    assert np.max(np.abs(samples)) <= int(0.9 * 32767) + 1
