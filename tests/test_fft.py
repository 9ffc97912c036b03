import numpy as np
import pytest

from roomacoustic.fft import fft, ifft, fft_convolve, next_power_of_two


def test_matches_numpy_dft():
    rng = np.random.default_rng(1)
    re = rng.standard_normal(1024)
    im = rng.standard_normal(1024)
    expected = np.fft.fft(re + 1j * im)

    fft(re, im)

    np.testing.assert_allclose(re, expected.real, atol=1e-9)
    np.testing.assert_allclose(im, expected.imag, atol=1e-9)


@pytest.mark.parametrize("n", [2 ** p for p in range(1, 17)])
def test_round_trip(n):
    rng = np.random.default_rng(n)
    re = rng.standard_normal(n)
    im = rng.standard_normal(n)
    re0, im0 = re.copy(), im.copy()

    fft(re, im)
    ifft(re, im)

    np.testing.assert_allclose(re, re0, atol=1e-9)
    np.testing.assert_allclose(im, im0, atol=1e-9)


def test_impulse_has_flat_spectrum():
    re = np.zeros(64)
    im = np.zeros(64)
    re[0] = 1.0
    fft(re, im)
    np.testing.assert_allclose(re, np.ones(64), atol=1e-12)
    np.testing.assert_allclose(im, np.zeros(64), atol=1e-12)


@pytest.mark.parametrize("re,im", [
    (np.zeros(3), np.zeros(3)),
    (np.zeros(0), np.zeros(0)),
    (np.zeros(8), np.zeros(4)),
    (np.zeros(8, dtype=np.int64), np.zeros(8, dtype=np.int64)),
    (np.zeros(16)[::2], np.zeros(8)),
    (np.zeros((4, 4)), np.zeros((4, 4))),
])
def test_rejects_invalid_buffers(re, im):
    with pytest.raises(ValueError):
        fft(re, im)


def test_ifft_rejects_non_power_of_two():
    with pytest.raises(ValueError):
        ifft(np.zeros(6), np.zeros(6))


def test_next_power_of_two():
    assert next_power_of_two(1) == 1
    assert next_power_of_two(2) == 2
    assert next_power_of_two(3) == 4
    assert next_power_of_two(1025) == 2048
    with pytest.raises(ValueError):
        next_power_of_two(0)


def test_convolve_example():
    out = fft_convolve([1.0, 0.0, 0.0], [1.0, 1.0, 1.0])
    np.testing.assert_allclose(out, [1.0, 1.0, 1.0, 0.0, 0.0], atol=1e-9)


def test_convolve_identity():
    x = np.array([0.5, -1.0, 2.0, 3.0, 0.25])
    np.testing.assert_allclose(fft_convolve(x, [1.0]), x, atol=1e-9)


def test_convolve_matches_direct():
    rng = np.random.default_rng(7)
    a = rng.standard_normal(300)
    b = rng.standard_normal(77)
    out = fft_convolve(a, b)
    assert out.size == a.size + b.size - 1
    np.testing.assert_allclose(out, np.convolve(a, b), atol=1e-9)


def test_convolve_rejects_empty():
    with pytest.raises(ValueError):
        fft_convolve([], [1.0])
    with pytest.raises(ValueError):
        fft_convolve([1.0], [])
