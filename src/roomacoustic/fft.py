"""
FFT module for RoomAcoustic.

In-place iterative radix-2 Cooley-Tukey transform over separate real and
imaginary buffers, plus the FFT based linear convolution used for sweep
deconvolution. Callers are responsible for padding to a power of two; the
transform itself never pads.
"""

import logging
import numpy as np

logger = logging.getLogger(__name__)


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (n >= 1)."""
    if n < 1:
        raise ValueError(f"n must be >= 1, got {n}")
    size = 1
    while size < n:
        size <<= 1
    return size


def _bit_reverse_indices(n: int) -> np.ndarray:
    bits = n.bit_length() - 1
    idx = np.arange(n, dtype=np.int64)
    rev = np.zeros(n, dtype=np.int64)
    for b in range(bits):
        rev |= ((idx >> b) & 1) << (bits - 1 - b)
    return rev


def _check_buffers(re: np.ndarray, im: np.ndarray):
    if re.ndim != 1 or im.ndim != 1:
        raise ValueError("FFT buffers must be one-dimensional")
    n = re.size
    if n != im.size:
        raise ValueError(f"Real and imaginary buffers differ in length: {n} != {im.size}")
    if n == 0 or n & (n - 1):
        raise ValueError(f"FFT length must be a power of two, got {n}")
    for name, buf in (("re", re), ("im", im)):
        if buf.dtype != np.float64:
            raise ValueError(f"{name} must be float64, got {buf.dtype}")
        if not buf.flags.c_contiguous or not buf.flags.writeable:
            raise ValueError(f"{name} must be a writable contiguous array")


def _transform(re: np.ndarray, im: np.ndarray, inverse: bool):
    _check_buffers(re, im)
    n = re.size

    perm = _bit_reverse_indices(n)
    re[:] = re[perm]
    im[:] = im[perm]

    sign = 1.0 if inverse else -1.0
    size = 2
    while size <= n:
        half = size >> 1
        theta = sign * 2.0 * np.pi * np.arange(half) / size
        wr = np.cos(theta)
        wi = np.sin(theta)

        # Rows are independent butterfly groups of the current stage
        r = re.reshape(-1, size)
        i = im.reshape(-1, size)
        tr = wr * r[:, half:] - wi * i[:, half:]
        ti = wr * i[:, half:] + wi * r[:, half:]
        r[:, half:] = r[:, :half] - tr
        i[:, half:] = i[:, :half] - ti
        r[:, :half] += tr
        i[:, :half] += ti

        size <<= 1

    if inverse:
        re /= n
        im /= n


def fft(re: np.ndarray, im: np.ndarray):
    """
    Forward DFT in place.

    Args:
        re: Real parts, float64, length a power of two
        im: Imaginary parts, same length as re

    Raises:
        ValueError: If the buffers violate the length/dtype preconditions
    """
    _transform(re, im, inverse=False)


def ifft(re: np.ndarray, im: np.ndarray):
    """Inverse DFT in place, scaled by 1/n."""
    _transform(re, im, inverse=True)


def fft_convolve(a, b) -> np.ndarray:
    """
    Linear convolution of two real sequences via zero-padded FFT.

    Args:
        a: First real sequence (length m)
        b: Second real sequence (length k)

    Returns:
        Real float64 array of length m + k - 1

    Raises:
        ValueError: If either input is empty
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.size == 0 or b.size == 0:
        raise ValueError("fft_convolve requires non-empty inputs")

    n_conv = a.size + b.size - 1
    n_fft = next_power_of_two(n_conv)
    logger.debug(f"fft_convolve: {a.size} x {b.size} -> {n_conv} samples, FFT size {n_fft}")

    are = np.zeros(n_fft)
    aim = np.zeros(n_fft)
    bre = np.zeros(n_fft)
    bim = np.zeros(n_fft)
    are[:a.size] = a
    bre[:b.size] = b

    fft(are, aim)
    fft(bre, bim)

    re = are * bre - aim * bim
    im = are * bim + aim * bre
    ifft(re, im)

    # Imaginary residue is rounding noise
    return re[:n_conv].copy()
