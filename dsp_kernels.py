# Copyright 2025
# Damien Davison & Michael Maillet & Sacha Davison
# Recursive AI Devs
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at:
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Low-level DSP kernels shared by the spectral and LPC formant engines.

Everything in here is a pure function of its arguments: framing and
windowing, a radix-2 FFT, log-spectral envelope smoothing, formant peak
picking, autocorrelation, the Levinson-Durbin recursion, Laguerre root
finding and the mapping from LPC roots to formant frequencies.
"""

import cmath
import logging
import math
from enum import Enum
from typing import List, Sequence, Tuple

import numpy as np
from scipy import signal

logger = logging.getLogger(__name__)

FORMANT_MIN_HZ = 200.0
FORMANT_MAX_HZ = 4000.0
DEFAULT_FORMANTS = (500.0, 1500.0, 2500.0)
DEFAULT_BANDWIDTHS = (80.0, 100.0, 120.0)
MIN_BANDWIDTH_HZ = 20.0
MAX_BANDWIDTH_HZ = 500.0
MIN_PEAK_RATIO = 1.1

LOG_FLOOR = 1e-10
SILENCE_ENERGY = 1e-10
COMPLEX_DIVISION_FLOOR = 1e-20

LAGUERRE_MAX_ITERATIONS = 50
LAGUERRE_EPSILON = 1e-10
LAGUERRE_NUDGE = 0.01 + 0.01j
LAGUERRE_SEED_RADIUS = 0.9
REAL_ROOT_TOLERANCE = 0.01


class PeakRanking(str, Enum):
    """How envelope peaks compete for the three formant slots."""

    MAGNITUDE = "magnitude"
    PROMINENCE = "prominence"


class RootDeflation(str, Enum):
    """Polynomial deflation strategy used between successive root searches."""

    COMPLEX = "complex"
    REAL_ONLY = "real-only"


# ------------------------------------------------------------------
# Complex arithmetic
# ------------------------------------------------------------------
# Python's complex type already covers add, sub, mul and abs; only the
# guarded division and the principal square root need explicit care.


def complex_divide(numerator: complex, denominator: complex) -> complex:
    """Divide two complex numbers, yielding 0 for a vanishing denominator."""
    scale = denominator.real * denominator.real + denominator.imag * denominator.imag
    if scale < COMPLEX_DIVISION_FLOOR:
        return 0j
    return numerator / denominator


def complex_sqrt(value: complex) -> complex:
    """Principal square root (non-negative real part)."""
    return cmath.sqrt(value)


# ------------------------------------------------------------------
# Framing and windows
# ------------------------------------------------------------------


def hann_window(length: int) -> np.ndarray:
    """Periodic Hann taper 0.5 * (1 - cos(2*pi*i/N))."""
    if length <= 0:
        return np.zeros(0, dtype=np.float64)
    return signal.get_window("hann", length)


def frame_signal(samples, window: int, hop: int) -> np.ndarray:
    """
    Slice a 1-D signal into overlapping frames using stride tricks.

    Only frames that fit completely inside the signal are produced, so a
    signal shorter than ``window`` yields an empty ``(0, window)`` array.
    """
    samples = np.ascontiguousarray(samples, dtype=np.float64)
    if samples.ndim != 1:
        raise ValueError("samples must be 1-D")
    if window <= 0 or hop <= 0:
        raise ValueError("window and hop must be positive")

    if len(samples) < window:
        return np.zeros((0, window), dtype=np.float64)

    total_frames = 1 + (len(samples) - window) // hop
    shape = (total_frames, window)
    strides = (samples.strides[0] * hop, samples.strides[0])
    frames = np.lib.stride_tricks.as_strided(samples, shape=shape, strides=strides)
    return frames.copy()


# ------------------------------------------------------------------
# FFT and spectral envelope
# ------------------------------------------------------------------


def next_power_of_two(length: int) -> int:
    if length <= 1:
        return 1
    return 1 << (length - 1).bit_length()


def bit_reverse_indices(size: int) -> np.ndarray:
    """Permutation that puts ``size`` (a power of two) inputs in bit-reversed order."""
    bits = size.bit_length() - 1
    index = np.arange(size)
    reversed_index = np.zeros(size, dtype=np.int64)
    for _ in range(bits):
        reversed_index = (reversed_index << 1) | (index & 1)
        index = index >> 1
    return reversed_index


def fft_magnitude(frame) -> np.ndarray:
    """
    Magnitude spectrum of a real frame via an iterative radix-2 FFT.

    The frame is zero-padded to the next power of two and the magnitudes of
    the first half of the bins (the positive frequencies) are returned.
    """
    frame = np.asarray(frame, dtype=np.float64).ravel()
    size = next_power_of_two(len(frame))

    buffer = np.zeros(size, dtype=np.complex128)
    buffer[: len(frame)] = frame
    buffer = buffer[bit_reverse_indices(size)]

    half = 1
    while half < size:
        span = half * 2
        twiddle = np.exp(-2j * np.pi * np.arange(half) / span)
        blocks = buffer.reshape(-1, span)
        even = blocks[:, :half].copy()
        odd = blocks[:, half:] * twiddle
        blocks[:, :half] = even + odd
        blocks[:, half:] = even - odd
        half = span

    return np.abs(buffer[: size // 2])


def spectral_envelope(magnitude, *, min_half_width: int = 5, width_divisor: int = 30) -> np.ndarray:
    """
    Smooth a magnitude spectrum in the log domain to expose resonances.

    A symmetric moving average of half-width ``max(min_half_width,
    bins // width_divisor)`` runs over ``log(max(mag, 1e-10))``; windows are
    truncated at the spectrum edges and averaged over the bins they cover.
    The log spectrum is centred on its mean before averaging, so a flat
    spectrum (a silent frame) gives an exactly flat envelope.
    """
    magnitude = np.asarray(magnitude, dtype=np.float64)
    bins = len(magnitude)
    if bins == 0:
        return magnitude.copy()

    log_mag = np.log(np.maximum(magnitude, LOG_FLOOR))
    offset = log_mag.mean()
    half_width = max(min_half_width, bins // width_divisor)

    kernel = np.ones(2 * half_width + 1)
    totals = np.convolve(log_mag - offset, kernel, mode="full")[half_width : half_width + bins]
    counts = np.convolve(np.ones(bins), kernel, mode="full")[half_width : half_width + bins]
    return np.exp(totals / counts + offset)


def pick_formant_peaks(
    envelope,
    sample_rate: float,
    ranking: PeakRanking = PeakRanking.MAGNITUDE,
    *,
    fmin: float = FORMANT_MIN_HZ,
    fmax: float = FORMANT_MAX_HZ,
    min_peak_ratio: float = MIN_PEAK_RATIO,
    defaults: Sequence[float] = DEFAULT_FORMANTS,
) -> Tuple[Tuple[float, float, float], int]:
    """
    Choose F1-F3 from the local maxima of a spectral envelope.

    A bin is a peak when it is higher than both neighbours and exceeds their
    mean by ``min_peak_ratio``. Bins strictly inside
    ``(floor(fmin / hz_per_bin), floor(fmax / hz_per_bin) - 1)`` are searched.

    Args:
        envelope: Smoothed magnitude envelope of the positive-frequency bins
        sample_rate: Sampling rate of the analysed frame
        ranking: Score used to keep the best three peaks
        fmin, fmax: Band in which peaks are accepted
        min_peak_ratio: Required height over the neighbour mean (1.0 accepts any local maximum)
        defaults: Values used for slots that no peak filled

    Returns:
        (f1, f2, f3) in ascending order, and the number of real peaks used
    """
    envelope = np.asarray(envelope, dtype=np.float64)
    ranking = PeakRanking(ranking)
    bins = len(envelope)

    frequencies: List[float] = []
    if bins >= 3:
        freq_per_bin = sample_rate / (2.0 * bins)
        first = max(1, int(math.floor(fmin / freq_per_bin)) + 1)
        last = min(bins - 1, int(math.floor(fmax / freq_per_bin))) - 1
        index = np.arange(first, max(first, last))

        centre = envelope[index]
        left = envelope[index - 1]
        right = envelope[index + 1]
        is_peak = (centre > left) & (centre > right) & (centre > min_peak_ratio * 0.5 * (left + right))

        if np.any(is_peak):
            if ranking is PeakRanking.PROMINENCE:
                score = centre - np.minimum(left, right)
            else:
                score = centre
            candidates = np.flatnonzero(is_peak)
            order = np.argsort(-score[candidates], kind="stable")
            chosen = index[candidates[order[:3]]]
            frequencies = sorted(float(i * freq_per_bin) for i in chosen)

    detected = len(frequencies)
    for slot in range(detected, 3):
        frequencies.append(float(defaults[slot]))
    frequencies.sort()
    return (frequencies[0], frequencies[1], frequencies[2]), detected


# ------------------------------------------------------------------
# Linear prediction
# ------------------------------------------------------------------


def pre_emphasis(samples, coefficient: float = 0.97) -> np.ndarray:
    """y[n] = x[n] - coefficient * x[n-1], with y[0] = x[0]."""
    samples = np.asarray(samples, dtype=np.float64)
    if samples.size == 0:
        return samples.copy()
    return signal.lfilter([1.0, -coefficient], [1.0], samples)


def decimate_triangular(samples, sample_rate: float, target_rate: float = 10000.0) -> Tuple[np.ndarray, float]:
    """
    Reduce the sampling rate by an integer stride after triangular smoothing.

    The stride is ``ratio = round(sample_rate / target_rate)``. Each sample is
    first replaced by a triangular-weighted average over +/- ``max(3, 2 * ratio)``
    neighbours, weights ``1 - |j| / (half_width + 1)`` renormalised near the
    edges, then every stride-th value is kept. Signals already at or below
    ``target_rate`` pass through untouched.

    Returns:
        decimated samples and the effective sampling rate
    """
    samples = np.asarray(samples, dtype=np.float64)
    if sample_rate <= target_rate or samples.size == 0:
        return samples.copy(), float(sample_rate)

    ratio = max(1, int(math.floor(sample_rate / target_rate + 0.5)))
    half_width = max(3, 2 * ratio)
    weights = signal.windows.triang(2 * half_width + 1)
    weighted = signal.convolve(samples, weights, mode="same")
    coverage = signal.convolve(np.ones_like(samples), weights, mode="same")
    smoothed = weighted / coverage
    return smoothed[::ratio], float(sample_rate) / ratio


def lpc_autocorrelation(frame, order: int) -> np.ndarray:
    """Autocorrelation R[0..order] of a frame (zero beyond the frame length)."""
    frame = np.asarray(frame, dtype=np.float64)
    result = np.zeros(order + 1, dtype=np.float64)
    if frame.size == 0:
        return result
    corr = np.correlate(frame, frame, mode="full")
    mid = len(frame) - 1
    available = min(order + 1, len(frame))
    result[:available] = corr[mid : mid + available]
    return result


def levinson_durbin(autocorr, order: int) -> np.ndarray:
    """
    Levinson-Durbin recursion on an autocorrelation sequence.

    Returns predictor coefficients ``[1, a1, ..., a_order]`` such that
    x[n] is approximated by sum(a_k * x[n-k]). A silent frame
    (R[0] below 1e-10) returns ``[1, 0, ..., 0]``; the recursion stops early
    once the prediction error collapses.
    """
    autocorr = np.asarray(autocorr, dtype=np.float64)
    coeffs = np.zeros(order + 1, dtype=np.float64)
    coeffs[0] = 1.0
    if autocorr[0] < SILENCE_ENERGY:
        return coeffs

    previous = coeffs.copy()
    error = autocorr[0]
    for i in range(1, order + 1):
        reflection = (autocorr[i] - np.dot(previous[1:i], autocorr[i - 1 : 0 : -1])) / error
        coeffs[i] = reflection
        coeffs[1:i] = previous[1:i] - reflection * previous[i - 1 : 0 : -1]
        error *= 1.0 - reflection * reflection
        if error < SILENCE_ENERGY:
            break
        previous[: i + 1] = coeffs[: i + 1]
    return coeffs


def prediction_polynomial(predictor) -> np.ndarray:
    """Prediction-error polynomial A(z) = 1 - sum(a_k z^-k) in descending powers."""
    predictor = np.asarray(predictor, dtype=np.float64)
    polynomial = -predictor
    polynomial[0] = 1.0
    return polynomial


# ------------------------------------------------------------------
# Laguerre root finding
# ------------------------------------------------------------------


def _evaluate_with_derivatives(coeffs: Sequence[complex], x: complex) -> Tuple[complex, complex, complex]:
    p = coeffs[0]
    dp = 0j
    d2p = 0j
    for c in coeffs[1:]:
        d2p = d2p * x + 2.0 * dp
        dp = dp * x + p
        p = p * x + c
    return p, dp, d2p


def laguerre_root(
    coeffs: Sequence[complex],
    start: complex,
    *,
    max_iterations: int = LAGUERRE_MAX_ITERATIONS,
    epsilon: float = LAGUERRE_EPSILON,
) -> complex:
    """
    Refine one root of a polynomial with Laguerre's method.

    When the Laguerre denominator vanishes the iterate is nudged and the
    search continues; after ``max_iterations`` the latest iterate is
    returned as the best available root.
    """
    degree = len(coeffs) - 1
    x = complex(start)
    if degree < 1:
        return x

    for _ in range(max_iterations):
        p, dp, d2p = _evaluate_with_derivatives(coeffs, x)
        if abs(p) < epsilon:
            return x

        g = complex_divide(dp, p)
        h = g * g - complex_divide(d2p, p)
        root = complex_sqrt((degree - 1) * (degree * h - g * g))
        plus = g + root
        minus = g - root
        denominator = plus if abs(plus) > abs(minus) else minus
        if abs(denominator) < epsilon:
            x += LAGUERRE_NUDGE
            continue

        step = complex_divide(complex(degree), denominator)
        x -= step
        if abs(step) < epsilon:
            return x
    return x


def _deflate(coeffs: List[complex], root: complex, deflation: RootDeflation) -> List[complex]:
    if deflation is RootDeflation.REAL_ONLY:
        if abs(root.imag) >= REAL_ROOT_TOLERANCE:
            return coeffs
        root = complex(root.real, 0.0)

    quotient = [coeffs[0]]
    for c in coeffs[1:-1]:
        quotient.append(c + root * quotient[-1])
    return quotient


def find_polynomial_roots(
    coefficients,
    deflation: RootDeflation = RootDeflation.COMPLEX,
    *,
    max_iterations: int = LAGUERRE_MAX_ITERATIONS,
    epsilon: float = LAGUERRE_EPSILON,
) -> List[complex]:
    """
    Find every root of a polynomial (descending powers) with Laguerre's method.

    Searches are seeded at ``n`` points evenly spaced on a circle of radius
    0.9. ``RootDeflation.COMPLEX`` divides each root out with complex Horner
    division. ``RootDeflation.REAL_ONLY`` only divides out roots whose
    imaginary part is below 0.01 (using their real part), so complex roots
    stay in the polynomial and later searches may converge to them again.
    """
    current = [complex(c) for c in np.asarray(coefficients).ravel()]
    degree = len(current) - 1
    deflation = RootDeflation(deflation)

    roots: List[complex] = []
    for k in range(degree):
        if len(current) < 2:
            break
        seed = LAGUERRE_SEED_RADIUS * cmath.exp(2j * math.pi * k / degree)
        root = laguerre_root(current, seed, max_iterations=max_iterations, epsilon=epsilon)
        roots.append(root)
        current = _deflate(current, root, deflation)
    return roots


def roots_to_formants(
    roots: Sequence[complex],
    sample_rate: float,
    *,
    fmin: float = FORMANT_MIN_HZ,
    fmax: float = FORMANT_MAX_HZ,
) -> Tuple[np.ndarray, np.ndarray, int]:
    """
    Convert LPC polynomial roots to the three lowest formants.

    Args:
        roots: Roots of the prediction-error polynomial
        sample_rate: Rate of the signal the polynomial was fitted on
        fmin, fmax: Accepted formant band

    Returns:
        frequencies (3,), bandwidths (3,) sorted by frequency, and the number
        of formants recovered before defaults were filled in
    """
    candidates = []
    for root in roots:
        magnitude = abs(root)
        if not (0.5 < magnitude < 0.99) or root.imag <= 0.01:
            continue
        frequency = abs(cmath.phase(root)) * sample_rate / (2.0 * math.pi)
        bandwidth = -math.log(magnitude) * sample_rate / math.pi
        if fmin <= frequency <= fmax and MIN_BANDWIDTH_HZ < bandwidth < MAX_BANDWIDTH_HZ:
            candidates.append((frequency, bandwidth))

    candidates.sort()
    chosen = candidates[:3]
    detected = len(chosen)
    for slot in range(detected, 3):
        chosen.append((DEFAULT_FORMANTS[slot], DEFAULT_BANDWIDTHS[slot]))
    chosen.sort()

    frequencies = np.array([f for f, _ in chosen], dtype=np.float64)
    bandwidths = np.array([b for _, b in chosen], dtype=np.float64)
    return frequencies, bandwidths, detected


# ------------------------------------------------------------------
# Perceptual scales
# ------------------------------------------------------------------


def hz_to_bark(freq_hz):
    """Traunmüller Bark scale: 26.81 * f / (1960 + f) - 0.53."""
    freq_hz = np.asarray(freq_hz, dtype=np.float64)
    return 26.81 * freq_hz / (1960.0 + freq_hz) - 0.53
