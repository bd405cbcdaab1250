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
Tests for the low-level DSP kernels: framing, FFT, envelopes, LPC and root finding.
"""

import cmath
import math

import numpy as np
import pytest
from scipy import signal
from scipy.linalg import solve_toeplitz

from dsp_kernels import (
    PeakRanking,
    RootDeflation,
    bit_reverse_indices,
    complex_divide,
    complex_sqrt,
    decimate_triangular,
    fft_magnitude,
    find_polynomial_roots,
    frame_signal,
    hann_window,
    hz_to_bark,
    levinson_durbin,
    lpc_autocorrelation,
    next_power_of_two,
    pick_formant_peaks,
    pre_emphasis,
    prediction_polynomial,
    roots_to_formants,
    spectral_envelope,
)


def _polar(radius, freq_hz, sample_rate):
    return cmath.rect(radius, 2 * math.pi * freq_hz / sample_rate)


def _closest_distance(value, candidates):
    return min(abs(value - c) for c in candidates)


def test_complex_divide_guards_vanishing_denominator():
    assert complex_divide(1 + 2j, 0j) == 0j
    assert complex_divide(1 + 2j, 1e-11 + 0j) == 0j
    assert complex_divide(4 + 2j, 2 + 0j) == pytest.approx(2 + 1j)


def test_complex_sqrt_is_principal_root():
    assert complex_sqrt(-4 + 0j) == pytest.approx(2j)
    root = complex_sqrt(3 - 4j)
    assert root == pytest.approx(2 - 1j)
    assert root.real >= 0


def test_hann_window_is_periodic():
    window = hann_window(8)
    expected = 0.5 * (1 - np.cos(2 * np.pi * np.arange(8) / 8))
    np.testing.assert_allclose(window, expected, atol=1e-12)
    assert hann_window(0).shape == (0,)


def test_frame_signal_keeps_only_complete_frames():
    frames = frame_signal(np.arange(10, dtype=float), window=4, hop=2)
    assert frames.shape == (4, 4)
    np.testing.assert_array_equal(frames[0], [0, 1, 2, 3])
    np.testing.assert_array_equal(frames[-1], [6, 7, 8, 9])

    assert frame_signal(np.arange(3, dtype=float), window=4, hop=2).shape == (0, 4)
    with pytest.raises(ValueError):
        frame_signal(np.zeros((2, 2)), window=1, hop=1)


@pytest.mark.parametrize("length,expected", [(1, 1), (5, 8), (8, 8), (1000, 1024), (1024, 1024)])
def test_next_power_of_two(length, expected):
    assert next_power_of_two(length) == expected


def test_bit_reverse_indices():
    np.testing.assert_array_equal(bit_reverse_indices(8), [0, 4, 2, 6, 1, 5, 3, 7])


def test_fft_magnitude_matches_numpy():
    rng = np.random.default_rng(3)
    frame = rng.standard_normal(300)

    magnitude = fft_magnitude(frame)
    expected = np.abs(np.fft.fft(frame, 512))[:256]

    assert magnitude.shape == (256,)
    np.testing.assert_allclose(magnitude, expected, rtol=1e-9, atol=1e-9)


def test_fft_magnitude_locates_tone():
    sample_rate = 8000
    t = np.arange(256) / sample_rate
    frame = np.sin(2 * np.pi * 1000 * t)
    magnitude = fft_magnitude(frame)
    assert np.argmax(magnitude) == 32  # 1000 Hz / (8000 / 256)


def test_spectral_envelope_preserves_constant_spectrum():
    envelope = spectral_envelope(np.full(64, 3.0))
    np.testing.assert_allclose(envelope, 3.0)


def test_spectral_envelope_floors_zeros_and_smooths_spikes():
    magnitude = np.ones(300)
    magnitude[150] = 1e6
    magnitude[10] = 0.0
    envelope = spectral_envelope(magnitude)

    assert np.all(np.isfinite(envelope))
    assert envelope.max() < 1e6
    # half-width is max(5, 300 // 30) = 10, so the spike spreads over 21 bins
    assert envelope[140] > 1.0
    assert envelope[139] < envelope[140]


def test_silent_frame_has_flat_envelope_and_no_peaks():
    magnitude = fft_magnitude(np.zeros(1024))
    envelope = spectral_envelope(magnitude)

    np.testing.assert_allclose(envelope, envelope[0], rtol=1e-12)
    formants, detected = pick_formant_peaks(envelope, 44100)
    assert formants == (500.0, 1500.0, 2500.0)
    assert detected == 0


def _bump_envelope(bins, centres, heights, width=3.0, floor=0.01):
    index = np.arange(bins)
    envelope = np.full(bins, floor)
    for centre, height in zip(centres, heights):
        envelope += height * np.exp(-0.5 * ((index - centre) / width) ** 2)
    return envelope


def test_pick_formant_peaks_finds_three_band_limited_peaks():
    # 512 bins at 16 kHz -> 15.625 Hz per bin; bin 5 (78 Hz) is below the band
    envelope = _bump_envelope(512, centres=[5, 40, 96, 160], heights=[10.0, 1.0, 0.8, 0.5], width=1.0)

    (f1, f2, f3), detected = pick_formant_peaks(envelope, 16000)

    assert detected == 3
    assert (f1, f2, f3) == pytest.approx((625.0, 1500.0, 2500.0))


def test_peak_ranking_policies_choose_different_peaks():
    envelope = np.ones(512)
    envelope[19:22] = [8.0, 10.0, 8.0]  # tall but broad at 312.5 Hz
    envelope[60] = 5.0
    envelope[100] = 4.0
    envelope[140] = 3.5

    by_magnitude, _ = pick_formant_peaks(envelope, 16000, PeakRanking.MAGNITUDE)
    by_prominence, _ = pick_formant_peaks(envelope, 16000, PeakRanking.PROMINENCE)

    assert by_magnitude == pytest.approx((312.5, 937.5, 1562.5))
    assert by_prominence == pytest.approx((937.5, 1562.5, 2187.5))


def test_pick_formant_peaks_defaults_when_flat():
    formants, detected = pick_formant_peaks(np.ones(256), 16000, "prominence")
    assert formants == (500.0, 1500.0, 2500.0)
    assert detected == 0


def test_shallow_maximum_is_not_a_peak():
    envelope = np.ones(512)
    envelope[100] = 1.05  # 1562.5 Hz, only 5% over its neighbours

    assert pick_formant_peaks(envelope, 16000) == ((500.0, 1500.0, 2500.0), 0)
    formants, detected = pick_formant_peaks(envelope, 16000, min_peak_ratio=1.0)
    assert detected == 1
    assert formants == pytest.approx((1500.0, 1562.5, 2500.0))


def test_pick_formant_peaks_keeps_order_after_filling_defaults():
    envelope = np.ones(512)
    envelope[176] = 2.0  # 2750 Hz

    formants, detected = pick_formant_peaks(envelope, 16000)

    assert detected == 1
    assert formants == pytest.approx((1500.0, 2500.0, 2750.0))


def test_pre_emphasis_keeps_first_sample():
    np.testing.assert_allclose(pre_emphasis([1.0, 1.0, 1.0]), [1.0, 0.03, 0.03])
    assert pre_emphasis([]).shape == (0,)


@pytest.mark.parametrize(
    "sample_rate,expected_rate,stride",
    [(44100, 11025.0, 4), (16000, 8000.0, 2), (48000, 9600.0, 5), (8000, 8000.0, 1)],
)
def test_decimate_triangular_rates(sample_rate, expected_rate, stride):
    samples = np.full(1001, 0.5)
    decimated, rate = decimate_triangular(samples, sample_rate)

    assert rate == pytest.approx(expected_rate)
    assert len(decimated) == math.ceil(1001 / stride)
    np.testing.assert_allclose(decimated, 0.5)


def test_decimate_triangular_attenuates_energy_above_new_nyquist():
    sample_rate = 44100
    t = np.arange(sample_rate // 2) / sample_rate
    low = np.sin(2 * np.pi * 500 * t)
    high = np.sin(2 * np.pi * 9000 * t)

    low_out, _ = decimate_triangular(low, sample_rate)
    high_out, _ = decimate_triangular(high, sample_rate)

    assert np.std(high_out) < 0.25 * np.std(low_out)


def _triangular_decimate_loop(samples, ratio):
    half_width = max(3, 2 * ratio)
    smoothed = []
    for i in range(len(samples)):
        total = 0.0
        weight_sum = 0.0
        for j in range(-half_width, half_width + 1):
            if 0 <= i + j < len(samples):
                weight = 1.0 - abs(j) / (half_width + 1)
                total += samples[i + j] * weight
                weight_sum += weight
        smoothed.append(total / weight_sum)
    return np.array(smoothed[::ratio])


@pytest.mark.parametrize("sample_rate,ratio", [(44100, 4), (16000, 2), (12000, 1)])
def test_decimate_triangular_matches_direct_weighted_average(sample_rate, ratio):
    samples = np.random.default_rng(11).standard_normal(500)

    decimated, rate = decimate_triangular(samples, sample_rate)

    assert rate == pytest.approx(sample_rate / ratio)
    np.testing.assert_allclose(decimated, _triangular_decimate_loop(samples, ratio), rtol=1e-10, atol=1e-12)


def test_lpc_autocorrelation_small_frame():
    np.testing.assert_allclose(lpc_autocorrelation([1.0, 2.0, 3.0], 4), [14.0, 8.0, 3.0, 0.0, 0.0])


def test_levinson_durbin_matches_toeplitz_solve():
    rng = np.random.default_rng(7)
    excitation = rng.standard_normal(4000)
    frame = signal.lfilter([1.0], [1.0, -1.3, 0.8, -0.2], excitation)
    order = 8
    autocorr = lpc_autocorrelation(frame, order)

    coeffs = levinson_durbin(autocorr, order)
    expected = solve_toeplitz((autocorr[:-1], autocorr[:-1]), autocorr[1:])

    assert coeffs[0] == 1.0
    np.testing.assert_allclose(coeffs[1:], expected, rtol=1e-6, atol=1e-9)


def test_levinson_durbin_silent_frame():
    coeffs = levinson_durbin(np.zeros(15), 14)
    np.testing.assert_array_equal(coeffs, np.r_[1.0, np.zeros(14)])


def test_prediction_polynomial_negates_predictor():
    np.testing.assert_allclose(prediction_polynomial([1.0, 0.5, -0.25]), [1.0, -0.5, 0.25])


def test_find_polynomial_roots_complex_deflation_matches_numpy():
    true_roots = [
        cmath.rect(0.9, 0.5),
        cmath.rect(0.9, -0.5),
        cmath.rect(0.7, 1.2),
        cmath.rect(0.7, -1.2),
        0.4,
        -0.6,
    ]
    coeffs = np.poly(true_roots).real

    found = find_polynomial_roots(coeffs, RootDeflation.COMPLEX)

    assert len(found) == 6
    for root in np.roots(coeffs):
        assert _closest_distance(root, found) < 1e-6


def test_find_polynomial_roots_real_only_deflation_on_real_roots():
    coeffs = np.poly([0.5, -0.3, 0.7])
    found = find_polynomial_roots(coeffs, "real-only")

    assert len(found) == 3
    for root in (0.5, -0.3, 0.7):
        assert _closest_distance(root, found) < 1e-6


def test_real_only_deflation_keeps_searching_the_full_polynomial():
    pair = [cmath.rect(0.95, 0.8), cmath.rect(0.95, -0.8)]
    coeffs = np.poly(pair + [0.3]).real

    found = find_polynomial_roots(coeffs, RootDeflation.REAL_ONLY)

    assert len(found) == 3
    for root in found:
        assert abs(np.polyval(coeffs, root)) < 1e-8


def test_find_polynomial_roots_silent_polynomial():
    found = find_polynomial_roots(np.r_[1.0, np.zeros(14)])
    assert len(found) == 14
    assert all(abs(root) < 1e-3 for root in found)


def test_roots_to_formants_filters_and_fills_defaults():
    fs = 10000.0
    roots = [
        _polar(0.95, 1000, fs),
        _polar(0.95, 1000, fs).conjugate(),
        _polar(0.97, 2000, fs),
        _polar(0.97, 100, fs),  # below the band
        _polar(0.3, 1500, fs),  # too damped
        0.9 + 0j,  # real root
    ]

    freqs, bandwidths, detected = roots_to_formants(roots, fs)

    assert detected == 2
    np.testing.assert_allclose(freqs, [1000.0, 2000.0, 2500.0], rtol=1e-9)
    np.testing.assert_allclose(
        bandwidths,
        [-math.log(0.95) * fs / math.pi, -math.log(0.97) * fs / math.pi, 120.0],
        rtol=1e-9,
    )


def test_roots_to_formants_sorts_defaults_into_place():
    fs = 10000.0
    freqs, bandwidths, detected = roots_to_formants([_polar(0.96, 2600, fs), _polar(0.96, 3000, fs)], fs)

    assert detected == 2
    np.testing.assert_allclose(freqs, [2500.0, 2600.0, 3000.0])
    assert bandwidths[0] == 120.0


def test_roots_to_formants_without_roots_returns_defaults():
    freqs, bandwidths, detected = roots_to_formants([], 10000.0)
    assert detected == 0
    np.testing.assert_array_equal(freqs, [500.0, 1500.0, 2500.0])
    np.testing.assert_array_equal(bandwidths, [80.0, 100.0, 120.0])


def test_hz_to_bark():
    assert hz_to_bark(1000.0) == pytest.approx(26.81 * 1000 / 2960 - 0.53)
    np.testing.assert_allclose(hz_to_bark([0.0]), [-0.53])
