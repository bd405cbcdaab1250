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
Tests for the synthetic vowel generator and the formant validation harness.
"""

import math

import numpy as np
import pytest
import soundfile as sf

from validate_formants import (
    FormantComparison,
    extract_trajectory,
    format_report,
    median_formants,
    validate_vowel,
)
from vocal_geometry import FormantFrame
from vowel_signals import (
    REFERENCE_VOWELS,
    SynthesizedVowel,
    chirp,
    generate_test_vowels,
    harmonic_amplitudes,
    pure_tone,
    save_synthesized_vowel,
    synthesize_vowel,
    white_noise,
    write_wav,
)


# ------------------------------------------------------------------
# Synthesis
# ------------------------------------------------------------------


def test_synthesized_vowel_length_peak_and_fades():
    samples = synthesize_vowel(REFERENCE_VOWELS["ə"], 44100, 0.5)

    assert samples.dtype == np.float32
    assert len(samples) == 22050
    assert 0.85 <= np.max(np.abs(samples)) <= 0.9 + 1e-6
    assert samples[0] == 0.0
    assert samples[-1] == 0.0
    # 10 ms fade: the first few samples stay tiny
    assert np.max(np.abs(samples[:20])) < 0.9 * 20 / 441 + 1e-6


def test_harmonic_amplitudes_peak_near_first_formant():
    spec = REFERENCE_VOWELS["ɑ"]
    amplitudes = harmonic_amplitudes(spec, 120.0, 44100)

    assert len(amplitudes) == math.floor(22050 / 120)
    assert amplitudes.max() == pytest.approx(1.0)
    strongest = (np.argmax(amplitudes) + 1) * 120.0
    assert abs(strongest - spec.f1) <= 120.0


def test_generate_test_vowels_catalogue():
    vowels = generate_test_vowels(sample_rate=16000, duration=0.1)

    assert [v.key for v in vowels] == ["i", "ɑ", "u", "ə", "æ"]
    for vowel in vowels:
        assert len(vowel.samples) == 1600
        assert vowel.expected == REFERENCE_VOWELS[vowel.key]


def test_signal_generators():
    assert len(pure_tone(440.0, 8000, 0.25)) == 2000
    sweep = chirp(100.0, 1000.0, 8000, 0.5)
    assert len(sweep) == 4000
    assert np.max(np.abs(sweep)) <= 1.0

    noise = white_noise(8000, 0.1, seed=3)
    np.testing.assert_array_equal(noise, white_noise(8000, 0.1, seed=3))
    assert noise.min() >= -1.0 and noise.max() <= 1.0
    assert not np.array_equal(noise, white_noise(8000, 0.1, seed=4))


def test_write_wav_round_trip_and_clipping(tmp_path):
    samples = np.array([0.0, 0.5, -0.5, 2.0, -2.0])
    path = write_wav(tmp_path / "clip.wav", samples, 8000)

    data, sample_rate = sf.read(str(path))
    assert sample_rate == 8000
    np.testing.assert_allclose(data, [0.0, 0.5, -0.5, 1.0, -1.0], atol=1e-3)
    assert sf.info(str(path)).subtype == "PCM_16"


def test_save_synthesized_vowel(tmp_path):
    path = save_synthesized_vowel("i", tmp_path, duration=0.1)

    assert path.name == "synth_i_F1-270_F2-2290_F3-3010.wav"
    assert path.exists()
    assert sf.info(str(path)).frames == 4410


def test_save_synthesized_vowel_unknown_inputs(tmp_path):
    assert save_synthesized_vowel("x", tmp_path) is None
    with pytest.raises(ValueError):
        save_synthesized_vowel("i", tmp_path, vowel_set="klingon")


def test_save_sanskrit_vowel(tmp_path):
    path = save_synthesized_vowel("आ", tmp_path, vowel_set="sanskrit", duration=0.05)
    assert path.name == "synth_आ_F1-750_F2-1150_F3-2450.wav"


# ------------------------------------------------------------------
# Validation harness
# ------------------------------------------------------------------


def test_formant_comparison_tolerance():
    good = FormantComparison("/ə/", "lpc", (500.0, 1500.0, 2500.0), (540.0, 1450.0, 2600.0), 0.15)
    bad = FormantComparison("/ə/", "lpc", (500.0, 1500.0, 2500.0), (600.0, 1500.0, 2500.0), 0.15)

    assert good.passed
    assert good.relative_errors == pytest.approx((0.08, 1 / 30, 0.04))
    assert not bad.passed


def test_median_formants():
    frames = [
        FormantFrame(0.0, 300.0, 1000.0, 2000.0),
        FormantFrame(0.1, 500.0, 1500.0, 2500.0),
        FormantFrame(0.2, 900.0, 1600.0, 2600.0),
    ]
    assert median_formants(frames) == (500.0, 1500.0, 2500.0)
    assert all(math.isnan(v) for v in median_formants([]))


def test_extract_trajectory_rejects_unknown_method():
    with pytest.raises(ValueError):
        extract_trajectory(np.zeros(4410), 44100, method="cepstral")


def test_validate_vowel_lpc_on_i():
    spec = REFERENCE_VOWELS["i"]
    vowel = SynthesizedVowel("i", "/i/", synthesize_vowel(spec, 44100, 0.5), 44100, spec, "close front")

    result = validate_vowel(vowel, "lpc")

    assert result.passed, result.measured
    assert result.expected == (270, 2290, 3010)


def test_format_report_lines():
    results = [
        FormantComparison("/i/", "lpc", (270.0, 2290.0, 3010.0), (275.0, 2280.0, 3000.0), 0.15),
        FormantComparison("/i/", "spectral", (270.0, 2290.0, 3010.0), (900.0, 2280.0, 3000.0), 0.15),
    ]
    lines = format_report(results)

    assert len(lines) == 3
    assert lines[1].endswith("PASS")
    assert lines[2].endswith("FAIL")
    assert "270/2290/3010" in lines[1]
