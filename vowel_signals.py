#!/usr/bin/env python3
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
Test signals with known formant structure.

Vowels are built by additive synthesis: every harmonic of f0 up to Nyquist
gets the magnitude of a cascade of three two-pole resonators (one per
formant) times a 1/h glottal roll-off. Also provides tones, chirps, noise
and 16-bit WAV export for validation runs.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FormantSpec:
    """Formant frequencies and bandwidths in Hz."""

    f1: float
    f2: float
    f3: float
    b1: float = 60.0
    b2: float = 90.0
    b3: float = 120.0

    @property
    def formants(self):
        return (self.f1, self.f2, self.f3)

    @property
    def bandwidths(self):
        return (self.b1, self.b2, self.b3)


@dataclass
class SynthesizedVowel:
    key: str
    name: str
    samples: np.ndarray
    sample_rate: int
    expected: FormantSpec
    description: str


# Peterson & Barney (1952) averages for adult male speakers
REFERENCE_VOWELS: Dict[str, FormantSpec] = {
    "i": FormantSpec(270, 2290, 3010),
    "ɪ": FormantSpec(390, 1990, 2550),
    "e": FormantSpec(530, 1840, 2480),
    "æ": FormantSpec(660, 1720, 2410),
    "ɑ": FormantSpec(730, 1090, 2440),
    "ɔ": FormantSpec(570, 840, 2410),
    "o": FormantSpec(440, 1020, 2240),
    "ʊ": FormantSpec(440, 1020, 2240),
    "u": FormantSpec(300, 870, 2240),
    "ʌ": FormantSpec(640, 1190, 2390),
    "ə": FormantSpec(500, 1500, 2500),
}

SANSKRIT_VOWELS: Dict[str, FormantSpec] = {
    "अ": FormantSpec(700, 1200, 2500),
    "आ": FormantSpec(750, 1150, 2450),
    "इ": FormantSpec(280, 2250, 2900),
    "ई": FormantSpec(270, 2300, 3000),
    "उ": FormantSpec(310, 900, 2300),
    "ऊ": FormantSpec(300, 870, 2250),
    "ए": FormantSpec(400, 2100, 2700),
    "ओ": FormantSpec(400, 900, 2400),
}

VOWEL_SETS = {"reference": REFERENCE_VOWELS, "sanskrit": SANSKRIT_VOWELS}

TEST_VOWELS = (
    ("i", "/i/ (ee)", "Close front - highest F2"),
    ("ɑ", "/ɑ/ (ah)", "Open back - highest F1"),
    ("u", "/u/ (oo)", "Close back - lowest F1 & F2"),
    ("ə", "/ə/ (schwa)", "Central neutral"),
    ("æ", "/æ/ (ae)", "Open front"),
)


def _resolve_rng(rng=None, seed=None):
    if rng is not None:
        return rng
    return np.random.default_rng(seed)


def resonator_gain(freq_hz, formant_hz: float, bandwidth_hz: float, sample_rate: float):
    """
    Magnitude response of a unity-DC-gain two-pole resonator.

    Poles sit at radius exp(-pi*B/fs) and angle 2*pi*F/fs.
    """
    radius = math.exp(-math.pi * bandwidth_hz / sample_rate)
    theta = 2.0 * math.pi * formant_hz / sample_rate
    a1 = -2.0 * radius * math.cos(theta)
    a2 = radius * radius
    gain = 1.0 + a1 + a2

    z_inv = np.exp(-2j * np.pi * np.asarray(freq_hz, dtype=np.float64) / sample_rate)
    return np.abs(gain / (1.0 + a1 * z_inv + a2 * z_inv * z_inv))


def harmonic_amplitudes(formants: FormantSpec, f0: float, sample_rate: float) -> np.ndarray:
    """Relative amplitude of every harmonic below Nyquist (max normalised to 1)."""
    count = int(math.floor(sample_rate / 2.0 / f0))
    if count < 1:
        return np.zeros(0)
    harmonics = np.arange(1, count + 1, dtype=np.float64)
    freqs = harmonics * f0
    amplitudes = 1.0 / harmonics
    for formant, bandwidth in zip(formants.formants, formants.bandwidths):
        amplitudes = amplitudes * resonator_gain(freqs, formant, bandwidth, sample_rate)
    return amplitudes / amplitudes.max()


def synthesize_vowel(
    formants: FormantSpec,
    sample_rate: int = 44100,
    duration: float = 0.5,
    f0: float = 120.0,
    peak: float = 0.9,
    fade_time: float = 0.01,
) -> np.ndarray:
    """
    Additive vowel with known formants.

    Args:
        formants: Target formant frequencies and bandwidths
        sample_rate: Sample rate in Hz
        duration: Duration in seconds
        f0: Fundamental frequency of the harmonic source
        peak: Output peak amplitude
        fade_time: Linear fade in/out length in seconds

    Returns:
        float32 samples
    """
    num_samples = int(math.floor(sample_rate * duration))
    t = np.arange(num_samples, dtype=np.float64) / sample_rate
    samples = np.zeros(num_samples, dtype=np.float64)
    for h, amplitude in enumerate(harmonic_amplitudes(formants, f0, sample_rate), start=1):
        samples += amplitude * np.sin(2.0 * np.pi * h * f0 * t)

    max_val = np.max(np.abs(samples)) if num_samples else 0.0
    if max_val > 0:
        samples *= peak / max_val

    fade_len = min(int(sample_rate * fade_time), num_samples // 2)
    if fade_len > 0:
        ramp = np.arange(fade_len) / fade_len
        samples[:fade_len] *= ramp
        samples[num_samples - fade_len :] *= ramp[::-1]
    return samples.astype(np.float32)


def generate_test_vowels(sample_rate: int = 44100, duration: float = 0.5) -> List[SynthesizedVowel]:
    """The five validation vowels: /i/, /ɑ/, /u/, /ə/ and /æ/."""
    vowels = []
    for key, name, description in TEST_VOWELS:
        spec = REFERENCE_VOWELS[key]
        vowels.append(
            SynthesizedVowel(
                key=key,
                name=name,
                samples=synthesize_vowel(spec, sample_rate, duration),
                sample_rate=sample_rate,
                expected=spec,
                description=f"{description} - F1:{spec.f1} F2:{spec.f2} F3:{spec.f3}",
            )
        )
    return vowels


def pure_tone(frequency: float, sample_rate: int = 44100, duration: float = 0.5) -> np.ndarray:
    t = np.arange(int(math.floor(sample_rate * duration))) / sample_rate
    return np.sin(2.0 * np.pi * frequency * t).astype(np.float32)


def chirp(start_freq: float, end_freq: float, sample_rate: int = 44100, duration: float = 1.0) -> np.ndarray:
    """Linear frequency sweep from ``start_freq`` to ``end_freq``."""
    t = np.arange(int(math.floor(sample_rate * duration))) / sample_rate
    phase = 2.0 * np.pi * (start_freq * t + (end_freq - start_freq) * t * t / (2.0 * duration))
    return np.sin(phase).astype(np.float32)


def white_noise(sample_rate: int = 44100, duration: float = 0.5, rng=None, seed=None) -> np.ndarray:
    rng = _resolve_rng(rng, seed)
    return rng.uniform(-1.0, 1.0, int(math.floor(sample_rate * duration))).astype(np.float32)


def write_wav(path: Union[str, Path], samples, sample_rate: int) -> Path:
    """Write mono 16-bit PCM, clipping to [-1, 1]."""
    path = Path(path)
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    sf.write(str(path), clipped, int(sample_rate), subtype="PCM_16")
    return path


def vowel_filename(key: str, spec: FormantSpec) -> str:
    return f"synth_{key}_F1-{spec.f1:g}_F2-{spec.f2:g}_F3-{spec.f3:g}.wav"


def save_synthesized_vowel(
    key: str,
    directory: Union[str, Path] = ".",
    vowel_set: str = "reference",
    sample_rate: int = 44100,
    duration: float = 1.0,
    f0: float = 120.0,
) -> Optional[Path]:
    """Synthesize one catalogued vowel and write it as a WAV file."""
    table = VOWEL_SETS.get(vowel_set)
    if table is None:
        raise ValueError(f"Unknown vowel set: {vowel_set}")
    spec = table.get(key)
    if spec is None:
        logger.error(f"Unknown vowel: {key}")
        return None

    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    samples = synthesize_vowel(spec, sample_rate, duration, f0=f0)
    return write_wav(directory / vowel_filename(key, spec), samples, sample_rate)
