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
Formant extraction validation against synthetic vowels with known formants.

Usage:
    python validate_formants.py
    python validate_formants.py --methods lpc --tolerance 0.1
    python validate_formants.py --sample-rate 16000 --duration 1.0 --verbose
"""

import argparse
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from dsp_kernels import PeakRanking, RootDeflation
from vocal_geometry import LpcEngine, ResonanceEngine, Signal
from vowel_signals import SynthesizedVowel, generate_test_vowels

logger = logging.getLogger(__name__)

METHODS = ("lpc", "spectral")


@dataclass
class FormantComparison:
    """Median extracted formants of one vowel against the known values."""

    vowel: str
    method: str
    expected: Tuple[float, float, float]
    measured: Tuple[float, float, float]
    tolerance: float

    @property
    def relative_errors(self) -> Tuple[float, float, float]:
        return tuple(abs(m - e) / e for m, e in zip(self.measured, self.expected))

    @property
    def passed(self) -> bool:
        return all(error <= self.tolerance for error in self.relative_errors)


def median_formants(trajectory: Sequence) -> Tuple[float, float, float]:
    """Per-formant median over a trajectory; NaN for an empty one."""
    if not trajectory:
        return (float("nan"),) * 3
    values = np.array([frame.formants for frame in trajectory], dtype=np.float64)
    medians = np.median(values, axis=0)
    return (float(medians[0]), float(medians[1]), float(medians[2]))


def extract_trajectory(
    samples,
    sample_rate: float,
    method: str = "lpc",
    window_ms: float = 25.0,
    ranking: PeakRanking = PeakRanking.MAGNITUDE,
    deflation: RootDeflation = RootDeflation.COMPLEX,
):
    signal = Signal(samples, sample_rate)
    if method == "lpc":
        return LpcEngine().extract_trajectory(signal, window_ms, deflation)
    if method == "spectral":
        return ResonanceEngine().extract_trajectory(signal, window_ms, ranking)
    raise ValueError(f"Unknown method: {method} (expected one of {METHODS})")


def validate_vowel(
    vowel: SynthesizedVowel,
    method: str = "lpc",
    window_ms: float = 25.0,
    tolerance: float = 0.15,
    **kwargs,
) -> FormantComparison:
    trajectory = extract_trajectory(vowel.samples, vowel.sample_rate, method, window_ms, **kwargs)
    return FormantComparison(
        vowel=vowel.name,
        method=method,
        expected=vowel.expected.formants,
        measured=median_formants(trajectory),
        tolerance=tolerance,
    )


def run_validation(
    methods: Sequence[str] = METHODS,
    sample_rate: int = 44100,
    duration: float = 0.5,
    window_ms: float = 25.0,
    tolerance: float = 0.15,
) -> List[FormantComparison]:
    results = []
    for vowel in generate_test_vowels(sample_rate, duration):
        for method in methods:
            results.append(validate_vowel(vowel, method, window_ms, tolerance))
    return results


def format_report(results: Sequence[FormantComparison]) -> List[str]:
    lines = [f"{'vowel':<14}{'method':<10}{'expected':<22}{'measured':<22}{'max err':>8}  result"]
    for r in results:
        expected = "/".join(f"{v:.0f}" for v in r.expected)
        measured = "/".join(f"{v:.0f}" for v in r.measured)
        worst = max(r.relative_errors)
        lines.append(
            f"{r.vowel:<14}{r.method:<10}{expected:<22}{measured:<22}{worst * 100:>7.1f}%  "
            f"{'PASS' if r.passed else 'FAIL'}"
        )
    return lines


def main(argv=None):
    """Main entry point for the validation script."""
    parser = argparse.ArgumentParser(description="Validate formant extraction on synthetic vowels")
    parser.add_argument(
        "--methods",
        nargs="+",
        choices=METHODS,
        default=list(METHODS),
        help="Extraction paths to validate (default: lpc spectral)",
    )
    parser.add_argument("--sample-rate", type=int, default=44100, help="Synthesis sample rate (default: 44100)")
    parser.add_argument("--duration", type=float, default=0.5, help="Vowel duration in seconds (default: 0.5)")
    parser.add_argument("--window-ms", type=float, default=25.0, help="Analysis window in ms (default: 25)")
    parser.add_argument(
        "--tolerance",
        type=float,
        default=0.15,
        help="Maximum relative error per formant (default: 0.15)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    results = run_validation(args.methods, args.sample_rate, args.duration, args.window_ms, args.tolerance)
    for line in format_report(results):
        logger.info(line)

    failures = [r for r in results if not r.passed]
    logger.info("=" * 60)
    logger.info(f"{len(results) - len(failures)}/{len(results)} comparisons within {args.tolerance:.0%}")
    return 1 if failures else 0


if __name__ == "__main__":
    exit(main())
