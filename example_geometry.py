#!/usr/bin/env python3
"""
Example rendering every processing mode for a synthetic vowel
=============================================================

Synthesizes /i/ and /ɑ/, runs all five processing modes and saves one
3-D scatter figure per vowel.

Modes:
  - signal-dynamics: Takens embedding of the waveform
  - lissajous: averaged formant-ratio curve
  - cymatics: formant-driven standing-wave surface
  - lissajous-manifold: stacked per-frame segments weighted by stability
  - lpc-vowel-space: LPC formants on the Bark vowel chart
"""

import sys

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from vocal_geometry import AnalysisConfig, EmbeddingResponse, LpcResponse, ProcessingMode, analyze_signal
from vowel_signals import REFERENCE_VOWELS, synthesize_vowel


def render_vowel(key, sample_rate=44100, duration=0.5, max_points=4000, output=None):
    """
    Analyse one reference vowel in every mode and save a figure.

    Args:
        key: Key into REFERENCE_VOWELS
        sample_rate: Synthesis sample rate
        duration: Vowel duration in seconds
        max_points: Point cap per mode
        output: Output image path (default: geometry_<key>.png)

    Returns:
        Path of the saved figure
    """
    spec = REFERENCE_VOWELS[key]
    samples = synthesize_vowel(spec, sample_rate, duration)

    fig = plt.figure(figsize=(20, 4))
    for column, mode in enumerate(ProcessingMode, start=1):
        response = analyze_signal(samples, sample_rate, AnalysisConfig(processing_mode=mode), max_points)
        points = response.points
        ax = fig.add_subplot(1, len(ProcessingMode), column, projection="3d")
        if len(points):
            alpha = points[:, 4] if isinstance(response, LpcResponse) else 0.6
            ax.scatter(points[:, 0], points[:, 1], points[:, 2], c=points[:, 3], cmap="viridis", s=2, alpha=alpha)

        title = mode.value
        if isinstance(response, EmbeddingResponse):
            title += f" (tau={response.computed_tau})"
        ax.set_title(title, fontsize=9)
        print(f"  {mode.value:<20} {len(points):>6} points{' (degenerate)' if response.degenerate else ''}")

    fig.suptitle(f"/{key}/  F1={spec.f1:g}  F2={spec.f2:g}  F3={spec.f3:g} Hz")
    output = output or f"geometry_{key}.png"
    fig.savefig(output, dpi=120, bbox_inches="tight")
    plt.close(fig)
    return output


def main():
    print("=" * 70)
    print("Vocal geometry demonstration")
    print("=" * 70)
    for key in ("i", "ɑ"):
        print(f"\nVowel /{key}/")
        path = render_vowel(key)
        print(f"  saved {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
