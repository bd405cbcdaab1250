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

"""Formant-driven geometry generators."""

import logging
import math
from typing import Sequence

import numpy as np

from dsp_kernels import hz_to_bark
from phase_space import downsample_points, empty_points, normalized_time

logger = logging.getLogger(__name__)

GOLDEN_RATIO = (1.0 + math.sqrt(5.0)) / 2.0
SQRT_TWO = math.sqrt(2.0)
TWO_PI = 2.0 * math.pi

LISSAJOUS_CYCLES = 10
LISSAJOUS_RESOLUTION = 2000

SEGMENT_POINTS = 20
SEGMENT_CYCLES = 1.5
STABILITY_EPSILON = 1e-3
STABILITY_GAIN = 0.05
MIN_STABILITY = 0.1

CYMATICS_EXTENT = 2.0

BARK_MIN = 1.0
BARK_MAX = 18.0
THICKNESS_MIN = 0.3
THICKNESS_MAX = 1.5
DEPTH_SCALE = 0.4


def _formant_matrix(trajectory) -> np.ndarray:
    if not len(trajectory):
        return np.zeros((0, 3), dtype=np.float64)
    return np.array([[frame.f1, frame.f2, frame.f3] for frame in trajectory], dtype=np.float64)


def scale_to_unit_sphere(points) -> np.ndarray:
    """Divide xyz by the largest radius (no recentering)."""
    points = np.array(points, dtype=np.float64)
    if len(points) == 0:
        return points
    radius = float(np.max(np.linalg.norm(points[:, :3], axis=1)))
    if radius > 0.0:
        points[:, :3] /= radius
    return points


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def lissajous_curve(trajectory: Sequence, max_points: int) -> np.ndarray:
    """
    Fixed-phase Lissajous curve driven by the trajectory's mean formant ratios.

    x = sin(r13 s), y = sin(r23 s + pi/4), z = sin(r12 s + pi/2) with
    r12 = F1/F2, r23 = F2/F3, r13 = F1/F3, traced over 10 cycles.
    """
    formants = _formant_matrix(trajectory)
    if len(formants) == 0:
        return empty_points()

    f1, f2, f3 = formants.mean(axis=0)
    r12, r23, r13 = f1 / f2, f2 / f3, f1 / f3

    count = min(int(max_points), LISSAJOUS_RESOLUTION)
    t = normalized_time(count)
    phase = t * LISSAJOUS_CYCLES * TWO_PI
    points = np.column_stack(
        (
            np.sin(r13 * phase),
            np.sin(r23 * phase + math.pi / 4.0),
            np.sin(r12 * phase + math.pi / 2.0),
            t,
        )
    )
    return scale_to_unit_sphere(points)


def stability_weights(trajectory: Sequence) -> np.ndarray:
    """
    Per-frame weight min(0.05 / (delta + 1e-3), 1).

    ``delta`` is the summed absolute change of F1-F3 against the previous
    frame; the first frame is compared with the second one.
    """
    formants = _formant_matrix(trajectory)
    if len(formants) == 0:
        return np.zeros(0, dtype=np.float64)
    if len(formants) == 1:
        delta = np.zeros(1)
    else:
        steps = np.abs(np.diff(formants, axis=0)).sum(axis=1)
        delta = np.concatenate((steps[:1], steps))
    return np.minimum(STABILITY_GAIN / (delta + STABILITY_EPSILON), 1.0)


def lissajous_manifold(trajectory: Sequence, max_points: int) -> np.ndarray:
    """
    Time-stacked Lissajous segments, one per stable analysis frame.

    Frames whose stability weight is below 0.1 are skipped. Every other
    frame contributes 20 points over 1.5 cycles of its own instantaneous
    formant ratios, with the x phase shifted by frame * golden ratio and the
    y phase by frame * sqrt(2) (both mod 2*pi). Coordinates are scaled by
    the frame weight and t is the frame's position in the trajectory.
    """
    formants = _formant_matrix(trajectory)
    frame_count = len(formants)
    if frame_count == 0:
        return empty_points()

    weights = stability_weights(trajectory)
    phase = np.arange(SEGMENT_POINTS) / SEGMENT_POINTS * SEGMENT_CYCLES * TWO_PI

    segments = []
    for index in np.flatnonzero(weights >= MIN_STABILITY):
        f1, f2, f3 = formants[index]
        weight = weights[index]
        x_shift = (index * GOLDEN_RATIO) % TWO_PI
        y_shift = (index * SQRT_TWO) % TWO_PI

        segment = np.empty((SEGMENT_POINTS, 4), dtype=np.float64)
        segment[:, 0] = np.sin((f1 / f3) * phase + x_shift) * weight
        segment[:, 1] = np.sin((f2 / f3) * phase + math.pi / 4.0 + y_shift) * weight
        segment[:, 2] = np.sin((f1 / f2) * phase + math.pi / 2.0) * weight
        segment[:, 3] = index / frame_count
        segments.append(segment)

    if not segments:
        logger.debug(f"No stable frames out of {frame_count}; manifold is empty")
        return empty_points()

    points = downsample_points(np.vstack(segments), max_points)
    return scale_to_unit_sphere(points)


def cymatics_field(trajectory: Sequence, max_points: int) -> np.ndarray:
    """
    Chladni-style standing wave on a sqrt(max_points)^2 grid over [-2, 2]^2.

    Mode numbers come from the mean formants:
    n = round(1 + 3 F1/500), m = round(1 + 4 F2/1500), k = round(1 + 3 F3/2500).
    """
    formants = _formant_matrix(trajectory)
    if len(formants) == 0:
        return empty_points()

    f1, f2, f3 = formants.mean(axis=0)
    n = _round_half_up(1.0 + (f1 / 500.0) * 3.0)
    m = _round_half_up(1.0 + (f2 / 1500.0) * 4.0)
    k = _round_half_up(1.0 + (f3 / 2500.0) * 3.0)

    grid_size = int(math.isqrt(int(max_points)))
    if grid_size < 1:
        return empty_points()

    axis = np.linspace(-CYMATICS_EXTENT, CYMATICS_EXTENT, grid_size) / CYMATICS_EXTENT
    u, v = np.meshgrid(axis, axis, indexing="ij")
    height = (
        np.sin(n * np.pi * u) * np.cos(m * np.pi * v) + np.cos(n * np.pi * u) * np.sin(m * np.pi * v)
    ) * np.sin(k * np.pi * (u + v) / 2.0)

    points = np.column_stack(
        (u.ravel(), v.ravel(), 0.5 * height.ravel(), normalized_time(grid_size * grid_size))
    )
    return scale_to_unit_sphere(points)


def _bark_to_unit(bark: np.ndarray) -> np.ndarray:
    return (bark - BARK_MIN) / (BARK_MAX - BARK_MIN) * 2.0 - 1.0


def lpc_vowel_space(trajectory: Sequence, max_points: int) -> np.ndarray:
    """
    Map LPC formant frames into a fixed Bark vowel space.

    Columns are x (F2 Bark), y (inverted F1 Bark), z (bandwidth thickness),
    t and opacity. The Bark limits [1, 18] are global so positions compare
    across files; opacity is min-max normalised dispersion over this
    trajectory only.
    """
    if not len(trajectory):
        return empty_points(columns=5)

    f1 = np.array([frame.f1 for frame in trajectory], dtype=np.float64)
    f2 = np.array([frame.f2 for frame in trajectory], dtype=np.float64)
    b1 = np.array([frame.b1 for frame in trajectory], dtype=np.float64)
    b2 = np.array([frame.b2 for frame in trajectory], dtype=np.float64)
    dispersion = np.array([frame.dispersion for frame in trajectory], dtype=np.float64)

    x = _bark_to_unit(hz_to_bark(f2))
    y = -_bark_to_unit(hz_to_bark(f1))

    thickness = (b1 + b2) / 200.0
    depth = (thickness - THICKNESS_MIN) / (THICKNESS_MAX - THICKNESS_MIN)
    z = (np.clip(depth, 0.0, 1.0) * 2.0 - 1.0) * DEPTH_SCALE

    spread = dispersion.max() - dispersion.min()
    opacity = 0.2 + 0.8 * (dispersion - dispersion.min()) / (spread + 1e-6)

    points = np.column_stack((x, y, z, normalized_time(len(trajectory)), opacity))
    return downsample_points(points, max_points)
