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
Time-delay embedding of a 1-D signal and the post-processing applied to
the resulting 3-D trajectory.

Point clouds are ``(N, 4)`` float arrays whose columns are x, y, z and a
normalized time index t in [0, 1).
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Tuple

import numpy as np
from scipy import signal

logger = logging.getLogger(__name__)

HIGH_PASS_HZ = 60.0
LOW_PASS_HZ = 4000.0
EMBEDDING_RATE_HZ = 1000.0

MAX_TAU_LAG = 500
MIN_TAU = 5
FALLBACK_TAU = 15
SILENCE_TAU = 10
SILENCE_VARIANCE = 1e-10

PCA_MIN_POINTS = 10
PCA_ITERATIONS = 20
SMOOTHING_BLEND = 0.5


class PcaMethod(str, Enum):
    """Rotation used by :func:`pca_align`."""

    POWER_ITERATION = "power-iteration"
    EIGEN = "eigen"


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned extent and centroid of a point cloud."""

    minimum: np.ndarray
    maximum: np.ndarray
    centroid: np.ndarray


def empty_points(columns: int = 4) -> np.ndarray:
    return np.zeros((0, columns), dtype=np.float64)


def normalized_time(count: int) -> np.ndarray:
    if count <= 0:
        return np.zeros(0, dtype=np.float64)
    return np.arange(count, dtype=np.float64) / count


# ------------------------------------------------------------------
# Preprocessing
# ------------------------------------------------------------------


def band_pass(samples, sample_rate: float) -> np.ndarray:
    """
    Single-pole high-pass (60 Hz) cascaded with a single-pole low-pass (4 kHz).

    High-pass: y[i] = a * (y[i-1] + x[i] - x[i-1]) with a = RC / (RC + dt).
    Low-pass: y[i] = (1 - b) * x[i] + b * y[i-1] with b = exp(-2*pi*fc/fs).
    """
    samples = np.asarray(samples, dtype=np.float64)
    if samples.size == 0:
        return samples.copy()

    dt = 1.0 / sample_rate
    rc = 1.0 / (2.0 * math.pi * HIGH_PASS_HZ)
    alpha = rc / (rc + dt)
    high = signal.lfilter([alpha, -alpha], [1.0, -alpha], samples)

    beta = math.exp(-2.0 * math.pi * LOW_PASS_HZ / sample_rate)
    return signal.lfilter([1.0 - beta], [1.0, -beta], high)


def adaptive_downsample(samples, sample_rate: float, target_rate: float = EMBEDDING_RATE_HZ) -> Tuple[np.ndarray, float]:
    """Integer-stride decimation towards ``target_rate`` (no anti-aliasing)."""
    samples = np.asarray(samples, dtype=np.float64)
    stride = max(1, int(sample_rate // target_rate))
    return samples[::stride], float(sample_rate) / stride


def preprocess(samples, sample_rate: float) -> Tuple[np.ndarray, float]:
    """Band-pass then decimate; returns the new samples and their rate."""
    filtered = band_pass(samples, sample_rate)
    return adaptive_downsample(filtered, sample_rate)


# ------------------------------------------------------------------
# Embedding and delay selection
# ------------------------------------------------------------------


def takens_embedding(samples, tau: int) -> np.ndarray:
    """
    Delay-coordinate embedding (s[i], s[i+tau], s[i+2*tau], t).

    Args:
        samples: 1-D signal
        tau: Delay in samples, at least 1

    Returns:
        ``(len(samples) - 2*tau, 4)`` array, empty when the signal is shorter
        than ``2*tau + 1``
    """
    tau = int(tau)
    if tau < 1:
        raise ValueError("tau must be >= 1")

    samples = np.asarray(samples, dtype=np.float64).ravel()
    count = len(samples) - 2 * tau
    if count < 1:
        return empty_points()

    points = np.empty((count, 4), dtype=np.float64)
    points[:, 0] = samples[:count]
    points[:, 1] = samples[tau : tau + count]
    points[:, 2] = samples[2 * tau : 2 * tau + count]
    points[:, 3] = normalized_time(count)
    return points


def estimate_tau(samples) -> int:
    """
    Pick an embedding delay from the biased autocorrelation of the signal.

    The first lag whose autocorrelation drops to zero or below wins, then the
    first local minimum; both are clamped to at least 5. Without either the
    delay falls back to 15, and a near-silent signal gets 10.
    """
    samples = np.asarray(samples, dtype=np.float64).ravel()
    n = len(samples)
    if n == 0:
        return SILENCE_TAU

    centered = samples - samples.mean()
    if np.mean(centered * centered) < SILENCE_VARIANCE:
        return SILENCE_TAU

    max_lag = min(MAX_TAU_LAG, n // 4)
    if max_lag < 1:
        return FALLBACK_TAU

    full = signal.correlate(centered, centered, mode="full")
    autocorr = full[n - 1 : n + max_lag] / n

    crossings = np.flatnonzero(autocorr[1:] <= 0.0)
    if crossings.size:
        return max(MIN_TAU, int(crossings[0]) + 1)

    if max_lag >= 2:
        inner = autocorr[1:-1]
        minima = np.flatnonzero((inner < autocorr[:-2]) & (inner < autocorr[2:]))
        if minima.size:
            return max(MIN_TAU, int(minima[0]) + 1)

    return FALLBACK_TAU


def optimal_tau(sample_rate: float, estimated_hz: float = 200.0) -> int:
    """Quarter-period heuristic floor(fs / (4 * f0)), clamped to [5, 50]."""
    tau = int(math.floor(sample_rate / (4.0 * estimated_hz)))
    return max(5, min(50, tau))


# ------------------------------------------------------------------
# Orientation and post-processing
# ------------------------------------------------------------------


def _dominant_axis(covariance: np.ndarray, iterations: int) -> np.ndarray:
    axis = np.array([1.0, 0.0, 0.0])
    for _ in range(iterations):
        image = covariance @ axis
        norm = np.linalg.norm(image)
        if norm < 1e-12:
            break
        axis = image / norm
    return axis


def pca_align(points, method: PcaMethod = PcaMethod.POWER_ITERATION, *, iterations: int = PCA_ITERATIONS) -> np.ndarray:
    """
    Rotate a cloud so its dominant direction lies along x.

    ``POWER_ITERATION`` finds the dominant covariance eigenvector with
    power iteration from (1, 0, 0). The projection onto it becomes x, while y
    and z each have their own share of that projection removed, which is not
    a full change of basis. ``EIGEN`` performs the complete rotation onto
    all three principal axes. Clouds with fewer than 10 points are returned
    unchanged.
    """
    points = np.array(points, dtype=np.float64)
    if len(points) < PCA_MIN_POINTS:
        return points

    xyz = points[:, :3]
    centered = xyz - xyz.mean(axis=0)
    covariance = centered.T @ centered / len(centered)

    method = PcaMethod(method)
    if method is PcaMethod.EIGEN:
        _, vectors = np.linalg.eigh(covariance)
        points[:, :3] = centered @ vectors[:, ::-1]
        return points

    axis = _dominant_axis(covariance, iterations)
    projection = centered @ axis
    points[:, 0] = projection
    points[:, 1] = centered[:, 1] - projection * axis[1]
    points[:, 2] = centered[:, 2] - projection * axis[2]
    return points


def normalize_points(points) -> np.ndarray:
    """Center on the centroid and scale into the unit sphere."""
    points = np.array(points, dtype=np.float64)
    if len(points) == 0:
        return points

    points[:, :3] -= points[:, :3].mean(axis=0)
    radius = float(np.max(np.linalg.norm(points[:, :3], axis=1)))
    if radius > 0.0:
        points[:, :3] /= radius
    return points


def smooth_trajectory(points, iterations: int, blend: float = SMOOTHING_BLEND) -> np.ndarray:
    """
    Laplacian relaxation towards neighbour midpoints.

    Neighbour indices clamp at the ends, so an endpoint acts as its own
    missing neighbour: p0 moves to (1 - blend/2) p0 + (blend/2) p1.
    """
    points = np.array(points, dtype=np.float64)
    if len(points) < 3 or iterations <= 0:
        return points

    xyz = points[:, :3]
    for _ in range(iterations):
        padded = np.pad(xyz, ((1, 1), (0, 0)), mode="edge")
        midpoint = 0.5 * (padded[:-2] + padded[2:])
        xyz = (1.0 - blend) * xyz + blend * midpoint
    points[:, :3] = xyz
    return points


def downsample_points(points, max_points: int) -> np.ndarray:
    """Keep every ceil(count / max_points)-th point when over the cap."""
    points = np.asarray(points)
    if max_points < 1:
        raise ValueError("max_points must be >= 1")
    if len(points) <= max_points:
        return points
    step = int(math.ceil(len(points) / max_points))
    return points[::step]


def compute_bounds(points) -> Bounds:
    points = np.asarray(points, dtype=np.float64)
    if len(points) == 0:
        zeros = np.zeros(3)
        return Bounds(minimum=zeros, maximum=zeros.copy(), centroid=zeros.copy())
    xyz = points[:, :3]
    return Bounds(minimum=xyz.min(axis=0), maximum=xyz.max(axis=0), centroid=xyz.mean(axis=0))
