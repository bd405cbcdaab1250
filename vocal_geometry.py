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
Vocal geometry analysis: turn a mono speech signal into 3-D point clouds.

Three pipelines share this module's request/response model:

* signal dynamics - time-delay embedding of the waveform itself
* resonance - FFT formant tracking feeding a Lissajous, Lissajous-manifold
  or cymatics generator
* LPC vowel space - LPC formants and bandwidths projected onto a fixed
  Bark-scale vowel chart

Every call is a pure, synchronous computation. Signal problems (too short,
silent, no detectable formants) never raise; they produce empty or default
results flagged as ``degenerate``.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from dsp_kernels import (
    DEFAULT_BANDWIDTHS,
    DEFAULT_FORMANTS,
    FORMANT_MAX_HZ,
    FORMANT_MIN_HZ,
    MIN_PEAK_RATIO,
    PeakRanking,
    RootDeflation,
    decimate_triangular,
    fft_magnitude,
    find_polynomial_roots,
    frame_signal,
    hann_window,
    levinson_durbin,
    lpc_autocorrelation,
    pick_formant_peaks,
    pre_emphasis,
    prediction_polynomial,
    roots_to_formants,
    spectral_envelope,
)
from geometry import cymatics_field, lissajous_curve, lissajous_manifold, lpc_vowel_space
from phase_space import (
    PcaMethod,
    downsample_points,
    empty_points,
    estimate_tau,
    normalize_points,
    pca_align,
    preprocess,
    smooth_trajectory,
    takens_embedding,
)

logger = logging.getLogger(__name__)

__version__ = "1.0.0"

DEFAULT_MAX_POINTS = 10000
MIN_TAU, MAX_TAU = 1, 100
MIN_WINDOW_MS, MAX_WINDOW_MS = 15.0, 50.0

LPC_ORDER = 14
LPC_TARGET_RATE = 10000.0
PRE_EMPHASIS = 0.97


class ProcessingMode(str, Enum):
    SIGNAL_DYNAMICS = "signal-dynamics"
    LISSAJOUS = "lissajous"
    CYMATICS = "cymatics"
    LISSAJOUS_MANIFOLD = "lissajous-manifold"
    LPC_VOWEL_SPACE = "lpc-vowel-space"


RESONANCE_MODES = (
    ProcessingMode.LISSAJOUS,
    ProcessingMode.CYMATICS,
    ProcessingMode.LISSAJOUS_MANIFOLD,
)


def _check_tau(tau) -> None:
    if not MIN_TAU <= int(tau) <= MAX_TAU:
        raise ValueError(f"tau must be in [{MIN_TAU}, {MAX_TAU}], got {tau}")


def _check_window_ms(window_ms) -> None:
    if not MIN_WINDOW_MS <= float(window_ms) <= MAX_WINDOW_MS:
        raise ValueError(f"window_ms must be in [{MIN_WINDOW_MS}, {MAX_WINDOW_MS}], got {window_ms}")


def _check_max_points(max_points) -> None:
    if int(max_points) < 1:
        raise ValueError(f"max_points must be >= 1, got {max_points}")


def _check_smoothing(smoothing) -> None:
    if int(smoothing) < 0:
        raise ValueError(f"smoothing must be >= 0, got {smoothing}")


# ------------------------------------------------------------------
# Data model
# ------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class Signal:
    """Immutable single-precision mono signal. 2-D input keeps channel 0."""

    samples: np.ndarray
    sample_rate: float

    def __post_init__(self):
        if not float(self.sample_rate) > 0.0:
            raise ValueError("sample_rate must be positive")

        data = np.asarray(self.samples, dtype=np.float32)
        if data.ndim == 2:
            data = data[:, 0]
        elif data.ndim != 1:
            raise ValueError("samples must be 1-D (or 2-D frames x channels)")

        data = np.array(data, dtype=np.float32, copy=True)
        data.setflags(write=False)
        object.__setattr__(self, "samples", data)
        object.__setattr__(self, "sample_rate", float(self.sample_rate))

    def __len__(self):
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


@dataclass(frozen=True)
class FormantFrame:
    """F1-F3 (Hz, ascending) at ``time`` seconds; ``detected`` counts non-default slots."""

    time: float
    f1: float
    f2: float
    f3: float
    detected: int = 3

    @property
    def formants(self):
        return (self.f1, self.f2, self.f3)


@dataclass(frozen=True)
class LpcFormantFrame:
    """LPC formants with their bandwidths and dispersion (F3 - F1) / 2."""

    time: float
    f1: float
    f2: float
    f3: float
    b1: float
    b2: float
    b3: float
    dispersion: float
    detected: int = 3

    @property
    def formants(self):
        return (self.f1, self.f2, self.f3)

    @property
    def bandwidths(self):
        return (self.b1, self.b2, self.b3)


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Per-file analysis settings. Callers own it; pipelines only read it.

    The defaults reproduce the reference configuration: tau 12, five
    smoothing passes, normalisation, preprocessing, automatic tau, PCA
    alignment, the Lissajous-manifold mode and 25 ms windows.
    """

    tau: int = 12
    smoothing: int = 5
    normalize: bool = True
    preprocess: bool = True
    auto_tau: bool = True
    pca_align: bool = True
    processing_mode: ProcessingMode = ProcessingMode.LISSAJOUS_MANIFOLD
    window_ms: float = 25.0
    peak_ranking: PeakRanking = PeakRanking.PROMINENCE
    root_deflation: RootDeflation = RootDeflation.COMPLEX
    pca_method: PcaMethod = PcaMethod.POWER_ITERATION

    def __post_init__(self):
        _check_tau(self.tau)
        _check_smoothing(self.smoothing)
        _check_window_ms(self.window_ms)
        object.__setattr__(self, "processing_mode", ProcessingMode(self.processing_mode))
        object.__setattr__(self, "peak_ranking", PeakRanking(self.peak_ranking))
        object.__setattr__(self, "root_deflation", RootDeflation(self.root_deflation))
        object.__setattr__(self, "pca_method", PcaMethod(self.pca_method))


@dataclass(frozen=True)
class SignalDynamicsRequest:
    signal: Signal
    max_points: int = DEFAULT_MAX_POINTS
    tau: int = 12
    auto_tau: bool = True
    smoothing: int = 5
    normalize: bool = True
    preprocess: bool = True
    pca_align: bool = True
    pca_method: PcaMethod = PcaMethod.POWER_ITERATION

    def __post_init__(self):
        _check_max_points(self.max_points)
        _check_tau(self.tau)
        _check_smoothing(self.smoothing)
        object.__setattr__(self, "pca_method", PcaMethod(self.pca_method))

    @property
    def mode(self) -> ProcessingMode:
        return ProcessingMode.SIGNAL_DYNAMICS


@dataclass(frozen=True)
class ResonanceRequest:
    signal: Signal
    max_points: int = DEFAULT_MAX_POINTS
    geometry: ProcessingMode = ProcessingMode.LISSAJOUS_MANIFOLD
    window_ms: float = 25.0
    peak_ranking: PeakRanking = PeakRanking.PROMINENCE

    def __post_init__(self):
        _check_max_points(self.max_points)
        _check_window_ms(self.window_ms)
        geometry = ProcessingMode(self.geometry)
        if geometry not in RESONANCE_MODES:
            raise ValueError(f"{geometry.value} is not a resonance geometry")
        object.__setattr__(self, "geometry", geometry)
        object.__setattr__(self, "peak_ranking", PeakRanking(self.peak_ranking))

    @property
    def mode(self) -> ProcessingMode:
        return self.geometry


@dataclass(frozen=True)
class LpcRequest:
    signal: Signal
    max_points: int = DEFAULT_MAX_POINTS
    window_ms: float = 25.0
    deflation: RootDeflation = RootDeflation.COMPLEX

    def __post_init__(self):
        _check_max_points(self.max_points)
        _check_window_ms(self.window_ms)
        object.__setattr__(self, "deflation", RootDeflation(self.deflation))

    @property
    def mode(self) -> ProcessingMode:
        return ProcessingMode.LPC_VOWEL_SPACE


AnalysisRequest = Union[SignalDynamicsRequest, ResonanceRequest, LpcRequest]


@dataclass
class EmbeddingResponse:
    """``points`` is (N, 4): x, y, z, t."""

    points: np.ndarray
    computed_tau: int
    degenerate: bool = False


@dataclass
class ResonanceResponse:
    """``points`` is (N, 4): x, y, z, t."""

    points: np.ndarray
    formant_trajectory: List[FormantFrame] = field(default_factory=list)
    degenerate: bool = False


@dataclass
class LpcResponse:
    """``points`` is (N, 5): x, y, z, t, opacity."""

    points: np.ndarray
    formant_trajectory: List[LpcFormantFrame] = field(default_factory=list)
    degenerate: bool = False


AnalysisResponse = Union[EmbeddingResponse, ResonanceResponse, LpcResponse]


def _window_geometry(window_ms: float, sample_rate: float):
    window = int(window_ms / 1000.0 * sample_rate)
    return window, window // 2


# ------------------------------------------------------------------
# Engines
# ------------------------------------------------------------------


class PhaseSpaceEngine:
    """
    Signal-dynamics pipeline.

    Optional band-pass and decimation, delay selection, Takens embedding,
    PCA alignment, smoothing, downsampling and finally unit-sphere
    normalisation, so the returned cloud itself is centred and bounded.
    """

    def run(self, request: SignalDynamicsRequest) -> EmbeddingResponse:
        samples = request.signal.samples.astype(np.float64)
        sample_rate = request.signal.sample_rate
        if request.preprocess:
            samples, sample_rate = preprocess(samples, sample_rate)

        tau = estimate_tau(samples) if request.auto_tau else int(request.tau)
        points = takens_embedding(samples, tau)
        if len(points) == 0:
            logger.warning(
                f"Signal of {len(samples)} samples is too short for tau={tau}; returning an empty embedding"
            )
            return EmbeddingResponse(points=points, computed_tau=tau, degenerate=True)

        if request.pca_align:
            points = pca_align(points, request.pca_method)
        if request.smoothing > 0:
            points = smooth_trajectory(points, request.smoothing)
        points = downsample_points(points, request.max_points)
        if request.normalize:
            points = normalize_points(points)

        flat = not np.any(np.ptp(points[:, :3], axis=0) > 0.0)
        logger.debug(f"Embedded {len(points)} points at {sample_rate:.1f} Hz with tau={tau}")
        return EmbeddingResponse(points=points, computed_tau=tau, degenerate=flat)


class ResonanceEngine:
    """FFT formant tracker plus the resonance geometry generators."""

    def __init__(
        self,
        fmin: float = FORMANT_MIN_HZ,
        fmax: float = FORMANT_MAX_HZ,
        min_peak_ratio: float = MIN_PEAK_RATIO,
    ):
        self.fmin = fmin
        self.fmax = fmax
        self.min_peak_ratio = min_peak_ratio
        self._generators: Dict[ProcessingMode, Callable] = {
            ProcessingMode.LISSAJOUS: lissajous_curve,
            ProcessingMode.CYMATICS: cymatics_field,
            ProcessingMode.LISSAJOUS_MANIFOLD: lissajous_manifold,
        }

    def extract_trajectory(
        self,
        signal: Signal,
        window_ms: float = 25.0,
        ranking: PeakRanking = PeakRanking.MAGNITUDE,
    ) -> List[FormantFrame]:
        """
        Track F1-F3 over Hann windows with 50% overlap.

        Args:
            signal: Input signal
            window_ms: Analysis window length
            ranking: Peak ranking policy for the envelope peaks

        Returns:
            One FormantFrame per complete window (empty for short signals)
        """
        sample_rate = signal.sample_rate
        window, hop = _window_geometry(window_ms, sample_rate)
        if window < 2 or hop < 1:
            return []

        frames = frame_signal(signal.samples, window, hop)
        taper = hann_window(window)
        trajectory = []
        for index, frame in enumerate(frames):
            envelope = spectral_envelope(fft_magnitude(frame * taper))
            (f1, f2, f3), detected = pick_formant_peaks(
                envelope,
                sample_rate,
                ranking,
                fmin=self.fmin,
                fmax=self.fmax,
                min_peak_ratio=self.min_peak_ratio,
            )
            trajectory.append(FormantFrame(time=index * hop / sample_rate, f1=f1, f2=f2, f3=f3, detected=detected))
        return trajectory

    def run(self, request: ResonanceRequest) -> ResonanceResponse:
        trajectory = self.extract_trajectory(request.signal, request.window_ms, request.peak_ranking)
        points = self._generators[request.geometry](trajectory, request.max_points)
        points = downsample_points(points, request.max_points)

        degenerate = len(points) == 0 or all(frame.detected == 0 for frame in trajectory)
        if degenerate:
            logger.warning(
                f"Resonance analysis degenerate: {len(trajectory)} frames, {len(points)} points"
            )
        return ResonanceResponse(points=points, formant_trajectory=trajectory, degenerate=degenerate)


class LpcEngine:
    """
    LPC formant tracker feeding the Bark vowel-space projection.

    The signal is decimated towards 10 kHz, pre-emphasised and split into
    Hann windows with 50% overlap. Each window goes through an order-14
    autocorrelation LPC fit, Laguerre root finding on the prediction-error
    polynomial and the roots-to-formants mapping. Frequencies use the
    actual decimated rate.
    """

    def __init__(
        self,
        order: int = LPC_ORDER,
        target_rate: float = LPC_TARGET_RATE,
        emphasis: float = PRE_EMPHASIS,
    ):
        if order < 1:
            raise ValueError("order must be >= 1")
        self.order = order
        self.target_rate = target_rate
        self.emphasis = emphasis

    def analyze_frame(self, frame, sample_rate: float, deflation: RootDeflation = RootDeflation.COMPLEX):
        """
        Formants of one windowed frame.

        Returns:
            frequencies (3,), bandwidths (3,), number of detected formants
        """
        autocorr = lpc_autocorrelation(frame, self.order)
        predictor = levinson_durbin(autocorr, self.order)
        roots = find_polynomial_roots(prediction_polynomial(predictor), deflation)
        return roots_to_formants(roots, sample_rate)

    def extract_trajectory(
        self,
        signal: Signal,
        window_ms: float = 25.0,
        deflation: RootDeflation = RootDeflation.COMPLEX,
    ) -> List[LpcFormantFrame]:
        decimated, rate = decimate_triangular(signal.samples, signal.sample_rate, self.target_rate)
        emphasized = pre_emphasis(decimated, self.emphasis)

        window, hop = _window_geometry(window_ms, rate)
        if window < 2 or hop < 1:
            return []

        frames = frame_signal(emphasized, window, hop)
        taper = hann_window(window)
        trajectory = []
        for index, frame in enumerate(frames):
            freqs, bandwidths, detected = self.analyze_frame(frame * taper, rate, deflation)
            trajectory.append(
                LpcFormantFrame(
                    time=(index * hop + window / 2.0) / rate,
                    f1=float(freqs[0]),
                    f2=float(freqs[1]),
                    f3=float(freqs[2]),
                    b1=float(bandwidths[0]),
                    b2=float(bandwidths[1]),
                    b3=float(bandwidths[2]),
                    dispersion=float(freqs[2] - freqs[0]) / 2.0,
                    detected=detected,
                )
            )
        logger.debug(f"LPC trajectory: {len(trajectory)} frames at {rate:.1f} Hz")
        return trajectory

    def run(self, request: LpcRequest) -> LpcResponse:
        trajectory = self.extract_trajectory(request.signal, request.window_ms, request.deflation)
        points = lpc_vowel_space(trajectory, request.max_points)

        degenerate = len(points) == 0 or all(frame.detected == 0 for frame in trajectory)
        if degenerate:
            logger.warning(f"LPC analysis degenerate: {len(trajectory)} frames, {len(points)} points")
        return LpcResponse(points=points, formant_trajectory=trajectory, degenerate=degenerate)


# ------------------------------------------------------------------
# Dispatch
# ------------------------------------------------------------------


def build_request(signal: Signal, config: Optional[AnalysisConfig] = None, max_points: int = DEFAULT_MAX_POINTS) -> AnalysisRequest:
    """Translate a per-file config into the request variant for its mode."""
    config = config or AnalysisConfig()
    mode = config.processing_mode
    if mode is ProcessingMode.SIGNAL_DYNAMICS:
        return SignalDynamicsRequest(
            signal=signal,
            max_points=max_points,
            tau=config.tau,
            auto_tau=config.auto_tau,
            smoothing=config.smoothing,
            normalize=config.normalize,
            preprocess=config.preprocess,
            pca_align=config.pca_align,
            pca_method=config.pca_method,
        )
    if mode in RESONANCE_MODES:
        return ResonanceRequest(
            signal=signal,
            max_points=max_points,
            geometry=mode,
            window_ms=config.window_ms,
            peak_ranking=config.peak_ranking,
        )
    if mode is ProcessingMode.LPC_VOWEL_SPACE:
        return LpcRequest(
            signal=signal,
            max_points=max_points,
            window_ms=config.window_ms,
            deflation=config.root_deflation,
        )
    raise ValueError(f"Unsupported processing mode: {mode}")


def empty_response(request: AnalysisRequest) -> AnalysisResponse:
    """Degenerate result of the right type for ``request``."""
    if isinstance(request, SignalDynamicsRequest):
        return EmbeddingResponse(points=empty_points(), computed_tau=int(request.tau), degenerate=True)
    if isinstance(request, ResonanceRequest):
        return ResonanceResponse(points=empty_points(), degenerate=True)
    if isinstance(request, LpcRequest):
        return LpcResponse(points=empty_points(columns=5), degenerate=True)
    raise TypeError(f"Unsupported analysis request: {type(request).__name__}")


def analyze(request: AnalysisRequest) -> AnalysisResponse:
    """Run the pipeline that matches the request variant to completion."""
    if isinstance(request, SignalDynamicsRequest):
        engine = PhaseSpaceEngine()
    elif isinstance(request, ResonanceRequest):
        engine = ResonanceEngine()
    elif isinstance(request, LpcRequest):
        engine = LpcEngine()
    else:
        raise TypeError(f"Unsupported analysis request: {type(request).__name__}")

    try:
        return engine.run(request)
    except (FloatingPointError, np.linalg.LinAlgError) as e:
        logger.warning(f"{request.mode.value} analysis failed ({type(e).__name__}: {e}), returning empty result")
        return empty_response(request)


def analyze_signal(samples, sample_rate: float, config: Optional[AnalysisConfig] = None, max_points: int = DEFAULT_MAX_POINTS) -> AnalysisResponse:
    """Convenience wrapper: wrap raw samples, build the request and analyse."""
    return analyze(build_request(Signal(samples, sample_rate), config, max_points))
