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
Batch geometry analysis of every audio file in one or more folders.

This script:
1. Catalogues audio files in the given folders, labelled from their names
2. Loads each one with soundfile (channel 0 only)
3. Runs the selected processing mode
4. Logs a per-file summary and optionally saves the points as .npz

Usage:
    python analyze_folder.py --folders recordings
    python analyze_folder.py --folders recordings --mode lpc-vowel-space --output-dir geometry
    python analyze_folder.py --folders a b --mode signal-dynamics --no-auto-tau --tau 20
    python analyze_folder.py --folders recordings --genders female --speakers female-1 female-2
"""

import argparse
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np
import soundfile as sf

from validate_formants import median_formants
from vocal_geometry import (
    DEFAULT_MAX_POINTS,
    AnalysisConfig,
    EmbeddingResponse,
    ProcessingMode,
    Signal,
    analyze,
    build_request,
)

logger = logging.getLogger(__name__)

_SPEAKER_PATTERN = re.compile(r"^(.+)_(male|female|golden)-(\d+)_(\d+)$")
_GOLDEN_PATTERN = re.compile(r"^(.+)_(golden)_(\d+)$")

DEFAULT_EXTENSIONS = (".wav", ".flac", ".ogg")


@dataclass(frozen=True)
class FileMetadata:
    """Labels parsed from ``{letter}_{gender}-{speaker}_{clip}`` file names."""

    letter: str
    gender: str
    speaker_num: int
    clip_num: int
    raw_name: str
    speaker_id: str


def parse_filename(filename: str) -> FileMetadata:
    stem = Path(filename).stem

    match = _SPEAKER_PATTERN.match(stem)
    if match:
        gender = match.group(2)
        speaker_num = int(match.group(3))
        return FileMetadata(
            letter=match.group(1),
            gender=gender,
            speaker_num=speaker_num,
            clip_num=int(match.group(4)),
            raw_name=filename,
            speaker_id=f"{gender}-{speaker_num}",
        )

    match = _GOLDEN_PATTERN.match(stem)
    if match:
        return FileMetadata(
            letter=match.group(1),
            gender="golden",
            speaker_num=0,
            clip_num=int(match.group(3)),
            raw_name=filename,
            speaker_id="golden",
        )

    return FileMetadata(
        letter=stem[:1] or "?",
        gender="unknown",
        speaker_num=0,
        clip_num=0,
        raw_name=filename,
        speaker_id="unknown",
    )


@dataclass(frozen=True)
class FileFilter:
    """Label filter for a catalogue; an empty field accepts every value."""

    letters: Tuple[str, ...] = ()
    genders: Tuple[str, ...] = ()
    speaker_ids: Tuple[str, ...] = ()

    def accepts(self, meta: FileMetadata) -> bool:
        return (
            (not self.letters or meta.letter in self.letters)
            and (not self.genders or meta.gender in self.genders)
            and (not self.speaker_ids or meta.speaker_id in self.speaker_ids)
        )


def find_audio_files(
    folders: List[str],
    extensions: Optional[List[str]] = None,
    recursive: bool = False,
    file_filter: Optional[FileFilter] = None,
) -> List[Tuple[Path, FileMetadata]]:
    """
    Catalogue the audio files in ``folders`` together with their file-name labels.

    Extensions match case-insensitively and a file reachable from several
    folders is listed once.

    Returns:
        (path, metadata) pairs sorted by path, restricted to ``file_filter``
    """
    suffixes = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in (extensions or DEFAULT_EXTENSIONS)}
    file_filter = file_filter or FileFilter()

    found: Dict[Path, Path] = {}
    for folder in map(Path, folders):
        if not folder.is_dir():
            logger.warning(f"Skipping {folder}: not a directory")
            continue
        candidates = folder.rglob("*") if recursive else folder.iterdir()
        for path in candidates:
            if path.is_file() and path.suffix.lower() in suffixes:
                found.setdefault(path.resolve(), path)

    catalogue = []
    for path in sorted(found.values()):
        meta = parse_filename(path.name)
        if file_filter.accepts(meta):
            catalogue.append((path, meta))
    logger.debug(f"Catalogued {len(catalogue)} of {len(found)} audio files")
    return catalogue


def load_signal(path: Path) -> Signal:
    """Read an audio file; multi-channel files keep channel 0."""
    data, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
    return Signal(data[:, 0], sample_rate)


def summarize(path: Path, meta: FileMetadata, response) -> str:
    label = f"{meta.letter} [{meta.speaker_id}] {path.name}"
    if isinstance(response, EmbeddingResponse):
        detail = f"tau={response.computed_tau}"
    else:
        f1, f2, f3 = median_formants(response.formant_trajectory)
        detail = f"{len(response.formant_trajectory)} frames, median F1/F2/F3 = {f1:.0f}/{f2:.0f}/{f3:.0f} Hz"
    flag = " (degenerate)" if response.degenerate else ""
    return f"{label}: {len(response.points)} points, {detail}{flag}"


def analyze_files(
    catalogue: List[Tuple[Path, FileMetadata]],
    config: AnalysisConfig,
    max_points: int = DEFAULT_MAX_POINTS,
    output_dir: Optional[Path] = None,
) -> int:
    """
    Analyse each catalogued file and optionally save its points.

    Returns:
        Number of files that could not be read
    """
    if output_dir is not None:
        output_dir.mkdir(parents=True, exist_ok=True)

    failures = 0
    for path, meta in catalogue:
        try:
            signal = load_signal(path)
        except (RuntimeError, OSError) as e:
            logger.error(f"Could not read {path}: {e}")
            failures += 1
            continue

        response = analyze(build_request(signal, config, max_points))
        logger.info(summarize(path, meta, response))

        if output_dir is not None:
            target = output_dir / f"{path.stem}_{config.processing_mode.value}.npz"
            np.savez(target, points=response.points, degenerate=response.degenerate)
            logger.debug(f"Saved {target}")
    return failures


def main(argv=None):
    """Main entry point for batch analysis."""
    parser = argparse.ArgumentParser(description="Compute speech geometry for every audio file in folders")
    parser.add_argument("--folders", nargs="+", required=True, help="Folders containing audio files")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ProcessingMode],
        default=ProcessingMode.LISSAJOUS_MANIFOLD.value,
        help="Processing mode (default: lissajous-manifold)",
    )
    parser.add_argument("--tau", type=int, default=12, help="Embedding delay when auto tau is off (default: 12)")
    parser.add_argument("--no-auto-tau", action="store_true", help="Use --tau instead of estimating it")
    parser.add_argument("--smoothing", type=int, default=5, help="Smoothing passes (default: 5)")
    parser.add_argument("--no-preprocess", action="store_true", help="Skip band-pass and decimation")
    parser.add_argument("--no-pca", action="store_true", help="Skip PCA alignment")
    parser.add_argument("--window-ms", type=float, default=25.0, help="Analysis window in ms (default: 25)")
    parser.add_argument("--max-points", type=int, default=DEFAULT_MAX_POINTS, help="Point cap per file")
    parser.add_argument("--output-dir", type=Path, default=None, help="Save points as .npz into this folder")
    parser.add_argument(
        "--extensions",
        nargs="+",
        default=list(DEFAULT_EXTENSIONS),
        help="Audio file extensions to process (default: .wav .flac .ogg)",
    )
    parser.add_argument("--recursive", action="store_true", help="Search folders recursively")
    parser.add_argument("--letters", nargs="+", default=[], help="Only analyse these letters")
    parser.add_argument(
        "--genders",
        nargs="+",
        choices=["male", "female", "golden", "unknown"],
        default=[],
        help="Only analyse these speaker genders",
    )
    parser.add_argument("--speakers", nargs="+", default=[], help="Only analyse these speaker ids, e.g. female-1")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = AnalysisConfig(
            tau=args.tau,
            smoothing=args.smoothing,
            preprocess=not args.no_preprocess,
            auto_tau=not args.no_auto_tau,
            pca_align=not args.no_pca,
            processing_mode=ProcessingMode(args.mode),
            window_ms=args.window_ms,
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    file_filter = FileFilter(tuple(args.letters), tuple(args.genders), tuple(args.speakers))
    catalogue = find_audio_files(args.folders, args.extensions, args.recursive, file_filter)
    if not catalogue:
        logger.error("No matching audio files found; check the folders, extensions and label filters")
        return 1

    logger.info(f"Analysing {len(catalogue)} files in {config.processing_mode.value} mode")
    failures = analyze_files(catalogue, config, args.max_points, args.output_dir)
    return 1 if failures else 0


if __name__ == "__main__":
    exit(main())
