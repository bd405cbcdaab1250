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
Caller-side execution for interactive front ends.

The analysis pipelines are pure and synchronous. This module runs them on a
thread pool, applies "last request wins" per (file, mode) by tagging every
submission with a monotonically increasing request id, and keeps an
explicit result cache keyed by (file id, mode) outside the pipelines.
"""

import hashlib
import itertools
import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, fields
from functools import partial
from typing import Callable, Dict, Optional, Tuple

from vocal_geometry import AnalysisRequest, AnalysisResponse, ProcessingMode, analyze

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, ProcessingMode]
ResultCallback = Callable[[int, AnalysisResponse], None]


def request_fingerprint(request: AnalysisRequest) -> str:
    """SHA-1 over the samples, the sample rate and every request parameter."""
    params = {f.name: getattr(request, f.name) for f in fields(request) if f.name != "signal"}
    params["kind"] = type(request).__name__
    params["sample_rate"] = request.signal.sample_rate

    digest = hashlib.sha1()
    digest.update(request.signal.samples.tobytes())
    digest.update(json.dumps(params, sort_keys=True, default=str).encode("utf-8"))
    return digest.hexdigest()


@dataclass
class CachedResult:
    fingerprint: str
    response: AnalysisResponse


class ResultCache:
    """Thread-safe ``(file id, mode) -> response`` store."""

    def __init__(self):
        self._entries: Dict[CacheKey, CachedResult] = {}
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def get(self, file_id: str, mode: ProcessingMode, fingerprint: Optional[str] = None) -> Optional[AnalysisResponse]:
        """Cached response, or None. A given fingerprint must match the stored one."""
        with self._lock:
            entry = self._entries.get((file_id, ProcessingMode(mode)))
        if entry is None:
            return None
        if fingerprint is not None and entry.fingerprint != fingerprint:
            return None
        return entry.response

    def store(self, file_id: str, mode: ProcessingMode, fingerprint: str, response: AnalysisResponse) -> None:
        with self._lock:
            self._entries[(file_id, ProcessingMode(mode))] = CachedResult(fingerprint, response)

    def invalidate(self, file_id: str, mode: Optional[ProcessingMode] = None) -> int:
        """Drop one mode (or every mode) cached for a file; returns the count removed."""
        with self._lock:
            keys = [
                key
                for key in self._entries
                if key[0] == file_id and (mode is None or key[1] == ProcessingMode(mode))
            ]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class AnalysisSession:
    """
    Background analysis with stale-result suppression.

    Example:
        ```python
        def on_result(request_id, response):
            print(request_id, len(response.points))

        with AnalysisSession() as session:
            session.submit("file-1", request, on_result)
        ```
    """

    def __init__(
        self,
        max_workers: int = 2,
        cache: Optional[ResultCache] = None,
        analyzer: Callable[[AnalysisRequest], AnalysisResponse] = analyze,
    ):
        """
        Args:
            max_workers: Size of the thread pool
            cache: Shared result cache (a private one is created if omitted)
            analyzer: Function that runs one request to completion
        """
        self.cache = cache if cache is not None else ResultCache()
        self._analyzer = analyzer
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="VocalGeometry-")
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._latest: Dict[CacheKey, int] = {}
        self._shutdown_requested = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=True)
        return False

    def submit(self, file_id: str, request: AnalysisRequest, callback: Optional[ResultCallback] = None) -> int:
        """
        Queue a request; returns its request id.

        Any result still pending for the same (file, mode) becomes stale and
        is discarded when it completes. An identical request already in the
        cache is delivered immediately without recomputation.

        Raises:
            RuntimeError: If the session is shutting down
        """
        if self._shutdown_requested:
            raise RuntimeError("Session is shutting down")

        key = (file_id, request.mode)
        fingerprint = request_fingerprint(request)
        with self._lock:
            request_id = next(self._ids)
            self._latest[key] = request_id

        cached = self.cache.get(file_id, request.mode, fingerprint)
        if cached is not None:
            logger.debug(f"Cache hit for {file_id}/{request.mode.value} (request {request_id})")
            future: Future = Future()
            future.set_result(cached)
            self._deliver(key, request_id, fingerprint, callback, future)
            return request_id

        future = self._executor.submit(self._analyzer, request)
        future.add_done_callback(partial(self._deliver, key, request_id, fingerprint, callback))
        return request_id

    def _deliver(self, key: CacheKey, request_id: int, fingerprint: str, callback: Optional[ResultCallback], future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Analysis request {request_id} for {key[0]} failed: {error}")
            return

        response = future.result()
        with self._lock:
            if self._latest.get(key) != request_id:
                logger.debug(f"Discarding stale result {request_id} for {key[0]}/{key[1].value}")
                return
            self.cache.store(key[0], key[1], fingerprint, response)

        if callback is not None:
            callback(request_id, response)

    def latest_request_id(self, file_id: str, mode: ProcessingMode) -> Optional[int]:
        with self._lock:
            return self._latest.get((file_id, ProcessingMode(mode)))

    def is_current(self, file_id: str, mode: ProcessingMode, request_id: int) -> bool:
        return self.latest_request_id(file_id, mode) == request_id

    def result(self, file_id: str, mode: ProcessingMode) -> Optional[AnalysisResponse]:
        """Most recent delivered response for a file and mode."""
        return self.cache.get(file_id, mode)

    def shutdown(self, wait: bool = True) -> None:
        self._shutdown_requested = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
