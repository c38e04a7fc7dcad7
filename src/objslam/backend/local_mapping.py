"""Local mapping worker running bundle adjustment on new keyframes.

Keyframes handed over by tracking are queued and processed on a
background thread. For each keyframe the worker inserts it into the map
(if needed), refreshes its covisibility and runs local bundle adjustment,
unless more keyframes are already waiting. Inserting a keyframe raises
the abort flag so that a running adjustment yields to fresh data.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from queue import Empty, Queue
from typing import TYPE_CHECKING

from .local_ba import LocalBAConfig, LocalBAResult, LocalBundleAdjustment

if TYPE_CHECKING:
    from ..map import KeyFrame, Map


@dataclass
class LocalMappingStats:
    """Counters of the local mapping worker."""

    num_keyframes: int = 0
    num_ba_runs: int = 0
    num_ba_skipped: int = 0
    num_ba_aborted: int = 0
    num_outliers_removed: int = 0


class LocalMapping:
    """Background thread consuming keyframes and running local BA."""

    def __init__(
        self,
        scene_map: Map,
        config: LocalBAConfig | None = None,
    ) -> None:
        """Initialize local mapping.

        Args:
            scene_map: Shared scene graph
            config: Configuration for local BA
        """
        self._map = scene_map
        self._local_ba = LocalBundleAdjustment(scene_map, config)
        self._verbose = self._local_ba.config.verbose

        self._queue: Queue[KeyFrame | None] = Queue()
        self._abort_ba = threading.Event()
        self._thread: threading.Thread | None = None
        self._is_running = False

        self._pending = 0
        self._idle = threading.Condition()

        self._stats = LocalMappingStats()
        self._last_result: LocalBAResult | None = None

    def start(self) -> None:
        """Start the worker thread."""
        if self._is_running:
            return

        self._thread = threading.Thread(
            target=self._run, name="LocalMapping", daemon=True
        )
        self._is_running = True
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the worker thread, interrupting any running adjustment."""
        if not self._is_running:
            return

        self._abort_ba.set()
        self._queue.put(None)  # Shutdown sentinel

        if self._thread is not None:
            self._thread.join(timeout=timeout)

        self._is_running = False
        self._thread = None

    def insert_keyframe(self, keyframe: KeyFrame) -> None:
        """Queue a keyframe and interrupt the running adjustment."""
        with self._idle:
            self._pending += 1
        self._queue.put(keyframe)
        self._abort_ba.set()

    def process_keyframe(self, keyframe: KeyFrame) -> LocalBAResult:
        """Insert a keyframe into the map and run local BA synchronously.

        Args:
            keyframe: New keyframe (already linked to its map points)

        Returns:
            Result of local bundle adjustment
        """
        self._abort_ba.clear()
        return self._insert_and_optimize(keyframe)

    def _insert_and_optimize(self, keyframe: KeyFrame) -> LocalBAResult:
        """Insert a keyframe and run local BA; a raised abort flag is kept."""
        with self._map.update_lock:
            if self._map.get_keyframe(keyframe.id) is None:
                self._map.add_keyframe(keyframe)
            self._map.update_connections(keyframe)

        self._stats.num_keyframes += 1
        result = self._local_ba.run(keyframe, stop_flag=self._abort_ba)
        self._record(result)
        return result

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until every queued keyframe has been processed.

        Returns:
            False if the timeout expired first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._pending > 0:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def _run(self) -> None:
        """Worker loop."""
        if self._verbose:
            print("[LocalMapping] Thread started")

        while True:
            try:
                keyframe = self._queue.get(timeout=1.0)
            except Empty:
                continue

            if keyframe is None:
                if self._verbose:
                    print("[LocalMapping] Shutdown received")
                break

            try:
                # Must precede the queue check; later insertions then abort the run
                self._abort_ba.clear()
                if self._queue.empty():
                    self._insert_and_optimize(keyframe)
                else:
                    self._insert_only(keyframe)
            except Exception as e:
                print(f"[LocalMapping] Error on keyframe {keyframe.id}: {e}")
            finally:
                with self._idle:
                    self._pending -= 1
                    self._idle.notify_all()

        if self._verbose:
            print("[LocalMapping] Thread stopped")

    def _insert_only(self, keyframe: KeyFrame) -> None:
        """Insert a keyframe without optimizing; newer ones are waiting."""
        with self._map.update_lock:
            if self._map.get_keyframe(keyframe.id) is None:
                self._map.add_keyframe(keyframe)
            self._map.update_connections(keyframe)
        self._stats.num_keyframes += 1
        self._stats.num_ba_skipped += 1

    def _record(self, result: LocalBAResult) -> None:
        self._last_result = result
        if result.committed:
            self._stats.num_ba_runs += 1
            self._stats.num_outliers_removed += len(result.outliers)
        if result.aborted:
            self._stats.num_ba_aborted += 1

    @property
    def is_running(self) -> bool:
        """Return True while the worker thread is alive."""
        return self._is_running

    @property
    def stats(self) -> LocalMappingStats:
        return self._stats

    @property
    def last_result(self) -> LocalBAResult | None:
        """Return the result of the most recent adjustment."""
        return self._last_result

    @property
    def local_ba(self) -> LocalBundleAdjustment:
        return self._local_ba
