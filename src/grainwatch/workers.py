"""Background execution: evaluation worker pool and periodic sweeper.

EvaluationWorkerPool runs ``engine.on_reading`` for submitted readings on a
thread pool. PeriodicSweeper runs ``engine.sweep`` on a daemon thread every
``interval`` seconds until stopped. Both rely on the repositories opening
a short transaction per call, which makes them safe to share.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import TYPE_CHECKING, Iterable, Optional

if TYPE_CHECKING:
    from grainwatch.models.evaluation import EvaluationResult
    from grainwatch.models.reading import Reading
    from grainwatch.triggers.engine import TriggerEngine

logger = logging.getLogger(__name__)


class EvaluationWorkerPool:
    """Evaluate readings concurrently.

    Usage::

        with EvaluationWorkerPool(engine, workers=4) as pool:
            pool.submit_many(readings)
            pool.join()
    """

    def __init__(self, engine: TriggerEngine, *, workers: int = 4, notify: bool = True) -> None:
        self._engine = engine
        self._notify = notify
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="grainwatch-eval"
        )
        self._futures: list[Future] = []
        self._lock = threading.Lock()

    def submit(self, reading: Reading, *, notify: Optional[bool] = None) -> Future:
        flag = self._notify if notify is None else notify
        future = self._executor.submit(self._engine.on_reading, reading, notify=flag)
        with self._lock:
            self._futures.append(future)
        return future

    def submit_many(
        self, readings: Iterable[Reading], *, notify: Optional[bool] = None
    ) -> list[Future]:
        return [self.submit(r, notify=notify) for r in readings]

    def join(self, timeout: Optional[float] = None) -> list[EvaluationResult]:
        """Wait for submitted work and return every result collected so far.

        Exceptions raised by a worker are re-raised here.
        """
        with self._lock:
            futures, self._futures = self._futures, []
        done, not_done = wait_futures(futures, timeout=timeout)
        if not_done:
            with self._lock:
                self._futures.extend(not_done)
        results: list[EvaluationResult] = []
        for future in futures:
            if future in done:
                results.extend(future.result())
        return results

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> EvaluationWorkerPool:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()


class PeriodicSweeper:
    """Run ``engine.sweep()`` every *interval* seconds on a daemon thread."""

    def __init__(self, engine: TriggerEngine, *, interval: float = 300.0, notify: bool = True) -> None:
        self._engine = engine
        self._interval = interval
        self._notify = notify
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="grainwatch-sweeper", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> list[EvaluationResult]:
        results = self._engine.sweep(notify=self._notify)
        self.runs += 1
        return results

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweep failed; retrying in %.0fs", self._interval)

    def __enter__(self) -> PeriodicSweeper:
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        self.stop()
