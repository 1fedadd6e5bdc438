from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from loguru import logger


class LivePoller:
    """Calls ``fetch`` every ``interval_seconds`` on a daemon thread until stopped.

    The poller owns its thread and stop event, so ``stop()`` (or leaving the
    ``with`` block) always cancels the schedule. A failing tick is logged and
    the next tick runs on time.
    """

    def __init__(
        self,
        fetch: Callable[[], Any],
        interval_seconds: float,
        on_update: Callable[[Any], None] | None = None,
        name: str = "live-poller",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.fetch = fetch
        self.interval_seconds = float(interval_seconds)
        self.on_update = on_update
        self.name = name
        self.latest: Any = None
        self.tick_count = 0
        self.error_count = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def __enter__(self) -> "LivePoller":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
            self._thread.start()
        logger.info(f"Started {self.name} every {self.interval_seconds:.0f}s.")

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout)
        if thread.is_alive():
            logger.warning(f"{self.name} did not stop within {timeout}s.")
        else:
            logger.info(f"Stopped {self.name} after {self.tick_count} ticks.")

    def tick(self) -> Any:
        self.tick_count += 1
        try:
            result = self.fetch()
        except Exception as exc:
            self.error_count += 1
            logger.warning(f"{self.name} tick {self.tick_count} failed: {exc}")
            return None

        self.latest = result
        if self.on_update is not None:
            try:
                self.on_update(result)
            except Exception as exc:
                self.error_count += 1
                logger.warning(f"{self.name} update callback failed: {exc}")
        return result

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            if self._stop_event.wait(self.interval_seconds):
                break
