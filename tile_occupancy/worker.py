from __future__ import annotations

import queue
import threading
from enum import Enum
from typing import Callable, Optional

from .frames import FrameDimensionError, FrameSource, FrameSnapshot, color_matches, validate_depth_frame
from .grid import OccupancyGrid
from .pipeline import DetectionPipeline, PipelineResult
from .render import DiagnosticImage
from .settings import DetectionSettings, SettingsSlot


class WorkerState(Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    STOPPED = "stopped"


class DetectionWorker:
    """Runs one pipeline pass per signaled frame on a dedicated thread.

    Protocol:
      - the producer publishes into `source` (or calls `signal_frame_ready()`);
      - the worker sleeps on a condition until a frame is signaled or a stop is
        requested, consumes the ready flag, takes one settings reference and one
        frame snapshot, runs the pipeline and publishes the results;
      - stop is honored only before a wait and right after it, so a started
        cycle always completes.

    Callbacks run on the worker thread. `on_occupancy(grid)` and
    `on_cell(col, row, occupied)` (logical tile coordinates) fire once per
    completed cycle; `on_image(image)` fires only when the active diagnostic
    mode produced an image.
    """

    def __init__(
        self,
        *,
        source: FrameSource,
        settings: DetectionSettings,
        on_occupancy: Optional[Callable[[OccupancyGrid], None]] = None,
        on_cell: Optional[Callable[[int, int, bool], None]] = None,
        on_image: Optional[Callable[[DiagnosticImage], None]] = None,
        expected_size: tuple[int, int] = (0, 0),
        pipeline: Optional[DetectionPipeline] = None,
        print_fn=print,
        name: str = "detect",
    ) -> None:
        self.source = source
        self.on_occupancy = on_occupancy
        self.on_cell = on_cell
        self.on_image = on_image
        self.expected_w = int(expected_size[0])
        self.expected_h = int(expected_size[1])
        self.print = print_fn
        self.pipeline = pipeline or DetectionPipeline()

        self._settings = SettingsSlot(settings)
        self._cond = threading.Condition()
        self._frame_ready = False
        self._stop_requested = False
        self._state = WorkerState.IDLE
        self._cycles = 0
        self._rejected = 0
        self._last_seq = 0
        self._last_result: Optional[PipelineResult] = None
        self._thread = threading.Thread(target=self._run, daemon=True, name=str(name))

        source.subscribe(self.signal_frame_ready)

    # --- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout_s: Optional[float] = None) -> bool:
        try:
            self._thread.join(timeout=timeout_s)
        except RuntimeError:
            # never started
            return True
        return not self._thread.is_alive()

    def stop(self, timeout_s: float = 1.0) -> bool:
        self.request_stop()
        return self.join(timeout_s)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    # --- controller / producer API --------------------------------------------

    def set_detection_settings(self, settings: DetectionSettings) -> None:
        """Replace the active settings; the next cycle sees them in full."""
        self._settings.swap(settings)

    def detection_settings(self) -> DetectionSettings:
        return self._settings.get()

    def signal_frame_ready(self) -> None:
        with self._cond:
            self._frame_ready = True
            self._cond.notify_all()

    def poll(self) -> bool:
        """True while a signaled frame has not been picked up yet."""
        with self._cond:
            return bool(self._frame_ready)

    def request_stop(self) -> None:
        with self._cond:
            self._stop_requested = True
            self._cond.notify_all()

    # --- observers ------------------------------------------------------------

    def get_cycle_count(self) -> int:
        with self._cond:
            return int(self._cycles)

    def rejected_count(self) -> int:
        with self._cond:
            return int(self._rejected)

    @property
    def state(self) -> WorkerState:
        with self._cond:
            return self._state

    @property
    def last_result(self) -> Optional[PipelineResult]:
        with self._cond:
            return self._last_result

    def wait_for_cycle(self, count: int, timeout_s: float = 1.0) -> bool:
        """Wait until at least `count` cycles completed (False on timeout or stop)."""
        with self._cond:
            self._cond.wait_for(
                lambda: self._cycles >= int(count) or self._state == WorkerState.STOPPED,
                timeout=float(timeout_s),
            )
            return bool(self._cycles >= int(count))

    # --- worker thread --------------------------------------------------------

    def _wait_frame(self) -> bool:
        with self._cond:
            if self._stop_requested:
                return False
            while not self._frame_ready and not self._stop_requested:
                self._cond.wait()
            if self._stop_requested:
                return False
            self._frame_ready = False
            self._state = WorkerState.PROCESSING
            return True

    def _run(self) -> None:
        try:
            while self._wait_frame():
                try:
                    self._cycle()
                finally:
                    with self._cond:
                        self._state = WorkerState.IDLE
                        self._cond.notify_all()
        finally:
            self.source.unsubscribe(self.signal_frame_ready)
            with self._cond:
                self._state = WorkerState.STOPPED
                cycles = int(self._cycles)
                self._cond.notify_all()
            self.print(f"[detect] stopped after {cycles} cycles", flush=True)

    def _take_snapshot(self) -> Optional[FrameSnapshot]:
        snap = self.source.latest()
        if snap is None or int(snap.seq) <= int(self._last_seq):
            return None
        self._last_seq = int(snap.seq)
        return snap

    def _cycle(self) -> None:
        settings = self._settings.get()
        snap = self._take_snapshot()
        if snap is None:
            return
        try:
            validate_depth_frame(snap.depth, width=self.expected_w, height=self.expected_h)
        except FrameDimensionError as exc:
            with self._cond:
                self._rejected += 1
            self.print(f"[detect] frame rejected: {exc} (seq={snap.seq})", flush=True)
            return

        color = snap.color if color_matches(snap.color, snap.depth) else None
        try:
            result = self.pipeline.process(snap.depth, settings, color)
        except Exception as exc:
            self.print(f"[detect] cycle failed (seq={snap.seq}): {type(exc).__name__}: {exc}", flush=True)
            return

        self._publish(result)
        with self._cond:
            self._last_result = result
            self._cycles += 1

    def _publish(self, result: PipelineResult) -> None:
        grid = result.grid
        if self.on_occupancy is not None:
            try:
                self.on_occupancy(grid)
            except Exception as exc:
                self.print(f"[detect] occupancy callback error: {exc}", flush=True)
        if self.on_cell is not None:
            for col, row, occupied in grid.iter_cells():
                try:
                    self.on_cell(col, row, occupied)
                except Exception as exc:
                    self.print(f"[detect] cell callback error at ({col}, {row}): {exc}", flush=True)
        if result.image is not None and self.on_image is not None:
            try:
                self.on_image(result.image)
            except Exception as exc:
                self.print(f"[detect] image callback error: {exc}", flush=True)


class DiagnosticImageQueue:
    """Bounded hand-off of diagnostic images to a display loop.

    `put` waits at most `put_timeout_s` for room, then drops the oldest image.
    The instance is callable, so it can be passed directly as `on_image`.
    """

    def __init__(self, *, maxsize: int = 2, put_timeout_s: float = 0.05) -> None:
        self._q: "queue.Queue[DiagnosticImage]" = queue.Queue(maxsize=max(1, int(maxsize)))
        self.put_timeout_s = max(0.0, float(put_timeout_s))
        self._dropped = 0
        self._lock = threading.Lock()

    def put(self, image: DiagnosticImage) -> None:
        try:
            self._q.put(image, block=self.put_timeout_s > 0, timeout=self.put_timeout_s or None)
            return
        except queue.Full:
            pass
        try:
            _ = self._q.get_nowait()
            with self._lock:
                self._dropped += 1
        except queue.Empty:
            pass
        try:
            self._q.put_nowait(image)
        except queue.Full:
            with self._lock:
                self._dropped += 1

    __call__ = put

    def get_latest(self, timeout_s: float = 0.0) -> Optional[DiagnosticImage]:
        try:
            if timeout_s > 0:
                img = self._q.get(timeout=float(timeout_s))
            else:
                img = self._q.get_nowait()
        except queue.Empty:
            return None
        while True:
            try:
                img = self._q.get_nowait()
            except queue.Empty:
                break
        return img

    def dropped(self) -> int:
        with self._lock:
            return int(self._dropped)
