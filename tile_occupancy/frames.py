from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np


class FrameError(RuntimeError):
    pass


class FrameDimensionError(FrameError):
    pass


@dataclass(frozen=True)
class FrameSnapshot:
    """One published sensor frame.

    `depth` is `(H, W)` uint16 (0 = no return), `color` is `(H, W, 3)` uint8 or
    None. Both arrays are private read-only copies.
    """

    seq: int
    ts_s: float
    depth: np.ndarray
    color: Optional[np.ndarray]

    @property
    def width(self) -> int:
        return int(self.depth.shape[1])

    @property
    def height(self) -> int:
        return int(self.depth.shape[0])


def _frozen_copy(arr: np.ndarray, dtype) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True, order="C")
    out.setflags(write=False)
    return out


def validate_depth_frame(depth: np.ndarray, *, width: int = 0, height: int = 0) -> None:
    """Raise FrameDimensionError unless `depth` is 2-D and (when given) W x H."""
    shape = getattr(depth, "shape", None)
    if shape is None or len(shape) != 2:
        raise FrameDimensionError(f"depth frame must be 2-D, got shape={shape}")
    h, w = int(shape[0]), int(shape[1])
    if h <= 0 or w <= 0:
        raise FrameDimensionError(f"depth frame is empty ({w}x{h})")
    if int(width) > 0 and int(height) > 0 and (w != int(width) or h != int(height)):
        raise FrameDimensionError(f"depth frame is {w}x{h}, expected {int(width)}x{int(height)}")


def color_matches(color: Optional[np.ndarray], depth: np.ndarray) -> bool:
    if color is None:
        return False
    shape = getattr(color, "shape", None)
    if shape is None or len(shape) != 3 or int(shape[2]) != 3:
        return False
    return int(shape[0]) == int(depth.shape[0]) and int(shape[1]) == int(depth.shape[1])


class FrameSource:
    """Latest-frame slot shared by the sensor producer and the detection worker.

    The producer copies its buffers outside the lock and then swaps the snapshot
    reference inside it; readers take the reference and keep using it for a full
    cycle while the producer moves on to the next frame.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[FrameSnapshot] = None
        self._seq = 0
        self._subscribers: list[Callable[[], None]] = []

    def subscribe(self, fn: Callable[[], None]) -> None:
        with self._lock:
            self._subscribers.append(fn)

    def unsubscribe(self, fn: Callable[[], None]) -> None:
        with self._lock:
            if fn in self._subscribers:
                self._subscribers.remove(fn)

    def publish(
        self,
        depth: np.ndarray,
        color: Optional[np.ndarray] = None,
        *,
        ts_s: Optional[float] = None,
    ) -> int:
        validate_depth_frame(depth)
        depth_c = _frozen_copy(depth, np.uint16)
        color_c = _frozen_copy(color, np.uint8) if color is not None else None
        ts = float(time.time()) if ts_s is None else float(ts_s)
        with self._lock:
            self._seq += 1
            seq = int(self._seq)
            self._latest = FrameSnapshot(seq=seq, ts_s=ts, depth=depth_c, color=color_c)
            subscribers = list(self._subscribers)
        for fn in subscribers:
            fn()
        return seq

    def latest(self) -> Optional[FrameSnapshot]:
        with self._lock:
            return self._latest

    def seq(self) -> int:
        with self._lock:
            return int(self._seq)
