from __future__ import annotations

import numpy as np
import pytest

from tile_occupancy.settings import DetectionSettings

FRAME_W = 200
FRAME_H = 150


def make_depth(
    boxes=(),
    *,
    width: int = FRAME_W,
    height: int = FRAME_H,
    background: int = 0,
) -> np.ndarray:
    """uint16 depth frame with axis-aligned boxes `(x, y, w, h, depth_mm)`."""
    depth = np.full((int(height), int(width)), int(background), dtype=np.uint16)
    for x, y, w, h, value in boxes:
        depth[int(y) : int(y + h), int(x) : int(x + w)] = int(value)
    return depth


class LogSink:
    """Drop-in `print_fn` that keeps every line."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def __call__(self, *args, **kwargs) -> None:
        self.lines.append(" ".join(str(a) for a in args))

    def matching(self, needle: str) -> list[str]:
        return [ln for ln in self.lines if needle in ln]


@pytest.fixture
def settings() -> DetectionSettings:
    # 4x3 grid of 50 px cells at the origin, 5 px tolerance, band 500..1500
    return DetectionSettings()


@pytest.fixture
def log() -> LogSink:
    return LogSink()


@pytest.fixture
def dancer_depth() -> np.ndarray:
    # one body at 1 m over the top-left image cell only
    return make_depth([(10, 10, 30, 30, 1000)])
