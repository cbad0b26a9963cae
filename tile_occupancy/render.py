from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

import cv2
import numpy as np

from .blobs import Blob
from .frames import color_matches
from .grid import OccupancyGrid, cell_rect
from .settings import DiagnosticMode, GridGeometry

# RGB
CELL_COLOR = (0, 0, 200)
HIT_COLOR = (0, 255, 0)
BLOB_COLOR = (0, 255, 255)
FILL_COLOR = (0, 255, 0)
LINE_THICKNESS = 2

BLEND_OVERLAY_ALPHA = 0.7
BLEND_COLOR_ALPHA = 0.5


class PixelFormat(Enum):
    RGBA = "rgba"
    BGRA = "bgra"


def resolve_pixel_format(value) -> PixelFormat:
    if isinstance(value, PixelFormat):
        return value
    key = str(value or "").strip().lower()
    for fmt in PixelFormat:
        if fmt.value == key:
            return fmt
    raise ValueError(f"Unknown pixel format '{value}'. Expected one of: rgba, bgra")


@dataclass(frozen=True)
class DiagnosticImage:
    width: int
    height: int
    pixel_format: PixelFormat
    data: bytes

    def as_array(self) -> np.ndarray:
        return np.frombuffer(self.data, dtype=np.uint8).reshape(int(self.height), int(self.width), 4)

    def to_bgr(self) -> np.ndarray:
        code = cv2.COLOR_RGBA2BGR if self.pixel_format == PixelFormat.RGBA else cv2.COLOR_BGRA2BGR
        return cv2.cvtColor(self.as_array(), code)


def _gray_to_rgb(gray: np.ndarray) -> np.ndarray:
    return cv2.cvtColor(np.asarray(gray, dtype=np.uint8), cv2.COLOR_GRAY2RGB)


def _draw_rect(img: np.ndarray, rect: tuple[int, int, int, int], color, thickness: int) -> None:
    x, y, w, h = rect
    if w <= 0 or h <= 0:
        return
    cv2.rectangle(img, (int(x), int(y)), (int(x + w), int(y + h)), color, int(thickness))


def draw_overlay(
    base_gray: np.ndarray,
    *,
    geom: GridGeometry,
    grid: OccupancyGrid,
    blobs: Sequence[Blob],
) -> np.ndarray:
    """Filtered image with cell insets and blob boxes on top.

    All cells are drawn before any blob so grid lines never hide a blob outline.
    """
    img = _gray_to_rgb(base_gray)
    if not geom.is_empty:
        for row in range(int(geom.rows)):
            for col in range(int(geom.cols)):
                color = HIT_COLOR if grid.occupied(col, row) else CELL_COLOR
                _draw_rect(img, cell_rect(geom, col, row), color, LINE_THICKNESS)
    for b in blobs:
        _draw_rect(img, (b.x, b.y, b.w, b.h), BLOB_COLOR, LINE_THICKNESS)
    return img


def draw_blended(overlay_rgb: np.ndarray, *, geom: GridGeometry, grid: OccupancyGrid) -> np.ndarray:
    img = overlay_rgb.copy()
    fill = np.zeros_like(img)
    if not geom.is_empty:
        for row in range(int(geom.rows)):
            for col in range(int(geom.cols)):
                rect = cell_rect(geom, col, row, inset=False)
                _draw_rect(fill, rect, FILL_COLOR, -1 if grid.occupied(col, row) else LINE_THICKNESS)
                _draw_rect(img, rect, CELL_COLOR, LINE_THICKNESS)
    return cv2.addWeighted(img, BLEND_OVERLAY_ALPHA, fill, 1.0 - BLEND_OVERLAY_ALPHA, 0)


class DiagnosticRenderer:
    """Builds the operator image for one pipeline pass.

    One code path serves every sensor: the output channel order comes from
    `pixel_format` and the incoming color frame's order from `color_order`.
    """

    def __init__(self, *, pixel_format=PixelFormat.RGBA, color_order: str = "rgb", print_fn=print) -> None:
        self.pixel_format = resolve_pixel_format(pixel_format)
        order = str(color_order or "rgb").strip().lower()
        if order not in ("rgb", "bgr"):
            raise ValueError(f"Unknown color order '{color_order}'. Expected rgb or bgr")
        self.color_order = order
        self.print = print_fn
        self._color_degraded = False

    def _color_rgb(self, color: np.ndarray) -> np.ndarray:
        c = np.asarray(color, dtype=np.uint8)
        if self.color_order == "bgr":
            return cv2.cvtColor(c, cv2.COLOR_BGR2RGB)
        return c

    def _pack(self, rgb: np.ndarray) -> DiagnosticImage:
        code = cv2.COLOR_RGB2RGBA if self.pixel_format == PixelFormat.RGBA else cv2.COLOR_RGB2BGRA
        out = np.ascontiguousarray(cv2.cvtColor(rgb, code))
        h, w = out.shape[:2]
        return DiagnosticImage(width=int(w), height=int(h), pixel_format=self.pixel_format, data=out.tobytes())

    def _note_color(self, available: bool) -> None:
        if available:
            if self._color_degraded:
                self.print("[render] color frame back, color blend restored", flush=True)
            self._color_degraded = False
            return
        if not self._color_degraded:
            self.print("[render] no usable color frame, showing blended view instead", flush=True)
        self._color_degraded = True

    def render(
        self,
        mode: DiagnosticMode,
        *,
        raw_norm: Optional[np.ndarray],
        filtered: Optional[np.ndarray],
        smoothed: Optional[np.ndarray],
        binary: Optional[np.ndarray],
        geom: GridGeometry,
        grid: OccupancyGrid,
        blobs: Sequence[Blob],
        color: Optional[np.ndarray] = None,
    ) -> Optional[DiagnosticImage]:
        if mode == DiagnosticMode.NONE:
            return None

        gray_stage = {
            DiagnosticMode.RAW_DEPTH: raw_norm,
            DiagnosticMode.FILTERED: filtered,
            DiagnosticMode.SMOOTHED: smoothed,
            DiagnosticMode.THRESHOLDED: binary,
        }
        if mode in gray_stage:
            stage = gray_stage[mode]
            if stage is None or int(np.asarray(stage).size) == 0:
                return None
            return self._pack(_gray_to_rgb(stage))

        if filtered is None or int(np.asarray(filtered).size) == 0:
            return None
        img = draw_overlay(filtered, geom=geom, grid=grid, blobs=blobs)
        if mode == DiagnosticMode.OVERLAY:
            return self._pack(img)

        img = draw_blended(img, geom=geom, grid=grid)
        if mode == DiagnosticMode.COLOR_BLEND:
            usable = color_matches(color, filtered)
            self._note_color(usable)
            if usable:
                img = cv2.addWeighted(img, BLEND_COLOR_ALPHA, self._color_rgb(color), 1.0 - BLEND_COLOR_ALPHA, 0)
        return self._pack(img)
