from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

DEPTH_MAX = 65535
THRESHOLD_MAX = 255


class DiagnosticMode(Enum):
    """Pipeline stage rendered for the operator display."""

    NONE = "none"
    RAW_DEPTH = "raw_depth"
    FILTERED = "filtered"
    SMOOTHED = "smoothed"
    THRESHOLDED = "thresholded"
    OVERLAY = "overlay"
    BLENDED = "blended"
    COLOR_BLEND = "color_blend"


# Integer ids of the legacy tuning panel (it has no smoothed stage).
MODE_BY_LEGACY_ID = {
    0: DiagnosticMode.NONE,
    1: DiagnosticMode.RAW_DEPTH,
    2: DiagnosticMode.FILTERED,
    3: DiagnosticMode.THRESHOLDED,
    4: DiagnosticMode.OVERLAY,
    5: DiagnosticMode.BLENDED,
    6: DiagnosticMode.COLOR_BLEND,
}

MODE_ALIASES = {
    "none": DiagnosticMode.NONE,
    "off": DiagnosticMode.NONE,
    "raw": DiagnosticMode.RAW_DEPTH,
    "rawdepth": DiagnosticMode.RAW_DEPTH,
    "depth": DiagnosticMode.RAW_DEPTH,
    "filtered": DiagnosticMode.FILTERED,
    "band": DiagnosticMode.FILTERED,
    "smoothed": DiagnosticMode.SMOOTHED,
    "smooth": DiagnosticMode.SMOOTHED,
    "thresholded": DiagnosticMode.THRESHOLDED,
    "threshold": DiagnosticMode.THRESHOLDED,
    "binary": DiagnosticMode.THRESHOLDED,
    "overlay": DiagnosticMode.OVERLAY,
    "grid": DiagnosticMode.OVERLAY,
    "blended": DiagnosticMode.BLENDED,
    "blend": DiagnosticMode.BLENDED,
    "colorblend": DiagnosticMode.COLOR_BLEND,
    "color": DiagnosticMode.COLOR_BLEND,
}


def _normalize_mode_name(name: str) -> str:
    key = str(name).strip().lower()
    for ch in (" ", "_", "-", "+"):
        key = key.replace(ch, "")
    return key


def resolve_diagnostic_mode(value: Union[DiagnosticMode, str, int, None]) -> DiagnosticMode:
    if value is None:
        return DiagnosticMode.NONE
    if isinstance(value, DiagnosticMode):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Unknown diagnostic mode {value!r}")
    if isinstance(value, int):
        if value in MODE_BY_LEGACY_ID:
            return MODE_BY_LEGACY_ID[value]
        raise ValueError(f"Unknown diagnostic mode id {value}. Expected one of: {sorted(MODE_BY_LEGACY_ID)}")
    text = str(value).strip()
    if text.isdigit():
        return resolve_diagnostic_mode(int(text))
    key = _normalize_mode_name(text)
    if key in MODE_ALIASES:
        return MODE_ALIASES[key]
    raise ValueError(f"Unknown diagnostic mode '{value}'. Expected one of: {', '.join(sorted(MODE_ALIASES))}")


def next_diagnostic_mode(mode: DiagnosticMode) -> DiagnosticMode:
    modes = list(DiagnosticMode)
    return modes[(modes.index(mode) + 1) % len(modes)]


@dataclass(frozen=True)
class GridGeometry:
    cols: int
    rows: int
    origin_x: float
    origin_y: float
    cell_w: float
    cell_h: float
    tol_x: float = 0.0
    tol_y: float = 0.0

    @property
    def is_empty(self) -> bool:
        return self.cols <= 0 or self.rows <= 0


def _clamp_int(v: Any, lo: int, hi: int) -> int:
    return int(max(lo, min(hi, int(v))))


@dataclass(frozen=True)
class DetectionSettings:
    """One complete detection configuration.

    Instances are never mutated; a tuning panel builds a new value (see
    `with_changes`) and hands it to the worker, which reads exactly one
    reference at the top of each cycle.

    `flip_cols` / `flip_rows` describe how the sensor is mounted relative to the
    tile field. The default (both reversed) matches a sensor rotated by 180
    degrees.
    """

    min_depth: int = 500
    max_depth: int = 1500
    min_threshold: int = 16
    max_threshold: int = 255
    grid_cols: int = 4
    grid_rows: int = 3
    grid_origin_x: float = 0.0
    grid_origin_y: float = 0.0
    cell_size_x: float = 50.0
    cell_size_y: float = 50.0
    cell_tolerance_x: float = 5.0
    cell_tolerance_y: float = 5.0
    diagnostic_mode: DiagnosticMode = DiagnosticMode.NONE
    flip_cols: bool = True
    flip_rows: bool = True

    def geometry(self) -> GridGeometry:
        return GridGeometry(
            cols=int(self.grid_cols),
            rows=int(self.grid_rows),
            origin_x=float(self.grid_origin_x),
            origin_y=float(self.grid_origin_y),
            cell_w=float(self.cell_size_x),
            cell_h=float(self.cell_size_y),
            tol_x=float(self.cell_tolerance_x),
            tol_y=float(self.cell_tolerance_y),
        )

    def with_changes(self, **changes: Any) -> "DetectionSettings":
        if "diagnostic_mode" in changes:
            changes["diagnostic_mode"] = resolve_diagnostic_mode(changes["diagnostic_mode"])
        return dataclasses.replace(self, **changes)

    @staticmethod
    def from_dict(d: dict) -> "DetectionSettings":
        """Build settings from the `detection:` config section.

        Missing keys keep their defaults. Depths are clamped to the 16-bit sensor
        range and thresholds to 8 bits; inverted bands are kept as given.
        """
        base = DetectionSettings()
        if not isinstance(d, dict):
            return base
        grid = d.get("grid", {})
        if not isinstance(grid, dict):
            grid = {}
        return DetectionSettings(
            min_depth=_clamp_int(d.get("min_depth", base.min_depth), 0, DEPTH_MAX),
            max_depth=_clamp_int(d.get("max_depth", base.max_depth), 0, DEPTH_MAX),
            min_threshold=_clamp_int(d.get("min_threshold", base.min_threshold), 0, THRESHOLD_MAX),
            max_threshold=_clamp_int(d.get("max_threshold", base.max_threshold), 0, THRESHOLD_MAX),
            grid_cols=int(grid.get("cols", base.grid_cols)),
            grid_rows=int(grid.get("rows", base.grid_rows)),
            grid_origin_x=float(grid.get("origin_x", base.grid_origin_x)),
            grid_origin_y=float(grid.get("origin_y", base.grid_origin_y)),
            cell_size_x=float(grid.get("cell_w", base.cell_size_x)),
            cell_size_y=float(grid.get("cell_h", base.cell_size_y)),
            cell_tolerance_x=float(grid.get("tol_x", base.cell_tolerance_x)),
            cell_tolerance_y=float(grid.get("tol_y", base.cell_tolerance_y)),
            diagnostic_mode=resolve_diagnostic_mode(d.get("diagnostic_mode", base.diagnostic_mode)),
            flip_cols=bool(d.get("flip_cols", base.flip_cols)),
            flip_rows=bool(d.get("flip_rows", base.flip_rows)),
        )

    def to_dict(self) -> dict:
        return {
            "min_depth": int(self.min_depth),
            "max_depth": int(self.max_depth),
            "min_threshold": int(self.min_threshold),
            "max_threshold": int(self.max_threshold),
            "grid": {
                "cols": int(self.grid_cols),
                "rows": int(self.grid_rows),
                "origin_x": float(self.grid_origin_x),
                "origin_y": float(self.grid_origin_y),
                "cell_w": float(self.cell_size_x),
                "cell_h": float(self.cell_size_y),
                "tol_x": float(self.cell_tolerance_x),
                "tol_y": float(self.cell_tolerance_y),
            },
            "diagnostic_mode": self.diagnostic_mode.value,
            "flip_cols": bool(self.flip_cols),
            "flip_rows": bool(self.flip_rows),
        }


class SettingsSlot:
    """Single-slot holder for the active settings value.

    `swap` replaces the reference as a whole; readers always get one complete
    `DetectionSettings` and never a mix of two.
    """

    def __init__(self, settings: DetectionSettings) -> None:
        self._lock = threading.Lock()
        self._settings = self._check(settings)

    @staticmethod
    def _check(settings: Any) -> DetectionSettings:
        if not isinstance(settings, DetectionSettings):
            raise TypeError(f"expected DetectionSettings, got {type(settings).__name__}")
        return settings

    def swap(self, settings: DetectionSettings) -> None:
        settings = self._check(settings)
        with self._lock:
            self._settings = settings

    def get(self) -> DetectionSettings:
        with self._lock:
            return self._settings
