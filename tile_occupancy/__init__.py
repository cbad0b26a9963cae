"""
`tile_occupancy` - depth-sensor floor-tile occupancy detection.

A depth frame is banded, denoised and binarized; blob bounding boxes are then
intersected with a grid of tile cells. A single worker thread runs one pass per
published frame and hands the grid (and an optional diagnostic image) to
callbacks.
"""

from __future__ import annotations

from .frames import FrameDimensionError, FrameError, FrameSnapshot, FrameSource
from .grid import OccupancyGrid
from .pipeline import DetectionPipeline, PipelineResult, run_pipeline
from .render import DiagnosticImage, DiagnosticRenderer, PixelFormat
from .settings import DetectionSettings, DiagnosticMode, GridGeometry, resolve_diagnostic_mode
from .worker import DetectionWorker, DiagnosticImageQueue, WorkerState

__all__ = [
    "__version__",
    "DetectionPipeline",
    "DetectionSettings",
    "DetectionWorker",
    "DiagnosticImage",
    "DiagnosticImageQueue",
    "DiagnosticMode",
    "DiagnosticRenderer",
    "FrameDimensionError",
    "FrameError",
    "FrameSnapshot",
    "FrameSource",
    "GridGeometry",
    "OccupancyGrid",
    "PipelineResult",
    "PixelFormat",
    "WorkerState",
    "resolve_diagnostic_mode",
    "run_pipeline",
]

__version__ = "0.1.0"
