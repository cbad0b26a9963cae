from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .blobs import Blob, MIN_BLOB_SIZE_PX, extract_blobs
from .depth_band import BandImages, band_filter
from .grid import OccupancyGrid, intersect_grid
from .noise import NoiseSuppressor
from .render import DiagnosticImage, DiagnosticRenderer
from .settings import DetectionSettings


@dataclass(frozen=True)
class PipelineResult:
    settings: DetectionSettings
    band: BandImages
    smoothed: np.ndarray
    binary: np.ndarray
    blobs: tuple[Blob, ...]
    grid: OccupancyGrid
    image: Optional[DiagnosticImage]


class DetectionPipeline:
    """Depth band -> noise suppression -> blobs -> grid, plus the diagnostic tap."""

    def __init__(
        self,
        *,
        suppressor: Optional[NoiseSuppressor] = None,
        renderer: Optional[DiagnosticRenderer] = None,
        min_blob_size: int = MIN_BLOB_SIZE_PX,
    ) -> None:
        self.suppressor = suppressor or NoiseSuppressor()
        self.renderer = renderer or DiagnosticRenderer()
        self.min_blob_size = int(min_blob_size)

    def process(
        self,
        depth: np.ndarray,
        settings: DetectionSettings,
        color: Optional[np.ndarray] = None,
    ) -> PipelineResult:
        band = band_filter(depth, settings.min_depth, settings.max_depth)
        if band.empty:
            # empty band: no blobs, whatever the threshold band is
            smoothed = np.zeros_like(band.filtered)
            binary = np.zeros_like(band.filtered)
            blobs: tuple[Blob, ...] = ()
        else:
            smoothed = self.suppressor.apply(band.filtered)
            ext = extract_blobs(
                smoothed, settings.min_threshold, settings.max_threshold, min_size=self.min_blob_size
            )
            binary = ext.binary
            blobs = ext.blobs

        geom = settings.geometry()
        grid = intersect_grid(blobs, geom, flip_cols=settings.flip_cols, flip_rows=settings.flip_rows)
        image = self.renderer.render(
            settings.diagnostic_mode,
            raw_norm=band.raw_norm,
            filtered=band.filtered,
            smoothed=smoothed,
            binary=binary,
            geom=geom,
            grid=grid,
            blobs=blobs,
            color=color,
        )
        return PipelineResult(
            settings=settings,
            band=band,
            smoothed=smoothed,
            binary=binary,
            blobs=blobs,
            grid=grid,
            image=image,
        )


def run_pipeline(
    depth: np.ndarray,
    settings: DetectionSettings,
    color: Optional[np.ndarray] = None,
    *,
    renderer: Optional[DiagnosticRenderer] = None,
) -> PipelineResult:
    return DetectionPipeline(renderer=renderer).process(depth, settings, color)
