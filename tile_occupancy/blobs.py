from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

MIN_BLOB_SIZE_PX = 20
APPROX_EPS_FRAC = 0.015


@dataclass(frozen=True)
class Blob:
    x: int
    y: int
    w: int
    h: int

    @property
    def x2(self) -> int:
        return int(self.x + self.w)

    @property
    def y2(self) -> int:
        return int(self.y + self.h)

    def intersects(self, x: int, y: int, w: int, h: int) -> bool:
        """Half-open rectangle overlap; touching edges and empty rects never count."""
        if self.w <= 0 or self.h <= 0 or w <= 0 or h <= 0:
            return False
        return bool(x < self.x2 and self.x < x + w and y < self.y2 and self.y < y + h)


@dataclass(frozen=True)
class BlobExtraction:
    binary: np.ndarray  # uint8 0/255
    blobs: tuple[Blob, ...]


def threshold_band(gray: np.ndarray, min_threshold: int, max_threshold: int) -> np.ndarray:
    img = np.asarray(gray, dtype=np.uint8)
    lo, hi = int(min_threshold), int(max_threshold)
    if lo > hi:
        return np.zeros(img.shape, dtype=np.uint8)
    return cv2.inRange(img, lo, hi)


def _find_contours(binary: np.ndarray) -> tuple[list, np.ndarray | None]:
    fc = cv2.findContours(binary, cv2.RETR_TREE, cv2.CHAIN_APPROX_SIMPLE)
    if isinstance(fc, tuple) and int(len(fc)) == 3:
        _img, conts, hier = fc
    else:
        conts, hier = fc
    return list(conts or []), hier


def contour_blobs(binary: np.ndarray, *, min_size: int = MIN_BLOB_SIZE_PX) -> list[Blob]:
    """Bounding boxes of the outermost contours, after polygon simplification.

    The whole hierarchy is retrieved, but only top-level contours (no parent)
    are measured: a hole or a nested region always lies inside its parent's box.
    """
    m = np.ascontiguousarray(binary, dtype=np.uint8)
    if m.ndim != 2 or int(m.size) <= 0 or not m.any():
        return []
    conts, hier = _find_contours(m)
    if not conts:
        return []
    parents = hier.reshape(-1, 4)[:, 3] if hier is not None else np.full(len(conts), -1)
    out: list[Blob] = []
    for c, parent in zip(conts, parents):
        if int(parent) >= 0:
            continue
        approx = cv2.approxPolyDP(c, float(cv2.arcLength(c, True)) * APPROX_EPS_FRAC, True)
        x, y, w, h = cv2.boundingRect(approx)
        if int(w) < int(min_size) or int(h) < int(min_size):
            continue
        out.append(Blob(x=int(x), y=int(y), w=int(w), h=int(h)))
    return out


def extract_blobs(
    smoothed: np.ndarray,
    min_threshold: int,
    max_threshold: int,
    *,
    min_size: int = MIN_BLOB_SIZE_PX,
) -> BlobExtraction:
    binary = threshold_band(smoothed, min_threshold, max_threshold)
    return BlobExtraction(binary=binary, blobs=tuple(contour_blobs(binary, min_size=min_size)))
