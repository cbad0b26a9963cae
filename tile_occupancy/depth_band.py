from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

# filtered depth is stretched over 0..BAND_SPAN, then saturated into uint8
BAND_SPAN = 32767


@dataclass(frozen=True)
class BandImages:
    raw_norm: np.ndarray  # uint8, min-max stretch of the unfiltered depth (display only)
    filtered: np.ndarray  # uint8, saturated wide stretch of the banded depth
    mask: np.ndarray  # bool, samples that survived the band

    @property
    def empty(self) -> bool:
        return not bool(self.mask.any())


def normalize_u8(img: np.ndarray) -> np.ndarray:
    """Linear min-max stretch to 0..255; a flat image maps to all zeros."""
    a = np.asarray(img)
    if a.size == 0:
        return np.zeros(a.shape, dtype=np.uint8)
    if float(a.max()) <= float(a.min()):
        return np.zeros(a.shape, dtype=np.uint8)
    return cv2.normalize(a, None, 0, 255, cv2.NORM_MINMAX, dtype=cv2.CV_8U)


def saturate_stretch_u8(img: np.ndarray, span: int = BAND_SPAN) -> np.ndarray:
    """Min-max stretch to 0..span, then clip into uint8.

    Anything above 1/128 of the range lands at 255, so every in-band body is
    bright regardless of where it sits inside the band.
    """
    a = np.asarray(img)
    if a.size == 0 or float(a.max()) <= float(a.min()):
        return np.zeros(a.shape, dtype=np.uint8)
    wide = cv2.normalize(a.astype(np.float32), None, 0, float(span), cv2.NORM_MINMAX, dtype=cv2.CV_32F)
    return np.clip(np.rint(wide), 0, 255).astype(np.uint8)


def band_mask(depth: np.ndarray, min_depth: int, max_depth: int) -> np.ndarray:
    # to-zero below (inclusive) min_depth, to-zero-inverse above max_depth
    d = np.asarray(depth)
    return (d > int(min_depth)) & (d <= int(max_depth))


def band_filter(depth: np.ndarray, min_depth: int, max_depth: int) -> BandImages:
    """Keep depth samples inside (min_depth, max_depth] and stretch them for thresholding.

    Survivors are shifted so the band starts at zero, stretched over a wide
    range and saturated into 8 bits. An empty band gives an all-zero image.
    """
    d = np.asarray(depth, dtype=np.uint16)
    mask = band_mask(d, min_depth, max_depth)
    shifted = np.zeros(d.shape, dtype=np.int32)
    if mask.any():
        shifted[mask] = d[mask].astype(np.int32) - int(min_depth)
        np.maximum(shifted, 0, out=shifted)
    return BandImages(raw_norm=normalize_u8(d), filtered=saturate_stretch_u8(shifted), mask=mask)


class DepthBandFilter:
    def __init__(self, min_depth: int, max_depth: int) -> None:
        self.min_depth = int(min_depth)
        self.max_depth = int(max_depth)

    def apply(self, depth: np.ndarray) -> BandImages:
        return band_filter(depth, self.min_depth, self.max_depth)
