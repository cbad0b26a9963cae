from __future__ import annotations

import cv2
import numpy as np

OPEN_KERNEL_SIZE = 5
OPEN_ITERATIONS = 2
BLUR_KERNEL_SIZE = 3


class NoiseSuppressor:
    """Pyramid down/up, small Gaussian blur, then a morphological opening."""

    def __init__(
        self,
        *,
        kernel_size: int = OPEN_KERNEL_SIZE,
        iterations: int = OPEN_ITERATIONS,
        blur_size: int = BLUR_KERNEL_SIZE,
    ) -> None:
        self.kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (int(kernel_size), int(kernel_size)))
        self.iterations = int(iterations)
        self.blur_size = int(blur_size)

    def apply(self, gray: np.ndarray) -> np.ndarray:
        img = np.asarray(gray, dtype=np.uint8)
        h, w = img.shape[:2]
        if h < 2 or w < 2:
            return img.copy()
        sm = cv2.pyrUp(cv2.pyrDown(img), dstsize=(w, h))
        sm = cv2.GaussianBlur(sm, (self.blur_size, self.blur_size), 0)
        sm = cv2.erode(sm, self.kernel, iterations=self.iterations)
        sm = cv2.dilate(sm, self.kernel, iterations=self.iterations)
        return sm
