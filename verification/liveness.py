import logging
import cv2
import numpy as np
from typing import Tuple, Optional
from PIL import Image

from config import settings
from .file_converter import load_image
from .models import LivenessVerdict

logger = logging.getLogger(__name__)

PASSED = LivenessVerdict(is_live=True, confidence=0.85, reason="checks passed")


class LivenessDetector:
    """
    Single-frame anti-spoofing heuristics for face captures.
    Checks run in order and the first failing check decides the verdict.
    """

    def __init__(self,
                 min_dimension: int = None,
                 min_std: float = None,
                 min_aspect: float = None,
                 max_aspect: float = None,
                 fail_open: bool = None):
        self.min_dimension = settings.LIVENESS_MIN_DIMENSION if min_dimension is None else min_dimension
        self.min_std = settings.LIVENESS_MIN_STD if min_std is None else min_std
        self.min_aspect = settings.LIVENESS_MIN_ASPECT if min_aspect is None else min_aspect
        self.max_aspect = settings.LIVENESS_MAX_ASPECT if max_aspect is None else max_aspect
        self.fail_open = settings.LIVENESS_FAIL_OPEN if fail_open is None else fail_open

    def load_image(self, data: bytes) -> Tuple[Image.Image, np.ndarray]:
        """Decode the capture and return it with its pixel array"""
        img = load_image(data)
        if img.mode not in ("L", "LA", "RGB", "RGBA"):
            img = img.convert("RGBA" if "transparency" in img.info else "RGB")
        return img, np.array(img, dtype=np.uint8)

    def check_resolution(self, img: Image.Image, arr: np.ndarray) -> Optional[LivenessVerdict]:
        """Screen replays and thumbnails tend to be tiny"""
        w, h = img.size
        if w < self.min_dimension or h < self.min_dimension:
            logger.info(f"Liveness: low resolution ({w}x{h})")
            return LivenessVerdict(is_live=False, confidence=0.3, reason="resolution too low")
        return None

    def check_detail(self, img: Image.Image, arr: np.ndarray) -> Optional[LivenessVerdict]:
        """Average per-channel standard deviation of pixel intensities"""
        _, std = cv2.meanStdDev(arr)
        avg_std = float(np.mean(std))
        if avg_std < self.min_std:
            logger.info(f"Liveness: insufficient detail (std={avg_std:.1f})")
            return LivenessVerdict(is_live=False, confidence=0.4, reason="insufficient detail")
        return None

    def check_aspect_ratio(self, img: Image.Image, arr: np.ndarray) -> Optional[LivenessVerdict]:
        w, h = img.size
        ratio = w / h
        if ratio < self.min_aspect or ratio > self.max_aspect:
            logger.info(f"Liveness: unusual aspect ratio ({ratio:.2f})")
            return LivenessVerdict(is_live=False, confidence=0.5, reason="unusual aspect ratio")
        return None

    def check(self, data: bytes) -> LivenessVerdict:
        """
        Evaluate a face capture.
        Processing errors give "unable to verify": live when fail-open, not live otherwise.
        """
        try:
            img, arr = self.load_image(data)

            checks = [
                self.check_resolution,
                self.check_detail,
                self.check_aspect_ratio
            ]
            for check in checks:
                verdict = check(img, arr)
                if verdict is not None:
                    return verdict
            return PASSED

        except Exception as e:
            logger.warning(f"Liveness processing error: {e}")
            if self.fail_open:
                return LivenessVerdict(is_live=True, confidence=0.5, reason="unable to verify")
            return LivenessVerdict(is_live=False, confidence=0.0, reason="unable to verify")
