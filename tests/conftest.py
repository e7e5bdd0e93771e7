import io

import numpy as np
import pytest
from PIL import Image

from verification.embedding import EmbeddingBackend
from verification.extractor import OCREngine


def encode_png(arr: np.ndarray) -> bytes:
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format="PNG")
    return buf.getvalue()


def noise_image(width: int, height: int, seed: int = 0) -> bytes:
    """Textured RGB capture with plenty of per-channel variance"""
    rng = np.random.default_rng(seed)
    arr = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    return encode_png(arr)


def noise_image_16bit(width: int, height: int, seed: int = 0) -> bytes:
    """16-bit greyscale capture spanning the full 0-65535 range"""
    rng = np.random.default_rng(seed)
    arr = rng.integers(0, 65536, size=(height, width), dtype=np.uint16)
    return encode_png(arr)


def flat_image(width: int, height: int, value: int = 128) -> bytes:
    arr = np.full((height, width, 3), value, dtype=np.uint8)
    return encode_png(arr)


class FixedVectorBackend(EmbeddingBackend):
    """Returns a preset vector keyed by the decoded image width"""

    name = "fixed"

    def __init__(self, vectors_by_width):
        self.vectors_by_width = vectors_by_width

    def embed(self, image):
        return np.asarray(self.vectors_by_width[image.size[0]], dtype=np.float64)


class StaticEngine(OCREngine):
    name = "static"

    def __init__(self, text: str):
        self.text = text

    def recognize(self, png: bytes, timeout: float) -> str:
        return self.text


def vectors_with_score(score: float, dim: int = 128):
    """Two unit vectors whose cosine similarity is `score`"""
    a = np.zeros(dim)
    a[0] = 1.0
    b = np.zeros(dim)
    b[0] = score
    b[1] = np.sqrt(1.0 - score ** 2)
    return a, b


AADHAAR_TEXT = (
    "GOVERNMENT OF INDIA\n"
    "Ravi Kumar Sharma\n"
    "DOB: 12/04/1990\n"
    "MALE\n"
    "6477 7450 9944\n"
)


@pytest.fixture
def face_png() -> bytes:
    return noise_image(320, 400, seed=1)


@pytest.fixture
def document_png() -> bytes:
    return noise_image(640, 400, seed=2)
