from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from PIL import Image, ImageOps

from config import settings
from .errors import ImageDecodeError
from .file_converter import load_image, to_8bit
from .models import Embedding, freeze_embedding

logger = logging.getLogger(__name__)


class EmbeddingBackend(ABC):
    """Turns a decoded face image into a fixed-length feature vector"""

    name = "base"

    @abstractmethod
    def embed(self, image: Image.Image) -> np.ndarray:
        ...


class PerceptualHashBackend(EmbeddingBackend):
    """
    Deterministic pixel-statistics embedding.
    The frame is fit-cropped to size x size, converted to greyscale and split into
    `dim` equal contiguous chunks; each chunk mean is mapped from [0, 255] to [-1, 1].
    Identical bytes always produce a bit-identical vector.
    """

    name = "perceptual"

    def __init__(self, dim: int = None, size: int = None):
        self.dim = settings.EMBEDDING_DIM if dim is None else dim
        self.size = settings.PHASH_SIZE if size is None else size
        if self.dim <= 0 or (self.size * self.size) < self.dim:
            raise ValueError(f"{self.size}x{self.size} frame too small for {self.dim} chunks")

    def embed(self, image: Image.Image) -> np.ndarray:
        frame = ImageOps.fit(to_8bit(image).convert("RGB"), (self.size, self.size), Image.Resampling.BILINEAR)
        pixels = np.asarray(frame.convert("L"), dtype=np.float64).ravel()

        chunk = pixels.size // self.dim
        means = pixels[: chunk * self.dim].reshape(self.dim, chunk).mean(axis=1)
        return (means / 255.0) * 2.0 - 1.0


class EmbeddingExtractor:
    """
    Runs the configured primary backend and fails over to the perceptual hash
    on any error except an undecodable buffer.
    """

    def __init__(self,
                 primary: Optional[EmbeddingBackend] = None,
                 fallback: Optional[EmbeddingBackend] = None,
                 dim: int = None):
        self.primary = primary
        self.fallback = fallback or PerceptualHashBackend(dim=dim)
        self.dim = settings.EMBEDDING_DIM if dim is None else dim

    @property
    def backend_name(self) -> str:
        return self.primary.name if self.primary else self.fallback.name

    def extract(self, data: bytes) -> Embedding:
        """Extract an embedding from raw image bytes"""
        image = load_image(data)

        if self.primary is not None:
            try:
                vec = np.asarray(self.primary.embed(image), dtype=np.float64).ravel()
                if vec.size != self.dim:
                    raise ValueError(f"{self.primary.name} returned {vec.size} values, expected {self.dim}")
                if not np.all(np.isfinite(vec)):
                    raise ValueError(f"{self.primary.name} returned non-finite values")
                return freeze_embedding(vec)
            except ImageDecodeError:
                raise
            except Exception as e:
                logger.warning(f"{self.primary.name} embedding failed, using {self.fallback.name}: {e}")

        vec = self.fallback.embed(image)
        logger.debug(f"{self.fallback.name} embedding generated ({len(vec)} dims)")
        return freeze_embedding(vec)


def build_embedding_backend(backend: str = None,
                            weights_path: str = None,
                            device: str = None) -> Optional[EmbeddingBackend]:
    """
    Select the primary embedding backend once at startup.
    Returns None for the perceptual hash (it is always the fallback).
    """
    backend = (backend or settings.EMBEDDING_BACKEND).lower()
    weights_path = weights_path or settings.EMBEDDING_WEIGHTS_PATH

    if backend == "perceptual":
        return None

    if backend == "cnn":
        if not weights_path:
            raise ValueError("EMBEDDING_BACKEND=cnn requires EMBEDDING_WEIGHTS_PATH")
        from .cnn_backend import TrainedCNNBackend
        return TrainedCNNBackend.from_weights(weights_path, device=device or settings.EMBEDDING_DEVICE)

    raise ValueError(f"Unknown embedding backend: {backend}")
