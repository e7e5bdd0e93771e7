from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import numpy as np
import torch
from torch import nn
from PIL import Image, ImageOps

from config import settings
from .embedding import EmbeddingBackend

logger = logging.getLogger(__name__)


class FaceFeatureNet(nn.Module):
    """Three conv+pool blocks (32 -> 64 -> 128), dense(256) with dropout, linear projection"""

    def __init__(self, embedding_dim: int = 128, input_size: int = 160):
        super().__init__()
        self.features = nn.Sequential(
            nn.Conv2d(3, 32, kernel_size=3), nn.ReLU(), nn.MaxPool2d(2),
            nn.Conv2d(32, 64, kernel_size=3), nn.ReLU(), nn.MaxPool2d(2),
            nn.Conv2d(64, 128, kernel_size=3), nn.ReLU(), nn.MaxPool2d(2),
        )
        with torch.no_grad():
            flat = self.features(torch.zeros(1, 3, input_size, input_size)).numel()
        self.head = nn.Sequential(
            nn.Flatten(),
            nn.Linear(flat, 256), nn.ReLU(),
            nn.Dropout(0.5),
            nn.Linear(256, embedding_dim),
        )

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return self.head(self.features(x))


def _preprocess(image: Image.Image, size: int) -> np.ndarray:
    """Fit to size x size, drop alpha, scale to [-1, 1], NCHW"""
    frame = ImageOps.fit(image.convert("RGB"), (size, size), Image.Resampling.BILINEAR)
    x = np.asarray(frame, dtype=np.float32) / 127.5 - 1.0
    x = np.transpose(x, (2, 0, 1))  # CHW
    return np.expand_dims(x, 0)     # NCHW


class TrainedCNNBackend(EmbeddingBackend):
    """
    CNN embedding backed by an explicit trained state_dict.
    The module is put in eval mode once and only read afterwards, so one instance
    can be shared by concurrent pipeline invocations.
    """

    name = "cnn"

    def __init__(self, model: FaceFeatureNet, input_size: int = None, device: str = "cpu"):
        self.input_size = settings.CNN_INPUT_SIZE if input_size is None else input_size
        self.device = torch.device(device)
        self.model = model.to(self.device).eval()

    @classmethod
    def from_weights(cls, weights_path: Union[str, Path], device: str = "cpu",
                     embedding_dim: int = None, input_size: int = None) -> "TrainedCNNBackend":
        path = Path(weights_path)
        if not path.is_file():
            raise ValueError(f"Embedding weights not found: {path}")

        input_size = settings.CNN_INPUT_SIZE if input_size is None else input_size
        embedding_dim = settings.EMBEDDING_DIM if embedding_dim is None else embedding_dim
        model = FaceFeatureNet(embedding_dim=embedding_dim, input_size=input_size)
        state = torch.load(str(path), map_location=device, weights_only=True)
        model.load_state_dict(state)
        logger.info(f"CNN embedding weights loaded: {path} on {device}")
        return cls(model, input_size=input_size, device=device)

    def embed(self, image: Image.Image) -> np.ndarray:
        x = torch.from_numpy(_preprocess(image, self.input_size)).to(self.device)
        with torch.inference_mode():
            y = self.model(x)
        return y[0].detach().cpu().numpy().astype(np.float64)
