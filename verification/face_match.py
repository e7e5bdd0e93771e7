import logging
import numpy as np

from config import settings
from .errors import ShapeMismatchError
from .models import MatchResult

logger = logging.getLogger(__name__)


def cosine_similarity(a, b) -> float:
    """
    dot(a, b) / (|a| * |b|). Symmetric; self-similarity is 1.0 for any non-zero vector.
    A zero vector has no direction and scores 0.0 against anything.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.size == 0 or b.size == 0:
        raise ShapeMismatchError("Cannot score an empty embedding")
    if a.size != b.size:
        raise ShapeMismatchError(f"Embedding length mismatch ({a.size} vs {b.size})")

    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


def match(vec_face, vec_reference, threshold: float = None) -> MatchResult:
    threshold = settings.SIMILARITY_THRESHOLD if threshold is None else threshold
    score = cosine_similarity(vec_face, vec_reference)
    passed = score >= threshold
    logger.info(f"match: cos={score:.4f} thr={threshold} -> {passed}")
    return MatchResult(score=score, threshold=threshold, passed=passed)
