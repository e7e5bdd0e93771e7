from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

# Fixed-length, read-only feature vector derived from a face image
Embedding = np.ndarray


def freeze_embedding(values) -> Embedding:
    """Copy values into a read-only float64 vector"""
    vec = np.array(values, dtype=np.float64).ravel()
    vec.flags.writeable = False
    return vec


@dataclass(frozen=True)
class DocumentFingerprint:
    hash: str
    salt: str

    def to_dict(self) -> Dict[str, str]:
        return {"hash": self.hash, "salt": self.salt}


@dataclass(frozen=True)
class OCRResult:
    raw_text: str = ""
    extracted_id: Optional[str] = None
    extracted_name: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.raw_text


@dataclass(frozen=True)
class LivenessVerdict:
    is_live: bool
    confidence: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"is_live": self.is_live, "confidence": self.confidence, "reason": self.reason}


@dataclass(frozen=True)
class CrossValidation:
    id_match: bool = False
    name_match: bool = False
    verified: bool = True
    extracted_id: Optional[str] = None
    extracted_name: Optional[str] = None
    # True when the OCR text was too short to attempt matching
    skipped: bool = False


@dataclass(frozen=True)
class MatchResult:
    score: float
    threshold: float
    passed: bool


@dataclass(frozen=True)
class IdentityAuthority:
    """Name / id pair vouched for by an external document authority"""
    name: str
    id_number: str
    verified: bool = True
    simulated: bool = False
    source: str = "digilocker"


@dataclass(frozen=True)
class VerificationDecision:
    mode: str
    verified: bool
    liveness: LivenessVerdict
    document_valid: bool
    fingerprint: DocumentFingerprint
    ocr_excerpt: str = ""
    score: Optional[float] = None
    threshold: Optional[float] = None
    embedding: Optional[Embedding] = None
    failure_stage: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view of the decision"""
        return {
            "mode": self.mode,
            "verified": self.verified,
            "score": self.score,
            "threshold": self.threshold,
            "liveness": self.liveness.to_dict(),
            "document_valid": self.document_valid,
            "fingerprint": self.fingerprint.to_dict(),
            "embedding": self.embedding.tolist() if self.embedding is not None else None,
            "ocr_excerpt": self.ocr_excerpt,
            "failure_stage": self.failure_stage,
            "error": self.error,
            "details": self.details,
        }
