"""
Identity Verification Pipeline

This package contains the complete pipeline for biometric identity verification:
- Face embedding extraction (perceptual hash or trained CNN backend)
- Cosine similarity face matching
- Salted, transaction-bound document hashing
- OCR text extraction, format validation and cross-validation
- Single-frame liveness heuristics
- Final decision making for enrollment and comparison workflows
"""

__version__ = "1.0.0"
