from typing import List, Dict, Any, Optional
import logging
import re
from config import settings
from .models import (
    VerificationDecision, LivenessVerdict, DocumentFingerprint,
    CrossValidation, Embedding, MatchResult
)

logger = logging.getLogger(__name__)

COMPARISON = "comparison"
ENROLLMENT = "enrollment"

STAGE_BIOMETRIC = "biometric"
STAGE_OCR = "ocr"
STAGE_DIGILOCKER = "digilocker"

# 12 digits in groups of four, any whitespace (or none) between groups
AADHAAR_IN_TEXT = re.compile(r"\d{4}\s*\d{4}\s*(\d{4})")


class DecisionEngine:
    """
    Turns stage outputs into the final VerificationDecision.

    Comparison: verified = score >= threshold AND live AND document valid.
    Enrollment: authority mismatch or explicit OCR mismatch rejects; liveness
    and document validity are reported as warnings unless liveness is required.
    """

    def __init__(self, excerpt_length: int = None, require_enrollment_liveness: bool = None):
        self.excerpt_length = settings.OCR_EXCERPT_LENGTH if excerpt_length is None else excerpt_length
        self.require_enrollment_liveness = (
            settings.ENROLLMENT_REQUIRE_LIVENESS
            if require_enrollment_liveness is None else require_enrollment_liveness
        )

    def mask_aadhaar(self, aadhaar: str) -> str:
        """Mask Aadhaar number showing only last 4 digits"""
        if not aadhaar:
            return None
        # Remove spaces for processing
        clean = aadhaar.replace(" ", "")
        if len(clean) != 12:
            return "INVALID_FORMAT"
        return f"XXXX XXXX {clean[-4:]}"

    def mask_name(self, name: str) -> str:
        """Mask name showing only first character and last name"""
        if not name:
            return None
        parts = name.strip().split()
        if len(parts) == 1:
            return f"{parts[0][0]}XXXX"
        return f"{parts[0][0]}XXXX {parts[-1]}"

    def ocr_excerpt(self, raw_text: str) -> str:
        """Short audit excerpt with Aadhaar-like numbers masked"""
        # Mask before cutting so a number straddling the cut is still caught
        masked = AADHAAR_IN_TEXT.sub(r"XXXX XXXX \1", raw_text or "")
        return masked[:self.excerpt_length]

    def compare(self,
                face_match: MatchResult,
                liveness: LivenessVerdict,
                document_valid: bool,
                fingerprint: DocumentFingerprint,
                embedding: Embedding,
                raw_text: str) -> VerificationDecision:
        """
        Make the comparison-mode decision (login / loan signing re-verification)
        """
        reasons = []
        if not face_match.passed:
            reasons.append("SCORE_BELOW_THRESHOLD")
        if not liveness.is_live:
            reasons.append("LIVENESS_FAILED")
        if not document_valid:
            reasons.append("DOCUMENT_INVALID")

        verified = not reasons
        logger.info(
            f"Comparison: score={face_match.score:.4f} thr={face_match.threshold} live={liveness.is_live} "
            f"document_valid={document_valid} -> {'VERIFIED' if verified else 'REJECTED'}"
        )

        details = {
            "face_match": face_match.score,
            "liveness": liveness.to_dict(),
            "document_valid": document_valid,
            "reasons": reasons,
        }

        return self._build_response(
            mode=COMPARISON,
            verified=verified,
            liveness=liveness,
            document_valid=document_valid,
            fingerprint=fingerprint,
            raw_text=raw_text,
            score=face_match.score,
            threshold=face_match.threshold,
            embedding=embedding,
            failure_stage=None if verified else STAGE_BIOMETRIC,
            error=None if verified else "Verification failed",
            details=details,
        )

    def enroll(self,
               liveness: LivenessVerdict,
               document_valid: bool,
               fingerprint: DocumentFingerprint,
               embedding: Embedding,
               raw_text: str,
               cross: CrossValidation,
               authority_issues: Optional[List[str]] = None) -> VerificationDecision:
        """
        Make the enrollment-mode decision (signup / KYC capture)
        """
        authority_issues = authority_issues or []

        warnings = []
        if not liveness.is_live:
            warnings.append("LIVENESS_FAILED")
        if not document_valid:
            warnings.append("DOCUMENT_INVALID")

        details: Dict[str, Any] = {
            "liveness": liveness.to_dict(),
            "document_valid": document_valid,
            "ocr": {
                "id_match": cross.id_match,
                "name_match": cross.name_match,
                "extracted_id": self.mask_aadhaar(cross.extracted_id),
                "extracted_name": self.mask_name(cross.extracted_name),
                "skipped": cross.skipped,
            },
            "warnings": warnings,
        }

        failure_stage = None
        error = None

        # Authority mismatch first: the declared identity itself is wrong
        if authority_issues:
            failure_stage = STAGE_DIGILOCKER
            error = "Declared identity does not match DigiLocker record"
            details["authority_issues"] = authority_issues

        # Explicit OCR mismatch against the declared (or authoritative) identity
        elif not cross.verified:
            failure_stage = STAGE_OCR
            error = "Uploaded document details do not match entered information"

        elif self.require_enrollment_liveness and not liveness.is_live:
            failure_stage = STAGE_BIOMETRIC
            error = f"Liveness check failed: {liveness.reason}"

        verified = failure_stage is None
        if verified:
            logger.info("Enrollment: biometric data captured and verified")
        else:
            logger.warning(f"Enrollment rejected at stage '{failure_stage}': {error}")

        return self._build_response(
            mode=ENROLLMENT,
            verified=verified,
            liveness=liveness,
            document_valid=document_valid,
            fingerprint=fingerprint,
            raw_text=raw_text,
            embedding=embedding,
            failure_stage=failure_stage,
            error=error,
            details=details,
        )

    def _build_response(self,
                        mode: str,
                        verified: bool,
                        liveness: LivenessVerdict,
                        document_valid: bool,
                        fingerprint: DocumentFingerprint,
                        raw_text: str,
                        embedding: Embedding = None,
                        score: float = None,
                        threshold: float = None,
                        failure_stage: str = None,
                        error: str = None,
                        details: Dict[str, Any] = None) -> VerificationDecision:
        """Build the decision; the embedding is only handed out when verified"""
        return VerificationDecision(
            mode=mode,
            verified=verified,
            liveness=liveness,
            document_valid=document_valid,
            fingerprint=fingerprint,
            ocr_excerpt=self.ocr_excerpt(raw_text),
            score=score,
            threshold=threshold,
            embedding=embedding if verified else None,
            failure_stage=failure_stage,
            error=error,
            details=details or {},
        )

    def scoring_error(self,
                      error: Exception,
                      threshold: float,
                      liveness: LivenessVerdict,
                      document_valid: bool,
                      fingerprint: DocumentFingerprint,
                      raw_text: str) -> VerificationDecision:
        """Embeddings could not be compared"""
        logger.error(f"Comparison scoring failed: {error}")
        return self._build_response(
            mode=COMPARISON,
            verified=False,
            liveness=liveness,
            document_valid=document_valid,
            fingerprint=fingerprint,
            raw_text=raw_text,
            threshold=threshold,
            failure_stage=STAGE_BIOMETRIC,
            error=str(error),
            details={
                "liveness": liveness.to_dict(),
                "document_valid": document_valid,
                "reasons": ["EMBEDDING_SHAPE_MISMATCH"],
            },
        )
