from typing import Optional
import argparse
import asyncio
import json
import logging
import secrets
import sys
import time
from pathlib import Path

from config import settings
from .checks import DocumentChecks
from .decision import DecisionEngine, COMPARISON, ENROLLMENT
from .decorators import log_call
from .digilocker import DigiLockerClient
from .embedding import EmbeddingExtractor, build_embedding_backend
from .errors import ShapeMismatchError, VerificationError
from .extractor import DocumentOCR, build_ocr_engine
from .face_match import match
from .hashing import hash_document
from .liveness import LivenessDetector
from .logging_config import configure_logging
from .models import IdentityAuthority, VerificationDecision

logger = logging.getLogger(__name__)


def new_transaction_id() -> str:
    return f"TXN-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


class VerificationPipeline:
    """
    Stateless orchestrator for the enrollment and comparison workflows.

    Backends are chosen once at construction; an instance holds no per-call
    state and can serve concurrent invocations. Image buffers are only passed
    through to the stages and never stored.
    """

    def __init__(self,
                 embedder: Optional[EmbeddingExtractor] = None,
                 ocr: Optional[DocumentOCR] = None,
                 liveness: Optional[LivenessDetector] = None,
                 checks: Optional[DocumentChecks] = None,
                 decision: Optional[DecisionEngine] = None,
                 document_type: str = None):
        self.checks = checks or DocumentChecks()
        self.embedder = embedder or EmbeddingExtractor()
        self.ocr = ocr or DocumentOCR(engine=build_ocr_engine(), checks=self.checks)
        self.liveness = liveness or LivenessDetector()
        self.decision = decision or DecisionEngine()
        self.document_type = document_type or settings.DOCUMENT_TYPE

    @classmethod
    def from_settings(cls) -> "VerificationPipeline":
        """Build with the backends selected by configuration"""
        embedder = EmbeddingExtractor(primary=build_embedding_backend())
        checks = DocumentChecks()
        ocr = DocumentOCR(engine=build_ocr_engine(), checks=checks)
        logger.info(f"Pipeline ready: embedding={embedder.backend_name} ocr={ocr.engine.name}")
        return cls(embedder=embedder, ocr=ocr, checks=checks)

    @log_call("compare")
    async def compare(self,
                      face: bytes,
                      reference: bytes,
                      transaction_id: str,
                      threshold: float = None,
                      ocr_timeout: float = None) -> VerificationDecision:
        """
        Re-verification: live face against a reference image (prior enrollment
        face or the document photo).
        """
        if not transaction_id:
            raise ValueError("transaction_id is required")
        threshold = settings.SIMILARITY_THRESHOLD if threshold is None else threshold

        face_emb, reference_emb, fingerprint, ocr, liveness = await asyncio.gather(
            asyncio.to_thread(self.embedder.extract, face),
            asyncio.to_thread(self.embedder.extract, reference),
            asyncio.to_thread(hash_document, reference, transaction_id),
            self.ocr.extract_with_deadline(reference, ocr_timeout),
            asyncio.to_thread(self.liveness.check, face),
        )

        # Format only; there is no declared identity at this stage
        document_valid = self.checks.validate_format(ocr.raw_text, self.document_type)

        try:
            face_match = match(face_emb, reference_emb, threshold)
        except ShapeMismatchError as e:
            return self.decision.scoring_error(e, threshold, liveness, document_valid, fingerprint, ocr.raw_text)

        return self.decision.compare(
            face_match=face_match,
            liveness=liveness,
            document_valid=document_valid,
            fingerprint=fingerprint,
            embedding=face_emb,
            raw_text=ocr.raw_text,
        )

    @log_call("enroll")
    async def enroll(self,
                     face: bytes,
                     document: bytes,
                     transaction_id: str,
                     declared_name: str,
                     declared_id: str,
                     authority: Optional[IdentityAuthority] = None,
                     ocr_timeout: float = None) -> VerificationDecision:
        """
        Signup / KYC capture: no prior reference, the face embedding becomes the
        future reference once the document checks out.
        """
        if not transaction_id:
            raise ValueError("transaction_id is required")
        ocr_timeout = settings.ENROLLMENT_OCR_TIMEOUT_SECONDS if ocr_timeout is None else ocr_timeout

        embedding, fingerprint, ocr, liveness = await asyncio.gather(
            asyncio.to_thread(self.embedder.extract, face),
            asyncio.to_thread(hash_document, document, transaction_id),
            self.ocr.extract_with_deadline(document, ocr_timeout),
            asyncio.to_thread(self.liveness.check, face),
        )

        authority_issues = []
        expected_name, expected_id = declared_name, declared_id
        if authority is not None:
            authority_issues = self.checks.authority_consistency(authority, declared_name, declared_id)
            if not authority_issues:
                # Cross-validate against the authoritative pair
                expected_name, expected_id = authority.name, authority.id_number

        document_valid = self.checks.validate_format(ocr.raw_text, self.document_type)
        cross = self.checks.cross_validate(ocr, expected_name, expected_id)

        return self.decision.enroll(
            liveness=liveness,
            document_valid=document_valid,
            fingerprint=fingerprint,
            embedding=embedding,
            raw_text=ocr.raw_text,
            cross=cross,
            authority_issues=authority_issues,
        )


def run_pipeline(mode: str,
                 face: bytes,
                 document: bytes,
                 transaction_id: str = None,
                 threshold: float = None,
                 declared_name: str = None,
                 declared_id: str = None,
                 authority: Optional[IdentityAuthority] = None,
                 use_digilocker: bool = False,
                 digilocker_token: str = None,
                 doc_uri: str = None,
                 digilocker: Optional[DigiLockerClient] = None,
                 pipeline: Optional[VerificationPipeline] = None) -> VerificationDecision:
    """
    Main pipeline function for synchronous callers

    Args:
        mode: "comparison" or "enrollment"
        face: live face capture bytes
        document: reference image (comparison) or identity document (enrollment)
        transaction_id: binds the document fingerprint; generated when omitted
        threshold: similarity threshold (comparison only)
        declared_name / declared_id: self-declared identity (enrollment only)
        authority: pre-fetched DigiLocker record (enrollment only)
        use_digilocker / digilocker_token / doc_uri: fetch the record here instead;
            a token implies use_digilocker, no token means simulation mode

    Returns:
        VerificationDecision; business rejections are never raised
    """
    pipeline = pipeline or VerificationPipeline.from_settings()
    transaction_id = transaction_id or new_transaction_id()

    if mode == COMPARISON:
        return asyncio.run(pipeline.compare(face, document, transaction_id, threshold=threshold))

    if mode == ENROLLMENT:
        if not declared_name or not declared_id:
            raise ValueError("Enrollment requires declared_name and declared_id")
        if authority is None and (use_digilocker or digilocker_token):
            client = digilocker or DigiLockerClient()
            authority = client.verify_aadhaar(
                declared_id, declared_name, access_token=digilocker_token, doc_uri=doc_uri
            )
        return asyncio.run(pipeline.enroll(
            face, document, transaction_id, declared_name, declared_id, authority=authority
        ))

    raise ValueError(f"Unknown verification mode: {mode}")


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Biometric identity verification")
    sub = ap.add_subparsers(dest="mode", required=True)

    cmp_p = sub.add_parser(COMPARISON, help="Compare a live face with a reference image")
    cmp_p.add_argument("--face", required=True, help="Path to live face capture")
    cmp_p.add_argument("--reference", required=True, help="Path to reference face / document image")
    cmp_p.add_argument("--threshold", type=float, default=None, help="Similarity threshold")
    cmp_p.add_argument("--login", action="store_true", help="Use the stricter login threshold")
    cmp_p.add_argument("--txn", default=None, help="Transaction id")

    enr_p = sub.add_parser(ENROLLMENT, help="Enroll a face against an identity document")
    enr_p.add_argument("--face", required=True, help="Path to face capture")
    enr_p.add_argument("--document", required=True, help="Path to identity document image / PDF")
    enr_p.add_argument("--name", required=True, help="Declared full name")
    enr_p.add_argument("--id", dest="id_number", required=True, help="Declared identity number")
    enr_p.add_argument("--txn", default=None, help="Transaction id")
    enr_p.add_argument("--digilocker", action="store_true",
                       help="Check the declared identity against DigiLocker (simulated without a token)")
    enr_p.add_argument("--digilocker-token", default=None, help="DigiLocker user access token")
    enr_p.add_argument("--doc-uri", default=None, help="DigiLocker URI of the Aadhaar document")

    args = ap.parse_args(argv)
    configure_logging()

    try:
        face = Path(args.face).read_bytes()
        if args.mode == COMPARISON:
            threshold = args.threshold
            if threshold is None and args.login:
                threshold = settings.LOGIN_SIMILARITY_THRESHOLD
            decision = run_pipeline(COMPARISON, face, Path(args.reference).read_bytes(),
                                    transaction_id=args.txn, threshold=threshold)
        else:
            decision = run_pipeline(ENROLLMENT, face, Path(args.document).read_bytes(),
                                    transaction_id=args.txn,
                                    declared_name=args.name, declared_id=args.id_number,
                                    use_digilocker=args.digilocker,
                                    digilocker_token=args.digilocker_token,
                                    doc_uri=args.doc_uri)
    except VerificationError as e:
        logger.error(f"Verification could not run: {e}")
        print(json.dumps({"verified": False, "error": str(e)}, indent=2))
        return 2

    payload = decision.to_dict()
    # Embeddings are for the persistence layer, not the terminal
    payload["embedding"] = None if payload["embedding"] is None else f"<{len(payload['embedding'])} floats>"
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0 if decision.verified else 1


if __name__ == "__main__":
    sys.exit(main())
