import base64
import hashlib
import hmac
import logging
import secrets
from typing import Optional

from .models import DocumentFingerprint

logger = logging.getLogger(__name__)

SALT_BYTES = 16


def generate_salt() -> str:
    """16 cryptographically random bytes, hex encoded (32 chars)"""
    return secrets.token_hex(SALT_BYTES)


def hash_document(document: bytes, transaction_id: str, salt: Optional[str] = None) -> DocumentFingerprint:
    """
    Salted, transaction-bound SHA-256 fingerprint of a document image.

    first = SHA256(base64(document) + salt)
    final = SHA256(first_hex + transaction_id)

    The salt stops identical documents correlating across users; the
    transaction id stops a fingerprint being replayed for another transaction.
    """
    if not salt:
        salt = generate_salt()

    encoded = base64.b64encode(document).decode("ascii")
    first_hash = hashlib.sha256((encoded + salt).encode("utf-8")).hexdigest()
    final_hash = hashlib.sha256((first_hash + transaction_id).encode("utf-8")).hexdigest()

    logger.debug(f"SHA-256 fingerprint: {final_hash[:16]}...")
    return DocumentFingerprint(hash=final_hash, salt=salt)


def verify_fingerprint(document: bytes, transaction_id: str, fingerprint: DocumentFingerprint) -> bool:
    """Recompute with the stored salt and compare in constant time"""
    recomputed = hash_document(document, transaction_id, salt=fingerprint.salt)
    return hmac.compare_digest(recomputed.hash, fingerprint.hash)
