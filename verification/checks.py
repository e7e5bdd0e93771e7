import re
import logging
from typing import List, Optional
from config import (
    settings, DOCUMENT_FORMATS, ID_NUMBER_REGEX, NAME_DENYLIST
)
from .models import OCRResult, CrossValidation, IdentityAuthority

logger = logging.getLogger(__name__)


class DocumentChecks:
    """
    Field extraction, format validation and cross-validation on OCR text
    """

    def __init__(self, lenient: bool = None, min_text_length: int = None):
        self.lenient = settings.OCR_LENIENT if lenient is None else lenient
        self.min_text_length = settings.OCR_MIN_TEXT_LENGTH if min_text_length is None else min_text_length
        self.id_regex = re.compile(ID_NUMBER_REGEX)
        self.formats = {
            doc_type: (re.compile(cfg["pattern"]), cfg["strip_whitespace"])
            for doc_type, cfg in DOCUMENT_FORMATS.items()
        }
        self.denylist = [kw.lower() for kw in NAME_DENYLIST]

    def strip_whitespace(self, text: Optional[str]) -> str:
        if not text:
            return ""
        return re.sub(r"\s+", "", text)

    def normalize_text(self, text: Optional[str]) -> str:
        """Normalize text for comparison"""
        if not text:
            return ""
        return re.sub(r"\s+", " ", text.strip().lower())

    def extract_id_number(self, text: Optional[str]) -> Optional[str]:
        """First run of 12 digits once all whitespace is removed"""
        match = self.id_regex.search(self.strip_whitespace(text))
        return match.group() if match else None

    def extract_name(self, text: Optional[str]) -> Optional[str]:
        """
        First line that has no digits, no boilerplate keyword and 2-4 words
        """
        if not text:
            return None

        lines = [line.strip() for line in text.splitlines()]
        for line in lines:
            if not line:
                continue
            words = line.split()
            if re.search(r"\d", line):
                continue
            lowered = line.lower()
            if any(kw in lowered for kw in self.denylist):
                continue
            if 2 <= len(words) <= 4:
                return line
        return None

    def parse(self, text: str) -> OCRResult:
        """Build an OCRResult with candidate id and name"""
        text = (text or "").strip()
        return OCRResult(
            raw_text=text,
            extracted_id=self.extract_id_number(text),
            extracted_name=self.extract_name(text),
        )

    def validate_format(self, text: Optional[str], doc_type: str = None) -> bool:
        """
        Check OCR text against the document type's required pattern.
        Empty text means OCR was skipped: valid when lenient, invalid otherwise.
        """
        doc_type = doc_type or settings.DOCUMENT_TYPE
        if not text or not text.strip():
            return self.lenient

        fmt = self.formats.get(doc_type)
        if fmt is None:
            logger.warning(f"No format rule for document type: {doc_type}")
            return False

        pattern, strip = fmt
        candidate = self.strip_whitespace(text) if strip else text
        return bool(pattern.search(candidate))

    def names_match(self, a: Optional[str], b: Optional[str]) -> bool:
        """Case-insensitive containment either way (tolerates partial names and OCR noise)"""
        a = self.normalize_text(a)
        b = self.normalize_text(b)
        if not a or not b:
            return False
        return a in b or b in a

    def cross_validate(self, ocr: OCRResult, declared_name: str, declared_id: str) -> CrossValidation:
        """
        Compare extracted fields with the declared identity.
        Lenient: a field that could not be extracted passes.
        Strict: both fields must be extracted and match.
        """
        if not ocr.raw_text or len(ocr.raw_text) < self.min_text_length:
            logger.warning("OCR text too short, skipping cross-validation")
            return CrossValidation(verified=self.lenient, skipped=True)

        extracted_id = ocr.extracted_id
        extracted_name = ocr.extracted_name

        id_match = bool(extracted_id) and extracted_id == self.strip_whitespace(declared_id)
        name_match = bool(extracted_name) and self.names_match(extracted_name, declared_name)

        if self.lenient:
            verified = (not extracted_id or id_match) and (not extracted_name or name_match)
        else:
            verified = id_match and name_match

        logger.info(f"Cross-validation: id_match={id_match} name_match={name_match} verified={verified}")
        return CrossValidation(
            id_match=id_match,
            name_match=name_match,
            verified=verified,
            extracted_id=extracted_id,
            extracted_name=extracted_name,
        )

    def authority_consistency(self, authority: IdentityAuthority,
                              declared_name: str, declared_id: str) -> List[str]:
        """Check declared identity against an authority record"""
        issues = []

        if not authority.verified:
            issues.append("AUTHORITY_NOT_VERIFIED")
            return issues

        if self.strip_whitespace(authority.id_number) != self.strip_whitespace(declared_id):
            issues.append("AUTHORITY_ID_MISMATCH")

        if not self.names_match(authority.name, declared_name):
            issues.append("AUTHORITY_NAME_MISMATCH")

        return issues
