"""
DigiLocker integration: an external authority for Aadhaar name / number pairs.

Without client credentials (or without a user access token) the client runs in
simulation mode, which only checks the number format. The result is an
IdentityAuthority that the enrollment workflow can use in place of the
self-declared identity.
"""

import logging
import re
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from config import settings
from .errors import DigiLockerError
from .models import IdentityAuthority

logger = logging.getLogger(__name__)

# Verhoeff dihedral group multiplication table
_D = [
    [0, 1, 2, 3, 4, 5, 6, 7, 8, 9],
    [1, 2, 3, 4, 0, 6, 7, 8, 9, 5],
    [2, 3, 4, 0, 1, 7, 8, 9, 5, 6],
    [3, 4, 0, 1, 2, 8, 9, 5, 6, 7],
    [4, 0, 1, 2, 3, 9, 5, 6, 7, 8],
    [5, 9, 8, 7, 6, 0, 4, 3, 2, 1],
    [6, 5, 9, 8, 7, 1, 0, 4, 3, 2],
    [7, 6, 5, 9, 8, 2, 1, 0, 4, 3],
    [8, 7, 6, 5, 9, 3, 2, 1, 0, 4],
    [9, 8, 7, 6, 5, 4, 3, 2, 1, 0],
]

# Verhoeff position permutation table
_P = [
    [0, 1, 2, 3, 4, 5, 6, 7, 8, 9],
    [1, 5, 7, 6, 2, 8, 3, 0, 9, 4],
    [5, 8, 0, 3, 7, 9, 6, 1, 4, 2],
    [8, 9, 1, 6, 0, 4, 3, 5, 2, 7],
    [9, 4, 5, 3, 1, 2, 6, 8, 7, 0],
    [4, 2, 8, 6, 5, 7, 3, 9, 0, 1],
    [2, 7, 9, 3, 8, 0, 6, 4, 1, 5],
    [7, 0, 4, 6, 9, 1, 3, 2, 5, 8],
]

_INV = [0, 4, 3, 2, 1, 5, 6, 7, 8, 9]


def verhoeff_check_digit(digits: str) -> int:
    """Check digit to append to a digit string"""
    c = 0
    for i, ch in enumerate(reversed(digits)):
        c = _D[c][_P[(i + 1) % 8][int(ch)]]
    return _INV[c]


def verhoeff_valid(digits: str) -> bool:
    """True when the last digit is a valid Verhoeff check digit"""
    if not digits or not digits.isdigit():
        return False
    c = 0
    for i, ch in enumerate(reversed(digits)):
        c = _D[c][_P[i % 8][int(ch)]]
    return c == 0


def validate_aadhaar_number(aadhaar: str, checksum: bool = True) -> bool:
    """12 digits (whitespace ignored), optionally Verhoeff-checked"""
    clean = re.sub(r"\s+", "", aadhaar or "")
    if not re.fullmatch(r"\d{12}", clean):
        return False
    return verhoeff_valid(clean) if checksum else True


class DigiLockerClient:
    """
    Minimal OAuth2 client for the DigiLocker issued-documents API
    """

    def __init__(self,
                 client_id: str = None,
                 client_secret: str = None,
                 redirect_uri: str = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = None,
                 verify_checksum: bool = None):
        self.client_id = settings.DIGILOCKER_CLIENT_ID if client_id is None else client_id
        self.client_secret = settings.DIGILOCKER_CLIENT_SECRET if client_secret is None else client_secret
        self.redirect_uri = redirect_uri or settings.DIGILOCKER_REDIRECT_URI
        self.auth_url = settings.DIGILOCKER_AUTH_URL
        self.token_url = settings.DIGILOCKER_TOKEN_URL
        self.api_url = settings.DIGILOCKER_API_URL.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = settings.DIGILOCKER_TIMEOUT if timeout is None else timeout
        self.verify_checksum = settings.VERIFY_ID_CHECKSUM if verify_checksum is None else verify_checksum

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorization_url(self, state: Optional[str] = None) -> str:
        """URL the user is redirected to for consent"""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": state or secrets.token_hex(16),
        }
        return f"{self.auth_url}?{urlencode(params)}"

    def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"DigiLocker {method} {url} failed: {e}")
            raise DigiLockerError(f"DigiLocker request failed: {e}") from e

    def exchange_code(self, authorization_code: str) -> Dict[str, Any]:
        """Exchange an authorization code for an access token"""
        return self._request(
            "POST",
            self.token_url,
            data={
                "grant_type": "authorization_code",
                "code": authorization_code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    def _auth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"}

    def list_issued_documents(self, access_token: str) -> List[Dict[str, Any]]:
        data = self._request("GET", f"{self.api_url}/issued", headers=self._auth_headers(access_token))
        return data.get("items") or []

    def fetch_document(self, access_token: str, doc_uri: str) -> Dict[str, Any]:
        return self._request(
            "GET", f"{self.api_url}/issued/doc",
            params={"uri": doc_uri},
            headers=self._auth_headers(access_token),
        )

    def simulate(self, aadhaar_number: str, name: str) -> IdentityAuthority:
        """Development stand-in: vouches for any well-formed number"""
        logger.warning("DigiLocker not configured, using simulation mode")
        clean = re.sub(r"\s+", "", aadhaar_number or "")
        valid = validate_aadhaar_number(clean, checksum=self.verify_checksum)
        if not valid:
            logger.info("Simulated DigiLocker rejected Aadhaar number format")
        return IdentityAuthority(name=name, id_number=clean, verified=valid, simulated=True)

    def verify_aadhaar(self,
                       aadhaar_number: str,
                       name: str,
                       access_token: Optional[str] = None,
                       doc_uri: Optional[str] = None) -> IdentityAuthority:
        """
        Fetch the Aadhaar record from DigiLocker, or simulate when credentials
        or a user token are missing. Service errors raise DigiLockerError.
        """
        if not self.configured or not access_token:
            return self.simulate(aadhaar_number, name)

        if not doc_uri:
            documents = self.list_issued_documents(access_token)
            aadhaar_doc = next(
                (doc for doc in documents
                 if doc.get("type") == "ADHAR" or doc.get("doctype") == "AADHAAR"),
                None
            )
            if aadhaar_doc is None:
                raise DigiLockerError("Aadhaar document not found in DigiLocker")
            doc_uri = aadhaar_doc.get("uri")

        data = self.fetch_document(access_token, doc_uri)
        number = str(data.get("aadhaar_number") or data.get("uid") or "")
        record_name = str(data.get("name") or "")
        if not number or not record_name:
            raise DigiLockerError("DigiLocker record is missing name or Aadhaar number")

        logger.info("DigiLocker document fetched successfully")
        return IdentityAuthority(
            name=record_name,
            id_number=re.sub(r"\s+", "", number),
            verified=True,
            simulated=False,
        )
