from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Logging
    LOG_LEVEL: str = "INFO"

    # Embedding backend: "perceptual" (always available) or "cnn" (needs weights)
    EMBEDDING_BACKEND: str = "perceptual"
    EMBEDDING_WEIGHTS_PATH: Optional[str] = None
    EMBEDDING_DEVICE: str = "cpu"
    EMBEDDING_DIM: int = 128
    CNN_INPUT_SIZE: int = 160
    PHASH_SIZE: int = 64

    # Face match thresholds (login is stricter than onboarding)
    SIMILARITY_THRESHOLD: float = 0.6
    LOGIN_SIMILARITY_THRESHOLD: float = 0.65

    # OCR Configuration
    OCR_ENGINE: str = "tesseract"
    OCR_LANGUAGES: str = "eng+hin"
    OCR_TIMEOUT_SECONDS: float = 60.0
    ENROLLMENT_OCR_TIMEOUT_SECONDS: float = 45.0
    OCR_MAX_DIMENSION: int = 2000
    OCR_EXCERPT_LENGTH: int = 100
    OCR_MIN_TEXT_LENGTH: int = 10
    # Empty / unreadable OCR passes validation when lenient
    OCR_LENIENT: bool = True
    DOCUMENT_TYPE: str = "aadhaar"

    # OpenAI Configuration (vision OCR engine)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4.1-mini"

    # Liveness Thresholds
    LIVENESS_MIN_DIMENSION: int = 200
    LIVENESS_MIN_STD: float = 10.0
    LIVENESS_MIN_ASPECT: float = 0.5
    LIVENESS_MAX_ASPECT: float = 2.0
    # Processing errors are reported as live when fail-open
    LIVENESS_FAIL_OPEN: bool = True

    # Decision Rules
    ENROLLMENT_REQUIRE_LIVENESS: bool = False

    # DigiLocker Configuration
    DIGILOCKER_CLIENT_ID: str = ""
    DIGILOCKER_CLIENT_SECRET: str = ""
    DIGILOCKER_REDIRECT_URI: str = "http://localhost:3000/api/auth/digilocker/callback"
    DIGILOCKER_AUTH_URL: str = "https://api.digitallocker.gov.in/public/oauth2/1/authorize"
    DIGILOCKER_TOKEN_URL: str = "https://api.digitallocker.gov.in/public/oauth2/1/token"
    DIGILOCKER_API_URL: str = "https://api.digitallocker.gov.in/public/oauth2/2"
    DIGILOCKER_TIMEOUT: float = 30.0
    VERIFY_ID_CHECKSUM: bool = False

    class Config:
        env_file = ".env"

settings = Settings()

# Aadhaar number: 12 digits once whitespace is removed
AADHAAR_REGEX = r"\d{12}"

# PAN card number format
PAN_REGEX = r"[A-Z]{5}\d{4}[A-Z]"

# Voter ID (EPIC) number format
VOTER_REGEX = r"[A-Z]{3}\d{7}"

# Document type configurations
DOCUMENT_FORMATS = {
    "aadhaar": {
        "pattern": AADHAAR_REGEX,
        "strip_whitespace": True
    },
    "pan": {
        "pattern": PAN_REGEX,
        "strip_whitespace": False
    },
    "voter": {
        "pattern": VOTER_REGEX,
        "strip_whitespace": False
    }
}

# Candidate identity number inside OCR text
ID_NUMBER_REGEX = r"\d{12}"

# Boilerplate printed on identity cards, never a holder name
NAME_DENYLIST = [
    "government", "india", "aadhaar", "aadhar", "uid", "uidai",
    "dob", "birth", "male", "female", "address", "vid", "enrollment"
]
