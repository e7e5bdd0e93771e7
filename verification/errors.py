class VerificationError(Exception):
    """Base class for errors raised by the verification pipeline"""


class ImageDecodeError(VerificationError, ValueError):
    """Raised when a buffer cannot be decoded as an image at all"""


class ShapeMismatchError(VerificationError, ValueError):
    """Raised when two embeddings cannot be compared"""


class DigiLockerError(VerificationError):
    """Raised when the DigiLocker service rejects or fails a request"""
