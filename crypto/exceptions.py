"""
Cryptographic Exceptions for the Taproot Relayer

This module defines custom exceptions for key handling, Taproot commitments
and signing.
"""


class CryptoError(Exception):
    """Base exception for all cryptographic errors."""
    pass


class InvalidKeyError(CryptoError):
    """Raised when a key is invalid or malformed."""
    pass


class CommitmentError(CryptoError):
    """Raised when a Taproot tree or control block can not be produced."""
    pass


class SigningError(CryptoError):
    """Raised when a signature hash can not be computed or signing fails."""
    pass
