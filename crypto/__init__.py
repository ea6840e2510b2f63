"""
Taproot Relayer - Cryptographic Operations Module

This module provides the cryptographic utilities the relayer needs:
- secp256k1 private/public keys and x-only conversion
- BIP340/341 tagged hashes and Taproot key tweaking
- BIP340 Schnorr signing and verification

Dependencies:
- coincurve: Fast secp256k1 operations
- bitcoinlib: WIF private key import
"""

from .exceptions import (
    CryptoError,
    InvalidKeyError,
    CommitmentError,
    SigningError,
)
from .keys import (
    PrivateKey,
    PublicKey,
    tagged_hash,
    lift_x,
    to_x_only,
    compute_taproot_tweak,
    taproot_tweak_pubkey,
    taproot_output_script,
)
from .signatures import (
    SchnorrSignature,
    sign_schnorr,
    verify_schnorr,
)

__version__ = "0.1.0"
__all__ = [
    # Exceptions
    "CryptoError",
    "InvalidKeyError",
    "CommitmentError",
    "SigningError",

    # Keys
    "PrivateKey",
    "PublicKey",
    "tagged_hash",
    "lift_x",
    "to_x_only",
    "compute_taproot_tweak",
    "taproot_tweak_pubkey",
    "taproot_output_script",

    # Signatures
    "SchnorrSignature",
    "sign_schnorr",
    "verify_schnorr",
]
