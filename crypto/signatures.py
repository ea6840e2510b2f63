"""
Schnorr Signature Operations for the Taproot Relayer

BIP340 signing and verification backed by libsecp256k1 through coincurve,
plus the BIP341 encoding of a signature with its sighash type byte.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

from dataclasses import dataclass
from typing import Optional, Union

from coincurve.keys import PublicKeyXOnly

from .exceptions import InvalidKeyError, SigningError
from .keys import PrivateKey, PublicKey, to_x_only


SIGHASH_DEFAULT = 0x00


@dataclass
class SchnorrSignature:
    """
    BIP340 Schnorr signature representation.
    """
    r: bytes  # 32-byte x-coordinate of R point
    s: bytes  # 32-byte scalar

    def __post_init__(self):
        """Validate signature components."""
        if len(self.r) != 32:
            raise SigningError("Schnorr r must be 32 bytes")
        if len(self.s) != 32:
            raise SigningError("Schnorr s must be 32 bytes")

    @classmethod
    def from_bytes(cls, sig_bytes: bytes) -> 'SchnorrSignature':
        """
        Parse 64-byte Schnorr signature.

        Args:
            sig_bytes: 64-byte signature (32-byte r + 32-byte s)

        Returns:
            SchnorrSignature object
        """
        if len(sig_bytes) != 64:
            raise SigningError("Schnorr signature must be 64 bytes")

        return cls(r=sig_bytes[:32], s=sig_bytes[32:])

    def to_bytes(self) -> bytes:
        """Encode signature as 64 bytes."""
        return self.r + self.s

    def to_witness(self, sighash_type: int = SIGHASH_DEFAULT) -> bytes:
        """
        Encode signature for a Taproot witness.

        SIGHASH_DEFAULT signatures are 64 bytes; any other type appends the
        hash type byte for a 65-byte signature.
        """
        if sighash_type == SIGHASH_DEFAULT:
            return self.to_bytes()
        return self.to_bytes() + bytes([sighash_type])


def sign_schnorr(private_key: PrivateKey, message_hash: bytes,
                 aux_rand: Optional[bytes] = None) -> SchnorrSignature:
    """
    Sign a 32-byte message hash with a BIP340 Schnorr signature.

    Args:
        private_key: Private key for signing
        message_hash: 32-byte message (a sighash)
        aux_rand: Optional 32-byte auxiliary randomness

    Returns:
        Schnorr signature
    """
    if len(message_hash) != 32:
        raise SigningError("Message hash must be 32 bytes")
    if aux_rand is not None and len(aux_rand) != 32:
        raise SigningError("Auxiliary randomness must be 32 bytes")

    try:
        if aux_rand is None:
            signature = private_key._key.sign_schnorr(message_hash)
        else:
            signature = private_key._key.sign_schnorr(message_hash, aux_rand)
    except ValueError as e:
        raise SigningError(f"Schnorr signing failed: {e}")

    return SchnorrSignature.from_bytes(signature)


def verify_schnorr(public_key: Union[PublicKey, bytes], signature: Union[SchnorrSignature, bytes],
                   message_hash: bytes) -> bool:
    """
    Verify a BIP340 Schnorr signature.

    Args:
        public_key: PublicKey or x-only/compressed key bytes
        signature: Schnorr signature (object or 64 bytes)
        message_hash: 32-byte message that was signed

    Returns:
        True if signature is valid
    """
    if isinstance(signature, SchnorrSignature):
        signature = signature.to_bytes()
    if len(signature) != 64 or len(message_hash) != 32:
        return False

    try:
        x_only = to_x_only(public_key)
        return PublicKeyXOnly(x_only).verify(signature, message_hash)
    except (InvalidKeyError, ValueError):
        return False
