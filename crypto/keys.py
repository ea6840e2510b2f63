"""
Key Management for the Taproot Relayer

This module handles private/public key operations, x-only key conversion and
the BIP341 Taproot key tweak used by both the commitment output and the
spender's key-path-only reveal output.

References:
- BIP340: https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
- BIP86: https://github.com/bitcoin/bips/blob/master/bip-0086.mediawiki
"""

import hashlib
import secrets
from typing import Optional, Tuple, Union

from bitcoinlib.keys import Key as BitcoinlibKey
from coincurve import PrivateKey as CoinCurvePrivateKey, PublicKey as CoinCurvePublicKey

from .exceptions import InvalidKeyError


# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# BIP341 point with no known discrete log: lift_x(sha256(uncompressed G))
NUMS_INTERNAL_KEY = bytes.fromhex("50929b74c1a04954b78b4b6035e97a5e078a5a0f28ec96d547bfee9ace803ac0")


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash, sha256(sha256(tag) || sha256(tag) || data)."""
    tag_hash = hashlib.sha256(tag.encode('utf-8')).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def lift_x(x: bytes) -> Optional[bytes]:
    """
    Lift an x-coordinate to the point with even y.

    Args:
        x: 32-byte x-coordinate

    Returns:
        33-byte compressed public key with even y, or None if x is not on the curve
    """
    if not isinstance(x, bytes) or len(x) != 32:
        return None

    candidate = b'\x02' + x
    try:
        CoinCurvePublicKey(candidate)
    except ValueError:
        return None
    return candidate


def has_even_y(pubkey: bytes) -> bool:
    """True for a 33-byte compressed key with the 0x02 prefix."""
    return len(pubkey) == 33 and pubkey[0] == 0x02


def to_x_only(pubkey: Union[bytes, 'PublicKey']) -> bytes:
    """
    Reduce a public key to its 32-byte x-only form.

    Args:
        pubkey: PublicKey, 33-byte compressed key or 32-byte x-only key

    Returns:
        32-byte x-only public key
    """
    if isinstance(pubkey, PublicKey):
        return pubkey.x_only
    if isinstance(pubkey, bytes):
        if len(pubkey) == 32:
            return pubkey
        if len(pubkey) == 33 and pubkey[0] in (0x02, 0x03):
            return pubkey[1:]
    raise InvalidKeyError("Public key must be 32-byte x-only or 33-byte compressed")


class PrivateKey:
    """
    secp256k1 secret key used to sign reveal transactions.

    The secret is held in a coincurve key; WIF import goes through bitcoinlib
    so any network's WIF prefix is accepted.
    """

    def __init__(self, secret: Optional[bytes] = None):
        """
        Args:
            secret: 32-byte big-endian scalar in [1, n-1]. A fresh random
                scalar is drawn when omitted.
        """
        if secret is None:
            secret = self._random_secret()

        if not isinstance(secret, bytes) or len(secret) != 32:
            raise InvalidKeyError("Private key must be 32 bytes")
        if not 0 < int.from_bytes(secret, 'big') < CURVE_ORDER:
            raise InvalidKeyError("Private key out of valid range")

        try:
            self._key = CoinCurvePrivateKey(secret)
        except ValueError as e:
            raise InvalidKeyError(f"Failed to create private key: {e}")

    @staticmethod
    def _random_secret() -> bytes:
        while True:
            candidate = secrets.token_bytes(32)
            if 0 < int.from_bytes(candidate, 'big') < CURVE_ORDER:
                return candidate

    @classmethod
    def from_wif(cls, wif: str) -> 'PrivateKey':
        """
        Import a private key from Wallet Import Format.

        Both compressed and uncompressed WIF strings of any network are
        accepted; only the secret scalar is kept.

        Args:
            wif: Base58Check encoded private key

        Returns:
            PrivateKey instance
        """
        try:
            key = BitcoinlibKey(import_key=wif)
        except Exception as e:
            raise InvalidKeyError(f"Invalid WIF private key: {e}")

        if not key.is_private:
            raise InvalidKeyError("WIF does not contain a private key")
        return cls(key.private_byte)

    @classmethod
    def from_hex(cls, hex_string: str) -> 'PrivateKey':
        """Import a private key from a 64-character hex string."""
        try:
            secret = bytes.fromhex(hex_string)
        except ValueError as e:
            raise InvalidKeyError(f"Invalid private key hex: {e}")
        return cls(secret)

    @property
    def bytes(self) -> bytes:
        """The 32-byte secret."""
        return self._key.secret

    @property
    def hex(self) -> str:
        return self.bytes.hex()

    def public_key(self) -> 'PublicKey':
        """Public key for this secret."""
        return PublicKey(self._key.public_key)

    @property
    def x_only(self) -> bytes:
        """32-byte x-only public key, as committed in embedding scripts."""
        return self.public_key().x_only


class PublicKey:
    """
    secp256k1 public key with the x-only helpers Taproot needs.
    """

    def __init__(self, point: Union[bytes, CoinCurvePublicKey]):
        """
        Args:
            point: SEC-encoded key (33 or 65 bytes) or a coincurve PublicKey
        """
        if isinstance(point, CoinCurvePublicKey):
            self._key = point
            return

        if not isinstance(point, bytes) or len(point) not in (33, 65):
            raise InvalidKeyError("Public key must be 33 or 65 bytes")
        try:
            self._key = CoinCurvePublicKey(point)
        except ValueError as e:
            raise InvalidKeyError(f"Failed to create public key: {e}")

    @classmethod
    def from_x_only(cls, x_only: bytes) -> 'PublicKey':
        """Create the even-y public key for a 32-byte x-only key."""
        lifted = lift_x(x_only)
        if lifted is None:
            raise InvalidKeyError("x-only public key is not a valid curve point")
        return cls(lifted)

    @property
    def bytes(self) -> bytes:
        """33-byte compressed encoding."""
        return self._key.format(compressed=True)

    @property
    def hex(self) -> str:
        return self.bytes.hex()

    @property
    def x_only(self) -> bytes:
        return self.bytes[1:]

    @property
    def has_even_y(self) -> bool:
        return has_even_y(self.bytes)

    def tweak_add(self, tweak: bytes) -> 'PublicKey':
        """
        Return P + tweak*G.

        Raises:
            InvalidKeyError: If the tweak is not a valid scalar or the sum is
                the point at infinity
        """
        if len(tweak) != 32 or int.from_bytes(tweak, 'big') >= CURVE_ORDER:
            raise InvalidKeyError("Tweak must be a 32-byte scalar below the curve order")

        try:
            return PublicKey(self._key.add(tweak))
        except ValueError as e:
            raise InvalidKeyError(f"Tweak produced an invalid point: {e}")


def compute_taproot_tweak(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """
    TapTweak hash of the internal key, committing to the script tree root if any.

    Args:
        internal_pubkey_x: 32-byte x-only internal key
        merkle_root: 32-byte script tree root; None commits to no scripts

    Returns:
        32-byte tweak
    """
    if len(internal_pubkey_x) != 32:
        raise InvalidKeyError("Internal key must be 32-byte x-only")
    if merkle_root is None:
        return tagged_hash("TapTweak", internal_pubkey_x)
    if len(merkle_root) != 32:
        raise InvalidKeyError("Script tree root must be 32 bytes")
    return tagged_hash("TapTweak", internal_pubkey_x + merkle_root)


def taproot_tweak_pubkey(internal_pubkey_x: bytes, merkle_root: Optional[bytes] = None) -> Tuple[bytes, int]:
    """
    Tweak an x-only internal key into a Taproot output key.

    Args:
        internal_pubkey_x: 32-byte x-only internal public key
        merkle_root: 32-byte script tree root, or None for key-path only (BIP86)

    Returns:
        Tuple of (32-byte x-only output key, parity of its y-coordinate)
    """
    internal = PublicKey.from_x_only(internal_pubkey_x)
    tweaked = internal.tweak_add(compute_taproot_tweak(internal_pubkey_x, merkle_root))
    return tweaked.x_only, 0 if tweaked.has_even_y else 1


def taproot_output_script(output_key: bytes) -> bytes:
    """OP_1 <32-byte output key>, the P2TR scriptPubKey."""
    if len(output_key) != 32:
        raise InvalidKeyError("Taproot output key must be 32 bytes")
    return b'\x51\x20' + output_key
