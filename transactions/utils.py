"""
Taproot Relayer - Transaction Utilities

Low level helpers for Bitcoin wire serialization.
"""

import hashlib
import struct

from bitcoinlib.encoding import varstr

from .exceptions import SerializationError


def serialize_compact_size(n: int) -> bytes:
    """
    Serialize integer as Bitcoin compact size.

    Args:
        n: Integer to serialize

    Returns:
        Compact size encoded bytes
    """
    if n < 0:
        raise SerializationError("Compact size can not be negative")
    if n < 0xfd:
        return struct.pack('<B', n)
    elif n <= 0xffff:
        return b'\xfd' + struct.pack('<H', n)
    elif n <= 0xffffffff:
        return b'\xfe' + struct.pack('<I', n)
    else:
        return b'\xff' + struct.pack('<Q', n)


def serialize_varstr(data: bytes) -> bytes:
    """Serialize bytes prefixed with their compact size length."""
    return varstr(data)


def double_sha256(data: bytes) -> bytes:
    """
    Calculate double SHA256 hash (used for transaction IDs).

    Args:
        data: Data to hash

    Returns:
        Double SHA256 hash
    """
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """
    Serialize transaction outpoint.

    Args:
        txid: Transaction ID as hex string
        vout: Output index

    Returns:
        Serialized outpoint (32 bytes txid + 4 bytes vout)
    """
    # Display txids are big endian; the wire format is little endian
    txid_bytes = bytes.fromhex(txid)[::-1]
    if len(txid_bytes) != 32:
        raise SerializationError("Transaction ID must be 32 bytes")
    return txid_bytes + struct.pack('<I', vout)


def satoshis_to_btc(amount: int) -> float:
    """Convert satoshis to a BTC float rounded to 8 decimals."""
    return round(amount / 100_000_000, 8)
