"""
Taproot Relayer - Transaction Model

This module provides a minimal Bitcoin transaction and block model with
segwit serialization:

    [nVersion][marker 0x00][flag 0x01][txins][txouts][witness][nLockTime]

Transactions without witness data serialize in the legacy format, and the
txid always commits to the legacy serialization. Raw transactions and blocks
from a node are decoded with bitcoinlib and converted into this model.
"""

import struct
from dataclasses import dataclass, field
from io import BytesIO
from typing import List, Optional

from bitcoinlib.blocks import Block as BitcoinlibBlock
from bitcoinlib.transactions import Transaction as BitcoinlibTransaction

from .exceptions import SerializationError
from .utils import (
    double_sha256,
    serialize_compact_size,
    serialize_outpoint,
    serialize_varstr,
)


SEQUENCE_FINAL = 0xffffffff
BLOCK_HEADER_SIZE = 80


@dataclass(frozen=True)
class OutPoint:
    """Reference to a transaction output."""
    txid: str
    vout: int

    def serialize(self) -> bytes:
        return serialize_outpoint(self.txid, self.vout)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class TxIn:
    """Transaction input."""
    outpoint: OutPoint
    script_sig: bytes = b''
    sequence: int = SEQUENCE_FINAL
    witness: List[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return self.outpoint.serialize() + serialize_varstr(self.script_sig) + struct.pack('<I', self.sequence)

    def serialize_witness(self) -> bytes:
        result = BytesIO()
        result.write(serialize_compact_size(len(self.witness)))
        for item in self.witness:
            result.write(serialize_varstr(item))
        return result.getvalue()


@dataclass
class TxOut:
    """Transaction output."""
    value: int
    script_pubkey: bytes

    def __post_init__(self):
        if self.value < 0:
            raise SerializationError("Output value can not be negative")

    def serialize(self) -> bytes:
        return struct.pack('<q', self.value) + serialize_varstr(self.script_pubkey)


@dataclass
class Transaction:
    """Bitcoin transaction with optional segwit witness data."""
    version: int = 2
    inputs: List[TxIn] = field(default_factory=list)
    outputs: List[TxOut] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize the transaction.

        Args:
            include_witness: Use the segwit format when any input has witness data

        Returns:
            Serialized transaction bytes
        """
        with_witness = include_witness and self.has_witness
        result = BytesIO()

        result.write(struct.pack('<i', self.version))

        if with_witness:
            result.write(b'\x00\x01')

        result.write(serialize_compact_size(len(self.inputs)))
        for txin in self.inputs:
            result.write(txin.serialize())

        result.write(serialize_compact_size(len(self.outputs)))
        for txout in self.outputs:
            result.write(txout.serialize())

        if with_witness:
            for txin in self.inputs:
                result.write(txin.serialize_witness())

        result.write(struct.pack('<I', self.locktime))

        return result.getvalue()

    def txid(self) -> str:
        """Transaction ID (hash of the non-witness serialization, display order)."""
        return double_sha256(self.serialize(include_witness=False))[::-1].hex()

    def to_hex(self) -> str:
        return self.serialize().hex()

    @classmethod
    def from_bitcoinlib(cls, btx: BitcoinlibTransaction) -> 'Transaction':
        """
        Convert a transaction parsed by bitcoinlib into the relayer's model.

        bitcoinlib stores an empty witness item as a single zero byte, so such
        items come back as b'\\x00'.
        """
        inputs = [
            TxIn(
                OutPoint(inp.prev_txid.hex(), inp.output_n_int),
                script_sig=inp.unlocking_script or b'',
                sequence=inp.sequence,
                witness=list(inp.witnesses),
            )
            for inp in btx.inputs
        ]
        outputs = [TxOut(out.value, out.lock_script) for out in btx.outputs]
        return cls(
            version=int.from_bytes(btx.version, 'big', signed=True),
            inputs=inputs,
            outputs=outputs,
            locktime=btx.locktime,
        )

    @classmethod
    def parse(cls, data: bytes) -> 'Transaction':
        """Parse a complete serialized transaction, rejecting trailing bytes."""
        stream = BytesIO(data)
        try:
            # Non-strict, so witness items that are not scripts do not abort parsing
            btx = BitcoinlibTransaction.parse_bytesio(stream, strict=False)
        except Exception as e:
            raise SerializationError(f"Failed to parse transaction: {e}")

        if stream.tell() != len(data):
            raise SerializationError(f"{len(data) - stream.tell()} trailing bytes after transaction")
        # A short locktime is only rejected by bitcoinlib in strict mode
        if len(data) < 4 or btx.locktime != struct.unpack('<I', data[-4:])[0]:
            raise SerializationError("Transaction locktime is incomplete")
        return cls.from_bitcoinlib(btx)

    @classmethod
    def from_hex(cls, hex_string: str) -> 'Transaction':
        try:
            data = bytes.fromhex(hex_string)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Invalid transaction hex: {e}")
        return cls.parse(data)


@dataclass
class Block:
    """Block header with its transactions."""
    block_hash: str
    header: bytes
    transactions: List[Transaction] = field(default_factory=list)
    height: Optional[int] = None

    @classmethod
    def parse(cls, data: bytes, height: Optional[int] = None) -> 'Block':
        """
        Parse a serialized block.

        Args:
            data: Raw block bytes (80-byte header, tx count, transactions)
            height: Optional block height to record

        Returns:
            Block instance
        """
        if len(data) < BLOCK_HEADER_SIZE:
            raise SerializationError("Insufficient data for block header")

        try:
            bblock = BitcoinlibBlock.parse_bytes(data, height=height, parse_transactions=True)
        except Exception as e:
            raise SerializationError(f"Failed to parse block: {e}")

        return cls(
            block_hash=bblock.block_hash.hex(),
            header=data[:BLOCK_HEADER_SIZE],
            transactions=[Transaction.from_bitcoinlib(btx) for btx in bblock.transactions],
            height=height,
        )

    @classmethod
    def from_hex(cls, hex_string: str, height: Optional[int] = None) -> 'Block':
        try:
            data = bytes.fromhex(hex_string)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Invalid block hex: {e}")
        return cls.parse(data, height)
