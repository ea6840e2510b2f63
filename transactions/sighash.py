"""
Taproot Relayer - BIP341 Signature Hash

Computes the signature message digest for Taproot (segwit v1) inputs, for
both key path and script path spends.

References:
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
- BIP342: https://github.com/bitcoin/bips/blob/master/bip-0342.mediawiki
"""

import struct
from typing import Optional, Sequence

from crypto.keys import tagged_hash
from .exceptions import SighashError
from .transaction import Transaction, TxOut
from .utils import serialize_varstr, sha256


SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80

VALID_SIGHASH_TYPES = (
    SIGHASH_DEFAULT,
    SIGHASH_ALL,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
    SIGHASH_ALL | SIGHASH_ANYONECANPAY,
    SIGHASH_NONE | SIGHASH_ANYONECANPAY,
    SIGHASH_SINGLE | SIGHASH_ANYONECANPAY,
)

# Tapscript key version and "no OP_CODESEPARATOR executed" position
KEY_VERSION = 0x00
CODESEPARATOR_NONE = 0xffffffff


def taproot_signature_hash(
    tx: Transaction,
    input_index: int,
    prevouts: Sequence[TxOut],
    sighash_type: int = SIGHASH_DEFAULT,
    leaf_hash: Optional[bytes] = None,
    annex: Optional[bytes] = None,
    codesep_pos: int = CODESEPARATOR_NONE,
) -> bytes:
    """
    Compute the BIP341 signature hash for a Taproot input.

    Args:
        tx: Transaction being signed
        input_index: Index of the input being signed
        prevouts: Outputs spent by every input, in input order
        sighash_type: Hash type (DEFAULT, ALL, NONE, SINGLE, optionally | ANYONECANPAY)
        leaf_hash: TapLeaf hash for script path spends, None for key path
        annex: Optional annex (must start with 0x50)
        codesep_pos: Position of the last executed OP_CODESEPARATOR

    Returns:
        32-byte TapSighash digest
    """
    if sighash_type not in VALID_SIGHASH_TYPES:
        raise SighashError(f"Invalid sighash type: {sighash_type:#x}")
    if not 0 <= input_index < len(tx.inputs):
        raise SighashError(f"Input index {input_index} out of range")
    if len(prevouts) != len(tx.inputs):
        raise SighashError("A spent output is required for every input")
    if annex is not None and (not annex or annex[0] != 0x50):
        raise SighashError("Annex must start with 0x50")

    output_type = SIGHASH_ALL if sighash_type == SIGHASH_DEFAULT else sighash_type & 0x03
    anyone_can_pay = bool(sighash_type & SIGHASH_ANYONECANPAY)

    msg = bytearray()
    msg.append(0x00)  # epoch
    msg.append(sighash_type)
    msg += struct.pack('<i', tx.version)
    msg += struct.pack('<I', tx.locktime)

    if not anyone_can_pay:
        msg += sha256(b''.join(txin.outpoint.serialize() for txin in tx.inputs))
        msg += sha256(b''.join(struct.pack('<q', prevout.value) for prevout in prevouts))
        msg += sha256(b''.join(serialize_varstr(prevout.script_pubkey) for prevout in prevouts))
        msg += sha256(b''.join(struct.pack('<I', txin.sequence) for txin in tx.inputs))

    if output_type == SIGHASH_ALL:
        msg += sha256(b''.join(txout.serialize() for txout in tx.outputs))

    spend_type = (2 if leaf_hash is not None else 0) + (1 if annex is not None else 0)
    msg.append(spend_type)

    if anyone_can_pay:
        txin = tx.inputs[input_index]
        prevout = prevouts[input_index]
        msg += txin.outpoint.serialize()
        msg += struct.pack('<q', prevout.value)
        msg += serialize_varstr(prevout.script_pubkey)
        msg += struct.pack('<I', txin.sequence)
    else:
        msg += struct.pack('<I', input_index)

    if annex is not None:
        msg += sha256(serialize_varstr(annex))

    if output_type == SIGHASH_SINGLE:
        if input_index >= len(tx.outputs):
            raise SighashError("SIGHASH_SINGLE without a matching output")
        msg += sha256(tx.outputs[input_index].serialize())

    if leaf_hash is not None:
        if len(leaf_hash) != 32:
            raise SighashError("Leaf hash must be 32 bytes")
        msg += leaf_hash
        msg.append(KEY_VERSION)
        msg += struct.pack('<I', codesep_pos)

    return tagged_hash("TapSighash", bytes(msg))
