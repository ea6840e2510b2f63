"""
Taproot Relayer - Payload Extractor

Recovers payloads from revealed script path spends. A reveal input's
witness is [signature, embedding script, control block]; the payload is the
concatenated envelope pushes of the script with the protocol tag removed.
"""

import logging
from typing import Iterator, Optional, Sequence

from scripts.envelope import match_embedding_template
from transactions.transaction import Block, Transaction


logger = logging.getLogger(__name__)

PROTOCOL_ID = b"bark"

# Index of the leaf script in a script path witness without annex
WITNESS_SCRIPT_INDEX = 1


def extract_from_witness(witness: Sequence[bytes], protocol_id: bytes = PROTOCOL_ID) -> Optional[bytes]:
    """
    Extract a tagged payload from a script path witness.

    Args:
        witness: Witness stack of the input
        protocol_id: Tag the envelope data must start with

    Returns:
        Payload with the tag stripped, or None if the witness carries no
        envelope for this protocol
    """
    if len(witness) <= WITNESS_SCRIPT_INDEX:
        return None

    data = match_embedding_template(witness[WITNESS_SCRIPT_INDEX])
    if data is None or not data.startswith(protocol_id):
        return None

    return data[len(protocol_id):]


def extract_from_transaction(tx: Transaction, protocol_id: bytes = PROTOCOL_ID) -> Optional[bytes]:
    """
    Extract the payload revealed by a transaction's first input.

    Args:
        tx: Transaction to inspect
        protocol_id: Protocol tag

    Returns:
        Payload, or None
    """
    if not tx.inputs:
        return None
    return extract_from_witness(tx.inputs[0].witness, protocol_id)


def scan_block(block: Block, protocol_id: bytes = PROTOCOL_ID) -> Iterator[bytes]:
    """
    Yield every payload revealed in a block, in block order.

    Args:
        block: Block to scan
        protocol_id: Protocol tag

    Yields:
        Payloads with the tag stripped
    """
    for tx in block.transactions:
        payload = extract_from_transaction(tx, protocol_id)
        if payload is not None:
            logger.debug(f"Found payload of {len(payload)} bytes in {tx.txid()}")
            yield payload
