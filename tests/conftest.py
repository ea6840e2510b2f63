"""
Pytest configuration and fixtures for relayer tests.
"""

import hashlib
import struct
from typing import Dict, List

import pytest

from crypto.keys import PrivateKey
from relayer.config import KeyMaterial
from relayer.ledger import LedgerService
from scripts.taproot import p2tr_script_pubkey, script_pubkey_from_address
from transactions.exceptions import BlockNotFoundError, BroadcastError, TransactionNotFoundError
from transactions.transaction import Block, OutPoint, Transaction, TxIn, TxOut
from transactions.utils import serialize_compact_size


SPENDER_SECRET = bytes.fromhex("11" * 32)
INTERNAL_SECRET = bytes.fromhex("22" * 32)
CHANGE_SCRIPT = p2tr_script_pubkey(bytes.fromhex("33" * 32))


class InMemoryLedger(LedgerService):
    """
    Ledger double that keeps transactions and blocks in memory.

    Payments are funded from synthetic outpoints. Broadcast transactions must
    spend an output the ledger knows about. mine() moves the mempool into a
    new block, serialized and parsed back like a node's raw block.
    """

    def __init__(self, network: str = 'regtest'):
        self.network = network
        self.transactions: Dict[str, Transaction] = {}
        self.mempool: List[str] = []
        self.blocks: List[Block] = []
        self.broadcasts: List[Transaction] = []
        self.closed = False
        self._payments = 0

    def _accept(self, tx: Transaction) -> str:
        txid = tx.txid()
        self.transactions[txid] = tx
        self.mempool.append(txid)
        return txid

    def add_transaction(self, tx: Transaction) -> str:
        return self._accept(tx)

    def send_funds(self, address: str, amount: int) -> str:
        script_pubkey = script_pubkey_from_address(address, self.network)
        self._payments += 1
        source = OutPoint(hashlib.sha256(b"funding" + struct.pack('<I', self._payments)).hexdigest(), 0)
        tx = Transaction(
            inputs=[TxIn(outpoint=source, witness=[b'\x01' * 64])],
            outputs=[TxOut(amount, script_pubkey), TxOut(50_000, CHANGE_SCRIPT)],
        )
        return self._accept(tx)

    def get_transaction(self, txid: str) -> Transaction:
        try:
            return self.transactions[txid]
        except KeyError:
            raise TransactionNotFoundError(f"Transaction {txid} not found")

    def broadcast_transaction(self, tx: Transaction) -> str:
        for txin in tx.inputs:
            prev = self.transactions.get(txin.outpoint.txid)
            if prev is None or txin.outpoint.vout >= len(prev.outputs):
                raise BroadcastError(f"Missing input {txin.outpoint}")
        self.broadcasts.append(tx)
        return self._accept(tx)

    def mine(self) -> Block:
        prev_hash = bytes.fromhex(self.blocks[-1].block_hash)[::-1] if self.blocks else b'\x00' * 32
        header = (struct.pack('<i', 4) + prev_hash + b'\x00' * 32
                  + struct.pack('<III', 1_700_000_000 + len(self.blocks), 0x207fffff, len(self.blocks)))
        txs = [self.transactions[txid] for txid in self.mempool]
        raw = header + serialize_compact_size(len(txs)) + b''.join(tx.serialize() for tx in txs)

        block = Block.parse(raw, height=len(self.blocks))
        self.blocks.append(block)
        self.mempool = []
        return block

    def get_block_hash(self, height: int) -> str:
        if not 0 <= height < len(self.blocks):
            raise BlockNotFoundError(f"No block at height {height}")
        return self.blocks[height].block_hash

    def get_block(self, block_hash: str) -> Block:
        for block in self.blocks:
            if block.block_hash == block_hash:
                return block
        raise BlockNotFoundError(f"Block {block_hash} not found")

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def spender_key():
    return PrivateKey(SPENDER_SECRET)


@pytest.fixture
def internal_key():
    return PrivateKey(INTERNAL_SECRET)


@pytest.fixture
def key_material(spender_key, internal_key):
    return KeyMaterial(spender=spender_key, internal_pubkey=internal_key.x_only)


@pytest.fixture
def ledger():
    return InMemoryLedger()
