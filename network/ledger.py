"""
Taproot Relayer - Bitcoin Core Ledger Service

LedgerService implementation backed by a Bitcoin Core node's JSON-RPC
interface. RPC failures are translated into the transaction error types
the relayer understands.
"""

import logging
from typing import Optional

from relayer.ledger import LedgerService
from transactions.exceptions import (
    BlockNotFoundError,
    AmountError,
    BroadcastError,
    InvalidAddressError,
    SerializationError,
    TransactionNotFoundError,
)
from transactions.transaction import Block, Transaction
from transactions.utils import satoshis_to_btc
from .rpc import (
    RPC_INVALID_ADDRESS_OR_KEY,
    RPC_VERIFY_ALREADY_IN_CHAIN,
    RPC_VERIFY_ERROR,
    RPC_VERIFY_REJECTED,
    RPC_WALLET_INSUFFICIENT_FUNDS,
    BitcoinRPCClient,
    RPCConfig,
    RPCError,
)


logger = logging.getLogger(__name__)


class BitcoinCoreLedger(LedgerService):
    """Ledger service using a Bitcoin Core node and its wallet."""

    def __init__(self, client: Optional[BitcoinRPCClient] = None, config: Optional[RPCConfig] = None):
        """
        Initialize the ledger.

        Args:
            client: Existing RPC client to use
            config: RPC configuration used to create a client when none is given
        """
        self.client = client or BitcoinRPCClient(config)

    def send_funds(self, address: str, amount: int) -> str:
        try:
            txid = self.client.sendtoaddress(address, satoshis_to_btc(amount))
        except RPCError as e:
            if e.code == RPC_INVALID_ADDRESS_OR_KEY:
                raise InvalidAddressError(f"Node rejected address {address}: {e.message}")
            if e.code == RPC_WALLET_INSUFFICIENT_FUNDS:
                raise AmountError(f"Node wallet can not fund {amount} satoshis: {e.message}", required=amount)
            raise BroadcastError(f"Failed to send {amount} satoshis to {address}: {e.message}")

        logger.debug(f"Sent {amount} satoshis to {address} in {txid}")
        return txid

    def get_transaction(self, txid: str) -> Transaction:
        try:
            raw_tx = self.client.getrawtransaction(txid, False)
        except RPCError as e:
            raise TransactionNotFoundError(f"Transaction {txid} not found: {e.message}")

        try:
            return Transaction.from_hex(raw_tx)
        except SerializationError as e:
            raise TransactionNotFoundError(f"Transaction {txid} could not be decoded: {e}")

    def get_block_hash(self, height: int) -> str:
        try:
            return self.client.getblockhash(height)
        except RPCError as e:
            raise BlockNotFoundError(f"No block at height {height}: {e.message}")

    def get_block(self, block_hash: str) -> Block:
        try:
            raw_block = self.client.getblock(block_hash, 0)
        except RPCError as e:
            raise BlockNotFoundError(f"Block {block_hash} not found: {e.message}")

        try:
            return Block.from_hex(raw_block)
        except SerializationError as e:
            raise BlockNotFoundError(f"Block {block_hash} could not be decoded: {e}")

    def broadcast_transaction(self, tx: Transaction) -> str:
        try:
            txid = self.client.sendrawtransaction(tx.to_hex())
        except RPCError as e:
            if e.code == RPC_VERIFY_ALREADY_IN_CHAIN:
                logger.debug(f"Transaction {tx.txid()} is already confirmed")
                return tx.txid()
            if e.code in (RPC_VERIFY_REJECTED, RPC_VERIFY_ERROR):
                raise BroadcastError(f"Transaction {tx.txid()} rejected: {e.message}")
            raise BroadcastError(f"Failed to broadcast transaction {tx.txid()}: {e.message}")

        logger.debug(f"Broadcast transaction {txid}")
        return txid

    def close(self) -> None:
        logger.debug(f"RPC statistics: {self.client.get_stats()}")
        self.client.close()
