"""
Taproot Relayer - Ledger Service Interface

The relayer talks to the chain only through this interface, so it can run
against a Bitcoin Core node or an in-memory ledger in tests.
"""

from abc import ABC, abstractmethod

from transactions.transaction import Block, Transaction


class LedgerService(ABC):
    """Ledger operations needed to write and read payloads."""

    @abstractmethod
    def send_funds(self, address: str, amount: int) -> str:
        """
        Pay amount satoshis to address from the ledger's wallet.

        Args:
            address: Destination address
            amount: Amount in satoshis

        Returns:
            Transaction ID of the payment
        """

    @abstractmethod
    def get_transaction(self, txid: str) -> Transaction:
        """Fetch a transaction by ID (TransactionNotFoundError if unknown)."""

    @abstractmethod
    def get_block_hash(self, height: int) -> str:
        """Return the hash of the block at height (BlockNotFoundError if none)."""

    @abstractmethod
    def get_block(self, block_hash: str) -> Block:
        """Fetch a full block by hash (BlockNotFoundError if unknown)."""

    @abstractmethod
    def broadcast_transaction(self, tx: Transaction) -> str:
        """Submit a signed transaction and return its ID (BroadcastError if rejected)."""

    def close(self) -> None:
        """Release the ledger handle."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
