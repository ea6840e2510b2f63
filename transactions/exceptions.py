"""
Taproot Relayer - Transaction Exceptions

This module defines custom exceptions for commit/reveal transaction
construction, serialization and ledger access.
"""


class TransactionError(Exception):
    """Base exception for transaction-related errors."""
    pass


class InvalidAddressError(TransactionError):
    """Exception raised when an address can not be decoded for the network."""
    pass


class AmountError(TransactionError):
    """Exception raised for invalid or insufficient amounts."""

    def __init__(self, message: str, required: int = None, available: int = None):
        self.required = required
        self.available = available
        super().__init__(message)


class FundingNotFoundError(TransactionError):
    """Exception raised when the commit transaction has no output with the expected amount."""

    def __init__(self, txid: str, amount: int):
        self.txid = txid
        self.amount = amount
        super().__init__(f"No output of {amount} satoshis found in transaction {txid}")


class SerializationError(TransactionError):
    """Exception raised when transaction or block bytes can not be parsed."""
    pass


class TransactionNotFoundError(TransactionError):
    """Exception raised when the ledger does not know a transaction."""
    pass


class BlockNotFoundError(TransactionError):
    """Exception raised when the ledger has no block at a height or hash."""
    pass


class BroadcastError(TransactionError):
    """Exception raised when the ledger rejects a transaction or payment."""
    pass


class SighashError(TransactionError):
    """Exception raised when a signature hash can not be computed."""
    pass
