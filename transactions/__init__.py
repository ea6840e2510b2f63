"""
Taproot Relayer - Transaction Module

Transaction model, BIP341 signature hashing and the commit/reveal builder.
Import the builder from transactions.commit_reveal; it depends on the
scripts package, which itself uses the exceptions defined here.
"""

from .exceptions import (
    TransactionError,
    InvalidAddressError,
    AmountError,
    FundingNotFoundError,
    SerializationError,
    SighashError,
    TransactionNotFoundError,
    BlockNotFoundError,
    BroadcastError,
)
from .transaction import (
    OutPoint,
    TxIn,
    TxOut,
    Transaction,
    Block,
)

__all__ = [
    # Exceptions
    "TransactionError",
    "InvalidAddressError",
    "AmountError",
    "FundingNotFoundError",
    "SerializationError",
    "SighashError",
    "TransactionNotFoundError",
    "BlockNotFoundError",
    "BroadcastError",

    # Model
    "OutPoint",
    "TxIn",
    "TxOut",
    "Transaction",
    "Block",
]
