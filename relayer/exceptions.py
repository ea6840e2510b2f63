"""
Taproot Relayer - Relayer Exceptions
"""


class RelayerError(Exception):
    """Base exception for relay orchestration errors."""
    pass


class PayloadNotFoundError(RelayerError):
    """Exception raised when a transaction carries no payload for the protocol."""

    def __init__(self, txid: str, protocol_id: bytes):
        self.txid = txid
        self.protocol_id = protocol_id
        super().__init__(f"No payload tagged {protocol_id!r} found in transaction {txid}")


class ConfigurationError(RelayerError):
    """Exception raised for invalid relayer configuration."""
    pass
