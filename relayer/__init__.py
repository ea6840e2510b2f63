"""
Taproot Relayer - Relayer Module

Commit/reveal orchestration, payload extraction, ledger interface and
configuration.
"""

from .exceptions import (
    RelayerError,
    PayloadNotFoundError,
    ConfigurationError,
)
from .extractor import (
    PROTOCOL_ID,
    extract_from_witness,
    extract_from_transaction,
    scan_block,
)
from .ledger import LedgerService
from .config import KeyMaterial, RelayerConfig, load_config
from .relayer import Relayer

__all__ = [
    "RelayerError",
    "PayloadNotFoundError",
    "ConfigurationError",
    "PROTOCOL_ID",
    "extract_from_witness",
    "extract_from_transaction",
    "scan_block",
    "LedgerService",
    "KeyMaterial",
    "RelayerConfig",
    "load_config",
    "Relayer",
]
