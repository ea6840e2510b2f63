"""
Taproot Relayer - Relay Orchestrator

Writes payloads to the ledger with a commit/reveal transaction pair and
reads them back from transactions or whole blocks.

Each write moves through Idle -> Committed -> Revealed -> Done. There are no
retries and no resumable state: if the reveal fails after the commit was
paid, the funds stay locked in the commitment output.
"""

import logging
from typing import List, Optional, Tuple

from scripts.envelope import EncodingError, build_embedding_script, max_payload_size
from scripts.taproot import TaprootCommitment, address_from_output_key, control_block_for, derive_commitment
from transactions.commit_reveal import (
    COMMIT_AMOUNT,
    REVEAL_AMOUNT,
    build_commit_request,
    build_reveal_transaction,
    select_funding_output,
)
from transactions.sighash import SIGHASH_ALL
from transactions.transaction import OutPoint
from .config import MISSING_SPENDER_KEY, KeyMaterial, RelayerConfig
from .exceptions import ConfigurationError, PayloadNotFoundError
from .extractor import PROTOCOL_ID, extract_from_transaction, scan_block
from .ledger import LedgerService


logger = logging.getLogger(__name__)


class Relayer:
    """
    Embeds payloads in Taproot script leaves and recovers them.
    """

    def __init__(
        self,
        ledger: LedgerService,
        key_material: Optional[KeyMaterial] = None,
        protocol_id: bytes = PROTOCOL_ID,
        network: str = 'regtest',
        commit_amount: int = COMMIT_AMOUNT,
        reveal_amount: int = REVEAL_AMOUNT,
        sighash_type: int = SIGHASH_ALL,
    ):
        """
        Initialize the relayer.

        Args:
            ledger: Ledger service used for payments, lookups and broadcast
            key_material: Spender and internal keys; only writing needs them
            protocol_id: Tag prepended to every payload
            network: Network the addresses are encoded for
            commit_amount: Satoshis paid to each commitment
            reveal_amount: Satoshis of the reveal output
            sighash_type: BIP341 hash type of reveal signatures
        """
        self.ledger = ledger
        self.key_material = key_material
        self.protocol_id = protocol_id
        self.network = network
        self.commit_amount = commit_amount
        self.reveal_amount = reveal_amount
        self.sighash_type = sighash_type

    @classmethod
    def from_config(cls, config: RelayerConfig, ledger: Optional[LedgerService] = None) -> 'Relayer':
        """
        Create a relayer from configuration.

        Args:
            config: Resolved relayer configuration
            ledger: Ledger to use; a Bitcoin Core ledger over config.rpc by default

        Returns:
            Relayer
        """
        key_material = KeyMaterial.from_config(config) if config.spender_key else None

        if ledger is None:
            # network.ledger imports relayer.ledger, so resolve it at call time
            from network.ledger import BitcoinCoreLedger
            ledger = BitcoinCoreLedger(config=config.rpc)

        return cls(
            ledger=ledger,
            key_material=key_material,
            protocol_id=config.protocol_id,
            network=config.network,
            commit_amount=config.commit_amount,
            reveal_amount=config.reveal_amount,
            sighash_type=config.sighash_type,
        )

    @property
    def keys(self) -> KeyMaterial:
        if self.key_material is None:
            raise ConfigurationError(MISSING_SPENDER_KEY)
        return self.key_material

    @property
    def max_payload_size(self) -> int:
        return max_payload_size(len(self.protocol_id))

    def tag(self, payload: bytes) -> bytes:
        """Prefix payload with the protocol tag."""
        return self.protocol_id + payload

    def build_script(self, tagged_data: bytes) -> bytes:
        return build_embedding_script(tagged_data, self.keys.spender_pubkey)

    def create_taproot_address(self, tagged_data: bytes) -> Tuple[str, TaprootCommitment]:
        """
        Derive the commitment address for tagged data.

        Args:
            tagged_data: Payload with the protocol tag

        Returns:
            Tuple of (address, commitment)
        """
        script = self.build_script(tagged_data)
        commitment = derive_commitment(script, self.keys.internal_pubkey)
        address = address_from_output_key(commitment.output_key, self.network)

        logger.debug(f"Commitment address {address} for {len(tagged_data)} bytes of tagged data")
        return address, commitment

    def commit_tx(self, address: str) -> str:
        """
        Fund a commitment address.

        Args:
            address: Commitment address

        Returns:
            Commit transaction ID
        """
        request = build_commit_request(address, self.commit_amount, self.network)
        txid = self.ledger.send_funds(request.address, request.amount)

        logger.info(f"Committed {request.amount} satoshis to {address} in {txid}")
        return txid

    def reveal_tx(self, tagged_data: bytes, commit_txid: str) -> str:
        """
        Spend a commitment by script path, publishing the tagged data.

        Args:
            tagged_data: Payload with the protocol tag, as committed
            commit_txid: ID of the commit transaction

        Returns:
            Reveal transaction ID
        """
        commit_tx = self.ledger.get_transaction(commit_txid)
        vout, funding_output = select_funding_output(commit_tx, self.commit_amount)

        _, commitment = self.create_taproot_address(tagged_data)

        reveal = build_reveal_transaction(
            funding_outpoint=OutPoint(commit_txid, vout),
            funding_output=funding_output,
            embedding_script=commitment.leaf.script,
            control_block=control_block_for(commitment, commitment.leaf.script),
            spender_key=self.keys.spender,
            reveal_amount=self.reveal_amount,
            sighash_type=self.sighash_type,
        )

        txid = self.ledger.broadcast_transaction(reveal)

        logger.info(f"Revealed {commit_txid}:{vout} in {txid}")
        return txid

    def write(self, payload: bytes) -> str:
        """
        Write a payload to the ledger.

        Args:
            payload: Bytes to embed

        Returns:
            Reveal transaction ID
        """
        if len(payload) > self.max_payload_size:
            raise EncodingError(
                f"Payload of {len(payload)} bytes exceeds the {self.max_payload_size}-byte maximum"
            )

        tagged_data = self.tag(payload)
        address, _ = self.create_taproot_address(tagged_data)

        commit_txid = self.commit_tx(address)
        logger.info(f"Write state Committed: {commit_txid}")

        reveal_txid = self.reveal_tx(tagged_data, commit_txid)
        logger.info(f"Write state Revealed: {reveal_txid}")

        return reveal_txid

    def read_transaction(self, txid: str) -> bytes:
        """
        Read the payload revealed by a transaction.

        Args:
            txid: Reveal transaction ID

        Returns:
            Payload
        """
        tx = self.ledger.get_transaction(txid)
        payload = extract_from_transaction(tx, self.protocol_id)
        if payload is None:
            raise PayloadNotFoundError(txid, self.protocol_id)
        return payload

    def read_height(self, height: int) -> List[bytes]:
        """
        Read every payload revealed in the block at height.

        Args:
            height: Block height

        Returns:
            Payloads in block order
        """
        block_hash = self.ledger.get_block_hash(height)
        block = self.ledger.get_block(block_hash)
        payloads = list(scan_block(block, self.protocol_id))

        logger.info(f"Read {len(payloads)} payloads from block {height} ({block_hash})")
        return payloads

    def close(self):
        """Close the ledger handle."""
        self.ledger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
