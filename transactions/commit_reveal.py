"""
Taproot Relayer - Commit/Reveal Transaction Builder

The commit transaction pays a fixed amount to the Taproot address that
commits to the embedding script. The reveal transaction spends that output
through the script path, which publishes the script (and so the payload) in
the input witness:

    witness = [<schnorr signature>, <embedding script>, <control block>]
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from crypto.exceptions import SigningError
from crypto.keys import PrivateKey, taproot_tweak_pubkey
from crypto.signatures import sign_schnorr, verify_schnorr
from scripts.envelope import parse_script
from scripts.opcodes import ScriptOpcode
from scripts.taproot import TapLeaf, is_p2tr_script, p2tr_script_pubkey, script_pubkey_from_address, verify_control_block
from .exceptions import AmountError, FundingNotFoundError, InvalidAddressError
from .sighash import SIGHASH_ALL, taproot_signature_hash
from .transaction import SEQUENCE_FINAL, OutPoint, Transaction, TxIn, TxOut


logger = logging.getLogger(__name__)

# Value paid to the commitment address
COMMIT_AMOUNT = 100_000

# Value of the reveal output; the rest of the commit output is left as fee
REVEAL_AMOUNT = 1_000

MAX_MONEY = 21_000_000 * 100_000_000


@dataclass(frozen=True)
class CommitRequest:
    """Payment the ledger must make to fund a commitment."""
    address: str
    amount: int
    script_pubkey: bytes


def validate_amount(amount: int) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise AmountError(f"Amount must be an integer number of satoshis, got {amount!r}")
    if amount <= 0:
        raise AmountError(f"Amount must be positive, got {amount}")
    if amount > MAX_MONEY:
        raise AmountError(f"Amount {amount} exceeds the maximum money supply")


def build_commit_request(address: str, amount: int = COMMIT_AMOUNT, network: str = 'regtest') -> CommitRequest:
    """
    Validate a commitment payment.

    Args:
        address: Taproot commitment address
        amount: Satoshis to pay
        network: Network the address must belong to

    Returns:
        CommitRequest for the ledger
    """
    validate_amount(amount)

    script_pubkey = script_pubkey_from_address(address, network)
    if not is_p2tr_script(script_pubkey):
        raise InvalidAddressError(f"Address {address} is not a taproot address")

    return CommitRequest(address=address, amount=amount, script_pubkey=script_pubkey)


def select_funding_output(commit_tx: Transaction, expected_amount: int = COMMIT_AMOUNT,
                          script_pubkey: Optional[bytes] = None) -> Tuple[int, TxOut]:
    """
    Find the commitment output of a commit transaction.

    The first output carrying exactly expected_amount is selected. When
    script_pubkey is given the output must also pay to it.

    Args:
        commit_tx: Transaction that funded the commitment
        expected_amount: Value of the commitment output in satoshis
        script_pubkey: Optional output script the commitment must pay

    Returns:
        Tuple of (output index, output)
    """
    for index, output in enumerate(commit_tx.outputs):
        if output.value != expected_amount:
            continue
        if script_pubkey is not None and output.script_pubkey != script_pubkey:
            continue
        return index, output

    raise FundingNotFoundError(commit_tx.txid(), expected_amount)


def key_path_script_pubkey(private_key: PrivateKey) -> bytes:
    """Output script paying to the key-path-only (BIP86) Taproot key of private_key."""
    output_key, _ = taproot_tweak_pubkey(private_key.x_only)
    return p2tr_script_pubkey(output_key)


def _script_signing_key(script: bytes) -> Optional[bytes]:
    tokens = parse_script(script)
    if not tokens or len(tokens) < 2:
        return None
    if tokens[-1].opcode != ScriptOpcode.OP_CHECKSIG or not tokens[-2].is_push_data:
        return None
    return tokens[-2].data


def build_reveal_transaction(
    funding_outpoint: OutPoint,
    funding_output: TxOut,
    embedding_script: bytes,
    control_block: bytes,
    spender_key: PrivateKey,
    reveal_amount: int = REVEAL_AMOUNT,
    sighash_type: int = SIGHASH_ALL,
    destination_script: Optional[bytes] = None,
    aux_rand: Optional[bytes] = None,
) -> Transaction:
    """
    Build and sign the script path spend of a commitment output.

    Args:
        funding_outpoint: Outpoint of the commitment output
        funding_output: The commitment output being spent
        embedding_script: Leaf script committed to by the output
        control_block: Control block for embedding_script
        spender_key: Key named by the script's OP_CHECKSIG
        reveal_amount: Value of the single reveal output
        sighash_type: BIP341 hash type of the signature
        destination_script: Output script to pay; defaults to the spender's
            key-path-only Taproot output
        aux_rand: Optional 32-byte BIP340 auxiliary randomness

    Returns:
        Signed reveal transaction
    """
    validate_amount(reveal_amount)
    if reveal_amount > funding_output.value:
        raise AmountError(
            f"Reveal amount {reveal_amount} exceeds funding output value {funding_output.value}",
            required=reveal_amount,
            available=funding_output.value,
        )

    if _script_signing_key(embedding_script) != spender_key.x_only:
        raise SigningError("Spender key does not match the key committed in the embedding script")

    if not is_p2tr_script(funding_output.script_pubkey):
        raise SigningError("Funding output is not a taproot output")
    output_key = funding_output.script_pubkey[2:]
    if not verify_control_block(control_block, embedding_script, output_key):
        raise SigningError("Control block does not commit the embedding script to the funding output")

    if destination_script is None:
        destination_script = key_path_script_pubkey(spender_key)

    tx = Transaction(
        version=2,
        inputs=[TxIn(outpoint=funding_outpoint, sequence=SEQUENCE_FINAL)],
        outputs=[TxOut(value=reveal_amount, script_pubkey=destination_script)],
        locktime=0,
    )

    leaf_hash = TapLeaf(embedding_script, control_block[0] & 0xfe).leaf_hash()
    sighash = taproot_signature_hash(tx, 0, [funding_output], sighash_type, leaf_hash=leaf_hash)
    signature = sign_schnorr(spender_key, sighash, aux_rand)

    if not verify_schnorr(spender_key.public_key(), signature, sighash):
        raise SigningError("Produced signature failed verification")

    tx.inputs[0].witness = [signature.to_witness(sighash_type), embedding_script, control_block]

    logger.debug(f"Built reveal transaction {tx.txid()} spending {funding_outpoint}")

    return tx
