"""
Tests for the commit/reveal transaction builder.
"""

import pytest
from bitcoinlib.encoding import pubkeyhash_to_addr_bech32

from crypto.exceptions import SigningError
from crypto.keys import PrivateKey, taproot_tweak_pubkey
from crypto.signatures import SchnorrSignature, verify_schnorr
from scripts.envelope import build_embedding_script
from scripts.taproot import TapLeaf, derive_commitment, p2tr_script_pubkey
from transactions.commit_reveal import (
    COMMIT_AMOUNT,
    REVEAL_AMOUNT,
    build_commit_request,
    build_reveal_transaction,
    key_path_script_pubkey,
    select_funding_output,
)
from transactions.exceptions import AmountError, FundingNotFoundError, InvalidAddressError
from transactions.sighash import SIGHASH_ALL, SIGHASH_DEFAULT, taproot_signature_hash
from transactions.transaction import OutPoint, Transaction, TxIn, TxOut


@pytest.fixture
def commitment(spender_key, internal_key):
    script = build_embedding_script(b"bark" + b"hello", spender_key.x_only)
    return derive_commitment(script, internal_key.x_only)


@pytest.fixture
def funding(commitment):
    outpoint = OutPoint("cd" * 32, 0)
    return outpoint, TxOut(COMMIT_AMOUNT, commitment.script_pubkey)


def reveal(commitment, funding, spender_key, **kwargs):
    outpoint, output = funding
    return build_reveal_transaction(
        outpoint, output, commitment.leaf.script, commitment.control_block, spender_key, **kwargs
    )


class TestCommitRequest:
    """Test commitment payment validation."""

    def test_valid(self, commitment):
        address = commitment.address('regtest')

        request = build_commit_request(address)

        assert request.address == address
        assert request.amount == COMMIT_AMOUNT
        assert request.script_pubkey == commitment.script_pubkey

    def test_wrong_network(self, commitment):
        with pytest.raises(InvalidAddressError):
            build_commit_request(commitment.address('bitcoin'), network='regtest')

    def test_not_taproot(self):
        address = pubkeyhash_to_addr_bech32(b'\x11' * 20, prefix='bcrt', witver=0)
        with pytest.raises(InvalidAddressError):
            build_commit_request(address)

    def test_garbage_address(self):
        with pytest.raises(InvalidAddressError):
            build_commit_request("definitely-not-an-address")

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True, 21_000_001 * 100_000_000])
    def test_invalid_amount(self, commitment, amount):
        with pytest.raises(AmountError):
            build_commit_request(commitment.address('regtest'), amount)


class TestSelectFundingOutput:
    """Test commitment output selection."""

    def test_first_exact_match(self):
        tx = Transaction(
            inputs=[TxIn(OutPoint("01" * 32, 0))],
            outputs=[TxOut(5_000, b'\x51'), TxOut(COMMIT_AMOUNT, b'\x52'), TxOut(COMMIT_AMOUNT, b'\x53')],
        )

        index, output = select_funding_output(tx)

        assert index == 1
        assert output.script_pubkey == b'\x52'

    def test_match_by_script(self):
        tx = Transaction(outputs=[TxOut(COMMIT_AMOUNT, b'\x52'), TxOut(COMMIT_AMOUNT, b'\x53')])

        index, _ = select_funding_output(tx, COMMIT_AMOUNT, script_pubkey=b'\x53')

        assert index == 1

    def test_not_found(self):
        tx = Transaction(outputs=[TxOut(COMMIT_AMOUNT - 1, b'\x51')])

        with pytest.raises(FundingNotFoundError) as exc_info:
            select_funding_output(tx)

        assert exc_info.value.amount == COMMIT_AMOUNT
        assert exc_info.value.txid == tx.txid()


class TestBuildRevealTransaction:
    """Test reveal construction and signing."""

    def test_structure(self, commitment, funding, spender_key):
        tx = reveal(commitment, funding, spender_key)

        assert tx.version == 2
        assert tx.locktime == 0
        assert len(tx.inputs) == 1
        assert tx.inputs[0].outpoint == funding[0]
        assert tx.inputs[0].sequence == 0xffffffff
        assert tx.inputs[0].script_sig == b''
        assert len(tx.outputs) == 1
        assert tx.outputs[0].value == REVEAL_AMOUNT

    def test_witness(self, commitment, funding, spender_key):
        witness = reveal(commitment, funding, spender_key).inputs[0].witness

        assert len(witness) == 3
        assert len(witness[0]) == 65
        assert witness[0][-1] == SIGHASH_ALL
        assert witness[1] == commitment.leaf.script
        assert witness[2] == commitment.control_block

    def test_pays_spender_key_path_output(self, commitment, funding, spender_key):
        tx = reveal(commitment, funding, spender_key)
        output_key, _ = taproot_tweak_pubkey(spender_key.x_only)

        assert tx.outputs[0].script_pubkey == p2tr_script_pubkey(output_key)
        assert tx.outputs[0].script_pubkey == key_path_script_pubkey(spender_key)

    def test_signature_verifies(self, commitment, funding, spender_key):
        tx = reveal(commitment, funding, spender_key)
        signature = tx.inputs[0].witness[0]

        sighash = taproot_signature_hash(
            tx, 0, [funding[1]], SIGHASH_ALL, leaf_hash=TapLeaf(commitment.leaf.script).leaf_hash()
        )

        assert verify_schnorr(spender_key.x_only, SchnorrSignature.from_bytes(signature[:64]), sighash)

    def test_default_sighash(self, commitment, funding, spender_key):
        tx = reveal(commitment, funding, spender_key, sighash_type=SIGHASH_DEFAULT)
        assert len(tx.inputs[0].witness[0]) == 64

    def test_deterministic_with_aux_rand(self, commitment, funding, spender_key):
        first = reveal(commitment, funding, spender_key, aux_rand=b'\x00' * 32)
        second = reveal(commitment, funding, spender_key, aux_rand=b'\x00' * 32)

        assert first.serialize() == second.serialize()

    def test_custom_destination(self, commitment, funding, spender_key):
        destination = p2tr_script_pubkey(b'\x09' * 32)
        tx = reveal(commitment, funding, spender_key, destination_script=destination)

        assert tx.outputs[0].script_pubkey == destination

    def test_wrong_spender_key(self, commitment, funding):
        with pytest.raises(SigningError):
            reveal(commitment, funding, PrivateKey(bytes.fromhex("44" * 32)))

    def test_control_block_mismatch(self, commitment, funding, spender_key):
        outpoint, output = funding
        tampered = bytes([commitment.control_block[0] ^ 1]) + commitment.control_block[1:]

        with pytest.raises(SigningError):
            build_reveal_transaction(outpoint, output, commitment.leaf.script, tampered, spender_key)

    def test_funding_output_for_other_key(self, commitment, spender_key):
        output = TxOut(COMMIT_AMOUNT, p2tr_script_pubkey(b'\x09' * 32))

        with pytest.raises(SigningError):
            reveal(commitment, (OutPoint("cd" * 32, 0), output), spender_key)

    def test_reveal_amount_exceeds_funding(self, commitment, funding, spender_key):
        with pytest.raises(AmountError):
            reveal(commitment, funding, spender_key, reveal_amount=COMMIT_AMOUNT + 1)

    def test_reveal_amount_equal_to_funding(self, commitment, funding, spender_key):
        tx = reveal(commitment, funding, spender_key, reveal_amount=COMMIT_AMOUNT)
        assert tx.outputs[0].value == COMMIT_AMOUNT
