"""
Tests for the payload extractor.
"""

import pytest

from crypto.keys import PrivateKey
from relayer.extractor import PROTOCOL_ID, extract_from_transaction, extract_from_witness, scan_block
from scripts.envelope import build_embedding_script
from transactions.transaction import Block, OutPoint, Transaction, TxIn, TxOut


SPENDER = PrivateKey(bytes.fromhex("11" * 32)).x_only


def witness_for(data: bytes):
    return [b'\x01' * 65, build_embedding_script(data, SPENDER), b'\xc0' + b'\x02' * 32]


def tx_with_witness(witness, txid_byte=0x01):
    return Transaction(
        inputs=[TxIn(OutPoint(f"{txid_byte:02x}" * 32, 0), witness=witness)],
        outputs=[TxOut(1_000, b'\x51\x20' + b'\x03' * 32)],
    )


class TestExtractFromWitness:
    """Test witness extraction."""

    def test_tagged_payload(self):
        assert extract_from_witness(witness_for(PROTOCOL_ID + b"hello")) == b"hello"

    def test_empty_payload(self):
        assert extract_from_witness(witness_for(PROTOCOL_ID)) == b''

    def test_other_protocol(self):
        assert extract_from_witness(witness_for(b"zzzz" + b"hello")) is None

    def test_custom_protocol(self):
        assert extract_from_witness(witness_for(b"ord!data"), protocol_id=b"ord!") == b"data"

    def test_partial_tag(self):
        assert extract_from_witness(witness_for(PROTOCOL_ID[:3])) is None

    @pytest.mark.parametrize("witness", [[], [b'\x01' * 64]])
    def test_short_witness(self, witness):
        assert extract_from_witness(witness) is None

    def test_not_an_envelope(self):
        assert extract_from_witness([b'\x01' * 64, b'\x51', b'\xc0' + b'\x02' * 32]) is None


class TestExtractFromTransaction:
    """Test transaction extraction."""

    def test_first_input(self):
        tx = tx_with_witness(witness_for(PROTOCOL_ID + b"payload"))
        assert extract_from_transaction(tx) == b"payload"

    def test_only_first_input_is_read(self):
        tx = tx_with_witness([])
        tx.inputs.append(TxIn(OutPoint("02" * 32, 0), witness=witness_for(PROTOCOL_ID + b"second")))

        assert extract_from_transaction(tx) is None

    def test_no_inputs(self):
        assert extract_from_transaction(Transaction(outputs=[TxOut(1, b'\x51')])) is None


class TestScanBlock:
    """Test block scanning."""

    def test_one_payload_among_unrelated(self):
        block = Block(
            block_hash="00" * 32,
            header=b'\x00' * 80,
            transactions=[
                tx_with_witness([b'\x01' * 64], 0x01),
                tx_with_witness(witness_for(PROTOCOL_ID + b"found"), 0x02),
                tx_with_witness(witness_for(b"xxxx" + b"other"), 0x03),
            ],
        )

        assert list(scan_block(block)) == [b"found"]

    def test_block_order(self):
        block = Block(
            block_hash="00" * 32,
            header=b'\x00' * 80,
            transactions=[
                tx_with_witness(witness_for(PROTOCOL_ID + b"first"), 0x01),
                tx_with_witness(witness_for(PROTOCOL_ID + b"second"), 0x02),
            ],
        )

        assert list(scan_block(block)) == [b"first", b"second"]

    def test_generator_is_lazy(self):
        block = Block(block_hash="00" * 32, header=b'\x00' * 80,
                      transactions=[tx_with_witness(witness_for(PROTOCOL_ID + b"x"))])

        payloads = scan_block(block)

        assert next(payloads) == b"x"
        with pytest.raises(StopIteration):
            next(payloads)
