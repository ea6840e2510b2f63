"""
Unit tests for the Bitcoin Core ledger service using a mocked RPC client.
"""

import unittest
from unittest.mock import MagicMock

from network.ledger import BitcoinCoreLedger
from network.rpc import RPCError
from transactions.exceptions import (
    AmountError,
    BlockNotFoundError,
    BroadcastError,
    InvalidAddressError,
    TransactionNotFoundError,
)
from transactions.transaction import Transaction


GENESIS_TX_HEX = (
    "01000000010000000000000000000000000000000000000000000000000000000000000000ffffffff"
    "4d04ffff001d0104455468652054696d65732030332f4a616e2f32303039204368616e63656c6c6f72"
    "206f6e206272696e6b206f66207365636f6e64206261696c6f757420666f722062616e6b73ffffffff"
    "0100f2052a01000000434104678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f"
    "61deb649f6bc3f4cef38c4f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5fac00000000"
)
GENESIS_TXID = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"
GENESIS_HEADER_HEX = (
    "0100000000000000000000000000000000000000000000000000000000000000000000003ba3edfd"
    "7a7b12b27ac72c3e67768f617fc81bc3888a51323a9fb8aa4b1e5e4a29ab5f49ffff001d1dac2b7c"
)
GENESIS_HASH = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"


class TestBitcoinCoreLedger(unittest.TestCase):
    """Test RPC calls and error translation."""

    def setUp(self):
        self.client = MagicMock()
        self.ledger = BitcoinCoreLedger(client=self.client)

    def test_send_funds_converts_to_btc(self):
        self.client.sendtoaddress.return_value = "aa" * 32

        txid = self.ledger.send_funds("bcrt1pexample", 100_000)

        self.assertEqual(txid, "aa" * 32)
        self.client.sendtoaddress.assert_called_once_with("bcrt1pexample", 0.001)

    def test_send_funds_invalid_address(self):
        self.client.sendtoaddress.side_effect = RPCError(-5, "Invalid address")

        with self.assertRaises(InvalidAddressError):
            self.ledger.send_funds("nonsense", 100_000)

    def test_send_funds_insufficient_funds(self):
        self.client.sendtoaddress.side_effect = RPCError(-6, "Insufficient funds")

        with self.assertRaises(AmountError) as context:
            self.ledger.send_funds("bcrt1pexample", 100_000)

        self.assertEqual(context.exception.required, 100_000)

    def test_send_funds_other_failure(self):
        self.client.sendtoaddress.side_effect = RPCError(-4, "Wallet error")

        with self.assertRaises(BroadcastError):
            self.ledger.send_funds("bcrt1pexample", 100_000)

    def test_get_transaction(self):
        self.client.getrawtransaction.return_value = GENESIS_TX_HEX

        tx = self.ledger.get_transaction(GENESIS_TXID)

        self.assertEqual(tx.txid(), GENESIS_TXID)
        self.client.getrawtransaction.assert_called_once_with(GENESIS_TXID, False)

    def test_get_transaction_not_found(self):
        self.client.getrawtransaction.side_effect = RPCError(-5, "No such mempool or blockchain transaction")

        with self.assertRaises(TransactionNotFoundError):
            self.ledger.get_transaction("ff" * 32)

    def test_get_transaction_undecodable(self):
        self.client.getrawtransaction.return_value = "0100"

        with self.assertRaises(TransactionNotFoundError):
            self.ledger.get_transaction("ff" * 32)

    def test_get_block(self):
        self.client.getblockhash.return_value = GENESIS_HASH
        self.client.getblock.return_value = GENESIS_HEADER_HEX + "01" + GENESIS_TX_HEX

        block = self.ledger.get_block(self.ledger.get_block_hash(0))

        self.assertEqual(block.block_hash, GENESIS_HASH)
        self.assertEqual([tx.txid() for tx in block.transactions], [GENESIS_TXID])
        self.client.getblock.assert_called_once_with(GENESIS_HASH, 0)

    def test_block_height_out_of_range(self):
        self.client.getblockhash.side_effect = RPCError(-8, "Block height out of range")

        with self.assertRaises(BlockNotFoundError):
            self.ledger.get_block_hash(10_000_000)

    def test_get_block_not_found(self):
        self.client.getblock.side_effect = RPCError(-5, "Block not found")

        with self.assertRaises(BlockNotFoundError):
            self.ledger.get_block("00" * 32)

    def test_broadcast_transaction(self):
        tx = Transaction.from_hex(GENESIS_TX_HEX)
        self.client.sendrawtransaction.return_value = GENESIS_TXID

        self.assertEqual(self.ledger.broadcast_transaction(tx), GENESIS_TXID)
        self.client.sendrawtransaction.assert_called_once_with(GENESIS_TX_HEX)

    def test_broadcast_rejected(self):
        self.client.sendrawtransaction.side_effect = RPCError(-26, "non-mandatory-script-verify-flag")

        with self.assertRaises(BroadcastError):
            self.ledger.broadcast_transaction(Transaction.from_hex(GENESIS_TX_HEX))

    def test_broadcast_already_confirmed(self):
        self.client.sendrawtransaction.side_effect = RPCError(-27, "Transaction already in block chain")

        self.assertEqual(self.ledger.broadcast_transaction(Transaction.from_hex(GENESIS_TX_HEX)), GENESIS_TXID)

    def test_broadcast_connection_failure(self):
        self.client.sendrawtransaction.side_effect = RPCError(-1, "Connection error")

        with self.assertRaises(BroadcastError):
            self.ledger.broadcast_transaction(Transaction.from_hex(GENESIS_TX_HEX))

    def test_close_logs_statistics(self):
        self.client.get_stats.return_value = {"methods": {"getblockhash": {"calls": 3}}}

        with self.assertLogs("network.ledger", level="DEBUG") as logs:
            self.ledger.close()

        self.assertIn("getblockhash", logs.output[0])
        self.client.close.assert_called_once()

    def test_close_and_context_manager(self):
        with self.ledger as ledger:
            self.assertIs(ledger, self.ledger)

        self.client.close.assert_called_once()


if __name__ == '__main__':
    unittest.main()
