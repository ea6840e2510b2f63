"""
Tests for relayer configuration and key material.
"""

import json

import pytest
import yaml

import relayer.config as config_module
from crypto.keys import NUMS_INTERNAL_KEY, PrivateKey
from relayer.config import KeyMaterial, RelayerConfig, load_config, load_environment, parse_protocol_id
from relayer.exceptions import ConfigurationError
from transactions.sighash import SIGHASH_ALL, SIGHASH_DEFAULT


WIF_ONE = "KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn"
G_X = "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"


@pytest.fixture(autouse=True)
def no_config_search(monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_SEARCH_PATHS", [])


class TestLoadConfig:
    """Test configuration source precedence."""

    def test_defaults(self):
        config = load_config(None, environ={})

        assert config.network == 'regtest'
        assert config.protocol_id == b"bark"
        assert config.commit_amount == 100_000
        assert config.reveal_amount == 1_000
        assert config.sighash_type == SIGHASH_ALL
        assert config.rpc.port == 18443

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "relayer.yml"
        path.write_text(yaml.safe_dump({
            'network': 'signet',
            'protocol_id': 'test',
            'reveal_amount': 2000,
            'keys': {'spender': WIF_ONE},
            'rpc': {'host': 'node', 'username': 'user', 'password': 'pass'},
        }))

        config = load_config(path, environ={})

        assert config.network == 'signet'
        assert config.protocol_id == b"test"
        assert config.reveal_amount == 2000
        assert config.spender_key == WIF_ONE
        assert config.rpc.host == 'node'
        assert config.rpc.port == 38332
        assert config.rpc.network == 'signet'

    def test_json_file(self, tmp_path):
        path = tmp_path / "relayer.json"
        path.write_text(json.dumps({'protocol_id': '0x01020304', 'sighash_type': 0}))

        config = load_config(path, environ={})

        assert config.protocol_id == b'\x01\x02\x03\x04'
        assert config.sighash_type == SIGHASH_DEFAULT

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "relayer.yml"
        path.write_text(yaml.safe_dump({'network': 'signet', 'rpc': {'port': 1}}))

        config = load_config(path, environ={
            'RELAYER_NETWORK': 'testnet',
            'RELAYER_SPENDER_KEY': WIF_ONE,
            'BITCOIN_RPC_PORT': '2',
            'BITCOIN_RPC_WALLET': 'relay',
        })

        assert config.network == 'testnet'
        assert config.spender_key == WIF_ONE
        assert config.rpc.port == 2
        assert config.rpc.wallet == 'relay'

    def test_overrides_win(self):
        config = load_config(
            None,
            overrides={'network': 'bitcoin', 'commit_amount': None},
            environ={'RELAYER_NETWORK': 'testnet'},
        )

        assert config.network == 'bitcoin'
        assert config.commit_amount == 100_000

    def test_environment_mapping(self):
        env = load_environment({'RELAYER_COMMIT_AMOUNT': '0x10', 'RELAYER_INTERNAL_KEY': G_X, 'OTHER': 'x'})

        assert env == {'commit_amount': 16, 'keys': {'internal': G_X}}

    def test_bad_integer(self):
        with pytest.raises(ConfigurationError):
            load_config(None, environ={'RELAYER_REVEAL_AMOUNT': 'lots'})

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "relayer.yml"
        path.write_text("network: [unclosed")

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    def test_file_must_be_mapping(self, tmp_path):
        path = tmp_path / "relayer.yml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    def test_unknown_rpc_option(self, tmp_path):
        path = tmp_path / "relayer.yml"
        path.write_text(yaml.safe_dump({'rpc': {'colour': 'blue'}}))

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})


class TestRelayerConfigValidation:
    """Test value validation."""

    def test_unknown_network(self):
        with pytest.raises(ConfigurationError):
            RelayerConfig(network='moonnet')

    def test_reveal_exceeds_commit(self):
        with pytest.raises(ConfigurationError):
            RelayerConfig(commit_amount=1_000, reveal_amount=2_000)

    def test_invalid_sighash(self):
        with pytest.raises(ConfigurationError):
            RelayerConfig(sighash_type=0x04)

    def test_protocol_id(self):
        assert parse_protocol_id("bark") == b"bark"
        assert parse_protocol_id("0x6261726b") == b"bark"
        with pytest.raises(ConfigurationError):
            parse_protocol_id("")
        with pytest.raises(ConfigurationError):
            parse_protocol_id("0xzz")


class TestKeyMaterial:
    """Test key material parsing."""

    def test_internal_defaults_to_nums_point(self):
        keys = KeyMaterial.from_strings(WIF_ONE)

        assert keys.spender.x_only.hex() == G_X
        assert keys.internal_pubkey == NUMS_INTERNAL_KEY
        assert keys.internal_pubkey != keys.spender_pubkey

    def test_hex_spender(self):
        keys = KeyMaterial.from_strings("00" * 31 + "01")
        assert keys.spender_pubkey.hex() == G_X

    def test_x_only_internal(self):
        internal = PrivateKey(bytes.fromhex("22" * 32))
        keys = KeyMaterial.from_strings(WIF_ONE, internal.x_only.hex())

        assert keys.internal_pubkey == internal.x_only

    def test_compressed_internal(self):
        internal = PrivateKey(bytes.fromhex("22" * 32))
        keys = KeyMaterial.from_strings(WIF_ONE, internal.public_key().hex)

        assert keys.internal_pubkey == internal.x_only

    def test_wif_internal(self):
        keys = KeyMaterial.from_strings("22" * 32, WIF_ONE)
        assert keys.internal_pubkey.hex() == G_X

    def test_from_config_requires_spender(self):
        with pytest.raises(ConfigurationError):
            KeyMaterial.from_config(RelayerConfig())

    def test_from_config_invalid_key(self):
        with pytest.raises(ConfigurationError):
            KeyMaterial.from_config(RelayerConfig(spender_key="not-a-key"))

    def test_internal_not_on_curve(self):
        with pytest.raises(ConfigurationError):
            KeyMaterial.from_config(RelayerConfig(
                spender_key=WIF_ONE,
                internal_key="eefdea4cdb677750a420fee807eacf21eb9898ae79b9768766e4faa04a2d4a34",
            ))

    def test_spender_key_not_in_repr(self):
        assert WIF_ONE not in repr(RelayerConfig(spender_key=WIF_ONE))
