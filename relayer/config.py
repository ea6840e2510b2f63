"""
Taproot Relayer - Configuration

Hierarchical configuration for the relayer. Sources in order of precedence
(highest first):

1. Explicit overrides (command line options)
2. Environment variables (RELAYER_* and BITCOIN_RPC_*)
3. Configuration file (YAML or JSON)
4. Defaults

Keys are always supplied through configuration; none are embedded in code.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml

from crypto.exceptions import InvalidKeyError
from crypto.keys import NUMS_INTERNAL_KEY, PrivateKey, PublicKey, to_x_only
from network.rpc import DEFAULT_PORTS, RPCConfig
from scripts.taproot import NETWORK_HRP
from transactions.commit_reveal import COMMIT_AMOUNT, REVEAL_AMOUNT
from transactions.sighash import SIGHASH_ALL, VALID_SIGHASH_TYPES
from .exceptions import ConfigurationError
from .extractor import PROTOCOL_ID


logger = logging.getLogger(__name__)

ENV_PREFIX = 'RELAYER_'
RPC_ENV_PREFIX = 'BITCOIN_RPC_'

MISSING_SPENDER_KEY = "No spender key configured (set keys.spender or RELAYER_SPENDER_KEY)"

# Config file locations searched when no file is given explicitly
CONFIG_SEARCH_PATHS = [
    Path.cwd() / 'relayer.yml',
    Path.cwd() / 'relayer.yaml',
    Path.cwd() / 'relayer.json',
    Path.home() / '.relayer' / 'config.yml',
    Path.home() / '.relayer' / 'config.json',
]

DEFAULT_CONFIG = {
    'network': 'regtest',
    'protocol_id': PROTOCOL_ID.decode('ascii'),
    'commit_amount': COMMIT_AMOUNT,
    'reveal_amount': REVEAL_AMOUNT,
    'sighash_type': SIGHASH_ALL,
    'keys': {
        'spender': None,
        'internal': None,
    },
    'rpc': {},
}

# Environment variable -> config path
ENV_MAPPING = {
    'NETWORK': ('network',),
    'PROTOCOL_ID': ('protocol_id',),
    'COMMIT_AMOUNT': ('commit_amount',),
    'REVEAL_AMOUNT': ('reveal_amount',),
    'SIGHASH_TYPE': ('sighash_type',),
    'SPENDER_KEY': ('keys', 'spender'),
    'INTERNAL_KEY': ('keys', 'internal'),
}

RPC_ENV_MAPPING = {
    'HOST': 'host',
    'PORT': 'port',
    'USER': 'username',
    'PASSWORD': 'password',
    'COOKIE_FILE': 'cookie_file',
    'WALLET': 'wallet',
    'TIMEOUT': 'timeout',
    'MAX_RETRIES': 'max_retries',
}

INT_FIELDS = {'commit_amount', 'reveal_amount', 'sighash_type', 'port', 'timeout', 'max_retries'}


def parse_protocol_id(value: Union[str, bytes]) -> bytes:
    """
    Convert a configured protocol id to bytes.

    Values starting with 0x are hex, anything else is taken as ASCII text.
    """
    if isinstance(value, bytes):
        protocol_id = value
    elif value.startswith('0x'):
        try:
            protocol_id = bytes.fromhex(value[2:])
        except ValueError as e:
            raise ConfigurationError(f"Invalid hex protocol id {value}: {e}")
    else:
        try:
            protocol_id = value.encode('ascii')
        except UnicodeEncodeError as e:
            raise ConfigurationError(f"Protocol id must be ASCII: {e}")

    if not protocol_id:
        raise ConfigurationError("Protocol id can not be empty")
    return protocol_id


@dataclass
class RelayerConfig:
    """Resolved relayer configuration."""
    network: str = 'regtest'
    protocol_id: bytes = PROTOCOL_ID
    commit_amount: int = COMMIT_AMOUNT
    reveal_amount: int = REVEAL_AMOUNT
    sighash_type: int = SIGHASH_ALL
    spender_key: Optional[str] = field(default=None, repr=False)
    internal_key: Optional[str] = None
    rpc: RPCConfig = field(default_factory=RPCConfig)

    def __post_init__(self):
        """Validate configuration values."""
        if self.network not in NETWORK_HRP:
            raise ConfigurationError(f"Unknown network: {self.network}")
        if self.commit_amount <= 0 or self.reveal_amount <= 0:
            raise ConfigurationError("Commit and reveal amounts must be positive")
        if self.reveal_amount > self.commit_amount:
            raise ConfigurationError("Reveal amount can not exceed the commit amount")
        if self.sighash_type not in VALID_SIGHASH_TYPES:
            raise ConfigurationError(f"Invalid sighash type: {self.sighash_type:#x}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'RelayerConfig':
        """Build a config from a merged configuration dictionary."""
        network = data.get('network', 'regtest')
        keys = data.get('keys') or {}

        rpc_data = dict(data.get('rpc') or {})
        rpc_data.setdefault('port', DEFAULT_PORTS.get(network, 18443))
        rpc_data['network'] = network
        try:
            rpc = RPCConfig(**rpc_data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid rpc configuration: {e}")

        try:
            return cls(
                network=network,
                protocol_id=parse_protocol_id(data.get('protocol_id', PROTOCOL_ID)),
                commit_amount=int(data.get('commit_amount', COMMIT_AMOUNT)),
                reveal_amount=int(data.get('reveal_amount', REVEAL_AMOUNT)),
                sighash_type=int(data.get('sighash_type', SIGHASH_ALL)),
                spender_key=keys.get('spender'),
                internal_key=keys.get('internal'),
                rpc=rpc,
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration value: {e}")


def _deep_merge(*dicts: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep merge multiple dictionaries; later ones win."""
    result = {}

    for dictionary in dicts:
        for key, value in dictionary.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = _deep_merge(result[key], value)
            else:
                result[key] = value

    return result


def _coerce(key: str, value: str) -> Union[str, int]:
    if key in INT_FIELDS:
        try:
            return int(value, 0)
        except ValueError:
            raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    return value


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML or JSON configuration file.

    Args:
        path: File path; .json files are parsed as JSON, anything else as YAML

    Returns:
        Configuration dictionary
    """
    path = Path(path).expanduser()
    try:
        with open(path, 'r') as f:
            if path.suffix == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}")
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to parse config file {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    logger.debug(f"Loaded config from {path}")
    return data


def load_environment(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect RELAYER_* and BITCOIN_RPC_* variables into a config dictionary."""
    environ = os.environ if environ is None else environ
    env_config: Dict[str, Any] = {}

    for name, path in ENV_MAPPING.items():
        value = environ.get(ENV_PREFIX + name)
        if value is None:
            continue
        current = env_config
        for part in path[:-1]:
            current = current.setdefault(part, {})
        current[path[-1]] = _coerce(path[-1], value)

    for name, key in RPC_ENV_MAPPING.items():
        value = environ.get(RPC_ENV_PREFIX + name)
        if value is not None:
            env_config.setdefault('rpc', {})[key] = _coerce(key, value)

    return env_config


def load_config(config_file: Optional[Union[str, Path]] = None,
                overrides: Optional[Mapping[str, Any]] = None,
                environ: Optional[Mapping[str, str]] = None) -> RelayerConfig:
    """
    Resolve configuration from all sources.

    Args:
        config_file: Explicit config file; the search paths are used when None
        overrides: Highest precedence values, in config file structure
        environ: Environment to read (os.environ by default)

    Returns:
        RelayerConfig
    """
    configs = [DEFAULT_CONFIG]

    if config_file:
        configs.append(load_config_file(config_file))
    else:
        for path in CONFIG_SEARCH_PATHS:
            if path.exists():
                configs.append(load_config_file(path))
                break

    configs.append(load_environment(environ))

    if overrides:
        configs.append({key: value for key, value in overrides.items() if value is not None})

    return RelayerConfig.from_dict(_deep_merge(*configs))


def _parse_private_key(value: str) -> PrivateKey:
    value = value.strip()
    if len(value) == 64:
        return PrivateKey.from_hex(value)
    return PrivateKey.from_wif(value)


def _parse_internal_key(value: str) -> bytes:
    value = value.strip()
    if len(value) in (64, 66):
        try:
            key_bytes = bytes.fromhex(value)
        except ValueError as e:
            raise InvalidKeyError(f"Invalid internal public key hex: {e}")
        x_only = to_x_only(key_bytes)
        # Reject x coordinates that are not on the curve
        PublicKey.from_x_only(x_only)
        return x_only
    return PrivateKey.from_wif(value).x_only


@dataclass(frozen=True)
class KeyMaterial:
    """
    Keys used to write payloads.

    Attributes:
        spender: Key that signs the reveal; its x-only key is committed in
            the embedding script
        internal_pubkey: 32-byte x-only Taproot internal key of the commitment
    """
    spender: PrivateKey
    internal_pubkey: bytes

    def __post_init__(self):
        if len(self.internal_pubkey) != 32:
            raise InvalidKeyError("Internal public key must be 32-byte x-only")

    @property
    def spender_pubkey(self) -> bytes:
        return self.spender.x_only

    @classmethod
    def from_strings(cls, spender_key: str, internal_key: Optional[str] = None) -> 'KeyMaterial':
        """
        Build key material from configured strings.

        Args:
            spender_key: WIF or 64-character hex private key
            internal_key: WIF private key or hex public key (x-only or
                compressed). Defaults to NUMS_INTERNAL_KEY, leaving the
                commitment output without a key path.

        Returns:
            KeyMaterial
        """
        spender = _parse_private_key(spender_key)
        if internal_key:
            internal_pubkey = _parse_internal_key(internal_key)
        else:
            internal_pubkey = NUMS_INTERNAL_KEY
        return cls(spender=spender, internal_pubkey=internal_pubkey)

    @classmethod
    def from_config(cls, config: RelayerConfig) -> 'KeyMaterial':
        if not config.spender_key:
            raise ConfigurationError(MISSING_SPENDER_KEY)
        try:
            return cls.from_strings(config.spender_key, config.internal_key)
        except InvalidKeyError as e:
            raise ConfigurationError(f"Invalid key configuration: {e}")
