"""
Taproot Relayer - Taproot Address Builder

This module derives the single-leaf Taproot tree that commits to an
embedding script:
- TapLeaf hashing (BIP341 tagged "TapLeaf" hash)
- Output key tweaking of the internal key by the tree's merkle root
- Control block generation and verification for script-path spending
- bech32m (witness v1) address encoding and decoding
"""

import logging
from dataclasses import dataclass
from typing import Union

from bitcoinlib.encoding import (
    EncodingError as BitcoinlibEncodingError,
    addr_bech32_to_pubkeyhash,
    pubkeyhash_to_addr_bech32,
    varstr,
)

from crypto.exceptions import CommitmentError, InvalidKeyError
from crypto.keys import PublicKey, tagged_hash, taproot_output_script, taproot_tweak_pubkey, to_x_only
from transactions.exceptions import InvalidAddressError


logger = logging.getLogger(__name__)

LEAF_VERSION_TAPSCRIPT = 0xc0

# BIP350 checksum constant for witness version 1+ addresses
BECH32M_CONST = 0x2bc830a3

# Control block: 1 byte version/parity + 32 byte internal key + 32 bytes per path node
CONTROL_BLOCK_BASE_SIZE = 33
CONTROL_BLOCK_NODE_SIZE = 32
TAPROOT_CONTROL_MAX_NODE_COUNT = 128

NETWORK_HRP = {
    'bitcoin': 'bc',
    'mainnet': 'bc',
    'testnet': 'tb',
    'testnet4': 'tb',
    'signet': 'tb',
    'regtest': 'bcrt',
}


def network_hrp(network: str) -> str:
    """Return the bech32 human readable part for a network name."""
    try:
        return NETWORK_HRP[network.lower()]
    except KeyError:
        raise InvalidAddressError(f"Unknown network: {network}")


@dataclass(frozen=True)
class TapLeaf:
    """Represents a single leaf in the Taproot script tree."""
    script: bytes
    leaf_version: int = LEAF_VERSION_TAPSCRIPT

    def __post_init__(self):
        """Validate leaf parameters."""
        if not self.script:
            raise CommitmentError("Tap leaf script cannot be empty")
        if not 0 <= self.leaf_version <= 0xff or self.leaf_version & 1 or self.leaf_version == 0x50:
            raise CommitmentError(f"Invalid tap leaf version: {self.leaf_version:#x}")

    def leaf_hash(self) -> bytes:
        """Compute TapLeaf hash for this leaf."""
        return tagged_hash("TapLeaf", bytes([self.leaf_version]) + varstr(self.script))


@dataclass(frozen=True)
class TaprootCommitment:
    """Single-leaf Taproot tree with its output key and control block."""
    internal_pubkey: bytes
    leaf: TapLeaf
    merkle_root: bytes
    output_key: bytes
    output_key_parity: int
    control_block: bytes

    @property
    def script_pubkey(self) -> bytes:
        return taproot_output_script(self.output_key)

    def address(self, network: str = 'regtest') -> str:
        return address_from_output_key(self.output_key, network)


def derive_commitment(embedding_script: bytes, internal_pubkey: Union[bytes, PublicKey],
                      leaf_version: int = LEAF_VERSION_TAPSCRIPT) -> TaprootCommitment:
    """
    Build a single-leaf Taproot tree over embedding_script.

    The merkle root of a one-leaf tree is the leaf hash itself, and the
    control block carries no merkle path.

    Args:
        embedding_script: Script committed to as the only leaf
        internal_pubkey: Internal key (x-only, compressed or PublicKey)
        leaf_version: Tapscript leaf version

    Returns:
        TaprootCommitment for the tree
    """
    try:
        internal_x = to_x_only(internal_pubkey)
    except InvalidKeyError as e:
        raise CommitmentError(f"Invalid internal key: {e}")

    leaf = TapLeaf(embedding_script, leaf_version)
    merkle_root = leaf.leaf_hash()

    try:
        output_key, parity = taproot_tweak_pubkey(internal_x, merkle_root)
    except InvalidKeyError as e:
        raise CommitmentError(f"Failed to finalize tap tree: {e}")

    control_block = bytes([leaf.leaf_version | parity]) + internal_x

    logger.debug(f"Derived taproot output key {output_key.hex()} for leaf {merkle_root.hex()}")

    return TaprootCommitment(
        internal_pubkey=internal_x,
        leaf=leaf,
        merkle_root=merkle_root,
        output_key=output_key,
        output_key_parity=parity,
        control_block=control_block,
    )


def control_block_for(commitment: TaprootCommitment, script: bytes,
                      leaf_version: int = LEAF_VERSION_TAPSCRIPT) -> bytes:
    """
    Return the control block proving script is the committed leaf.

    Args:
        commitment: Commitment built by derive_commitment
        script: Leaf script to prove
        leaf_version: Leaf version of script

    Returns:
        Control block bytes
    """
    if script != commitment.leaf.script or leaf_version != commitment.leaf.leaf_version:
        raise CommitmentError("Script is not a leaf of this taproot tree")
    return commitment.control_block


def verify_control_block(control_block: bytes, script: bytes, output_key: bytes) -> bool:
    """
    Check that control_block proves script is committed to by output_key.

    Args:
        control_block: Control block from the witness
        script: Leaf script from the witness
        output_key: 32-byte x-only key of the spent output

    Returns:
        True if the commitment is valid
    """
    size = len(control_block)
    if size < CONTROL_BLOCK_BASE_SIZE or (size - CONTROL_BLOCK_BASE_SIZE) % CONTROL_BLOCK_NODE_SIZE:
        return False
    if (size - CONTROL_BLOCK_BASE_SIZE) // CONTROL_BLOCK_NODE_SIZE > TAPROOT_CONTROL_MAX_NODE_COUNT:
        return False

    leaf_version = control_block[0] & 0xfe
    parity = control_block[0] & 1
    internal_x = control_block[1:CONTROL_BLOCK_BASE_SIZE]

    try:
        node = TapLeaf(script, leaf_version).leaf_hash()
        for offset in range(CONTROL_BLOCK_BASE_SIZE, size, CONTROL_BLOCK_NODE_SIZE):
            sibling = control_block[offset:offset + CONTROL_BLOCK_NODE_SIZE]
            node = tagged_hash("TapBranch", min(node, sibling) + max(node, sibling))
        expected_key, expected_parity = taproot_tweak_pubkey(internal_x, node)
    except (CommitmentError, InvalidKeyError):
        return False

    return expected_key == output_key and expected_parity == parity


def p2tr_script_pubkey(output_key: bytes) -> bytes:
    """Create the OP_1 <32-byte key> output script for a Taproot output key."""
    return taproot_output_script(output_key)


def address_from_output_key(output_key: bytes, network: str = 'regtest') -> str:
    """
    Encode a Taproot output key as a bech32m address.

    Args:
        output_key: 32-byte x-only output key
        network: Network name (bitcoin, testnet, signet, regtest)

    Returns:
        Witness v1 address string
    """
    if not isinstance(output_key, bytes) or len(output_key) != 32:
        raise InvalidKeyError("Taproot output key must be 32 bytes")

    return pubkeyhash_to_addr_bech32(
        output_key,
        prefix=network_hrp(network),
        witver=1,
        checksum_xor=BECH32M_CONST,
    )


def script_pubkey_from_address(address: str, network: str = 'regtest') -> bytes:
    """
    Decode a segwit address of the given network to its output script.

    Args:
        address: bech32/bech32m address
        network: Expected network name

    Returns:
        scriptPubKey bytes (witness version opcode + program push)
    """
    if not isinstance(address, str) or not address:
        raise InvalidAddressError("Address must be a non-empty string")

    try:
        return addr_bech32_to_pubkeyhash(address, prefix=network_hrp(network), include_witver=True)
    except (BitcoinlibEncodingError, ValueError, TypeError) as e:
        raise InvalidAddressError(f"Invalid address {address}: {e}")


def is_p2tr_script(script_pubkey: bytes) -> bool:
    return len(script_pubkey) == 34 and script_pubkey[0] == 0x51 and script_pubkey[1] == 0x20
