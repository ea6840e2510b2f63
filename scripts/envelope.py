"""
Taproot Relayer - Embedding Script Codec

This module builds and parses the data envelope committed to by the reveal
leaf:

    OP_FALSE OP_IF <chunk_1> ... <chunk_n> OP_ENDIF <x-only pubkey> OP_CHECKSIG

The OP_FALSE OP_IF ... OP_ENDIF branch is never executed, so the pushes cost
nothing during validation, yet they are part of the leaf hash and appear in
cleartext in the witness once the output is spent.
"""

import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from crypto.exceptions import InvalidKeyError
from crypto.keys import PublicKey, to_x_only
from .opcodes import ScriptOpcode, opcode_name


# Consensus limit for a single stack element / push
MAX_SCRIPT_ELEMENT_SIZE = 520

# Largest number of data pushes accepted inside the envelope
MAX_ENVELOPE_PUSHES = 10


class EncodingError(ValueError):
    """Raised when data can not be encoded into an embedding script."""
    pass


@dataclass(frozen=True)
class ScriptToken:
    """A single opcode of a parsed script, with its push data if any."""
    opcode: int
    data: Optional[bytes] = None

    @property
    def is_push_data(self) -> bool:
        # OP_0 pushes an empty vector but is matched as the OP_FALSE opcode
        return ScriptOpcode.OP_0 < self.opcode <= ScriptOpcode.OP_PUSHDATA4

    def to_asm(self) -> str:
        if self.is_push_data:
            return self.data.hex()
        return opcode_name(self.opcode)


@dataclass(frozen=True)
class TemplateEntry:
    """One position of a script template."""
    opcode: Optional[int] = None
    expect_push_data: bool = False
    max_push_datas: int = 0
    extract: bool = False


ENVELOPE_TEMPLATE = (
    TemplateEntry(opcode=ScriptOpcode.OP_FALSE),
    TemplateEntry(opcode=ScriptOpcode.OP_IF),
    TemplateEntry(expect_push_data=True, max_push_datas=MAX_ENVELOPE_PUSHES, extract=True),
    TemplateEntry(opcode=ScriptOpcode.OP_ENDIF),
    TemplateEntry(expect_push_data=True, max_push_datas=1),
    TemplateEntry(opcode=ScriptOpcode.OP_CHECKSIG),
)


def chunk_payload(data: bytes, chunk_size: int = MAX_SCRIPT_ELEMENT_SIZE) -> List[bytes]:
    """
    Split data into consecutive chunks of at most chunk_size bytes.

    Args:
        data: Bytes to split
        chunk_size: Maximum chunk length

    Returns:
        List of chunks; empty for empty input
    """
    if chunk_size <= 0:
        raise EncodingError("Chunk size must be positive")
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]


def push_data(data: bytes) -> bytes:
    """
    Encode a minimal data push.

    Args:
        data: Bytes to push (at most 520)

    Returns:
        Push opcode(s) followed by the data
    """
    length = len(data)
    if length > MAX_SCRIPT_ELEMENT_SIZE:
        raise EncodingError(f"Push of {length} bytes exceeds {MAX_SCRIPT_ELEMENT_SIZE}-byte limit")

    if length <= 75:
        return bytes([length]) + data
    elif length <= 0xff:
        return bytes([ScriptOpcode.OP_PUSHDATA1, length]) + data
    else:
        return bytes([ScriptOpcode.OP_PUSHDATA2]) + struct.pack('<H', length) + data


def build_embedding_script(payload: bytes, spender_pubkey: Union[bytes, PublicKey]) -> bytes:
    """
    Build the envelope script committing to payload.

    Args:
        payload: Tagged payload bytes to embed
        spender_pubkey: Key whose signature satisfies the script (x-only,
            compressed or PublicKey)

    Returns:
        Serialized embedding script
    """
    try:
        x_only = to_x_only(spender_pubkey)
    except InvalidKeyError as e:
        raise EncodingError(f"Invalid spender public key: {e}")

    script_parts = [bytes([ScriptOpcode.OP_FALSE, ScriptOpcode.OP_IF])]
    for chunk in chunk_payload(payload):
        script_parts.append(push_data(chunk))
    script_parts.append(bytes([ScriptOpcode.OP_ENDIF]))
    script_parts.append(push_data(x_only))
    script_parts.append(bytes([ScriptOpcode.OP_CHECKSIG]))

    return b''.join(script_parts)


def parse_script(script: bytes) -> Optional[List[ScriptToken]]:
    """
    Tokenize a script.

    Args:
        script: Raw script bytes

    Returns:
        List of tokens, or None when a push runs past the end of the script
    """
    tokens = []
    pc = 0

    while pc < len(script):
        opcode = script[pc]
        pc += 1

        if ScriptOpcode.OP_0 < opcode < ScriptOpcode.OP_PUSHDATA1:
            data_len = opcode
        elif opcode == ScriptOpcode.OP_PUSHDATA1:
            if pc + 1 > len(script):
                return None
            data_len = script[pc]
            pc += 1
        elif opcode == ScriptOpcode.OP_PUSHDATA2:
            if pc + 2 > len(script):
                return None
            data_len = struct.unpack('<H', script[pc:pc + 2])[0]
            pc += 2
        elif opcode == ScriptOpcode.OP_PUSHDATA4:
            if pc + 4 > len(script):
                return None
            data_len = struct.unpack('<I', script[pc:pc + 4])[0]
            pc += 4
        else:
            tokens.append(ScriptToken(opcode))
            continue

        if pc + data_len > len(script):
            return None
        tokens.append(ScriptToken(opcode, script[pc:pc + data_len]))
        pc += data_len

    return tokens


def script_to_asm(script: bytes) -> str:
    """Convert script bytes to an assembly string."""
    tokens = parse_script(script)
    if tokens is None:
        return "[error]"
    return " ".join(token.to_asm() for token in tokens)


def _match_template(tokens: Sequence[ScriptToken], template: Sequence[TemplateEntry]) -> Optional[bytes]:
    extracted = []
    pos = 0

    for entry in template:
        if entry.expect_push_data:
            count = 0
            while (pos < len(tokens) and tokens[pos].is_push_data
                   and count < entry.max_push_datas):
                if entry.extract:
                    extracted.append(tokens[pos].data)
                pos += 1
                count += 1
            if count == 0:
                return None
        else:
            if pos >= len(tokens):
                return None
            token = tokens[pos]
            if token.is_push_data or token.opcode != entry.opcode:
                return None
            pos += 1

    if pos != len(tokens):
        return None

    return b''.join(extracted)


def match_embedding_template(script: bytes) -> Optional[bytes]:
    """
    Match a script against the envelope template.

    Only the exact shape OP_FALSE OP_IF <1..10 pushes> OP_ENDIF <push>
    OP_CHECKSIG matches. Anything else, including malformed scripts, is
    reported as no match rather than an error.

    Args:
        script: Candidate script bytes

    Returns:
        Concatenated envelope pushes, or None if the script does not match
    """
    if not isinstance(script, (bytes, bytearray)):
        return None

    tokens = parse_script(bytes(script))
    if tokens is None:
        return None

    return _match_template(tokens, ENVELOPE_TEMPLATE)


def max_payload_size(tag_length: int) -> int:
    """Largest payload (excluding tag) that still fits the envelope template."""
    return MAX_ENVELOPE_PUSHES * MAX_SCRIPT_ELEMENT_SIZE - tag_length
