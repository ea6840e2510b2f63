"""
Taproot Relayer - Script Opcodes

Bitcoin Script opcode values used by the embedding envelope, output scripts
and the script tokenizer.
"""

from typing import Dict


class ScriptOpcode:
    """Bitcoin Script opcodes used in envelope construction."""

    # Constants
    OP_0 = 0x00
    OP_FALSE = OP_0
    OP_PUSHDATA1 = 0x4c
    OP_PUSHDATA2 = 0x4d
    OP_PUSHDATA4 = 0x4e
    OP_1NEGATE = 0x4f
    OP_1 = 0x51
    OP_TRUE = OP_1
    OP_16 = 0x60

    # Flow control
    OP_NOP = 0x61
    OP_IF = 0x63
    OP_NOTIF = 0x64
    OP_ELSE = 0x67
    OP_ENDIF = 0x68
    OP_VERIFY = 0x69
    OP_RETURN = 0x6a

    # Stack operations
    OP_DROP = 0x75
    OP_DUP = 0x76

    # Bitwise logic
    OP_EQUAL = 0x87
    OP_EQUALVERIFY = 0x88

    # Crypto
    OP_SHA256 = 0xa8
    OP_HASH160 = 0xa9
    OP_CODESEPARATOR = 0xab
    OP_CHECKSIG = 0xac
    OP_CHECKSIGVERIFY = 0xad
    OP_CHECKSIGADD = 0xba


def _build_opcode_names() -> Dict[int, str]:
    names = {}
    for attr in dir(ScriptOpcode):
        if attr.startswith('OP_'):
            value = getattr(ScriptOpcode, attr)
            # dir() is sorted, so OP_0/OP_1 win over OP_FALSE/OP_TRUE
            if isinstance(value, int) and value not in names:
                names[value] = attr
    return names


OPCODE_NAMES = _build_opcode_names()


def opcode_name(opcode: int) -> str:
    """Return the mnemonic for an opcode, or OP_UNKNOWN_xx."""
    return OPCODE_NAMES.get(opcode, f"OP_UNKNOWN_{opcode:02x}")
