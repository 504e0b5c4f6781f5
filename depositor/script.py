# Copyright (C) 2024-2026 The bitcoin-depositor developers
#
# This file is part of bitcoin-depositor
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of bitcoin-depositor, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

from __future__ import annotations

import hashlib
import struct
from typing import Any, Iterator, Optional, Union

from depositor.utils import b_to_h, h_to_b, hash160


# Bitcoin's op codes. Complete list at: https://en.bitcoin.it/wiki/Script
OP_CODES = {
    # constants
    "OP_0": b"\x00",
    "OP_FALSE": b"\x00",
    "OP_PUSHDATA1": b"\x4c",
    "OP_PUSHDATA2": b"\x4d",
    "OP_PUSHDATA4": b"\x4e",
    "OP_1NEGATE": b"\x4f",
    "OP_RESERVED": b"\x50",
    "OP_1": b"\x51",
    "OP_TRUE": b"\x51",
    "OP_2": b"\x52",
    "OP_3": b"\x53",
    "OP_4": b"\x54",
    "OP_5": b"\x55",
    "OP_6": b"\x56",
    "OP_7": b"\x57",
    "OP_8": b"\x58",
    "OP_9": b"\x59",
    "OP_10": b"\x5a",
    "OP_11": b"\x5b",
    "OP_12": b"\x5c",
    "OP_13": b"\x5d",
    "OP_14": b"\x5e",
    "OP_15": b"\x5f",
    "OP_16": b"\x60",
    # flow control
    "OP_NOP": b"\x61",
    "OP_VER": b"\x62",
    "OP_IF": b"\x63",
    "OP_NOTIF": b"\x64",
    "OP_VERIF": b"\x65",
    "OP_VERNOTIF": b"\x66",
    "OP_ELSE": b"\x67",
    "OP_ENDIF": b"\x68",
    "OP_VERIFY": b"\x69",
    "OP_RETURN": b"\x6a",
    # stack
    "OP_TOALTSTACK": b"\x6b",
    "OP_FROMALTSTACK": b"\x6c",
    "OP_2DROP": b"\x6d",
    "OP_2DUP": b"\x6e",
    "OP_3DUP": b"\x6f",
    "OP_2OVER": b"\x70",
    "OP_2ROT": b"\x71",
    "OP_2SWAP": b"\x72",
    "OP_IFDUP": b"\x73",
    "OP_DEPTH": b"\x74",
    "OP_DROP": b"\x75",
    "OP_DUP": b"\x76",
    "OP_NIP": b"\x77",
    "OP_OVER": b"\x78",
    "OP_PICK": b"\x79",
    "OP_ROLL": b"\x7a",
    "OP_ROT": b"\x7b",
    "OP_SWAP": b"\x7c",
    "OP_TUCK": b"\x7d",
    # splice (all but OP_SIZE are disabled)
    "OP_CAT": b"\x7e",
    "OP_SUBSTR": b"\x7f",
    "OP_LEFT": b"\x80",
    "OP_RIGHT": b"\x81",
    "OP_SIZE": b"\x82",
    # bitwise logic
    "OP_INVERT": b"\x83",
    "OP_AND": b"\x84",
    "OP_OR": b"\x85",
    "OP_XOR": b"\x86",
    "OP_EQUAL": b"\x87",
    "OP_EQUALVERIFY": b"\x88",
    "OP_RESERVED1": b"\x89",
    "OP_RESERVED2": b"\x8a",
    # arithmetic
    "OP_1ADD": b"\x8b",
    "OP_1SUB": b"\x8c",
    "OP_2MUL": b"\x8d",
    "OP_2DIV": b"\x8e",
    "OP_NEGATE": b"\x8f",
    "OP_ABS": b"\x90",
    "OP_NOT": b"\x91",
    "OP_0NOTEQUAL": b"\x92",
    "OP_ADD": b"\x93",
    "OP_SUB": b"\x94",
    "OP_MUL": b"\x95",
    "OP_DIV": b"\x96",
    "OP_MOD": b"\x97",
    "OP_LSHIFT": b"\x98",
    "OP_RSHIFT": b"\x99",
    "OP_BOOLAND": b"\x9a",
    "OP_BOOLOR": b"\x9b",
    "OP_NUMEQUAL": b"\x9c",
    "OP_NUMEQUALVERIFY": b"\x9d",
    "OP_NUMNOTEQUAL": b"\x9e",
    "OP_LESSTHAN": b"\x9f",
    "OP_GREATERTHAN": b"\xa0",
    "OP_LESSTHANOREQUAL": b"\xa1",
    "OP_GREATERTHANOREQUAL": b"\xa2",
    "OP_MIN": b"\xa3",
    "OP_MAX": b"\xa4",
    "OP_WITHIN": b"\xa5",
    # crypto
    "OP_RIPEMD160": b"\xa6",
    "OP_SHA1": b"\xa7",
    "OP_SHA256": b"\xa8",
    "OP_HASH160": b"\xa9",
    "OP_HASH256": b"\xaa",
    "OP_CODESEPARATOR": b"\xab",
    "OP_CHECKSIG": b"\xac",
    "OP_CHECKSIGVERIFY": b"\xad",
    "OP_CHECKMULTISIG": b"\xae",
    "OP_CHECKMULTISIGVERIFY": b"\xaf",
    # expansion / locktime
    "OP_NOP1": b"\xb0",
    "OP_NOP2": b"\xb1",
    "OP_CHECKLOCKTIMEVERIFY": b"\xb1",
    "OP_NOP3": b"\xb2",
    "OP_CHECKSEQUENCEVERIFY": b"\xb2",
    "OP_NOP4": b"\xb3",
    "OP_NOP5": b"\xb4",
    "OP_NOP6": b"\xb5",
    "OP_NOP7": b"\xb6",
    "OP_NOP8": b"\xb7",
    "OP_NOP9": b"\xb8",
    "OP_NOP10": b"\xb9",
    # tapscript
    "OP_CHECKSIGADD": b"\xba",
}

# aliases that should not be used when naming an opcode byte
_ALIASES = {"OP_FALSE", "OP_TRUE", "OP_NOP2", "OP_NOP3"}

CODE_OPS = {code: name for name, code in OP_CODES.items() if name not in _ALIASES}

# numeric values, used by the interpreter
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_16 = 0x60


def decode_ops(script_bytes: bytes) -> Iterator[tuple[int, Optional[bytes], int]]:
    """Walks a serialized script.

    Yields
    ------
    tuple
        (opcode, pushed data or None, offset just after the operation)

    Raises
    ------
    ValueError
        if a push runs past the end of the script
    """
    i = 0
    n = len(script_bytes)
    while i < n:
        op = script_bytes[i]
        i += 1
        if op > OP_PUSHDATA4:
            yield op, None, i
            continue

        if op < OP_PUSHDATA1:
            size = op
        else:
            width = {OP_PUSHDATA1: 1, OP_PUSHDATA2: 2, OP_PUSHDATA4: 4}[op]
            if i + width > n:
                raise ValueError("Push size runs past end of script")
            size = int.from_bytes(script_bytes[i : i + width], "little")
            i += width

        if i + size > n:
            raise ValueError("Push data runs past end of script")
        yield op, script_bytes[i : i + size], i + size
        i += size


class Script:
    """Represents any script in Bitcoin

    A Script contains a list of OP_CODES and data and knows how to serialize
    into bytes. Scripts imported from raw bytes remember those bytes so that
    non-minimal pushes and trailing garbage are re-serialized unchanged.

    Attributes
    ----------
    script : list
        the list with all the script OP_CODES (str), data (hex str) and
        small integers

    Methods
    -------
    to_bytes()
        returns a serialized byte version of the script
    to_hex()
        returns a serialized version of the script in hex
    to_asm()
        returns the script in the human readable assembly form
    from_raw()
        imports a script from raw bytes or hex (staticmethod)
    copy()
        creates a copy of the object (classmethod)
    to_p2sh_script_pub_key()
        converts script to p2sh scriptPubKey (locking script)
    to_p2wsh_script_pub_key()
        converts script to p2wsh scriptPubKey (locking script)
    is_p2pkh(), is_p2sh(), is_p2wpkh(), is_p2wsh(), is_p2tr()
        check for the standard templates
    witness_program()
        returns (version, program) for segwit scripts
    get_script_type()
        determines the type of script

    Raises
    ------
    ValueError
        If string data is too large or integer is negative
    """

    def __init__(self, script: list[Any]):
        """See Script description"""

        self.script: list[Any] = script
        self._raw: Optional[bytes] = None

    @classmethod
    def copy(cls, script: "Script") -> "Script":
        """Copy of Script (tokens are immutable)"""

        new = cls(list(script.script))
        new._raw = script._raw
        return new

    def _op_push_data(self, data: str) -> bytes:
        """Converts data to appropriate OP_PUSHDATA OP code including length"""

        data_bytes = h_to_b(data)

        if len(data_bytes) < 0x4C:
            return bytes([len(data_bytes)]) + data_bytes
        elif len(data_bytes) <= 0xFF:
            return b"\x4c" + bytes([len(data_bytes)]) + data_bytes
        elif len(data_bytes) <= 0xFFFF:
            return b"\x4d" + struct.pack("<H", len(data_bytes)) + data_bytes
        elif len(data_bytes) <= 0xFFFFFFFF:
            return b"\x4e" + struct.pack("<I", len(data_bytes)) + data_bytes
        else:
            raise ValueError("Data too large. Cannot push into script")

    def _push_integer(self, integer: int) -> bytes:
        """Converts integer to bytes; as signed little-endian integer"""

        if integer < 0:
            raise ValueError("Integer is currently required to be positive.")

        number_of_bytes = (integer.bit_length() + 7) // 8
        integer_bytes = integer.to_bytes(number_of_bytes, byteorder="little")

        # if the last bit is set then we need to add a zero byte
        if integer & (1 << number_of_bytes * 8 - 1):
            integer_bytes += b"\x00"

        return self._op_push_data(b_to_h(integer_bytes))

    def to_bytes(self) -> bytes:
        """Converts the script to bytes"""

        if self._raw is not None:
            return self._raw

        script_bytes = b""
        for token in self.script:
            if isinstance(token, str) and token in OP_CODES:
                script_bytes += OP_CODES[token]
            elif isinstance(token, int) and 0 <= token <= 16:
                script_bytes += OP_CODES["OP_" + str(token)]
            elif isinstance(token, int):
                script_bytes += self._push_integer(token)
            else:
                script_bytes += self._op_push_data(token)

        return script_bytes

    def to_hex(self) -> str:
        """Converts the script to hexadecimal"""
        return b_to_h(self.to_bytes())

    @staticmethod
    def from_raw(scriptrawhex: Union[str, bytes]) -> "Script":
        """Imports a Script from raw hexadecimal data or bytes

        Scripts that end in a truncated push are kept as they are; their
        last token is the marker "[error]".
        """
        if isinstance(scriptrawhex, str):
            scriptraw = h_to_b(scriptrawhex)
        elif isinstance(scriptrawhex, (bytes, bytearray)):
            scriptraw = bytes(scriptrawhex)
        else:
            raise TypeError("Input must be a hexadecimal string or bytes")

        commands: list[Any] = []
        try:
            for op, data, _ in decode_ops(scriptraw):
                if data is not None:
                    commands.append(b_to_h(data))
                else:
                    commands.append(CODE_OPS.get(bytes([op]), f"OP_UNKNOWN_{op:#04x}"))
        except ValueError:
            commands.append("[error]")

        script = Script(commands)
        script._raw = scriptraw
        return script

    @staticmethod
    def from_bytes(b: bytes) -> "Script":
        return Script.from_raw(b)

    def get_script(self) -> list[Any]:
        """Returns script as array of strings"""
        return self.script

    def to_asm(self) -> str:
        """Returns the script in assembly form, data pushes as hex"""

        raw = self.to_bytes()
        parts = []
        try:
            for op, data, _ in decode_ops(raw):
                if data is not None:
                    parts.append(b_to_h(data) if data else "0")
                else:
                    parts.append(CODE_OPS.get(bytes([op]), f"OP_UNKNOWN_{op:#04x}"))
        except ValueError:
            parts.append("[error]")
        return " ".join(parts)

    def to_p2sh_script_pub_key(self) -> "Script":
        """Converts script to p2sh scriptPubKey (locking script)"""

        return Script(["OP_HASH160", b_to_h(hash160(self.to_bytes())), "OP_EQUAL"])

    def to_p2wsh_script_pub_key(self) -> "Script":
        """Converts script to p2wsh scriptPubKey (locking script)"""

        sha256 = hashlib.sha256(self.to_bytes()).digest()
        return Script(["OP_0", b_to_h(sha256)])

    def is_empty(self) -> bool:
        return len(self.to_bytes()) == 0

    def is_p2pkh(self) -> bool:
        """P2PKH format: OP_DUP OP_HASH160 <20-byte-key-hash> OP_EQUALVERIFY OP_CHECKSIG"""

        b = self.to_bytes()
        return (
            len(b) == 25
            and b[0] == 0x76
            and b[1] == 0xA9
            and b[2] == 0x14
            and b[23] == 0x88
            and b[24] == 0xAC
        )

    def is_p2sh(self) -> bool:
        """P2SH format: OP_HASH160 <20-byte-script-hash> OP_EQUAL"""

        b = self.to_bytes()
        return len(b) == 23 and b[0] == 0xA9 and b[1] == 0x14 and b[22] == 0x87

    def witness_program(self) -> Optional[tuple[int, bytes]]:
        """Returns (witness version, program) or None if not a witness program

        A witness program is a version opcode (OP_0 or OP_1..OP_16) followed
        by a single direct push of 2 to 40 bytes.
        """
        b = self.to_bytes()
        if len(b) < 4 or len(b) > 42:
            return None
        if b[0] != OP_0 and not (OP_1 <= b[0] <= OP_16):
            return None
        if b[1] + 2 != len(b):
            return None
        version = 0 if b[0] == OP_0 else b[0] - OP_1 + 1
        return version, b[2:]

    def is_p2wpkh(self) -> bool:
        """P2WPKH format: OP_0 <20-byte-key-hash>"""

        wp = self.witness_program()
        return wp is not None and wp[0] == 0 and len(wp[1]) == 20

    def is_p2wsh(self) -> bool:
        """P2WSH format: OP_0 <32-byte-script-hash>"""

        wp = self.witness_program()
        return wp is not None and wp[0] == 0 and len(wp[1]) == 32

    def is_p2tr(self) -> bool:
        """P2TR format: OP_1 <32-byte-key>"""

        wp = self.witness_program()
        return wp is not None and wp[0] == 1 and len(wp[1]) == 32

    def is_push_only(self) -> bool:
        """True if the script only pushes data (OP_1NEGATE..OP_16 count as pushes)"""

        try:
            return all(op <= OP_16 for op, _, _ in decode_ops(self.to_bytes()))
        except ValueError:
            return False

    def get_script_type(self) -> str:
        """
        Returns one of 'empty', 'p2pkh', 'p2sh', 'p2wpkh', 'p2wsh', 'p2tr',
        'witness_unknown', 'nulldata' or 'nonstandard'
        """
        b = self.to_bytes()
        if not b:
            return "empty"
        if self.is_p2pkh():
            return "p2pkh"
        if self.is_p2sh():
            return "p2sh"
        if self.is_p2wpkh():
            return "p2wpkh"
        if self.is_p2wsh():
            return "p2wsh"
        if self.is_p2tr():
            return "p2tr"
        if self.witness_program() is not None:
            return "witness_unknown"
        if b[0] == 0x6A:
            return "nulldata"
        return "nonstandard"

    def __len__(self) -> int:
        return len(self.to_bytes())

    def __str__(self) -> str:
        return str(self.script)

    def __repr__(self) -> str:
        return f"Script({self.to_asm()!r})"

    def __eq__(self, _other: object) -> bool:
        if not isinstance(_other, Script):
            return False
        return self.to_bytes() == _other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())
