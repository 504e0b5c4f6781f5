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

"""Bitcoin script interpreter.

Executes legacy, P2SH, segwit v0 and taproot (key path and tapscript)
spends under the consensus rules: P2SH, DERSIG (BIP-66),
CHECKLOCKTIMEVERIFY (BIP-65), CHECKSEQUENCEVERIFY (BIP-112), WITNESS
(BIP-141/143), NULLDUMMY (BIP-147) and TAPROOT (BIP-341/342). Policy-only
rules (low S, minimal pushes, clean stack, ...) are not enforced.
"""

from __future__ import annotations

import hashlib
from typing import Optional

import coincurve  # type: ignore

from depositor.constants import (
    ANNEX_TAG,
    LEAF_VERSION_TAPSCRIPT,
    LOCKTIME_THRESHOLD,
    MAX_OPS_PER_SCRIPT,
    MAX_PUBKEYS_PER_MULTISIG,
    MAX_SCRIPT_ELEMENT_SIZE,
    MAX_SCRIPT_SIZE,
    MAX_STACK_SIZE,
    SEQUENCE_FINAL,
    SEQUENCE_LOCKTIME_DISABLE_FLAG,
    SEQUENCE_LOCKTIME_MASK,
    SEQUENCE_LOCKTIME_TYPE_FLAG,
    TAPROOT_CONTROL_BASE_SIZE,
    TAPROOT_CONTROL_MAX_NODE_COUNT,
    TAPROOT_CONTROL_NODE_SIZE,
    TAPROOT_LEAF_MASK,
    VALIDATION_WEIGHT_OFFSET,
    VALIDATION_WEIGHT_PER_SIGOP_PASSED,
)
from depositor.script import (
    OP_1,
    OP_16,
    OP_PUSHDATA1,
    OP_PUSHDATA2,
    OP_PUSHDATA4,
    Script,
    decode_ops,
)
from depositor.transactions import Transaction, TxOutput
from depositor.utils import (
    Secp256k1Params,
    calculate_tweak,
    encode_varint,
    hash160,
    hash256,
    prepend_compact_size,
    tapbranch_tagged_hash,
    tapleaf_tagged_hash,
    tweak_taproot_pubkey,
)
from depositor.ripemd160 import ripemd160


# verification flags
VERIFY_NONE = 0
VERIFY_P2SH = 1 << 0
VERIFY_DERSIG = 1 << 2
VERIFY_NULLDUMMY = 1 << 4
VERIFY_CHECKLOCKTIMEVERIFY = 1 << 9
VERIFY_CHECKSEQUENCEVERIFY = 1 << 10
VERIFY_WITNESS = 1 << 11
VERIFY_TAPROOT = 1 << 17

CONSENSUS_FLAGS = (
    VERIFY_P2SH
    | VERIFY_DERSIG
    | VERIFY_NULLDUMMY
    | VERIFY_CHECKLOCKTIMEVERIFY
    | VERIFY_CHECKSEQUENCEVERIFY
    | VERIFY_WITNESS
    | VERIFY_TAPROOT
)

# signature versions
SIGVERSION_BASE = "base"
SIGVERSION_WITNESS_V0 = "witness_v0"
SIGVERSION_TAPROOT = "taproot"
SIGVERSION_TAPSCRIPT = "tapscript"

# opcodes
OP_0 = 0x00
OP_1NEGATE = 0x4F
OP_NOP = 0x61
OP_IF = 0x63
OP_NOTIF = 0x64
OP_VERIF = 0x65
OP_VERNOTIF = 0x66
OP_ELSE = 0x67
OP_ENDIF = 0x68
OP_VERIFY = 0x69
OP_RETURN = 0x6A
OP_TOALTSTACK = 0x6B
OP_FROMALTSTACK = 0x6C
OP_2DROP = 0x6D
OP_2DUP = 0x6E
OP_3DUP = 0x6F
OP_2OVER = 0x70
OP_2ROT = 0x71
OP_2SWAP = 0x72
OP_IFDUP = 0x73
OP_DEPTH = 0x74
OP_DROP = 0x75
OP_DUP = 0x76
OP_NIP = 0x77
OP_OVER = 0x78
OP_PICK = 0x79
OP_ROLL = 0x7A
OP_ROT = 0x7B
OP_SWAP = 0x7C
OP_TUCK = 0x7D
OP_SIZE = 0x82
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_1ADD = 0x8B
OP_1SUB = 0x8C
OP_NEGATE = 0x8F
OP_ABS = 0x90
OP_NOT = 0x91
OP_0NOTEQUAL = 0x92
OP_ADD = 0x93
OP_SUB = 0x94
OP_BOOLAND = 0x9A
OP_BOOLOR = 0x9B
OP_NUMEQUAL = 0x9C
OP_NUMEQUALVERIFY = 0x9D
OP_NUMNOTEQUAL = 0x9E
OP_LESSTHAN = 0x9F
OP_GREATERTHAN = 0xA0
OP_LESSTHANOREQUAL = 0xA1
OP_GREATERTHANOREQUAL = 0xA2
OP_MIN = 0xA3
OP_MAX = 0xA4
OP_WITHIN = 0xA5
OP_RIPEMD160 = 0xA6
OP_SHA1 = 0xA7
OP_SHA256 = 0xA8
OP_HASH160 = 0xA9
OP_HASH256 = 0xAA
OP_CODESEPARATOR = 0xAB
OP_CHECKSIG = 0xAC
OP_CHECKSIGVERIFY = 0xAD
OP_CHECKMULTISIG = 0xAE
OP_CHECKMULTISIGVERIFY = 0xAF
OP_NOP1 = 0xB0
OP_CHECKLOCKTIMEVERIFY = 0xB1
OP_CHECKSEQUENCEVERIFY = 0xB2
OP_NOP4 = 0xB3
OP_NOP10 = 0xB9
OP_CHECKSIGADD = 0xBA

DISABLED_OPCODES = frozenset(
    [
        0x7E,  # OP_CAT
        0x7F,  # OP_SUBSTR
        0x80,  # OP_LEFT
        0x81,  # OP_RIGHT
        0x83,  # OP_INVERT
        0x84,  # OP_AND
        0x85,  # OP_OR
        0x86,  # OP_XOR
        0x8D,  # OP_2MUL
        0x8E,  # OP_2DIV
        0x95,  # OP_MUL
        0x96,  # OP_DIV
        0x97,  # OP_MOD
        0x98,  # OP_LSHIFT
        0x99,  # OP_RSHIFT
    ]
)

_TRUE = b"\x01"
_FALSE = b""


class ScriptError(Exception):
    """Script evaluation failed"""


def is_op_success(opcode: int) -> bool:
    """OP_SUCCESSx opcodes of tapscript (BIP-342)"""
    return (
        opcode == 80
        or opcode == 98
        or 126 <= opcode <= 129
        or 131 <= opcode <= 134
        or 137 <= opcode <= 138
        or 141 <= opcode <= 142
        or 149 <= opcode <= 153
        or 187 <= opcode <= 254
    )


def cast_to_bool(vch: bytes) -> bool:
    """Any non-zero byte is true, except a lone sign bit in the last byte
    (negative zero)"""
    for i, b in enumerate(vch):
        if b != 0:
            if i == len(vch) - 1 and b == 0x80:
                return False
            return True
    return False


def decode_num(vch: bytes, max_size: int = 4) -> int:
    """Decodes a script number: little-endian, sign bit in the last byte"""
    if len(vch) > max_size:
        raise ScriptError("Script number overflow")
    if not vch:
        return 0
    result = int.from_bytes(vch, "little")
    if vch[-1] & 0x80:
        return -(result & ~(0x80 << (8 * (len(vch) - 1))))
    return result


def encode_num(value: int) -> bytes:
    """Encodes an integer as a minimal script number"""
    if value == 0:
        return b""
    negative = value < 0
    absvalue = -value if negative else value
    result = bytearray()
    while absvalue:
        result.append(absvalue & 0xFF)
        absvalue >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return bytes(result)


def push_data_bytes(data: bytes) -> bytes:
    """Serialization of a push of data (as used by FindAndDelete)"""
    if len(data) < OP_PUSHDATA1:
        return bytes([len(data)]) + data
    if len(data) <= 0xFF:
        return bytes([OP_PUSHDATA1, len(data)]) + data
    if len(data) <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + len(data).to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + len(data).to_bytes(4, "little") + data


def _next_op(script: bytes, pc: int) -> Optional[int]:
    """Offset of the operation after the one at pc, None at the end or on a
    truncated push"""
    if pc >= len(script):
        return None
    try:
        for _, _, after in decode_ops(script[pc:]):
            return pc + after
    except ValueError:
        return None
    return None


def find_and_delete(script: bytes, pattern: bytes) -> bytes:
    """Removes every occurrence of pattern that starts at an operation
    boundary"""
    if not pattern:
        return script
    result = bytearray()
    found = 0
    pc = pc2 = 0
    while True:
        result += script[pc2:pc]
        while len(script) - pc >= len(pattern) and script[pc : pc + len(pattern)] == pattern:
            pc += len(pattern)
            found += 1
        pc2 = pc
        nxt = _next_op(script, pc)
        if nxt is None:
            break
        pc = nxt
    if not found:
        return script
    result += script[pc2:]
    return bytes(result)


def remove_codeseparators(script: bytes) -> bytes:
    """Legacy sighash script code: OP_CODESEPARATORs are not signed"""
    result = bytearray()
    pc = 0
    while pc < len(script):
        nxt = _next_op(script, pc)
        if nxt is None:
            result += script[pc:]
            break
        if script[pc] != OP_CODESEPARATOR:
            result += script[pc:nxt]
        pc = nxt
    return bytes(result)


def is_valid_signature_encoding(sig: bytes) -> bool:
    """Strict DER signature plus sighash byte (BIP-66)"""

    # Format: 0x30 [total-length] 0x02 [R-length] [R] 0x02 [S-length] [S] [sighash]
    if len(sig) < 9 or len(sig) > 73:
        return False
    if sig[0] != 0x30:
        return False
    if sig[1] != len(sig) - 3:
        return False
    len_r = sig[3]
    if 5 + len_r >= len(sig):
        return False
    len_s = sig[5 + len_r]
    if len_r + len_s + 7 != len(sig):
        return False

    if sig[2] != 0x02:
        return False
    if len_r == 0:
        return False
    if sig[4] & 0x80:
        return False
    if len_r > 1 and sig[4] == 0x00 and not sig[5] & 0x80:
        return False

    if sig[len_r + 4] != 0x02:
        return False
    if len_s == 0:
        return False
    if sig[len_r + 6] & 0x80:
        return False
    if len_s > 1 and sig[len_r + 6] == 0x00 and not sig[len_r + 7] & 0x80:
        return False
    return True


def _der_integer(value: int) -> bytes:
    b = value.to_bytes((value.bit_length() + 7) // 8 or 1, "big")
    if b[0] & 0x80:
        b = b"\x00" + b
    return b"\x02" + bytes([len(b)]) + b


def normalize_der_signature(der: bytes) -> Optional[bytes]:
    """Re-encodes a DER signature with a low S value.

    libsecp256k1 only verifies low S signatures while consensus accepts
    both. Returns None when R or S is out of range.
    """
    try:
        if der[0] != 0x30 or der[2] != 0x02:
            return None
        len_r = der[3]
        r = int.from_bytes(der[4 : 4 + len_r], "big")
        len_s = der[5 + len_r]
        s = int.from_bytes(der[6 + len_r : 6 + len_r + len_s], "big")
    except IndexError:
        return None

    order = Secp256k1Params._order
    if not 0 < r < order or not 0 < s < order:
        return None
    if s > order // 2:
        s = order - s
    body = _der_integer(r) + _der_integer(s)
    return b"\x30" + bytes([len(body)]) + body


def verify_ecdsa(sig_der: bytes, pubkey: bytes, msg: bytes) -> bool:
    try:
        key = coincurve.PublicKey(pubkey)
    except ValueError:
        return False
    normalized = normalize_der_signature(sig_der)
    if normalized is None:
        return False
    try:
        return key.verify(normalized, msg, hasher=None)
    except ValueError:
        return False


def verify_schnorr(sig: bytes, x_only: bytes, msg: bytes) -> bool:
    if len(sig) != 64:
        return False
    try:
        key = coincurve.PublicKeyXOnly(x_only)
    except ValueError:
        return False
    return key.verify(sig, msg)


class ExecutionData:
    """Per-input taproot execution state.

    Attributes
    ----------
    annex : bytes or None
        the annex of the input
    tapleaf_hash : bytes or None
        hash of the executed leaf (script path only)
    codeseparator_pos : int
        opcode position of the last executed OP_CODESEPARATOR
    validation_weight_left : int or None
        remaining signature budget of a tapscript
    """

    def __init__(self) -> None:
        self.annex: Optional[bytes] = None
        self.tapleaf_hash: Optional[bytes] = None
        self.codeseparator_pos = 0xFFFFFFFF
        self.validation_weight_left: Optional[int] = None


class TransactionSignatureChecker:
    """Checks signatures and timelocks of one input of a transaction.

    Attributes
    ----------
    tx : Transaction
        the spending transaction
    input_index : int
        the input being verified
    spent_outputs : list (TxOutput)
        the outputs spent by every input, in input order
    """

    def __init__(self, tx: Transaction, input_index: int, spent_outputs: list[TxOutput]):
        self.tx = tx
        self.input_index = input_index
        self.spent_outputs = spent_outputs

    @property
    def amount(self) -> int:
        return self.spent_outputs[self.input_index].amount

    def check_ecdsa_signature(
        self, sig: bytes, pubkey: bytes, script_code: bytes, sigversion: str
    ) -> bool:
        if not sig:
            return False
        hash_type = sig[-1]
        der = sig[:-1]

        if sigversion == SIGVERSION_WITNESS_V0:
            sighash = self.tx.get_transaction_segwit_digest(
                self.input_index, _script(script_code), self.amount, hash_type
            )
        else:
            sighash = self.tx.get_transaction_digest(
                self.input_index, _script(remove_codeseparators(script_code)), hash_type
            )
        return verify_ecdsa(der, pubkey, sighash)

    def check_schnorr_signature(
        self, sig: bytes, pubkey: bytes, sigversion: str, execdata: ExecutionData
    ) -> None:
        """Raises ScriptError unless sig is a valid BIP-340 signature"""

        if len(sig) not in (64, 65):
            raise ScriptError("Invalid Schnorr signature size")
        hash_type = 0x00
        if len(sig) == 65:
            hash_type = sig[64]
            sig = sig[:64]
            if hash_type == 0x00:
                raise ScriptError("Invalid Schnorr signature hash type")

        scripts = [out.script_pubkey for out in self.spent_outputs]
        amounts = [out.amount for out in self.spent_outputs]
        try:
            if sigversion == SIGVERSION_TAPSCRIPT:
                sighash = self.tx.get_transaction_taproot_digest(
                    self.input_index,
                    scripts,
                    amounts,
                    ext_flag=1,
                    sighash=hash_type,
                    annex=execdata.annex,
                    codesep_pos=execdata.codeseparator_pos,
                    tapleaf_hash=execdata.tapleaf_hash,
                )
            else:
                sighash = self.tx.get_transaction_taproot_digest(
                    self.input_index, scripts, amounts, 0, sighash=hash_type, annex=execdata.annex
                )
        except ValueError as e:
            raise ScriptError(f"Invalid Schnorr signature hash type: {e}") from e

        if not verify_schnorr(sig, pubkey, sighash):
            raise ScriptError("Invalid Schnorr signature")

    def check_lock_time(self, lock_time: int) -> bool:
        tx_lock_time = self.tx.locktime_number
        if not (
            (tx_lock_time < LOCKTIME_THRESHOLD and lock_time < LOCKTIME_THRESHOLD)
            or (tx_lock_time >= LOCKTIME_THRESHOLD and lock_time >= LOCKTIME_THRESHOLD)
        ):
            return False
        if lock_time > tx_lock_time:
            return False
        # a final input disables nLockTime
        return self.tx.inputs[self.input_index].sequence_number != SEQUENCE_FINAL

    def check_sequence(self, sequence: int) -> bool:
        tx_sequence = self.tx.inputs[self.input_index].sequence_number
        if self.tx.version_number & 0xFFFFFFFF < 2:
            return False
        if tx_sequence & SEQUENCE_LOCKTIME_DISABLE_FLAG:
            return False

        mask = SEQUENCE_LOCKTIME_TYPE_FLAG | SEQUENCE_LOCKTIME_MASK
        tx_masked = tx_sequence & mask
        masked = sequence & mask
        if not (
            (tx_masked < SEQUENCE_LOCKTIME_TYPE_FLAG and masked < SEQUENCE_LOCKTIME_TYPE_FLAG)
            or (tx_masked >= SEQUENCE_LOCKTIME_TYPE_FLAG and masked >= SEQUENCE_LOCKTIME_TYPE_FLAG)
        ):
            return False
        return masked <= tx_masked


def _script(script_bytes: bytes) -> Script:
    return Script.from_raw(script_bytes)


def _eval_checksig_pre_tapscript(
    sig: bytes,
    pubkey: bytes,
    script_code: bytes,
    flags: int,
    checker: TransactionSignatureChecker,
    sigversion: str,
) -> bool:
    if sigversion == SIGVERSION_BASE:
        script_code = find_and_delete(script_code, push_data_bytes(sig))
    if sig and flags & VERIFY_DERSIG and not is_valid_signature_encoding(sig):
        raise ScriptError("Non-canonical DER signature")
    return checker.check_ecdsa_signature(sig, pubkey, script_code, sigversion)


def _eval_checksig_tapscript(
    sig: bytes,
    pubkey: bytes,
    checker: TransactionSignatureChecker,
    execdata: ExecutionData,
) -> bool:
    success = bool(sig)
    if success:
        execdata.validation_weight_left -= VALIDATION_WEIGHT_PER_SIGOP_PASSED
        if execdata.validation_weight_left < 0:
            raise ScriptError("Too much signature validation relative to witness weight")
    if not pubkey:
        raise ScriptError("Public key is neither compressed or uncompressed")
    if len(pubkey) == 32:
        if success:
            checker.check_schnorr_signature(sig, pubkey, SIGVERSION_TAPSCRIPT, execdata)
    # unknown public key types are reserved for upgrades and succeed
    return success


def eval_script(
    stack: list[bytes],
    script: bytes,
    flags: int,
    checker: TransactionSignatureChecker,
    sigversion: str,
    execdata: Optional[ExecutionData] = None,
) -> None:
    """Executes script on stack (modified in place).

    Raises
    ------
    ScriptError
        on any failure
    """
    if execdata is None:
        execdata = ExecutionData()

    legacy_limits = sigversion in (SIGVERSION_BASE, SIGVERSION_WITNESS_V0)
    if legacy_limits and len(script) > MAX_SCRIPT_SIZE:
        raise ScriptError("Script is too big")

    altstack: list[bytes] = []
    vf_exec: list[bool] = []
    op_count = 0
    begin_code_hash = 0
    execdata.codeseparator_pos = 0xFFFFFFFF

    def top(i: int) -> bytes:
        return stack[len(stack) + i]

    def need(n: int) -> None:
        if len(stack) < n:
            raise ScriptError("Operation not valid with the current stack size")

    ops = decode_ops(script)
    opcode_pos = -1
    while True:
        try:
            opcode, data, pc = next(ops)
        except StopIteration:
            break
        except ValueError as e:
            raise ScriptError("Opcode missing or not understood") from e
        opcode_pos += 1

        f_exec = False not in vf_exec

        if data is not None and len(data) > MAX_SCRIPT_ELEMENT_SIZE:
            raise ScriptError("Push value size limit exceeded")

        if legacy_limits and opcode > OP_16:
            op_count += 1
            if op_count > MAX_OPS_PER_SCRIPT:
                raise ScriptError("Operation limit exceeded")

        if opcode in DISABLED_OPCODES:
            raise ScriptError("Attempted to use a disabled opcode")

        if f_exec and data is not None:
            stack.append(data)

        elif f_exec or OP_IF <= opcode <= OP_ENDIF:

            # push value
            if opcode == OP_1NEGATE or OP_1 <= opcode <= OP_16:
                stack.append(encode_num(opcode - (OP_1 - 1)))

            # control
            elif opcode == OP_NOP:
                pass

            elif opcode == OP_CHECKLOCKTIMEVERIFY:
                if flags & VERIFY_CHECKLOCKTIMEVERIFY:
                    need(1)
                    lock_time = decode_num(top(-1), 5)
                    if lock_time < 0:
                        raise ScriptError("Negative locktime")
                    if not checker.check_lock_time(lock_time):
                        raise ScriptError("Locktime requirement not satisfied")

            elif opcode == OP_CHECKSEQUENCEVERIFY:
                if flags & VERIFY_CHECKSEQUENCEVERIFY:
                    need(1)
                    sequence = decode_num(top(-1), 5)
                    if sequence < 0:
                        raise ScriptError("Negative locktime")
                    if not sequence & SEQUENCE_LOCKTIME_DISABLE_FLAG:
                        if not checker.check_sequence(sequence):
                            raise ScriptError("Locktime requirement not satisfied")

            elif opcode == OP_NOP1 or OP_NOP4 <= opcode <= OP_NOP10:
                pass

            elif opcode in (OP_IF, OP_NOTIF):
                value = False
                if f_exec:
                    if len(stack) < 1:
                        raise ScriptError("Invalid OP_IF construction")
                    vch = top(-1)
                    if sigversion == SIGVERSION_TAPSCRIPT:
                        if len(vch) > 1 or (len(vch) == 1 and vch[0] != 1):
                            raise ScriptError("OP_IF/NOTIF argument must be minimal in tapscript")
                    value = cast_to_bool(vch)
                    if opcode == OP_NOTIF:
                        value = not value
                    stack.pop()
                vf_exec.append(value)

            elif opcode == OP_ELSE:
                if not vf_exec:
                    raise ScriptError("Invalid OP_IF construction")
                vf_exec[-1] = not vf_exec[-1]

            elif opcode == OP_ENDIF:
                if not vf_exec:
                    raise ScriptError("Invalid OP_IF construction")
                vf_exec.pop()

            elif opcode == OP_VERIFY:
                need(1)
                if not cast_to_bool(top(-1)):
                    raise ScriptError("Script failed an OP_VERIFY operation")
                stack.pop()

            elif opcode == OP_RETURN:
                raise ScriptError("OP_RETURN was encountered")

            # stack ops
            elif opcode == OP_TOALTSTACK:
                need(1)
                altstack.append(stack.pop())

            elif opcode == OP_FROMALTSTACK:
                if not altstack:
                    raise ScriptError("Operation not valid with the current altstack size")
                stack.append(altstack.pop())

            elif opcode == OP_2DROP:
                need(2)
                del stack[-2:]

            elif opcode == OP_2DUP:
                need(2)
                stack.extend([top(-2), top(-1)])

            elif opcode == OP_3DUP:
                need(3)
                stack.extend([top(-3), top(-2), top(-1)])

            elif opcode == OP_2OVER:
                need(4)
                stack.extend([top(-4), top(-3)])

            elif opcode == OP_2ROT:
                need(6)
                v1, v2 = top(-6), top(-5)
                del stack[-6:-4]
                stack.extend([v1, v2])

            elif opcode == OP_2SWAP:
                need(4)
                stack[-4], stack[-3], stack[-2], stack[-1] = (
                    stack[-2],
                    stack[-1],
                    stack[-4],
                    stack[-3],
                )

            elif opcode == OP_IFDUP:
                need(1)
                if cast_to_bool(top(-1)):
                    stack.append(top(-1))

            elif opcode == OP_DEPTH:
                stack.append(encode_num(len(stack)))

            elif opcode == OP_DROP:
                need(1)
                stack.pop()

            elif opcode == OP_DUP:
                need(1)
                stack.append(top(-1))

            elif opcode == OP_NIP:
                need(2)
                del stack[-2]

            elif opcode == OP_OVER:
                need(2)
                stack.append(top(-2))

            elif opcode in (OP_PICK, OP_ROLL):
                need(2)
                n = decode_num(top(-1))
                stack.pop()
                if n < 0 or n >= len(stack):
                    raise ScriptError("Operation not valid with the current stack size")
                value = top(-n - 1)
                if opcode == OP_ROLL:
                    del stack[-n - 1]
                stack.append(value)

            elif opcode == OP_ROT:
                need(3)
                stack[-3], stack[-2], stack[-1] = stack[-2], stack[-1], stack[-3]

            elif opcode == OP_SWAP:
                need(2)
                stack[-2], stack[-1] = stack[-1], stack[-2]

            elif opcode == OP_TUCK:
                need(2)
                stack.insert(-2, top(-1))

            elif opcode == OP_SIZE:
                need(1)
                stack.append(encode_num(len(top(-1))))

            # bitwise logic
            elif opcode in (OP_EQUAL, OP_EQUALVERIFY):
                need(2)
                equal = top(-2) == top(-1)
                del stack[-2:]
                stack.append(_TRUE if equal else _FALSE)
                if opcode == OP_EQUALVERIFY:
                    if not equal:
                        raise ScriptError("Script failed an OP_EQUALVERIFY operation")
                    stack.pop()

            # numeric
            elif opcode in (OP_1ADD, OP_1SUB, OP_NEGATE, OP_ABS, OP_NOT, OP_0NOTEQUAL):
                need(1)
                bn = decode_num(top(-1))
                if opcode == OP_1ADD:
                    bn += 1
                elif opcode == OP_1SUB:
                    bn -= 1
                elif opcode == OP_NEGATE:
                    bn = -bn
                elif opcode == OP_ABS:
                    bn = abs(bn)
                elif opcode == OP_NOT:
                    bn = int(bn == 0)
                else:
                    bn = int(bn != 0)
                stack[-1] = encode_num(bn)

            elif OP_ADD <= opcode <= OP_MAX and opcode not in DISABLED_OPCODES:
                need(2)
                bn1 = decode_num(top(-2))
                bn2 = decode_num(top(-1))
                if opcode == OP_ADD:
                    bn = bn1 + bn2
                elif opcode == OP_SUB:
                    bn = bn1 - bn2
                elif opcode == OP_BOOLAND:
                    bn = int(bn1 != 0 and bn2 != 0)
                elif opcode == OP_BOOLOR:
                    bn = int(bn1 != 0 or bn2 != 0)
                elif opcode in (OP_NUMEQUAL, OP_NUMEQUALVERIFY):
                    bn = int(bn1 == bn2)
                elif opcode == OP_NUMNOTEQUAL:
                    bn = int(bn1 != bn2)
                elif opcode == OP_LESSTHAN:
                    bn = int(bn1 < bn2)
                elif opcode == OP_GREATERTHAN:
                    bn = int(bn1 > bn2)
                elif opcode == OP_LESSTHANOREQUAL:
                    bn = int(bn1 <= bn2)
                elif opcode == OP_GREATERTHANOREQUAL:
                    bn = int(bn1 >= bn2)
                elif opcode == OP_MIN:
                    bn = min(bn1, bn2)
                else:
                    bn = max(bn1, bn2)
                del stack[-2:]
                stack.append(encode_num(bn))
                if opcode == OP_NUMEQUALVERIFY:
                    if not cast_to_bool(top(-1)):
                        raise ScriptError("Script failed an OP_NUMEQUALVERIFY operation")
                    stack.pop()

            elif opcode == OP_WITHIN:
                need(3)
                bn1 = decode_num(top(-3))
                bn2 = decode_num(top(-2))
                bn3 = decode_num(top(-1))
                del stack[-3:]
                stack.append(_TRUE if bn2 <= bn1 < bn3 else _FALSE)

            # crypto
            elif opcode == OP_RIPEMD160:
                need(1)
                stack[-1] = ripemd160(top(-1))

            elif opcode == OP_SHA1:
                need(1)
                stack[-1] = hashlib.sha1(top(-1)).digest()

            elif opcode == OP_SHA256:
                need(1)
                stack[-1] = hashlib.sha256(top(-1)).digest()

            elif opcode == OP_HASH160:
                need(1)
                stack[-1] = hash160(top(-1))

            elif opcode == OP_HASH256:
                need(1)
                stack[-1] = hash256(top(-1))

            elif opcode == OP_CODESEPARATOR:
                begin_code_hash = pc
                execdata.codeseparator_pos = opcode_pos

            elif opcode in (OP_CHECKSIG, OP_CHECKSIGVERIFY):
                need(2)
                sig, pubkey = top(-2), top(-1)
                if sigversion == SIGVERSION_TAPSCRIPT:
                    success = _eval_checksig_tapscript(sig, pubkey, checker, execdata)
                else:
                    success = _eval_checksig_pre_tapscript(
                        sig, pubkey, script[begin_code_hash:], flags, checker, sigversion
                    )
                del stack[-2:]
                stack.append(_TRUE if success else _FALSE)
                if opcode == OP_CHECKSIGVERIFY:
                    if not success:
                        raise ScriptError("Script failed an OP_CHECKSIGVERIFY operation")
                    stack.pop()

            elif opcode == OP_CHECKSIGADD:
                if sigversion != SIGVERSION_TAPSCRIPT:
                    raise ScriptError("Opcode missing or not understood")
                need(3)
                sig, num, pubkey = top(-3), decode_num(top(-2)), top(-1)
                success = _eval_checksig_tapscript(sig, pubkey, checker, execdata)
                del stack[-3:]
                stack.append(encode_num(num + (1 if success else 0)))

            elif opcode in (OP_CHECKMULTISIG, OP_CHECKMULTISIGVERIFY):
                if sigversion == SIGVERSION_TAPSCRIPT:
                    raise ScriptError("OP_CHECKMULTISIG(VERIFY) is not available in tapscript")
                op_count = _eval_checkmultisig(
                    stack,
                    script[begin_code_hash:],
                    flags,
                    checker,
                    sigversion,
                    op_count,
                )
                if opcode == OP_CHECKMULTISIGVERIFY:
                    if not cast_to_bool(top(-1)):
                        raise ScriptError("Script failed an OP_CHECKMULTISIGVERIFY operation")
                    stack.pop()

            else:
                raise ScriptError("Opcode missing or not understood")

        if len(stack) + len(altstack) > MAX_STACK_SIZE:
            raise ScriptError("Stack size limit exceeded")

    if vf_exec:
        raise ScriptError("Invalid OP_IF construction")


def _eval_checkmultisig(
    stack: list[bytes],
    script_code: bytes,
    flags: int,
    checker: TransactionSignatureChecker,
    sigversion: str,
    op_count: int,
) -> int:
    """Runs OP_CHECKMULTISIG on stack and returns the updated opcode count"""

    def top(i: int) -> bytes:
        return stack[len(stack) + i]

    def need(n: int) -> None:
        if len(stack) < n:
            raise ScriptError("Operation not valid with the current stack size")

    i = 1
    need(i)
    keys_count = decode_num(top(-i))
    if keys_count < 0 or keys_count > MAX_PUBKEYS_PER_MULTISIG:
        raise ScriptError("Pubkey count is negative or greater than 20")
    op_count += keys_count
    if op_count > MAX_OPS_PER_SCRIPT:
        raise ScriptError("Operation limit exceeded")
    i += 1
    ikey = i
    i += keys_count
    need(i)
    sigs_count = decode_num(top(-i))
    if sigs_count < 0 or sigs_count > keys_count:
        raise ScriptError("Signature count is negative or greater than pubkey count")
    i += 1
    isig = i
    i += sigs_count
    need(i)

    if sigversion == SIGVERSION_BASE:
        for k in range(sigs_count):
            script_code = find_and_delete(script_code, push_data_bytes(top(-isig - k)))

    success = True
    while success and sigs_count > 0:
        sig = top(-isig)
        pubkey = top(-ikey)
        if sig and flags & VERIFY_DERSIG and not is_valid_signature_encoding(sig):
            raise ScriptError("Non-canonical DER signature")
        if checker.check_ecdsa_signature(sig, pubkey, script_code, sigversion):
            isig += 1
            sigs_count -= 1
        ikey += 1
        keys_count -= 1
        # more signatures left than keys means failure
        if sigs_count > keys_count:
            success = False

    del stack[len(stack) - (i - 1) :]

    # the extra (dummy) element consumed by a historical bug
    need(1)
    if flags & VERIFY_NULLDUMMY and top(-1):
        raise ScriptError("Dummy CHECKMULTISIG argument must be zero")
    stack.pop()
    stack.append(_TRUE if success else _FALSE)
    return op_count


def _execute_witness_script(
    stack: list[bytes],
    script: bytes,
    flags: int,
    sigversion: str,
    checker: TransactionSignatureChecker,
    execdata: ExecutionData,
) -> None:
    if sigversion == SIGVERSION_TAPSCRIPT:
        # OP_SUCCESSx overrides everything, including stack element size limits
        try:
            for opcode, _, _ in decode_ops(script):
                if is_op_success(opcode):
                    return
        except ValueError as e:
            raise ScriptError("Opcode missing or not understood") from e
        if len(stack) > MAX_STACK_SIZE:
            raise ScriptError("Stack size limit exceeded")

    for elem in stack:
        if len(elem) > MAX_SCRIPT_ELEMENT_SIZE:
            raise ScriptError("Push value size limit exceeded")

    eval_script(stack, script, flags, checker, sigversion, execdata)

    # witness scripts must leave exactly one true element
    if len(stack) != 1:
        raise ScriptError("Stack size must be exactly one after execution")
    if not cast_to_bool(stack[-1]):
        raise ScriptError("Script evaluated without error but finished with a false/empty top stack element")


def compute_taproot_merkle_root(control: bytes, tapleaf_hash: bytes) -> bytes:
    k = tapleaf_hash
    path_len = (len(control) - TAPROOT_CONTROL_BASE_SIZE) // TAPROOT_CONTROL_NODE_SIZE
    for i in range(path_len):
        start = TAPROOT_CONTROL_BASE_SIZE + TAPROOT_CONTROL_NODE_SIZE * i
        k = tapbranch_tagged_hash(k, control[start : start + TAPROOT_CONTROL_NODE_SIZE])
    return k


def verify_taproot_commitment(control: bytes, program: bytes, tapleaf_hash: bytes) -> bool:
    """Checks that program is the internal key of control tweaked by the
    merkle root, with the parity given in the control block"""
    internal_key = control[1:TAPROOT_CONTROL_BASE_SIZE]
    merkle_root = compute_taproot_merkle_root(control, tapleaf_hash)
    try:
        output_key, is_odd = tweak_taproot_pubkey(
            internal_key, calculate_tweak(internal_key, merkle_root)
        )
    except ValueError:
        return False
    return output_key == program and is_odd == bool(control[0] & 1)


def verify_witness_program(
    witness: list[bytes],
    version: int,
    program: bytes,
    flags: int,
    checker: TransactionSignatureChecker,
    is_p2sh: bool,
) -> str:
    """Verifies a witness program spend and returns the kind of spend

    Raises
    ------
    ScriptError
        on failure
    """
    execdata = ExecutionData()
    stack = list(witness)

    if version == 0:
        if len(program) == 32:
            if not stack:
                raise ScriptError("Witness program was passed an empty witness")
            script = stack.pop()
            if hashlib.sha256(script).digest() != program:
                raise ScriptError("Witness program hash mismatch")
            _execute_witness_script(stack, script, flags, SIGVERSION_WITNESS_V0, checker, execdata)
            return "p2wsh"
        if len(program) == 20:
            if len(stack) != 2:
                raise ScriptError("Witness program hash mismatch")
            # OP_DUP OP_HASH160 <program> OP_EQUALVERIFY OP_CHECKSIG
            script = b"\x76\xa9\x14" + program + b"\x88\xac"
            _execute_witness_script(stack, script, flags, SIGVERSION_WITNESS_V0, checker, execdata)
            return "p2wpkh"
        raise ScriptError("Witness program has incorrect length")

    if version == 1 and len(program) == 32 and not is_p2sh:
        if not flags & VERIFY_TAPROOT:
            return "p2tr"
        if not stack:
            raise ScriptError("Witness program was passed an empty witness")
        if len(stack) >= 2 and stack[-1] and stack[-1][0] == ANNEX_TAG:
            execdata.annex = stack.pop()

        if len(stack) == 1:
            checker.check_schnorr_signature(stack[0], program, SIGVERSION_TAPROOT, execdata)
            return "p2tr-key"

        control = stack.pop()
        script = stack.pop()
        if (
            len(control) < TAPROOT_CONTROL_BASE_SIZE
            or len(control)
            > TAPROOT_CONTROL_BASE_SIZE + TAPROOT_CONTROL_NODE_SIZE * TAPROOT_CONTROL_MAX_NODE_COUNT
            or (len(control) - TAPROOT_CONTROL_BASE_SIZE) % TAPROOT_CONTROL_NODE_SIZE
        ):
            raise ScriptError("Invalid Taproot control block size")
        leaf_version = control[0] & TAPROOT_LEAF_MASK
        execdata.tapleaf_hash = tapleaf_tagged_hash(script, leaf_version)
        if not verify_taproot_commitment(control, program, execdata.tapleaf_hash):
            raise ScriptError("Witness program hash mismatch")

        if leaf_version == LEAF_VERSION_TAPSCRIPT:
            # budget: serialized size of the whole witness plus an offset
            witness_size = len(encode_varint(len(witness))) + sum(
                len(prepend_compact_size(item)) for item in witness
            )
            execdata.validation_weight_left = witness_size + VALIDATION_WEIGHT_OFFSET
            _execute_witness_script(stack, script, flags, SIGVERSION_TAPSCRIPT, checker, execdata)
            return "p2tr-script"

        # unknown leaf versions are reserved for upgrades
        return "p2tr-script"

    # other versions and sizes are reserved for upgrades
    return "witness_unknown"


def verify_script(
    script_sig: bytes,
    script_pubkey: bytes,
    witness: list[bytes],
    flags: int,
    checker: TransactionSignatureChecker,
) -> str:
    """Verifies that an input's scriptSig and witness satisfy the spent
    scriptPubKey and returns the kind of spend.

    Raises
    ------
    ScriptError
        on failure
    """
    spk = Script.from_raw(script_pubkey)
    spend_type = spk.get_script_type()
    stack: list[bytes] = []
    eval_script(stack, script_sig, flags, checker, SIGVERSION_BASE)
    stack_copy = list(stack) if flags & VERIFY_P2SH else []
    eval_script(stack, script_pubkey, flags, checker, SIGVERSION_BASE)
    if not stack or not cast_to_bool(stack[-1]):
        raise ScriptError("Script evaluated without error but finished with a false/empty top stack element")

    had_witness = False
    if flags & VERIFY_WITNESS:
        wp = spk.witness_program()
        if wp is not None:
            had_witness = True
            if script_sig:
                raise ScriptError("Witness requires empty scriptSig")
            spend_type = verify_witness_program(witness, wp[0], wp[1], flags, checker, False)

    if flags & VERIFY_P2SH and spk.is_p2sh():
        if not Script.from_raw(script_sig).is_push_only():
            raise ScriptError("Only push operators allowed in signatures")
        stack = stack_copy
        redeem_script = stack.pop()
        eval_script(stack, redeem_script, flags, checker, SIGVERSION_BASE)
        if not stack or not cast_to_bool(stack[-1]):
            raise ScriptError("Script evaluated without error but finished with a false/empty top stack element")
        spend_type = "p2sh"

        if flags & VERIFY_WITNESS:
            wp = Script.from_raw(redeem_script).witness_program()
            if wp is not None:
                had_witness = True
                if script_sig != push_data_bytes(redeem_script):
                    raise ScriptError("Witness requires only-redeemscript scriptSig")
                spend_type = "p2sh-" + verify_witness_program(
                    witness, wp[0], wp[1], flags, checker, True
                )

    if flags & VERIFY_WITNESS and not had_witness and witness:
        raise ScriptError("Witness provided for non-witness script")

    return spend_type

