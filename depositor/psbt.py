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

"""Partially Signed Bitcoin Transactions (BIP-174) with the Taproot fields of
BIP-371.

Maps are always written in ascending key order, so that parsing and
serializing a canonically ordered PSBT gives back the same bytes.
"""

from __future__ import annotations

import base64
import binascii
import logging
import struct
from io import BytesIO
from typing import Any, Optional

from depositor.constants import (
    PSBT_GLOBAL_PROPRIETARY,
    PSBT_GLOBAL_UNSIGNED_TX,
    PSBT_GLOBAL_VERSION,
    PSBT_GLOBAL_XPUB,
    PSBT_IN_BIP32_DERIVATION,
    PSBT_IN_FINAL_SCRIPTSIG,
    PSBT_IN_FINAL_SCRIPTWITNESS,
    PSBT_IN_HASH160,
    PSBT_IN_HASH256,
    PSBT_IN_NON_WITNESS_UTXO,
    PSBT_IN_PARTIAL_SIG,
    PSBT_IN_PROPRIETARY,
    PSBT_IN_REDEEM_SCRIPT,
    PSBT_IN_RIPEMD160,
    PSBT_IN_SHA256,
    PSBT_IN_SIGHASH_TYPE,
    PSBT_IN_TAP_BIP32_DERIVATION,
    PSBT_IN_TAP_INTERNAL_KEY,
    PSBT_IN_TAP_KEY_SIG,
    PSBT_IN_TAP_LEAF_SCRIPT,
    PSBT_IN_TAP_MERKLE_ROOT,
    PSBT_IN_TAP_SCRIPT_SIG,
    PSBT_IN_WITNESS_SCRIPT,
    PSBT_IN_WITNESS_UTXO,
    PSBT_MAGIC,
    PSBT_OUT_BIP32_DERIVATION,
    PSBT_OUT_PROPRIETARY,
    PSBT_OUT_REDEEM_SCRIPT,
    PSBT_OUT_TAP_BIP32_DERIVATION,
    PSBT_OUT_TAP_INTERNAL_KEY,
    PSBT_OUT_TAP_TREE,
    PSBT_OUT_WITNESS_SCRIPT,
    TAPROOT_SIGHASH_ALL,
)
from depositor.keys import PrivateKey
from depositor.script import Script
from depositor.transactions import Transaction, TxOutput, TxWitnessInput
from depositor.utils import (
    b_to_h,
    encode_varint,
    parse_compact_size,
    prepend_compact_size,
    read_exact,
    read_varint,
)


logger = logging.getLogger(__name__)

VALID_TAPROOT_SIGHASHES = (0x00, 0x01, 0x02, 0x03, 0x81, 0x82, 0x83)


class PSBTError(ValueError):
    """A PSBT role could not be carried out"""


class PSBTParseError(PSBTError):
    """Serialized data is not a valid PSBT"""


# (fingerprint, derivation path)
KeySource = tuple[bytes, list[int]]


def _parse_key_source(value: bytes) -> KeySource:
    if len(value) < 4 or len(value) % 4:
        raise PSBTParseError("Invalid key origin length")
    path = list(struct.unpack("<" + "I" * ((len(value) - 4) // 4), value[4:]))
    return value[:4], path


def _serialize_key_source(origin: KeySource) -> bytes:
    fingerprint, path = origin
    return bytes(fingerprint) + struct.pack("<" + "I" * len(path), *path)


def _parse_tap_key_origin(value: bytes) -> tuple[list[bytes], bytes, list[int]]:
    stream = BytesIO(value)
    try:
        count = read_varint(stream)
        leaf_hashes = [read_exact(stream, 32) for _ in range(count)]
    except ValueError as e:
        raise PSBTParseError(f"Invalid taproot key origin: {e}") from e
    fingerprint, path = _parse_key_source(stream.read())
    return leaf_hashes, fingerprint, path


def _serialize_tap_key_origin(origin: tuple[list[bytes], bytes, list[int]]) -> bytes:
    leaf_hashes, fingerprint, path = origin
    return (
        encode_varint(len(leaf_hashes))
        + b"".join(leaf_hashes)
        + _serialize_key_source((fingerprint, path))
    )


def _parse_witness_stack(value: bytes) -> list[bytes]:
    stream = BytesIO(value)
    try:
        witness = TxWitnessInput.from_stream(stream)
    except ValueError as e:
        raise PSBTParseError(f"Invalid final script witness: {e}") from e
    if stream.read(1):
        raise PSBTParseError("Trailing data in final script witness")
    return witness.stack


def _parse_tap_tree(value: bytes) -> list[tuple[int, int, bytes]]:
    stream = BytesIO(value)
    leaves = []
    try:
        while True:
            depth = stream.read(1)
            if not depth:
                break
            leaf_ver = read_exact(stream, 1)[0]
            script = read_exact(stream, read_varint(stream))
            if depth[0] > 128:
                raise PSBTParseError("Taproot tree depth above 128")
            leaves.append((depth[0], leaf_ver, script))
    except PSBTParseError:
        raise
    except ValueError as e:
        raise PSBTParseError(f"Invalid taproot tree: {e}") from e
    if not leaves:
        raise PSBTParseError("Empty taproot tree")
    return leaves


def _expect_key_len(key_data: bytes, size: int, name: str) -> None:
    if len(key_data) != size:
        raise PSBTParseError(f"Invalid key length for {name}")


def _expect_value_len(value: bytes, sizes: tuple[int, ...], name: str) -> None:
    if len(value) not in sizes:
        raise PSBTParseError(f"Invalid value length for {name}")


class PSBTInput:
    """The per-input map of a PSBT.

    Attributes
    ----------
    non_witness_utxo : Transaction
        the full previous transaction (legacy inputs)
    witness_utxo : TxOutput
        the spent output (amount and scriptPubKey)
    partial_sigs : dict
        pubkey -> signature
    sighash_type : int
        the sighash the signer must use
    redeem_script, witness_script : Script
        P2SH/P2WSH scripts
    bip32_derivs : dict
        pubkey -> (fingerprint, path)
    final_scriptsig : Script
        the finalized scriptSig
    final_scriptwitness : list[bytes]
        the finalized witness stack
    tap_key_sig : bytes
        the BIP-340 key path signature (64 or 65 bytes)
    tap_script_sigs : dict
        (x-only pubkey, leaf hash) -> signature
    tap_leaf_scripts : dict
        control block -> (script, leaf version)
    tap_key_origins : dict
        x-only pubkey -> (leaf hashes, fingerprint, path)
    tap_internal_key : bytes
        the 32 byte x-only internal key
    tap_merkle_root : bytes
        the 32 byte taproot merkle root
    """

    def __init__(self) -> None:
        self.non_witness_utxo: Optional[Transaction] = None
        self.witness_utxo: Optional[TxOutput] = None
        self.partial_sigs: dict[bytes, bytes] = {}
        self.sighash_type: Optional[int] = None
        self.redeem_script: Optional[Script] = None
        self.witness_script: Optional[Script] = None
        self.bip32_derivs: dict[bytes, KeySource] = {}
        self.final_scriptsig: Optional[Script] = None
        self.final_scriptwitness: list[bytes] = []

        self.ripemd160_preimages: dict[bytes, bytes] = {}
        self.sha256_preimages: dict[bytes, bytes] = {}
        self.hash160_preimages: dict[bytes, bytes] = {}
        self.hash256_preimages: dict[bytes, bytes] = {}

        # BIP-371
        self.tap_key_sig: Optional[bytes] = None
        self.tap_script_sigs: dict[tuple[bytes, bytes], bytes] = {}
        self.tap_leaf_scripts: dict[bytes, tuple[bytes, int]] = {}
        self.tap_key_origins: dict[bytes, tuple[list[bytes], bytes, list[int]]] = {}
        self.tap_internal_key: Optional[bytes] = None
        self.tap_merkle_root: Optional[bytes] = None

        self.proprietary: dict[bytes, bytes] = {}
        self.unknown: dict[bytes, bytes] = {}

    def is_finalized(self) -> bool:
        return self.final_scriptsig is not None or bool(self.final_scriptwitness)

    def _set(self, key_type: int, key_data: bytes, value: bytes) -> None:
        if key_type == PSBT_IN_NON_WITNESS_UTXO:
            _expect_key_len(key_data, 0, "non_witness_utxo")
            try:
                self.non_witness_utxo = Transaction.from_bytes(value)
            except ValueError as e:
                raise PSBTParseError(f"Invalid non_witness_utxo: {e}") from e
        elif key_type == PSBT_IN_WITNESS_UTXO:
            _expect_key_len(key_data, 0, "witness_utxo")
            try:
                self.witness_utxo = TxOutput.from_raw(value)
            except ValueError as e:
                raise PSBTParseError(f"Invalid witness_utxo: {e}") from e
        elif key_type == PSBT_IN_PARTIAL_SIG:
            _expect_value_len(key_data, (33, 65), "partial_sig")
            self.partial_sigs[key_data] = value
        elif key_type == PSBT_IN_SIGHASH_TYPE:
            _expect_key_len(key_data, 0, "sighash_type")
            _expect_value_len(value, (4,), "sighash_type")
            self.sighash_type = struct.unpack("<I", value)[0]
        elif key_type == PSBT_IN_REDEEM_SCRIPT:
            _expect_key_len(key_data, 0, "redeem_script")
            self.redeem_script = Script.from_raw(value)
        elif key_type == PSBT_IN_WITNESS_SCRIPT:
            _expect_key_len(key_data, 0, "witness_script")
            self.witness_script = Script.from_raw(value)
        elif key_type == PSBT_IN_BIP32_DERIVATION:
            _expect_value_len(key_data, (33, 65), "bip32_derivation")
            self.bip32_derivs[key_data] = _parse_key_source(value)
        elif key_type == PSBT_IN_FINAL_SCRIPTSIG:
            _expect_key_len(key_data, 0, "final_scriptsig")
            self.final_scriptsig = Script.from_raw(value)
        elif key_type == PSBT_IN_FINAL_SCRIPTWITNESS:
            _expect_key_len(key_data, 0, "final_scriptwitness")
            self.final_scriptwitness = _parse_witness_stack(value)
        elif key_type == PSBT_IN_RIPEMD160:
            _expect_key_len(key_data, 20, "ripemd160 preimage")
            self.ripemd160_preimages[key_data] = value
        elif key_type == PSBT_IN_SHA256:
            _expect_key_len(key_data, 32, "sha256 preimage")
            self.sha256_preimages[key_data] = value
        elif key_type == PSBT_IN_HASH160:
            _expect_key_len(key_data, 20, "hash160 preimage")
            self.hash160_preimages[key_data] = value
        elif key_type == PSBT_IN_HASH256:
            _expect_key_len(key_data, 32, "hash256 preimage")
            self.hash256_preimages[key_data] = value
        elif key_type == PSBT_IN_TAP_KEY_SIG:
            _expect_key_len(key_data, 0, "tap_key_sig")
            _expect_value_len(value, (64, 65), "tap_key_sig")
            self.tap_key_sig = value
        elif key_type == PSBT_IN_TAP_SCRIPT_SIG:
            _expect_key_len(key_data, 64, "tap_script_sig")
            _expect_value_len(value, (64, 65), "tap_script_sig")
            self.tap_script_sigs[(key_data[:32], key_data[32:])] = value
        elif key_type == PSBT_IN_TAP_LEAF_SCRIPT:
            if len(key_data) < 33 or (len(key_data) - 33) % 32:
                raise PSBTParseError("Invalid control block in tap_leaf_script")
            if not value:
                raise PSBTParseError("Empty tap_leaf_script")
            self.tap_leaf_scripts[key_data] = (value[:-1], value[-1])
        elif key_type == PSBT_IN_TAP_BIP32_DERIVATION:
            _expect_key_len(key_data, 32, "tap_bip32_derivation")
            self.tap_key_origins[key_data] = _parse_tap_key_origin(value)
        elif key_type == PSBT_IN_TAP_INTERNAL_KEY:
            _expect_key_len(key_data, 0, "tap_internal_key")
            _expect_value_len(value, (32,), "tap_internal_key")
            self.tap_internal_key = value
        elif key_type == PSBT_IN_TAP_MERKLE_ROOT:
            _expect_key_len(key_data, 0, "tap_merkle_root")
            _expect_value_len(value, (32,), "tap_merkle_root")
            self.tap_merkle_root = value
        elif key_type == PSBT_IN_PROPRIETARY:
            self.proprietary[key_data] = value
        else:
            self.unknown[encode_varint(key_type) + key_data] = value

    def _pairs(self) -> list[tuple[bytes, bytes]]:
        pairs = []

        def add(key_type: int, key_data: bytes, value: bytes) -> None:
            pairs.append((encode_varint(key_type) + key_data, value))

        if self.non_witness_utxo is not None:
            add(PSBT_IN_NON_WITNESS_UTXO, b"", self.non_witness_utxo.to_bytes())
        if self.witness_utxo is not None:
            add(PSBT_IN_WITNESS_UTXO, b"", self.witness_utxo.to_bytes())
        for pubkey, sig in self.partial_sigs.items():
            add(PSBT_IN_PARTIAL_SIG, pubkey, sig)
        if self.sighash_type is not None:
            add(PSBT_IN_SIGHASH_TYPE, b"", struct.pack("<I", self.sighash_type))
        if self.redeem_script is not None:
            add(PSBT_IN_REDEEM_SCRIPT, b"", self.redeem_script.to_bytes())
        if self.witness_script is not None:
            add(PSBT_IN_WITNESS_SCRIPT, b"", self.witness_script.to_bytes())
        for pubkey, origin in self.bip32_derivs.items():
            add(PSBT_IN_BIP32_DERIVATION, pubkey, _serialize_key_source(origin))
        if self.final_scriptsig is not None:
            add(PSBT_IN_FINAL_SCRIPTSIG, b"", self.final_scriptsig.to_bytes())
        if self.final_scriptwitness:
            add(
                PSBT_IN_FINAL_SCRIPTWITNESS,
                b"",
                TxWitnessInput(self.final_scriptwitness).to_bytes(),
            )
        for key_type, preimages in (
            (PSBT_IN_RIPEMD160, self.ripemd160_preimages),
            (PSBT_IN_SHA256, self.sha256_preimages),
            (PSBT_IN_HASH160, self.hash160_preimages),
            (PSBT_IN_HASH256, self.hash256_preimages),
        ):
            for digest, preimage in preimages.items():
                add(key_type, digest, preimage)
        if self.tap_key_sig is not None:
            add(PSBT_IN_TAP_KEY_SIG, b"", self.tap_key_sig)
        for (x_only, leaf_hash), sig in self.tap_script_sigs.items():
            add(PSBT_IN_TAP_SCRIPT_SIG, x_only + leaf_hash, sig)
        for control_block, (script, leaf_ver) in self.tap_leaf_scripts.items():
            add(PSBT_IN_TAP_LEAF_SCRIPT, control_block, script + bytes([leaf_ver]))
        for x_only, origin in self.tap_key_origins.items():
            add(PSBT_IN_TAP_BIP32_DERIVATION, x_only, _serialize_tap_key_origin(origin))
        if self.tap_internal_key is not None:
            add(PSBT_IN_TAP_INTERNAL_KEY, b"", self.tap_internal_key)
        if self.tap_merkle_root is not None:
            add(PSBT_IN_TAP_MERKLE_ROOT, b"", self.tap_merkle_root)
        for key_data, value in self.proprietary.items():
            add(PSBT_IN_PROPRIETARY, key_data, value)
        pairs.extend(self.unknown.items())
        return pairs

    def to_dict(self) -> dict[str, Any]:
        summary: dict[str, Any] = {}
        if self.witness_utxo is not None:
            summary["witness_utxo"] = {
                "amount": self.witness_utxo.amount,
                "script_pubkey": self.witness_utxo.script_pubkey.to_hex(),
            }
        if self.non_witness_utxo is not None:
            summary["non_witness_utxo"] = self.non_witness_utxo.get_txid()
        if self.partial_sigs:
            summary["partial_sigs"] = {b_to_h(k): b_to_h(v) for k, v in self.partial_sigs.items()}
        if self.sighash_type is not None:
            summary["sighash_type"] = self.sighash_type
        if self.redeem_script is not None:
            summary["redeem_script"] = self.redeem_script.to_hex()
        if self.witness_script is not None:
            summary["witness_script"] = self.witness_script.to_hex()
        if self.bip32_derivs:
            summary["bip32_derivs"] = {
                b_to_h(k): {"fingerprint": b_to_h(fp), "path": path}
                for k, (fp, path) in self.bip32_derivs.items()
            }
        if self.final_scriptsig is not None:
            summary["final_scriptsig"] = self.final_scriptsig.to_hex()
        if self.final_scriptwitness:
            summary["final_scriptwitness"] = [b_to_h(i) for i in self.final_scriptwitness]
        if self.tap_key_sig is not None:
            summary["tap_key_sig"] = b_to_h(self.tap_key_sig)
        if self.tap_script_sigs:
            summary["tap_script_sigs"] = {
                f"{b_to_h(x)}:{b_to_h(h)}": b_to_h(s)
                for (x, h), s in self.tap_script_sigs.items()
            }
        if self.tap_leaf_scripts:
            summary["tap_leaf_scripts"] = {
                b_to_h(cb): {"script": b_to_h(s), "leaf_version": v}
                for cb, (s, v) in self.tap_leaf_scripts.items()
            }
        if self.tap_key_origins:
            summary["tap_key_origins"] = {
                b_to_h(x): {
                    "leaf_hashes": [b_to_h(h) for h in hashes],
                    "fingerprint": b_to_h(fp),
                    "path": path,
                }
                for x, (hashes, fp, path) in self.tap_key_origins.items()
            }
        if self.tap_internal_key is not None:
            summary["tap_internal_key"] = b_to_h(self.tap_internal_key)
        if self.tap_merkle_root is not None:
            summary["tap_merkle_root"] = b_to_h(self.tap_merkle_root)
        if self.unknown or self.proprietary:
            summary["unknown"] = len(self.unknown) + len(self.proprietary)
        return summary


class PSBTOutput:
    """The per-output map of a PSBT.

    Attributes
    ----------
    redeem_script, witness_script : Script
        scripts needed to spend the output later
    bip32_derivs : dict
        pubkey -> (fingerprint, path)
    tap_internal_key : bytes
        x-only internal key of a taproot output
    tap_tree : list
        (depth, leaf version, script) tuples in depth-first order
    tap_key_origins : dict
        x-only pubkey -> (leaf hashes, fingerprint, path)
    """

    def __init__(self) -> None:
        self.redeem_script: Optional[Script] = None
        self.witness_script: Optional[Script] = None
        self.bip32_derivs: dict[bytes, KeySource] = {}
        self.tap_internal_key: Optional[bytes] = None
        self.tap_tree: list[tuple[int, int, bytes]] = []
        self.tap_key_origins: dict[bytes, tuple[list[bytes], bytes, list[int]]] = {}

        self.proprietary: dict[bytes, bytes] = {}
        self.unknown: dict[bytes, bytes] = {}

    def _set(self, key_type: int, key_data: bytes, value: bytes) -> None:
        if key_type == PSBT_OUT_REDEEM_SCRIPT:
            _expect_key_len(key_data, 0, "redeem_script")
            self.redeem_script = Script.from_raw(value)
        elif key_type == PSBT_OUT_WITNESS_SCRIPT:
            _expect_key_len(key_data, 0, "witness_script")
            self.witness_script = Script.from_raw(value)
        elif key_type == PSBT_OUT_BIP32_DERIVATION:
            _expect_value_len(key_data, (33, 65), "bip32_derivation")
            self.bip32_derivs[key_data] = _parse_key_source(value)
        elif key_type == PSBT_OUT_TAP_INTERNAL_KEY:
            _expect_key_len(key_data, 0, "tap_internal_key")
            _expect_value_len(value, (32,), "tap_internal_key")
            self.tap_internal_key = value
        elif key_type == PSBT_OUT_TAP_TREE:
            _expect_key_len(key_data, 0, "tap_tree")
            self.tap_tree = _parse_tap_tree(value)
        elif key_type == PSBT_OUT_TAP_BIP32_DERIVATION:
            _expect_key_len(key_data, 32, "tap_bip32_derivation")
            self.tap_key_origins[key_data] = _parse_tap_key_origin(value)
        elif key_type == PSBT_OUT_PROPRIETARY:
            self.proprietary[key_data] = value
        else:
            self.unknown[encode_varint(key_type) + key_data] = value

    def _pairs(self) -> list[tuple[bytes, bytes]]:
        pairs = []

        def add(key_type: int, key_data: bytes, value: bytes) -> None:
            pairs.append((encode_varint(key_type) + key_data, value))

        if self.redeem_script is not None:
            add(PSBT_OUT_REDEEM_SCRIPT, b"", self.redeem_script.to_bytes())
        if self.witness_script is not None:
            add(PSBT_OUT_WITNESS_SCRIPT, b"", self.witness_script.to_bytes())
        for pubkey, origin in self.bip32_derivs.items():
            add(PSBT_OUT_BIP32_DERIVATION, pubkey, _serialize_key_source(origin))
        if self.tap_internal_key is not None:
            add(PSBT_OUT_TAP_INTERNAL_KEY, b"", self.tap_internal_key)
        if self.tap_tree:
            tree = b"".join(
                bytes([depth, leaf_ver]) + prepend_compact_size(script)
                for depth, leaf_ver, script in self.tap_tree
            )
            add(PSBT_OUT_TAP_TREE, b"", tree)
        for x_only, origin in self.tap_key_origins.items():
            add(PSBT_OUT_TAP_BIP32_DERIVATION, x_only, _serialize_tap_key_origin(origin))
        for key_data, value in self.proprietary.items():
            add(PSBT_OUT_PROPRIETARY, key_data, value)
        pairs.extend(self.unknown.items())
        return pairs

    def to_dict(self) -> dict[str, Any]:
        summary: dict[str, Any] = {}
        if self.redeem_script is not None:
            summary["redeem_script"] = self.redeem_script.to_hex()
        if self.witness_script is not None:
            summary["witness_script"] = self.witness_script.to_hex()
        if self.tap_internal_key is not None:
            summary["tap_internal_key"] = b_to_h(self.tap_internal_key)
        if self.tap_tree:
            summary["tap_tree"] = [
                {"depth": d, "leaf_version": v, "script": b_to_h(s)}
                for d, v, s in self.tap_tree
            ]
        if self.unknown or self.proprietary:
            summary["unknown"] = len(self.unknown) + len(self.proprietary)
        return summary


class PSBT:
    """A Partially Signed Bitcoin Transaction.

    Attributes
    ----------
    tx : Transaction
        the unsigned transaction (empty scriptSigs and witnesses)
    inputs : list (PSBTInput)
        one map per transaction input
    outputs : list (PSBTOutput)
        one map per transaction output
    version : int or None
        the PSBT_GLOBAL_VERSION field, None when absent
    xpubs : dict
        serialized xpub -> (fingerprint, path)

    Methods
    -------
    from_unsigned_tx(tx)
        the Creator role (classmethod)
    from_bytes(b) / from_base64(s) / from_hex(s) / decode(s)
        parses a serialized PSBT (classmethod)
    to_bytes() / to_base64() / to_hex()
        serializes the PSBT
    sign_taproot_input(index, key) / sign(key)
        the Signer role for taproot key path inputs
    finalize_input(index) / finalize()
        the Finalizer role
    extract_transaction()
        the Extractor role
    """

    def __init__(self, unsigned_tx: Optional[Transaction] = None) -> None:
        self.tx = unsigned_tx if unsigned_tx is not None else Transaction([], [])
        self.inputs: list[PSBTInput] = [PSBTInput() for _ in self.tx.inputs]
        self.outputs: list[PSBTOutput] = [PSBTOutput() for _ in self.tx.outputs]

        self.version: Optional[int] = None
        self.xpubs: dict[bytes, KeySource] = {}
        self.proprietary: dict[bytes, bytes] = {}
        self.unknown: dict[bytes, bytes] = {}

    @classmethod
    def from_unsigned_tx(cls, tx: Transaction) -> "PSBT":
        """Creator: wraps an unsigned transaction

        Raises
        ------
        PSBTError
            if any input has a scriptSig or a witness
        """
        for txin in tx.inputs:
            if not txin.script_sig.is_empty():
                raise PSBTError("Unsigned transaction must have empty scriptSigs")
        if tx.has_segwit:
            raise PSBTError("Unsigned transaction must not have witnesses")

        unsigned = Transaction.copy(tx)
        unsigned.witnesses = []
        return cls(unsigned)

    # --- parsing ---

    @classmethod
    def from_bytes(cls, psbt_bytes: bytes) -> "PSBT":
        stream = BytesIO(psbt_bytes)
        if stream.read(len(PSBT_MAGIC)) != PSBT_MAGIC:
            raise PSBTParseError("Invalid PSBT magic")

        psbt = cls()
        tx = None
        try:
            for key_type, key_data, value in cls._read_map(stream):
                if key_type == PSBT_GLOBAL_UNSIGNED_TX:
                    _expect_key_len(key_data, 0, "unsigned_tx")
                    tx = cls._parse_unsigned_tx(value)
                elif key_type == PSBT_GLOBAL_XPUB:
                    _expect_key_len(key_data, 78, "xpub")
                    psbt.xpubs[key_data] = _parse_key_source(value)
                elif key_type == PSBT_GLOBAL_VERSION:
                    _expect_key_len(key_data, 0, "version")
                    _expect_value_len(value, (4,), "version")
                    psbt.version = struct.unpack("<I", value)[0]
                    if psbt.version != 0:
                        raise PSBTParseError(f"Unsupported PSBT version {psbt.version}")
                elif key_type == PSBT_GLOBAL_PROPRIETARY:
                    psbt.proprietary[key_data] = value
                else:
                    psbt.unknown[encode_varint(key_type) + key_data] = value

            if tx is None:
                raise PSBTParseError("PSBT has no unsigned transaction")
            psbt.tx = tx

            psbt.inputs = []
            for _ in tx.inputs:
                psbt_input = PSBTInput()
                for key_type, key_data, value in cls._read_map(stream):
                    psbt_input._set(key_type, key_data, value)
                psbt.inputs.append(psbt_input)

            psbt.outputs = []
            for _ in tx.outputs:
                psbt_output = PSBTOutput()
                for key_type, key_data, value in cls._read_map(stream):
                    psbt_output._set(key_type, key_data, value)
                psbt.outputs.append(psbt_output)
        except PSBTParseError:
            raise
        except ValueError as e:
            # truncated maps surface from read_exact/read_varint
            raise PSBTParseError(str(e)) from e

        if stream.read(1):
            raise PSBTParseError("Trailing data after PSBT")
        return psbt

    @staticmethod
    def _parse_unsigned_tx(value: bytes) -> Transaction:
        try:
            tx = Transaction.from_bytes(value, allow_witness=False)
        except ValueError as e:
            raise PSBTParseError(f"Invalid unsigned transaction: {e}") from e
        for txin in tx.inputs:
            if not txin.script_sig.is_empty():
                raise PSBTParseError("Unsigned transaction has a scriptSig")
        return tx

    @staticmethod
    def _read_map(stream: BytesIO) -> list[tuple[int, bytes, bytes]]:
        """Reads key-value pairs up to the 0x00 separator

        Returns (key type, key data, value) tuples in the order read.
        """
        entries = []
        seen = set()
        while True:
            key_len = read_varint(stream)
            if key_len == 0:
                return entries
            key = read_exact(stream, key_len)
            value = read_exact(stream, read_varint(stream))
            if key in seen:
                raise PSBTParseError(f"Duplicate key {b_to_h(key)}")
            seen.add(key)
            key_type, size = parse_compact_size(key)
            entries.append((key_type, key[size:], value))

    @classmethod
    def from_base64(cls, psbt_str: str) -> "PSBT":
        try:
            psbt_bytes = base64.b64decode(psbt_str.strip(), validate=True)
        except binascii.Error as e:
            raise PSBTParseError(f"Invalid base64: {e}") from e
        return cls.from_bytes(psbt_bytes)

    @classmethod
    def from_hex(cls, psbt_hex: str) -> "PSBT":
        try:
            psbt_bytes = bytes.fromhex(psbt_hex.strip())
        except ValueError as e:
            raise PSBTParseError(f"Invalid hex: {e}") from e
        return cls.from_bytes(psbt_bytes)

    @classmethod
    def decode(cls, text: str) -> "PSBT":
        """Parses a PSBT given either as base64 or as hex"""
        text = text.strip()
        # the magic is "cHNidP" in base64 and "70736274ff" in hex
        if text.lower().startswith(b_to_h(PSBT_MAGIC)):
            return cls.from_hex(text)
        return cls.from_base64(text)

    # --- serialization ---

    @staticmethod
    def _write_map(result: BytesIO, pairs: list[tuple[bytes, bytes]]) -> None:
        for key, value in sorted(pairs, key=lambda pair: pair[0]):
            result.write(prepend_compact_size(key))
            result.write(prepend_compact_size(value))
        result.write(b"\x00")

    def _global_pairs(self) -> list[tuple[bytes, bytes]]:
        pairs = [(encode_varint(PSBT_GLOBAL_UNSIGNED_TX), self.tx.to_bytes(include_witness=False))]
        for xpub, origin in self.xpubs.items():
            pairs.append((encode_varint(PSBT_GLOBAL_XPUB) + xpub, _serialize_key_source(origin)))
        if self.version is not None:
            pairs.append((encode_varint(PSBT_GLOBAL_VERSION), struct.pack("<I", self.version)))
        for key_data, value in self.proprietary.items():
            pairs.append((encode_varint(PSBT_GLOBAL_PROPRIETARY) + key_data, value))
        pairs.extend(self.unknown.items())
        return pairs

    def to_bytes(self) -> bytes:
        if len(self.inputs) != len(self.tx.inputs) or len(self.outputs) != len(self.tx.outputs):
            raise PSBTError("PSBT maps do not match the transaction's inputs and outputs")

        result = BytesIO()
        result.write(PSBT_MAGIC)
        self._write_map(result, self._global_pairs())
        for psbt_input in self.inputs:
            self._write_map(result, psbt_input._pairs())
        for psbt_output in self.outputs:
            self._write_map(result, psbt_output._pairs())
        return result.getvalue()

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    def to_hex(self) -> str:
        return b_to_h(self.to_bytes())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PSBT):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    # --- signer ---

    def _spent_outputs(self) -> tuple[list[Script], list[int]]:
        scripts, amounts = [], []
        for i, psbt_input in enumerate(self.inputs):
            if psbt_input.witness_utxo is None:
                raise PSBTError(f"Input {i} has no witness_utxo")
            scripts.append(psbt_input.witness_utxo.script_pubkey)
            amounts.append(psbt_input.witness_utxo.amount)
        return scripts, amounts

    def sign_taproot_input(self, input_index: int, private_key: PrivateKey) -> bool:
        """Signer: adds a taproot key path signature (tap_key_sig) to an input.

        The key must be the input's tap_internal_key or appear in its
        tap_key_origins without leaf hashes. Taproot digests commit to every
        spent output so all inputs need a witness_utxo.

        Returns
        -------
        bool
            False when the key does not belong to this input

        Raises
        ------
        PSBTError
            missing witness_utxo, non taproot input or invalid sighash type
        """
        psbt_input = self.inputs[input_index]
        x_only = private_key.get_public_key().to_x_only_bytes()

        key_path_origin = psbt_input.tap_key_origins.get(x_only)
        if psbt_input.tap_internal_key != x_only and (
            key_path_origin is None or key_path_origin[0]
        ):
            return False

        scripts, amounts = self._spent_outputs()
        if not scripts[input_index].is_p2tr():
            raise PSBTError(f"Input {input_index} does not spend a taproot output")

        sighash = psbt_input.sighash_type
        if sighash is None:
            sighash = TAPROOT_SIGHASH_ALL
        if sighash not in VALID_TAPROOT_SIGHASHES:
            raise PSBTError(f"Invalid taproot sighash type {sighash:#x}")

        merkle_root = psbt_input.tap_merkle_root or b""
        psbt_input.tap_key_sig = private_key.sign_taproot_input(
            self.tx,
            input_index,
            scripts,
            amounts,
            sighash=sighash,
            merkle_root=merkle_root,
        )
        logger.debug("signed input %d with taproot key %s", input_index, b_to_h(x_only))
        return True

    def sign(self, private_key: PrivateKey) -> int:
        """Signs every input that the key can spend with the key path

        Returns the number of inputs signed; PSBTError if none
        """
        signed = sum(
            1 for i in range(len(self.inputs)) if self.sign_taproot_input(i, private_key)
        )
        if not signed:
            raise PSBTError("Key does not match any input")
        return signed

    # --- finalizer / extractor ---

    def finalize_input(self, input_index: int) -> None:
        """Finalizer: builds the final witness of a key path input.

        Already finalized inputs keep their final fields. In both cases
        partial_sigs, sighash_type, redeem_script, witness_script and
        bip32_derivs are cleared.
        """
        psbt_input = self.inputs[input_index]

        if not psbt_input.is_finalized():
            if psbt_input.tap_key_sig is None:
                raise PSBTError(f"Input {input_index} has no taproot key signature")
            psbt_input.final_scriptwitness = [psbt_input.tap_key_sig]

        psbt_input.partial_sigs = {}
        psbt_input.sighash_type = None
        psbt_input.redeem_script = None
        psbt_input.witness_script = None
        psbt_input.bip32_derivs = {}

    def finalize(self) -> None:
        for i in range(len(self.inputs)):
            self.finalize_input(i)

    def is_finalized(self) -> bool:
        return all(psbt_input.is_finalized() for psbt_input in self.inputs)

    def extract_transaction(self) -> Transaction:
        """Extractor: the network serializable transaction

        Raises
        ------
        PSBTError
            if an input is not finalized
        """
        tx = Transaction.copy(self.tx)
        tx.witnesses = []
        for i, psbt_input in enumerate(self.inputs):
            if not psbt_input.is_finalized():
                raise PSBTError(f"Input {i} is not finalized")
            if psbt_input.final_scriptsig is not None:
                tx.inputs[i].script_sig = Script.copy(psbt_input.final_scriptsig)
            tx.witnesses.append(TxWitnessInput(list(psbt_input.final_scriptwitness)))
        return tx

    def to_dict(self) -> dict[str, Any]:
        """Human readable summary of the PSBT"""
        return {
            "unsigned_tx": self.tx.to_dict(),
            "version": self.version if self.version is not None else 0,
            "inputs": [psbt_input.to_dict() for psbt_input in self.inputs],
            "outputs": [psbt_output.to_dict() for psbt_output in self.outputs],
        }
