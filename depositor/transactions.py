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
from io import BytesIO
from typing import Any, BinaryIO, Optional, Union

from depositor.constants import (
    DEFAULT_TX_LOCKTIME,
    DEFAULT_TX_SEQUENCE,
    DEFAULT_TX_VERSION,
    EMPTY_TX_SEQUENCE,
    LEAF_VERSION_TAPSCRIPT,
    SIGHASH_ALL,
    SIGHASH_ANYONECANPAY,
    SIGHASH_NONE,
    SIGHASH_SINGLE,
    TAPROOT_SIGHASH_ALL,
)
from depositor.script import Script
from depositor.utils import (
    b_to_h,
    encode_varint,
    h_to_b,
    hash256,
    prepend_compact_size,
    read_exact,
    read_varint,
    tagged_hash,
    tapleaf_tagged_hash,
)


class Outpoint:
    """Identifies a transaction output: a txid and an output index.

    Attributes
    ----------
    txid : str
        the transaction id as a hex string (byte order as displayed by tools)
    index : int
        the output index (vout)
    """

    def __init__(self, txid: str, index: int) -> None:
        if len(txid) != 64:
            raise ValueError(f"Invalid txid: {txid!r}")
        h_to_b(txid)
        if not 0 <= index <= 0xFFFFFFFF:
            raise ValueError(f"Invalid output index: {index}")
        self.txid = txid.lower()
        self.index = index

    @classmethod
    def from_string(cls, outpoint: str) -> "Outpoint":
        """Parses the "txid:vout" notation

        Raises
        ------
        ValueError
            if the string is not a valid outpoint
        """
        txid, sep, vout = outpoint.strip().partition(":")
        if not sep or not vout.isdigit():
            raise ValueError(f"Outpoint must be txid:vout, got {outpoint!r}")
        return cls(txid, int(vout))

    def to_bytes(self) -> bytes:
        # txids are displayed reversed, serialized little-endian
        return h_to_b(self.txid)[::-1] + struct.pack("<I", self.index)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Outpoint):
            return NotImplemented
        return self.txid == other.txid and self.index == other.index

    def __hash__(self) -> int:
        return hash((self.txid, self.index))

    def __str__(self) -> str:
        return f"{self.txid}:{self.index}"

    def __repr__(self) -> str:
        return f"Outpoint({self})"


class TxInput:
    """Represents a transaction input.

    A transaction input requires a transaction id of a UTXO and the index of
    that UTXO.

    Attributes
    ----------
    txid : str
        the transaction id as a hex string (little-endian as displayed by
        tools)
    txout_index : int
        the index of the UTXO that we want to spend
    script_sig : Script
        the script that satisfies the locking conditions (aka unlocking script)
    sequence : bytes
        the input sequence (for timelocks, RBF, etc.)

    Methods
    -------
    to_bytes()
        serializes TxInput to bytes
    from_stream(stream)
        reads a TxInput from a binary stream (staticmethod)
    copy()
        creates a copy of the object (classmethod)
    """

    def __init__(
        self,
        txid: str,
        txout_index: int,
        script_sig: Optional[Script] = None,
        sequence: Union[str, bytes] = DEFAULT_TX_SEQUENCE,
    ) -> None:
        """See TxInput description"""

        self.txid = txid
        self.txout_index = txout_index
        self.script_sig = script_sig if script_sig is not None else Script([])

        if isinstance(sequence, str):
            self.sequence = h_to_b(sequence)
        else:
            self.sequence = sequence
        if len(self.sequence) != 4:
            raise ValueError("Sequence must be 4 bytes")

    @property
    def outpoint(self) -> Outpoint:
        return Outpoint(self.txid, self.txout_index)

    @property
    def sequence_number(self) -> int:
        return struct.unpack("<I", self.sequence)[0]

    def to_bytes(self) -> bytes:
        """Serializes to bytes"""

        # Internally Bitcoin uses little-endian byte order as it improves
        # speed. Hashes are defined and implemented as big-endian thus
        # those are transmitted in big-endian order. However, when hashes are
        # displayed Bitcoin uses little-endian order.
        txid_bytes = h_to_b(self.txid)[::-1]
        txout_bytes = struct.pack("<L", self.txout_index)
        script_sig_bytes = self.script_sig.to_bytes()

        return (
            txid_bytes
            + txout_bytes
            + prepend_compact_size(script_sig_bytes)
            + self.sequence
        )

    @staticmethod
    def from_stream(stream: BinaryIO) -> "TxInput":
        """Reads a TxInput from a Transaction's serialized data"""

        txid = read_exact(stream, 32)[::-1]
        vout = struct.unpack("<I", read_exact(stream, 4))[0]
        script_sig = read_exact(stream, read_varint(stream))
        sequence = read_exact(stream, 4)
        return TxInput(b_to_h(txid), vout, Script.from_raw(script_sig), sequence)

    def __str__(self) -> str:
        return str(
            {
                "txid": self.txid,
                "txout_index": self.txout_index,
                "script_sig": self.script_sig.to_hex(),
                "sequence": self.sequence.hex(),
            }
        )

    def __repr__(self) -> str:
        return self.__str__()

    @classmethod
    def copy(cls, txin: "TxInput") -> "TxInput":
        return cls(txin.txid, txin.txout_index, Script.copy(txin.script_sig), txin.sequence)


class TxWitnessInput:
    """A list of the witness items required to satisfy the locking conditions
       of a segwit input (aka witness stack).

    Attributes
    ----------
    stack : list[bytes]
        the witness items; hex strings are accepted and converted

    Methods
    -------
    to_bytes()
        returns the serialized witness: item count followed by the items
    copy()
        creates a copy of the object (classmethod)
    """

    def __init__(self, stack: Optional[list[Union[str, bytes]]] = None) -> None:
        self.stack: list[bytes] = [
            h_to_b(item) if isinstance(item, str) else bytes(item)
            for item in (stack or [])
        ]

    def to_bytes(self) -> bytes:
        stack_bytes = encode_varint(len(self.stack))
        for item in self.stack:
            stack_bytes += prepend_compact_size(item)
        return stack_bytes

    @staticmethod
    def from_stream(stream: BinaryIO) -> "TxWitnessInput":
        count = read_varint(stream)
        return TxWitnessInput([read_exact(stream, read_varint(stream)) for _ in range(count)])

    def is_empty(self) -> bool:
        return not self.stack

    @classmethod
    def copy(cls, txwin: "TxWitnessInput") -> "TxWitnessInput":
        return cls(list(txwin.stack))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TxWitnessInput) and self.stack == other.stack

    def __str__(self) -> str:
        return str({"witness_items": [b_to_h(item) for item in self.stack]})

    def __repr__(self) -> str:
        return self.__str__()


class TxOutput:
    """Represents a transaction output

    Attributes
    ----------
    amount : int
        the value we want to send to this output in satoshis
    script_pubkey : Script
        the script that will lock this amount

    Methods
    -------
    to_bytes()
        serializes TxOutput to bytes
    from_stream(stream) / from_raw(hex)
        instantiates object from serialized data (staticmethod)
    copy()
        creates a copy of the object (classmethod)
    """

    def __init__(self, amount: int, script_pubkey: Script) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool):
            raise TypeError("Amount needs to be in satoshis as an integer")

        self.amount = amount
        self.script_pubkey = script_pubkey

    def to_bytes(self) -> bytes:
        """Serializes to bytes"""

        amount_bytes = struct.pack("<q", self.amount)
        return amount_bytes + prepend_compact_size(self.script_pubkey.to_bytes())

    def to_hex(self) -> str:
        return b_to_h(self.to_bytes())

    @staticmethod
    def from_stream(stream: BinaryIO) -> "TxOutput":
        amount = struct.unpack("<q", read_exact(stream, 8))[0]
        script = read_exact(stream, read_varint(stream))
        return TxOutput(amount, Script.from_raw(script))

    @staticmethod
    def from_raw(raw: Union[str, bytes]) -> "TxOutput":
        """Imports a single serialized TxOutput (amount, script) from hex or bytes"""

        stream = BytesIO(h_to_b(raw) if isinstance(raw, str) else raw)
        txout = TxOutput.from_stream(stream)
        if stream.read(1):
            raise ValueError("Trailing data after TxOutput")
        return txout

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TxOutput):
            return NotImplemented
        return self.amount == other.amount and self.script_pubkey == other.script_pubkey

    def __str__(self) -> str:
        return str({"amount": self.amount, "script_pubkey": self.script_pubkey.to_hex()})

    def __repr__(self) -> str:
        return self.__str__()

    @classmethod
    def copy(cls, txout: "TxOutput") -> "TxOutput":
        return cls(txout.amount, Script.copy(txout.script_pubkey))


class Transaction:
    """Represents a Bitcoin transaction

    Attributes
    ----------
    inputs : list (TxInput)
        A list of all the transaction inputs
    outputs : list (TxOutput)
        A list of all the transaction outputs
    locktime : bytes
        The transaction's locktime parameter
    version : bytes
        The transaction version
    witnesses : list (TxWitnessInput)
        The witness structure that corresponds to the inputs; missing
        trailing entries are treated as empty witnesses

    Methods
    -------
    to_bytes(include_witness=True)
        Serializes Transaction to bytes
    to_hex()
        converts result of to_bytes to hexadecimal string
    from_raw(hex) / from_bytes(b)
        Instantiates a Transaction from serialized data (staticmethod)
    get_txid()
        Calculates txid and returns it
    get_wtxid()
        Calculates tx hash (wtxid) and returns it
    get_size(), get_vsize(), get_weight()
        transaction size metrics
    copy()
        creates a copy of the object (classmethod)
    get_transaction_digest(txin_index, script, sighash)
        returns the legacy digest that is to be signed
    get_transaction_segwit_digest(txin_index, script, amount, sighash)
        returns the segwit v0 (BIP-143) digest that is to be signed
    get_transaction_taproot_digest(txin_index, script_pubkeys, amounts, ...)
        returns the segwit v1 (BIP-341/342) digest that is to be signed
    to_dict()
        returns a decoded summary of the transaction
    """

    def __init__(
        self,
        inputs: Optional[list[TxInput]] = None,
        outputs: Optional[list[TxOutput]] = None,
        locktime: Union[str, bytes] = DEFAULT_TX_LOCKTIME,
        version: bytes = DEFAULT_TX_VERSION,
        witnesses: Optional[list[TxWitnessInput]] = None,
    ) -> None:
        self.inputs = inputs if inputs is not None else []
        self.outputs = outputs if outputs is not None else []
        self.witnesses = witnesses if witnesses is not None else []

        if isinstance(locktime, str):
            self.locktime = h_to_b(locktime)
        else:
            self.locktime = locktime

        self.version = version

    @property
    def has_segwit(self) -> bool:
        """True when at least one input carries witness data"""
        return any(not w.is_empty() for w in self.witnesses)

    @property
    def version_number(self) -> int:
        return struct.unpack("<i", self.version)[0]

    @property
    def locktime_number(self) -> int:
        return struct.unpack("<I", self.locktime)[0]

    def get_witness(self, txin_index: int) -> TxWitnessInput:
        """Returns the witness of an input, empty if none was set"""
        if txin_index < len(self.witnesses):
            return self.witnesses[txin_index]
        return TxWitnessInput([])

    def to_bytes(self, include_witness: bool = True) -> bytes:
        """Serializes transaction to bytes following the Bitcoin protocol serialization

        The segwit format (marker, flag and witnesses) is only used when the
        transaction has witness data and include_witness is True.
        """
        inputs_ser = b"".join(txin.to_bytes() for txin in self.inputs)
        outputs_ser = b"".join(txout.to_bytes() for txout in self.outputs)

        if not include_witness or not self.has_segwit:
            return (
                self.version
                + encode_varint(len(self.inputs))
                + inputs_ser
                + encode_varint(len(self.outputs))
                + outputs_ser
                + self.locktime
            )

        witness_ser = b"".join(
            self.get_witness(i).to_bytes() for i in range(len(self.inputs))
        )
        return (
            self.version
            + b"\x00\x01"
            + encode_varint(len(self.inputs))
            + inputs_ser
            + encode_varint(len(self.outputs))
            + outputs_ser
            + witness_ser
            + self.locktime
        )

    def to_hex(self) -> str:
        return b_to_h(self.to_bytes())

    def serialize(self) -> str:
        """Alias for to_hex()"""
        return self.to_hex()

    def get_txid(self) -> str:
        """Calculates the transaction id (txid) and returns it"""
        # txid never covers segwit data (no marker, flag or witness)
        return b_to_h(hash256(self.to_bytes(include_witness=False))[::-1])

    def get_wtxid(self) -> str:
        """Calculates the witness transaction id (wtxid) and returns it"""
        return b_to_h(hash256(self.to_bytes(include_witness=True))[::-1])

    def get_size(self) -> int:
        return len(self.to_bytes())

    def get_weight(self) -> int:
        base_size = len(self.to_bytes(include_witness=False))
        return 3 * base_size + self.get_size()

    def get_vsize(self) -> int:
        """Virtual size: weight / 4 rounded up"""
        return (self.get_weight() + 3) // 4

    @staticmethod
    def from_stream(stream: BinaryIO, allow_witness: bool = True) -> "Transaction":
        """Reads a Transaction; with allow_witness=False a zero input count
        is not taken as the segwit marker (PSBT unsigned transactions)"""
        version = read_exact(stream, 4)

        n_inputs = read_varint(stream)
        has_segwit = False
        if n_inputs == 0 and allow_witness:
            # marker byte; the flag that follows must be 1
            flag = read_exact(stream, 1)
            if flag != b"\x01":
                raise ValueError("Unknown transaction serialization flag")
            has_segwit = True
            n_inputs = read_varint(stream)

        inputs = [TxInput.from_stream(stream) for _ in range(n_inputs)]
        n_outputs = read_varint(stream)
        outputs = [TxOutput.from_stream(stream) for _ in range(n_outputs)]

        witnesses = []
        if has_segwit:
            witnesses = [TxWitnessInput.from_stream(stream) for _ in range(n_inputs)]
            if all(w.is_empty() for w in witnesses):
                raise ValueError("Superfluous witness record")

        locktime = read_exact(stream, 4)
        return Transaction(inputs, outputs, locktime, version, witnesses)

    @staticmethod
    def from_bytes(rawtx: bytes, allow_witness: bool = True) -> "Transaction":
        stream = BytesIO(rawtx)
        tx = Transaction.from_stream(stream, allow_witness)
        if stream.read(1):
            raise ValueError("Trailing data after transaction")
        return tx

    @staticmethod
    def from_raw(rawtxhex: str) -> "Transaction":
        """Imports a Transaction from hexadecimal data"""
        return Transaction.from_bytes(h_to_b(rawtxhex))

    def __str__(self) -> str:
        return str(self.to_dict())

    def __repr__(self) -> str:
        return f"Transaction({self.get_txid()})"

    @classmethod
    def copy(cls, tx: "Transaction") -> "Transaction":
        ins = [TxInput.copy(txin) for txin in tx.inputs]
        outs = [TxOutput.copy(txout) for txout in tx.outputs]
        wits = [TxWitnessInput.copy(witness) for witness in tx.witnesses]
        return cls(ins, outs, tx.locktime, tx.version, wits)

    def to_dict(self) -> dict[str, Any]:
        """Decoded summary, similar to bitcoin-cli decoderawtransaction"""
        return {
            "txid": self.get_txid(),
            "wtxid": self.get_wtxid(),
            "version": self.version_number,
            "locktime": self.locktime_number,
            "size": self.get_size(),
            "vsize": self.get_vsize(),
            "weight": self.get_weight(),
            "inputs": [
                {
                    "outpoint": str(txin.outpoint),
                    "script_sig": txin.script_sig.to_hex(),
                    "sequence": txin.sequence_number,
                    "witness": [b_to_h(item) for item in self.get_witness(i).stack],
                }
                for i, txin in enumerate(self.inputs)
            ],
            "outputs": [
                {
                    "n": n,
                    "amount": txout.amount,
                    "script_pubkey": txout.script_pubkey.to_hex(),
                    "asm": txout.script_pubkey.to_asm(),
                    "type": txout.script_pubkey.get_script_type(),
                }
                for n, txout in enumerate(self.outputs)
            ],
        }

    def get_transaction_digest(
        self, txin_index: int, script: Script, sighash: int = SIGHASH_ALL
    ) -> bytes:
        """Returns the transaction's legacy digest for signing.
        https://en.bitcoin.it/wiki/OP_CHECKSIG

        |  SIGHASH types (see constants.py):
        |      SIGHASH_ALL - signs all inputs and outputs (default)
        |      SIGHASH_NONE - signs all of the inputs
        |      SIGHASH_SINGLE - signs all inputs but only txin_index output
        |      SIGHASH_ANYONECANPAY (only combined with one of the above)

        Attributes
        ----------
        txin_index : int
            The index of the input that we wish to sign
        script : Script
            The script code (scriptPubKey or redeem script, with signatures
            and code separators already removed by the caller)
        sighash : int
            The type of the signature hash to be created
        """

        # SIGHASH_SINGLE without a matching output signs the number one
        if (sighash & 0x1F) == SIGHASH_SINGLE and txin_index >= len(self.outputs):
            return (1).to_bytes(32, "little")

        tmp_tx = Transaction.copy(self)
        tmp_tx.witnesses = []

        for txin in tmp_tx.inputs:
            txin.script_sig = Script([])

        # the input being signed temporarily carries the script code
        tmp_tx.inputs[txin_index].script_sig = script

        if (sighash & 0x1F) == SIGHASH_NONE:
            tmp_tx.outputs = []
            for i in range(len(tmp_tx.inputs)):
                if i != txin_index:
                    tmp_tx.inputs[i].sequence = EMPTY_TX_SEQUENCE

        elif (sighash & 0x1F) == SIGHASH_SINGLE:
            # outputs before txin_index become "null" outputs (-1, empty script)
            txout = tmp_tx.outputs[txin_index]
            tmp_tx.outputs = [TxOutput(-1, Script([])) for _ in range(txin_index)]
            tmp_tx.outputs.append(txout)
            for i in range(len(tmp_tx.inputs)):
                if i != txin_index:
                    tmp_tx.inputs[i].sequence = EMPTY_TX_SEQUENCE

        if sighash & SIGHASH_ANYONECANPAY:
            tmp_tx.inputs = [tmp_tx.inputs[txin_index]]

        # sighash is hashed as a 4 byte value
        tx_for_signing = tmp_tx.to_bytes(include_witness=False) + struct.pack("<I", sighash)
        return hash256(tx_for_signing)

    def get_transaction_segwit_digest(
        self, txin_index: int, script: Script, amount: int, sighash: int = SIGHASH_ALL
    ) -> bytes:
        """Returns the segwit v0 transaction's digest for signing.
        https://github.com/bitcoin/bips/blob/master/bip-0143.mediawiki

        Attributes
        ----------
        txin_index : int
            The index of the input that we wish to sign
        script : Script
            The scriptCode that corresponds to the segwit output type that we
            want to spend (P2PKH template for P2WPKH, the witness script for
            P2WSH)
        amount : int
            The amount of the UTXO to spend (in satoshis)
        sighash : int
            The type of the signature hash to be created
        """

        hash_prevouts = b"\x00" * 32
        hash_sequence = b"\x00" * 32
        hash_outputs = b"\x00" * 32

        basic_sig_hash_type = sighash & 0x1F
        anyone_can_pay = bool(sighash & SIGHASH_ANYONECANPAY)
        sign_all = basic_sig_hash_type not in (SIGHASH_SINGLE, SIGHASH_NONE)

        if not anyone_can_pay:
            hash_prevouts = hash256(
                b"".join(txin.outpoint.to_bytes() for txin in self.inputs)
            )

        if not anyone_can_pay and sign_all:
            hash_sequence = hash256(b"".join(txin.sequence for txin in self.inputs))

        if sign_all:
            hash_outputs = hash256(b"".join(txout.to_bytes() for txout in self.outputs))
        elif basic_sig_hash_type == SIGHASH_SINGLE and txin_index < len(self.outputs):
            hash_outputs = hash256(self.outputs[txin_index].to_bytes())

        txin = self.inputs[txin_index]
        tx_for_signing = (
            self.version
            + hash_prevouts
            + hash_sequence
            + txin.outpoint.to_bytes()
            + prepend_compact_size(script.to_bytes())
            + struct.pack("<q", amount)
            + txin.sequence
            + hash_outputs
            + self.locktime
            + struct.pack("<I", sighash)
        )

        return hash256(tx_for_signing)

    def get_transaction_taproot_digest(
        self,
        txin_index: int,
        script_pubkeys: list[Script],
        amounts: list[int],
        ext_flag: int = 0,
        script: Optional[Script] = None,
        leaf_ver: int = LEAF_VERSION_TAPSCRIPT,
        sighash: int = TAPROOT_SIGHASH_ALL,
        annex: Optional[bytes] = None,
        codesep_pos: int = 0xFFFFFFFF,
        tapleaf_hash: Optional[bytes] = None,
    ) -> bytes:
        """Returns the segwit v1 (taproot) transaction's digest for signing.
        https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki

             |  SIGHASH types (see constants.py):
             |      TAPROOT_SIGHASH_ALL - signs all inputs and outputs (default)
             |      SIGHASH_ALL - signs all inputs and outputs
             |      SIGHASH_NONE - signs all of the inputs
             |      SIGHASH_SINGLE - signs all inputs but only txin_index output
             |      SIGHASH_ANYONECANPAY (only combined with one of the above)

             Attributes
             ----------
             txin_index : int
                 The index of the input that we wish to sign
             script_pubkeys : list(Script)
                 The scriptPubkeys that correspond to all the inputs/UTXOs
             amounts : list(int)
                 The amounts that correspond to all the inputs/UTXOs
             ext_flag : int
                 Extension mechanism, 0 for key path, 1 for script path (BIP-342)
             script : Script
                 The tapleaf script being executed (ext_flag=1)
             leaf_ver : int
                 The leaf version of that script
             sighash : int
                 The type of the signature hash to be created
             annex : bytes or None
                 The annex of the input, starting with 0x50
             codesep_pos : int
                 Opcode position of the last executed OP_CODESEPARATOR
             tapleaf_hash : bytes or None
                 Precomputed tapleaf hash; computed from script if omitted

        Raises
        ------
        ValueError
            for undefined sighash types, mismatching amounts/scripts or
            SIGHASH_SINGLE without a corresponding output
        """

        if sighash not in (0x00, 0x01, 0x02, 0x03, 0x81, 0x82, 0x83):
            raise ValueError(f"Invalid taproot sighash type: {sighash:#04x}")
        if len(script_pubkeys) != len(self.inputs) or len(amounts) != len(self.inputs):
            raise ValueError("Taproot digests need every spent output's script and amount")

        sighash_none = sighash & 0x03 == SIGHASH_NONE
        sighash_single = sighash & 0x03 == SIGHASH_SINGLE
        anyone_can_pay = sighash & 0x80 == SIGHASH_ANYONECANPAY

        # epoch, hash type, version, locktime
        tx_for_signing = bytes([0]) + bytes([sighash]) + self.version + self.locktime

        if not anyone_can_pay:
            tx_for_signing += hashlib.sha256(
                b"".join(txin.outpoint.to_bytes() for txin in self.inputs)
            ).digest()
            tx_for_signing += hashlib.sha256(
                b"".join(struct.pack("<q", a) for a in amounts)
            ).digest()
            tx_for_signing += hashlib.sha256(
                b"".join(prepend_compact_size(s.to_bytes()) for s in script_pubkeys)
            ).digest()
            tx_for_signing += hashlib.sha256(
                b"".join(txin.sequence for txin in self.inputs)
            ).digest()

        if not (sighash_none or sighash_single):
            tx_for_signing += hashlib.sha256(
                b"".join(txout.to_bytes() for txout in self.outputs)
            ).digest()

        # data about this input
        spend_type = ext_flag * 2 + (1 if annex is not None else 0)
        tx_for_signing += bytes([spend_type])

        if anyone_can_pay:
            txin = self.inputs[txin_index]
            tx_for_signing += txin.outpoint.to_bytes()
            tx_for_signing += struct.pack("<q", amounts[txin_index])
            tx_for_signing += prepend_compact_size(script_pubkeys[txin_index].to_bytes())
            tx_for_signing += txin.sequence
        else:
            tx_for_signing += struct.pack("<I", txin_index)

        if annex is not None:
            if not annex or annex[0] != 0x50:
                raise ValueError("Invalid annex: first byte must be 0x50")
            tx_for_signing += hashlib.sha256(prepend_compact_size(annex)).digest()

        # data about this output
        if sighash_single:
            if txin_index >= len(self.outputs):
                raise ValueError("SIGHASH_SINGLE without a corresponding output")
            tx_for_signing += hashlib.sha256(self.outputs[txin_index].to_bytes()).digest()

        if ext_flag == 1:
            # script path spending (signature message extension, BIP-342)
            if tapleaf_hash is None:
                if script is None:
                    raise ValueError("Script path digests need the tapleaf script")
                tapleaf_hash = tapleaf_tagged_hash(script.to_bytes(), leaf_ver)
            tx_for_signing += tapleaf_hash
            # key version, currently only 0
            tx_for_signing += bytes([0])
            tx_for_signing += struct.pack("<I", codesep_pos)

        return tagged_hash(tx_for_signing, "TapSighash")
