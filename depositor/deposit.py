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

"""Construction and signing of the deposit transaction.

The deposit spends one funding UTXO locked to the operator's taproot key.
Output 0 is the deposit output, its script is left empty and is chosen by
the remote signer; output 1, if present, is change.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from depositor.constants import (
    DEFAULT_TX_LOCKTIME,
    DEFAULT_TX_VERSION,
    NETWORKS,
    REPLACE_BY_FEE_SEQUENCE,
    SIGHASH_ALL,
)
from depositor.errors import (
    InvalidConfigError,
    MissingTapKeySigError,
    ProtocolError,
    SigningError,
)
from depositor.keys import Address, PrivateKey, PublicKey, SegwitAddress, parse_address
from depositor.psbt import PSBT, PSBTError, PSBTInput
from depositor.script import Script
from depositor.setup import get_network
from depositor.transactions import Outpoint, Transaction, TxInput, TxOutput
from depositor.utils import parse_amount


logger = logging.getLogger(__name__)

# fingerprint of the empty (default) BIP-32 key source
EMPTY_FINGERPRINT = b"\x00\x00\x00\x00"


class DepositConfig:
    """The parameters of one deposit run.

    Amounts may be given as integers (satoshis) or strings such as "90000",
    "90000 sat" or "0.0009 BTC". validate() parses everything and must be
    called before the config is used.

    Attributes
    ----------
    prevout : Outpoint
        the funding UTXO
    prev_amt : int
        the value of the funding UTXO in satoshis
    fallback_addr : str
        the address the presigned spend may pay to
    output_amt : int
        the value of the deposit output
    change_addr : str or None
        change destination, requires change_amt
    change_amt : int or None
        change value, requires change_addr
    client_url : str or None
        the signer's host:port
    priv_key : str or None
        hex secret, WIF or "new"
    network : str
        one of mainnet, testnet, signet, regtest
    """

    def __init__(
        self,
        prevout: Union[str, Outpoint, None] = None,
        prev_amt: Union[int, str, None] = None,
        fallback_addr: Optional[str] = None,
        output_amt: Union[int, str, None] = None,
        change_addr: Optional[str] = None,
        change_amt: Union[int, str, None] = None,
        client_url: Optional[str] = None,
        priv_key: Optional[str] = None,
        network: Optional[str] = None,
    ) -> None:
        self.prevout = prevout
        self.prev_amt = prev_amt
        self.fallback_addr = fallback_addr
        self.output_amt = output_amt
        self.change_addr = change_addr
        self.change_amt = change_amt
        self.client_url = client_url
        self.priv_key = priv_key
        self.network = network or get_network()

        self.fallback_address: Optional[Union[Address, SegwitAddress]] = None
        self.change_address: Optional[Union[Address, SegwitAddress]] = None

    @property
    def generate_key(self) -> bool:
        return self.priv_key is not None and self.priv_key.strip() == "new"

    def validate(self) -> "DepositConfig":
        """Parses and checks the configuration in place

        Raises
        ------
        InvalidConfigError
            missing or malformed values, change_addr without change_amt (or
            the reverse), amounts out of range or above the funding amount
        BadAddressError
            an address that cannot be parsed
        NetworkMismatchError
            an address of another network
        """
        if self.network not in NETWORKS:
            raise InvalidConfigError(f"Unknown network {self.network!r}")

        if (self.change_addr is None) != (self.change_amt is None):
            raise InvalidConfigError("change_addr and change_amt must be given together")

        if self.prevout is None:
            raise InvalidConfigError("prevout is required")
        if not isinstance(self.prevout, Outpoint):
            try:
                self.prevout = Outpoint.from_string(self.prevout)
            except ValueError as e:
                raise InvalidConfigError(str(e)) from e

        self.prev_amt = self._amount("prev_amt", self.prev_amt)
        self.output_amt = self._amount("output_amt", self.output_amt)
        if self.change_amt is not None:
            self.change_amt = self._amount("change_amt", self.change_amt)

        spent = self.output_amt + (self.change_amt or 0)
        if spent > self.prev_amt:
            raise InvalidConfigError(
                f"Outputs ({spent} sat) exceed the funding amount ({self.prev_amt} sat)"
            )

        if not self.fallback_addr:
            raise InvalidConfigError("fallback_addr is required")
        self.fallback_address = parse_address(self.fallback_addr, self.network)
        if self.change_addr is not None:
            self.change_address = parse_address(self.change_addr, self.network)

        logger.debug(
            "config: prevout %s prev_amt %d output_amt %d change %s",
            self.prevout,
            self.prev_amt,
            self.output_amt,
            self.change_amt,
        )
        return self

    @staticmethod
    def _amount(name: str, value: Union[int, str, None]) -> int:
        if value is None:
            raise InvalidConfigError(f"{name} is required")
        try:
            return parse_amount(value)
        except ValueError as e:
            raise InvalidConfigError(f"{name}: {e}") from e

    def fee(self) -> int:
        """The implicit fee: funding amount minus the outputs"""
        return self.prev_amt - self.output_amt - (self.change_amt or 0)


def build_funding_txout(public_key: PublicKey, amount: int) -> TxOutput:
    """The funding UTXO: amount locked to the key path only P2TR of public_key"""

    return TxOutput(amount, public_key.get_taproot_address().to_script_pub_key())


def build_deposit_tx(config: DepositConfig) -> Transaction:
    """The unsigned deposit: version 2, locktime 0, one RBF input and the
    deposit output (empty script) followed by the optional change"""

    txin = TxInput(
        config.prevout.txid,
        config.prevout.index,
        sequence=REPLACE_BY_FEE_SEQUENCE,
    )
    outputs = [TxOutput(config.output_amt, Script([]))]
    if config.change_address is not None:
        outputs.append(TxOutput(config.change_amt, config.change_address.to_script_pub_key()))

    return Transaction([txin], outputs, DEFAULT_TX_LOCKTIME, DEFAULT_TX_VERSION)


def build_deposit_psbt(config: DepositConfig) -> PSBT:
    """Creator: wraps the unsigned deposit; no input metadata is attached"""

    psbt = PSBT.from_unsigned_tx(build_deposit_tx(config))
    logger.info("built deposit psbt with %d outputs", len(psbt.tx.outputs))
    return psbt


def check_returned_deposit(sent: PSBT, returned: PSBT) -> None:
    """Checks that the signer only filled in the deposit output's script

    Raises
    ------
    ProtocolError
        if anything else in the transaction differs
    """
    ours, theirs = sent.tx, returned.tx

    if theirs.version != ours.version or theirs.locktime != ours.locktime:
        raise ProtocolError("Returned deposit changed version or locktime")
    if len(theirs.inputs) != len(ours.inputs):
        raise ProtocolError("Returned deposit changed the inputs")
    for a, b in zip(ours.inputs, theirs.inputs):
        if a.outpoint != b.outpoint or a.sequence != b.sequence:
            raise ProtocolError("Returned deposit changed the inputs")

    if len(theirs.outputs) != len(ours.outputs):
        raise ProtocolError("Returned deposit changed the number of outputs")
    for n, (a, b) in enumerate(zip(ours.outputs, theirs.outputs)):
        if a.amount != b.amount:
            raise ProtocolError(f"Returned deposit changed the amount of output {n}")
        if n > 0 and a.script_pubkey != b.script_pubkey:
            raise ProtocolError(f"Returned deposit changed the script of output {n}")

    if theirs.outputs[0].script_pubkey.is_empty():
        raise ProtocolError("Returned deposit has no script for the deposit output")


def update_deposit_inputs(psbt: PSBT, public_key: PublicKey, funding_txout: TxOutput) -> None:
    """Updater: replaces every input map with the locally known fields"""

    x_only = public_key.to_x_only_bytes()
    for i in range(len(psbt.inputs)):
        psbt_input = PSBTInput()
        psbt_input.witness_utxo = TxOutput.copy(funding_txout)
        psbt_input.tap_internal_key = x_only
        psbt_input.tap_key_origins = {x_only: ([], EMPTY_FINGERPRINT, [])}
        psbt_input.sighash_type = SIGHASH_ALL
        psbt.inputs[i] = psbt_input


def sign_deposit(
    psbt: PSBT, private_key: PrivateKey, funding_txout: TxOutput
) -> Transaction:
    """Updates, signs and finalizes the deposit PSBT in place and extracts it

    Raises
    ------
    SigningError
        if an input cannot be signed
    MissingTapKeySigError
        if an input has no key signature at finalization
    """
    update_deposit_inputs(psbt, private_key.get_public_key(), funding_txout)

    try:
        psbt.sign(private_key)
    except PSBTError as e:
        raise SigningError(str(e)) from e

    try:
        psbt.finalize()
    except PSBTError as e:
        raise MissingTapKeySigError(str(e)) from e

    try:
        tx = psbt.extract_transaction()
    except PSBTError as e:
        raise SigningError(str(e)) from e

    logger.info("signed deposit %s", tx.get_txid())
    return tx
