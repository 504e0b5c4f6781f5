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

"""The deposit run.

Stages, in order: key, config, build, exchange, verify (presigned spend),
sign, verify (deposit and spend again). Every DepositorError leaving run()
names the stage it came from. Nothing is printed here; the command line
script renders the result.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
from typing import Callable, Iterator, Optional, Union

from depositor.deposit import (
    DepositConfig,
    build_deposit_psbt,
    build_funding_txout,
    check_returned_deposit,
    sign_deposit,
)
from depositor.errors import DepositorError, InvalidConfigError
from depositor.keys import PrivateKey, load_private_key
from depositor.psbt import PSBT
from depositor.signer import SignerClient, SignResponse
from depositor.transactions import Outpoint, Transaction, TxOutput
from depositor.verify import VerificationResult, verify_transaction


logger = logging.getLogger(__name__)

SignerCallable = Callable[[PSBT, str], SignResponse]


@dataclasses.dataclass
class KeyInfo:
    """A freshly generated key: nothing else is done in this mode"""

    secret_hex: str
    internal_key_hex: str
    address: str


@dataclasses.dataclass
class DepositResult:
    """Everything a successful run produced"""

    funding_txout: TxOutput
    deposit_psbt: PSBT
    deposit_tx: Transaction
    spend_psbt: PSBT
    spend_tx: Transaction
    deposit_verification: VerificationResult
    spend_verification: VerificationResult


@contextlib.contextmanager
def stage(name: str) -> Iterator[None]:
    """Tags DepositorErrors raised inside the block with the stage name"""
    try:
        yield
    except DepositorError as e:
        if e.stage is None:
            e.stage = name
        raise


def generate_key(network: str) -> KeyInfo:
    private_key = PrivateKey()
    public_key = private_key.get_public_key()
    return KeyInfo(
        private_key.to_hex(),
        public_key.to_x_only_hex(),
        public_key.get_taproot_address().to_string(network),
    )


def verify_spend(spend_tx: Transaction, deposit_tx: Transaction) -> VerificationResult:
    """The presigned spend must spend output 0 of deposit_tx"""
    deposit_out = Outpoint(deposit_tx.get_txid(), 0)
    return verify_transaction(spend_tx, {deposit_out: deposit_tx.outputs[0]}, "spend")


def run(
    config: DepositConfig, client: Optional[SignerCallable] = None
) -> Union[KeyInfo, DepositResult]:
    """Runs the deposit workflow for config.

    client is called with the unsigned deposit PSBT and the fallback
    address and must return a SignResponse; by default a SignerClient for
    config.client_url is used.

    Returns
    -------
    KeyInfo
        when config asks for a fresh key
    DepositResult
        otherwise

    Raises
    ------
    DepositorError
        any failure, with its stage set
    """
    with stage("key"):
        if config.generate_key:
            logger.info("generating a fresh key")
            return generate_key(config.network)
        private_key = load_private_key(config.priv_key)
        public_key = private_key.get_public_key()
        logger.info("loaded key %s", public_key.to_x_only_hex())

    with stage("config"):
        config.validate()
        if client is None:
            if not config.client_url:
                raise InvalidConfigError("client_url is required")
            try:
                client = SignerClient(config.client_url)
            except ValueError as e:
                raise InvalidConfigError(str(e)) from e

    with stage("build"):
        funding_txout = build_funding_txout(public_key, config.prev_amt)
        logger.debug("funding txout %s", funding_txout.to_hex())
        try:
            psbt = build_deposit_psbt(config)
        except ValueError as e:
            raise InvalidConfigError(f"Cannot build deposit: {e}") from e

    with stage("exchange"):
        response = client(psbt, config.fallback_addr)
        check_returned_deposit(psbt, response.deposit_psbt)

    with stage("verify"):
        # txids do not cover witnesses, so the unsigned deposit already has
        # the final txid
        verify_spend(response.spend_tx, response.deposit_psbt.tx)
        logger.info("presigned spend verified against the prospective deposit")

    with stage("sign"):
        deposit_psbt = response.deposit_psbt
        deposit_tx = sign_deposit(deposit_psbt, private_key, funding_txout)

    with stage("verify"):
        deposit_verification = verify_transaction(
            deposit_tx, {config.prevout: funding_txout}, "deposit"
        )
        spend_verification = verify_spend(response.spend_tx, deposit_tx)

    return DepositResult(
        funding_txout,
        deposit_psbt,
        deposit_tx,
        response.spend_psbt,
        response.spend_tx,
        deposit_verification,
        spend_verification,
    )
