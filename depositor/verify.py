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

import dataclasses
import logging
from typing import Callable, Mapping, Optional, Union

from depositor.constants import MAX_MONEY
from depositor.errors import ConsensusInvalidError
from depositor.interpreter import (
    CONSENSUS_FLAGS,
    ScriptError,
    TransactionSignatureChecker,
    verify_script,
)
from depositor.transactions import Outpoint, Transaction, TxOutput


logger = logging.getLogger(__name__)

PrevoutOracle = Union[Mapping[Outpoint, TxOutput], Callable[[Outpoint], Optional[TxOutput]]]

NULL_TXID = "00" * 32


@dataclasses.dataclass
class VerificationResult:
    """Outcome of a successful verification.

    which -- "deposit" or "spend"
    txid -- the verified transaction's id
    spend_types -- kind of spend of every input (p2tr-key, p2wpkh, ...)
    total_in -- sum of the spent outputs
    total_out -- sum of the outputs
    """

    which: str
    txid: str
    spend_types: list[str]
    total_in: int
    total_out: int

    @property
    def fee(self) -> int:
        return self.total_in - self.total_out

    def __str__(self) -> str:
        return (
            f"{self.which} {self.txid}: valid ({', '.join(self.spend_types)}), "
            f"fee {self.fee} sat"
        )


def _resolve(prevouts: PrevoutOracle, outpoint: Outpoint) -> Optional[TxOutput]:
    if callable(prevouts):
        return prevouts(outpoint)
    return prevouts.get(outpoint)


def check_transaction(tx: Transaction, which: str) -> int:
    """Context free checks; returns the total of the outputs

    Raises
    ------
    ConsensusInvalidError
        if the transaction can never be valid
    """
    if not tx.inputs:
        raise ConsensusInvalidError(which, "transaction has no inputs")
    if not tx.outputs:
        raise ConsensusInvalidError(which, "transaction has no outputs")

    total_out = 0
    for n, txout in enumerate(tx.outputs):
        if txout.amount < 0:
            raise ConsensusInvalidError(which, f"output {n} has a negative amount")
        if txout.amount > MAX_MONEY:
            raise ConsensusInvalidError(which, f"output {n} amount is too large")
        total_out += txout.amount
        if total_out > MAX_MONEY:
            raise ConsensusInvalidError(which, "total output amount is too large")

    seen = set()
    for i, txin in enumerate(tx.inputs):
        outpoint = txin.outpoint
        if outpoint in seen:
            raise ConsensusInvalidError(which, f"input {i} spends {outpoint} twice")
        seen.add(outpoint)
        if outpoint.txid == NULL_TXID and outpoint.index == 0xFFFFFFFF:
            raise ConsensusInvalidError(which, f"input {i} has a null prevout")

    return total_out


def verify_transaction(
    tx: Transaction, prevouts: PrevoutOracle, which: str = "transaction"
) -> VerificationResult:
    """Verifies tx against the outputs it spends under the consensus rules.

    Parameters
    ----------
    tx : Transaction
        the transaction to verify
    prevouts : mapping or callable
        resolves an Outpoint to the TxOutput it refers to (None or missing
        if unknown)
    which : str
        label used in errors and logs ("deposit" or "spend")

    Raises
    ------
    ConsensusInvalidError
        with the failing rule as reason
    """
    total_out = check_transaction(tx, which)

    spent_outputs: list[TxOutput] = []
    for i, txin in enumerate(tx.inputs):
        txout = _resolve(prevouts, txin.outpoint)
        if txout is None:
            raise ConsensusInvalidError(
                which, f"input {i}: unknown prevout {txin.outpoint}"
            )
        spent_outputs.append(txout)

    total_in = sum(txout.amount for txout in spent_outputs)
    if total_in < total_out:
        raise ConsensusInvalidError(
            which, f"outputs ({total_out} sat) exceed inputs ({total_in} sat)"
        )

    spend_types = []
    for i, txin in enumerate(tx.inputs):
        checker = TransactionSignatureChecker(tx, i, spent_outputs)
        try:
            spend_type = verify_script(
                txin.script_sig.to_bytes(),
                spent_outputs[i].script_pubkey.to_bytes(),
                tx.get_witness(i).stack,
                CONSENSUS_FLAGS,
                checker,
            )
        except ScriptError as e:
            raise ConsensusInvalidError(which, f"input {i}: {e}") from e
        logger.debug("%s input %d verified as %s", which, i, spend_type)
        spend_types.append(spend_type)

    result = VerificationResult(which, tx.get_txid(), spend_types, total_in, total_out)
    logger.info("%s", result)
    return result
