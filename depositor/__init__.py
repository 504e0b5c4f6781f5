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

__version__ = "0.1.0"

from depositor.setup import setup, get_network

from depositor.keys import (
    PrivateKey,
    PublicKey,
    Address,
    P2pkhAddress,
    P2shAddress,
    SegwitAddress,
    P2wpkhAddress,
    P2wshAddress,
    P2trAddress,
    parse_address,
)

from depositor.script import Script

from depositor.transactions import (
    Outpoint,
    Transaction,
    TxInput,
    TxOutput,
    TxWitnessInput,
)

from depositor.psbt import PSBT, PSBTInput, PSBTOutput

from depositor.deposit import DepositConfig

from depositor.verify import verify_transaction

from depositor.workflow import run

__all__ = [
    'setup',
    'get_network',
    'PrivateKey',
    'PublicKey',
    'Address',
    'P2pkhAddress',
    'P2shAddress',
    'SegwitAddress',
    'P2wpkhAddress',
    'P2wshAddress',
    'P2trAddress',
    'parse_address',
    'Script',
    'Outpoint',
    'Transaction',
    'TxInput',
    'TxOutput',
    'TxWitnessInput',
    'PSBT',
    'PSBTInput',
    'PSBTOutput',
    'DepositConfig',
    'verify_transaction',
    'run',
]
