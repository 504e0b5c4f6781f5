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

from depositor.constants import NETWORKS

NETWORK = "signet"


def setup(network: str = "signet") -> str:
    """Selects the network used for addresses, WIF keys and scripts.

    Args:
        network: one of mainnet, testnet, signet, regtest
    """
    global NETWORK
    if network not in NETWORKS:
        raise ValueError(f"Unknown network: {network}")
    NETWORK = network
    return NETWORK


def get_network() -> str:
    global NETWORK
    return NETWORK


def is_mainnet() -> bool:
    global NETWORK
    return NETWORK == "mainnet"
