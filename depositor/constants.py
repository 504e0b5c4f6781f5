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

NETWORKS = ("mainnet", "testnet", "signet", "regtest")

NETWORK_WIF_PREFIXES = {
    "mainnet": b"\x80",
    "signet": b"\xef",
    "testnet": b"\xef",
    "regtest": b"\xef",
}

NETWORK_P2PKH_PREFIXES = {
    "mainnet": b"\x00",
    "signet": b"\x6f",
    "testnet": b"\x6f",
    "regtest": b"\x6f",
}

NETWORK_P2SH_PREFIXES = {
    "mainnet": b"\x05",
    "signet": b"\xc4",
    "testnet": b"\xc4",
    "regtest": b"\xc4",
}

NETWORK_SEGWIT_PREFIXES = {
    "mainnet": "bc",
    "signet": "tb",
    "testnet": "tb",
    "regtest": "bcrt",
}


# Constants for address types
P2PKH_ADDRESS = "p2pkh"
P2SH_ADDRESS = "p2sh"
P2WPKH_ADDRESS_V0 = "p2wpkhv0"
P2WSH_ADDRESS_V0 = "p2wshv0"
P2TR_ADDRESS_V1 = "p2trv1"
UNKNOWN_SEGWIT_ADDRESS = "segwit"


# Constants related to transaction signature types
TAPROOT_SIGHASH_ALL = 0x00
SIGHASH_ALL = 0x01
SIGHASH_NONE = 0x02
SIGHASH_SINGLE = 0x03
SIGHASH_ANYONECANPAY = 0x80


# Constants for time lock and RBF
DEFAULT_TX_LOCKTIME = b"\x00\x00\x00\x00"

EMPTY_TX_SEQUENCE = b"\x00\x00\x00\x00"
DEFAULT_TX_SEQUENCE = b"\xff\xff\xff\xff"

# 0xFFFFFFFD: replaceable, but no relative or absolute locktime semantics
REPLACE_BY_FEE_SEQUENCE = b"\xfd\xff\xff\xff"

SEQUENCE_FINAL = 0xFFFFFFFF
SEQUENCE_LOCKTIME_DISABLE_FLAG = 1 << 31
SEQUENCE_LOCKTIME_TYPE_FLAG = 1 << 22
SEQUENCE_LOCKTIME_MASK = 0x0000FFFF
LOCKTIME_THRESHOLD = 500000000


# Constants related to transaction versions and scripts
LEAF_VERSION_TAPSCRIPT = 0xC0
TAPROOT_LEAF_MASK = 0xFE
ANNEX_TAG = 0x50

# TX version 2 was introduced in BIP-68 with relative locktime -- tx v1
# does not support relative locktime
DEFAULT_TX_VERSION = b"\x02\x00\x00\x00"


# Monetary constants
SATOSHIS_PER_BITCOIN = 100000000
MAX_MONEY = 21000000 * SATOSHIS_PER_BITCOIN


# Script execution limits
MAX_SCRIPT_SIZE = 10000
MAX_SCRIPT_ELEMENT_SIZE = 520
MAX_OPS_PER_SCRIPT = 201
MAX_STACK_SIZE = 1000
MAX_PUBKEYS_PER_MULTISIG = 20
VALIDATION_WEIGHT_PER_SIGOP_PASSED = 50
VALIDATION_WEIGHT_OFFSET = 50
TAPROOT_CONTROL_BASE_SIZE = 33
TAPROOT_CONTROL_NODE_SIZE = 32
TAPROOT_CONTROL_MAX_NODE_COUNT = 128


# PSBT (BIP-174 / BIP-371)
PSBT_MAGIC = b"psbt\xff"

PSBT_GLOBAL_UNSIGNED_TX = 0x00
PSBT_GLOBAL_XPUB = 0x01
PSBT_GLOBAL_VERSION = 0xFB
PSBT_GLOBAL_PROPRIETARY = 0xFC

PSBT_IN_NON_WITNESS_UTXO = 0x00
PSBT_IN_WITNESS_UTXO = 0x01
PSBT_IN_PARTIAL_SIG = 0x02
PSBT_IN_SIGHASH_TYPE = 0x03
PSBT_IN_REDEEM_SCRIPT = 0x04
PSBT_IN_WITNESS_SCRIPT = 0x05
PSBT_IN_BIP32_DERIVATION = 0x06
PSBT_IN_FINAL_SCRIPTSIG = 0x07
PSBT_IN_FINAL_SCRIPTWITNESS = 0x08
PSBT_IN_RIPEMD160 = 0x0A
PSBT_IN_SHA256 = 0x0B
PSBT_IN_HASH160 = 0x0C
PSBT_IN_HASH256 = 0x0D
PSBT_IN_TAP_KEY_SIG = 0x13
PSBT_IN_TAP_SCRIPT_SIG = 0x14
PSBT_IN_TAP_LEAF_SCRIPT = 0x15
PSBT_IN_TAP_BIP32_DERIVATION = 0x16
PSBT_IN_TAP_INTERNAL_KEY = 0x17
PSBT_IN_TAP_MERKLE_ROOT = 0x18
PSBT_IN_PROPRIETARY = 0xFC

PSBT_OUT_REDEEM_SCRIPT = 0x00
PSBT_OUT_WITNESS_SCRIPT = 0x01
PSBT_OUT_BIP32_DERIVATION = 0x02
PSBT_OUT_TAP_INTERNAL_KEY = 0x05
PSBT_OUT_TAP_TREE = 0x06
PSBT_OUT_TAP_BIP32_DERIVATION = 0x07
PSBT_OUT_PROPRIETARY = 0xFC


# Signer service
DEFAULT_SIGNER_TIMEOUT = 30
SIGNER_PSBT_PATH = "/psbt"
