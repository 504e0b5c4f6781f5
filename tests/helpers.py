# Copyright (C) 2024-2026 The bitcoin-depositor developers
#
# This file is part of bitcoin-depositor
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of bitcoin-depositor, including this file, may be copied,
# modified, propagated, or distributed except according to the terms contained
# in the LICENSE file.

from depositor.deposit import DepositConfig
from depositor.keys import PrivateKey, parse_address
from depositor.psbt import PSBT
from depositor.signer import SignResponse
from depositor.transactions import Transaction, TxInput, TxOutput


OPERATOR_SECRET = "1e99423a4ed27608a15a2616a2b0e9e52ced330ac530edcc32c8ffc6a526aedd"
SIGNER_SECRET = "6a" * 32
FALLBACK_SECRET = "33" * 32
CHANGE_SECRET = "44" * 32

PREVOUT_TXID = "7b6412a0eed56338731e83c606f13ebb7a3756b3e4e1dbbe43a7db8d09106e56"
PREVOUT = PREVOUT_TXID + ":1"


def taproot_address(secret_hex, network="signet"):
    key = PrivateKey(secret_hex=secret_hex)
    return key.get_public_key().get_taproot_address().to_string(network)


FALLBACK_ADDR = taproot_address(FALLBACK_SECRET)
CHANGE_ADDR = taproot_address(CHANGE_SECRET)


def make_config(**kwargs):
    """A valid signet deposit config; keyword arguments override fields"""
    values = dict(
        prevout=PREVOUT,
        prev_amt=100000,
        fallback_addr=FALLBACK_ADDR,
        output_amt=90000,
        change_addr=CHANGE_ADDR,
        change_amt=9000,
        client_url="localhost:8080",
        priv_key=OPERATOR_SECRET,
        network="signet",
    )
    values.update(kwargs)
    return DepositConfig(**values)


class FakeSigner:
    """Stands in for the remote signer: locks the deposit output to its own
    taproot key and presigns a spend of it to the fallback address.

    spend_vout -- which output of the deposit the spend refers to
    wrong_key -- sign the spend with a key that does not own the output
    """

    def __init__(self, fee=500, spend_vout=0, wrong_key=False, network="signet"):
        self.key = PrivateKey(secret_hex=SIGNER_SECRET)
        self.fee = fee
        self.spend_vout = spend_vout
        self.wrong_key = wrong_key
        self.network = network
        self.calls = []

    @property
    def deposit_script(self):
        return self.key.get_public_key().get_taproot_address().to_script_pub_key()

    def __call__(self, psbt, fallback_addr):
        self.calls.append((psbt.to_base64(), fallback_addr))

        deposit = PSBT.from_bytes(psbt.to_bytes())
        deposit.tx.outputs[0].script_pubkey = self.deposit_script
        amount = deposit.tx.outputs[0].amount

        spend_tx = Transaction(
            [TxInput(deposit.tx.get_txid(), self.spend_vout)],
            [
                TxOutput(
                    amount - self.fee,
                    parse_address(fallback_addr, self.network).to_script_pub_key(),
                )
            ],
        )
        signing_key = PrivateKey(secret_hex=FALLBACK_SECRET) if self.wrong_key else self.key
        sig = signing_key.sign_taproot_input(spend_tx, 0, [self.deposit_script], [amount])

        spend = PSBT.from_unsigned_tx(spend_tx)
        spend.inputs[0].witness_utxo = TxOutput(amount, self.deposit_script)
        spend.inputs[0].final_scriptwitness = [sig]
        return SignResponse(deposit, spend, spend.extract_transaction())
