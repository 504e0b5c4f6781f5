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

import re
import unittest
from unittest import mock

import requests

from depositor.errors import (
    BadAddressError,
    ConsensusInvalidError,
    DepositorError,
    InvalidConfigError,
    InvalidSecretError,
    ProtocolError,
    RemoteUnavailableError,
)
from depositor.keys import PrivateKey
from depositor.psbt import PSBT
from depositor.signer import SignerClient
from depositor.transactions import Outpoint
from depositor.workflow import DepositResult, KeyInfo, run, stage

from tests.helpers import (
    CHANGE_SECRET,
    FALLBACK_ADDR,
    OPERATOR_SECRET,
    PREVOUT,
    FakeSigner,
    make_config,
    taproot_address,
)


class FailingSigner:
    def __init__(self, exc):
        self.exc = exc
        self.calls = 0

    def __call__(self, psbt, fallback_addr):
        self.calls += 1
        raise self.exc


class TestStage(unittest.TestCase):
    def test_tags_untagged_errors(self):
        with self.assertRaises(DepositorError) as cm:
            with stage("build"):
                raise InvalidConfigError("boom")
        self.assertEqual(cm.exception.stage, "build")
        self.assertEqual(cm.exception.describe(), "error [build] InvalidConfig: boom")

    def test_keeps_existing_tag(self):
        with self.assertRaises(DepositorError) as cm:
            with stage("exchange"):
                raise ConsensusInvalidError("spend", "bad")
        self.assertEqual(cm.exception.stage, "verify")

    def test_other_exceptions_pass_through(self):
        with self.assertRaises(KeyError):
            with stage("build"):
                raise KeyError("x")


class TestFreshKey(unittest.TestCase):
    def test_fresh_key_no_change(self):
        signer = FakeSigner()
        result = run(make_config(priv_key="new", change_addr=None, change_amt=None), signer)

        self.assertIsInstance(result, KeyInfo)
        self.assertTrue(re.match(r"^[0-9a-f]{64}$", result.secret_hex))
        self.assertTrue(re.match(r"^[0-9a-f]{64}$", result.internal_key_hex))
        self.assertTrue(result.address.startswith("tb1p"))
        self.assertEqual(
            PrivateKey(secret_hex=result.secret_hex).get_public_key().to_x_only_hex(),
            result.internal_key_hex,
        )
        self.assertEqual(signer.calls, [])

    def test_network_prefix(self):
        result = run(make_config(priv_key="new", network="regtest", prevout=None))
        self.assertTrue(result.address.startswith("bcrt1p"))

    def test_no_session_is_created(self):
        with mock.patch("requests.Session") as session:
            run(make_config(priv_key="new", client_url=None))
        session.assert_not_called()


class TestHappyPath(unittest.TestCase):
    def check(self, result, config, signer):
        self.assertIsInstance(result, DepositResult)
        self.assertEqual(len(signer.calls), 1)
        sent_psbt, sent_fallback = signer.calls[0]
        self.assertEqual(sent_fallback, FALLBACK_ADDR)
        self.assertTrue(PSBT.decode(sent_psbt).tx.outputs[0].script_pubkey.is_empty())

        key = PrivateKey(secret_hex=OPERATOR_SECRET)
        self.assertEqual(
            result.funding_txout.script_pubkey,
            key.get_public_key().get_taproot_address().to_script_pub_key(),
        )
        self.assertEqual(result.funding_txout.amount, 100000)

        deposit = result.deposit_tx
        self.assertEqual(deposit.inputs[0].outpoint, Outpoint.from_string(PREVOUT))
        self.assertEqual(deposit.outputs[0].amount, 90000)
        self.assertEqual(deposit.outputs[0].script_pubkey, signer.deposit_script)
        self.assertEqual(len(deposit.witnesses[0].stack), 1)
        self.assertTrue(result.deposit_psbt.is_finalized())

        self.assertEqual(result.spend_tx.inputs[0].outpoint, Outpoint(deposit.get_txid(), 0))
        self.assertEqual(result.deposit_verification.which, "deposit")
        self.assertEqual(result.deposit_verification.spend_types, ["p2tr-key"])
        self.assertEqual(result.spend_verification.which, "spend")
        self.assertEqual(result.spend_verification.spend_types, ["p2tr-key"])
        self.assertEqual(result.spend_verification.fee, signer.fee)

    def test_with_change(self):
        signer = FakeSigner()
        config = make_config()
        result = run(config, signer)
        self.check(result, config, signer)
        self.assertEqual([o.amount for o in result.deposit_tx.outputs], [90000, 9000])
        self.assertEqual(result.deposit_verification.fee, 1000)

    def test_without_change(self):
        signer = FakeSigner()
        config = make_config(change_addr=None, change_amt=None)
        result = run(config, signer)
        self.check(result, config, signer)
        self.assertEqual(len(result.deposit_tx.outputs), 1)
        self.assertEqual(result.deposit_verification.fee, 10000)

    def test_psbt_round_trips(self):
        result = run(make_config(), FakeSigner())
        for psbt in (result.deposit_psbt, result.spend_psbt):
            raw = psbt.to_bytes()
            self.assertEqual(PSBT.from_bytes(raw).to_bytes(), raw)

    def test_default_client(self):
        signer = FakeSigner()
        session = mock.Mock()

        def post(url, json, timeout):
            answer = signer(PSBT.decode(json["psbt"]), json["fallback_addr"])
            resp = mock.Mock(status_code=200)
            resp.json.return_value = {
                "deposit_psbt": answer.deposit_psbt.to_base64(),
                "spend_psbt": answer.spend_psbt.to_hex(),
            }
            return resp

        session.post.side_effect = post
        with mock.patch("requests.Session", return_value=session):
            result = run(make_config(client_url="127.0.0.1:9000"))

        self.assertIsInstance(result, DepositResult)
        self.assertEqual(session.post.call_args[0][0], "http://127.0.0.1:9000/psbt")


class TestFailures(unittest.TestCase):
    def test_signer_unreachable(self):
        session = mock.Mock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        client = SignerClient("127.0.0.1:1", session=session)
        with self.assertRaises(RemoteUnavailableError) as cm:
            run(make_config(), client)
        self.assertEqual(cm.exception.stage, "exchange")
        self.assertTrue(cm.exception.describe().startswith("error [exchange] RemoteUnavailable: "))

    def test_spend_of_wrong_output(self):
        signer = FakeSigner(spend_vout=1)
        with self.assertRaises(ConsensusInvalidError) as cm:
            run(make_config(), signer)
        self.assertEqual(cm.exception.which, "spend")
        self.assertEqual(cm.exception.stage, "verify")
        self.assertIn("unknown prevout", cm.exception.reason)

    def test_spend_signed_with_wrong_key(self):
        with self.assertRaises(ConsensusInvalidError) as cm:
            run(make_config(), FakeSigner(wrong_key=True))
        self.assertEqual(cm.exception.which, "spend")
        self.assertEqual(cm.exception.reason, "input 0: Invalid Schnorr signature")

    def test_spend_overspends_deposit(self):
        with self.assertRaises(ConsensusInvalidError) as cm:
            run(make_config(), FakeSigner(fee=-1))
        self.assertEqual(cm.exception.which, "spend")

    def test_wrong_network_change(self):
        signer = FakeSigner()
        mainnet = taproot_address(CHANGE_SECRET, "mainnet")
        with self.assertRaises(BadAddressError) as cm:
            run(make_config(change_addr=mainnet), signer)
        self.assertEqual(cm.exception.stage, "config")
        self.assertEqual(cm.exception.kind, "NetworkMismatch")
        self.assertEqual(signer.calls, [])

    def test_unpaired_change_fails_before_io(self):
        signer = FakeSigner()
        with self.assertRaises(InvalidConfigError) as cm:
            run(make_config(change_amt=None), signer)
        self.assertEqual(cm.exception.stage, "config")
        self.assertEqual(signer.calls, [])

    def test_missing_client_url(self):
        with self.assertRaises(InvalidConfigError) as cm:
            run(make_config(client_url=None))
        self.assertEqual(cm.exception.stage, "config")

    def test_invalid_secret(self):
        for secret in (None, "zz", "00" * 32):
            with self.subTest(secret=secret):
                signer = FakeSigner()
                with self.assertRaises(InvalidSecretError) as cm:
                    run(make_config(priv_key=secret), signer)
                self.assertEqual(cm.exception.stage, "key")
                self.assertEqual(signer.calls, [])

    def test_signer_tampers_with_change(self):
        signer = FakeSigner()

        def tampering(psbt, fallback_addr):
            answer = signer(psbt, fallback_addr)
            answer.deposit_psbt.tx.outputs[1].amount += 1
            return answer

        with self.assertRaises(ProtocolError) as cm:
            run(make_config(), tampering)
        self.assertEqual(cm.exception.stage, "exchange")

    def test_nothing_is_signed_after_a_failed_exchange(self):
        signer = FailingSigner(RemoteUnavailableError("down"))
        with mock.patch("depositor.workflow.sign_deposit") as sign:
            self.assertRaises(RemoteUnavailableError, run, make_config(), signer)
            sign.assert_not_called()
        self.assertEqual(signer.calls, 1)

    def test_spend_is_checked_before_signing(self):
        with mock.patch("depositor.workflow.sign_deposit") as sign:
            self.assertRaises(ConsensusInvalidError, run, make_config(), FakeSigner(spend_vout=1))
            sign.assert_not_called()


if __name__ == "__main__":
    unittest.main()
