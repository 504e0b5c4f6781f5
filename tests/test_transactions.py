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

import unittest

from depositor.constants import SIGHASH_ALL, SIGHASH_ANYONECANPAY, SIGHASH_NONE, SIGHASH_SINGLE
from depositor.keys import P2pkhAddress, PrivateKey
from depositor.script import Script
from depositor.setup import setup
from depositor.transactions import Outpoint, Transaction, TxInput, TxOutput, TxWitnessInput
from depositor.utils import tapleaf_tagged_hash, to_satoshis


P2TR_SIGNED_02 = (
    "02000000000101566e10098ddba743bedbe1e4b356377abb3ef106c6831e733863d5eea012647b0100000000ffffffff"
    "01a00f0000000000001976a9148e48a6c5108efac226d33018b5347bb24adec37a88ac01403065c743ec6261ce82abe9"
    "ea13f718702f9fb23f6d95ffe0eb59266d38416ad29b664370c8f6719a8e1354f38c58c7c6e965cec71b9b5b0f8c100d"
    "207a448bd100000000"
)

P2TR_SIGNED_03 = (
    "02000000000101af13b1a8f3ed87c4a9424bd063f87d0ba3730031da90a3868a51a08bbdf8282a0100000000ffffffff"
    "01a00f0000000000001976a9148e48a6c5108efac226d33018b5347bb24adec37a88ac0140e19f0031e545a607f5d9b3"
    "f2588cd39464be8cf845defdc15174f03d929ac8c96eef3fad46e1afc1262504fce884aa2ac520f4921c317d2b077916"
    "7f7ff33d6c00000000"
)

P2TR_SIGNED_SINGLE = (
    "02000000000101566e10098ddba743bedbe1e4b356377abb3ef106c6831e733863d5eea012647b0100000000ffffffff"
    "01a00f0000000000001976a9148e48a6c5108efac226d33018b5347bb24adec37a88ac01414ace20f539e3bcf3de7c14"
    "655fd2b0076e08de524b750039eeea286a69b858888258820f0677240768418373c96d38f27b1a904b4dbb092e2483c2"
    "a49471f4980300000000"
)

P2TR_SIGNED_NONE = (
    "02000000000101566e10098ddba743bedbe1e4b356377abb3ef106c6831e733863d5eea012647b0100000000ffffffff"
    "01a00f0000000000001976a9148e48a6c5108efac226d33018b5347bb24adec37a88ac01419ec0b0d8aec0fbf9bfd64b"
    "dd3cd4c854434bdaff6ad1a40ff21dfd1e125cb3008d0e490fc773c238654253ed4b4af55f857e67789c91e791d28a9e"
    "a3989f20290200000000"
)

P2TR_SIGNED_ALL_ANYONECANPAY = (
    "02000000000101566e10098ddba743bedbe1e4b356377abb3ef106c6831e733863d5eea012647b0100000000ffffffff"
    "01a00f0000000000001976a9148e48a6c5108efac226d33018b5347bb24adec37a88ac0141e8acdacc3f86d8e4d046f6"
    "7037a6b69423798308e0d6a1e4ff4117a703d14458b4922fb6ddd07161a64cee572cc3a9fb28a1b0b29abd0743fb757c"
    "534eb2cc5c8100000000"
)

P2TR_KEY_PATH_WITH_SCRIPT_TREE = (
    "0200000000010166fa733b552a229823b72571c3d91349ae90354926ff45e67257c6c4739d4c3d0000000000ffffffff"
    "01b80b000000000000225120d4213cd57207f22a9e905302007b99b84491534729bd5f4065bdcb42ed10fcd50140dff6"
    "c2256f49fd03b03c0ede86e6ba5ae64c84217438f24752e5493c097983a8358b31cc821f84c63f0cbc39dae2885e669e"
    "7cfe370696dcde27bf99e712fdad00000000"
)

P2PKH_TO_P2WPKH = (
    "020000000178105e8743e15494e119a39702704ae9eeb45dd0f1c9cdabb7b7d666aa3a7b5a000000006a473044022041"
    "5155963673e5582aadfdb8d53874c9764cfd56c28be8d5f2838fdab6365f9902207bf28f875e15ff53e81f3245feb07c"
    "6120df4a653feabba3b7bf274790ea1fd1012102d82c9860e36f15d7b72aa59e29347f951277c21cd4d34822acdeeadb"
    "cff8a546ffffffff01301b0f0000000000160014fd337ad3bf81e086d96a68e1f8d6a0a510f8c24a00000000"
)


class TestOutpoint(unittest.TestCase):
    def test_from_string(self):
        txid = "7b6412a0eed56338731e83c606f13ebb7a3756b3e4e1dbbe43a7db8d09106e56"
        outpoint = Outpoint.from_string(" " + txid.upper() + ":1 ")
        self.assertEqual(outpoint.txid, txid)
        self.assertEqual(outpoint.index, 1)
        self.assertEqual(str(outpoint), txid + ":1")
        self.assertEqual(outpoint, Outpoint(txid, 1))
        self.assertEqual(len({outpoint, Outpoint(txid, 1)}), 1)

    def test_serialization_is_reversed(self):
        outpoint = Outpoint("00" * 31 + "01", 2)
        self.assertEqual(outpoint.to_bytes(), b"\x01" + b"\x00" * 31 + b"\x02\x00\x00\x00")

    def test_invalid(self):
        txid = "7b6412a0eed56338731e83c606f13ebb7a3756b3e4e1dbbe43a7db8d09106e56"
        for value in ("", txid, txid + ":", txid + ":-1", txid + ":x", txid[:-2] + ":0", "zz" * 32 + ":0"):
            with self.subTest(value=value):
                self.assertRaises(ValueError, Outpoint.from_string, value)
        self.assertRaises(ValueError, Outpoint, txid, 2**32)


class TestSerialization(unittest.TestCase):
    def test_legacy_round_trip(self):
        tx = Transaction.from_raw(P2PKH_TO_P2WPKH)
        self.assertFalse(tx.has_segwit)
        self.assertEqual(tx.to_hex(), P2PKH_TO_P2WPKH)
        self.assertEqual(tx.get_txid(), tx.get_wtxid())
        self.assertEqual(tx.inputs[0].txid, "5a7b3aaa66d6b7b7abcdc9f1d05db4eee94a700297a319e19454e143875e1078")
        self.assertEqual(tx.outputs[0].amount, to_satoshis(0.0099))

    def test_segwit_round_trip(self):
        tx = Transaction.from_raw(P2TR_SIGNED_02)
        self.assertTrue(tx.has_segwit)
        self.assertEqual(tx.to_hex(), P2TR_SIGNED_02)
        self.assertEqual(len(tx.witnesses[0].stack), 1)
        self.assertNotEqual(tx.get_txid(), tx.get_wtxid())
        # the txid does not commit to witness data
        stripped = Transaction.copy(tx)
        stripped.witnesses = []
        self.assertEqual(stripped.get_txid(), tx.get_txid())

    def test_size_and_vsize(self):
        tx = Transaction.from_raw(P2TR_SIGNED_02)
        self.assertEqual(tx.get_size(), 153)
        self.assertEqual(tx.get_vsize(), 102)
        self.assertEqual(Transaction.from_raw(P2TR_SIGNED_ALL_ANYONECANPAY).get_vsize(), 103)

    def test_missing_witnesses_are_empty(self):
        tx = Transaction(
            [TxInput("11" * 32, 0), TxInput("22" * 32, 1)],
            [TxOutput(1000, Script(["OP_1", "33" * 32]))],
            witnesses=[TxWitnessInput(["aa"])],
        )
        raw = tx.to_hex()
        # second input gets an empty witness
        self.assertTrue(raw.endswith("01" + "01aa" + "00" + "00000000"))
        self.assertEqual(Transaction.from_raw(raw).to_hex(), raw)

    def test_rejects_malformed(self):
        self.assertRaises(ValueError, Transaction.from_raw, P2PKH_TO_P2WPKH + "00")
        self.assertRaises(ValueError, Transaction.from_raw, P2PKH_TO_P2WPKH[:-10])
        # segwit marker with only empty witnesses
        superfluous = "02000000" + "0001" + "01" + "11" * 32 + "00000000" + "00" + "ffffffff" + "00" + "00" + "00000000"
        self.assertRaises(ValueError, Transaction.from_raw, superfluous)

    def test_output_raw(self):
        txout = TxOutput.from_raw("a00f0000000000001976a9148e48a6c5108efac226d33018b5347bb24adec37a88ac")
        self.assertEqual(txout.amount, 4000)
        self.assertEqual(txout.script_pubkey.get_script_type(), "p2pkh")
        self.assertRaises(TypeError, TxOutput, 1.5, Script([]))

    def test_to_dict(self):
        details = Transaction.from_raw(P2TR_SIGNED_02).to_dict()
        self.assertEqual(details["vsize"], 102)
        self.assertEqual(
            details["inputs"][0]["outpoint"],
            "7b6412a0eed56338731e83c606f13ebb7a3756b3e4e1dbbe43a7db8d09106e56:1",
        )
        self.assertEqual(details["outputs"][0]["type"], "p2pkh")
        self.assertEqual(details["outputs"][0]["amount"], 4000)


class TestLegacyDigest(unittest.TestCase):
    def test_single_without_output(self):
        tx = Transaction(
            [TxInput("11" * 32, 0), TxInput("22" * 32, 0)],
            [TxOutput(1000, Script(["OP_1"]))],
        )
        self.assertEqual(tx.get_transaction_digest(1, Script(["OP_1"]), SIGHASH_SINGLE), (1).to_bytes(32, "little"))
        self.assertNotEqual(tx.get_transaction_digest(0, Script(["OP_1"]), SIGHASH_SINGLE), (1).to_bytes(32, "little"))

    def test_digest_does_not_modify_transaction(self):
        tx = Transaction.from_raw(P2PKH_TO_P2WPKH)
        tx.get_transaction_digest(0, Script(["OP_1"]), SIGHASH_NONE | SIGHASH_ANYONECANPAY)
        self.assertEqual(tx.to_hex(), P2PKH_TO_P2WPKH)


class TestCreateP2trTransaction(unittest.TestCase):
    maxDiff = None

    def setUp(self):
        setup("testnet")
        self.priv02 = PrivateKey("cV3R88re3AZSBnWhBBNdiCKTfwpMKkYYjdiR13HQzsU7zoRNX7JL")
        self.pub02 = self.priv02.get_public_key()
        self.txin02 = TxInput(
            "7b6412a0eed56338731e83c606f13ebb7a3756b3e4e1dbbe43a7db8d09106e56", 1, sequence=b"\xff\xff\xff\xff"
        )
        self.amount = to_satoshis(0.00005)
        self.script_pubkey02 = Script(["OP_1", self.pub02.to_taproot_hex()[0]])
        self.txout = TxOutput(
            to_satoshis(0.00004), P2pkhAddress("mtVHHCqCECGwiMbMoZe8ayhJHuTdDbYWdJ").to_script_pub_key()
        )

        self.priv03 = PrivateKey("cNxX8M7XU8VNa5ofd8yk1eiZxaxNrQQyb7xNpwAmsrzEhcVwtCjs")
        self.txin03 = TxInput(
            "2a28f8bd8ba0518a86a390da310073a30b7df863d04b42a9c487edf3a8b113af", 1, sequence=b"\xff\xff\xff\xff"
        )
        self.script_pubkey03 = Script(["OP_1", self.priv03.get_public_key().to_taproot_hex()[0]])

    def tearDown(self):
        setup("signet")

    def _sign(self, key, txin, script_pubkey, sighash=None):
        tx = Transaction([txin], [self.txout])
        if sighash is None:
            sig = key.sign_taproot_input(tx, 0, [script_pubkey], [self.amount])
        else:
            sig = key.sign_taproot_input(tx, 0, [script_pubkey], [self.amount], sighash=sighash)
        tx.witnesses.append(TxWitnessInput([sig]))
        return tx

    def test_signed_02_pubkey(self):
        tx = self._sign(self.priv02, self.txin02, self.script_pubkey02)
        self.assertEqual(tx.serialize(), P2TR_SIGNED_02)

    def test_signed_03_pubkey(self):
        tx = self._sign(self.priv03, self.txin03, self.script_pubkey03)
        self.assertEqual(tx.serialize(), P2TR_SIGNED_03)

    def test_signed_single(self):
        tx = self._sign(self.priv02, self.txin02, self.script_pubkey02, SIGHASH_SINGLE)
        self.assertEqual(tx.serialize(), P2TR_SIGNED_SINGLE)

    def test_signed_none(self):
        tx = self._sign(self.priv02, self.txin02, self.script_pubkey02, SIGHASH_NONE)
        self.assertEqual(tx.serialize(), P2TR_SIGNED_NONE)

    def test_signed_all_anyonecanpay(self):
        tx = self._sign(self.priv02, self.txin02, self.script_pubkey02, SIGHASH_ALL | SIGHASH_ANYONECANPAY)
        self.assertEqual(tx.serialize(), P2TR_SIGNED_ALL_ANYONECANPAY)
        self.assertEqual(len(tx.witnesses[0].stack[0]), 65)

    def test_key_path_with_script_tree(self):
        internal = PrivateKey("cT33CWKwcV8afBs5NYzeSzeSoGETtAB8izjDjMEuGqyqPoF7fbQR")
        leaf_key = PrivateKey("cSW2kQbqC9zkqagw8oTYKFTozKuZ214zd6CMTDs4V32cMfH3dgKa").get_public_key()
        leaf = Script([leaf_key.to_x_only_hex(), "OP_CHECKSIG"])
        merkle_root = tapleaf_tagged_hash(leaf.to_bytes())
        from_script = internal.get_public_key().get_taproot_address(merkle_root).to_script_pub_key()

        tx = Transaction(
            [TxInput("3d4c9d73c4c65772e645ff26493590ae4913d9c37125b72398222a553b73fa66", 0)],
            [TxOutput(to_satoshis(0.00003), self.priv03.get_public_key().get_taproot_address().to_script_pub_key())],
        )
        sig = internal.sign_taproot_input(tx, 0, [from_script], [to_satoshis(0.000035)], merkle_root=merkle_root)
        tx.witnesses.append(TxWitnessInput([sig]))
        self.assertEqual(tx.serialize(), P2TR_KEY_PATH_WITH_SCRIPT_TREE)

    def test_digest_argument_checks(self):
        tx = Transaction([self.txin02], [self.txout])
        self.assertRaises(ValueError, tx.get_transaction_taproot_digest, 0, [], [])
        self.assertRaises(
            ValueError, tx.get_transaction_taproot_digest, 0, [self.script_pubkey02], [self.amount], sighash=0x04
        )
        self.assertRaises(
            ValueError,
            tx.get_transaction_taproot_digest,
            0,
            [self.script_pubkey02],
            [self.amount],
            annex=b"\x51",
        )

    def test_annex_changes_digest(self):
        tx = Transaction([self.txin02], [self.txout])
        plain = tx.get_transaction_taproot_digest(0, [self.script_pubkey02], [self.amount])
        with_annex = tx.get_transaction_taproot_digest(0, [self.script_pubkey02], [self.amount], annex=b"\x50\x01")
        self.assertNotEqual(plain, with_annex)


if __name__ == "__main__":
    unittest.main()
