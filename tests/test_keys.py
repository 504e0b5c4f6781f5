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

from embit import bech32  # type: ignore

from depositor.errors import BadAddressError, InvalidSecretError, NetworkMismatchError
from depositor.keys import (
    P2pkhAddress,
    P2shAddress,
    P2trAddress,
    P2wpkhAddress,
    P2wshAddress,
    PrivateKey,
    PublicKey,
    UnknownSegwitAddress,
    load_private_key,
    parse_address,
)
from depositor.script import Script
from depositor.setup import setup
from depositor.utils import tapleaf_tagged_hash


class TestPrivateKeys(unittest.TestCase):
    def setUp(self):
        setup("mainnet")
        self.key_wifc = "KwDiBf89QgGbjEhKnhXJuH7LrciVrZi3qYjgd9M7rFU73sVHnoWn"
        self.key_wif = "5HpHagT65TZzG1PH3CSu63k8DbpvD8s5ip4nEB3kEsreAnchuDf"
        self.key_hex = "00" * 31 + "01"

    def tearDown(self):
        setup("signet")

    def test_wif_creation(self):
        p = PrivateKey(self.key_wifc)
        self.assertEqual(p.to_hex(), self.key_hex)
        self.assertEqual(p.to_wif(compressed=False), self.key_wif)
        self.assertEqual(PrivateKey.from_wif(self.key_wif).to_hex(), self.key_hex)

    def test_hex_creation(self):
        p = PrivateKey.from_hex(self.key_hex)
        self.assertEqual(p.to_wif(), self.key_wifc)

    def test_public_key(self):
        p = PrivateKey.from_hex(self.key_hex)
        self.assertEqual(
            p.get_public_key().to_hex(),
            "0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798",
        )
        self.assertEqual(p.get_public_key().get_address().to_string(), "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH")

    def test_wrong_network_wif(self):
        setup("testnet")
        self.assertRaises(ValueError, PrivateKey.from_wif, self.key_wifc)

    def test_invalid_secrets(self):
        self.assertRaises(ValueError, PrivateKey.from_hex, "00" * 32)
        self.assertRaises(
            ValueError,
            PrivateKey.from_hex,
            "fffffffffffffffffffffffffffffffebaaedce6af48a03bbfd25e8cd0364141",
        )
        self.assertRaises(ValueError, PrivateKey.from_hex, "abc")

    def test_fresh_keys_differ(self):
        self.assertNotEqual(PrivateKey().to_hex(), PrivateKey().to_hex())


class TestLoadPrivateKey(unittest.TestCase):
    def setUp(self):
        setup("testnet")

    def tearDown(self):
        setup("signet")

    def test_hex_and_wif(self):
        by_hex = load_private_key("1E99423A4ED27608A15A2616A2B0E9E52CED330AC530EDCC32C8FFC6A526AEDD")
        self.assertEqual(
            by_hex.to_hex(), "1e99423a4ed27608a15a2616a2b0e9e52ced330ac530edcc32c8ffc6a526aedd"
        )
        by_wif = load_private_key(by_hex.to_wif())
        self.assertEqual(by_wif.to_hex(), by_hex.to_hex())

    def test_invalid(self):
        for value in (None, "", "   ", "zz" * 32, "00" * 32, "ab" * 31, "not-a-wif"):
            with self.subTest(value=value):
                self.assertRaises(InvalidSecretError, load_private_key, value)


class TestP2trAddresses(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.priv_even = PrivateKey.from_wif("cTLeemg1bCXXuRctid7PygEn7Svxj4zehjTcoayrbEYPsHQo248w")
        self.priv_odd = PrivateKey.from_wif("cRPxBiKrJsH94FLugmiL4xnezMyoFqGcf4kdgNXGuypNERhMK6AT")

    def tearDown(self):
        setup("signet")

    def test_even_taproot_address(self):
        pubkey = self.priv_even.get_public_key()
        self.assertEqual(
            pubkey.to_hex(), "0271fe85f75e97d22e74c2dd6425e843def8b662b928f24f724ae6a2fd0c4e0419"
        )
        addr = pubkey.get_taproot_address()
        self.assertEqual(
            addr.to_witness_program(),
            "b555a3680cdcf12a305758689504576f2a03421780a0e474f9eea04c48b3e7f7",
        )
        self.assertEqual(addr.to_string(), "tb1pk426x6qvmncj5vzhtp5f2pzhdu4qxsshszswga8ea6sycj9nulmsu7syz0")

    def test_odd_taproot_address(self):
        pubkey = self.priv_odd.get_public_key()
        self.assertFalse(pubkey.is_y_even())
        addr = pubkey.get_taproot_address()
        self.assertEqual(
            addr.to_witness_program(),
            "68ce0aaf800651f31af637e2b1996f692921cfa0621ed6bb9e0fc7d3326b09da",
        )
        self.assertEqual(addr.to_string(), "tb1pdr8q4tuqqeglxxhkxl3trxt0dy5jrnaqvg0ddwu7plraxvntp8dqv8kvyq")

    def test_address_with_script_path(self):
        internal = PrivateKey("cT33CWKwcV8afBs5NYzeSzeSoGETtAB8izjDjMEuGqyqPoF7fbQR").get_public_key()
        leaf_key = PrivateKey("cSW2kQbqC9zkqagw8oTYKFTozKuZ214zd6CMTDs4V32cMfH3dgKa").get_public_key()
        leaf = Script([leaf_key.to_x_only_hex(), "OP_CHECKSIG"])
        addr = internal.get_taproot_address(tapleaf_tagged_hash(leaf.to_bytes()))
        self.assertEqual(addr.to_string(), "tb1p0fcjs5l5xqdyvde5u7ut7sr0gzaxp4yya8mv06d2ygkeu82l65xs6k4uqr")

    def test_script_pub_key(self):
        addr = self.priv_even.get_public_key().get_taproot_address()
        self.assertEqual(
            addr.to_script_pub_key().to_hex(),
            "5120b555a3680cdcf12a305758689504576f2a03421780a0e474f9eea04c48b3e7f7",
        )

    def test_prefixes_per_network(self):
        addr = self.priv_even.get_public_key().get_taproot_address()
        self.assertTrue(addr.to_string("mainnet").startswith("bc1p"))
        self.assertTrue(addr.to_string("signet").startswith("tb1p"))
        self.assertTrue(addr.to_string("regtest").startswith("bcrt1p"))

    def test_x_only_round_trip(self):
        pubkey = self.priv_odd.get_public_key()
        lifted = PublicKey.from_x_only(pubkey.to_x_only_hex())
        self.assertTrue(lifted.is_y_even())
        self.assertEqual(lifted.to_x_only_hex(), pubkey.to_x_only_hex())

    def test_schnorr(self):
        msg = b"\x11" * 32
        sig = self.priv_even.sign_schnorr(msg)
        self.assertEqual(len(sig), 64)
        self.assertTrue(self.priv_even.get_public_key().verify_schnorr(sig, msg))
        self.assertFalse(self.priv_odd.get_public_key().verify_schnorr(sig, msg))


class TestParseAddress(unittest.TestCase):
    def setUp(self):
        setup("testnet")
        self.pub = PrivateKey.from_wif("cTALNpTpRbbxTCJ2A5Vq88UxT44w1PE2cYqiB3n4hRvzyCev1Wwo").get_public_key()

    def tearDown(self):
        setup("signet")

    def test_legacy_and_segwit_v0(self):
        self.assertEqual(self.pub.to_hash160(), "fd337ad3bf81e086d96a68e1f8d6a0a510f8c24a")

        p2pkh = parse_address("n4bkvTyU1dVdzsrhWBqBw8fEMbHjJvtmJR", "testnet")
        self.assertIsInstance(p2pkh, P2pkhAddress)
        self.assertEqual(p2pkh.to_hash160(), self.pub.to_hash160())

        p2wpkh = parse_address("tb1ql5eh45als8sgdkt2drsl344q55g03sj2krzqe3", "testnet")
        self.assertIsInstance(p2wpkh, P2wpkhAddress)
        self.assertEqual(p2wpkh.to_script_pub_key().to_hex(), "0014fd337ad3bf81e086d96a68e1f8d6a0a510f8c24a")

    def test_p2sh_and_p2wsh(self):
        script = Script([self.pub.to_hex(), "OP_CHECKSIG"])
        p2sh = P2shAddress.from_script(script)
        parsed = parse_address(p2sh.to_string(), "testnet")
        self.assertIsInstance(parsed, P2shAddress)
        self.assertEqual(parsed.to_script_pub_key(), script.to_p2sh_script_pub_key())

        p2wsh = P2wshAddress.from_script(script)
        parsed = parse_address(p2wsh.to_string(), "testnet")
        self.assertIsInstance(parsed, P2wshAddress)
        self.assertEqual(parsed.to_script_pub_key(), script.to_p2wsh_script_pub_key())

    def test_taproot(self):
        addr = "tb1pk426x6qvmncj5vzhtp5f2pzhdu4qxsshszswga8ea6sycj9nulmsu7syz0"
        parsed = parse_address(addr, "signet")
        self.assertIsInstance(parsed, P2trAddress)
        self.assertEqual(parsed.to_string(), addr)

    def test_unknown_segwit_version(self):
        addr = P2trAddress(witness_program="11" * 32, network="testnet")
        v2 = UnknownSegwitAddress(witness_program="11" * 32, segwit_num_version=2, network="testnet")
        parsed = parse_address(v2.to_string(), "testnet")
        self.assertIsInstance(parsed, UnknownSegwitAddress)
        self.assertEqual(parsed.segwit_num_version, 2)
        self.assertNotEqual(parsed.to_string(), addr.to_string())

    def test_network_mismatch(self):
        mainnet_tr = self.pub.get_taproot_address().to_string("mainnet")
        self.assertRaises(NetworkMismatchError, parse_address, mainnet_tr, "signet")
        self.assertRaises(NetworkMismatchError, parse_address, "1BgGZ9tcN4rm9KBzDn7KprQz87SZ26SAMH", "signet")
        regtest_tr = self.pub.get_taproot_address().to_string("regtest")
        self.assertRaises(NetworkMismatchError, parse_address, regtest_tr, "testnet")

    def test_bad_addresses(self):
        good = "tb1pk426x6qvmncj5vzhtp5f2pzhdu4qxsshszswga8ea6sycj9nulmsu7syz0"
        for value in ("", "hello", good[:-1] + "q", "n4bkvTyU1dVdzsrhWBqBw8fEMbHjJvtmJS", "0OIl"):
            with self.subTest(value=value):
                with self.assertRaises(BadAddressError) as cm:
                    parse_address(value, "testnet")
                self.assertNotIsInstance(cm.exception, NetworkMismatchError)

    def test_bech32_variant_is_checked(self):
        # v1 programs must use the bech32m checksum
        program = bytes.fromhex("b555a3680cdcf12a305758689504576f2a03421780a0e474f9eea04c48b3e7f7")
        data = [1] + bech32.convertbits(list(program), 8, 5)
        wrong_variant = bech32.bech32_encode(bech32.Encoding.BECH32, "tb", data)
        self.assertRaises(BadAddressError, parse_address, wrong_variant, "testnet")

    def test_bip350_vectors(self):
        cases = [
            (
                "tb1pqqqqp399et2xygdj5xreqhjjvcmzhxw4aywxecjdzew6hylgvsesf3hn0c",
                "testnet",
                "000000c4a5cad46221b2a187905e5266362b99d5e91c6ce24d165dab93e86433",
            ),
            (
                "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0",
                "mainnet",
                "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798",
            ),
        ]
        for addr, network, program in cases:
            with self.subTest(addr=addr):
                parsed = parse_address(addr, network)
                self.assertIsInstance(parsed, P2trAddress)
                self.assertEqual(parsed.to_witness_program(), program)
                self.assertEqual(parsed.to_string(network), addr)

    def test_bip86_first_receive_address(self):
        # m/86'/0'/0'/0/0 of the "abandon ... about" mnemonic
        internal = PublicKey.from_x_only("cc8a4bc64d897bddc5fbc2f670f7a8ba0b386779106cf1223c6fc5d7cd6fc115")
        address = internal.get_taproot_address()
        self.assertEqual(
            address.to_string("mainnet"), "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"
        )
        self.assertEqual(
            address.to_script_pub_key().to_hex(),
            "5120a60869f0dbcf1dc659c9cecbaf8050135ea9e8cdc487053f1dc6880949dc684c",
        )

    def test_fresh_key_output_format(self):
        key = PrivateKey()
        pub = key.get_public_key()
        self.assertTrue(re.match(r"^[0-9a-f]{64}$", key.to_hex()))
        self.assertTrue(re.match(r"^[0-9a-f]{64}$", pub.to_x_only_hex()))
        self.assertTrue(pub.get_taproot_address().to_string("signet").startswith("tb1p"))


if __name__ == "__main__":
    unittest.main()
