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
from io import BytesIO

from depositor.ripemd160 import ripemd160
from depositor.setup import get_network, is_mainnet, setup
from depositor.utils import (
    calculate_tweak,
    encode_varint,
    h_to_b,
    parse_amount,
    parse_compact_size,
    read_varint,
    tagged_hash,
    tapbranch_tagged_hash,
    to_satoshis,
)


class TestAmounts(unittest.TestCase):
    def test_to_satoshis(self):
        self.assertEqual(to_satoshis(0.29), 29000000)
        self.assertEqual(to_satoshis(1), 100000000)

    def test_parse_amount_forms(self):
        self.assertEqual(parse_amount(90000), 90000)
        self.assertEqual(parse_amount("90000"), 90000)
        self.assertEqual(parse_amount(" 90000 sat "), 90000)
        self.assertEqual(parse_amount("90000 sats"), 90000)
        self.assertEqual(parse_amount("0.0009 BTC"), 90000)

    def test_parse_amount_rejects(self):
        for value in ("-1", "abc", "1.5", "0.000000001 BTC", "", True, None, 1.5):
            with self.subTest(value=value):
                self.assertRaises(ValueError, parse_amount, value)

    def test_parse_amount_range(self):
        self.assertEqual(parse_amount("21000000 BTC"), 21000000 * 100000000)
        self.assertRaises(ValueError, parse_amount, "21000001 BTC")
        self.assertRaises(ValueError, parse_amount, -5)


class TestCompactSize(unittest.TestCase):
    def test_encode(self):
        self.assertEqual(encode_varint(0xFC), b"\xfc")
        self.assertEqual(encode_varint(0xFD), b"\xfd\xfd\x00")
        self.assertEqual(encode_varint(0x10000), b"\xfe\x00\x00\x01\x00")
        self.assertEqual(encode_varint(0x100000000), b"\xff\x00\x00\x00\x00\x01\x00\x00\x00")

    def test_parse(self):
        self.assertEqual(parse_compact_size(b"\xfd\xfd\x00\xaa"), (0xFD, 3))
        self.assertEqual(read_varint(BytesIO(b"\xfe\x00\x00\x01\x00")), 0x10000)

    def test_non_canonical(self):
        self.assertRaises(ValueError, parse_compact_size, b"\xfd\x10\x00")

    def test_truncated(self):
        self.assertRaises(ValueError, parse_compact_size, b"\xfe\x00")
        self.assertRaises(ValueError, read_varint, BytesIO(b""))


class TestHashes(unittest.TestCase):
    def test_ripemd160(self):
        self.assertEqual(ripemd160(b"").hex(), "9c1185a5c5e9fc54612808977ee8f548b2258d31")
        self.assertEqual(ripemd160(b"abc").hex(), "8eb208f7e05d987a9b044a8e98c6b087f15a0bfc")

    def test_tapbranch_is_order_independent(self):
        a = tagged_hash(b"a", "TapLeaf")
        b = tagged_hash(b"b", "TapLeaf")
        self.assertEqual(tapbranch_tagged_hash(a, b), tapbranch_tagged_hash(b, a))

    def test_tweak_argument_sizes(self):
        x_only = h_to_b("d6889cb081036e0faefa3a35157ad71086b123b2b144b649798b494c300a961d")
        self.assertEqual(len(calculate_tweak(x_only)), 32)
        self.assertRaises(ValueError, calculate_tweak, x_only[:31])
        self.assertRaises(ValueError, calculate_tweak, x_only, b"\x00" * 31)


class TestSetup(unittest.TestCase):
    def tearDown(self):
        setup("signet")

    def test_networks(self):
        self.assertEqual(get_network(), "signet")
        self.assertFalse(is_mainnet())
        self.assertEqual(setup("mainnet"), "mainnet")
        self.assertTrue(is_mainnet())
        setup("regtest")
        self.assertEqual(get_network(), "regtest")

    def test_unknown_network(self):
        self.assertRaises(ValueError, setup, "litecoin")
        self.assertEqual(get_network(), "signet")


if __name__ == "__main__":
    unittest.main()
