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

import hashlib
import struct
from decimal import Decimal, InvalidOperation
from typing import BinaryIO, Union

import coincurve  # type: ignore

from depositor.constants import (
    LEAF_VERSION_TAPSCRIPT,
    MAX_MONEY,
    SATOSHIS_PER_BITCOIN,
)
from depositor.ripemd160 import ripemd160


class Secp256k1Params:
    # prime number of points in the group (the order)
    _order = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

    # the finite field prime
    _field = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEFFFFFC2F


def to_satoshis(num: Union[int, float, Decimal]) -> int:
    """
    Converts from any number type (int/float/Decimal) of bitcoins to satoshis (int)
    """
    # we need to round because of how floats are stored internally:
    # e.g. 0.29 * 100000000 = 28999999.999999996
    return int(round(Decimal(str(num)) * SATOSHIS_PER_BITCOIN))


def parse_amount(value: Union[int, str]) -> int:
    """Parses an amount given in satoshis and returns it as an int.

    Accepted forms are a plain integer, a decimal string ("90000"), a string
    with a satoshi unit ("90000 sat", "90000 sats") or a string in bitcoins
    ("0.0009 BTC").

    Raises
    ------
    ValueError
        if the value cannot be parsed or is outside [0, MAX_MONEY]
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid amount: {value!r}")

    if isinstance(value, int):
        amount = value
    elif isinstance(value, str):
        text = value.strip()
        parts = text.split()
        try:
            if len(parts) == 1 and parts[0].isdigit():
                amount = int(parts[0])
            elif len(parts) == 2 and parts[1].lower() in ("sat", "sats", "satoshi", "satoshis"):
                if not parts[0].isdigit():
                    raise ValueError(f"Invalid amount: {value!r}")
                amount = int(parts[0])
            elif len(parts) == 2 and parts[1].lower() == "btc":
                btc = Decimal(parts[0])
                if btc * SATOSHIS_PER_BITCOIN != int(btc * SATOSHIS_PER_BITCOIN):
                    raise ValueError(f"Amount has sub-satoshi precision: {value!r}")
                amount = to_satoshis(btc)
            else:
                raise ValueError(f"Invalid amount: {value!r}")
        except (InvalidOperation, OverflowError) as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
    else:
        raise ValueError(f"Invalid amount: {value!r}")

    if amount < 0 or amount > MAX_MONEY:
        raise ValueError(f"Amount out of range: {value!r}")
    return amount


def encode_varint(i: int) -> bytes:
    """Encode a compact size unsigned integer (varint)"""
    if i < 0:
        raise ValueError("Varint cannot be negative: " + str(i))
    if i < 0xFD:
        return bytes([i])
    elif i < 0x10000:
        return b"\xfd" + struct.pack("<H", i)
    elif i < 0x100000000:
        return b"\xfe" + struct.pack("<I", i)
    elif i < 0x10000000000000000:
        return b"\xff" + struct.pack("<Q", i)
    else:
        raise ValueError("Integer is too large: %d" % i)


def prepend_compact_size(data: bytes) -> bytes:
    """Prepends the compact size of the data (varint) to the data"""
    return encode_varint(len(data)) + data


def parse_compact_size(data: bytes) -> tuple[int, int]:
    """Reads the compact size (varint) at the beginning of data.

    Returns
    -------
    tuple
        the decoded value and the number of bytes it occupied

    Raises
    ------
    ValueError
        if data is truncated or the encoding is not the shortest one
    """
    if not data:
        raise ValueError("Missing compact size")

    first = data[0]
    if first < 0xFD:
        return first, 1

    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first]
    if len(data) < 1 + width:
        raise ValueError("Truncated compact size")
    value = int.from_bytes(data[1 : 1 + width], "little")

    minimum = {0xFD: 0xFD, 0xFE: 0x10000, 0xFF: 0x100000000}[first]
    if value < minimum:
        raise ValueError("Non-canonical compact size")
    return value, 1 + width


def read_varint(stream: BinaryIO) -> int:
    """Reads a compact size (varint) from a binary stream"""
    first = stream.read(1)
    if not first:
        raise ValueError("Unexpected end of data reading compact size")
    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}.get(first[0], 0)
    rest = stream.read(width)
    if len(rest) != width:
        raise ValueError("Unexpected end of data reading compact size")
    value, _ = parse_compact_size(first + rest)
    return value


def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Reads exactly size bytes or raises ValueError"""
    data = stream.read(size)
    if len(data) != size:
        raise ValueError(
            f"Unexpected end of data: wanted {size} bytes, got {len(data)}"
        )
    return data


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """Double SHA-256 as used for txids and legacy digests"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def hash160(data: bytes) -> bytes:
    """RIPEMD160( SHA256( data ) )"""
    return ripemd160(hashlib.sha256(data).digest())


def tagged_hash(data: bytes, tag: str) -> bytes:
    """
    Tagged hashes ensure that hashes used in one context can not be used in
    another. It is used extensively in Taproot.

    A tagged hash is: SHA256( SHA256("TapTweak") ||
                              SHA256("TapTweak") ||
                              data
                            )
    """
    tag_digest = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_digest + tag_digest + data).digest()


def tapleaf_tagged_hash(script: bytes, leaf_version: int = LEAF_VERSION_TAPSCRIPT) -> bytes:
    """Tagged hash of a tapleaf: leaf version, then the compact-size prefixed script"""
    return tagged_hash(bytes([leaf_version]) + prepend_compact_size(script), "TapLeaf")


def tapbranch_tagged_hash(thashed_a: bytes, thashed_b: bytes) -> bytes:
    """Tagged hash of a tapbranch; the lexicographically smaller child goes first"""
    if thashed_a < thashed_b:
        return tagged_hash(thashed_a + thashed_b, "TapBranch")
    return tagged_hash(thashed_b + thashed_a, "TapBranch")


def calculate_tweak(x_only_pubkey: bytes, merkle_root: bytes = b"") -> bytes:
    """Returns the TapTweak hash of an x-only internal key.

    With no script tree the merkle root is empty and only the key is hashed.
    """
    if len(x_only_pubkey) != 32:
        raise ValueError("Internal key must be a 32-byte x-only public key")
    if merkle_root and len(merkle_root) != 32:
        raise ValueError("Merkle root must be 32 bytes")
    return tagged_hash(x_only_pubkey + merkle_root, "TapTweak")


def tweak_taproot_pubkey(x_only_pubkey: bytes, tweak: bytes) -> tuple[bytes, bool]:
    """Tweaks an x-only internal key: Q = lift_x(P) + tweak*G

    Returns
    -------
    tuple
        the x-only output key and whether its y coordinate is odd

    Raises
    ------
    ValueError
        if P is not on the curve or the tweak is not a valid scalar
    """
    # lift_x always picks the even y coordinate
    internal = coincurve.PublicKey(b"\x02" + x_only_pubkey)
    tweaked = internal.add(tweak).format(compressed=True)
    return tweaked[1:], tweaked[0] == 0x03


def tweak_taproot_privkey(secret: bytes, tweak: bytes) -> bytes:
    """Tweaks a private key so that it signs for the tweaked output key.

    The secret is negated first when its public key has an odd y, so that it
    corresponds to the even key lift_x would produce.
    """
    key = coincurve.PrivateKey(secret)
    if key.public_key.format(compressed=True)[0] == 0x03:
        negated = Secp256k1Params._order - b_to_i(secret)
        key = coincurve.PrivateKey(i_to_b32(negated))
    return key.add(tweak).secret


def is_valid_secret(secret: bytes) -> bool:
    """True for 32 bytes in [1, n-1]"""
    if len(secret) != 32:
        return False
    return 0 < b_to_i(secret) < Secp256k1Params._order


def b_to_h(b: bytes) -> str:
    """Converts bytes to hexadecimal string"""
    return b.hex()


def h_to_b(h: str) -> bytes:
    """Converts a hexadecimal string to bytes"""
    return bytes.fromhex(h)


def b_to_i(b: bytes) -> int:
    """Converts a bytes to a number"""
    return int.from_bytes(b, byteorder="big")


def i_to_b32(i: int) -> bytes:
    """Converts a integer to bytes"""
    return i.to_bytes(32, byteorder="big")
