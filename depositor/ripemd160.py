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

"""Pure Python RIPEMD-160.

OpenSSL 3 no longer exposes ripemd160 through hashlib by default, and the
hash is needed for HASH160 addresses and the OP_RIPEMD160/OP_HASH160
opcodes.
"""

# Message schedule indexes for the left and right lines
ML = [0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15,
      7, 4, 13, 1, 10, 6, 15, 3, 12, 0, 9, 5, 2, 14, 11, 8,
      3, 10, 14, 4, 9, 15, 8, 1, 2, 7, 0, 6, 13, 11, 5, 12,
      1, 9, 11, 10, 0, 8, 12, 4, 13, 3, 7, 15, 14, 5, 6, 2,
      4, 0, 5, 9, 7, 12, 2, 10, 14, 1, 3, 8, 11, 6, 15, 13]

MR = [5, 14, 7, 0, 9, 2, 11, 4, 13, 6, 15, 8, 1, 10, 3, 12,
      6, 11, 3, 7, 0, 13, 5, 10, 14, 15, 8, 12, 4, 9, 1, 2,
      15, 5, 1, 3, 7, 14, 6, 9, 11, 8, 12, 2, 10, 0, 4, 13,
      8, 6, 4, 1, 3, 11, 15, 0, 5, 12, 2, 13, 9, 7, 10, 14,
      12, 15, 10, 4, 1, 5, 8, 7, 6, 2, 13, 14, 0, 3, 9, 11]

# Rotation amounts
RL = [11, 14, 15, 12, 5, 8, 7, 9, 11, 13, 14, 15, 6, 7, 9, 8,
      7, 6, 8, 13, 11, 9, 7, 15, 7, 12, 15, 9, 11, 7, 13, 12,
      11, 13, 6, 7, 14, 9, 13, 15, 14, 8, 13, 6, 5, 12, 7, 5,
      11, 12, 14, 15, 14, 15, 9, 8, 9, 14, 5, 6, 8, 6, 5, 12,
      9, 15, 5, 11, 6, 8, 13, 12, 5, 12, 13, 14, 11, 8, 5, 6]

RR = [8, 9, 9, 11, 13, 15, 15, 5, 7, 7, 8, 11, 14, 14, 12, 6,
      9, 13, 15, 7, 12, 8, 9, 11, 7, 7, 12, 7, 6, 15, 13, 11,
      9, 7, 15, 11, 8, 6, 6, 14, 12, 13, 5, 14, 13, 13, 7, 5,
      15, 5, 8, 11, 14, 14, 6, 14, 6, 9, 12, 9, 12, 5, 15, 8,
      8, 5, 12, 9, 12, 5, 14, 6, 8, 13, 6, 5, 15, 13, 11, 11]

KL = [0, 0x5A827999, 0x6ED9EBA1, 0x8F1BBCDC, 0xA953FD4E]
KR = [0x50A28BE6, 0x5C4DD124, 0x6D703EF3, 0x7A6D76E9, 0]

MASK = 0xFFFFFFFF


def fi(x: int, y: int, z: int, i: int) -> int:
    """The five nonlinear round functions"""
    if i == 0:
        return x ^ y ^ z
    if i == 1:
        return (x & y) | (~x & MASK & z)
    if i == 2:
        return (x | (~y & MASK)) ^ z
    if i == 3:
        return (x & z) | (y & ~z & MASK)
    return x ^ (y | (~z & MASK))


def rol(x: int, i: int) -> int:
    """32-bit left rotation"""
    x &= MASK
    return ((x << i) | (x >> (32 - i))) & MASK


def compress(h0, h1, h2, h3, h4, block):
    al, bl, cl, dl, el = h0, h1, h2, h3, h4
    ar, br, cr, dr, er = h0, h1, h2, h3, h4

    x = [int.from_bytes(block[4 * i : 4 * (i + 1)], "little") for i in range(16)]

    for j in range(80):
        rnd = j >> 4
        al = (rol(al + fi(bl, cl, dl, rnd) + x[ML[j]] + KL[rnd], RL[j]) + el) & MASK
        al, bl, cl, dl, el = el, al, bl, rol(cl, 10), dl

        ar = (rol(ar + fi(br, cr, dr, 4 - rnd) + x[MR[j]] + KR[rnd], RR[j]) + er) & MASK
        ar, br, cr, dr, er = er, ar, br, rol(cr, 10), dr

    return (
        (h1 + cl + dr) & MASK,
        (h2 + dl + er) & MASK,
        (h3 + el + ar) & MASK,
        (h4 + al + br) & MASK,
        (h0 + bl + cr) & MASK,
    )


def ripemd160(data: bytes) -> bytes:
    """Returns the 20-byte RIPEMD-160 digest of data"""
    state = (0x67452301, 0xEFCDAB89, 0x98BADCFE, 0x10325476, 0xC3D2E1F0)

    for b in range(len(data) >> 6):
        state = compress(*state, data[64 * b : 64 * (b + 1)])

    pad = b"\x80" + b"\x00" * ((119 - len(data)) & 63)
    fin = data[len(data) & ~63 :] + pad + (8 * len(data)).to_bytes(8, "little")

    for b in range(len(fin) >> 6):
        state = compress(*state, fin[64 * b : 64 * (b + 1)])

    return b"".join(h.to_bytes(4, "little") for h in state)
