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
import re
from abc import ABC, abstractmethod
from typing import Optional, Union

import coincurve  # type: ignore
from base58check import b58decode, b58encode  # type: ignore
from embit import bech32  # type: ignore

from depositor.constants import (
    NETWORK_P2PKH_PREFIXES,
    NETWORK_P2SH_PREFIXES,
    NETWORK_SEGWIT_PREFIXES,
    NETWORK_WIF_PREFIXES,
    NETWORKS,
    P2PKH_ADDRESS,
    P2SH_ADDRESS,
    P2TR_ADDRESS_V1,
    P2WPKH_ADDRESS_V0,
    P2WSH_ADDRESS_V0,
    TAPROOT_SIGHASH_ALL,
    UNKNOWN_SEGWIT_ADDRESS,
)
from depositor.errors import BadAddressError, InvalidSecretError, NetworkMismatchError
from depositor.script import Script
from depositor.setup import get_network
from depositor.transactions import Transaction
from depositor.utils import (
    b_to_h,
    calculate_tweak,
    h_to_b,
    hash160,
    hash256,
    is_valid_secret,
    tweak_taproot_privkey,
    tweak_taproot_pubkey,
)


_HEX_SECRET = re.compile(r"^[0-9a-fA-F]{64}$")
_BASE58_CHARS = re.compile(r"^[123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz]+$")


class PrivateKey:
    """Represents a secp256k1 private key.

    Attributes
    ----------
    key : coincurve.PrivateKey
        the libsecp256k1 backed key

    Methods
    -------
    from_wif(wif)
        creates an object from a WIF of WIFC format (string)
    from_bytes(b)
        creates an object from raw 32 bytes
    from_hex(secret_hex)
        creates an object from a 64 hex digit secret
    to_wif(compressed=True)
        returns as WIFC (compressed) or WIF format (string)
    to_bytes() / to_hex()
        returns the 32 byte secret
    sign_schnorr(msg)
        BIP-340 signature of a 32 byte message with the untweaked key
    sign_taproot_input(tx, txin_index, utxo_scripts, amounts, ...)
        creates the transaction's taproot digest and signs it with the
        tweaked key (key path spending)
    get_public_key()
        returns the corresponding PublicKey object
    """

    def __init__(
        self,
        wif: Optional[str] = None,
        b: Optional[bytes] = None,
        secret_hex: Optional[str] = None,
    ) -> None:
        """With no parameters a random key is created from the OS RNG

        Raises
        ------
        ValueError
            if the secret is not a valid secp256k1 scalar or the WIF is
            malformed or from another network
        """

        if wif:
            self._from_wif(wif)
        elif b is not None:
            self._from_bytes(b)
        elif secret_hex is not None:
            if not _HEX_SECRET.match(secret_hex):
                raise ValueError("Secret must be 64 hexadecimal digits")
            self._from_bytes(h_to_b(secret_hex))
        else:
            self.key = coincurve.PrivateKey()

    def to_bytes(self) -> bytes:
        """Returns key's bytes"""

        return self.key.secret

    def to_hex(self) -> str:
        return b_to_h(self.to_bytes())

    @classmethod
    def from_wif(cls, wif: str) -> "PrivateKey":
        """Creates key from WIFC or WIF format key"""

        return cls(wif=wif)

    @classmethod
    def from_bytes(cls, b: bytes) -> "PrivateKey":
        """Creates a key directly from 32 raw bytes"""

        return cls(b=b)

    @classmethod
    def from_hex(cls, secret_hex: str) -> "PrivateKey":
        return cls(secret_hex=secret_hex)

    def _from_bytes(self, b: bytes) -> None:
        if not is_valid_secret(b):
            raise ValueError("Secret is not a valid secp256k1 scalar")
        self.key = coincurve.PrivateKey(b)

    def _from_wif(self, wif: str) -> None:
        """Creates key from WIFC or WIF format key

        Check to_wif for the detailed process. From WIF is the reverse.

        Raises
        ------
        ValueError
            if the checksum is wrong or if the WIF/WIFC is not from the
            configured network.
        """

        if not _BASE58_CHARS.match(wif):
            raise ValueError("Invalid base58 characters in WIF")

        # decode base58check get key bytes plus checksum
        data_bytes = b58decode(wif.encode("utf-8"))
        key_bytes = data_bytes[:-4]
        checksum = data_bytes[-4:]

        # verify key with checksum
        if checksum != hash256(key_bytes)[0:4]:
            raise ValueError("Checksum is wrong. Possible mistype?")

        # get network prefix and check with current setup
        network_prefix = key_bytes[:1]
        if NETWORK_WIF_PREFIXES[get_network()] != network_prefix:
            raise ValueError("Using the wrong network!")

        key_bytes = key_bytes[1:]

        # 33 bytes ending in 0x01 is the compressed form
        if len(key_bytes) == 33 and key_bytes[-1] == 0x01:
            key_bytes = key_bytes[:-1]
        self._from_bytes(key_bytes)

    def to_wif(self, compressed: bool = True) -> str:
        """Returns key in WIFC or WIF string

        |  Pseudocode:
        |      network_prefix = (1 byte version number)
        |      data = network_prefix + (32 bytes number/key) [ + 0x01 if compressed ]
        |      data_hash = SHA-256( SHA-256( data ) )
        |      checksum = (first 4 bytes of data_hash)
        |      wif = Base58CheckEncode( data + checksum )
        """

        data = NETWORK_WIF_PREFIXES[get_network()] + self.to_bytes()
        if compressed:
            data += b"\x01"

        checksum = hash256(data)[0:4]
        return b58encode(data + checksum).decode("utf-8")

    def sign_schnorr(self, msg: bytes) -> bytes:
        """BIP-340 signature with the untweaked key and zero auxiliary randomness"""

        return self.key.sign_schnorr(msg, bytes(32))

    def sign_taproot_input(
        self,
        tx: Transaction,
        txin_index: int,
        utxo_scripts: list[Script],
        amounts: list[int],
        sighash: int = TAPROOT_SIGHASH_ALL,
        merkle_root: bytes = b"",
        annex: Optional[bytes] = None,
    ) -> bytes:
        """Signs a key path taproot input.

        The digest is computed over all spent outputs (BIP-341) and signed
        with the key tweaked by the merkle root (empty for key-only outputs).
        """

        tx_digest = tx.get_transaction_taproot_digest(
            txin_index, utxo_scripts, amounts, 0, sighash=sighash, annex=annex
        )
        return self._sign_taproot_input(tx_digest, sighash, merkle_root)

    def _sign_taproot_input(
        self, tx_digest: bytes, sighash: int = TAPROOT_SIGHASH_ALL, merkle_root: bytes = b""
    ) -> bytes:
        """Signs a taproot digest with the tweaked key

        Taproot uses Schnorr signatures. The format is just R and S so only
        64 bytes. If SIGHASH_DEFAULT then nothing is included. If another
        sighash then it is included in the end (65 bytes).
        """

        tweak = calculate_tweak(self.get_public_key().to_x_only_bytes(), merkle_root)
        byte_key = tweak_taproot_privkey(self.to_bytes(), tweak)

        # zero aux randomness, so signing is deterministic
        sig = coincurve.PrivateKey(byte_key).sign_schnorr(tx_digest, bytes(32))

        if sighash != TAPROOT_SIGHASH_ALL:
            sig += bytes([sighash])

        return sig

    def get_public_key(self) -> "PublicKey":
        """Returns the corresponding PublicKey"""

        return PublicKey(self.key.public_key.format(compressed=True))


def load_private_key(value: Optional[str]) -> PrivateKey:
    """Loads a private key given as 64 hex digits or as WIF.

    Raises
    ------
    InvalidSecretError
        if value is missing or cannot be decoded into a valid key
    """
    if value is None or not value.strip():
        raise InvalidSecretError("A private key is required")

    value = value.strip()
    try:
        if _HEX_SECRET.match(value):
            return PrivateKey.from_hex(value)
        return PrivateKey.from_wif(value)
    except ValueError as e:
        raise InvalidSecretError(f"Invalid private key: {e}") from e


class PublicKey:
    """Represents a secp256k1 public key.

    Attributes
    ----------
    key : coincurve.PublicKey
        the libsecp256k1 backed key

    Methods
    -------
    from_hex(hex_str)
        creates an object from a hex string in SEC format (classmethod)
    to_bytes() / to_hex(compressed=True)
        returns the key in SEC format
    to_x_only_bytes() / to_x_only_hex()
        returns the 32 byte x coordinate (BIP-340)
    is_y_even()
        returns True if the y coordinate is even
    to_taproot_hex(merkle_root=b"")
        returns the tweaked x-only output key and its parity
    to_hash160()
        returns the hash160 hex string of the compressed key
    get_address()
        returns the P2PKH address
    get_segwit_address()
        returns the P2WPKH address
    get_taproot_address(merkle_root=b"")
        returns the P2TR address
    """

    def __init__(self, key: Union[str, bytes]) -> None:
        """
        Parameters
        ----------
        key : str | bytes
            SEC encoded key (33 or 65 bytes), as bytes or hex

        Raises
        ------
        ValueError
            if the key is not a valid point
        """
        key_bytes = h_to_b(key) if isinstance(key, str) else key
        self.key = coincurve.PublicKey(key_bytes)

    @classmethod
    def from_hex(cls, hex_str: str) -> "PublicKey":
        return cls(hex_str)

    @classmethod
    def from_x_only(cls, x_only: Union[str, bytes]) -> "PublicKey":
        """Lifts an x-only key to the point with even y"""

        x_bytes = h_to_b(x_only) if isinstance(x_only, str) else x_only
        if len(x_bytes) != 32:
            raise ValueError("x-only public keys are 32 bytes")
        return cls(b"\x02" + x_bytes)

    def to_bytes(self, compressed: bool = True) -> bytes:
        return self.key.format(compressed=compressed)

    def to_hex(self, compressed: bool = True) -> str:
        return b_to_h(self.to_bytes(compressed))

    def to_x_only_bytes(self) -> bytes:
        return self.to_bytes()[1:]

    def to_x_only_hex(self) -> str:
        return b_to_h(self.to_x_only_bytes())

    def is_y_even(self) -> bool:
        return self.to_bytes()[0] == 0x02

    def to_taproot_hex(self, merkle_root: bytes = b"") -> tuple[str, bool]:
        """Returns the tweaked x-only output key (hex) and whether its y is odd"""

        tweak = calculate_tweak(self.to_x_only_bytes(), merkle_root)
        output_key, is_odd = tweak_taproot_pubkey(self.to_x_only_bytes(), tweak)
        return b_to_h(output_key), is_odd

    def verify_schnorr(self, signature: bytes, msg: bytes) -> bool:
        return coincurve.PublicKeyXOnly(self.to_x_only_bytes()).verify(signature, msg)

    def to_hash160(self) -> str:
        return b_to_h(hash160(self.to_bytes()))

    def get_address(self) -> "P2pkhAddress":
        return P2pkhAddress(hash160=self.to_hash160())

    def get_segwit_address(self) -> "P2wpkhAddress":
        return P2wpkhAddress(witness_program=self.to_hash160())

    def get_taproot_address(self, merkle_root: bytes = b"") -> "P2trAddress":
        """Returns the P2TR address; with no merkle root only key path spends exist"""

        output_key, is_odd = self.to_taproot_hex(merkle_root)
        return P2trAddress(witness_program=output_key, is_odd=is_odd)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, PublicKey) and self.to_bytes() == other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())


class Address(ABC):
    """Represents a legacy (Base58Check) Bitcoin address

    Attributes
    ----------
    hash160 : str
        the hash160 string representation of the address; hash160 represents
        two consequtive hashes of the public key or the redeam script, first
        a SHA-256 and then an RIPEMD-160

    Methods
    -------
    from_address(address, network=None)
        instantiates an object from address string encoding
    from_hash160(hash160_str)
        instantiates an object from a hash160 hex string
    to_string(network=None)
        returns the address's string encoding
    to_script_pub_key()
        returns the locking script

    Raises
    ------
    TypeError
        No parameters passed
    BadAddressError
        If an invalid address or hash160 is provided.
    NetworkMismatchError
        If the address belongs to another network
    """

    @abstractmethod
    def __init__(
        self,
        address: Optional[str] = None,
        hash160: Optional[str] = None,
        network: Optional[str] = None,
    ) -> None:
        self.network = network or get_network()
        if hash160:
            if not self._is_hash160_valid(hash160):
                raise BadAddressError("Invalid value for parameter hash160.")
            self.hash160 = hash160
        elif address:
            self.hash160 = self._address_to_hash160(address)
        else:
            raise TypeError("A valid address or hash160 is required.")

    @classmethod
    def from_address(cls, address: str, network: Optional[str] = None) -> "Address":
        return cls(address=address, network=network)

    @classmethod
    def from_hash160(cls, hash160: str) -> "Address":
        return cls(hash160=hash160)

    @abstractmethod
    def _prefixes(self) -> dict[str, bytes]:
        """version byte per network"""

    def _address_to_hash160(self, address: str) -> str:
        """Base58Check decodes the address and checks checksum and version"""

        data = decode_base58check(address)
        prefix, payload = data[:1], data[1:]
        if len(payload) != 20:
            raise BadAddressError(f"Invalid address payload length: {address}")

        prefixes = self._prefixes()
        if prefix != prefixes[self.network]:
            if prefix in prefixes.values():
                raise NetworkMismatchError(
                    f"Address {address} is not valid on {self.network}"
                )
            raise BadAddressError(f"Unknown address version byte: {address}")
        return b_to_h(payload)

    def _is_hash160_valid(self, hash160: str) -> bool:
        if len(hash160) != 40:
            return False
        try:
            int(hash160, 16)
            return True
        except ValueError:
            return False

    def to_hash160(self) -> str:
        return self.hash160

    def get_type(self) -> str:
        return ""

    def to_string(self, network: Optional[str] = None) -> str:
        """Returns as address string

        |  Pseudocode:
        |      network_prefix = (1 byte version number)
        |      data = network_prefix + hash160_bytes
        |      data_hash = SHA-256( SHA-256( hash160_bytes ) )
        |      checksum = (first 4 bytes of data_hash)
        |      address_bytes = Base58CheckEncode( data + checksum )
        """
        data = self._prefixes()[network or self.network] + h_to_b(self.hash160)
        checksum = hash256(data)[0:4]
        return b58encode(data + checksum).decode("utf-8")

    @abstractmethod
    def to_script_pub_key(self) -> Script:
        """Overriden from subclasses"""

    def __str__(self) -> str:
        return self.to_string()


class P2pkhAddress(Address):
    """Encapsulates a P2PKH address."""

    def __init__(self, address=None, hash160=None, network=None) -> None:
        super().__init__(address=address, hash160=hash160, network=network)

    def _prefixes(self) -> dict[str, bytes]:
        return NETWORK_P2PKH_PREFIXES

    def to_script_pub_key(self) -> Script:
        """Returns the scriptPubKey (P2PKH) that corresponds to this address"""
        return Script(["OP_DUP", "OP_HASH160", self.hash160, "OP_EQUALVERIFY", "OP_CHECKSIG"])

    def get_type(self) -> str:
        return P2PKH_ADDRESS


class P2shAddress(Address):
    """Encapsulates a P2SH address."""

    def __init__(self, address=None, hash160=None, network=None) -> None:
        super().__init__(address=address, hash160=hash160, network=network)

    @classmethod
    def from_script(cls, script: Script) -> "P2shAddress":
        return cls(hash160=b_to_h(hash160(script.to_bytes())))

    def _prefixes(self) -> dict[str, bytes]:
        return NETWORK_P2SH_PREFIXES

    def to_script_pub_key(self) -> Script:
        """Returns the scriptPubKey (P2SH) that corresponds to this address"""
        return Script(["OP_HASH160", self.hash160, "OP_EQUAL"])

    def get_type(self) -> str:
        return P2SH_ADDRESS


class SegwitAddress(ABC):
    """Represents a Bitcoin segwit address

    Bech32 is used for version 0 and Bech32m for later versions (BIP-350).

    Attributes
    ----------
    witness_program : str
        for segwit v0 this is the hash of either the public key (P2WPKH) or
        of the script (P2WSH); for segwit v1 (taproot) this is the tweaked
        output public key
    segwit_num_version : int
        the witness version

    Methods
    -------
    from_address(address, network=None)
        instantiates an object from address string encoding
    from_witness_program(program_hex)
        instantiates an object from a witness program hex string
    to_string(network=None)
        returns the address's string encoding (Bech32/Bech32m)
    to_script_pub_key()
        returns the locking script
    """

    @abstractmethod
    def __init__(
        self,
        address: Optional[str] = None,
        witness_program: Optional[str] = None,
        version: str = P2WPKH_ADDRESS_V0,
        network: Optional[str] = None,
        segwit_num_version: Optional[int] = None,
    ) -> None:
        self.version = version
        self.network = network or get_network()
        if segwit_num_version is not None:
            self.segwit_num_version = segwit_num_version
        elif version in (P2WPKH_ADDRESS_V0, P2WSH_ADDRESS_V0):
            self.segwit_num_version = 0
        elif version == P2TR_ADDRESS_V1:
            self.segwit_num_version = 1
        else:
            raise TypeError("A valid segwit version is required.")

        if witness_program:
            self.witness_program = witness_program
        elif address:
            self.witness_program = self._address_to_hash(address)
        else:
            raise TypeError("A valid address or witness program is required.")

    @classmethod
    def from_address(cls, address: str, network: Optional[str] = None) -> "SegwitAddress":
        return cls(address=address, network=network)

    @classmethod
    def from_witness_program(cls, witness_program: str) -> "SegwitAddress":
        return cls(witness_program=witness_program)

    def _address_to_hash(self, address: str) -> str:
        """Bech32 decodes the address removing network prefix, checksum and
        witness version"""

        witness_version, program = decode_segwit(address, self.network)
        if witness_version != self.segwit_num_version:
            raise BadAddressError(f"Invalid segwit version for {address}")
        return b_to_h(program)

    def to_witness_program(self) -> str:
        return self.witness_program

    def to_string(self, network: Optional[str] = None) -> str:
        """Returns as address string"""

        encoded = bech32.encode(
            NETWORK_SEGWIT_PREFIXES[network or self.network],
            self.segwit_num_version,
            list(h_to_b(self.witness_program)),
        )
        if encoded is None:
            raise BadAddressError("Witness program cannot be encoded as an address")
        return encoded

    def to_script_pub_key(self) -> Script:
        version_op = "OP_0" if self.segwit_num_version == 0 else f"OP_{self.segwit_num_version}"
        return Script([version_op, self.to_witness_program()])

    def get_type(self) -> str:
        return self.version

    def __str__(self) -> str:
        return self.to_string()


class P2wpkhAddress(SegwitAddress):
    """Encapsulates a P2WPKH address."""

    def __init__(self, address=None, witness_program=None, network=None) -> None:
        super().__init__(
            address=address,
            witness_program=witness_program,
            version=P2WPKH_ADDRESS_V0,
            network=network,
        )
        if len(self.witness_program) != 40:
            raise BadAddressError("P2WPKH witness programs are 20 bytes")


class P2wshAddress(SegwitAddress):
    """Encapsulates a P2WSH address."""

    def __init__(self, address=None, witness_program=None, network=None) -> None:
        super().__init__(
            address=address,
            witness_program=witness_program,
            version=P2WSH_ADDRESS_V0,
            network=network,
        )
        if len(self.witness_program) != 64:
            raise BadAddressError("P2WSH witness programs are 32 bytes")

    @classmethod
    def from_script(cls, script: Script) -> "P2wshAddress":
        return cls(witness_program=b_to_h(hashlib.sha256(script.to_bytes()).digest()))


class P2trAddress(SegwitAddress):
    """Encapsulates a P2TR (Taproot) address.

    Methods
    -------
    to_script_pub_key()
        returns OP_1 <32-byte output key>
    is_odd()
        returns True if the output key's y coordinate is odd (only known when
        the address was built from a tweaked key)
    """

    def __init__(
        self,
        address: Optional[str] = None,
        witness_program: Optional[str] = None,
        is_odd: bool = False,
        network: Optional[str] = None,
    ) -> None:
        self.odd = is_odd
        super().__init__(
            address=address,
            witness_program=witness_program,
            version=P2TR_ADDRESS_V1,
            network=network,
        )
        if len(self.witness_program) != 64:
            raise BadAddressError("P2TR witness programs are 32 bytes")

    def to_script_pub_key(self) -> Script:
        """Returns the scriptPubKey of a P2TR witness script"""
        return Script(["OP_1", self.to_witness_program()])

    def is_odd(self) -> bool:
        return self.odd


class UnknownSegwitAddress(SegwitAddress):
    """A valid segwit address of a version without known semantics"""

    def __init__(self, address=None, witness_program=None, segwit_num_version=None, network=None):
        if address and segwit_num_version is None:
            segwit_num_version, _ = decode_segwit(address, network or get_network())
        super().__init__(
            address=address,
            witness_program=witness_program,
            version=UNKNOWN_SEGWIT_ADDRESS,
            network=network,
            segwit_num_version=segwit_num_version,
        )


def decode_base58check(address: str) -> bytes:
    """Decodes a Base58Check string and returns the payload with its version byte

    Raises
    ------
    BadAddressError
        on invalid characters or checksum
    """
    if not _BASE58_CHARS.match(address):
        raise BadAddressError(f"Invalid base58 address: {address}")
    try:
        data_checksum = b58decode(address.encode("utf-8"))
    except ValueError as e:
        raise BadAddressError(f"Invalid base58 address: {address}") from e

    data, checksum = data_checksum[:-4], data_checksum[-4:]
    if len(data) < 1 or hash256(data)[0:4] != checksum:
        raise BadAddressError(f"Invalid address checksum: {address}")
    return data


def decode_segwit(address: str, network: str) -> tuple[int, bytes]:
    """Decodes a Bech32/Bech32m address for network

    Raises
    ------
    NetworkMismatchError
        if it is a valid address of another network
    BadAddressError
        if it is not a valid segwit address at all
    """
    witness_version, program = bech32.decode(NETWORK_SEGWIT_PREFIXES[network], address)
    if witness_version is not None:
        return witness_version, bytes(program)

    for other in NETWORKS:
        hrp = NETWORK_SEGWIT_PREFIXES[other]
        if hrp != NETWORK_SEGWIT_PREFIXES[network]:
            other_version, _ = bech32.decode(hrp, address)
            if other_version is not None:
                raise NetworkMismatchError(f"Address {address} is not valid on {network}")
    raise BadAddressError(f"Invalid segwit address: {address}")


def parse_address(address: str, network: Optional[str] = None) -> Union[Address, SegwitAddress]:
    """Parses any address string valid on network (default: the configured one)

    Raises
    ------
    BadAddressError
        if the string is not an address
    NetworkMismatchError
        if the address belongs to another network
    """
    if not isinstance(address, str) or not address.strip():
        raise BadAddressError("Address is empty")

    network = network or get_network()
    address = address.strip()
    lowered = address.lower()

    is_segwit = any(
        lowered.startswith(NETWORK_SEGWIT_PREFIXES[n] + "1") for n in NETWORKS
    )
    if is_segwit:
        witness_version, program = decode_segwit(address, network)
        if witness_version == 0 and len(program) == 20:
            return P2wpkhAddress(witness_program=b_to_h(program), network=network)
        if witness_version == 0 and len(program) == 32:
            return P2wshAddress(witness_program=b_to_h(program), network=network)
        if witness_version == 1 and len(program) == 32:
            return P2trAddress(witness_program=b_to_h(program), network=network)
        return UnknownSegwitAddress(
            witness_program=b_to_h(program),
            segwit_num_version=witness_version,
            network=network,
        )

    data = decode_base58check(address)
    prefix = data[:1]
    if prefix in NETWORK_P2PKH_PREFIXES.values():
        return P2pkhAddress(address=address, network=network)
    if prefix in NETWORK_P2SH_PREFIXES.values():
        return P2shAddress(address=address, network=network)
    raise BadAddressError(f"Unknown address version byte: {address}")
