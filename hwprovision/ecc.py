# -*- coding: utf-8 -*-
#
# Copyright (C) 2018 The Electrum developers
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php

from typing import Tuple, Union

import ecdsa
from ecdsa.curves import SECP256k1
from ecdsa.ecdsa import curve_secp256k1, generator_secp256k1
from ecdsa.ellipticcurve import Point, INFINITY
from ecdsa.util import string_to_number

from .util import assert_bytes


CURVE_ORDER = SECP256k1.order
FIELD_SIZE = curve_secp256k1.p()


class InvalidECPointException(Exception):
    """e.g. not on curve, or infinity"""


def point_to_ser(x: int, y: int, compressed=True) -> bytes:
    if compressed:
        return bytes([2 + (y & 1)]) + x.to_bytes(32, byteorder='big')
    return b'\x04' + x.to_bytes(32, byteorder='big') + y.to_bytes(32, byteorder='big')


def _x_and_y_from_pubkey_bytes(pubkey: bytes) -> Tuple[int, int]:
    assert_bytes(pubkey)
    if len(pubkey) == 33:
        if pubkey[0] not in (0x02, 0x03):
            raise InvalidECPointException(f'unexpected first byte for compressed pubkey: {pubkey[0]}')
    elif len(pubkey) == 65:
        if pubkey[0] != 0x04:
            raise InvalidECPointException(f'unexpected first byte for uncompressed pubkey: {pubkey[0]}')
    else:
        raise InvalidECPointException(f'unexpected pubkey length: {len(pubkey)}')
    # python-ecdsa reduces coordinates mod p, so reject non-canonical encodings here
    coords = pubkey[1:]
    for i in range(0, len(coords), 32):
        if string_to_number(coords[i:i + 32]) >= FIELD_SIZE:
            raise InvalidECPointException('pubkey coordinate not in field')
    try:
        vk = ecdsa.VerifyingKey.from_string(bytes(pubkey), curve=SECP256k1)
    except Exception as e:
        raise InvalidECPointException('pubkey is not a point on secp256k1') from e
    point = vk.pubkey.point
    return point.x(), point.y()


class ECPubkey(object):
    """A public key on secp256k1. Immutable."""

    def __init__(self, b: bytes):
        self._x, self._y = _x_and_y_from_pubkey_bytes(b)

    @classmethod
    def from_x_and_y(cls, x: int, y: int) -> 'ECPubkey':
        return ECPubkey(point_to_ser(x, y, compressed=False))

    def get_public_key_bytes(self, compressed=True) -> bytes:
        return point_to_ser(self._x, self._y, compressed)

    def get_public_key_hex(self, compressed=True) -> str:
        return self.get_public_key_bytes(compressed).hex()

    def point(self) -> Tuple[int, int]:
        return self._x, self._y

    def _to_ecdsa_point(self) -> Point:
        return Point(curve_secp256k1, self._x, self._y, CURVE_ORDER)

    def add_tweak(self, tweak: Union[bytes, int]) -> 'ECPubkey':
        """Returns self + tweak*G."""
        if isinstance(tweak, bytes):
            tweak = string_to_number(tweak)
        if not (0 < tweak < CURVE_ORDER):
            raise InvalidECPointException('tweak not within curve order')
        result = generator_secp256k1 * tweak + self._to_ecdsa_point()
        if result == INFINITY:
            raise InvalidECPointException('result is point at infinity')
        return ECPubkey.from_x_and_y(result.x(), result.y())

    def __repr__(self):
        return f"<ECPubkey {self.get_public_key_hex()}>"

    def __eq__(self, other):
        if not isinstance(other, ECPubkey):
            return False
        return self.point() == other.point()

    def __ne__(self, other):
        return not (self == other)

    def __hash__(self):
        return hash(self.point())


def is_valid_pubkey(pubkey: bytes) -> bool:
    try:
        ECPubkey(pubkey)
    except Exception:
        return False
    return True
