# -*- coding: utf-8 -*-
#
# Copyright (C) 2011 thomasv@gitorious
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php

from typing import Union

from .util import assert_bytes, to_bytes, inv_dict, BitcoinException
from .crypto import sha256d


__b58chars = b'123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz'
assert len(__b58chars) == 58
__b58chars_inv = inv_dict(dict(enumerate(__b58chars)))


class BaseDecodeError(BitcoinException): pass


class InvalidChecksum(BaseDecodeError):
    pass


def base_encode(v: bytes) -> str:
    """ encode v, which is a string of bytes, to base58."""
    assert_bytes(v)
    chars = __b58chars

    origlen = len(v)
    v = v.lstrip(b'\x00')
    newlen = len(v)

    num = int.from_bytes(v, byteorder='big')
    string = b""
    while num:
        num, idx = divmod(num, 58)
        string = chars[idx:idx + 1] + string

    result = chars[0:1] * (origlen - newlen) + string
    return result.decode('ascii')


def base_decode(v: Union[bytes, str]) -> bytes:
    """ decode v into a string of len bytes.

    based on the work of David Keijser in https://github.com/keis/base58
    """
    v = to_bytes(v, 'ascii')
    chars = __b58chars
    chars_inv = __b58chars_inv

    origlen = len(v)
    v = v.lstrip(chars[0:1])
    newlen = len(v)

    num = 0
    try:
        for char in v:
            num = num * 58 + chars_inv[char]
    except KeyError:
        raise BaseDecodeError('Forbidden character {} for base 58'.format(char))

    return num.to_bytes(origlen - newlen + (num.bit_length() + 7) // 8, 'big')


def EncodeBase58Check(vchIn: bytes) -> str:
    hash = sha256d(vchIn)
    return base_encode(vchIn + hash[0:4])


def DecodeBase58Check(psz: Union[bytes, str]) -> bytes:
    vchRet = base_decode(psz)
    payload = vchRet[0:-4]
    csum_found = vchRet[-4:]
    csum_calculated = sha256d(payload)[0:4]
    if csum_calculated != csum_found:
        raise InvalidChecksum(f'calculated {csum_calculated.hex()}, found {csum_found.hex()}')
    else:
        return payload
