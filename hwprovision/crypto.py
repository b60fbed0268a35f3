# -*- coding: utf-8 -*-
#
# Copyright (C) 2018 The Electrum developers
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php

import base64
import binascii
import os
import hashlib
import hmac
from typing import Union

from Cryptodome.Cipher import AES as CD_AES
from Cryptodome.Hash import RIPEMD160 as CD_RIPEMD160

from .util import assert_bytes, InvalidPassword, to_bytes


class InvalidPadding(Exception):
    pass


class CiphertextFormatError(Exception):
    pass


def append_PKCS7_padding(data: bytes) -> bytes:
    assert_bytes(data)
    padlen = 16 - (len(data) % 16)
    return data + bytes([padlen]) * padlen


def strip_PKCS7_padding(data: bytes) -> bytes:
    assert_bytes(data)
    if len(data) % 16 != 0 or len(data) == 0:
        raise InvalidPadding("invalid length")
    padlen = data[-1]
    if not (0 < padlen <= 16):
        raise InvalidPadding("invalid padding byte (out of range)")
    for i in data[-padlen:]:
        if i != padlen:
            raise InvalidPadding("invalid padding byte (inconsistent)")
    return data[0:-padlen]


def aes_encrypt_with_iv(key: bytes, iv: bytes, data: bytes) -> bytes:
    assert_bytes(key, iv, data)
    data = append_PKCS7_padding(data)
    return CD_AES.new(key, CD_AES.MODE_CBC, iv).encrypt(data)


def aes_decrypt_with_iv(key: bytes, iv: bytes, data: bytes) -> bytes:
    assert_bytes(key, iv, data)
    cipher = CD_AES.new(key, CD_AES.MODE_CBC, iv)
    data = cipher.decrypt(data)
    try:
        return strip_PKCS7_padding(data)
    except InvalidPadding:
        raise InvalidPassword()


def sha256(x: Union[bytes, str]) -> bytes:
    x = to_bytes(x, 'utf8')
    return bytes(hashlib.sha256(x).digest())


def sha256d(x: Union[bytes, str]) -> bytes:
    x = to_bytes(x, 'utf8')
    out = bytes(sha256(sha256(x)))
    return out


def ripemd(x: bytes) -> bytes:
    # ripemd160 is not guaranteed to be available in hashlib (OpenSSL 3 moved it to legacy)
    return CD_RIPEMD160.new(x).digest()


def hash_160(x: bytes) -> bytes:
    return ripemd(sha256(x))


def hmac_oneshot(key: bytes, msg: bytes, digest) -> bytes:
    return hmac.digest(key, msg, digest)


PW_HASH_VERSION_LATEST = 1


def _pw_encode_raw(data: bytes, password: Union[bytes, str]) -> bytes:
    secret = sha256d(to_bytes(password, 'utf8'))
    iv = bytes(os.urandom(16))
    return iv + aes_encrypt_with_iv(secret, iv, data)


def _pw_decode_raw(data_bytes: bytes, password: Union[bytes, str]) -> bytes:
    secret = sha256d(to_bytes(password, 'utf8'))
    iv, ct = data_bytes[:16], data_bytes[16:]
    try:
        return aes_decrypt_with_iv(secret, iv, ct)
    except Exception as e:
        raise InvalidPassword() from e


def pw_encode_with_version_and_mac(data: bytes, password: Union[bytes, str]) -> str:
    """plaintext bytes -> base64 ciphertext"""
    # Encrypt-and-MAC. The MAC will be used to detect invalid passwords
    version = PW_HASH_VERSION_LATEST
    mac = sha256(data)[0:4]
    ciphertext = _pw_encode_raw(data, password)
    ciphertext_b64 = base64.b64encode(bytes([version]) + ciphertext + mac)
    return ciphertext_b64.decode('utf8')


def pw_decode_with_version_and_mac(data: str, password: Union[bytes, str]) -> bytes:
    """base64 ciphertext -> plaintext bytes"""
    try:
        data_bytes = bytes(base64.b64decode(data, validate=True))
    except binascii.Error as e:
        raise CiphertextFormatError("ciphertext not valid base64") from e
    version = int(data_bytes[0])
    encrypted = data_bytes[1:-4]
    mac = data_bytes[-4:]
    if version != PW_HASH_VERSION_LATEST:
        raise InvalidPassword(f"unexpected password hash version: {version}")
    decrypted = _pw_decode_raw(encrypted, password)
    if sha256(decrypted)[0:4] != mac:
        raise InvalidPassword()
    return decrypted
