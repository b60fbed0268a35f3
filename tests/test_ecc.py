from hwprovision import ecc
from hwprovision.ecc import ECPubkey, InvalidECPointException, CURVE_ORDER, is_valid_pubkey
from hwprovision.crypto import (pw_encode_with_version_and_mac, pw_decode_with_version_and_mac,
                                hash_160, sha256d, CiphertextFormatError)
from hwprovision.util import InvalidPassword

from . import HwProvisionTestCase, GENERATOR_PUBKEY


class Test_ECPubkey(HwProvisionTestCase):

    def test_generator_point(self):
        G = ECPubkey(GENERATOR_PUBKEY)
        x, y = G.point()
        self.assertEqual(0x79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798, x)
        self.assertEqual(0x483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8, y)
        self.assertEqual(GENERATOR_PUBKEY.hex(), G.get_public_key_hex())
        self.assertEqual(G, ECPubkey(G.get_public_key_bytes(compressed=False)))
        self.assertEqual(G, ECPubkey.from_x_and_y(x, y))
        self.assertEqual(hash(G), hash(ECPubkey.from_x_and_y(x, y)))

    def test_add_tweak(self):
        G = ECPubkey(GENERATOR_PUBKEY)
        # G + 1*G == 2*G
        self.assertEqual(
            "02c6047f9441ed7d6d3045406e95c07cd85c778e4b8cef3ca7abac09b95c709ee5",
            G.add_tweak(1).get_public_key_hex())
        self.assertEqual(G.add_tweak(1), G.add_tweak((1).to_bytes(32, byteorder='big')))

    def test_add_tweak_rejects_out_of_range(self):
        G = ECPubkey(GENERATOR_PUBKEY)
        with self.assertRaises(InvalidECPointException):
            G.add_tweak(0)
        with self.assertRaises(InvalidECPointException):
            G.add_tweak(CURVE_ORDER)
        # (n-1)*G + G is the point at infinity
        with self.assertRaises(InvalidECPointException):
            G.add_tweak(CURVE_ORDER - 1)

    def test_is_valid_pubkey(self):
        self.assertTrue(is_valid_pubkey(GENERATOR_PUBKEY))
        self.assertFalse(is_valid_pubkey(GENERATOR_PUBKEY[:-1]))
        self.assertFalse(is_valid_pubkey(bytes.fromhex('02') + ecc.FIELD_SIZE.to_bytes(32, byteorder='big')))

    def test_not_bytes(self):
        with self.assertRaises(TypeError):
            ECPubkey(GENERATOR_PUBKEY.hex())


class Test_crypto(HwProvisionTestCase):

    def test_hash_160(self):
        self.assertEqual("751e76e8199196d454941c45d1b3a323f1433bd6", hash_160(GENERATOR_PUBKEY).hex())

    def test_sha256d(self):
        self.assertEqual("5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456",
                         sha256d(b"").hex())

    def test_pw_encode_with_version_and_mac(self):
        password = bytes(range(16)).hex()
        enc = pw_encode_with_version_and_mac(b"wallet id", password)
        self.assertEqual(b"wallet id", pw_decode_with_version_and_mac(enc, password))
        with self.assertRaises(InvalidPassword):
            pw_decode_with_version_and_mac(enc, "00" * 16)
        with self.assertRaises(CiphertextFormatError):
            pw_decode_with_version_and_mac("not base64!", password)
