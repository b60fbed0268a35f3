import errno
import json
import os
import shutil
import stat
import tempfile
from unittest import mock

from hwprovision.bip32 import derive_root_node
from hwprovision.storage import WalletStorage, StorageReadWriteError
from hwprovision.util import InvalidPassword
from hwprovision.wallet_manager import (WalletManager, WalletProvisioner, WalletSummary, PersistenceError,
                                        wallet_id_from_root_node)

from . import HwProvisionTestCase, GENERATOR_PUBKEY, ZERO_CHAIN_CODE


ENTROPY = bytes(range(16))
TIMESTAMP = 1700000000


def snapshot_dir(path):
    result = {}
    for name in sorted(os.listdir(path)):
        st = os.stat(os.path.join(path, name))
        result[name] = (st.st_mtime_ns, st.st_size)
    return result


class TestWalletStorage(HwProvisionTestCase):

    def test_write_then_read(self):
        path = os.path.join(self.hwprovision_path, "somewallet")
        storage = WalletStorage(path)
        self.assertFalse(storage.file_exists())
        self.assertEqual('', storage.read())
        storage.write('{"a": 1}')
        self.assertTrue(storage.file_exists())
        self.assertEqual(["somewallet"], os.listdir(self.hwprovision_path))  # no temp files left behind
        self.assertEqual('{"a": 1}', WalletStorage(path).read())

    def test_file_permissions(self):
        if os.name != 'posix':
            self.skipTest("posix only")
        path = os.path.join(self.hwprovision_path, "somewallet")
        WalletStorage(path).write("{}")
        mode = stat.S_IMODE(os.stat(path).st_mode)
        self.assertEqual(stat.S_IREAD | stat.S_IWRITE, mode)

    def test_write_into_missing_directory(self):
        path = os.path.join(self.hwprovision_path, "nonexistent", "somewallet")
        with self.assertRaises(StorageReadWriteError):
            WalletStorage(path).write("{}")

    def test_failed_write_leaves_no_temp_file(self):
        path = os.path.join(self.hwprovision_path, "somewallet")
        storage = WalletStorage(path)
        with mock.patch('os.fsync', side_effect=OSError(errno.ENOSPC, "No space left on device")):
            with self.assertRaises(StorageReadWriteError):
                storage.write('{"a": 1}')
        self.assertEqual([], os.listdir(self.hwprovision_path))
        self.assertFalse(storage.file_exists())


class TestWalletManager(HwProvisionTestCase):

    def setUp(self):
        super().setUp()
        self.storage_dir = os.path.join(self.hwprovision_path, "wallets")
        os.mkdir(self.storage_dir)
        self.root_node = derive_root_node(GENERATOR_PUBKEY, ZERO_CHAIN_CODE)
        self.manager = WalletManager()

    def test_wallet_id_format(self):
        wallet_id = wallet_id_from_root_node(self.root_node)
        self.assertRegex(wallet_id, r'^[0-9a-f]{8}(-[0-9a-f]{8}){4}$')
        self.assertEqual(wallet_id, wallet_id_from_root_node(derive_root_node(GENERATOR_PUBKEY, ZERO_CHAIN_CODE)))
        other_node = derive_root_node(GENERATOR_PUBKEY, b'\x01' * 32)
        self.assertNotEqual(wallet_id, wallet_id_from_root_node(other_node))

    def test_create_wallet(self):
        summary = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")
        self.assertEqual(wallet_id_from_root_node(self.root_node), summary.wallet_id)
        self.assertEqual("L", summary.label)
        self.assertEqual("N", summary.notes)
        self.assertEqual(TIMESTAMP, summary.timestamp)
        self.assertEqual(self.root_node.to_xpub(), summary.xpub)
        self.assertEqual("m/44'/0'/0'", summary.derivation)
        self.assertTrue(os.path.exists(summary.path))
        with open(summary.path, "r", encoding='utf-8') as f:
            data = json.loads(f.read())
        self.assertEqual('hw_root', data['wallet_type'])
        # the password itself is never stored
        self.assertNotIn(ENTROPY.hex(), json.dumps(data))

    def test_existing_wallet_is_loaded_unchanged(self):
        summary1 = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")
        before = snapshot_dir(self.storage_dir)
        summary2 = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP + 100, ENTROPY.hex(), "other label", "other notes")
        self.assertEqual(summary1, summary2)
        self.assertEqual("L", summary2.label)
        self.assertEqual(TIMESTAMP, summary2.timestamp)
        self.assertEqual(before, snapshot_dir(self.storage_dir))

    def test_get_wallet_summary(self):
        wallet_id = wallet_id_from_root_node(self.root_node)
        self.assertIsNone(self.manager.get_wallet_summary(self.storage_dir, wallet_id))
        summary = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")
        self.assertEqual(summary, self.manager.get_wallet_summary(self.storage_dir, wallet_id))

    def test_list_wallet_summaries_sorted_by_creation_time(self):
        self.assertEqual([], self.manager.list_wallet_summaries(self.storage_dir))
        self.assertEqual([], self.manager.list_wallet_summaries(os.path.join(self.storage_dir, "missing")))
        node2 = derive_root_node(GENERATOR_PUBKEY, b'\x01' * 32)
        summary2 = self.manager.get_or_create_wallet_summary(
            self.storage_dir, node2, TIMESTAMP + 1, ENTROPY.hex(), "second", "")
        summary1 = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "first", "")
        # unrelated files are skipped
        with open(os.path.join(self.storage_dir, "config"), "w") as f:
            f.write("{}")
        self.assertEqual([summary1, summary2], self.manager.list_wallet_summaries(self.storage_dir))

    def test_check_password(self):
        summary = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")
        self.manager.check_password(self.storage_dir, summary.wallet_id, ENTROPY.hex())
        with self.assertRaises(InvalidPassword):
            self.manager.check_password(self.storage_dir, summary.wallet_id, bytes(16).hex())
        with self.assertRaises(PersistenceError):
            self.manager.check_password(self.storage_dir, "00000000-00000000-00000000-00000000-00000000", ENTROPY.hex())

    def test_missing_storage_dir_raises_persistence_error(self):
        missing_dir = os.path.join(self.hwprovision_path, "does-not-exist")
        with self.assertRaises(PersistenceError):
            self.manager.get_or_create_wallet_summary(
                missing_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")

    def test_corrupt_wallet_file_raises_persistence_error(self):
        wallet_id = wallet_id_from_root_node(self.root_node)
        with open(self.manager.get_wallet_path(self.storage_dir, wallet_id), "w") as f:
            f.write("garbage")
        with self.assertRaises(PersistenceError):
            self.manager.get_or_create_wallet_summary(
                self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")

    def test_invalid_fields_are_rejected_before_writing(self):
        for timestamp, label, notes in ((float(TIMESTAMP), "L", "N"),
                                        (TIMESTAMP, None, "N"),
                                        (TIMESTAMP, "L", 5)):
            with self.assertRaises(PersistenceError):
                self.manager.get_or_create_wallet_summary(
                    self.storage_dir, self.root_node, timestamp, ENTROPY.hex(), label, notes)
            self.assertEqual([], os.listdir(self.storage_dir))
        # the wallet id is still usable afterwards
        summary = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")
        self.assertEqual(TIMESTAMP, summary.timestamp)
        self.assertEqual(summary, self.manager.get_wallet_summary(self.storage_dir, summary.wallet_id))

    def test_summary_is_frozen(self):
        summary = self.manager.get_or_create_wallet_summary(
            self.storage_dir, self.root_node, TIMESTAMP, ENTROPY.hex(), "L", "N")
        with self.assertRaises(Exception):
            summary.label = "changed"
        self.assertEqual(
            {'wallet_id', 'label', 'notes', 'creation_timestamp', 'xpub', 'derivation'},
            set(summary.to_json()))


class TestWalletProvisioner(HwProvisionTestCase):

    def setUp(self):
        super().setUp()
        self.storage_dir = tempfile.mkdtemp(prefix="hwprovision-unittest-wallets-")
        self.root_node = derive_root_node(GENERATOR_PUBKEY, ZERO_CHAIN_CODE)
        self.provisioner = WalletProvisioner(storage_dir=self.storage_dir)

    def tearDown(self):
        shutil.rmtree(self.storage_dir)
        super().tearDown()

    def test_concrete_scenario(self):
        summary = self.provisioner.provision(self.root_node, ENTROPY, TIMESTAMP, "L", "N")
        self.assertIsInstance(summary, WalletSummary)
        self.assertEqual(wallet_id_from_root_node(self.root_node), summary.wallet_id)
        self.assertEqual(1, len(os.listdir(self.storage_dir)))
        before = snapshot_dir(self.storage_dir)
        summary2 = self.provisioner.provision(self.root_node, ENTROPY, TIMESTAMP, "L", "N")
        self.assertEqual(summary.wallet_id, summary2.wallet_id)
        self.assertEqual(before, snapshot_dir(self.storage_dir))
        self.provisioner.wallet_manager.check_password(self.storage_dir, summary.wallet_id, ENTROPY.hex())

    def test_no_entropy_no_mutation(self):
        self.assertIsNone(self.provisioner.provision(self.root_node, None, TIMESTAMP, "L", "N"))
        self.assertIsNone(self.provisioner.provision(self.root_node, b'', TIMESTAMP, "L", "N"))
        self.assertEqual([], os.listdir(self.storage_dir))

    def test_persistence_error_is_raised(self):
        provisioner = WalletProvisioner(storage_dir=os.path.join(self.storage_dir, "missing"))
        with self.assertRaises(PersistenceError):
            provisioner.provision(self.root_node, ENTROPY, TIMESTAMP, "L", "N")
