# Copyright (C) 2018 The Electrum developers
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php

import json
import os
from typing import Optional, List

import attr

from .bip32 import BIP32Node, convert_bip32_intpath_to_strpath
from .crypto import sha256, pw_encode_with_version_and_mac, pw_decode_with_version_and_mac
from .logging import Logger
from .storage import WalletStorage, StorageReadWriteError
from .util import WalletFileException, InvalidPassword, profiler


WALLET_TYPE = 'hw_root'
WALLET_FILE_VERSION = 1
WALLET_FILE_PREFIX = 'hwp-'
WALLET_ID_DOMAIN = b'hwprovision-wallet-id'


class PersistenceError(WalletFileException):
    """Create-or-load of a wallet file failed."""


def wallet_id_from_root_node(root_node: BIP32Node) -> str:
    """Deterministic wallet identifier; depends on the root node only.

    Formatted as five groups of eight hex chars.
    """
    digest = sha256(WALLET_ID_DOMAIN + root_node.to_xpub_bytes())[0:20].hex()
    return '-'.join(digest[i:i + 8] for i in range(0, len(digest), 8))


@attr.s(frozen=True, kw_only=True)
class WalletSummary:
    wallet_id = attr.ib(type=str)
    label = attr.ib(type=str, validator=attr.validators.instance_of(str))
    notes = attr.ib(type=str, validator=attr.validators.instance_of(str))
    timestamp = attr.ib(type=int, validator=attr.validators.instance_of(int))  # creation time
    xpub = attr.ib(type=str)
    derivation = attr.ib(type=str)
    path = attr.ib(type=str, eq=False)

    def to_json(self) -> dict:
        return {
            'wallet_id': self.wallet_id,
            'label': self.label,
            'notes': self.notes,
            'creation_timestamp': self.timestamp,
            'xpub': self.xpub,
            'derivation': self.derivation,
        }


class WalletManager(Logger):
    """Creates and loads hardware-root wallet files in a storage directory.

    There is one file per wallet, named after its wallet id, so the same root
    node always maps to the same file.
    """

    LOGGING_SHORTCUT = 'W'

    def get_wallet_path(self, storage_dir: str, wallet_id: str) -> str:
        return os.path.join(storage_dir, WALLET_FILE_PREFIX + wallet_id)

    @profiler
    def get_or_create_wallet_summary(
            self,
            storage_dir: str,
            root_node: BIP32Node,
            timestamp: int,
            password_hex: str,
            label: str,
            notes: str,
    ) -> WalletSummary:
        wallet_id = wallet_id_from_root_node(root_node)
        path = self.get_wallet_path(storage_dir, wallet_id)
        try:
            storage = WalletStorage(path)
            if storage.file_exists():
                summary = self._summary_from_storage(storage)
                if summary.xpub != root_node.to_xpub():
                    raise PersistenceError(f"wallet file {path} belongs to another root node")
                self.logger.info(f"loaded existing wallet {wallet_id}")
                return summary
            # validate before anything reaches the disk
            try:
                summary = WalletSummary(
                    wallet_id=wallet_id,
                    label=label,
                    notes=notes,
                    timestamp=timestamp,
                    xpub=root_node.to_xpub(),
                    derivation=root_node.get_derivation_path(),
                    path=storage.path,
                )
            except TypeError as e:
                raise PersistenceError(f"invalid wallet fields for {wallet_id}: {e}") from e
            data = {
                'wallet_type': WALLET_TYPE,
                'wallet_file_version': WALLET_FILE_VERSION,
                'wallet_id': summary.wallet_id,
                'label': summary.label,
                'notes': summary.notes,
                'creation_timestamp': summary.timestamp,
                'keystore': {
                    'type': 'hardware',
                    'hw_type': 'trezor',
                    'xpub': summary.xpub,
                    'derivation': summary.derivation,
                },
                'password_check': pw_encode_with_version_and_mac(wallet_id.encode('ascii'), password_hex),
            }
            storage.write(json.dumps(data, indent=4, sort_keys=True))
        except (OSError, StorageReadWriteError) as e:
            raise PersistenceError(f"cannot create or load wallet {wallet_id}: {e!r}") from e
        self.logger.info(f"created new wallet {wallet_id}")
        return summary

    def get_wallet_summary(self, storage_dir: str, wallet_id: str) -> Optional[WalletSummary]:
        path = self.get_wallet_path(storage_dir, wallet_id)
        try:
            storage = WalletStorage(path)
        except StorageReadWriteError as e:
            raise PersistenceError(f"cannot load wallet {wallet_id}: {e!r}") from e
        if not storage.file_exists():
            return None
        return self._summary_from_storage(storage)

    def list_wallet_summaries(self, storage_dir: str) -> List[WalletSummary]:
        try:
            names = os.listdir(storage_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise PersistenceError(f"cannot list wallets in {storage_dir}: {e!r}") from e
        summaries = []
        for name in names:
            if not name.startswith(WALLET_FILE_PREFIX) or '.tmp' in name:
                continue
            summary = self.get_wallet_summary(storage_dir, name[len(WALLET_FILE_PREFIX):])
            if summary is not None:
                summaries.append(summary)
        return sorted(summaries, key=lambda s: (s.timestamp, s.wallet_id))

    def check_password(self, storage_dir: str, wallet_id: str, password_hex: str) -> None:
        """Raises InvalidPassword if password_hex is not the one the wallet was created with."""
        path = self.get_wallet_path(storage_dir, wallet_id)
        storage = WalletStorage(path)
        if not storage.file_exists():
            raise PersistenceError(f"no wallet with id {wallet_id}")
        data = self._read_json(storage)
        decoded = pw_decode_with_version_and_mac(data['password_check'], password_hex)
        if decoded != wallet_id.encode('ascii'):
            raise InvalidPassword()

    @classmethod
    def _read_json(cls, storage: WalletStorage) -> dict:
        try:
            data = json.loads(storage.read())
        except json.JSONDecodeError as e:
            raise PersistenceError(f"wallet file is not valid json: {storage.path}") from e
        if not isinstance(data, dict) or data.get('wallet_type') != WALLET_TYPE:
            raise PersistenceError(f"not a hardware root wallet file: {storage.path}")
        return data

    @classmethod
    def _summary_from_storage(cls, storage: WalletStorage) -> WalletSummary:
        data = cls._read_json(storage)
        try:
            return WalletSummary(
                wallet_id=data['wallet_id'],
                label=data['label'],
                notes=data['notes'],
                timestamp=data['creation_timestamp'],
                xpub=data['keystore']['xpub'],
                derivation=data['keystore']['derivation'],
                path=storage.path,
            )
        except (KeyError, TypeError) as e:
            raise PersistenceError(f"wallet file is missing fields: {storage.path}") from e


class WalletProvisioner(Logger):
    """Turns a derived root node plus caller entropy into a wallet, exactly once.

    Must be called from the consumer context (it touches the filesystem).
    """

    LOGGING_SHORTCUT = 'W'

    def __init__(self, *, storage_dir: str, wallet_manager: Optional[WalletManager] = None):
        Logger.__init__(self)
        self.storage_dir = storage_dir
        self.wallet_manager = wallet_manager or WalletManager()

    def provision(
            self,
            root_node: BIP32Node,
            entropy: Optional[bytes],
            timestamp: int,
            label: str,
            notes: str,
    ) -> Optional[WalletSummary]:
        """Returns None, without touching the filesystem, if there is no entropy."""
        if not entropy:
            self.logger.info("no entropy - no wallet to load")
            return None
        # the entropy is the wallet password, so the user does not need to remember one
        self.logger.info(f"provisioning wallet for {convert_bip32_intpath_to_strpath(root_node.derivation or ())} "
                         f"with entropy of length {len(entropy)}")
        password = entropy.hex()
        summary = self.wallet_manager.get_or_create_wallet_summary(
            self.storage_dir, root_node, timestamp, password, label, notes)
        self.logger.debug(f"wallet summary {summary}")
        return summary
