#!/usr/bin/env python
#
# Electrum - lightweight Bitcoin client
# Copyright (C) 2015 Thomas Voegtlin
#
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php
import os
import stat

from .util import standardize_path, os_chmod
from .logging import Logger


class StorageReadWriteError(Exception): pass


class WalletStorage(Logger):
    """Plaintext wallet file. Writes are atomic (temp file + rename)."""

    def __init__(self, path):
        Logger.__init__(self)
        self.path = standardize_path(path)
        self._file_exists = bool(self.path and os.path.exists(self.path))
        if self.file_exists():
            try:
                with open(self.path, "rb") as f:
                    self.raw = f.read().decode("utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise StorageReadWriteError(e) from e
        else:
            self.raw = ''

    def read(self) -> str:
        return self.raw

    def check_read_write(self) -> None:
        """Raises StorageReadWriteError unless we can read the wallet file
        and write files next to it. Never modifies an existing file.
        """
        probe_path = "%s.tmptest.%s" % (self.path, os.getpid())
        try:
            if os.path.exists(self.path):
                with open(self.path, "rb") as f:
                    f.read(1)
            with open(probe_path, "w", encoding='utf-8') as f:
                f.write("rw")
            with open(probe_path, "r", encoding='utf-8') as f:
                ok = f.read() == "rw"
            os.remove(probe_path)
        except OSError as e:
            raise StorageReadWriteError(e) from e
        if not ok:
            raise StorageReadWriteError(f"read-back check failed next to {self.path}")

    def write(self, data: str) -> None:
        self.check_read_write()
        try:
            mode = os.stat(self.path).st_mode
        except FileNotFoundError:
            mode = stat.S_IREAD | stat.S_IWRITE
        temp_path = "%s.tmp.%s" % (self.path, os.getpid())
        try:
            with open(temp_path, "wb") as f:
                os_chmod(temp_path, mode)  # set restrictive perms *before* we write data
                f.write(data.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise StorageReadWriteError(e) from e
        # never clobber a wallet file that appeared behind our back
        if not self.file_exists() and os.path.exists(self.path):
            os.remove(temp_path)
            raise StorageReadWriteError(f"wallet file appeared while writing: {self.path}")
        os.replace(temp_path, self.path)
        self.raw = data
        self._file_exists = True
        self.logger.info(f"saved {self.path}")

    def file_exists(self) -> bool:
        return self._file_exists
