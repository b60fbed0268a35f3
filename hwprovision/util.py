# Copyright (C) 2011 thomasv@gitorious
# Copyright (C) 2019 The Electrum developers
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php
import os
import stat
import time
from functools import wraps
from typing import Optional, Set

from .logging import get_logger


_logger = get_logger(__name__)


def inv_dict(d):
    return {v: k for k, v in d.items()}


def all_subclasses(cls) -> Set:
    """Return all (transitive) subclasses of cls."""
    res = set(cls.__subclasses__())
    for sub in res.copy():
        res |= all_subclasses(sub)
    return res


class InvalidPassword(Exception):
    def __str__(self):
        return str(self.args[0]) if self.args else "Incorrect password"


class WalletFileException(Exception): pass


class BitcoinException(Exception): pass


class UserFacingException(Exception):
    """Exception that contains information intended to be shown to the user."""


class UserCancelled(Exception):
    """The user aborted the operation on the device. Not shown as an error."""


_profiler_logger = _logger.getChild('profiler')
def profiler(func):
    """Logs how long a (sync) call took, at debug level."""
    @wraps(func)
    def do_profile(*args, **kw_args):
        t0 = time.monotonic()
        try:
            return func(*args, **kw_args)
        finally:
            _profiler_logger.debug(f"{func.__qualname__} {time.monotonic() - t0:,.4f} sec")
    return do_profile


def now_in_seconds() -> int:
    return int(time.time())


def standardize_path(path):
    # symlinks are deliberately not resolved
    return os.path.normcase(os.path.abspath(os.path.expanduser(path)))


def assert_bytes(*args):
    for x in args:
        if not isinstance(x, (bytes, bytearray)):
            raise TypeError(f"expected bytes, got {type(x)}")


def to_bytes(something, encoding='utf8') -> bytes:
    if isinstance(something, bytes):
        return something
    if isinstance(something, bytearray):
        return bytes(something)
    if isinstance(something, str):
        return something.encode(encoding)
    raise TypeError("Not a string or bytes like object")


bfh = bytes.fromhex


def versiontuple(v):
    return tuple(map(int, (v.split("."))))


def user_dir() -> Optional[str]:
    if "HWPROVISIONDIR" in os.environ:
        return os.environ["HWPROVISIONDIR"]
    if os.name == 'posix':
        return os.path.join(os.environ["HOME"], ".hwprovision")
    for var in ("APPDATA", "LOCALAPPDATA"):
        if var in os.environ:
            return os.path.join(os.environ[var], "hwprovision")
    return None


def os_chmod(path, mode):
    """os.chmod, except that chmod failures inside $XDG_RUNTIME_DIR (tmpfs) are only logged."""
    try:
        os.chmod(path, mode)
    except OSError as e:
        runtime_dir = os.environ.get("XDG_RUNTIME_DIR")
        if not runtime_dir:
            raise
        try:
            in_runtime_dir = os.path.commonpath([standardize_path(path), standardize_path(runtime_dir)]) \
                             == standardize_path(runtime_dir)
        except ValueError:
            in_runtime_dir = False
        if not in_runtime_dir:
            raise
        _logger.info(f"Tried to chmod in tmpfs. Skipping... {e!r}")


def make_dir(path, allow_symlink=True):
    """Make directory (owner-only permissions) if it does not yet exist."""
    if os.path.exists(path):
        return
    if not allow_symlink and os.path.islink(path):
        raise Exception('Dangling link: ' + path)
    os.mkdir(path)
    os_chmod(path, stat.S_IRUSR | stat.S_IWUSR | stat.S_IXUSR)
