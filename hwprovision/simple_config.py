import json
import threading
import os
import stat
from typing import Union, Optional, Dict, Any, Set, Type

from copy import deepcopy

from . import constants
from .util import os_chmod, user_dir, make_dir
from .logging import Logger


CONFIG_FILENAME = "config"

_config_var_from_key = {}  # type: Dict[str, 'ConfigVar']


class ConfigVar(property):
    """A typed config key, exposed as a property on SimpleConfig."""

    def __init__(self, key: str, *, default: Any, type_: Optional[type] = None):
        self._key = key
        self._default = default
        self._type = type_
        property.__init__(self, self._get_config_value, self._set_config_value)
        assert key not in _config_var_from_key, f"duplicate config key str: {key!r}"
        _config_var_from_key[key] = self

    def _get_config_value(self, config: 'SimpleConfig'):
        with config.lock:
            if not config.is_set(self._key):
                return self._default
            value = config.get(self._key)
            if self._type is None:
                return value
            try:
                return self._type(value)
            except (TypeError, ValueError) as e:
                raise ValueError(f"config key {self._key!r} expects {self._type.__name__}, got {value!r}") from e

    def _set_config_value(self, config: 'SimpleConfig', value):
        if self._type is not None and value is not None and not isinstance(value, self._type):
            raise ValueError(f"config key {self._key!r} expects {self._type.__name__}, got {value!r}")
        config.set_key(self._key, value)

    def key(self) -> str:
        return self._key

    def __repr__(self):
        return f"<ConfigVar key={self._key!r}>"


class SimpleConfig(Logger):
    """
    Command line options override the user config file in the data directory.
    Keys given on the command line are never written back.
    """

    def __init__(self, options=None, read_user_config_function=None,
                 read_user_dir_function=None):
        Logger.__init__(self)
        self.lock = threading.RLock()
        self.cmdline_options = deepcopy(options or {})
        # injectable so tests never touch the real data directory
        self.user_dir = read_user_dir_function or user_dir
        self.user_config = {}  # type: Dict[str, Any]
        self.path = self._resolve_datadir()
        self.user_config = (read_user_config_function or read_user_config)(self.path)
        self._not_modifiable_keys = set()  # type: Set[str]

    def get_selected_chain(self) -> Type[constants.AbstractNet]:
        for chain in constants.NETS_LIST:
            if self.get(chain.config_key()):
                return chain
        return constants.BitcoinMainnet

    def _resolve_datadir(self) -> str:
        path = self.get('hwprovision_path') or self.user_dir()
        make_dir(path, allow_symlink=False)
        chain = self.get_selected_chain()
        subdir = chain.datadir_subdir()
        if subdir:
            path = os.path.join(path, subdir)
            make_dir(path, allow_symlink=False)
        self.logger.info(f"hwprovision directory {path} (chain={chain.NET_NAME})")
        return path

    def get(self, key: str, default=None) -> Any:
        with self.lock:
            value = self.cmdline_options.get(key)
            if value is None:
                value = self.user_config.get(key, default)
        return value

    def set_key(self, key: Union[str, ConfigVar], value, *, save=True) -> None:
        key = _key_str(key)
        if not self.is_modifiable(key):
            self.logger.warning(f"not changing config key '{key}' set on the command line")
            return
        with self.lock:
            if value is None:
                self.user_config.pop(key, None)
            else:
                self.user_config[key] = value
            if save:
                self.save_user_config()

    def is_set(self, key: Union[str, ConfigVar]) -> bool:
        return self.get(_key_str(key), default=...) is not ...

    def is_modifiable(self, key: Union[str, ConfigVar]) -> bool:
        key = _key_str(key)
        return key not in self.cmdline_options and key not in self._not_modifiable_keys

    def make_key_not_modifiable(self, key: Union[str, ConfigVar]) -> None:
        self._not_modifiable_keys.add(_key_str(key))

    def save_user_config(self):
        if self.CONFIG_FORGET_CHANGES or not self.path:
            return
        path = os.path.join(self.path, CONFIG_FILENAME)
        s = json.dumps(self.user_config, indent=4, sort_keys=True)
        with open(path, "w", encoding='utf-8') as f:
            os_chmod(path, stat.S_IREAD | stat.S_IWRITE)  # set restrictive perms *before* we write data
            f.write(s)

    def get_datadir_wallet_path(self) -> str:
        dirpath = os.path.join(self.path, "wallets")
        make_dir(dirpath, allow_symlink=False)
        return dirpath

    # seconds; 0 or less waits forever
    PROVISIONING_TIMEOUT = ConfigVar('provisioning_timeout', default=60, type_=int)
    WALLET_DEFAULT_LABEL = ConfigVar('wallet_default_label', default='Trezor wallet', type_=str)
    WALLET_DEFAULT_NOTES = ConfigVar('wallet_default_notes', default='', type_=str)
    LOG_TO_FILE = ConfigVar('log_to_file', default=False, type_=bool)
    VERBOSITY = ConfigVar('verbosity', default=None)
    VERBOSITY_SHORTCUTS = ConfigVar('verbosity_shortcuts', default=None)
    CONFIG_FORGET_CHANGES = ConfigVar('forget_config', default=False, type_=bool)


def _key_str(key: Union[str, ConfigVar]) -> str:
    if isinstance(key, ConfigVar):
        key = key.key()
    assert isinstance(key, str), key
    return key


def read_user_config(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    config_path = os.path.join(path, CONFIG_FILENAME)
    if not os.path.exists(config_path):
        return {}
    try:
        with open(config_path, "r", encoding='utf-8') as f:
            result = json.load(f)
    except (OSError, ValueError) as e:
        raise ValueError(f"Invalid config file at {config_path}: {e}") from e
    if not isinstance(result, dict):
        raise ValueError(f"Invalid config file at {config_path}: not a dict")
    return result
