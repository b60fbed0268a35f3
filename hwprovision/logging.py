# Copyright (C) 2019 The Electrum developers
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php

import logging
import datetime
import sys
import pathlib
import os
import platform
from typing import Optional, TYPE_CHECKING
import copy

if TYPE_CHECKING:
    from .simple_config import SimpleConfig


PACKAGE_PREFIX = "hwprovision."
LOGFILE_GLOB = "hwprovision_log_*.log"

# logger names that are long and common enough to abbreviate on every line
_SHORT_NAMES = (
    ("provisioning.ProvisioningSession", "provisioning"),
    ("hw_wallet.trezor.TrezorDeviceService", "trezor"),
)


def _shorten_name_of_logrecord(record: logging.LogRecord) -> logging.LogRecord:
    record = copy.copy(record)  # handlers share the record
    name = record.name
    if name.startswith(PACKAGE_PREFIX):
        name = name[len(PACKAGE_PREFIX):]
    for long_name, short_name in _SHORT_NAMES:
        name = name.replace(long_name, short_name, 1)
    record.name = name
    return record


class LogFormatterForFiles(logging.Formatter):

    def formatTime(self, record, datefmt=None):
        # ISO 8601, UTC
        date = datetime.datetime.fromtimestamp(record.created, tz=datetime.timezone.utc)
        return date.strftime(datefmt or "%Y%m%dT%H%M%S.%fZ")

    def format(self, record):
        return super().format(_shorten_name_of_logrecord(record))


class LogFormatterForConsole(logging.Formatter):

    def format(self, record):
        text = super().format(_shorten_name_of_logrecord(record))
        shortcut = getattr(record, 'custom_shortcut', None)
        if shortcut:
            # "I | ..." -> "I/P | ..."
            text = f"{text[:1]}/{shortcut}{text[1:]}"
        return text


file_formatter = LogFormatterForFiles(fmt="%(asctime)22s | %(levelname)8s | %(name)s | %(message)s")
console_formatter = LogFormatterForConsole(fmt="%(levelname).1s | %(name)s | %(message)s")


class ShortcutInjectingFilter(logging.Filter):
    """Tags every record of one Logger-mixin object with its LOGGING_SHORTCUT."""

    def __init__(self, *, shortcut: str):
        super().__init__()
        self.shortcut = shortcut

    def filter(self, record):
        record.custom_shortcut = self.shortcut
        return True


class ShortcutFilteringFilter(logging.Filter):
    """Whitelist ("PW") or blacklist ("^PW") of LOGGING_SHORTCUT letters.

    Errors and records of this module always pass.
    """

    def __init__(self, spec: str):
        super().__init__()
        self.is_blacklist = spec.startswith('^')
        self.shortcuts = spec[1:] if self.is_blacklist else spec

    def filter(self, record):
        if record.levelno >= logging.ERROR or record.name == __name__:
            return True
        shortcut = getattr(record, 'custom_shortcut', None)
        listed = shortcut is not None and shortcut in self.shortcuts
        if self.is_blacklist:
            return not listed
        return listed


root_logger = logging.getLogger()
root_logger.setLevel(logging.WARNING)

hwprovision_logger = logging.getLogger("hwprovision")
hwprovision_logger.setLevel(logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    if name.startswith(PACKAGE_PREFIX):
        name = name[len(PACKAGE_PREFIX):]
    return hwprovision_logger.getChild(name)


_logger = get_logger(__name__)
_logger.setLevel(logging.INFO)


class Logger:
    """Mixin giving each object a `self.logger` named after its class,
    plus its diagnostic_name() when non-empty.
    """

    # single letter, used by --verbose-shortcuts; need not be unique
    LOGGING_SHORTCUT = None  # type: Optional[str]

    def __init__(self):
        self.logger = self.__get_logger_for_obj()

    def __get_logger_for_obj(self) -> logging.Logger:
        cls = self.__class__
        name = f"{cls.__module__}.{cls.__name__}" if cls.__module__ else cls.__name__
        try:
            diag_name = self.diagnostic_name()
        except Exception as e:
            raise Exception("diagnostic name not yet available?") from e
        if diag_name:
            name += f".[{diag_name}]"
        logger = get_logger(name)
        if self.LOGGING_SHORTCUT:
            logger.addFilter(ShortcutInjectingFilter(shortcut=self.LOGGING_SHORTCUT))
        return logger

    def diagnostic_name(self):
        return ''


def _apply_verbosity(verbosity) -> None:
    """verbosity is '*', or e.g. 'debug,provisioning=error' (a default level
    for the package, then per-logger overrides).
    """
    if verbosity == '*' or not isinstance(verbosity, str):
        return
    for item in filter(None, verbosity.split(',')):
        parts = item.split('=')
        if len(parts) == 1:
            hwprovision_logger.setLevel(parts[0].upper())
        elif len(parts) == 2:
            get_logger(parts[0]).setLevel(parts[1].upper())
        else:
            raise Exception(f"invalid log filter: {item}")


console_stderr_handler = None
def _configure_stderr_logging(*, verbosity=None, verbosity_shortcuts=None):
    global console_stderr_handler
    if console_stderr_handler is not None:
        _logger.warning("stderr handler already exists")
        return
    console_stderr_handler = logging.StreamHandler(sys.stderr)
    console_stderr_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_stderr_handler)
    if not verbosity and not verbosity_shortcuts:
        console_stderr_handler.setLevel(logging.WARNING)
        return
    console_stderr_handler.setLevel(logging.DEBUG)
    _apply_verbosity(verbosity)
    if isinstance(verbosity_shortcuts, str) and verbosity_shortcuts:
        # on the handler, not a logger: logger filters do not see propagated records
        console_stderr_handler.addFilter(ShortcutFilteringFilter(verbosity_shortcuts))


def _delete_old_logs(log_directory: pathlib.Path, keep=10):
    # file names sort by creation time
    for f in sorted(log_directory.glob(LOGFILE_GLOB), reverse=True)[keep:]:
        try:
            f.unlink()
        except OSError as e:
            _logger.warning(f"cannot delete old logfile: {e}")


_logfile_path = None  # type: Optional[pathlib.Path]
def _configure_file_logging(log_directory: pathlib.Path):
    global _logfile_path
    assert _logfile_path is None, 'file logging already initialized'
    log_directory.mkdir(exist_ok=True)
    _delete_old_logs(log_directory)
    timestamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    _logfile_path = log_directory / f"hwprovision_log_{timestamp}_{os.getpid()}.log"
    file_handler = logging.FileHandler(_logfile_path, encoding='utf-8')
    file_handler.setFormatter(file_formatter)
    file_handler.setLevel(logging.DEBUG)
    root_logger.addHandler(file_handler)


def configure_logging(config: 'SimpleConfig', *, log_to_file: Optional[bool] = None) -> None:
    verbosity = config.VERBOSITY
    verbosity_shortcuts = config.VERBOSITY_SHORTCUTS
    _configure_stderr_logging(verbosity=verbosity, verbosity_shortcuts=verbosity_shortcuts)
    if log_to_file is None:
        log_to_file = config.LOG_TO_FILE
    if log_to_file:
        _configure_file_logging(pathlib.Path(config.path) / "logs")

    from . import HWPROVISION_VERSION
    _logger.info(f"hwprovision version: {HWPROVISION_VERSION}")
    _logger.info(f"Python version: {sys.version}. On platform: {platform.platform()}")
    _logger.info(f"Logging to file: {_logfile_path}")
    _logger.info(f"Log filters: verbosity {verbosity!r}, verbosity_shortcuts {verbosity_shortcuts!r}")
