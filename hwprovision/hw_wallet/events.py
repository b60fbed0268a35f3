# Copyright (C) 2018 The Electrum developers
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php

import enum
import threading
from typing import Callable, Optional, List

import attr

from ..logging import Logger


class HardwareWalletEventType(enum.Enum):
    SHOW_DEVICE_FAILED = enum.auto()
    SHOW_DEVICE_DETACHED = enum.auto()
    SHOW_DEVICE_READY = enum.auto()
    ADDRESS = enum.auto()
    SHOW_PIN_ENTRY = enum.auto()
    SHOW_OPERATION_SUCCEEDED = enum.auto()
    SHOW_OPERATION_FAILED = enum.auto()
    PUBLIC_KEY = enum.auto()


def _optional_bytes(x) -> Optional[bytes]:
    return None if x is None else bytes(x)


@attr.s(frozen=True, kw_only=True)
class HDNodeType:
    """Key material of a node as reported by the device (mirrors trezorlib's HDNodeType)."""
    public_key = attr.ib(default=None, converter=_optional_bytes)  # type: Optional[bytes]
    chain_code = attr.ib(default=None, converter=_optional_bytes)  # type: Optional[bytes]
    depth = attr.ib(default=None)  # type: Optional[int]
    fingerprint = attr.ib(default=None)  # type: Optional[int]
    child_num = attr.ib(default=None)  # type: Optional[int]


@attr.s(frozen=True, kw_only=True)
class PublicKey:
    node = attr.ib(default=None)  # type: Optional[HDNodeType]
    xpub = attr.ib(default=None)  # type: Optional[str]


@attr.s(frozen=True)
class HardwareWalletEvent:
    event_type = attr.ib(type=HardwareWalletEventType)
    message = attr.ib(default=None)  # PublicKey for PUBLIC_KEY, free form otherwise

    def __str__(self):
        return f"<HardwareWalletEvent {self.event_type.name}>"


class Subscription:
    """Handle returned by DeviceEventChannel.subscribe(). Unsubscribing is idempotent."""

    def __init__(self, channel: 'DeviceEventChannel', callback):
        self._channel = channel
        self.callback = callback
        self._active = True

    def is_active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._channel._remove(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()


class DeviceEventChannel(Logger):
    """Delivers device events to subscribers.

    Callbacks run synchronously on the publishing thread, so they must not block.
    Can be published to from any thread.
    """

    def __init__(self):
        Logger.__init__(self)
        self.callback_lock = threading.Lock()
        self.subscriptions = []  # type: List[Subscription]  # note: needs self.callback_lock

    def subscribe(self, callback: Callable[[HardwareWalletEvent], None]) -> Subscription:
        sub = Subscription(self, callback)
        with self.callback_lock:
            self.subscriptions.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self.callback_lock:
            if sub in self.subscriptions:
                self.subscriptions.remove(sub)

    def count_subscriptions(self) -> int:
        with self.callback_lock:
            return len(self.subscriptions)

    def publish(self, event: HardwareWalletEvent) -> None:
        with self.callback_lock:
            subs = self.subscriptions[:]
        self.logger.debug(f"publishing {event} to {len(subs)} subscriber(s)")
        for sub in subs:
            if not sub.is_active():
                continue
            try:
                sub.callback(event)
            except Exception:
                # one broken subscriber must not starve the others
                self.logger.exception(f"subscriber errored on {event}")
