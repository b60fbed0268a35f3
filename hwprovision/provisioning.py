# Copyright (C) 2018 The Electrum developers
# Distributed under the MIT software license, see the accompanying
# file LICENCE or http://www.opensource.org/licenses/mit-license.php
#
# Provisioning a wallet from the root node reported by a hardware device.
#
# Three threads are involved:
#  - the event-delivery thread, whoever publishes on the DeviceEventChannel.
#    EventCorrelator runs there, and only validates and derives.
#  - the dispatcher worker ('hwp_request_thread'), which sends the request.
#  - the asyncio event loop owning the ProvisioningSession. It is the only
#    writer of the session state, and the only thread touching the filesystem.
# Results are handed to the event loop with loop.call_soon_threadsafe.

import asyncio
import concurrent.futures
import enum
import threading
from typing import Optional, Callable, Sequence, List, TYPE_CHECKING

import attr
from aiorpcx.curio import timeout_after, TaskTimeout

from .bip32 import BIP32Node, CurveDecodeError, ROOT_NODE_DERIVATION, derive_root_node
from .hw_wallet.events import (DeviceEventChannel, HardwareWalletEvent, HardwareWalletEventType,
                               Subscription)
from .hw_wallet.plugin import HardwareWalletService
from .logging import Logger
from .util import now_in_seconds
from .wallet_manager import WalletProvisioner, WalletSummary, PersistenceError

if TYPE_CHECKING:
    from .simple_config import SimpleConfig


class ProvisioningState(enum.Enum):
    IDLE = enum.auto()
    REQUESTED = enum.auto()
    AWAITING_RESPONSE = enum.auto()
    DERIVED = enum.auto()
    PROVISIONED = enum.auto()
    FAILED = enum.auto()
    SKIPPED = enum.auto()

    def is_terminal(self) -> bool:
        return self in (ProvisioningState.PROVISIONED,
                        ProvisioningState.FAILED,
                        ProvisioningState.SKIPPED)


class ProvisioningErrorKind(enum.Enum):
    MALFORMED_DEVICE_MESSAGE = enum.auto()
    CURVE_DECODE_ERROR = enum.auto()
    PERSISTENCE_ERROR = enum.auto()
    TIMEOUT = enum.auto()
    DEVICE_ERROR = enum.auto()  # sending the request raised


class MalformedDeviceMessage(Exception):
    """The device reported a PUBLIC_KEY without usable key material."""


class ProvisioningTimeout(Exception): pass


@attr.s(frozen=True, kw_only=True)
class ProvisioningOutcome:
    state = attr.ib(type=ProvisioningState)
    wallet_summary = attr.ib(default=None)  # type: Optional[WalletSummary]
    root_node = attr.ib(default=None, repr=False)  # type: Optional[BIP32Node]
    error_kind = attr.ib(default=None)  # type: Optional[ProvisioningErrorKind]
    error = attr.ib(default=None, eq=False)  # type: Optional[BaseException]

    @state.validator
    def _check_state(self, attribute, value):
        if not value.is_terminal():
            raise ValueError(f"outcome needs a terminal state, not {value}")

    def is_success(self) -> bool:
        """SKIPPED is not a failure; there was just nothing to do."""
        return self.state != ProvisioningState.FAILED


class RequestDispatcher(Logger):
    """Sends the single "get public node" request of a provisioning attempt."""

    def __init__(self, device: HardwareWalletService, path: Sequence[int] = ROOT_NODE_DERIVATION):
        Logger.__init__(self)
        self.device = device
        self.path = tuple(path)
        self._lock = threading.Lock()
        self._request_fut = None  # type: Optional[concurrent.futures.Future]  # note: needs self._lock
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix='hwp_request_thread',
        )

    def request_root_node(self) -> concurrent.futures.Future:
        """Schedules the request on the worker thread.
        Later calls return the future of the first one.
        """
        with self._lock:
            if self._request_fut is not None:
                self.logger.debug("request already dispatched")
                return self._request_fut
            self._request_fut = self._executor.submit(self._send_request)
            return self._request_fut

    def has_requested(self) -> bool:
        with self._lock:
            return self._request_fut is not None

    def _send_request(self) -> None:
        self.logger.info(f"requesting public node at {list(self.path)} from {self.device.name}")
        self.device.request_public_node(self.path)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


IGNORED_EVENT_TYPES = frozenset({
    HardwareWalletEventType.SHOW_DEVICE_FAILED,
    HardwareWalletEventType.SHOW_DEVICE_DETACHED,
    HardwareWalletEventType.SHOW_DEVICE_READY,
    HardwareWalletEventType.ADDRESS,
    HardwareWalletEventType.SHOW_PIN_ENTRY,
    HardwareWalletEventType.SHOW_OPERATION_SUCCEEDED,
    HardwareWalletEventType.SHOW_OPERATION_FAILED,
})


class EventCorrelator(Logger):
    """Picks the PUBLIC_KEY answer out of the device event stream.

    on_event() runs on the event-delivery thread. It never blocks and never
    touches session state: it reports either the derived root node or a
    failure through the given callbacks.
    """

    def __init__(
            self,
            *,
            on_root_node: Callable[[BIP32Node], None],
            on_failure: Callable[[ProvisioningErrorKind, Exception], None],
            path: Sequence[int] = ROOT_NODE_DERIVATION,
    ):
        Logger.__init__(self)
        self.path = tuple(path)
        self._on_root_node = on_root_node
        self._on_failure = on_failure

    def on_event(self, event: HardwareWalletEvent) -> None:
        if event.event_type in IGNORED_EVENT_TYPES:
            self.logger.debug(f"ignoring {event}")
            return
        if event.event_type != HardwareWalletEventType.PUBLIC_KEY:
            self.logger.debug(f"unexpected event type {event.event_type}")
            return
        try:
            public_key, chain_code = self.extract_key_material(event.message)
            root_node = derive_root_node(public_key, chain_code, self.path)
        except MalformedDeviceMessage as e:
            self.logger.warning(f"malformed public key message: {e}")
            self._on_failure(ProvisioningErrorKind.MALFORMED_DEVICE_MESSAGE, e)
            return
        except CurveDecodeError as e:
            self.logger.warning(f"reported public key is not a curve point: {e}")
            self._on_failure(ProvisioningErrorKind.CURVE_DECODE_ERROR, e)
            return
        self.logger.info(f"derived root node {root_node.get_derivation_path()}")
        self._on_root_node(root_node)

    @classmethod
    def extract_key_material(cls, message) -> tuple:
        node = getattr(message, 'node', None)
        if node is None:
            raise MalformedDeviceMessage("no node in message")
        public_key = getattr(node, 'public_key', None)
        chain_code = getattr(node, 'chain_code', None)
        if public_key is None:
            raise MalformedDeviceMessage("no public key in node")
        if chain_code is None:
            raise MalformedDeviceMessage("no chain code in node")
        if not isinstance(public_key, (bytes, bytearray)) or not isinstance(chain_code, (bytes, bytearray)):
            raise MalformedDeviceMessage(
                f"key material must be bytes, got {type(public_key).__name__}/{type(chain_code).__name__}")
        if len(chain_code) != 32:
            raise MalformedDeviceMessage(f"unexpected chain code length: {len(chain_code)}")
        return bytes(public_key), bytes(chain_code)


class CompletionSignal(Logger):
    """Delivers the terminal ProvisioningOutcome, at most once.

    Must only be used from the event loop thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        Logger.__init__(self)
        self._loop = loop
        self.future = loop.create_future()  # type: asyncio.Future
        self._callbacks = []  # type: List[Callable[[ProvisioningOutcome], None]]
        self._closed = False

    def add_callback(self, callback: Callable[[ProvisioningOutcome], None]) -> None:
        if self._closed:
            return
        if self.future.done():
            self._loop.call_soon(self._run_callback, callback, self.future.result())
            return
        self._callbacks.append(callback)

    def fire(self, outcome: ProvisioningOutcome) -> bool:
        if self._closed or self.future.done():
            return False
        self.future.set_result(outcome)
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback, outcome)
        return True

    def _run_callback(self, callback, outcome: ProvisioningOutcome) -> None:
        if self._closed:
            return
        try:
            callback(outcome)
        except Exception:
            self.logger.exception(f"completion callback errored. {outcome.state=}")

    def outcome(self) -> Optional[ProvisioningOutcome]:
        if self.future.done() and not self.future.cancelled():
            return self.future.result()
        return None

    def close(self) -> None:
        self._closed = True
        self._callbacks.clear()
        if not self.future.done():
            self.future.cancel()


class ProvisioningSession(Logger):
    """One attempt at provisioning a wallet from a hardware device.

    Create it, and call begin_provisioning(), on the event loop thread.
    """

    LOGGING_SHORTCUT = 'P'

    def __init__(
            self,
            *,
            device: HardwareWalletService,
            provisioner: WalletProvisioner,
            entropy: Optional[bytes],
            label: str,
            notes: str,
            timestamp: Optional[int] = None,
            timeout: Optional[float] = None,
            event_channel: Optional[DeviceEventChannel] = None,
            path: Sequence[int] = ROOT_NODE_DERIVATION,
            loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.device = device
        Logger.__init__(self)
        self._loop = loop or asyncio.get_running_loop()
        self.event_channel = event_channel or device.event_channel
        self.provisioner = provisioner
        self.entropy = None if entropy is None else bytes(entropy)
        self.label = label
        self.notes = notes
        self.timestamp = timestamp
        self.timeout = timeout
        self.path = tuple(path)
        self.state = ProvisioningState.IDLE
        self.root_node = None  # type: Optional[BIP32Node]
        self.dispatcher = RequestDispatcher(device, self.path)
        self.correlator = EventCorrelator(
            on_root_node=lambda node: self._post(self._on_root_node, node),
            on_failure=lambda kind, exc: self._post(self._fail, kind, exc),
            path=self.path,
        )
        self.completion = CompletionSignal(self._loop)
        self._subscription = None  # type: Optional[Subscription]
        self._watchdog = None  # type: Optional[asyncio.Task]
        self._closed = False

    @classmethod
    def from_config(
            cls,
            config: 'SimpleConfig',
            *,
            device: HardwareWalletService,
            entropy: Optional[bytes],
            label: Optional[str] = None,
            notes: Optional[str] = None,
            **kwargs,
    ) -> 'ProvisioningSession':
        provisioner = WalletProvisioner(storage_dir=config.get_datadir_wallet_path())
        timeout = config.PROVISIONING_TIMEOUT
        return cls(
            device=device,
            provisioner=provisioner,
            entropy=entropy,
            label=config.WALLET_DEFAULT_LABEL if label is None else label,
            notes=config.WALLET_DEFAULT_NOTES if notes is None else notes,
            timeout=timeout if timeout > 0 else None,
            **kwargs,
        )

    def diagnostic_name(self):
        return self.device.name

    def begin_provisioning(self) -> None:
        if self._closed:
            raise Exception("provisioning session already closed")
        if self.state != ProvisioningState.IDLE:
            self.logger.info(f"provisioning already started. state={self.state.name}")
            return
        self._subscription = self.event_channel.subscribe(self.correlator.on_event)
        self._set_state(ProvisioningState.REQUESTED)
        fut = self.dispatcher.request_root_node()
        fut.add_done_callback(lambda f: self._post(self._on_request_done, f))
        if self.timeout is not None:
            self._watchdog = self._loop.create_task(self._run_watchdog())

    def add_callback(self, callback: Callable[[ProvisioningOutcome], None]) -> None:
        self.completion.add_callback(callback)

    async def wait_for_outcome(self) -> ProvisioningOutcome:
        return await asyncio.shield(self.completion.future)

    def is_finished(self) -> bool:
        """Whether the outcome is known. Consumers gate "ready" on this."""
        return self.state.is_terminal()

    def close(self) -> None:
        if self._closed:
            return
        self.logger.debug(f"closing. state={self.state.name}")
        self._closed = True
        self._release()
        self.completion.close()

    def _post(self, func, *args) -> None:
        # may be called from any thread
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(func, *args)
        except RuntimeError as e:
            # loop already closed
            self.logger.info(f"dropping {func.__name__}: {e!r}")

    def _set_state(self, state: ProvisioningState) -> None:
        self.logger.debug(f"state {self.state.name} -> {state.name}")
        self.state = state

    def _accepts_response(self) -> bool:
        # the answer can overtake the "request sent" notification
        return (not self._closed
                and self.state in (ProvisioningState.REQUESTED, ProvisioningState.AWAITING_RESPONSE))

    def _on_request_done(self, fut: concurrent.futures.Future) -> None:
        if self._closed or self.state.is_terminal():
            return
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            self._fail(ProvisioningErrorKind.DEVICE_ERROR, exc)
            return
        if self.state == ProvisioningState.REQUESTED:
            self._set_state(ProvisioningState.AWAITING_RESPONSE)

    def _on_root_node(self, root_node: BIP32Node) -> None:
        if not self._accepts_response():
            self.logger.debug(f"ignoring root node. state={self.state.name}")
            return
        self.root_node = root_node
        self._set_state(ProvisioningState.DERIVED)
        timestamp = self.timestamp if self.timestamp is not None else now_in_seconds()
        try:
            summary = self.provisioner.provision(root_node, self.entropy, timestamp, self.label, self.notes)
        except PersistenceError as e:
            self._fail(ProvisioningErrorKind.PERSISTENCE_ERROR, e)
            return
        except Exception as e:
            self.logger.exception("unexpected error while provisioning wallet")
            self._fail(ProvisioningErrorKind.PERSISTENCE_ERROR, e)
            return
        if summary is None:
            self._finish(ProvisioningOutcome(state=ProvisioningState.SKIPPED, root_node=root_node))
        else:
            self._finish(ProvisioningOutcome(state=ProvisioningState.PROVISIONED,
                                             wallet_summary=summary,
                                             root_node=root_node))

    def _fail(self, kind: ProvisioningErrorKind, exc: BaseException) -> None:
        if self._closed or self.state.is_terminal():
            self.logger.debug(f"ignoring failure {kind.name}. state={self.state.name}")
            return
        self.logger.warning(f"provisioning failed: {kind.name}: {exc!r}")
        self._finish(ProvisioningOutcome(state=ProvisioningState.FAILED,
                                         root_node=self.root_node,
                                         error_kind=kind,
                                         error=exc))

    def _finish(self, outcome: ProvisioningOutcome) -> None:
        self._set_state(outcome.state)
        self._release()
        self.logger.info(f"provisioning finished: {outcome.state.name}")
        self.completion.fire(outcome)

    def _release(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self.dispatcher.shutdown()

    async def _run_watchdog(self) -> None:
        try:
            async with timeout_after(self.timeout):
                await asyncio.shield(self.completion.future)
        except TaskTimeout:
            self._watchdog = None
            self._fail(ProvisioningErrorKind.TIMEOUT,
                       ProvisioningTimeout(f"no answer from device within {self.timeout} seconds"))
