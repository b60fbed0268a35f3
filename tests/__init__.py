import asyncio
import os
import unittest
import threading
import tempfile
import shutil
import inspect
from typing import Sequence, List, Optional

import hwprovision
import hwprovision.logging
from hwprovision import constants
from hwprovision.logging import Logger
from hwprovision.hw_wallet.events import HardwareWalletEvent, HardwareWalletEventType, HDNodeType, PublicKey
from hwprovision.hw_wallet.plugin import HardwareWalletService


hwprovision.logging._configure_stderr_logging(verbosity="*")


class HwProvisionTestCase(unittest.IsolatedAsyncioTestCase, Logger):
    """Base class for our unit tests."""

    TESTNET = False
    # maxDiff = None  # for debugging

    # some unit tests are modifying globals... so we run sequentially:
    _test_lock = threading.Lock()

    def __init__(self, *args, **kwargs):
        Logger.__init__(self)
        unittest.IsolatedAsyncioTestCase.__init__(self, *args, **kwargs)

    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        if cls.TESTNET:
            constants.BitcoinTestnet.set_as_network()

    @classmethod
    def tearDownClass(cls):
        super().tearDownClass()
        if cls.TESTNET:
            constants.BitcoinMainnet.set_as_network()

    def setUp(self):
        have_lock = self._test_lock.acquire(timeout=0.1)
        if not have_lock:
            # This can happen when trying to run the tests in parallel,
            # or if a prior test raised  during `setUp` or `asyncSetUp` and never released the lock.
            raise Exception("timed out waiting for test_lock")
        super().setUp()
        self.hwprovision_path = tempfile.mkdtemp(prefix="hwprovision-unittest-base-")

    async def asyncSetUp(self):
        await super().asyncSetUp()
        loop = asyncio.get_running_loop()
        # IsolatedAsyncioTestCase creates event loops with debug=True, which makes the tests take ~4x time
        if not (os.environ.get("PYTHONASYNCIODEBUG") or os.environ.get("PYTHONDEVMODE")):
            loop.set_debug(False)

    def tearDown(self):
        shutil.rmtree(self.hwprovision_path)
        super().tearDown()
        self._test_lock.release()


def as_testnet(func):
    """Function decorator to run a single unit test in testnet mode.

    NOTE: this is inherently sequential; tests running in parallel would break things
    """
    old_net = constants.net
    if inspect.iscoroutinefunction(func):
        async def run_test(*args, **kwargs):
            try:
                constants.BitcoinTestnet.set_as_network()
                return await func(*args, **kwargs)
            finally:
                constants.net = old_net
    else:
        def run_test(*args, **kwargs):
            try:
                constants.BitcoinTestnet.set_as_network()
                return func(*args, **kwargs)
            finally:
                constants.net = old_net
    return run_test


# compressed secp256k1 generator point
GENERATOR_PUBKEY = bytes.fromhex('0279be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798')
ZERO_CHAIN_CODE = bytes(32)


def public_key_event(public_key: Optional[bytes] = GENERATOR_PUBKEY,
                     chain_code: Optional[bytes] = ZERO_CHAIN_CODE) -> HardwareWalletEvent:
    node = HDNodeType(public_key=public_key, chain_code=chain_code, depth=3, fingerprint=0, child_num=0x80000000)
    return HardwareWalletEvent(HardwareWalletEventType.PUBLIC_KEY, PublicKey(node=node))


class FakeDeviceService(HardwareWalletService):
    """Answers requests by publishing canned events from the calling (worker) thread."""

    name = 'fake'

    def __init__(self, *, reply: Sequence[HardwareWalletEvent] = (), fail_with: Exception = None,
                 before_reply: threading.Event = None):
        HardwareWalletService.__init__(self)
        self.reply = list(reply)
        self.fail_with = fail_with
        self.before_reply = before_reply
        self.requests = []  # type: List[tuple]
        self.request_thread_names = []  # type: List[str]
        self.closed = False

    def request_public_node(self, path):
        self.requests.append(tuple(path))
        self.request_thread_names.append(threading.current_thread().name)
        if self.before_reply is not None:
            self.before_reply.wait(timeout=5)
        if self.fail_with is not None:
            raise self.fail_with
        for event in self.reply:
            self.event_channel.publish(event)

    def close(self):
        self.closed = True
