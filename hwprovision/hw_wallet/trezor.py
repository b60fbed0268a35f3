from typing import Optional, Sequence

from .. import constants
from ..util import UserCancelled, UserFacingException
from ..logging import get_logger
from .events import DeviceEventChannel, HardwareWalletEventType, HDNodeType, PublicKey
from .plugin import HardwareWalletService, LibraryFoundButUnusable


_logger = get_logger(__name__)


try:
    import trezorlib
    import trezorlib.btc
    from trezorlib.client import get_default_client
    from trezorlib.exceptions import TrezorFailure, Cancelled
    from trezorlib.transport import TransportException

    TREZORLIB = True
except Exception as e:
    if not (isinstance(e, ModuleNotFoundError) and e.name == 'trezorlib'):
        _logger.exception('error importing trezor deps')
    TREZORLIB = False


TREZOR_PRODUCT_KEY = 'Trezor'


def public_key_from_trezor_message(msg) -> PublicKey:
    """Converts a trezorlib messages.PublicKey into our event payload."""
    node = getattr(msg, 'node', None)
    if node is None:
        return PublicKey(node=None, xpub=getattr(msg, 'xpub', None))
    return PublicKey(
        node=HDNodeType(
            public_key=node.public_key,
            chain_code=node.chain_code,
            depth=node.depth,
            fingerprint=node.fingerprint,
            child_num=node.child_num,
        ),
        xpub=getattr(msg, 'xpub', None),
    )


class TrezorDeviceService(HardwareWalletService):
    name = TREZOR_PRODUCT_KEY

    minimum_library = (0, 13, 0)
    maximum_library = (0, 14)

    def __init__(self, event_channel: Optional[DeviceEventChannel] = None, *, client=None):
        HardwareWalletService.__init__(self, event_channel)
        self.client = client
        self.libraries_available = self.check_libraries_available()

    def get_library_version(self):
        import trezorlib
        try:
            version = trezorlib.__version__
        except Exception:
            version = 'unknown'
        if TREZORLIB:
            return version
        else:
            raise LibraryFoundButUnusable(library_version=version)

    def get_client(self):
        if self.client is not None:
            return self.client
        if not self.libraries_available:
            raise UserFacingException(self.get_library_not_available_message())
        try:
            self.client = get_default_client()
        except TransportException as e:
            self.publish(HardwareWalletEventType.SHOW_DEVICE_FAILED, str(e))
            raise UserFacingException(f"No {self.name} device found") from e
        self.logger.info(f"connected to {self.name}")
        self.publish(HardwareWalletEventType.SHOW_DEVICE_READY)
        return self.client

    def request_public_node(self, path: Sequence[int]) -> None:
        client = self.get_client()
        coin_name = 'Testnet' if constants.net.TESTNET else 'Bitcoin'
        self.logger.info(f"requesting public node for {list(path)}")
        try:
            msg = trezorlib.btc.get_public_node(client, list(path), coin_name=coin_name)
        except Cancelled as e:
            self.publish(HardwareWalletEventType.SHOW_OPERATION_FAILED, str(e))
            raise UserCancelled() from e
        except TrezorFailure as e:
            self.publish(HardwareWalletEventType.SHOW_OPERATION_FAILED, str(e))
            raise UserFacingException(str(e)) from e
        self.publish(HardwareWalletEventType.PUBLIC_KEY, public_key_from_trezor_message(msg))

    def close(self):
        if self.client is not None:
            try:
                self.client.close()
            except Exception as e:
                self.logger.info(f"error closing client: {e!r}")
            self.client = None
