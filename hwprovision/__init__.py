from .version import HWPROVISION_VERSION
from .simple_config import SimpleConfig
from .storage import WalletStorage
from .bip32 import BIP32Node, derive_root_node, ROOT_NODE_DERIVATION
from .wallet_manager import WalletManager, WalletProvisioner, WalletSummary
from .provisioning import (ProvisioningSession, ProvisioningState, ProvisioningErrorKind,
                           ProvisioningOutcome)
from .hw_wallet import DeviceEventChannel, HardwareWalletEvent, HardwareWalletEventType
from .logging import get_logger


__version__ = HWPROVISION_VERSION

_logger = get_logger(__name__)


# Ensure that asserts are enabled. For sanity and paranoia, we require this.
# Code *should not rely* on asserts being enabled. In particular, safety and security checks should
# always explicitly raise exceptions. However, this rule is mistakenly broken occasionally...
try:
    assert False  # noqa: B011
except AssertionError:
    pass
else:
    raise ImportError("Running with asserts disabled. Refusing to continue. Exiting...")
