from .events import (HardwareWalletEvent, HardwareWalletEventType, HDNodeType, PublicKey,
                     DeviceEventChannel, Subscription)
from .plugin import HardwareWalletService, LibraryFoundButUnusable
