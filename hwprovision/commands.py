#!/usr/bin/env python
#
# Electrum - lightweight Bitcoin client
# Copyright (C) 2011 thomasv@gitorious
#
# Permission is hereby granted, free of charge, to any person
# obtaining a copy of this software and associated documentation files
# (the "Software"), to deal in the Software without restriction,
# including without limitation the rights to use, copy, modify, merge,
# publish, distribute, sublicense, and/or sell copies of the Software,
# and to permit persons to whom the Software is furnished to do so,
# subject to the following conditions:
#
# The above copyright notice and this permission notice shall be
# included in all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND,
# EXPRESS OR IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF
# MERCHANTABILITY, FITNESS FOR A PARTICULAR PURPOSE AND
# NONINFRINGEMENT. IN NO EVENT SHALL THE AUTHORS OR COPYRIGHT HOLDERS
# BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER LIABILITY, WHETHER IN AN
# ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM, OUT OF OR IN
# CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

from . import constants
from .hw_wallet.plugin import HardwareWalletService
from .logging import configure_logging, get_logger
from .provisioning import ProvisioningSession, ProvisioningOutcome, ProvisioningState
from .simple_config import SimpleConfig
from .util import bfh, UserFacingException
from .version import HWPROVISION_VERSION
from .wallet_manager import WalletManager


_logger = get_logger(__name__)


def print_msg(*args):
    # Stringify args
    args = [str(item) for item in args]
    sys.stdout.write(" ".join(args) + "\n")
    sys.stdout.flush()


def print_stderr(*args):
    args = [str(item) for item in args]
    sys.stderr.write(" ".join(args) + "\n")
    sys.stderr.flush()


def json_encode(obj):
    return json.dumps(obj, sort_keys=True, indent=4)


def entropy_from_hex(text: str) -> bytes:
    try:
        return bfh(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"entropy must be hex: {text!r}") from None


def add_global_options(parser, suppress=False):
    group = parser.add_argument_group('global options')
    group.add_argument(
        "-v", dest="verbosity", default='',
        help=argparse.SUPPRESS if suppress else "Set verbosity (log levels)")
    group.add_argument(
        "-V", dest="verbosity_shortcuts", default='',
        help=argparse.SUPPRESS if suppress else "Set verbosity (shortcut-filter list)")
    group.add_argument(
        "-D", "--dir", dest="hwprovision_path",
        help=argparse.SUPPRESS if suppress else "hwprovision directory")
    for chain in constants.NETS_LIST:
        if chain.datadir_subdir() is None:
            continue
        group.add_argument(
            f"--{chain.cli_flag()}", action="store_true", dest=chain.config_key(), default=False,
            help=argparse.SUPPRESS if suppress else f"Use {chain.NET_NAME} chain")
    group.add_argument(
        "--forgetconfig", action="store_true", dest=SimpleConfig.CONFIG_FORGET_CHANGES.key(), default=False,
        help=argparse.SUPPRESS if suppress else "Forget config on exit")


def get_parser():
    parser = argparse.ArgumentParser(
        prog='hwprovision',
        epilog="Run 'hwprovision <command> -h' to see the help for a command")
    parser.add_argument("--version", action='version', version=HWPROVISION_VERSION)
    add_global_options(parser)
    subparsers = parser.add_subparsers(dest='cmd', metavar='<command>')
    subparsers.required = True
    # provision
    parser_provision = subparsers.add_parser(
        'provision',
        description="Read the root node from the first connected Trezor and create or load its wallet.",
        help="Provision a wallet from a hardware device")
    parser_provision.add_argument(
        "--entropy", dest="entropy", type=entropy_from_hex, default=None,
        help="Wallet password material, as hex. Without it, nothing is written.")
    parser_provision.add_argument("--label", dest="label", default=None, help="wallet label")
    parser_provision.add_argument("--notes", dest="notes", default=None, help="wallet notes")
    parser_provision.add_argument(
        "--timeout", dest=SimpleConfig.PROVISIONING_TIMEOUT.key(), type=int, default=None,
        help="Seconds to wait for the device")
    add_global_options(parser_provision, suppress=True)
    # list
    parser_list = subparsers.add_parser('list', description="List provisioned wallets.", help="List wallets")
    add_global_options(parser_list, suppress=True)
    return parser


async def run_provision(
        config: SimpleConfig,
        *,
        device: HardwareWalletService,
        entropy: Optional[bytes],
        label: Optional[str] = None,
        notes: Optional[str] = None,
) -> ProvisioningOutcome:
    session = ProvisioningSession.from_config(
        config, device=device, entropy=entropy, label=label, notes=notes)
    try:
        session.begin_provisioning()
        return await session.wait_for_outcome()
    finally:
        session.close()


def list_wallets(config: SimpleConfig) -> int:
    summaries = WalletManager().list_wallet_summaries(config.get_datadir_wallet_path())
    print_msg(json_encode([s.to_json() for s in summaries]))
    return 0


def report_outcome(outcome: ProvisioningOutcome) -> int:
    if outcome.state == ProvisioningState.PROVISIONED:
        print_msg(json_encode(outcome.wallet_summary.to_json()))
        return 0
    if outcome.state == ProvisioningState.SKIPPED:
        print_msg("No entropy given: nothing to provision.")
        return 0
    print_stderr(f"Provisioning failed ({outcome.error_kind.name}): {outcome.error}")
    return 1


def get_device() -> HardwareWalletService:
    from .hw_wallet.trezor import TrezorDeviceService
    device = TrezorDeviceService()
    if not device.libraries_available:
        raise UserFacingException(device.get_library_not_available_message())
    return device


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = get_parser()
    args = parser.parse_args(argv)
    config_options = {key: value for key, value in vars(args).items()
                      if value is not None and key not in ('entropy', 'label', 'notes')}
    if config_options.get('verbosity') == '':
        config_options.pop('verbosity')
    if config_options.get('verbosity_shortcuts') == '':
        config_options.pop('verbosity_shortcuts')
    for chain in constants.NETS_LIST:
        if config_options.get(chain.config_key()):
            chain.set_as_network()
    config = SimpleConfig(config_options)
    configure_logging(config)

    if args.cmd == 'list':
        return list_wallets(config)
    assert args.cmd == 'provision', args.cmd
    try:
        device = get_device()
    except UserFacingException as e:
        print_stderr(str(e))
        return 1
    try:
        outcome = asyncio.run(run_provision(
            config, device=device, entropy=args.entropy, label=args.label, notes=args.notes))
    finally:
        device.close()
    return report_outcome(outcome)
