"""Command line client: extract entitlements and talk to the server."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from os import PathLike
from pathlib import Path
from typing import Sequence

import httpx

from appledb.client import ServerController, ServerRequestError
from appledb.config import ServerConfig, read_configuration
from appledb.entitlements import (
    EntitlementValueError,
    collect_entitlements,
    parse_entitlements_file,
)
from appledb.macho import MachOError
from appledb.models import IPSWEntitlements
from appledb.platform import Platform
from appledb.system_version import (
    PlatformDetectionError,
    read_platform_version_from_plist,
)

log = logging.getLogger(__name__)

_PLATFORM_CHOICES = {
    "ios": Platform.IOS,
    "mac-os": Platform.MACOS,
    "watch-os": Platform.WATCHOS,
    "tv-os": Platform.TVOS,
}

_ERRORS = (
    OSError,
    ValueError,
    LookupError,
    httpx.HTTPError,
    ServerRequestError,
    MachOError,
    EntitlementValueError,
    PlatformDetectionError,
)


def build_parser() -> argparse.ArgumentParser:
    """The argument parser of the command line client."""
    parser = argparse.ArgumentParser(prog="appledb")
    parser.add_argument(
        "-c",
        "--config",
        dest="config_path",
        default="./config.yaml",
        help="path to configuration file",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    ent = commands.add_parser("ent", help="entitlement related subcommands")
    ent_commands = ent.add_subparsers(dest="ent_command", required=True)
    parse = ent_commands.add_parser(
        "parse", help="parse and send entitlements of all Mach-O executables in a directory"
    )
    parse.add_argument(
        "-m",
        "--mount-point",
        dest="mount_point",
        type=Path,
        required=True,
        help="local mount point where the IPSW is already mounted",
    )
    parse.add_argument(
        "platform",
        nargs="?",
        choices=list(_PLATFORM_CHOICES),
        default=None,
        help="platform from which this IPSW mount originates",
    )
    parse.add_argument(
        "-v", "--version", dest="version", default=None, help="version of this IPSW"
    )
    dump = ent_commands.add_parser(
        "dump-ent", help="dump entitlements from a Mach-O executable"
    )
    dump.add_argument(
        "-b",
        "--bin",
        dest="executable_path",
        type=Path,
        required=True,
        help="Mach-O executable path",
    )

    os_parser = commands.add_parser(
        "operating-system", help="operating system related subcommands"
    )
    os_commands = os_parser.add_subparsers(dest="os_command", required=True)
    os_commands.add_parser("list", help="list operating systems known to the server")
    return parser


def dump_executable_entitlements(executable_path: str | PathLike[str]) -> str:
    """Print the entitlements of one executable as JSON and return the text."""
    entitlements = parse_entitlements_file(executable_path)
    if entitlements is None:
        raise ValueError(
            "entitlement does not have any entitlements or is not an executable"
        )
    text = json.dumps(
        [e.to_dict() for e in sorted(entitlements, key=lambda e: (e.key, e.value))],
        indent=2,
        ensure_ascii=False,
    )
    print(text)
    return text


def send_ipsw_entitlements(
    configuration: ServerConfig,
    mount_point: str | PathLike[str],
    platform: Platform | None,
    version: str | None,
) -> str:
    """Collect the entitlements under a mount point and upload them to the server."""
    if platform is None or version is None:
        platform, version = read_platform_version_from_plist(mount_point)
    log.info("IPSW has platform %s and version %s", platform, version)

    ipsw_entitlements = IPSWEntitlements(platform, version)
    collect_entitlements(mount_point, ipsw_entitlements)

    log.info("Sending entitlements to server...")
    with ServerController(configuration.listen_mode) as server:
        response = server.post_executable_entitlements(ipsw_entitlements)
    log.info("Received response: %s", response)
    return response


def list_operating_systems(configuration: ServerConfig) -> str:
    """Print the server's operating systems as JSON and return the text."""
    with ServerController(configuration.listen_mode) as server:
        systems = server.get_operating_systems()
    text = json.dumps([s.to_dict() for s in systems], indent=2, ensure_ascii=False)
    print(text)
    return text


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line client."""
    args = build_parser().parse_args(argv)
    try:
        configuration = read_configuration(args.config_path)
        logging.basicConfig()
        if args.command == "ent":
            if args.ent_command == "parse":
                send_ipsw_entitlements(
                    configuration,
                    args.mount_point,
                    _PLATFORM_CHOICES.get(args.platform),
                    args.version,
                )
            else:
                dump_executable_entitlements(args.executable_path)
        else:
            list_operating_systems(configuration)
    except _ERRORS as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0