"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional, Tuple

from nfsvolume.constants import VERSION

COMMANDS = ("ls", "stat", "mkdir", "create", "rm", "rmdir", "rmtree")


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    destination: Tuple[str, str]
    command: str
    path: str

    mode: Optional[int]

    port: Optional[int]
    mount_port: Optional[int]

    uid: Optional[int]
    gid: Optional[int]
    timeout: Optional[float]

    config: str

    debug: bool

    @property
    def host(self) -> str:
        return self.destination[0]

    @property
    def export(self) -> str:
        return self.destination[1]

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Manage files and directories on an NFS version 3 export.",
            usage="nfsvolume [option...] host:/export command [path]",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION}",
            help="show the program version",
        )

        # Primary arguments
        parser.add_argument(
            "destination",
            type=cls._parse_destination,
            help="server and exported directory (host:/export)",
        )
        parser.add_argument("command", choices=COMMANDS, help="operation to perform")
        parser.add_argument(
            "path", type=str, nargs="?", default="/", help="path within the export"
        )

        # Permissions of created files and directories
        parser.add_argument(
            "--mode",
            type=cls._parse_mode,
            help="octal permissions for mkdir (default 755) and create (default 644)",
        )

        # Ports, default to a portmapper lookup
        parser.add_argument("--port", type=int, help="port of the NFS service")
        parser.add_argument("--mount-port", type=int, help="port of the MOUNT service")

        # Credentials, default to the config file
        parser.add_argument("--uid", type=int, help="user id to authenticate as")
        parser.add_argument("--gid", type=int, help="group id to authenticate as")

        # Configure network timeout
        parser.add_argument(
            "--timeout",
            type=cls._parse_timeout,
            help="timeout for network communications in seconds",
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.nfsvolume/config)",
            default="~/.nfsvolume/config",
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        return parser

    @staticmethod
    def _parse_destination(arg: str) -> Tuple[str, str]:
        host, sep, export = arg.rpartition(":")

        if not sep or not host or not export.startswith("/"):
            raise argparse.ArgumentTypeError("expected host:/export")

        return host, export

    @staticmethod
    def _parse_mode(arg: str) -> int:
        try:
            val = int(arg, 8)
            assert 0 <= val <= 0o7777
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected octal permissions")

    @staticmethod
    def _parse_timeout(arg: str) -> float:
        try:
            val = float(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
