"""
Module implementing the command-line interface of nfsvolume.

Every invocation mounts the export, performs a single operation on a path within it,
prints the result to stdout and unmounts again.
"""

import logging
import os
import signal
import stat
import sys
from typing import List, NoReturn, Optional

from nfsvolume.config import Config
import nfsvolume.constants as constants
from nfsvolume.logger import log
import nfsvolume.rpc as rpc
from nfsvolume.structures import Attributes, DirEntry
from nfsvolume.target import Target
from .args import Arguments


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Run a single file system operation with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Configure debug logging.
    if args.debug:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.ERROR)

    config = Config.load(os.path.expanduser(args.config))

    try:
        exit_code = run(args, config)
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to run command: {e}")
        exit_code = constants.ERROR_CODE

    sys.exit(exit_code)


def run(args: Arguments, config: Config) -> int:
    """Mount the export, run the command and return the exit code."""
    auth = rpc.AuthUnix(
        machine_name=config.rpc.machine_name,
        uid=config.rpc.uid if args.uid is None else args.uid,
        gid=config.rpc.gid if args.gid is None else args.gid,
    )

    with Target.dial(
        args.host,
        args.export,
        auth,
        port=args.port,
        mount_port=args.mount_port,
        timeout=config.rpc.timeout if args.timeout is None else args.timeout,
        cache=config.cache,
    ) as target:
        run_command(target, args)

    return 0


def run_command(target: Target, args: Arguments) -> None:
    """Perform the operation named by the command on the target."""
    if args.command == "ls":
        for entry in target.readdirplus(args.path):
            print(_format_entry(entry))
    elif args.command == "stat":
        attr, fh = target.lookup(args.path)
        print(f"handle: {fh}")
        if attr is not None:
            print(_format_attributes(attr))
    elif args.command == "mkdir":
        mode = 0o755 if args.mode is None else args.mode
        print(target.mkdir(args.path, mode))
    elif args.command == "create":
        mode = 0o644 if args.mode is None else args.mode
        print(target.create(args.path, mode))
    elif args.command == "rm":
        target.remove(args.path)
    elif args.command == "rmdir":
        target.rmdir(args.path)
    elif args.command == "rmtree":
        target.remove_all(args.path)
    else:
        raise ValueError(f"unknown command {args.command}")


def _format_entry(entry: DirEntry) -> str:
    if entry.attr is None:
        return f"{'?' * 10} {'?':>12} {entry.name}"

    return f"{stat.filemode(entry.attr.st_mode)} {entry.attr.size:>12} {entry.name}"


def _format_attributes(attr: Attributes) -> str:
    return "\n".join(
        [
            f"mode: {stat.filemode(attr.st_mode)} ({attr.mode:04o})",
            f"size: {attr.size}",
            f"links: {attr.nlink}",
            f"owner: {attr.uid}:{attr.gid}",
            f"fileid: {attr.fileid}",
            f"mtime_ns: {attr.mtime_ns}",
        ]
    )


if __name__ == "__main__":
    main()
