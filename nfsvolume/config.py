"""Module for configuration variables with defaults that are overridable by a file."""

from __future__ import annotations

from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
import os
import socket

import nfsvolume.constants as constants
from nfsvolume.logger import log


@dataclass
class CacheConfig:
    """Configuration variables related to the directory lookup cache."""

    # Time in seconds that a directory lookup stays valid
    entry_timeout: float = constants.DEFAULT_ENTRY_TIMEOUT

    # Period in seconds of the expired entry cleanup and entries inspected per pass
    sweep_interval: float = constants.DEFAULT_SWEEP_INTERVAL
    sweep_limit: int = constants.DEFAULT_SWEEP_LIMIT

    @staticmethod
    def load(section: SectionProxy) -> CacheConfig:
        """Load overridden variables from a section within a config file."""
        config = CacheConfig()

        config.entry_timeout = section.getfloat(
            "entry_timeout", fallback=config.entry_timeout
        )
        config.sweep_interval = section.getfloat(
            "sweep_interval", fallback=config.sweep_interval
        )
        config.sweep_limit = section.getint("sweep_limit", fallback=config.sweep_limit)

        return config


@dataclass
class RPCConfig:
    """Configuration variables related to remote calls and credentials."""

    timeout: float = 30.0

    uid: int = field(default_factory=os.getuid)
    gid: int = field(default_factory=os.getgid)
    machine_name: str = field(default_factory=socket.gethostname)

    @staticmethod
    def load(section: SectionProxy) -> RPCConfig:
        """Load overridden variables from a section within a config file."""
        config = RPCConfig()

        config.timeout = section.getfloat("timeout", fallback=config.timeout)

        config.uid = section.getint("uid", fallback=config.uid)
        config.gid = section.getint("gid", fallback=config.gid)
        config.machine_name = section.get("machine_name", fallback=config.machine_name)

        return config


@dataclass
class Config:
    """Configuration variables."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    rpc: RPCConfig = field(default_factory=RPCConfig)

    @staticmethod
    def load(filename: str) -> Config:
        """Load overridden configuration variables from a config file."""
        parser = ConfigParser()

        config = Config()

        try:
            with open(filename, "r") as f:
                parser.read_string(f.read(), filename)

            if "cache" in parser:
                config.cache = CacheConfig.load(parser["cache"])

            if "rpc" in parser:
                config.rpc = RPCConfig.load(parser["rpc"])
        except FileNotFoundError:
            log.info(f"no config file at {filename}")
        except Exception as e:
            # An unreadable config file is not considered a fatal error since we can
            # fall back to defaults.
            log.error(f"failed to read config file {filename}: {e}")
        else:
            log.info(f"loaded config: {config}")

        return config
