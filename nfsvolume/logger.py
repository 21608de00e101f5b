"""Module containing the package logger and helpers for compact log messages."""

import logging
from typing import Any


def _get_logger(name: str = "nfsvolume") -> logging.Logger:
    handler = logging.StreamHandler()

    # Calls run on the callers' threads, the cache janitor on a thread of its own
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - [%(threadName)s] %(message)s")
    )

    logger = logging.getLogger(name)
    logger.addHandler(handler)

    return logger


def summarize(obj: Any, max_length: int = 255) -> str:
    """Return a stringified representation of the object up to the given length."""
    stringified_obj = str(obj)

    if len(stringified_obj) <= max_length:
        return stringified_obj
    else:
        return stringified_obj[: max_length - 3] + "..."


def summarize_bytes(data: bytes, max_length: int = 64) -> str:
    """Return the hex representation of binary data up to the given length."""
    return summarize(f"0x{data.hex()}" if data else "-", max_length)


# Default logger
log = _get_logger()
