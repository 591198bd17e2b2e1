"""Shared constants, errors and helpers used across the relay."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import string
import sys
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

SLOTS_PER_EPOCH = 32
DURATION_PER_SLOT = timedelta(seconds=12)
DURATION_PER_EPOCH = DURATION_PER_SLOT * SLOTS_PER_EPOCH

DOMAIN_TYPE_BEACON_PROPOSER = bytes.fromhex("00000000")
DOMAIN_TYPE_APP_BUILDER = bytes.fromhex("00000001")

TRACE = 5
LOGGER_NAME = "boostrelay"


class RelayError(Exception):
    """Base class for relay errors."""

    message = "relay error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class ServerAlreadyRunningError(RelayError):
    message = "server already running"


class InvalidSlotError(RelayError, ValueError):
    message = "invalid slot"


class InvalidHashError(RelayError, ValueError):
    message = "invalid hash"


class InvalidPubkeyError(RelayError, ValueError):
    message = "invalid pubkey"


class InvalidSignatureError(RelayError, ValueError):
    message = "invalid signature"


class InvalidForkVersionError(RelayError, ValueError):
    message = "invalid fork version"


class HTTPErrorResponse(RelayError):
    """A server answered with a status code above 299."""

    message = "got an HTTP error response"

    def __init__(self, status_code: int, body: str, response: Any = None) -> None:
        super().__init__(f"{self.message}: {status_code} / {body}")
        self.status_code = status_code
        self.body = body
        self.response = response


@dataclass(frozen=True)
class HTTPServerTimeouts:
    """Timeouts for the HTTP server; a zero duration means none."""

    read: timedelta = timedelta(0)
    read_header: timedelta = timedelta(0)
    write: timedelta = timedelta(0)
    idle: timedelta = timedelta(0)


def decode_hex(text: str, *, allow_empty: bool = False) -> bytes:
    """Decode a 0x-prefixed hex string, strictly."""
    if text == "":
        if allow_empty:
            return b""
        raise ValueError("empty hex string")
    if not text.startswith(("0x", "0X")):
        raise ValueError(f"hex string without 0x prefix: {text!r}")
    digits = text[2:]
    if len(digits) % 2:
        raise ValueError(f"hex string of odd length: {text!r}")
    if any(c not in string.hexdigits for c in digits):
        raise ValueError(f"invalid hex string: {text!r}")
    return bytes.fromhex(digits)


def _hex_to_hash(text: str) -> bytes:
    """Leniently turn hex into 32 bytes, keeping the last 32 and left-padding."""
    if text.startswith(("0x", "0X")):
        text = text[2:]
    if len(text) % 2:
        text = "0" + text
    decoded = bytearray()
    for start in range(0, len(text), 2):
        pair = text[start:start + 2]
        if any(c not in string.hexdigits for c in pair):
            break
        decoded.append(int(pair, 16))
    return bytes(decoded[-32:]).rjust(32, b"\0")


def compute_domain(domain_type: bytes, fork_version_hex: str, genesis_validators_root_hex: str) -> bytes:
    """Compute the 32-byte signing domain."""
    domain_type = bytes(domain_type)
    if len(domain_type) != 4:
        raise ValueError("domain type must be 4 bytes")
    root = _hex_to_hash(genesis_validators_root_hex)
    try:
        fork_version = decode_hex(fork_version_hex)
    except ValueError as exc:
        raise InvalidForkVersionError() from exc
    if len(fork_version) != 4:
        raise InvalidForkVersionError()
    fork_data_root = hashlib.sha256(fork_version.ljust(32, b"\0") + root).digest()
    return domain_type + fork_data_root[:28]


def make_request(session: Any, method: str, url: str, payload: Any = None) -> Any:
    """Send a JSON request; raise HTTPErrorResponse on a status above 299."""
    data = None if payload is None else json.dumps(payload)
    sender = session if session is not None else requests
    response = sender.request(method, url, data=data, headers={"Content-Type": "application/json"})
    if response.status_code > 299:
        raise HTTPErrorResponse(response.status_code, response.text, response)
    return response


def get_env(key: str, default_value: str) -> str:
    return os.environ.get(key, default_value)


def get_slice_env(key: str, default_value: list[str]) -> list[str]:
    value = os.environ.get(key)
    if value is None:
        return default_value
    return value.split(",")


def get_ip_x_forwarded_for(headers: Mapping[str, str], remote_addr: str) -> str:
    """Return the first X-Forwarded-For address, else the remote address."""
    forwarded = next((v for k, v in headers.items() if k.lower() == "x-forwarded-for"), "")
    if forwarded:
        return forwarded.split(",")[0]
    return remote_addr


def get_mev_boost_version_from_user_agent(ua: str) -> str:
    """Return the version from 'mev-boost/<version> ...', or '-' if absent."""
    first = ua.split(" ")[0]
    if first.startswith("mev-boost"):
        parts = first.split("/")
        if len(parts) == 2:
            return parts[1]
    return "-"


_LEVELS = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

_LEVEL_NAMES = {
    logging.CRITICAL: "fatal",
    logging.ERROR: "error",
    logging.WARNING: "warning",
    logging.INFO: "info",
    logging.DEBUG: "debug",
    TRACE: "trace",
}


def _level_name(levelno: int) -> str:
    return _LEVEL_NAMES.get(levelno, logging.getLevelName(levelno).lower())


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).astimezone().isoformat()


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "level": _level_name(record.levelno),
            "msg": record.getMessage(),
            "time": _timestamp(record),
        }
        entry.update(getattr(record, "fields", {}) or {})
        if record.exc_info:
            entry["error"] = str(record.exc_info[1])
        return json.dumps(entry, default=str)


class _TextFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [
            f'time="{_timestamp(record)}"',
            f"level={_level_name(record.levelno)}",
            f"msg={json.dumps(record.getMessage())}",
        ]
        for key, value in (getattr(record, "fields", {}) or {}).items():
            parts.append(f"{key}={value}")
        if record.exc_info:
            parts.append(f"error={json.dumps(str(record.exc_info[1]))}")
        return " ".join(parts)


def log_setup(json_format: bool = False, log_level: str = "info") -> logging.Logger:
    """Configure and return the relay logger writing to stdout."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JSONFormatter() if json_format else _TextFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    level = logging.INFO
    if log_level:
        try:
            level = _LEVELS[log_level.lower()]
        except KeyError:
            raise ValueError(f"Invalid loglevel: {log_level}") from None
    logger.setLevel(level)
    return logger