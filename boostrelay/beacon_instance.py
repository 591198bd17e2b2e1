"""Client for the HTTP API of a single beacon node."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import requests

from .common import LOGGER_NAME, RelayError

_T = TypeVar("_T")
_PARSE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


class _FieldLogger(logging.LoggerAdapter):
    """Logger adapter that attaches structured fields to every record."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = kwargs.setdefault("extra", {})
        extra["fields"] = {**self.extra, **extra.get("fields", {})}
        return msg, kwargs

    def with_fields(self, **fields: Any) -> "_FieldLogger":
        return _FieldLogger(self.logger, {**self.extra, **fields})


class BeaconHTTPError(RelayError):
    """A request to a beacon node failed; status_code is 0 if there was no response."""

    message = "beacon node request failed"

    def __init__(self, message: str | None = None, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class HeadEventData:
    """Data of a 'head' event from the beacon node event stream."""

    slot: int = 0
    block: str = ""
    state: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HeadEventData":
        return cls(
            slot=int(data.get("slot", 0)),
            block=str(data.get("block", "")),
            state=str(data.get("state", "")),
        )


@dataclass(frozen=True)
class ValidatorResponseEntry:
    """A validator as reported by the beacon node."""

    index: int = 0
    balance: str = ""
    status: str = ""
    pubkey: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ValidatorResponseEntry":
        validator = data.get("validator") or {}
        return cls(
            index=int(data.get("index", 0)),
            balance=str(data.get("balance", "")),
            status=str(data.get("status", "")),
            pubkey=str(validator.get("pubkey", "")),
        )


@dataclass(frozen=True)
class SyncStatusPayloadData:
    head_slot: int = 0
    is_syncing: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncStatusPayloadData":
        return cls(
            head_slot=int(data.get("head_slot", 0)),
            is_syncing=bool(data.get("is_syncing", False)),
        )


@dataclass(frozen=True)
class ProposerDutiesResponseData:
    pubkey: str = ""
    slot: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProposerDutiesResponseData":
        return cls(pubkey=str(data.get("pubkey", "")), slot=int(data.get("slot", 0)))


@dataclass(frozen=True)
class ProposerDutiesResponse:
    data: list[ProposerDutiesResponseData] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProposerDutiesResponse":
        return cls(data=[ProposerDutiesResponseData.from_dict(d) for d in data.get("data") or []])


@dataclass(frozen=True)
class GetHeaderResponse:
    """Root and message fields of a beacon block header."""

    root: str = ""
    slot: int = 0
    proposer_index: int = 0
    parent_root: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GetHeaderResponse":
        inner = data.get("data") or {}
        message = (inner.get("header") or {}).get("message") or {}
        return cls(
            root=str(inner.get("root", "")),
            slot=int(message.get("slot", 0)),
            proposer_index=int(message.get("proposer_index", 0)),
            parent_root=str(message.get("parent_root", "")),
        )


@dataclass(frozen=True)
class GetBlockResponse:
    """Slot and execution payload of a beacon block."""

    slot: int = 0
    execution_payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GetBlockResponse":
        message = (data.get("data") or {}).get("message") or {}
        body = message.get("body") or {}
        return cls(
            slot=int(message.get("slot", 0)),
            execution_payload=dict(body.get("execution_payload") or {}),
        )


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"object of type {type(value).__name__} is not JSON serializable")


def fetch_beacon(method: str, url: str, payload: Any = None) -> tuple[int, bytes]:
    """Send a request to a beacon node and return the status code and body.

    Raises BeaconHTTPError for transport failures and status codes of 300 or more.
    """
    headers = {"accept": "application/json"}
    data = None
    if payload is not None:
        try:
            data = json.dumps(payload, default=_json_default)
        except (TypeError, ValueError) as exc:
            raise RelayError(f"could not marshal request: {exc}") from exc
        headers["Content-Type"] = "application/json"

    try:
        response = requests.request(method, url, data=data, headers=headers)
    except requests.RequestException as exc:
        raise BeaconHTTPError(f"client refused for {url}: {exc}") from exc

    body = response.content
    if response.status_code >= 300:
        text = body.decode("utf-8", "replace")
        try:
            error = json.loads(body)
            message = error.get("message", "")
            if not isinstance(message, str):
                raise TypeError("message is not a string")
        except _PARSE_ERRORS as exc:
            raise BeaconHTTPError(
                f"could not unmarshal error response from beacon node for {url} from {text}: {exc}",
                response.status_code,
            ) from exc
        raise BeaconHTTPError(f"got an HTTP error response: {message}", response.status_code)
    return response.status_code, body


def _fetch_parsed(url: str, parse: Callable[[Any], _T]) -> _T:
    code, body = fetch_beacon("GET", url)
    try:
        return parse(json.loads(body))
    except _PARSE_ERRORS as exc:
        text = body.decode("utf-8", "replace")
        raise BeaconHTTPError(f"could not unmarshal response for {url} from {text}: {exc}", code) from exc


def _iter_sse_data(lines: Iterable[str | bytes]) -> Iterator[str]:
    """Yield the data of each complete server-sent event."""
    buffer: list[str] = []
    for raw in lines:
        line = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        if line == "":
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            buffer.append(value)


class ProdBeaconInstance:
    """A beacon node reached over its HTTP API."""

    def __init__(self, beacon_uri: str, log: logging.Logger | logging.LoggerAdapter | None = None) -> None:
        self.uri = beacon_uri
        self.log = _FieldLogger(
            log if log is not None else logging.getLogger(LOGGER_NAME),
            {"component": "beaconInstance", "beaconURI": beacon_uri},
        )

    def subscribe_to_head_events(self, slot_queue: Any) -> None:
        """Put every head event into the queue; reconnects forever."""
        events_url = f"{self.uri}/eth/v1/events?topics=head"
        log = self.log.with_fields(url=events_url)
        log.info("subscribing to head events")
        while True:
            try:
                self._stream_head_events(events_url, slot_queue, log)
            except (requests.RequestException, RelayError) as exc:
                log.error("failed to subscribe to head events: %s", exc)
                time.sleep(1)
            self.log.warning("beaconclient SubscribeRaw ended, reconnecting")

    def _stream_head_events(self, url: str, slot_queue: Any, log: _FieldLogger) -> None:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        with requests.get(url, stream=True, headers=headers) as response:
            if response.status_code != 200:
                raise BeaconHTTPError(f"could not connect to stream: {response.reason}", response.status_code)
            for data in _iter_sse_data(response.iter_lines()):
                try:
                    event = HeadEventData.from_dict(json.loads(data))
                except _PARSE_ERRORS as exc:
                    log.error("could not unmarshal head event: %s", exc)
                    continue
                slot_queue.put(event)

    def fetch_validators(self, head_slot: int) -> dict[str, ValidatorResponseEntry]:
        """Active and pending validators, keyed by lower-case pubkey hex."""
        url = f"{self.uri}/eth/v1/beacon/states/{head_slot}/validators?status=active,pending"
        entries = _fetch_parsed(
            url, lambda d: [ValidatorResponseEntry.from_dict(v) for v in d.get("data") or []]
        )
        return {entry.pubkey.lower(): entry for entry in entries}

    def sync_status(self) -> SyncStatusPayloadData:
        url = f"{self.uri}/eth/v1/node/syncing"
        return _fetch_parsed(url, lambda d: SyncStatusPayloadData.from_dict(d.get("data") or {}))

    def current_slot(self) -> int:
        return self.sync_status().head_slot

    def get_proposer_duties(self, epoch: int) -> ProposerDutiesResponse:
        url = f"{self.uri}/eth/v1/validator/duties/proposer/{epoch}"
        return _fetch_parsed(url, ProposerDutiesResponse.from_dict)

    def get_header(self) -> GetHeaderResponse:
        return _fetch_parsed(f"{self.uri}/eth/v1/beacon/headers/head", GetHeaderResponse.from_dict)

    def get_header_for_slot(self, slot: int) -> GetHeaderResponse:
        return _fetch_parsed(f"{self.uri}/eth/v1/beacon/headers/{slot}", GetHeaderResponse.from_dict)

    def get_block(self) -> GetBlockResponse:
        return _fetch_parsed(f"{self.uri}/eth/v2/beacon/blocks/head", GetBlockResponse.from_dict)

    def get_block_for_slot(self, slot: int) -> GetBlockResponse:
        return _fetch_parsed(f"{self.uri}/eth/v2/beacon/blocks/{slot}", GetBlockResponse.from_dict)

    def publish_block(self, block: Any) -> int:
        """Publish a signed beacon block and return the status code."""
        code, _ = fetch_beacon("POST", f"{self.uri}/eth/v1/beacon/blocks", block)
        return code