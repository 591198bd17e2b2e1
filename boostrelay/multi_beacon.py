"""A client that spreads requests over several beacon nodes."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Protocol

from .beacon_instance import (
    ProposerDutiesResponse,
    SyncStatusPayloadData,
    ValidatorResponseEntry,
)
from .common import LOGGER_NAME, RelayError


class BeaconNodeSyncingError(RelayError):
    message = "beacon node is syncing or unavailable"


class BeaconNodesUnavailableError(RelayError):
    message = "all beacon nodes responded with error"


class BeaconInstance(Protocol):
    """What the multi-node client needs from a single beacon node."""

    uri: str

    def sync_status(self) -> SyncStatusPayloadData: ...

    def current_slot(self) -> int: ...

    def subscribe_to_head_events(self, slot_queue: Any) -> None: ...

    def fetch_validators(self, head_slot: int) -> dict[str, ValidatorResponseEntry]: ...

    def get_proposer_duties(self, epoch: int) -> ProposerDutiesResponse: ...

    def publish_block(self, block: Any) -> int: ...


class _FieldLogger(logging.LoggerAdapter):
    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = kwargs.setdefault("extra", {})
        extra["fields"] = {**self.extra, **extra.get("fields", {})}
        return msg, kwargs

    def with_fields(self, **fields: Any) -> "_FieldLogger":
        return _FieldLogger(self.logger, {**self.extra, **fields})


def _lookup(value: Any, key: str) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        return value.get(key)
    return getattr(value, key, None)


def _block_fields(block: Any) -> dict[str, Any]:
    message = _lookup(block, "message")
    payload = _lookup(_lookup(message, "body"), "execution_payload")
    return {"slot": _lookup(message, "slot"), "blockHash": _lookup(payload, "block_hash")}


class MultiBeaconClient:
    """Manages several beacon nodes, preferring the last one that answered."""

    def __init__(self, beacon_instances: list[BeaconInstance], log: Any = None) -> None:
        self._instances = list(beacon_instances)
        self._best_index = 0
        self._lock = threading.Lock()
        self.log = _FieldLogger(
            log if log is not None else logging.getLogger(LOGGER_NAME), {"component": "beaconClient"}
        )
        self.allow_syncing_beacon_node = bool(os.environ.get("ALLOW_SYNCING_BEACON_NODE"))
        if self.allow_syncing_beacon_node:
            self.log.warning("env: ALLOW_SYNCING_BEACON_NODE: allow syncing beacon node")

    def best_sync_status(self) -> SyncStatusPayloadData:
        """The first synced node's status, asking all nodes at once."""
        best: SyncStatusPayloadData | None = None
        found_synced = False

        with ThreadPoolExecutor(max_workers=max(1, len(self._instances))) as pool:
            futures = {}
            for instance in self._instances:
                self.log.with_fields(uri=instance.uri).debug("getting sync status")
                futures[pool.submit(instance.sync_status)] = instance
            for future in as_completed(futures):
                log = self.log.with_fields(uri=futures[future].uri)
                try:
                    status = future.result()
                except Exception as exc:  # any node failure is just logged
                    log.error("failed to get sync status: %s", exc)
                    continue
                if found_synced:
                    continue
                if best is None:
                    best = status
                if not status.is_syncing:
                    best = status
                    found_synced = True

        if not found_synced and not self.allow_syncing_beacon_node:
            raise BeaconNodeSyncingError()
        if best is None:
            raise BeaconNodesUnavailableError()
        return best

    def subscribe_to_head_events(self, slot_queue: Any) -> None:
        """Subscribe to every node; each head event may arrive once per node."""
        for instance in self._instances:
            threading.Thread(
                target=instance.subscribe_to_head_events, args=(slot_queue,), daemon=True
            ).start()

    def _instances_by_last_response(self) -> list[BeaconInstance]:
        with self._lock:
            index = self._best_index
        instances = list(self._instances)
        if index:
            instances[0], instances[index] = instances[index], instances[0]
        return instances

    def _remember(self, index: int) -> None:
        with self._lock:
            self._best_index = index

    def fetch_validators(self, head_slot: int) -> dict[str, ValidatorResponseEntry]:
        """Validators from the first node that answers without error."""
        for index, instance in enumerate(self._instances_by_last_response()):
            log = self.log.with_fields(uri=instance.uri)
            log.debug("fetching validators")
            try:
                validators = instance.fetch_validators(head_slot)
            except Exception as exc:
                log.error("failed to fetch validators: %s", exc)
                continue
            self._remember(index)
            return validators
        raise BeaconNodesUnavailableError()

    def get_proposer_duties(self, epoch: int) -> ProposerDutiesResponse:
        """Proposer duties from the first node that answers without error."""
        base_log = self.log.with_fields(epoch=epoch)
        for index, instance in enumerate(self._instances_by_last_response()):
            log = base_log.with_fields(uri=instance.uri)
            log.debug("fetching proposer duties")
            try:
                duties = instance.get_proposer_duties(epoch)
            except Exception as exc:
                log.error("failed to get proposer duties: %s", exc)
                continue
            self._remember(index)
            return duties
        raise BeaconNodesUnavailableError()

    def publish_block(self, block: Any) -> int:
        """Publish via the first node that accepts; raise the last error if none does."""
        base_log = self.log.with_fields(**_block_fields(block))
        code = 0
        error: Exception | None = None
        for instance in self._instances_by_last_response():
            log = base_log.with_fields(uri=instance.uri)
            log.debug("publishing block")
            try:
                code = instance.publish_block(block)
            except Exception as exc:
                code = getattr(exc, "status_code", 0)
                error = exc
                log.with_fields(statusCode=code).warning("failed to publish block: %s", exc)
                continue
            log.with_fields(statusCode=code).info("published block")
            return code
        base_log.with_fields(statusCode=code).error("failed to publish block on any CL node: %s", error)
        if error is not None:
            raise error
        return code