"""Network details, builder entries and bid-trace records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import ParseResult, urlparse

from .common import (
    DOMAIN_TYPE_APP_BUILDER,
    DOMAIN_TYPE_BEACON_PROPOSER,
    InvalidPubkeyError,
    RelayError,
    compute_domain,
    decode_hex,
)


class UnknownNetworkError(RelayError, ValueError):
    message = "unknown network"


ETH_NETWORK_KILN = "kiln"
ETH_NETWORK_ROPSTEN = "ropsten"
ETH_NETWORK_SEPOLIA = "sepolia"
ETH_NETWORK_GOERLI = "goerli"
ETH_NETWORK_MAINNET = "mainnet"

# name -> (genesis fork version, genesis validators root, bellatrix fork version)
_NETWORKS = {
    ETH_NETWORK_KILN: (
        "0x70000069",
        "0x99b09fcd43e5905236c370f184056bec6e6638cfc31a323b304fc4aa789cb4ad",
        "0x70000071",
    ),
    ETH_NETWORK_ROPSTEN: (
        "0x80000069",
        "0x44f1e56283ca88b35c789f7f449e52339bc1fefe3a45913a43a6d16edcd33cf1",
        "0x80000071",
    ),
    ETH_NETWORK_SEPOLIA: (
        "0x90000069",
        "0xd8ea171f3c94aea21ebc42a1ed61052acf3f9209c00e4efbaaddac09ed9b8078",
        "0x90000071",
    ),
    ETH_NETWORK_GOERLI: (
        "0x00001020",
        "0x043db0d9a83813551ee2f33450d23797757d430911a9320530ad8a0eabc43efb",
        "0x02001020",
    ),
    ETH_NETWORK_MAINNET: (
        "0x00000000",
        "0x4b363db94e286120d76eb905340fdd4e54bfe9f06bf33ff6cf5ad27f511bfe95",
        "0x02000000",
    ),
}

_ZERO_ROOT_HEX = "0x" + "00" * 32


@dataclass(frozen=True)
class BuilderEntry:
    """A builder allowed to send blocks; address is scheme://host:port."""

    address: str
    pubkey: bytes
    url: ParseResult


def new_builder_entry(builder_url: str) -> BuilderEntry:
    """Parse 'PUBKEY@HOST:PORT', 'https://HOST' and similar forms."""
    if not builder_url.startswith("http"):
        builder_url = "http://" + builder_url
    parsed = urlparse(builder_url)
    try:
        pubkey = decode_hex(parsed.username or "", allow_empty=True)
    except ValueError as exc:
        raise InvalidPubkeyError(str(exc)) from exc
    host = parsed.netloc.rpartition("@")[2]
    return BuilderEntry(address=f"{parsed.scheme}://{host}", pubkey=pubkey, url=parsed)


@dataclass(frozen=True)
class EthNetworkDetails:
    name: str
    genesis_fork_version_hex: str
    genesis_validators_root_hex: str
    bellatrix_fork_version_hex: str
    domain_builder: bytes
    domain_beacon_proposer: bytes


def new_eth_network_details(network_name: str) -> EthNetworkDetails:
    try:
        genesis_fork, genesis_root, bellatrix_fork = _NETWORKS[network_name]
    except KeyError:
        raise UnknownNetworkError(f"unknown network: {network_name}") from None
    return EthNetworkDetails(
        name=network_name,
        genesis_fork_version_hex=genesis_fork,
        genesis_validators_root_hex=genesis_root,
        bellatrix_fork_version_hex=bellatrix_fork,
        domain_builder=compute_domain(DOMAIN_TYPE_APP_BUILDER, genesis_fork, _ZERO_ROOT_HEX),
        domain_beacon_proposer=compute_domain(DOMAIN_TYPE_BEACON_PROPOSER, bellatrix_fork, genesis_root),
    )


@dataclass
class BidTraceV2:
    """A bid trace together with block number and transaction count."""

    slot: int
    parent_hash: str
    block_hash: str
    builder_pubkey: str
    proposer_pubkey: str
    proposer_fee_recipient: str
    gas_limit: int
    gas_used: int
    value: int
    block_number: int = 0
    num_tx: int = 0


_BID_TRACE_HEADER = [
    "slot",
    "parent_hash",
    "block_hash",
    "builder_pubkey",
    "proposer_pubkey",
    "proposer_fee_recipient",
    "gas_limit",
    "gas_used",
    "value",
    "num_tx",
    "block_number",
]


@dataclass
class BidTraceV2JSON:
    """Bid trace in its public JSON and CSV form."""

    slot: int = 0
    parent_hash: str = ""
    block_hash: str = ""
    builder_pubkey: str = ""
    proposer_pubkey: str = ""
    proposer_fee_recipient: str = ""
    gas_limit: int = 0
    gas_used: int = 0
    value: str = ""
    num_tx: int = 0
    block_number: int = 0

    def csv_header(self) -> list[str]:
        return list(_BID_TRACE_HEADER)

    def to_csv_record(self) -> list[str]:
        return [
            str(self.slot),
            self.parent_hash,
            self.block_hash,
            self.builder_pubkey,
            self.proposer_pubkey,
            self.proposer_fee_recipient,
            str(self.gas_limit),
            str(self.gas_used),
            self.value,
            str(self.num_tx),
            str(self.block_number),
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": str(self.slot),
            "parent_hash": self.parent_hash,
            "block_hash": self.block_hash,
            "builder_pubkey": self.builder_pubkey,
            "proposer_pubkey": self.proposer_pubkey,
            "proposer_fee_recipient": self.proposer_fee_recipient,
            "gas_limit": str(self.gas_limit),
            "gas_used": str(self.gas_used),
            "value": self.value,
            "num_tx": str(self.num_tx),
            "block_number": str(self.block_number),
        }


@dataclass
class BidTraceV2WithTimestampJSON(BidTraceV2JSON):
    """Bid trace with the time it was received, in seconds and milliseconds."""

    timestamp: int = 0
    timestamp_ms: int = 0

    def csv_header(self) -> list[str]:
        return [*_BID_TRACE_HEADER, "timestamp", "timestamp_ms"]

    def to_csv_record(self) -> list[str]:
        return [*super().to_csv_record(), str(self.timestamp), str(self.timestamp_ms)]

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.timestamp:
            result["timestamp"] = str(self.timestamp)
        if self.timestamp_ms:
            result["timestamp_ms"] = str(self.timestamp_ms)
        return result