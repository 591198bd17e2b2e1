import pytest

from boostrelay.common import DOMAIN_TYPE_APP_BUILDER, DOMAIN_TYPE_BEACON_PROPOSER, InvalidPubkeyError, compute_domain
from boostrelay.types import (
    BidTraceV2JSON,
    BidTraceV2WithTimestampJSON,
    UnknownNetworkError,
    new_builder_entry,
    new_eth_network_details,
)

NETWORKS = ["kiln", "ropsten", "sepolia", "goerli", "mainnet"]


def _trace(**kwargs):
    base = dict(
        slot=10,
        parent_hash="0xparent",
        block_hash="0xblock",
        builder_pubkey="0xbuilder",
        proposer_pubkey="0xproposer",
        proposer_fee_recipient="0xfee",
        gas_limit=30,
        gas_used=20,
        value="12345",
        num_tx=3,
        block_number=99,
    )
    base.update(kwargs)
    return base


def test_builder_entry_with_pubkey():
    entry = new_builder_entry("0xabcd@localhost:8080")
    assert entry.pubkey == b"\xab\xcd"
    assert entry.address == "http://localhost:8080"
    assert entry.url.port == 8080


def test_builder_entry_without_pubkey_keeps_scheme():
    entry = new_builder_entry("https://relay.example.com")
    assert entry.pubkey == b""
    assert entry.address == "https://relay.example.com"


@pytest.mark.parametrize("url", ["abcd@localhost:8080", "0xabc@localhost", "0xzz@localhost"])
def test_builder_entry_invalid_pubkey(url):
    with pytest.raises(InvalidPubkeyError):
        new_builder_entry(url)


@pytest.mark.parametrize("name", NETWORKS)
def test_network_details_domains(name):
    details = new_eth_network_details(name)
    assert details.name == name
    assert details.domain_builder == compute_domain(
        DOMAIN_TYPE_APP_BUILDER, details.genesis_fork_version_hex, "0x" + "00" * 32
    )
    assert details.domain_beacon_proposer == compute_domain(
        DOMAIN_TYPE_BEACON_PROPOSER, details.bellatrix_fork_version_hex, details.genesis_validators_root_hex
    )
    assert len(details.domain_builder) == 32


def test_mainnet_builder_domain():
    details = new_eth_network_details("mainnet")
    assert "0x" + details.domain_builder.hex() == (
        "0x00000001f5a5fd42d16a20302798ef6ed309979b43003d2320d9f0e8ea9831a9"
    )


def test_unknown_network():
    with pytest.raises(UnknownNetworkError) as info:
        new_eth_network_details("nowhere")
    assert "nowhere" in str(info.value)


def test_bid_trace_csv_record_matches_header():
    trace = BidTraceV2JSON(**_trace())
    header = trace.csv_header()
    record = trace.to_csv_record()
    assert len(header) == len(record)
    row = dict(zip(header, record))
    assert row["slot"] == "10"
    assert row["value"] == "12345"
    assert row["block_number"] == "99"


def test_bid_trace_to_dict_uses_strings():
    trace = BidTraceV2JSON(**_trace())
    data = trace.to_dict()
    assert list(data) == trace.csv_header()
    assert data["gas_used"] == "20"
    assert data["proposer_fee_recipient"] == "0xfee"


def test_timestamped_trace_csv():
    trace = BidTraceV2WithTimestampJSON(**_trace(), timestamp=1700, timestamp_ms=1700123)
    header = trace.csv_header()
    record = trace.to_csv_record()
    assert header[-2:] == ["timestamp", "timestamp_ms"]
    assert record[-2:] == ["1700", "1700123"]
    assert header[:-2] == BidTraceV2JSON().csv_header()


def test_timestamped_trace_omits_zero_timestamps():
    trace = BidTraceV2WithTimestampJSON(**_trace())
    data = trace.to_dict()
    assert "timestamp" not in data
    assert "timestamp_ms" not in data
    trace.timestamp = 5
    assert trace.to_dict()["timestamp"] == "5"