import json
import queue
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from boostrelay.beacon_instance import (
    BeaconHTTPError,
    GetBlockResponse,
    GetHeaderResponse,
    HeadEventData,
    ProdBeaconInstance,
    ProposerDutiesResponse,
    ProposerDutiesResponseData,
    SyncStatusPayloadData,
    fetch_beacon,
)

TEST_PUBKEY = "0x93247f2209abcacf57b75a51dafae777f9dd38bc7053d1af526f220a7489a6d3a2753e5f3e8b1cfe39b56f43611df74a"

VALIDATORS_BODY = json.dumps(
    {
        "execution_optimistic": False,
        "data": [
            {
                "index": "1",
                "balance": "1",
                "status": "active_ongoing",
                "validator": {
                    "pubkey": TEST_PUBKEY,
                    "withdrawal_credentials": "0xcf8e0d4e9587369b2301d0790347320302cc0943d5a1884560367e8208d920f2",
                    "effective_balance": "1",
                    "slashed": False,
                    "activation_eligibility_epoch": "1",
                    "activation_epoch": "1",
                    "exit_epoch": "1",
                    "withdrawable_epoch": "1",
                },
            }
        ],
    }
).encode()


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.server.seen.append((self.command, self.path, dict(self.headers), b""))
        self._serve()

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length)
        self.server.seen.append((self.command, self.path, dict(self.headers), body))
        self._serve()

    def _serve(self):
        path = self.path.split("?")[0]
        status, ctype, body = self.server.routes.get(
            path, (404, "application/json", b'{"code":404,"message":"not found"}')
        )
        self.send_response(status)
        self.send_header("Content-Type", ctype)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    srv.daemon_threads = True
    srv.routes = {}
    srv.seen = []
    srv.base_url = f"http://127.0.0.1:{srv.server_address[1]}"
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv
    srv.shutdown()
    srv.server_close()


def _json_route(srv, path, payload, status=200):
    srv.routes[path] = (status, "application/json", json.dumps(payload).encode())


def test_fetch_validators(server):
    server.routes["/eth/v1/beacon/states/1/validators"] = (200, "application/json", VALIDATORS_BODY)
    instance = ProdBeaconInstance(server.base_url)
    validators = instance.fetch_validators(1)
    assert len(validators) == 1
    assert TEST_PUBKEY in validators
    entry = validators[TEST_PUBKEY]
    assert entry.index == 1
    assert entry.status == "active_ongoing"
    assert "status=active,pending" in server.seen[0][1]


def test_fetch_validators_keys_lowercase(server):
    body = {"data": [{"index": "3", "balance": "5", "status": "pending", "validator": {"pubkey": "0xABCD"}}]}
    _json_route(server, "/eth/v1/beacon/states/7/validators", body)
    validators = ProdBeaconInstance(server.base_url).fetch_validators(7)
    assert list(validators) == ["0xabcd"]


def test_sync_status_and_current_slot(server):
    _json_route(
        server,
        "/eth/v1/node/syncing",
        {"data": {"head_slot": "251114", "sync_distance": "0", "is_syncing": False, "is_optimistic": False}},
    )
    instance = ProdBeaconInstance(server.base_url)
    assert instance.sync_status() == SyncStatusPayloadData(head_slot=251114, is_syncing=False)
    assert instance.current_slot() == 251114


def test_get_proposer_duties(server):
    _json_route(server, "/eth/v1/validator/duties/proposer/5", {"data": [{"pubkey": TEST_PUBKEY, "slot": "160"}]})
    duties = ProdBeaconInstance(server.base_url).get_proposer_duties(5)
    assert duties == ProposerDutiesResponse(data=[ProposerDutiesResponseData(pubkey=TEST_PUBKEY, slot=160)])


def test_get_header_and_for_slot(server):
    header = {
        "data": {
            "root": "0xaa",
            "header": {"message": {"slot": "12", "proposer_index": "4", "parent_root": "0xbb"}},
        }
    }
    _json_route(server, "/eth/v1/beacon/headers/head", header)
    _json_route(server, "/eth/v1/beacon/headers/12", header)
    instance = ProdBeaconInstance(server.base_url)
    expected = GetHeaderResponse(root="0xaa", slot=12, proposer_index=4, parent_root="0xbb")
    assert instance.get_header() == expected
    assert instance.get_header_for_slot(12) == expected


def test_get_block_and_for_slot(server):
    block = {"data": {"message": {"slot": "9", "body": {"execution_payload": {"block_hash": "0x01"}}}}}
    _json_route(server, "/eth/v2/beacon/blocks/head", block)
    _json_route(server, "/eth/v2/beacon/blocks/9", block)
    instance = ProdBeaconInstance(server.base_url)
    expected = GetBlockResponse(slot=9, execution_payload={"block_hash": "0x01"})
    assert instance.get_block() == expected
    assert instance.get_block_for_slot(9) == expected


def test_publish_block_posts_json(server):
    server.routes["/eth/v1/beacon/blocks"] = (200, "text/plain", b"")
    block = {"message": {"slot": "1"}, "signature": "0x00"}
    code = ProdBeaconInstance(server.base_url).publish_block(block)
    assert code == 200
    method, path, headers, body = server.seen[0]
    assert method == "POST"
    assert path == "/eth/v1/beacon/blocks"
    assert json.loads(body) == block
    assert headers["Content-Type"] == "application/json"


def test_error_response_raises_with_message(server):
    _json_route(server, "/eth/v1/node/syncing", {"code": 503, "message": "node is syncing"}, status=503)
    with pytest.raises(BeaconHTTPError) as info:
        ProdBeaconInstance(server.base_url).sync_status()
    assert info.value.status_code == 503
    assert str(info.value) == "got an HTTP error response: node is syncing"


def test_error_response_not_json(server):
    server.routes["/eth/v1/beacon/blocks"] = (400, "text/plain", b"bad block")
    with pytest.raises(BeaconHTTPError) as info:
        ProdBeaconInstance(server.base_url).publish_block({"a": 1})
    assert info.value.status_code == 400
    assert "could not unmarshal error response" in str(info.value)


def test_invalid_success_body(server):
    server.routes["/eth/v1/node/syncing"] = (200, "application/json", b"not json")
    with pytest.raises(BeaconHTTPError) as info:
        ProdBeaconInstance(server.base_url).sync_status()
    assert info.value.status_code == 200
    assert "could not unmarshal response" in str(info.value)


def test_fetch_beacon_returns_code_and_body(server):
    server.routes["/x"] = (202, "application/json", b'{"ok":true}')
    code, body = fetch_beacon("GET", server.base_url + "/x")
    assert code == 202
    assert json.loads(body) == {"ok": True}
    assert server.seen[0][2]["accept"] == "application/json"


def test_fetch_beacon_connection_refused():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    with pytest.raises(BeaconHTTPError) as info:
        fetch_beacon("GET", f"http://127.0.0.1:{port}/eth/v1/node/syncing")
    assert info.value.status_code == 0
    assert "client refused" in str(info.value)


def test_head_event_from_dict():
    event = HeadEventData.from_dict(
        {"slot": "827256", "block": "0x56", "state": "0x41", "epoch_transition": False}
    )
    assert event == HeadEventData(slot=827256, block="0x56", state="0x41")


def test_subscribe_to_head_events(server):
    stream = (
        b": comment\n\n"
        b"event: head\n"
        b'data: {"slot":"42","block":"0xab","state":"0xcd"}\n\n'
        b"data: not json\n\n"
    )
    server.routes["/eth/v1/events"] = (200, "text/event-stream", stream)
    events = queue.Queue()
    instance = ProdBeaconInstance(server.base_url)
    threading.Thread(target=instance.subscribe_to_head_events, args=(events,), daemon=True).start()
    event = events.get(timeout=5)
    assert event == HeadEventData(slot=42, block="0xab", state="0xcd")
    assert server.seen[0][1] == "/eth/v1/events?topics=head"