from __future__ import annotations

from typing import Any

import pytest
import requests

from hypermap_indexer.ledger.client import JsonRpcLedgerClient
from hypermap_indexer.ledger.errors import FatalError, TransientError, is_transient_error


class _Response:
    def __init__(self, status_code: int, body: Any = None, *, invalid_json: bool = False) -> None:
        self.status_code = status_code
        self._body = body
        self._invalid_json = invalid_json

    def json(self) -> Any:
        if self._invalid_json:
            raise ValueError("not json")
        return self._body


class _Session:
    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    def post(self, url: str, json: dict[str, Any], timeout: float) -> _Response:
        self.requests.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        return None


def _client(*responses: Any) -> tuple[JsonRpcLedgerClient, _Session]:
    session = _Session(list(responses))
    return JsonRpcLedgerClient("http://rpc.local", timeout_seconds=5.0, session=session), session


def _log_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "address": "0x000000000044C6B8Cb4d8f0F889a3E47664EAeda",
        "blockNumber": "0x1a0",
        "blockHash": "0x" + "ab" * 32,
        "transactionHash": "0x" + "CD" * 32,
        "transactionIndex": "0x2",
        "logIndex": "0x7",
        "topics": ["0x" + "11" * 32, "0x" + "22" * 32],
        "data": "0x",
        "removed": False,
    }
    payload.update(overrides)
    return payload


def test_get_logs_parses_and_lowercases() -> None:
    client, session = _client(_Response(200, {"jsonrpc": "2.0", "id": 1, "result": [_log_payload()]}))
    logs = client.get_logs("0x000000000044C6B8Cb4d8f0F889a3E47664EAeda", 400, 420)
    assert len(logs) == 1
    log = logs[0]
    assert log.block_number == 416
    assert log.transaction_index == 2
    assert log.log_index == 7
    assert log.transaction_hash == "0x" + "cd" * 32
    assert log.address == "0x000000000044c6b8cb4d8f0f889a3e47664eaeda"
    sent = session.requests[0]["json"]
    assert sent["method"] == "eth_getLogs"
    assert sent["params"][0]["fromBlock"] == hex(400)
    assert sent["params"][0]["toBlock"] == hex(420)
    assert session.requests[0]["timeout"] == 5.0


def test_latest_block_and_block_header() -> None:
    client, _ = _client(
        _Response(200, {"jsonrpc": "2.0", "id": 1, "result": "0x10"}),
        _Response(200, {"jsonrpc": "2.0", "id": 2, "result": {"number": "0x10", "timestamp": "0x64", "hash": "0xabc"}}),
        _Response(200, {"jsonrpc": "2.0", "id": 3, "result": None}),
    )
    assert client.get_latest_block_number() == 16
    header = client.get_block(16)
    assert header is not None and header.timestamp == 100
    assert client.get_block(17) is None


@pytest.mark.parametrize("status", [429, 502, 503])
def test_throttling_and_overload_statuses_are_transient(status: int) -> None:
    client, _ = _client(_Response(status, None))
    with pytest.raises(TransientError) as excinfo:
        client.get_latest_block_number()
    assert excinfo.value.status == status


def test_client_error_status_is_fatal() -> None:
    client, _ = _client(_Response(400, None))
    with pytest.raises(FatalError) as excinfo:
        client.get_latest_block_number()
    assert excinfo.value.code == "HTTP_ERROR"


def test_network_failures_are_transient() -> None:
    client, _ = _client(requests.Timeout("read timed out"), requests.ConnectionError("refused"))
    with pytest.raises(TransientError) as first:
        client.get_latest_block_number()
    assert first.value.code == "TIMEOUT"
    with pytest.raises(TransientError) as second:
        client.get_latest_block_number()
    assert second.value.code == "NETWORK_ERROR"


def test_truncated_body_is_transient() -> None:
    client, _ = _client(
        requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead"),
        requests.exceptions.ContentDecodingError("gzip stream ended early"),
        requests.exceptions.InvalidURL("bad url"),
    )
    with pytest.raises(TransientError) as first:
        client.get_latest_block_number()
    assert first.value.code == "NETWORK_ERROR"
    assert is_transient_error(first.value)
    with pytest.raises(TransientError):
        client.get_logs("0x" + "00" * 20, 1, 2)
    with pytest.raises(FatalError) as fatal:
        client.get_latest_block_number()
    assert fatal.value.code == "REQUEST_FAILED"


def test_rpc_error_objects_are_classified() -> None:
    client, _ = _client(
        _Response(200, {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "limit"}}),
        _Response(200, {"jsonrpc": "2.0", "id": 2, "error": {"code": -32000, "message": "Too Many Requests"}}),
        _Response(200, {"jsonrpc": "2.0", "id": 3, "error": {"code": -32602, "message": "invalid params"}}),
    )
    with pytest.raises(TransientError):
        client.get_logs("0x" + "00" * 20, 1, 2)
    with pytest.raises(TransientError):
        client.get_logs("0x" + "00" * 20, 1, 2)
    with pytest.raises(FatalError) as excinfo:
        client.get_logs("0x" + "00" * 20, 1, 2)
    assert excinfo.value.rpc_code == -32602


def test_schema_invalid_log_is_fatal() -> None:
    bad = _log_payload(blockHash="0x1234")
    client, _ = _client(_Response(200, {"jsonrpc": "2.0", "id": 1, "result": [bad]}))
    with pytest.raises(FatalError) as excinfo:
        client.get_logs("0x" + "00" * 20, 1, 2)
    assert excinfo.value.code == "MALFORMED_RESPONSE"


def test_non_json_body_is_transient() -> None:
    client, _ = _client(_Response(200, invalid_json=True))
    with pytest.raises(TransientError) as excinfo:
        client.get_latest_block_number()
    assert excinfo.value.code == "BAD_RESPONSE"


def test_missing_rpc_url_rejected() -> None:
    with pytest.raises(FatalError) as excinfo:
        JsonRpcLedgerClient("")
    assert excinfo.value.code == "RPC_URL_MISSING"
