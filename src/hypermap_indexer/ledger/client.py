"""Ledger client capability + JSON-RPC adapter."""

from __future__ import annotations

from dataclasses import dataclass
import itertools
import logging
from typing import Any, Protocol

import requests

from hypermap_indexer.events.models import RawLog
from hypermap_indexer.events.schema import validate_raw_log

from .errors import (
    TRANSIENT_HTTP_STATUSES,
    TRANSIENT_RPC_CODES,
    FatalError,
    TransientError,
    is_transient_message,
)

logger = logging.getLogger("hypermap_indexer.ledger")


@dataclass(frozen=True)
class BlockHeader:
    number: int
    timestamp: int
    hash: str | None = None


class LedgerClient(Protocol):
    def get_latest_block_number(self) -> int: ...

    def get_logs(self, address: str, from_block: int, to_block: int) -> list[RawLog]: ...

    def get_block(self, number: int) -> BlockHeader | None: ...


class JsonRpcLedgerClient:
    """JSON-RPC 2.0 client over a requests session.

    Every failure is raised as TransientError or FatalError so the retry
    policy can classify it without knowing about HTTP.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        if not rpc_url:
            raise FatalError("RPC_URL_MISSING")
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._ids = itertools.count(1)

    def get_latest_block_number(self) -> int:
        result = self._call("eth_blockNumber", [])
        return _parse_quantity(result, field="blockNumber")

    def get_logs(self, address: str, from_block: int, to_block: int) -> list[RawLog]:
        params = [{"address": address, "fromBlock": hex(from_block), "toBlock": hex(to_block)}]
        result = self._call("eth_getLogs", params)
        if not isinstance(result, list):
            raise FatalError("MALFORMED_RESPONSE", "eth_getLogs result is not a list")
        return [self._parse_log(item) for item in result]

    def get_block(self, number: int) -> BlockHeader | None:
        result = self._call("eth_getBlockByNumber", [hex(number), False])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise FatalError("MALFORMED_RESPONSE", "eth_getBlockByNumber result is not an object")
        return BlockHeader(
            number=_parse_quantity(result.get("number"), field="number"),
            timestamp=_parse_quantity(result.get("timestamp"), field="timestamp"),
            hash=result.get("hash"),
        )

    def close(self) -> None:
        self._session.close()

    def _call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session.post(self.rpc_url, json=payload, timeout=self.timeout_seconds)
        except requests.Timeout as exc:
            raise TransientError("TIMEOUT", f"{method}: {exc}"[:256]) from exc
        except (
            requests.ConnectionError,
            requests.exceptions.ChunkedEncodingError,
            requests.exceptions.ContentDecodingError,
        ) as exc:
            raise TransientError("NETWORK_ERROR", f"{method}: {exc}"[:256]) from exc
        except requests.RequestException as exc:
            raise FatalError("REQUEST_FAILED", f"{method}: {exc}"[:256]) from exc

        status = response.status_code
        if status == 429:
            raise TransientError("RATE_LIMITED", f"{method}: http_{status}", status=status)
        if status in TRANSIENT_HTTP_STATUSES or status >= 500:
            raise TransientError("SERVER_ERROR", f"{method}: http_{status}", status=status)
        if status >= 400:
            raise FatalError("HTTP_ERROR", f"{method}: http_{status}", status=status)

        try:
            body = response.json()
        except ValueError as exc:
            raise TransientError("BAD_RESPONSE", f"{method}: body is not json") from exc
        if not isinstance(body, dict):
            raise FatalError("MALFORMED_RESPONSE", f"{method}: body is not an object")
        error = body.get("error")
        if error is not None:
            raise _rpc_error(method, error)
        if "result" not in body:
            raise FatalError("MALFORMED_RESPONSE", f"{method}: missing result")
        return body["result"]

    def _parse_log(self, item: Any) -> RawLog:
        errors = validate_raw_log(item)
        if errors:
            raise FatalError("MALFORMED_RESPONSE", f"log schema: {'; '.join(errors)}"[:256])
        if item.get("removed"):
            raise TransientError("REORG_IN_PROGRESS", f"removed log tx={item['transactionHash']}")
        return RawLog(
            block_number=_parse_quantity(item["blockNumber"], field="blockNumber"),
            block_hash=item["blockHash"].lower(),
            transaction_hash=item["transactionHash"].lower(),
            transaction_index=_parse_quantity(item["transactionIndex"], field="transactionIndex"),
            log_index=_parse_quantity(item["logIndex"], field="logIndex"),
            address=item["address"].lower(),
            topics=tuple(topic.lower() for topic in item["topics"]),
            data=item.get("data") or "0x",
        )


def _rpc_error(method: str, error: Any) -> Exception:
    if not isinstance(error, dict):
        return FatalError("RPC_ERROR", f"{method}: {error}"[:256])
    code = error.get("code")
    message = str(error.get("message") or "")
    rpc_code = code if isinstance(code, int) and not isinstance(code, bool) else None
    detail = f"{method}: {message}"[:256]
    if rpc_code in TRANSIENT_RPC_CODES or is_transient_message(message):
        return TransientError("RPC_LIMITED", detail, rpc_code=rpc_code)
    return FatalError("RPC_ERROR", detail, rpc_code=rpc_code)


def _parse_quantity(value: Any, *, field: str) -> int:
    if isinstance(value, bool):
        raise FatalError("MALFORMED_RESPONSE", f"{field} is not a quantity")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
        except ValueError as exc:
            raise FatalError("MALFORMED_RESPONSE", f"{field}={value!r}") from exc
    raise FatalError("MALFORMED_RESPONSE", f"{field} is not a quantity")
