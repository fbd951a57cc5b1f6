"""Indexer configuration loader (YAML profiles)."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any

import yaml

from .constants import (
    CONTRACT_ADDRESS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_NAME_SEPARATOR,
    DEFAULT_PACING_DELAY_SECONDS,
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_RETRY_JITTER_SECONDS,
    DEFAULT_START_BLOCK,
    DEFAULT_TIMESTAMP_FANOUT,
    MAX_RETRIES,
    MIN_CHUNK_SIZE,
)

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")

RESOLVE_NAMES_MODES = ("on_complete", "every_chunk", "never")


class IndexerConfigError(ValueError):
    def __init__(self, code: str, detail: str | None = None) -> None:
        self.code = code
        self.detail = detail
        super().__init__(f"{code}:{detail}" if detail else code)


def _resolve_env(value: Any) -> Any:
    if not value or not isinstance(value, str):
        return value
    match = _ENV_PATTERN.fullmatch(value.strip())
    if match:
        return os.getenv(match.group(1)) or ""
    return value


def _resolve_bool(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in {"1", "true", "yes", "y", "on"}:
            return True
        if token in {"0", "false", "no", "n", "off"}:
            return False
    return default


def _resolve_int(value: Any, *, default: int, code: str) -> int:
    value = _resolve_env(value)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise IndexerConfigError(code, repr(value))
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise IndexerConfigError(code, repr(value)) from exc


def _resolve_float(value: Any, *, default: float, code: str) -> float:
    value = _resolve_env(value)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise IndexerConfigError(code, repr(value))
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise IndexerConfigError(code, repr(value)) from exc


@dataclass(frozen=True)
class IndexerPolicy:
    contract_address: str = CONTRACT_ADDRESS
    start_block: int = DEFAULT_START_BLOCK
    chunk_size: int = DEFAULT_CHUNK_SIZE
    min_chunk_size: int = MIN_CHUNK_SIZE
    adaptive_chunking: bool = False
    pacing_delay_seconds: float = DEFAULT_PACING_DELAY_SECONDS
    max_retries: int = MAX_RETRIES
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    retry_jitter_seconds: float = DEFAULT_RETRY_JITTER_SECONDS
    timestamp_fanout: int = DEFAULT_TIMESTAMP_FANOUT
    name_separator: str = DEFAULT_NAME_SEPARATOR
    resolve_names: str = "on_complete"

    def digest(self) -> str:
        canonical = json.dumps(asdict(self), sort_keys=True, ensure_ascii=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IndexerWiring:
    profile_id: str
    rpc_url: str
    store_dsn: str
    rpc_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    log_paths: tuple[str, ...] = ()


@dataclass(frozen=True)
class IndexerProfile:
    policy: IndexerPolicy
    wiring: IndexerWiring

    @classmethod
    def load(cls, path: Path) -> "IndexerProfile":
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise IndexerConfigError("PROFILE_INVALID", str(path))
        if "indexer" in data:
            data = data["indexer"] or {}
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "IndexerProfile":
        policy_data = data.get("policy") or {}
        wiring_data = data.get("wiring") or {}
        return cls(policy=_load_policy(policy_data), wiring=_load_wiring(data, wiring_data))


def _load_policy(policy: dict[str, Any]) -> IndexerPolicy:
    contract_address = str(_resolve_env(policy.get("contract_address")) or CONTRACT_ADDRESS)
    if not _ADDRESS_PATTERN.match(contract_address):
        raise IndexerConfigError("CONTRACT_ADDRESS_INVALID", contract_address)
    start_block = _resolve_int(policy.get("start_block"), default=DEFAULT_START_BLOCK, code="START_BLOCK_INVALID")
    if start_block < 0:
        raise IndexerConfigError("START_BLOCK_INVALID", str(start_block))
    chunk_size = _resolve_int(policy.get("chunk_size"), default=DEFAULT_CHUNK_SIZE, code="CHUNK_SIZE_INVALID")
    min_chunk_size = _resolve_int(
        policy.get("min_chunk_size"), default=min(MIN_CHUNK_SIZE, chunk_size), code="CHUNK_SIZE_INVALID"
    )
    if chunk_size < 1 or min_chunk_size < 1 or min_chunk_size > chunk_size:
        raise IndexerConfigError("CHUNK_SIZE_INVALID", f"chunk_size={chunk_size} min_chunk_size={min_chunk_size}")
    max_retries = _resolve_int(policy.get("max_retries"), default=MAX_RETRIES, code="RETRY_POLICY_INVALID")
    retry_base = _resolve_float(
        policy.get("retry_base_delay_seconds"),
        default=DEFAULT_RETRY_BASE_DELAY_SECONDS,
        code="RETRY_POLICY_INVALID",
    )
    retry_jitter = _resolve_float(
        policy.get("retry_jitter_seconds"),
        default=DEFAULT_RETRY_JITTER_SECONDS,
        code="RETRY_POLICY_INVALID",
    )
    if max_retries < 0 or retry_base < 0 or retry_jitter < 0:
        raise IndexerConfigError("RETRY_POLICY_INVALID")
    pacing = _resolve_float(
        policy.get("pacing_delay_seconds"), default=DEFAULT_PACING_DELAY_SECONDS, code="PACING_INVALID"
    )
    if pacing < 0:
        raise IndexerConfigError("PACING_INVALID", str(pacing))
    fanout = _resolve_int(
        policy.get("timestamp_fanout"), default=DEFAULT_TIMESTAMP_FANOUT, code="TIMESTAMP_FANOUT_INVALID"
    )
    if fanout < 1:
        raise IndexerConfigError("TIMESTAMP_FANOUT_INVALID", str(fanout))
    resolve_names = str(_resolve_env(policy.get("resolve_names")) or "on_complete").strip().lower()
    if resolve_names not in RESOLVE_NAMES_MODES:
        raise IndexerConfigError("RESOLVE_NAMES_INVALID", resolve_names)
    separator = policy.get("name_separator")
    return IndexerPolicy(
        contract_address=contract_address,
        start_block=start_block,
        chunk_size=chunk_size,
        min_chunk_size=min_chunk_size,
        adaptive_chunking=_resolve_bool(_resolve_env(policy.get("adaptive_chunking")), default=False),
        pacing_delay_seconds=pacing,
        max_retries=max_retries,
        retry_base_delay_seconds=retry_base,
        retry_jitter_seconds=retry_jitter,
        timestamp_fanout=fanout,
        name_separator=DEFAULT_NAME_SEPARATOR if separator is None else str(separator),
        resolve_names=resolve_names,
    )


def _load_wiring(data: dict[str, Any], wiring: dict[str, Any]) -> IndexerWiring:
    profile_id = str(data.get("profile_id") or wiring.get("profile_id") or "local")
    rpc_url = _resolve_env(wiring.get("rpc_url")) or os.getenv("HYPERMAP_RPC_URL") or ""
    if not rpc_url:
        raise IndexerConfigError("RPC_URL_MISSING")
    store_dsn = _resolve_env(wiring.get("store_dsn")) or os.getenv("HYPERMAP_STORE_DSN") or ""
    if not store_dsn:
        raise IndexerConfigError("STORE_DSN_MISSING")
    timeout = _resolve_float(wiring.get("rpc_timeout_seconds"), default=30.0, code="RPC_TIMEOUT_INVALID")
    if timeout <= 0:
        raise IndexerConfigError("RPC_TIMEOUT_INVALID", str(timeout))
    log_paths = wiring.get("log_paths") or []
    if isinstance(log_paths, str):
        log_paths = [log_paths]
    return IndexerWiring(
        profile_id=profile_id,
        rpc_url=str(rpc_url),
        store_dsn=str(store_dsn),
        rpc_timeout_seconds=timeout,
        log_level=str(_resolve_env(wiring.get("log_level")) or "INFO"),
        log_paths=tuple(str(_resolve_env(item)) for item in log_paths if _resolve_env(item)),
    )
