from __future__ import annotations

import itertools
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from solana_exporter.errors import RpcError
from solana_exporter.metrics import inc_counter
from solana_exporter.schemas import AccountInfo, BlockProduction, BlockRewards, EpochInfo, VoteAccounts

Json = Dict[str, Any]

log = logging.getLogger("solana_exporter.rpc")

# Upper bound of getMultipleAccounts keys per request.
MAX_MULTIPLE_ACCOUNTS = 100


def _http_json(url: str, body: Json, timeout_s: float) -> Json:
    data = json.dumps(body).encode("utf-8")
    req = urllib.request.Request(url, data=data, headers={"Content-Type": "application/json"}, method="POST")

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        raise RpcError("http_error", f"node returned HTTP {e.code}", {"url": url}) from e
    except urllib.error.URLError as e:
        raise RpcError("url_error", str(getattr(e, "reason", e)), {"url": url}) from e
    except OSError as e:
        raise RpcError("io_error", str(e), {"url": url}) from e

    try:
        doc = json.loads(raw)
    except ValueError as e:
        raise RpcError("bad_json", "node returned a non-JSON body", raw[:200]) from e
    if not isinstance(doc, dict):
        raise RpcError("bad_json", "node returned a non-object body", raw[:200])
    return doc


class SolanaRpcClient:
    """Blocking JSON-RPC 2.0 client for the handful of node calls the exporter needs."""

    def __init__(self, url: str, *, timeout_s: float = 30.0) -> None:
        self.url = str(url).strip()
        self.timeout_s = float(timeout_s)
        self._ids = itertools.count(1)

    def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        log.debug("rpc request method=%s params=%s", method, payload["params"])
        inc_counter("rpc_requests_total")
        try:
            doc = _http_json(self.url, payload, self.timeout_s)
            err = doc.get("error")
            if err is not None:
                message = err.get("message") if isinstance(err, dict) else str(err)
                raise RpcError("rpc_error", f"{method}: {message}", err)
            if "result" not in doc:
                raise RpcError("rpc_error", f"{method}: response has no result")
        except RpcError:
            inc_counter("rpc_errors_total")
            raise
        return doc["result"]

    def _validated(self, method: str, fn, value: Any):
        try:
            return fn(value)
        except ValidationError as e:
            inc_counter("rpc_errors_total")
            raise RpcError("rpc_schema", f"{method}: unexpected response shape", str(e)) from e

    def get_epoch_info(self) -> EpochInfo:
        result = self.request("getEpochInfo")
        return self._validated("getEpochInfo", EpochInfo.model_validate, result)

    def get_blocks(self, start_slot: int, end_slot: Optional[int] = None) -> List[int]:
        params: List[Any] = [int(start_slot)]
        if end_slot is not None:
            params.append(int(end_slot))
        result = self.request("getBlocks", params)
        if not isinstance(result, list):
            raise RpcError("rpc_schema", "getBlocks: expected a list of slots")
        return [int(s) for s in result]

    def get_block(self, slot: int) -> BlockRewards:
        config = {
            "encoding": "json",
            "transactionDetails": "none",
            "rewards": True,
            "maxSupportedTransactionVersion": 0,
        }
        result = self.request("getBlock", [int(slot), config])
        if result is None:
            raise RpcError("rpc_block_missing", f"getBlock: slot {slot} returned no block")
        return self._validated("getBlock", BlockRewards.model_validate, result)

    def get_multiple_accounts(self, addresses: Sequence[str]) -> List[Optional[AccountInfo]]:
        keys = [str(a) for a in addresses]
        if len(keys) > MAX_MULTIPLE_ACCOUNTS:
            raise RpcError("rpc_too_many_keys", f"getMultipleAccounts accepts at most {MAX_MULTIPLE_ACCOUNTS} keys")
        if not keys:
            return []
        result = self.request("getMultipleAccounts", [keys, {"encoding": "base64"}])
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, list) or len(value) != len(keys):
            raise RpcError("rpc_schema", "getMultipleAccounts: expected one entry per key")
        return [
            None if item is None else self._validated("getMultipleAccounts", AccountInfo.model_validate, item)
            for item in value
        ]

    def get_vote_accounts(self) -> VoteAccounts:
        result = self.request("getVoteAccounts")
        return self._validated("getVoteAccounts", VoteAccounts.model_validate, result)

    def get_block_production(self) -> BlockProduction:
        """Leader slots and produced blocks per node identity, current epoch so far."""
        result = self.request("getBlockProduction")
        value = result.get("value") if isinstance(result, dict) else None
        if not isinstance(value, dict):
            raise RpcError("rpc_schema", "getBlockProduction: expected a value object")
        return self._validated("getBlockProduction", BlockProduction.model_validate, value)
