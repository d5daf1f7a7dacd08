from __future__ import annotations

import itertools
import time
from typing import Any, Dict, List, Optional

import httpx

from state.models import ChainEvent, EventPage, EventSequence, MoveCall
from .rate_limiter import SlidingWindowRateLimiter
from .signer import AdminSigner


FULLNODE_URLS = {
    "mainnet": "https://fullnode.mainnet.sui.io:443",
    "testnet": "https://fullnode.testnet.sui.io:443",
    "devnet": "https://fullnode.devnet.sui.io:443",
    "localnet": "http://127.0.0.1:9000",
}

DEFAULT_GAS_BUDGET = 10_000_000  # MIST


def fullnode_url(network: str) -> str:
    try:
        return FULLNODE_URLS[network]
    except KeyError:
        raise ValueError(f"Unknown Sui network: {network!r}") from None


class SuiError(RuntimeError):
    """Base error for the Sui RPC client."""


class SuiApiError(SuiError):
    """The node answered with a JSON-RPC error object or an unexpected payload."""

    def __init__(self, message: str, *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class SuiTransactionError(SuiError):
    """A transaction was executed but its effects report failure."""

    def __init__(self, message: str, *, digest: Optional[str] = None) -> None:
        super().__init__(message)
        self.digest = digest


class SuiTimeoutError(SuiError):
    """A transaction did not become visible before the wait timed out."""


def _event_sequence(raw: Dict[str, Any]) -> EventSequence:
    # eventSeq only orders events inside one transaction; prefix it with
    # the checkpoint timestamp and digest to order across transactions.
    ev_id = raw.get("id") or {}
    return (
        int(raw.get("timestampMs") or 0),
        str(ev_id.get("txDigest") or ""),
        int(ev_id.get("eventSeq") or 0),
    )


def _parse_event(raw: Dict[str, Any]) -> ChainEvent:
    ev_id = raw.get("id") or {}
    ts = raw.get("timestampMs")
    return ChainEvent(
        sequence=_event_sequence(raw),
        event_type=str(raw.get("type") or ""),
        parsed_json=raw.get("parsedJson") if isinstance(raw.get("parsedJson"), dict) else {},
        tx_digest=ev_id.get("txDigest"),
        timestamp_ms=int(ts) if ts is not None else None,
    )


class SuiClient:
    """
    Minimal Sui JSON-RPC client covering what the purchase listener needs:
    event queries, object reads, transaction execution and finality waits.

    Notes
    - Transactions are built by the fullnode (`unsafe_moveCall`) and signed
      locally; the private key never leaves the process.
    - Retries transport errors and 429/5xx with doubling backoff, honoring
      `Retry-After` when present.
    - A local limiter keeps request bursts under public fullnode limits.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        max_per_second: int = 10,
        max_attempts: int = 5,
        client: Optional[httpx.Client] = None,
        sleep=time.sleep,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.Client(base_url=url, timeout=timeout)
        self._limiter = SlidingWindowRateLimiter(max_calls=max_per_second, per_seconds=1.0)
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._ids = itertools.count(1)

    @classmethod
    def for_network(cls, network: str, **kwargs: Any) -> "SuiClient":
        return cls(fullnode_url(network), **kwargs)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "SuiClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Public API ---------------
    def query_events(
        self,
        event_type: str,
        *,
        limit: int = 50,
        descending: bool = True,
        cursor: Optional[Dict[str, Any]] = None,
    ) -> EventPage:
        """Fetch one page of events of a Move event type (`pkg::module::Struct`)."""
        result = self.call(
            "suix_queryEvents",
            [{"MoveEventType": event_type}, cursor, limit, descending],
        )
        if not isinstance(result, dict) or not isinstance(result.get("data"), list):
            raise SuiApiError("Malformed suix_queryEvents result")
        events = [_parse_event(raw) for raw in result["data"] if isinstance(raw, dict)]
        return EventPage(
            data=events,
            next_cursor=result.get("nextCursor"),
            has_next_page=bool(result.get("hasNextPage")),
        )

    def get_object(self, object_id: str) -> Optional[Dict[str, Any]]:
        """
        Read the current fields of a Move object.

        Returns the object's `fields` dict with `objectId` added, or None when
        the object does not exist or has no Move content.
        """
        result = self.call("sui_getObject", [object_id, {"showContent": True, "showType": True}])
        if not isinstance(result, dict):
            raise SuiApiError("Malformed sui_getObject result")
        data = result.get("data")
        if not isinstance(data, dict):
            # {"error": {"code": "notExists", ...}}
            return None
        content = data.get("content")
        if not isinstance(content, dict) or content.get("dataType") != "moveObject":
            return None
        fields = content.get("fields")
        if not isinstance(fields, dict):
            return None
        out = dict(fields)
        out["objectId"] = data.get("objectId", object_id)
        return out

    def sign_and_execute_transaction(
        self,
        call: MoveCall,
        signer: AdminSigner,
        *,
        gas_budget: int = DEFAULT_GAS_BUDGET,
    ) -> str:
        """Build, sign and execute a single Move call; returns the transaction digest."""
        built = self.call(
            "unsafe_moveCall",
            [
                signer.address,
                call.package,
                call.module,
                call.function,
                list(call.type_arguments),
                list(call.arguments),
                None,
                str(gas_budget),
            ],
        )
        tx_bytes = built.get("txBytes") if isinstance(built, dict) else None
        if not isinstance(tx_bytes, str):
            raise SuiApiError(f"unsafe_moveCall returned no txBytes for {call.target}")

        signature = signer.sign_transaction(tx_bytes)
        result = self.call(
            "sui_executeTransactionBlock",
            [tx_bytes, [signature], {"showEffects": True}, "WaitForLocalExecution"],
        )
        if not isinstance(result, dict) or not result.get("digest"):
            raise SuiApiError("Malformed sui_executeTransactionBlock result")
        digest = str(result["digest"])
        _raise_for_effects(result, digest)
        return digest

    def wait_for_transaction(
        self,
        digest: str,
        *,
        timeout: float = 60.0,
        poll_interval: float = 2.0,
    ) -> Dict[str, Any]:
        """Poll until the transaction is visible on the node, then check its effects."""
        deadline = time.monotonic() + timeout
        last_exc: Optional[Exception] = None
        while True:
            try:
                result = self.call("sui_getTransactionBlock", [digest, {"showEffects": True}])
            except SuiApiError as exc:
                # Not indexed yet
                last_exc = exc
            else:
                if isinstance(result, dict) and result.get("digest"):
                    _raise_for_effects(result, digest)
                    return result
            if time.monotonic() >= deadline:
                raise SuiTimeoutError(f"Transaction {digest} not confirmed within {timeout:g}s") from last_exc
            self._sleep(poll_interval)

    # --------------- Internal ---------------
    def call(self, method: str, params: List[Any]) -> Any:
        """Send one JSON-RPC request and return its `result`."""
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        data = self._request(body)
        if not isinstance(data, dict):
            raise SuiApiError(f"Malformed JSON-RPC response for {method}")
        err = data.get("error")
        if err is not None:
            if isinstance(err, dict):
                raise SuiApiError(f"{method}: {err.get('message') or 'RPC error'}", code=err.get("code"))
            raise SuiApiError(f"{method}: {err}")
        if "result" not in data:
            raise SuiApiError(f"JSON-RPC response for {method} has no result")
        return data["result"]

    def _request(self, body: Dict[str, Any]) -> Any:
        self._limiter.acquire()

        attempt = 0
        backoff = 0.5
        last_exc: Optional[Exception] = None
        while attempt < self._max_attempts:
            try:
                resp = self._client.post("", json=body)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                last_exc = exc
            else:
                if resp.status_code == 200:
                    try:
                        return resp.json()
                    except ValueError as exc:
                        raise SuiApiError("Failed to parse JSON from Sui RPC") from exc

                if resp.status_code in (429, 500, 502, 503, 504):
                    retry_after = None
                    header = resp.headers.get("Retry-After")
                    if header:
                        try:
                            retry_after = float(header)
                        except ValueError:
                            retry_after = None
                    delay = retry_after if retry_after is not None else backoff
                    self._sleep(min(delay, 10.0))
                    backoff = min(backoff * 2, 8.0)
                    attempt += 1
                    last_exc = SuiApiError(f"HTTP {resp.status_code} from Sui RPC", code=resp.status_code)
                    continue

                raise SuiApiError(
                    f"HTTP {resp.status_code} from Sui RPC: {resp.text[:200]}",
                    code=resp.status_code,
                )

            attempt += 1
            self._sleep(backoff)
            backoff = min(backoff * 2, 8.0)

        if last_exc is not None:
            raise SuiError(f"{body.get('method')} failed after {attempt} attempts") from last_exc
        raise SuiError(f"{body.get('method')} failed after retries (unknown error)")


def _raise_for_effects(result: Dict[str, Any], digest: str) -> None:
    effects = result.get("effects")
    if not isinstance(effects, dict):
        return
    status = effects.get("status") or {}
    if status.get("status") not in (None, "success"):
        raise SuiTransactionError(
            f"Transaction {digest} failed: {status.get('error') or status.get('status')}",
            digest=digest,
        )


__all__ = [
    "SuiClient",
    "SuiError",
    "SuiApiError",
    "SuiTransactionError",
    "SuiTimeoutError",
    "FULLNODE_URLS",
    "fullnode_url",
]
