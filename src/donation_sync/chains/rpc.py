"""Chain access for EVM nodes (web3.py) and Solana clusters (solana-py).

Both clients hand the verifiers plain JSON-shaped dicts: EVM quantities
come back as ints and byte fields as 0x-hex strings, Solana results are
the ``jsonParsed`` RPC shapes. Every transport or node failure is raised
as ChainUnavailable so callers can tell "unreachable" from "not found".
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp
import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solders.signature import Signature
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.providers.async_base import AsyncBaseProvider

from donation_sync.errors import ChainUnavailable

log = logging.getLogger(__name__)

# Node payloads that fail web3's result formatters surface as TypeError/ValueError.
_EVM_ERRORS = (
    Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, OSError, TypeError, ValueError,
)
_SOLANA_ERRORS = (SolanaRpcException, RPCException, httpx.HTTPError, ValueError)


def _plain(value: Any) -> Any:
    """AttributeDict/HexBytes results as plain dicts, lists and hex strings."""
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return AsyncWeb3.to_hex(value)
    return value


class EvmRpcClient:
    """EVM chain access through ``web3.AsyncWeb3``."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        provider: AsyncBaseProvider | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        if provider is None:
            provider = AsyncHTTPProvider(
                rpc_url,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
                exception_retry_configuration=None,
            )
        self._w3 = AsyncWeb3(provider, middleware=[])

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def get_transaction(self, ref: str) -> dict[str, Any] | None:
        try:
            tx = await self._w3.eth.get_transaction(ref)
        except TransactionNotFound:
            return None
        except _EVM_ERRORS as exc:
            raise self._unavailable("eth_getTransactionByHash", exc) from exc
        return {"transaction": _plain(tx), "receipt": await self._receipt(ref)}

    async def get_finality_depth(self, ref: str) -> int | None:
        receipt = await self._receipt(ref)
        if not receipt or receipt.get("blockNumber") is None:
            return None
        try:
            head = await self._w3.eth.block_number
        except _EVM_ERRORS as exc:
            raise self._unavailable("eth_blockNumber", exc) from exc
        return max(0, head - int(receipt["blockNumber"]) + 1)

    async def close(self) -> None:
        await self._w3.provider.disconnect()

    async def _receipt(self, ref: str) -> dict[str, Any] | None:
        try:
            receipt = await self._w3.eth.get_transaction_receipt(ref)
        except TransactionNotFound:
            return None
        except _EVM_ERRORS as exc:
            raise self._unavailable("eth_getTransactionReceipt", exc) from exc
        return _plain(receipt)

    def _unavailable(self, method: str, exc: Exception) -> ChainUnavailable:
        log.debug("RPC %s at %s failed: %r", method, self._rpc_url, exc)
        if isinstance(exc, asyncio.TimeoutError):
            return ChainUnavailable(f"{method} timed out")
        return ChainUnavailable(f"{method} failed: {exc}")


class SolanaRpcClient:
    """Solana chain access through ``solana.rpc.async_api.AsyncClient``."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        client: AsyncClient | None = None,
    ) -> None:
        self._rpc_url = rpc_url
        self._client = client or AsyncClient(rpc_url, timeout=timeout)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def get_transaction(self, ref: str) -> dict[str, Any] | None:
        try:
            resp = await self._client.get_transaction(
                Signature.from_string(ref),
                encoding="jsonParsed",
                commitment=Confirmed,
                max_supported_transaction_version=0,
            )
        except _SOLANA_ERRORS as exc:
            raise self._unavailable("getTransaction", exc) from exc
        return self._result(resp)

    async def get_signature_status(self, ref: str) -> dict[str, Any] | None:
        try:
            resp = await self._client.get_signature_statuses(
                [Signature.from_string(ref)], search_transaction_history=True,
            )
        except _SOLANA_ERRORS as exc:
            raise self._unavailable("getSignatureStatuses", exc) from exc
        values = (self._result(resp) or {}).get("value") or []
        return values[0] if values else None

    async def close(self) -> None:
        await self._client.close()

    def _result(self, resp: Any) -> Any:
        try:
            body = json.loads(resp.to_json())
        except (AttributeError, TypeError, ValueError) as exc:
            raise ChainUnavailable(f"undecodable response from {self._rpc_url}") from exc
        if not isinstance(body, dict):
            raise ChainUnavailable("unexpected response payload")
        return body.get("result")

    def _unavailable(self, method: str, exc: Exception) -> ChainUnavailable:
        log.debug("RPC %s at %s failed: %r", method, self._rpc_url, exc)
        return ChainUnavailable(f"{method} failed: {exc}")
