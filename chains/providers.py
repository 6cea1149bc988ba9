"""
chains/providers.py - JSON-RPC provider management with failover.

Provides reliable Substrate JSON-RPC access over HTTP with:
- Multiple endpoint failover (first reachable endpoint wins)
- Request timeout handling
- Latency tracking per endpoint

Used for lightweight calls (finalized head, headers, block hashes).
Decoded blocks and events go through chains.substrate.
"""

import os
import time
from dataclasses import dataclass
from typing import Any

import httpx
from dotenv import load_dotenv

from core.constants import DEFAULT_RPC_TIMEOUT_SECONDS, ErrorCode
from core.exceptions import ChainAccessError
from core.logging import get_logger

logger = get_logger(__name__)

load_dotenv()


def to_http_url(url: str) -> str:
    """Substrate nodes serve HTTP and WS JSON-RPC on the same port."""
    if url.startswith("wss://"):
        return "https://" + url[len("wss://"):]
    if url.startswith("ws://"):
        return "http://" + url[len("ws://"):]
    return url


@dataclass
class RPCStats:
    """Statistics for an RPC endpoint."""
    url: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_latency_ms: int = 0
    last_error: str | None = None
    last_success_ts: int | None = None

    @property
    def avg_latency_ms(self) -> int:
        if self.successful_requests == 0:
            return 0
        return self.total_latency_ms // self.successful_requests

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests


@dataclass
class RPCResponse:
    """Response from an RPC call."""
    result: Any
    latency_ms: int
    endpoint_used: str


class RPCProvider:
    """
    RPC provider with failover support.

    Tries endpoints in configured order until one succeeds.
    Tracks statistics per endpoint for monitoring.
    """

    def __init__(
        self,
        chain: str,
        rpc_urls: list[str],
        timeout_seconds: int = DEFAULT_RPC_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.chain = chain
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._request_id = 0

        self.rpc_urls = self._resolve_urls(rpc_urls)

        self.stats: dict[str, RPCStats] = {
            url: RPCStats(url=url) for url in self.rpc_urls
        }

    def _resolve_urls(self, urls: list[str]) -> list[str]:
        """Expand ${RPC_API_KEY} placeholders and map WS URLs to HTTP."""
        api_key = os.getenv("RPC_API_KEY", "")
        resolved = []
        for url in urls:
            resolved_url = to_http_url(url.strip().replace("${RPC_API_KEY}", api_key))
            if resolved_url and resolved_url not in resolved:
                resolved.append(resolved_url)
        return resolved

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                limits=httpx.Limits(max_connections=10),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _next_request_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def call(
        self,
        method: str,
        params: list | None = None,
    ) -> RPCResponse:
        """
        Make an RPC call with failover.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RPCResponse with result and metadata

        Raises:
            ChainAccessError: If all endpoints fail
        """
        if not self.rpc_urls:
            raise ChainAccessError(
                "No RPC endpoints configured",
                details={"chain": self.chain},
            )

        client = await self._get_client()
        last_error: Exception | None = None

        for url in self.rpc_urls:
            stats = self.stats[url]
            stats.total_requests += 1

            payload = {
                "jsonrpc": "2.0",
                "method": method,
                "params": params or [],
                "id": self._next_request_id(),
            }

            start_ms = int(time.time() * 1000)

            try:
                resp = await client.post(url, json=payload)
                latency_ms = int(time.time() * 1000) - start_ms

                if resp.status_code == 429:
                    stats.failed_requests += 1
                    stats.last_error = "rate limited"
                    last_error = ChainAccessError(
                        f"Rate limited by {url}",
                        code=ErrorCode.INFRA_RATE_LIMIT,
                        details={"url": url, "method": method},
                    )
                    continue

                result = resp.json()

                if "error" in result:
                    error_msg = result["error"].get("message", str(result["error"]))
                    stats.failed_requests += 1
                    stats.last_error = error_msg
                    last_error = ChainAccessError(
                        f"RPC error: {error_msg}",
                        details={"url": url, "method": method},
                    )
                    logger.debug(f"RPC error from {url}: {error_msg}")
                    continue

                stats.successful_requests += 1
                stats.total_latency_ms += latency_ms
                stats.last_success_ts = int(time.time() * 1000)

                return RPCResponse(
                    result=result.get("result"),
                    latency_ms=latency_ms,
                    endpoint_used=url,
                )

            except httpx.TimeoutException as e:
                latency_ms = int(time.time() * 1000) - start_ms
                stats.failed_requests += 1
                stats.last_error = f"Timeout after {latency_ms}ms"
                last_error = e
                logger.debug(f"RPC timeout for {url}: {latency_ms}ms")
                continue

            except (httpx.HTTPError, ValueError) as e:
                stats.failed_requests += 1
                stats.last_error = str(e)
                last_error = e
                logger.debug(f"RPC failed for {url}: {e}")
                continue

        raise ChainAccessError(
            f"All RPC endpoints failed for chain {self.chain}",
            details={
                "chain": self.chain,
                "endpoints_tried": len(self.rpc_urls),
                "last_error": str(last_error),
            },
        )

    async def get_block_hash(self, height: int) -> str:
        """Block hash at height."""
        response = await self.call("chain_getBlockHash", [height])
        if not response.result:
            raise ChainAccessError(
                f"No block hash for height {height}",
                details={"chain": self.chain, "height": height},
            )
        return response.result

    async def get_finalized_head(self) -> str:
        """Hash of the latest finalized block."""
        response = await self.call("chain_getFinalizedHead")
        return response.result

    async def get_header(self, block_hash: str | None = None) -> dict:
        """Block header (number is hex encoded)."""
        params = [block_hash] if block_hash else []
        response = await self.call("chain_getHeader", params)
        if not response.result:
            raise ChainAccessError(
                f"No header for block {block_hash}",
                details={"chain": self.chain, "block_hash": block_hash},
            )
        return response.result

    async def get_finalized_height(self) -> int:
        """Height of the latest finalized block."""
        head = await self.get_finalized_head()
        header = await self.get_header(head)
        height = int(header["number"], 16)
        logger.info(
            f"Finalized head #{height}",
            extra={"context": {"chain": self.chain, "block_hash": head}},
        )
        return height

    def get_stats_summary(self) -> dict:
        """Get statistics summary for all endpoints."""
        return {
            url: {
                "total_requests": s.total_requests,
                "success_rate": round(s.success_rate, 3),
                "avg_latency_ms": s.avg_latency_ms,
                "last_error": s.last_error,
            }
            for url, s in self.stats.items()
        }
