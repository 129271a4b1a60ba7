"""HTTP client for node-to-node replication.

This module provides the PeerClient class that handles all outbound calls to
peer nodes. It includes:

- An httpx client with a bounded timeout and signed peer tokens
- A circuit breaker per peer for fault tolerance
- Request metrics for monitoring
- Pull, push and health-check operations against the replication API
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections import defaultdict
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import httpx
from jose import jwt

from karma_node.core.settings import MAX_REPLICATION_BATCH, settings
from karma_node.db.time import isoformat

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_INTERNAL_SERVER_ERROR = 500

PEER_TOKEN_HEADER = "X-Karma-Peer-Token"
NODE_ID_HEADER = "X-Karma-Node-Id"
REPLICATION_PATH = "/api/v1/replicate/votes"
HEALTH_PATH = "/api/v1/replicate/health"


class PeerError(RuntimeError):
    """Base exception raised for failed peer calls."""


class PeerUnavailableError(PeerError):
    """Raised when a peer's circuit is open and calls are short-circuited."""


class CircuitState(Enum):
    CLOSED = "closed"  # requests allowed
    OPEN = "open"  # requests blocked
    HALF_OPEN = "half_open"  # probing recovery


@dataclass
class PeerMetrics:
    """Counters for outbound peer requests."""

    request_count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_response_time: float = 0.0
    max_response_time: float = 0.0
    error_counts_by_type: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    endpoint_counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_request(
        self, endpoint: str, response_time: float, success: bool, error_type: str | None = None
    ) -> None:
        self.request_count += 1
        self.total_response_time += response_time
        self.max_response_time = max(self.max_response_time, response_time)
        self.endpoint_counts[endpoint] += 1
        if success:
            self.success_count += 1
        else:
            self.error_count += 1
            if error_type:
                self.error_counts_by_type[error_type] += 1

    def get_average_response_time(self) -> float:
        return self.total_response_time / self.request_count if self.request_count > 0 else 0.0

    def get_success_rate(self) -> float:
        """Success rate as a percentage."""
        return (self.success_count / self.request_count * 100) if self.request_count > 0 else 0.0


@dataclass
class CircuitBreaker:
    """Blocks calls to a peer after repeated failures until it recovers."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 2

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        if self._state == CircuitState.OPEN:
            if time.time() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.time()
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    @property
    def state(self) -> CircuitState:
        return self._state

    def status(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "last_failure_time": self._last_failure_time,
            "is_open": self.is_open(),
        }


@dataclass(frozen=True)
class PeerConfig:
    """Immutable configuration for outbound peer calls."""

    node_id: str
    api_key: str
    shared_secret: str | None
    audience: str
    token_ttl_seconds: int
    timeout_seconds: float


def load_peer_config() -> PeerConfig:
    """Build the peer configuration from global settings."""
    return PeerConfig(
        node_id=settings.node_id,
        api_key=settings.replication_api_key or settings.api_key,
        shared_secret=settings.replication_shared_secret,
        audience=settings.replication_audience,
        token_ttl_seconds=settings.replication_token_ttl_seconds,
        timeout_seconds=float(settings.replication_http_timeout_seconds),
    )


def issue_peer_token(
    node_id: str, shared_secret: str, audience: str, ttl_seconds: int
) -> str:
    """Sign a short-lived HS256 token asserting this node's identity."""
    now = int(time.time())
    payload = {
        "iss": node_id,
        "aud": audience,
        "iat": now,
        "exp": now + max(1, ttl_seconds),
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(payload, shared_secret, algorithm="HS256")


class PeerClient:
    """Async HTTP client for talking to replication peers."""

    def __init__(
        self,
        config: PeerConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_peer_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}
        self._metrics = PeerMetrics()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _breaker(self, peer_url: str) -> CircuitBreaker:
        return self._breakers.setdefault(peer_url, CircuitBreaker())

    def _build_auth_headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            NODE_ID_HEADER: self.config.node_id,
        }
        if self.config.shared_secret:
            headers[PEER_TOKEN_HEADER] = issue_peer_token(
                self.config.node_id,
                self.config.shared_secret,
                self.config.audience,
                self.config.token_ttl_seconds,
            )
        return headers

    async def _request(
        self,
        method: str,
        peer_url: str,
        path: str,
        *,
        json_data: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        breaker = self._breaker(peer_url)
        if breaker.is_open():
            raise PeerUnavailableError(f"Circuit open for peer {peer_url}")

        client = await self._ensure_client()
        endpoint = f"{method} {path}"
        start_time = time.time()
        success = False
        error_type: str | None = None
        try:
            response = await client.request(
                method,
                f"{peer_url.rstrip('/')}{path}",
                json=json_data,
                params=params,
                headers=self._build_auth_headers(),
            )
            if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
                breaker.record_failure()
                error_type = f"http_{response.status_code}"
                raise PeerError(f"Peer {peer_url} responded with {response.status_code}")
            breaker.record_success()
            success = True
        except httpx.HTTPError as exc:
            breaker.record_failure()
            error_type = "network_error"
            raise PeerError(f"Request to peer {peer_url} failed: {exc}") from exc
        finally:
            self._metrics.record_request(
                endpoint, time.time() - start_time, success, error_type
            )
        return response

    async def pull_votes_since(
        self,
        peer_url: str,
        since: datetime | None,
        *,
        limit: int = MAX_REPLICATION_BATCH,
    ) -> list[dict[str, Any]]:
        """Fetch a peer's original votes created after `since`."""
        params: dict[str, Any] = {"limit": min(limit, MAX_REPLICATION_BATCH)}
        if since is not None:
            params["since"] = isoformat(since)
        response = await self._request("GET", peer_url, REPLICATION_PATH, params=params)
        if response.status_code != HTTP_OK:
            raise PeerError(
                f"Unexpected response ({response.status_code}) pulling votes from {peer_url}"
            )
        body = response.json()
        votes = body.get("votes") if isinstance(body, dict) else None
        if not isinstance(votes, list):
            raise PeerError(f"Malformed vote feed from {peer_url}")
        return votes

    async def push_votes(
        self, peer_url: str, votes: Sequence[Mapping[str, Any]]
    ) -> dict[str, Any]:
        """Push local votes to a peer in batches; returns the summed counts."""
        totals = {"total": 0, "inserted": 0, "duplicates": 0, "errors": 0}
        for start in range(0, len(votes), MAX_REPLICATION_BATCH):
            chunk = [dict(vote) for vote in votes[start : start + MAX_REPLICATION_BATCH]]
            response = await self._request(
                "POST",
                peer_url,
                REPLICATION_PATH,
                json_data={"votes": chunk, "sourceNodeId": self.config.node_id},
            )
            if response.status_code != HTTP_OK:
                raise PeerError(
                    f"Peer {peer_url} rejected replication batch ({response.status_code})"
                )
            results = response.json().get("results", {})
            for key in totals:
                totals[key] += int(results.get(key, 0))
        return totals

    async def health_check(self, peer_url: str) -> dict[str, Any]:
        """Check a peer's health; never raises."""
        try:
            response = await self._request("GET", peer_url, HEALTH_PATH)
        except PeerError as exc:
            return {
                "status": "error",
                "error": str(exc),
                "circuit_breaker": self._breaker(peer_url).status(),
            }
        healthy = response.status_code == HTTP_OK
        return {
            "status": "healthy" if healthy else "unhealthy",
            "response_time_ms": response.elapsed.total_seconds() * 1000,
            "peer_status": response.json() if healthy else None,
            "circuit_breaker": self._breaker(peer_url).status(),
        }

    def get_circuit_breaker_status(self) -> dict[str, dict[str, Any]]:
        return {peer: breaker.status() for peer, breaker in self._breakers.items()}

    def get_metrics(self) -> dict[str, Any]:
        return {
            "request_count": self._metrics.request_count,
            "success_count": self._metrics.success_count,
            "error_count": self._metrics.error_count,
            "success_rate": self._metrics.get_success_rate(),
            "average_response_time": self._metrics.get_average_response_time(),
            "max_response_time": self._metrics.max_response_time,
            "error_counts_by_type": dict(self._metrics.error_counts_by_type),
            "endpoint_counts": dict(self._metrics.endpoint_counts),
        }

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
