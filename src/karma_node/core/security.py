"""Request authentication: operator API key and signed peer tokens."""

from __future__ import annotations

import secrets
import time
from typing import Any

from jose import JWTError, jwt

from karma_node.core.errors import UntrustedSourceError
from karma_node.services.ttl_store import TTLStore


def api_key_matches(candidate: str | None, expected: str) -> bool:
    """Constant-time comparison of a presented bearer key."""
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def verify_peer_token(
    token: str,
    *,
    source_node_id: str,
    shared_secret: str,
    audience: str,
    replay_store: TTLStore,
    max_ttl_seconds: int,
) -> dict[str, Any]:
    """Validate a peer's HS256 token and burn its ``jti``.

    Raises:
        UntrustedSourceError: If the token is invalid, expired, issued by a
            different node than `source_node_id`, or already used.
    """
    try:
        claims = jwt.decode(token, shared_secret, algorithms=["HS256"], audience=audience)
    except JWTError as err:
        raise UntrustedSourceError("Invalid peer token") from err

    if claims.get("iss") != source_node_id:
        raise UntrustedSourceError(
            "Peer token issuer does not match sourceNodeId",
            details={"sourceNodeId": source_node_id},
        )

    jti = claims.get("jti")
    if not jti:
        raise UntrustedSourceError("Peer token has no jti")

    remaining = int(claims.get("exp", 0)) - int(time.time())
    ttl = max(1, min(remaining, max_ttl_seconds))
    if not replay_store.claim(f"peer-jti:{source_node_id}:{jti}", ttl_seconds=ttl):
        raise UntrustedSourceError("Peer token has already been used")
    return claims
