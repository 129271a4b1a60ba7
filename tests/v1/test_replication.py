"""Tests for node-to-node replication endpoints."""

from datetime import timedelta

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from karma_node.core.settings import settings
from karma_node.db.time import isoformat, utcnow
from karma_node.services.peer_client import PEER_TOKEN_HEADER, issue_peer_token

SECRET = "replication-secret-for-tests"


def wire_vote(voter: str = "76561198000000011", **overrides) -> dict:
    vote = {
        "voterSteam64": voter,
        "targetSteam64": "76561198000000002",
        "direction": "UP",
        "reasonCategory": "Helpful",
        "voterSessionId": 10,
        "targetSessionId": 20,
        "createdAt": "2024-12-05T10:00:00Z",
        "sourceNodeId": "node-peer",
    }
    vote.update(overrides)
    return vote


def push(client: TestClient, headers: dict, votes: list[dict], source: str = "node-peer"):
    return client.post(
        "/api/v1/replicate/votes",
        json={"votes": votes, "sourceNodeId": source},
        headers=headers,
    )


def test_push_from_trusted_node(client: TestClient, auth_headers, trusted_node) -> None:
    r = push(client, auth_headers, [wire_vote(), wire_vote(), wire_vote(direction="MAYBE")])

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["success"] is True
    assert data["results"] == {"total": 3, "inserted": 1, "duplicates": 1, "errors": 1}
    assert "1 inserted" in data["message"]


def test_push_from_untrusted_node_is_forbidden(client: TestClient, auth_headers) -> None:
    r = push(client, auth_headers, [wire_vote()], source="node-stranger")

    assert r.status_code == status.HTTP_403_FORBIDDEN
    assert r.json()["error"] == "UNTRUSTED_SOURCE"


def test_push_rejects_oversized_batch(client: TestClient, auth_headers, trusted_node) -> None:
    votes = [wire_vote(voter=f"765611980{i:08d}") for i in range(101)]

    r = push(client, auth_headers, votes)

    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_push_requires_api_key(client: TestClient, trusted_node) -> None:
    r = push(client, {}, [wire_vote()])
    assert r.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.fixture()
def shared_secret(monkeypatch):
    monkeypatch.setattr(settings, "replication_shared_secret", SECRET)
    return SECRET


def test_push_requires_peer_token_when_secret_configured(
    client: TestClient, auth_headers, trusted_node, shared_secret
) -> None:
    r = push(client, auth_headers, [wire_vote()])

    assert r.status_code == status.HTTP_403_FORBIDDEN
    assert r.json()["message"] == "Peer token required"


def test_push_with_peer_token_is_single_use(
    client: TestClient, auth_headers, trusted_node, shared_secret
) -> None:
    token = issue_peer_token("node-peer", shared_secret, settings.replication_audience, 60)
    headers = {**auth_headers, PEER_TOKEN_HEADER: token}

    first = push(client, headers, [wire_vote()])
    replay = push(client, headers, [wire_vote(voter="76561198000000012")])

    assert first.status_code == status.HTTP_200_OK
    assert first.json()["results"]["inserted"] == 1
    assert replay.status_code == status.HTTP_403_FORBIDDEN


def test_push_with_token_for_other_node_is_forbidden(
    client: TestClient, auth_headers, trusted_node, shared_secret
) -> None:
    token = issue_peer_token("node-other", shared_secret, settings.replication_audience, 60)

    r = push(client, {**auth_headers, PEER_TOKEN_HEADER: token}, [wire_vote()])

    assert r.status_code == status.HTTP_403_FORBIDDEN


def test_pull_feed_serves_local_originals_only(
    client: TestClient, auth_headers, make_session, make_vote
) -> None:
    now = utcnow()
    voter = make_session("76561198000000001", now - timedelta(hours=1))
    target = make_session("76561198000000002", now - timedelta(hours=1))
    other = make_session("76561198000000003", now - timedelta(hours=1))
    older = make_vote(voter, target, created_at=now - timedelta(minutes=30))
    make_vote(other, target, created_at=now - timedelta(minutes=20), replicated_from="node-peer")
    newer = make_vote(target, voter, created_at=now - timedelta(minutes=10))

    r = client.get("/api/v1/replicate/votes", headers=auth_headers)

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["nodeId"] == settings.node_id
    assert data["count"] == 2
    assert [v["voterSteam64"] for v in data["votes"]] == [
        older.voter_steam64,
        newer.voter_steam64,
    ]
    assert all(v["sourceNodeId"] == settings.node_id for v in data["votes"])

    r = client.get(
        "/api/v1/replicate/votes",
        params={"since": isoformat(older.created_at), "limit": 10},
        headers=auth_headers,
    )

    assert r.json()["count"] == 1
    assert r.json()["votes"][0]["voterSteam64"] == newer.voter_steam64


def test_pull_feed_requires_api_key(client: TestClient) -> None:
    r = client.get("/api/v1/replicate/votes")
    assert r.status_code == status.HTTP_401_UNAUTHORIZED


def test_replication_health_needs_no_auth(client: TestClient, trusted_node) -> None:
    r = client.get("/api/v1/replicate/health")

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["status"] == "healthy"
    assert data["nodeId"] == settings.node_id
    assert data["trustedNodes"] == 1
    assert data["votes"] == 0
