"""Tests for session and overlap endpoints."""

from datetime import timedelta

from fastapi import status
from fastapi.testclient import TestClient

from karma_node.db.time import utcnow

VOTER = "76561198000000001"
TARGET = "76561198000000002"


def test_online_lists_open_real_sessions(client: TestClient, auth_headers, make_session) -> None:
    now = utcnow()
    make_session(VOTER, now - timedelta(minutes=20))
    make_session(TARGET, now - timedelta(hours=2), now - timedelta(hours=1))
    make_session("76561198000000003", now - timedelta(minutes=5), is_placeholder=True)

    r = client.get("/api/v1/session/online", headers=auth_headers)

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["count"] == 1
    player = data["players"][0]
    assert player["steam64"] == VOTER
    assert player["isActive"] is True
    assert player["leftAt"] is None
    assert player["durationMinutes"] >= 19


def test_get_session_prefers_open_session(client: TestClient, auth_headers, make_session) -> None:
    now = utcnow()
    make_session(VOTER, now - timedelta(hours=3), now - timedelta(hours=2))
    current = make_session(VOTER, now - timedelta(minutes=10))

    r = client.get(f"/api/v1/session/{VOTER}", headers=auth_headers)

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["id"] == current.id
    assert data["isActive"] is True


def test_get_session_falls_back_to_latest_closed(
    client: TestClient, auth_headers, make_session
) -> None:
    now = utcnow()
    make_session(VOTER, now - timedelta(hours=5), now - timedelta(hours=4))
    latest = make_session(VOTER, now - timedelta(hours=3), now - timedelta(hours=2))

    r = client.get(f"/api/v1/session/{VOTER}", headers=auth_headers)

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["id"] == latest.id
    assert data["durationMinutes"] == 60
    assert data["isActive"] is False


def test_get_session_not_found(client: TestClient, auth_headers) -> None:
    r = client.get(f"/api/v1/session/{VOTER}", headers=auth_headers)

    assert r.status_code == status.HTTP_404_NOT_FOUND
    assert r.json()["error"] == "NOT_FOUND"


def test_get_session_bad_id(client: TestClient, auth_headers) -> None:
    r = client.get("/api/v1/session/not-a-steam-id", headers=auth_headers)

    assert r.status_code == status.HTTP_400_BAD_REQUEST


def test_validate_overlap_success(client: TestClient, auth_headers, overlapping_pair) -> None:
    voter_session, target_session = overlapping_pair

    r = client.post(
        "/api/v1/session/validate-overlap",
        json={"voterSteam64": VOTER, "targetSteam64": TARGET},
        headers=auth_headers,
    )

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["valid"] is True
    assert data["voterSessionId"] == voter_session.id
    assert data["targetSessionId"] == target_session.id
    assert data["details"]["voterHasSessions"] is True


def test_validate_overlap_accepts_profile_urls(
    client: TestClient, auth_headers, overlapping_pair
) -> None:
    r = client.post(
        "/api/v1/session/validate-overlap",
        json={
            "voterSteam64": VOTER,
            "targetSteam64": f"https://steamcommunity.com/profiles/{TARGET}",
        },
        headers=auth_headers,
    )

    assert r.status_code == status.HTTP_200_OK
    assert r.json()["valid"] is True


def test_validate_overlap_respects_minimum(
    client: TestClient, auth_headers, overlapping_pair
) -> None:
    r = client.post(
        "/api/v1/session/validate-overlap",
        json={"voterSteam64": VOTER, "targetSteam64": TARGET, "minOverlapMinutes": 60},
        headers=auth_headers,
    )

    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["valid"] is False
    assert data["details"]["minOverlapMinutes"] == 60
    assert data["reason"]


def test_validate_overlap_rejects_zero_window(client: TestClient, auth_headers) -> None:
    r = client.post(
        "/api/v1/session/validate-overlap",
        json={"voterSteam64": VOTER, "targetSteam64": TARGET, "trustWindowHours": 0},
        headers=auth_headers,
    )

    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
