# tests/services/test_overlap.py
"""Tests for proof-of-presence overlap validation."""

from datetime import UTC, datetime, timedelta

import pytest

from karma_node.core.errors import ValidationError
from karma_node.services.overlap import (
    OverlapValidator,
    find_best_overlap,
    interval_overlap,
)

VOTER = "76561198000000001"
TARGET = "76561198000000002"
NOW = datetime(2024, 12, 5, 12, 0, tzinfo=UTC)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 12, 5, hour, minute, tzinfo=UTC)


@pytest.fixture()
def validator():
    return OverlapValidator(min_overlap_minutes=5, trust_window_hours=24)


def test_interval_overlap_is_zero_when_disjoint():
    assert interval_overlap(at(10), at(10, 3), at(10, 10), at(10, 30)) == timedelta(0)
    assert interval_overlap(at(10), at(10, 20), at(10, 10), at(10, 30)) == timedelta(minutes=10)


def test_partial_overlap_is_valid(db_session, make_session, validator):
    """[10:00,10:20] vs [10:10,10:30] overlaps for 10 minutes."""
    voter = make_session(VOTER, at(10), at(10, 20))
    target = make_session(TARGET, at(10, 10), at(10, 30))

    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)

    assert result.valid
    assert result.overlap_minutes == 10
    assert result.voter_session_id == voter.id
    assert result.target_session_id == target.id
    assert result.reason == "Players overlapped for 10 minutes"


def test_disjoint_sessions_are_invalid(db_session, make_session, validator):
    make_session(VOTER, at(10), at(10, 3))
    make_session(TARGET, at(10, 10), at(10, 30))

    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)

    assert not result.valid
    assert result.overlap_minutes == 0
    assert result.voter_session is None
    assert result.reason == "Insufficient overlap (0 minutes, required: 5)"


def test_short_overlap_below_threshold(db_session, make_session, validator):
    make_session(VOTER, at(10), at(10, 14))
    make_session(TARGET, at(10, 10), at(10, 30))

    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)

    assert not result.valid
    assert result.overlap_minutes == 4
    assert result.diagnostics()["minOverlapMinutes"] == 5


def test_open_sessions_run_until_now(db_session, make_session, validator):
    make_session(VOTER, at(11, 30))
    make_session(TARGET, at(11, 45))

    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)

    assert result.valid
    assert result.overlap_minutes == 15


def test_missing_sessions_are_reported_per_side(db_session, make_session, validator):
    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)
    assert result.reason == "Voter has no recent sessions (last 24 hours)"
    assert result.diagnostics()["voterHasSessions"] is False

    make_session(VOTER, at(10), at(11))
    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)
    assert result.reason == "Target has no recent sessions (last 24 hours)"
    assert result.voter_has_sessions is True
    assert result.target_has_sessions is False


def test_sessions_outside_trust_window_are_excluded(db_session, make_session, validator):
    """A session from 25 hours ago is not a candidate, not merely zero overlap."""
    old_start = NOW - timedelta(hours=25)
    make_session(VOTER, old_start, old_start + timedelta(hours=1))
    make_session(TARGET, old_start, old_start + timedelta(hours=1))

    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)

    assert not result.valid
    assert result.voter_has_sessions is False
    assert result.target_has_sessions is False


def test_placeholder_sessions_never_prove_presence(db_session, make_session, validator):
    make_session(VOTER, at(10), at(11), is_placeholder=True)
    make_session(TARGET, at(10), at(11), is_placeholder=True)

    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)

    assert not result.valid
    assert result.voter_has_sessions is False


def test_overlap_is_symmetric(db_session, make_session, validator):
    make_session(VOTER, at(9), at(9, 40))
    make_session(VOTER, at(10), at(10, 20))
    make_session(TARGET, at(9, 30), at(10, 15))

    forward = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)
    backward = validator.validate_overlap(db_session, TARGET, VOTER, now=NOW)

    assert forward.overlap_minutes == backward.overlap_minutes == 15


def test_extending_a_session_never_reduces_overlap(make_session):
    target = make_session(TARGET, at(10))
    overlaps = []
    for end_minute in (5, 15, 25, 45):
        voter = make_session(VOTER, at(10), at(10, end_minute))
        best, _, _ = find_best_overlap([voter], [target], NOW)
        overlaps.append(best)

    assert overlaps == sorted(overlaps)


def test_ties_prefer_first_pair_in_newest_first_order(db_session, make_session, validator):
    older = make_session(VOTER, at(8), at(8, 10))
    newer = make_session(VOTER, at(9), at(9, 10))
    make_session(TARGET, at(8), at(9, 10))

    result = validator.validate_overlap(db_session, VOTER, TARGET, now=NOW)

    assert result.overlap_minutes == 10
    assert result.voter_session_id == newer.id
    assert result.voter_session_id != older.id


def test_explicit_thresholds_override_defaults(db_session, make_session, validator):
    make_session(VOTER, at(10), at(10, 20))
    make_session(TARGET, at(10, 10), at(10, 30))

    result = validator.validate_overlap(db_session, VOTER, TARGET, 15, 24, now=NOW)

    assert not result.valid
    assert result.min_overlap_minutes == 15


def test_zero_threshold_accepts_disjoint_sessions(db_session, make_session, validator):
    make_session(VOTER, at(10), at(10, 3))
    make_session(TARGET, at(10, 10), at(10, 30))

    result = validator.validate_overlap(db_session, VOTER, TARGET, 0, 24, now=NOW)

    assert result.valid
    assert result.overlap_minutes == 0
    assert result.voter_session_id is None
    assert result.target_session_id is None


def test_invalid_ids_raise(db_session, validator):
    with pytest.raises(ValidationError):
        validator.validate_overlap(db_session, "123", TARGET, now=NOW)


def test_invalid_window_raises(db_session, validator):
    with pytest.raises(ValidationError):
        validator.validate_overlap(db_session, VOTER, TARGET, trust_window_hours=0, now=NOW)
