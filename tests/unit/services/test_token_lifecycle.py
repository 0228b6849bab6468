"""Unit tests for the token lifecycle service (issue / refresh / revoke)."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from tokenguard.services._shared.errors import (
    ConcurrentUsageDetected,
    CredentialExpired,
    DeviceMismatch,
    ServiceError,
    UnknownRefreshToken,
    WrongCredentialKind,
)
from tokenguard.services.tokens import DeviceInfo, Subject, TokenLifecycleManager


def test_issue_then_refresh_round_trip(manager: TokenLifecycleManager) -> None:
    """A freshly issued refresh token yields a new, different pair."""

    # Arrange
    pair = manager.issue(Subject("u1", {"email": "u1@example.com"}))

    # Act
    rotated = manager.refresh(pair.refresh_token)

    # Assert
    assert rotated.access_token != pair.access_token
    assert rotated.refresh_token != pair.refresh_token
    assert manager.verify_access(rotated.access_token).subject_id == "u1"


def test_issue_persists_record_with_device_context(manager: TokenLifecycleManager) -> None:
    device = DeviceInfo(fingerprint="laptop", source_address="10.0.0.1", user_agent="curl")

    pair = manager.issue(Subject("u1"), device)

    [record] = manager.list_sessions("u1")
    assert record.token_value == pair.refresh_token
    assert record.used is False
    assert record.source_address == "10.0.0.1"
    assert record.user_agent == "curl"
    assert record.expires_at - record.created_at == timedelta(days=7)


def test_access_token_carries_subject_attrs(manager: TokenLifecycleManager) -> None:
    pair = manager.issue(Subject("u1", {"email": "u1@example.com", "role": "admin"}))

    claims = manager.verify_access(pair.access_token)

    assert claims.attrs == {"email": "u1@example.com", "role": "admin"}


def test_replaying_a_rotated_token_revokes_every_session(manager: TokenLifecycleManager) -> None:
    """T1 -> T2, then replaying T1 kills T2 and any parallel session."""

    # Arrange
    first = manager.issue(Subject("u1"))
    parallel = manager.issue(Subject("u1"))
    second = manager.refresh(first.refresh_token)

    # Act
    with pytest.raises(ConcurrentUsageDetected) as excinfo:
        manager.refresh(first.refresh_token)

    # Assert
    assert excinfo.value.subject_id == "u1"
    assert manager.list_sessions("u1") == []
    for token in (second.refresh_token, parallel.refresh_token):
        with pytest.raises(UnknownRefreshToken):
            manager.refresh(token)


def test_replay_does_not_touch_other_subjects(manager: TokenLifecycleManager) -> None:
    pair = manager.issue(Subject("u1"))
    manager.issue(Subject("u2"))
    manager.refresh(pair.refresh_token)

    with pytest.raises(ConcurrentUsageDetected):
        manager.refresh(pair.refresh_token)

    assert len(manager.list_sessions("u2")) == 1


def test_access_token_is_rejected_as_refresh(manager: TokenLifecycleManager) -> None:
    pair = manager.issue(Subject("u1"))

    with pytest.raises(WrongCredentialKind):
        manager.refresh(pair.access_token)

    with pytest.raises(WrongCredentialKind):
        manager.verify_access(pair.refresh_token)


def test_revoked_token_is_unknown(manager: TokenLifecycleManager) -> None:
    pair = manager.issue(Subject("u1"))
    other = manager.issue(Subject("u1"))

    manager.revoke_one(pair.refresh_token)

    with pytest.raises(UnknownRefreshToken):
        manager.refresh(pair.refresh_token)
    assert [r.token_value for r in manager.list_sessions("u1")] == [other.refresh_token]


def test_revoke_one_ignores_unknown_tokens(manager: TokenLifecycleManager) -> None:
    manager.revoke_one("never-issued")


def test_revoke_all_is_idempotent(manager: TokenLifecycleManager) -> None:
    manager.issue(Subject("u1"))
    manager.issue(Subject("u1"))

    assert manager.revoke_all("u1") == 2
    assert manager.revoke_all("u1") == 0
    assert manager.list_sessions("u1") == []


def test_expired_refresh_token_is_rejected(manager: TokenLifecycleManager, freeze_time) -> None:
    with freeze_time("2024-01-01 00:00:00") as frozen:
        pair = manager.issue(Subject("u1"))
        frozen.tick(timedelta(days=8))

        with pytest.raises(CredentialExpired):
            manager.refresh(pair.refresh_token)


def test_sweep_removes_expired_sessions(manager: TokenLifecycleManager, freeze_time) -> None:
    with freeze_time("2024-01-01 00:00:00") as frozen:
        manager.issue(Subject("u1"))
        manager.issue(Subject("u2"))
        frozen.tick(timedelta(days=8))

        assert manager.sweep_expired() == 2
        assert manager.sweep_expired() == 0


# --------------------------------------------------------------------------- #
# Configuration variants
# --------------------------------------------------------------------------- #


def test_device_binding_rejects_other_device_without_consuming(
    manager_factory, config_factory
) -> None:
    """A mismatch is terminal for the call, but the legitimate device can still refresh."""

    # Arrange
    manager = manager_factory(config_factory(security={"device_binding_enabled": True}))
    pair = manager.issue(Subject("u1"), DeviceInfo(fingerprint="laptop"))

    # Act / Assert
    with pytest.raises(DeviceMismatch):
        manager.refresh(pair.refresh_token, DeviceInfo(fingerprint="phone"))
    with pytest.raises(DeviceMismatch):
        manager.refresh(pair.refresh_token)

    rotated = manager.refresh(pair.refresh_token, DeviceInfo(fingerprint="laptop"))
    assert rotated.refresh_token != pair.refresh_token


def test_device_binding_is_carried_through_rotation(manager_factory, config_factory) -> None:
    manager = manager_factory(config_factory(security={"device_binding_enabled": True}))
    pair = manager.issue(Subject("u1"), DeviceInfo(fingerprint="laptop"))

    rotated = manager.refresh(pair.refresh_token, DeviceInfo(fingerprint="laptop"))

    with pytest.raises(DeviceMismatch):
        manager.refresh(rotated.refresh_token, DeviceInfo(fingerprint="phone"))


def test_unbound_token_refreshes_from_any_device(manager_factory, config_factory) -> None:
    manager = manager_factory(config_factory(security={"device_binding_enabled": True}))
    pair = manager.issue(Subject("u1"))

    manager.refresh(pair.refresh_token, DeviceInfo(fingerprint="phone"))


def test_rotation_disabled_keeps_the_old_token_valid(manager_factory, config_factory) -> None:
    manager = manager_factory(config_factory(security={"rotation_enabled": False}))
    pair = manager.issue(Subject("u1"))

    manager.refresh(pair.refresh_token)
    manager.refresh(pair.refresh_token)

    record = next(r for r in manager.list_sessions("u1") if r.token_value == pair.refresh_token)
    assert record.used is False


def test_second_use_without_reuse_detection_is_only_rejected(
    manager_factory, config_factory
) -> None:
    """Without reuse detection a consumed token fails alone; other sessions survive."""

    manager = manager_factory(config_factory(security={"reuse_detection_enabled": False}))
    pair = manager.issue(Subject("u1"))
    rotated = manager.refresh(pair.refresh_token)

    with pytest.raises(UnknownRefreshToken):
        manager.refresh(pair.refresh_token)

    manager.refresh(rotated.refresh_token)


def test_session_cap_evicts_oldest_unused(manager_factory, config_factory, freeze_time) -> None:
    manager = manager_factory(config_factory(security={"max_concurrent_sessions": 2}))

    with freeze_time("2024-01-01 00:00:00") as frozen:
        oldest = manager.issue(Subject("u1"))
        frozen.tick(timedelta(seconds=1))
        middle = manager.issue(Subject("u1"))
        frozen.tick(timedelta(seconds=1))
        newest = manager.issue(Subject("u1"))

        tokens = [r.token_value for r in manager.list_sessions("u1")]

        assert tokens == [middle.refresh_token, newest.refresh_token]
        with pytest.raises(UnknownRefreshToken):
            manager.refresh(oldest.refresh_token)


def test_session_cap_of_zero_is_unlimited(manager_factory, config_factory) -> None:
    manager = manager_factory(config_factory(security={"max_concurrent_sessions": 0}))

    for _ in range(8):
        manager.issue(Subject("u1"))

    assert len(manager.list_sessions("u1")) == 8


def test_subject_loader_refreshes_attrs(manager_factory) -> None:
    manager = manager_factory(subject_loader=lambda sid: Subject(sid, {"role": "editor"}))
    pair = manager.issue(Subject("u1", {"role": "viewer"}))

    rotated = manager.refresh(pair.refresh_token)

    assert manager.verify_access(rotated.access_token).attrs == {"role": "editor"}


def test_subject_loader_returning_none_rejects_refresh(manager_factory) -> None:
    manager = manager_factory(subject_loader=lambda sid: None)
    pair = manager.issue(Subject("u1"))

    with pytest.raises(UnknownRefreshToken):
        manager.refresh(pair.refresh_token)

    # the token was not consumed
    assert manager.list_sessions("u1")[0].used is False


def test_refresh_without_loader_keeps_only_subject_id(manager: TokenLifecycleManager) -> None:
    pair = manager.issue(Subject("u1", {"email": "u1@example.com"}))

    rotated = manager.refresh(pair.refresh_token)

    claims = manager.verify_access(rotated.access_token)
    assert claims.subject_id == "u1"
    assert claims.attrs == {}


# --------------------------------------------------------------------------- #
# Concurrency
# --------------------------------------------------------------------------- #


def test_concurrent_refresh_lets_exactly_one_caller_win(manager: TokenLifecycleManager) -> None:
    """Of N callers racing with the same token, at most one gets a new pair."""

    pair = manager.issue(Subject("u1"))
    callers = 8
    barrier = threading.Barrier(callers)
    successes: list[object] = []
    failures: list[BaseException] = []
    guard = threading.Lock()

    def attempt() -> None:
        barrier.wait()
        try:
            result = manager.refresh(pair.refresh_token)
        except ServiceError as exc:
            with guard:
                failures.append(exc)
        else:
            with guard:
                successes.append(result)

    threads = [threading.Thread(target=attempt) for _ in range(callers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(successes) == 1
    assert len(failures) == callers - 1
    assert all(isinstance(exc, ConcurrentUsageDetected | UnknownRefreshToken) for exc in failures)
