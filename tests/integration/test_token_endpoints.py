"""HTTP-level tests for the token endpoints."""

from __future__ import annotations

from flask.testing import FlaskClient

from tokenguard.factory import SecurityContext, create_context
from tokenguard.services._shared.errors import StorageUnavailable
from tokenguard.services._shared.ports import InMemoryCredentialStore, InMemoryRateLimitStore
from tokenguard.services.tokens import DeviceInfo, Subject

BASE = "/api/auth"
PROBLEM_JSON = "application/problem+json"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class UnreachableCredentialStore(InMemoryCredentialStore):
    def get_refresh_record(self, token_value: str):
        raise StorageUnavailable()


class UncountableRateLimitStore(InMemoryRateLimitStore):
    def increment_counter(self, key, ttl):
        raise StorageUnavailable()


# --------------------------------------------------------------------------- #
# /refresh
# --------------------------------------------------------------------------- #


def test_refresh_returns_new_pair(client: FlaskClient, context: SecurityContext) -> None:
    """A valid refresh token is exchanged for a bearer pair."""

    # Arrange
    pair = context.tokens.issue(Subject("u1"))

    # Act
    res = client.post(f"{BASE}/refresh", json={"refresh_token": pair.refresh_token})

    # Assert
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["token_type"] == "bearer"
    assert data["refresh_token"] != pair.refresh_token
    assert context.tokens.verify_access(data["access_token"]).subject_id == "u1"
    assert res.headers["X-RateLimit-Limit"] == "100"
    assert "X-RateLimit-Remaining" in res.headers
    assert "X-Request-ID" in res.headers


def test_replayed_refresh_is_rejected_and_revokes_sessions(
    client: FlaskClient, context: SecurityContext
) -> None:
    pair = context.tokens.issue(Subject("u1"))
    first = client.post(f"{BASE}/refresh", json={"refresh_token": pair.refresh_token})
    rotated = first.get_json()["data"]["refresh_token"]

    replay = client.post(f"{BASE}/refresh", json={"refresh_token": pair.refresh_token})

    assert replay.status_code == 401
    assert replay.mimetype == PROBLEM_JSON
    assert replay.get_json()["code"] == "token_reuse_detected"
    after = client.post(f"{BASE}/refresh", json={"refresh_token": rotated})
    assert after.get_json()["code"] == "unknown_refresh_token"


def test_refresh_rejects_access_token(client: FlaskClient, context: SecurityContext) -> None:
    pair = context.tokens.issue(Subject("u1"))

    res = client.post(f"{BASE}/refresh", json={"refresh_token": pair.access_token})

    assert res.status_code == 401
    assert res.get_json()["code"] == "wrong_token_kind"


def test_refresh_rejects_garbage(client: FlaskClient) -> None:
    res = client.post(f"{BASE}/refresh", json={"refresh_token": "garbage"})

    assert res.status_code == 401
    body = res.get_json()
    assert body["code"] == "invalid_token"
    assert body["status"] == 401
    assert body["instance"] == f"{BASE}/refresh"


def test_refresh_requires_body(client: FlaskClient) -> None:
    res = client.post(f"{BASE}/refresh", json={})

    assert res.status_code == 422
    body = res.get_json()
    assert body["code"] == "validation_error"
    assert "refresh_token" in body["details"]["errors"]


def test_refresh_honours_device_fingerprint_header(app_factory) -> None:
    app = app_factory(security={"device_binding_enabled": True})
    context = app.extensions["tokenguard"]
    pair = context.tokens.issue(Subject("u1"), DeviceInfo(fingerprint="laptop"))
    client = app.test_client()

    wrong = client.post(
        f"{BASE}/refresh",
        json={"refresh_token": pair.refresh_token},
        headers={"X-Device-Fingerprint": "phone"},
    )
    right = client.post(
        f"{BASE}/refresh",
        json={"refresh_token": pair.refresh_token, "device_fingerprint": "laptop"},
    )

    assert wrong.status_code == 401
    assert wrong.get_json()["code"] == "device_mismatch"
    assert right.status_code == 200


def test_refresh_is_rate_limited(app_factory) -> None:
    """Failures count against the caller; the next attempt gets 429 + Retry-After."""

    client = app_factory(rate_limit={"max_attempts": 2}).test_client()
    for _ in range(2):
        assert client.post(f"{BASE}/refresh", json={"refresh_token": "x"}).status_code == 401

    res = client.post(f"{BASE}/refresh", json={"refresh_token": "x"})

    assert res.status_code == 429
    assert res.headers["Retry-After"] == "3600"
    assert res.headers["X-RateLimit-Remaining"] == "0"
    body = res.get_json()
    assert body["code"] == "rate_limited"
    assert body["details"]["retry_after"] == 3600


def test_forwarded_for_identifies_callers_when_trusted(app_factory) -> None:
    app = app_factory(rate_limit={"max_attempts": 1})
    app.config["TOKENGUARD_TRUST_FORWARDED_FOR"] = True
    client = app.test_client()

    def attempt(address: str) -> int:
        return client.post(
            f"{BASE}/refresh",
            json={"refresh_token": "x"},
            headers={"X-Forwarded-For": f"{address}, 10.0.0.1"},
        ).status_code

    assert attempt("198.51.100.1") == 401
    assert attempt("198.51.100.1") == 429
    assert attempt("198.51.100.2") == 401


def test_storage_outage_is_service_unavailable(app_factory, config_factory) -> None:
    context = create_context(config_factory(), credential_store=UnreachableCredentialStore())
    app = app_factory(context=context)
    token, _ = context.codec.sign_refresh("u1", None, context.config.tokens.refresh_ttl)

    res = app.test_client().post(f"{BASE}/refresh", json={"refresh_token": token})

    assert res.status_code == 503
    assert res.get_json()["code"] == "service_unavailable"


def test_counter_outage_after_rotation_keeps_the_new_pair(app_factory, config_factory) -> None:
    """A rotated pair is still delivered when the attempt cannot be recorded."""

    # Arrange
    context = create_context(config_factory(), rate_limit_store=UncountableRateLimitStore())
    client = app_factory(context=context).test_client()
    pair = context.tokens.issue(Subject("u1"))
    context.tokens.issue(Subject("u1"))

    # Act
    res = client.post(f"{BASE}/refresh", json={"refresh_token": pair.refresh_token})

    # Assert
    assert res.status_code == 200
    rotated = res.get_json()["data"]["refresh_token"]
    assert len(context.tokens.list_sessions("u1")) == 2
    follow_up = client.post(f"{BASE}/refresh", json={"refresh_token": rotated})
    assert follow_up.status_code == 200


def test_counter_outage_keeps_the_view_error(app_factory, config_factory) -> None:
    context = create_context(config_factory(), rate_limit_store=UncountableRateLimitStore())

    res = app_factory(context=context).test_client().post(
        f"{BASE}/refresh", json={"refresh_token": "garbage"}
    )

    assert res.status_code == 401
    assert res.get_json()["code"] == "invalid_token"


# --------------------------------------------------------------------------- #
# Revocation and introspection
# --------------------------------------------------------------------------- #


def test_revoke_single_token(client: FlaskClient, context: SecurityContext) -> None:
    pair = context.tokens.issue(Subject("u1"))

    res = client.post(f"{BASE}/revoke", json={"refresh_token": pair.refresh_token})

    assert res.status_code == 204
    again = client.post(f"{BASE}/refresh", json={"refresh_token": pair.refresh_token})
    assert again.get_json()["code"] == "unknown_refresh_token"


def test_revoke_all_requires_access_token(client: FlaskClient) -> None:
    res = client.post(f"{BASE}/revoke-all")

    assert res.status_code == 401
    assert res.get_json()["code"] == "missing_token"


def test_revoke_all_for_authenticated_subject(
    client: FlaskClient, context: SecurityContext
) -> None:
    pair = context.tokens.issue(Subject("u1"))
    context.tokens.issue(Subject("u1"))
    context.tokens.issue(Subject("u2"))

    res = client.post(f"{BASE}/revoke-all", headers=_bearer(pair.access_token))

    assert res.status_code == 200
    assert res.get_json() == {"data": {"revoked": 2}}
    assert len(context.tokens.list_sessions("u2")) == 1


def test_sessions_hide_token_values(client: FlaskClient, context: SecurityContext) -> None:
    pair = context.tokens.issue(Subject("u1"), DeviceInfo(user_agent="pytest"))

    res = client.get(f"{BASE}/sessions", headers=_bearer(pair.access_token))

    [session] = res.get_json()["data"]
    assert session["user_agent"] == "pytest"
    assert session["used"] is False
    assert "token_value" not in session
    assert pair.refresh_token not in res.get_data(as_text=True)


def test_whoami_returns_claims(client: FlaskClient, context: SecurityContext) -> None:
    pair = context.tokens.issue(Subject("u1", {"email": "u1@example.com"}))

    res = client.get(f"{BASE}/whoami", headers=_bearer(pair.access_token))

    data = res.get_json()["data"]
    assert data["subject_id"] == "u1"
    assert data["attrs"] == {"email": "u1@example.com"}


def test_whoami_rejects_refresh_token(client: FlaskClient, context: SecurityContext) -> None:
    pair = context.tokens.issue(Subject("u1"))

    res = client.get(f"{BASE}/whoami", headers=_bearer(pair.refresh_token))

    assert res.status_code == 401
    assert res.get_json()["code"] == "wrong_token_kind"


def test_unknown_route_is_problem_json(client: FlaskClient) -> None:
    res = client.get("/api/nope", headers={"X-Request-ID": "req-123"})

    assert res.status_code == 404
    assert res.mimetype == PROBLEM_JSON
    body = res.get_json()
    assert body["code"] == "not_found"
    assert body["request_id"] == "req-123"
