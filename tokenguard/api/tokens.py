"""Token endpoints: refresh, revoke and session introspection."""

from __future__ import annotations

from flask import Blueprint, Response, request

from tokenguard.api.deps import (
    current_claims,
    device_info,
    json_response,
    rate_limited,
    require_access_token,
)
from tokenguard.core.extensions import get_context
from tokenguard.schemas import (
    AccessClaimsSchema,
    RefreshSchema,
    RevokeSchema,
    SessionSchema,
    TokenPairSchema,
)

bp = Blueprint("tokens", __name__)

refresh_schema = RefreshSchema()
revoke_schema = RevokeSchema()
token_pair_schema = TokenPairSchema()
sessions_schema = SessionSchema(many=True)
claims_schema = AccessClaimsSchema()


@bp.post("/refresh")
@rate_limited()
def refresh():
    """Exchange a refresh token for a new pair (rotating the old one)."""

    data = refresh_schema.load(request.get_json(silent=True) or {})
    pair = get_context().tokens.refresh(
        data["refresh_token"], device_info(data.get("device_fingerprint"))
    )
    return json_response({"data": token_pair_schema.dump(pair)})


@bp.post("/revoke")
def revoke():
    """Revoke a single refresh token (logout of one session)."""

    data = revoke_schema.load(request.get_json(silent=True) or {})
    get_context().tokens.revoke_one(data["refresh_token"])
    return Response(status=204)


@bp.post("/revoke-all")
@require_access_token
def revoke_all():
    """Revoke every session of the authenticated subject."""

    revoked = get_context().tokens.revoke_all(current_claims().subject_id)
    return json_response({"data": {"revoked": revoked}})


@bp.get("/sessions")
@require_access_token
def sessions():
    """List the authenticated subject's active sessions."""

    records = get_context().tokens.list_sessions(current_claims().subject_id)
    return json_response({"data": sessions_schema.dump(records)})


@bp.get("/whoami")
@require_access_token
def whoami():
    """Return the verified access-token claims."""

    return json_response({"data": claims_schema.dump(current_claims())})
