"""Token endpoint and admin output Marshmallow schemas."""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class RefreshSchema(Schema):
    """Input payload for exchanging a refresh token."""

    refresh_token = fields.String(required=True, validate=validate.Length(min=1))
    device_fingerprint = fields.String(load_default=None, validate=validate.Length(max=512))


class RevokeSchema(Schema):
    """Input payload for revoking one refresh token."""

    refresh_token = fields.String(required=True, validate=validate.Length(min=1))


class TokenPairSchema(Schema):
    access_token = fields.String(required=True)
    refresh_token = fields.String(required=True)
    token_type = fields.Constant("bearer")


class SessionSchema(Schema):
    """Public view of a refresh record; never exposes the token value."""

    id = fields.String()
    created_at = fields.DateTime()
    expires_at = fields.DateTime()
    used = fields.Boolean()
    source_address = fields.String(allow_none=True)
    user_agent = fields.String(allow_none=True)


class AccessClaimsSchema(Schema):
    subject_id = fields.String()
    issued_at = fields.DateTime()
    expires_at = fields.DateTime()
    attrs = fields.Dict()


class LimitStatusSchema(Schema):
    """Raw rate-limit and lockout counters for one identifier/account."""

    identifier = fields.String()
    attempts = fields.Integer()
    first_attempt_at = fields.DateTime(allow_none=True)
    blocked_until = fields.DateTime(allow_none=True)
    subject_id = fields.String(allow_none=True)
    failed_attempts = fields.Integer()
    locked_until = fields.DateTime(allow_none=True)
