"""Marshmallow schemas validating plain-data security configuration."""

from __future__ import annotations

from marshmallow import Schema, fields, validate

_EXPIRY = validate.Regexp(r"^\d+[smhd]$", error="Expected <amount><s|m|h|d>, e.g. '15m'.")
_POSITIVE = validate.Range(min=1)


class TokenSettingsSchema(Schema):
    """Secrets and lifetimes; secrets are mandatory."""

    access_secret = fields.String(required=True, validate=validate.Length(min=1))
    refresh_secret = fields.String(required=True, validate=validate.Length(min=1))
    access_expiry = fields.String(load_default="15m", validate=_EXPIRY)
    refresh_expiry = fields.String(load_default="7d", validate=_EXPIRY)
    algorithm = fields.String(
        load_default="HS256", validate=validate.OneOf(["HS256", "HS384", "HS512"])
    )


class SecuritySettingsSchema(Schema):
    rotation_enabled = fields.Boolean(load_default=True)
    reuse_detection_enabled = fields.Boolean(load_default=True)
    device_binding_enabled = fields.Boolean(load_default=False)
    max_concurrent_sessions = fields.Integer(load_default=5, validate=validate.Range(min=0))
    cascade_attempts = fields.Integer(load_default=3, validate=_POSITIVE)


class RateLimitSettingsSchema(Schema):
    max_attempts = fields.Integer(load_default=5, validate=_POSITIVE)
    window_ms = fields.Integer(load_default=15 * 60 * 1000, validate=_POSITIVE)
    block_duration_ms = fields.Integer(load_default=60 * 60 * 1000, validate=_POSITIVE)
    skip_successful = fields.Boolean(load_default=False)
    skip_failed = fields.Boolean(load_default=False)
    allow_list = fields.List(fields.String(), load_default=list)
    deny_list = fields.List(fields.String(), load_default=list)
    key_prefix = fields.String(load_default="rate_limit:")
    fail_open = fields.Boolean(load_default=False)


class BruteForceSettingsSchema(Schema):
    enabled = fields.Boolean(load_default=True)
    max_failed_attempts = fields.Integer(load_default=10, validate=_POSITIVE)
    lockout_duration_ms = fields.Integer(load_default=60 * 60 * 1000, validate=_POSITIVE)
    reset_on_success = fields.Boolean(load_default=True)


class AlertSettingsSchema(Schema):
    enabled = fields.Boolean(load_default=False)
    threshold = fields.Integer(load_default=5, validate=_POSITIVE)


class SecurityConfigSchema(Schema):
    """Root schema; every section but ``tokens`` falls back to its defaults."""

    tokens = fields.Nested(TokenSettingsSchema, required=True)
    security = fields.Nested(SecuritySettingsSchema, load_default=dict)
    rate_limit = fields.Nested(RateLimitSettingsSchema, load_default=dict)
    brute_force = fields.Nested(BruteForceSettingsSchema, load_default=dict)
    alerts = fields.Nested(AlertSettingsSchema, load_default=dict)
