"""API blueprint package exposing the token endpoints."""

from __future__ import annotations

from flask import Flask


def init_app(app: Flask) -> None:
    """Register the token endpoints beneath ``API_BASE_PREFIX``/auth."""

    api_base = str(app.config.get("API_BASE_PREFIX", "/api")).rstrip("/")

    from tokenguard.api.tokens import bp as tokens_bp

    app.register_blueprint(tokens_bp, url_prefix=f"{api_base}/auth")


__all__ = ["init_app"]
