"""Operator commands, exposed as ``flask tokenguard ...``."""

from __future__ import annotations

from flask import Flask

from .admin import tokenguard_cli


def init_app(app: Flask) -> None:
    app.cli.add_command(tokenguard_cli)
