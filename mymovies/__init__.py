"""Command-line entry point package for the My Movies service."""

from __future__ import annotations

from app.main import create_app

__all__ = ["create_app"]
