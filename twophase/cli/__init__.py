"""Typer entry points for the ``twophase`` console script."""

from .main import app

__all__ = ["app"]
