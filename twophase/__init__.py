"""
Two-phase assessment integrity engine.

The package root stays import-light so the CLI and tests can pull in
``twophase.core`` without dragging in the session machinery.
"""

from importlib import metadata


def get_version() -> str:
    """Return the installed project version."""
    try:
        return metadata.version("twophase")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__all__ = ["get_version"]
