"""
ux4iot CLI - Command line tools for ux4iot relays.
"""

from __future__ import annotations

from .main import main, app

__all__ = ["main", "app"]
