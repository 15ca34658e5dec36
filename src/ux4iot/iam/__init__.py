"""
IAM (grant) module.
"""

from __future__ import annotations

from .grants import GrantCache, GrantRequestFunction

__all__ = [
    "GrantCache",
    "GrantRequestFunction",
]
