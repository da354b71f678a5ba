"""
Policy construction from validated identities.
"""

from .builder import PolicyBuilder, ScopeMode

__all__ = ["PolicyBuilder", "ScopeMode"]
