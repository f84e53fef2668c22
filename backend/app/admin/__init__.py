"""
Admin module: grant management API and guard-backed dependencies.
"""

from .router import router

__all__ = ["router"]
