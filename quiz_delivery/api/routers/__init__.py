"""
API Routers package.
"""

from . import delivery

__all__ = ["delivery"]
