"""
API v1 endpoints
"""

from . import auth, devices, challenges

__all__ = ["auth", "devices", "challenges"]
