"""
HTTP API - device management and value snapshots
"""

from .server import ApiServer

__all__ = ["ApiServer"]
