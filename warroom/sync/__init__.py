"""
Sync layer: consumer-side refresh triggering and change-stream following
"""

from .client import ClientSync

__all__ = ["ClientSync"]
